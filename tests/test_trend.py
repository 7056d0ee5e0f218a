from __future__ import annotations

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from insurance_kpi.analytics import (  # noqa: E402
    TREND_METHODS,
    calculate_trend_rate,
    describe_trend,
    fit_trend,
)


def test_linear_fit_recovers_slope() -> None:
    result = fit_trend([10, 12, 14, 16, 18], "linear")

    assert result.coefficients["slope"] == pytest.approx(2.0)
    assert result.coefficients["intercept"] == pytest.approx(10.0)
    assert result.r_squared == pytest.approx(1.0)
    assert result.direction == "increasing"
    assert [p.value for p in result.trend_points] == pytest.approx([10, 12, 14, 16, 18])


def test_linear_forecast_extends_the_line() -> None:
    result = fit_trend([10, 12, 14, 16, 18], "linear", predict=True, predict_steps=2)

    assert [p.index for p in result.predicted_points] == [5, 6]
    assert [p.value for p in result.predicted_points] == pytest.approx([20.0, 22.0])


def test_predictions_are_empty_unless_requested() -> None:
    assert fit_trend([1, 2, 3], "linear", predict_steps=4).predicted_points == []


def test_flat_series_is_stable() -> None:
    result = fit_trend([5, 5, 5, 5], "linear")

    assert result.direction == "stable"
    assert result.r_squared == 1.0


def test_polynomial_fit_of_quadratic() -> None:
    series = [x * x for x in range(6)]

    result = fit_trend(series, "polynomial", degree=2)

    assert result.r_squared == pytest.approx(1.0)
    assert result.coefficients["a2"] == pytest.approx(1.0)
    assert result.direction == "increasing"


def test_moving_average_smooths_and_forecasts_flat() -> None:
    result = fit_trend([1, 3, 5, 7], "movingAverage", window=3, predict=True, predict_steps=2)

    assert [p.value for p in result.trend_points] == pytest.approx([2.0, 3.0, 5.0, 6.0])
    assert [p.value for p in result.predicted_points] == pytest.approx([6.0, 6.0])
    assert result.coefficients is None


def test_exponential_smoothing_starts_at_first_value() -> None:
    result = fit_trend([10, 20, 20], "exponential", alpha=0.5)

    assert [p.value for p in result.trend_points] == pytest.approx([10.0, 15.0, 17.5])
    assert result.direction == "increasing"


def test_non_finite_values_are_dropped() -> None:
    result = fit_trend([10, float("nan"), 12, None, 14], "linear")

    assert len(result.trend_points) == 3
    assert result.coefficients["slope"] == pytest.approx(2.0)


def test_short_series_gives_empty_result() -> None:
    result = fit_trend([3.0], "linear")

    assert result.trend_points == []
    assert result.direction == "stable"
    assert calculate_trend_rate(result) is None


@pytest.mark.parametrize("method", TREND_METHODS)
def test_every_method_handles_a_noisy_series(method: str) -> None:
    result = fit_trend([3, 5, 4, 6, 8, 7, 9], method)

    assert len(result.trend_points) == 7
    assert result.r_squared <= 1.0


def test_invalid_arguments_raise() -> None:
    with pytest.raises(ValueError):
        fit_trend([1, 2, 3], "cubic")
    with pytest.raises(ValueError):
        fit_trend([1, 2, 3], "exponential", alpha=0.0)


def test_trend_rate_and_description() -> None:
    result = fit_trend([10, 12, 14, 16, 18], "linear")

    assert calculate_trend_rate(result) == pytest.approx(80.0)
    assert describe_trend(result) == "sharply rising (+80.0%)"
    assert describe_trend(fit_trend([5, 5, 5], "linear")) == "stable, no clear change"
