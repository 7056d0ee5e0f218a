from __future__ import annotations

"""
Trend fitting for weekly KPI series.

Four estimators are supported: ordinary least squares (``linear``), a
least-squares polynomial (``polynomial``), a centered moving average
(``movingAverage``) and an exponential moving average (``exponential``).
R^2 is computed the same way for each so fit quality is comparable.
"""

from dataclasses import dataclass
import math
from typing import Sequence

import numpy as np

TREND_METHODS: tuple[str, ...] = ("linear", "polynomial", "movingAverage", "exponential")

SLOPE_STABLE_THRESHOLD = 0.01
RELATIVE_STABLE_THRESHOLD = 0.05


@dataclass(frozen=True)
class TrendPoint:
    index: int
    value: float


@dataclass(frozen=True)
class TrendFittingResult:
    """
    Fitted series plus optional forecast.

    - trend_points: one fitted value per valid input point (indices follow
      the series after non-finite values are removed)
    - predicted_points: forecast beyond the last index (empty unless requested)
    - direction: ``increasing`` / ``decreasing`` / ``stable``
    - coefficients: ``slope``/``intercept`` for linear, ``a0..aN`` (ascending
      powers) for polynomial, None for smoothers
    """

    trend_points: list[TrendPoint]
    predicted_points: list[TrendPoint]
    r_squared: float
    direction: str
    coefficients: dict[str, float] | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "trend_points": [{"index": p.index, "value": p.value} for p in self.trend_points],
            "predicted_points": [
                {"index": p.index, "value": p.value} for p in self.predicted_points
            ],
            "r_squared": self.r_squared,
            "direction": self.direction,
            "coefficients": self.coefficients,
        }


def _finite_values(series: Sequence[float | None]) -> np.ndarray:
    values = [float(v) for v in series if v is not None and math.isfinite(float(v))]
    return np.asarray(values, dtype=float)


def r_squared(actual: np.ndarray, fitted: np.ndarray) -> float:
    ss_tot = float(np.sum((actual - actual.mean()) ** 2))
    ss_res = float(np.sum((actual - fitted) ** 2))
    if ss_tot == 0:
        return 1.0
    return 1.0 - ss_res / ss_tot


def _endpoint_direction(fitted: np.ndarray) -> str:
    first = float(fitted[0])
    last = float(fitted[-1])
    change = last - first
    if first == 0:
        relative = abs(change)
    else:
        relative = abs(change) / abs(first)
    if relative < RELATIVE_STABLE_THRESHOLD:
        return "stable"
    return "increasing" if change > 0 else "decreasing"


def _points(values: np.ndarray, start: int = 0) -> list[TrendPoint]:
    return [TrendPoint(index=start + i, value=float(v)) for i, v in enumerate(values)]


def _flat_forecast(last: float, n: int, steps: int) -> list[TrendPoint]:
    return [TrendPoint(index=n - 1 + i, value=last) for i in range(1, steps + 1)]


def _fit_linear(y: np.ndarray, steps: int) -> TrendFittingResult:
    x = np.arange(len(y), dtype=float)
    slope, intercept = np.polyfit(x, y, 1)
    fitted = slope * x + intercept
    if abs(slope) < SLOPE_STABLE_THRESHOLD:
        direction = "stable"
    else:
        direction = "increasing" if slope > 0 else "decreasing"
    future = np.arange(len(y), len(y) + steps, dtype=float)
    return TrendFittingResult(
        trend_points=_points(fitted),
        predicted_points=_points(slope * future + intercept, start=len(y)),
        r_squared=r_squared(y, fitted),
        direction=direction,
        coefficients={"slope": float(slope), "intercept": float(intercept)},
    )


def _fit_polynomial(y: np.ndarray, degree: int, steps: int) -> TrendFittingResult:
    degree = max(1, min(int(degree), len(y) - 1))
    x = np.arange(len(y), dtype=float)
    coeffs = np.polyfit(x, y, degree)
    fitted = np.polyval(coeffs, x)
    future = np.arange(len(y), len(y) + steps, dtype=float)
    # np.polyfit returns highest power first.
    ascending = coeffs[::-1]
    return TrendFittingResult(
        trend_points=_points(fitted),
        predicted_points=_points(np.polyval(coeffs, future), start=len(y)),
        r_squared=r_squared(y, fitted),
        direction=_endpoint_direction(fitted),
        coefficients={f"a{i}": float(c) for i, c in enumerate(ascending)},
    )


def moving_average(y: np.ndarray, window: int) -> np.ndarray:
    """Centered moving average; windows shrink at the edges."""
    window = max(1, int(window))
    half = window // 2
    n = len(y)
    out = np.empty(n, dtype=float)
    for i in range(n):
        start = max(0, i - half)
        end = min(n, i + (window - half))
        out[i] = y[start:end].mean()
    return out


def exponential_moving_average(y: np.ndarray, alpha: float) -> np.ndarray:
    out = np.empty(len(y), dtype=float)
    ema = float(y[0])
    for i, value in enumerate(y):
        ema = alpha * float(value) + (1.0 - alpha) * ema
        out[i] = ema
    return out


def _smoothed_result(y: np.ndarray, fitted: np.ndarray, steps: int) -> TrendFittingResult:
    return TrendFittingResult(
        trend_points=_points(fitted),
        predicted_points=_flat_forecast(float(fitted[-1]), len(y), steps),
        r_squared=r_squared(y, fitted),
        direction=_endpoint_direction(fitted),
        coefficients=None,
    )


def fit_trend(
    series: Sequence[float | None],
    method: str = "linear",
    *,
    window: int = 3,
    alpha: float = 0.3,
    degree: int = 2,
    predict: bool = False,
    predict_steps: int = 0,
) -> TrendFittingResult:
    """
    Fit a trend to ``series`` with the named method.

    Non-finite values are dropped first. With fewer than two usable values
    the result is empty and ``stable`` with R^2 of 0.
    """
    if method not in TREND_METHODS:
        raise ValueError(f"Unsupported trend method: {method!r} (expected one of {TREND_METHODS})")
    if not 0 < alpha <= 1:
        raise ValueError("alpha must be in (0, 1]")

    y = _finite_values(series)
    if len(y) < 2:
        return TrendFittingResult(
            trend_points=[], predicted_points=[], r_squared=0.0, direction="stable"
        )

    steps = max(0, int(predict_steps)) if predict else 0
    if method == "linear":
        return _fit_linear(y, steps)
    if method == "polynomial":
        return _fit_polynomial(y, degree, steps)
    if method == "movingAverage":
        return _smoothed_result(y, moving_average(y, window), steps)
    return _smoothed_result(y, exponential_moving_average(y, alpha), steps)


def calculate_trend_rate(result: TrendFittingResult) -> float | None:
    """Percent change from the first to the last fitted value."""
    if not result.trend_points:
        return None
    first = result.trend_points[0].value
    if first == 0:
        return None
    last = result.trend_points[-1].value
    return (last - first) / abs(first) * 100.0


def describe_trend(result: TrendFittingResult) -> str:
    if result.direction == "stable":
        return "stable, no clear change"
    word = "rising" if result.direction == "increasing" else "falling"
    rate = calculate_trend_rate(result)
    if rate is None:
        return word
    magnitude = abs(rate)
    if magnitude < 5:
        qualifier = "slightly"
    elif magnitude < 15:
        qualifier = "steadily"
    elif magnitude < 30:
        qualifier = "markedly"
    else:
        qualifier = "sharply"
    return f"{qualifier} {word} ({rate:+.1f}%)"
