from __future__ import annotations

import math
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from insurance_kpi.analytics import ANOMALY_METHODS, anomaly_summary, detect_anomalies  # noqa: E402

BASELINE = [1, 2, 3, 2, 2, 3, 2]
STABLE = [10, 11, 10, 11, 11, 10, 11]


@pytest.mark.parametrize("method", ANOMALY_METHODS)
def test_stable_series_has_no_anomalies(method: str) -> None:
    assert detect_anomalies(STABLE, method) == []


def test_small_wobble_is_not_a_zscore_anomaly() -> None:
    assert detect_anomalies(BASELINE, "zscore") == []


def test_zscore_flags_single_spike() -> None:
    anomalies = detect_anomalies(BASELINE + [100], "zscore")

    assert len(anomalies) == 1
    assert anomalies[0].index == 7
    assert anomalies[0].type == "high"
    assert anomalies[0].method == "zscore"


@pytest.mark.parametrize("method", ["iqr", "mad"])
def test_robust_methods_flag_spike_and_dip(method: str) -> None:
    series = [10, 11, 10, 11, 11, 10, 11, 60, 10, -40]

    anomalies = detect_anomalies(series, method)

    by_index = {a.index: a.type for a in anomalies}
    assert by_index == {7: "high", 9: "low"}


def test_indices_refer_to_original_series() -> None:
    series = [1, None, 2, float("nan"), 3, 2, 2, 3, 2, 100]

    anomalies = detect_anomalies(series, "zscore")

    assert [a.index for a in anomalies] == [9]


def test_zscore_flags_spike_over_flat_baseline() -> None:
    anomalies = detect_anomalies([5, 5, 5, 5, 5, 5, 100], "zscore")

    assert [(a.index, a.type) for a in anomalies] == [(6, "high")]
    assert anomalies[0].score == math.inf
    assert anomalies[0].to_dict()["score"] is None


def test_too_few_points_returns_empty() -> None:
    assert detect_anomalies([1, 100, 1], "zscore") == []
    assert detect_anomalies([1, 1, 1, 1, 100], "zscore", min_data_points=6) == []


def test_constant_series_returns_empty() -> None:
    assert detect_anomalies([4, 4, 4, 4, 4, 4], "zscore") == []


def test_threshold_override() -> None:
    series = [10, 11, 10, 12, 11, 10, 11, 14]

    assert detect_anomalies(series, "zscore") != []
    assert detect_anomalies(series, "zscore", threshold=10.0) == []


def test_unknown_method_raises() -> None:
    with pytest.raises(ValueError):
        detect_anomalies(BASELINE, "isolation_forest")


def test_anomaly_summary_counts_by_type() -> None:
    series = BASELINE + [100]
    anomalies = detect_anomalies(series, "zscore")

    summary = anomaly_summary(series, anomalies)

    assert summary["total_points"] == 8
    assert summary["anomaly_count"] == 1
    assert summary["high_anomalies"] == 1
    assert summary["low_anomalies"] == 0
    assert summary["anomaly_rate"] == pytest.approx(12.5)
    assert summary["stats"]["median"] == pytest.approx(2.0)
