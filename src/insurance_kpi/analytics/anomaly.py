from __future__ import annotations

"""
Outlier detection for weekly KPI series.

Thresholds are fixed heuristics: Z-score 3, IQR fence 1.5, modified Z-score
(MAD) 3.
"""

from dataclasses import dataclass
import math
from typing import Any, Sequence

import numpy as np

ANOMALY_METHODS: tuple[str, ...] = ("zscore", "iqr", "mad")

DEFAULT_THRESHOLDS: dict[str, float] = {"zscore": 3.0, "iqr": 1.5, "mad": 3.0}
MAD_SCALE = 1.4826


@dataclass(frozen=True)
class AnomalyPoint:
    """
    - index: position in the input series (before non-finite values are dropped)
    - score: method-specific distance (Z units, IQR units, modified Z units);
      inf when every other point is identical
    - type: ``high`` or ``low``
    """

    index: int
    value: float
    score: float
    type: str
    method: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "value": self.value,
            "score": self.score if math.isfinite(self.score) else None,
            "type": self.type,
            "method": self.method,
        }


def _finite_points(series: Sequence[float | None]) -> tuple[np.ndarray, np.ndarray]:
    indices: list[int] = []
    values: list[float] = []
    for i, v in enumerate(series):
        if v is None:
            continue
        value = float(v)
        if math.isfinite(value):
            indices.append(i)
            values.append(value)
    return np.asarray(indices, dtype=int), np.asarray(values, dtype=float)


def _zscore(idx: np.ndarray, y: np.ndarray, threshold: float) -> list[AnomalyPoint]:
    if float(np.std(y)) == 0:
        return []
    n = len(y)
    total = float(y.sum())
    total_sq = float((y**2).sum())
    found: list[AnomalyPoint] = []
    for i, value in enumerate(y):
        # Leave-one-out mean and deviation.
        rest_mean = (total - value) / (n - 1)
        rest_var = max(0.0, (total_sq - value**2) / (n - 1) - rest_mean**2)
        rest_std = math.sqrt(rest_var)
        if rest_std == 0:
            # Flat remainder: any departure from it is unbounded.
            score = math.inf if value != rest_mean else 0.0
        else:
            score = abs(value - rest_mean) / rest_std
        if score > threshold:
            found.append(
                AnomalyPoint(
                    index=int(idx[i]),
                    value=float(value),
                    score=score,
                    type="high" if value > rest_mean else "low",
                    method="zscore",
                )
            )
    return found


def _iqr(idx: np.ndarray, y: np.ndarray, threshold: float) -> list[AnomalyPoint]:
    q1, q3 = (float(q) for q in np.percentile(y, [25, 75]))
    spread = q3 - q1
    if spread == 0:
        return []
    lower = q1 - threshold * spread
    upper = q3 + threshold * spread
    found: list[AnomalyPoint] = []
    for i, value in enumerate(y):
        if value > upper:
            found.append(
                AnomalyPoint(int(idx[i]), float(value), (value - q3) / spread, "high", "iqr")
            )
        elif value < lower:
            found.append(
                AnomalyPoint(int(idx[i]), float(value), (q1 - value) / spread, "low", "iqr")
            )
    return found


def _mad(idx: np.ndarray, y: np.ndarray, threshold: float) -> list[AnomalyPoint]:
    median = float(np.median(y))
    mad = float(np.median(np.abs(y - median)))
    if mad == 0:
        return []
    found: list[AnomalyPoint] = []
    for i, value in enumerate(y):
        score = MAD_SCALE * abs(value - median) / mad
        if score > threshold:
            found.append(
                AnomalyPoint(
                    index=int(idx[i]),
                    value=float(value),
                    score=score,
                    type="high" if value > median else "low",
                    method="mad",
                )
            )
    return found


def detect_anomalies(
    series: Sequence[float | None],
    method: str = "zscore",
    *,
    threshold: float | None = None,
    min_data_points: int = 5,
) -> list[AnomalyPoint]:
    """
    Flag outliers in ``series``.

    Returns an empty list when fewer than ``min_data_points`` finite values
    are present or when the series has no spread.
    """
    if method not in ANOMALY_METHODS:
        raise ValueError(
            f"Unsupported anomaly method: {method!r} (expected one of {ANOMALY_METHODS})"
        )
    idx, y = _finite_points(series)
    if len(y) < max(2, int(min_data_points)):
        return []
    limit = DEFAULT_THRESHOLDS[method] if threshold is None else float(threshold)
    if method == "zscore":
        return _zscore(idx, y, limit)
    if method == "iqr":
        return _iqr(idx, y, limit)
    return _mad(idx, y, limit)


def series_statistics(series: Sequence[float | None]) -> dict[str, float]:
    _, y = _finite_points(series)
    if len(y) == 0:
        return dict.fromkeys(("mean", "median", "std_dev", "q1", "q3", "iqr", "mad"), 0.0)
    q1, q3 = (float(q) for q in np.percentile(y, [25, 75]))
    median = float(np.median(y))
    return {
        "mean": float(y.mean()),
        "median": median,
        "std_dev": float(np.std(y)),
        "q1": q1,
        "q3": q3,
        "iqr": q3 - q1,
        "mad": float(np.median(np.abs(y - median))),
    }


def anomaly_summary(
    series: Sequence[float | None], anomalies: Sequence[AnomalyPoint]
) -> dict[str, Any]:
    total = len(series)
    return {
        "total_points": total,
        "anomaly_count": len(anomalies),
        "anomaly_rate": (len(anomalies) / total * 100.0) if total else 0.0,
        "high_anomalies": sum(1 for a in anomalies if a.type == "high"),
        "low_anomalies": sum(1 for a in anomalies if a.type == "low"),
        "stats": series_statistics(series),
    }
