from .anomaly import ANOMALY_METHODS, AnomalyPoint, anomaly_summary, detect_anomalies
from .trend import (
    TREND_METHODS,
    TrendFittingResult,
    TrendPoint,
    calculate_trend_rate,
    describe_trend,
    fit_trend,
)

__all__ = [
    "ANOMALY_METHODS",
    "AnomalyPoint",
    "anomaly_summary",
    "detect_anomalies",
    "TREND_METHODS",
    "TrendFittingResult",
    "TrendPoint",
    "calculate_trend_rate",
    "describe_trend",
    "fit_trend",
]
