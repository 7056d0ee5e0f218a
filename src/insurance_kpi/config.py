from __future__ import annotations

"""
Configuration helpers for KPI runs.

A run config is a YAML mapping; every section is optional and falls back to
the defaults below.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Mapping

from .analytics.anomaly import DEFAULT_THRESHOLDS
from .filters import FilterState
from .kpi import KPIOptions
from .parser import DEFAULT_CHUNK_SIZE, DEFAULT_MAX_ERROR_ROWS, DEFAULT_MAX_WARNING_MESSAGES


def _as_mapping(value: object) -> Mapping[str, object]:
    if isinstance(value, Mapping):
        return value
    return {}


@dataclass(frozen=True)
class ParserSettings:
    """
    CSV parsing settings.

    Units
    - chunk_size: rows per chunk
    - max_error_rows: row errors kept for display
    - max_warning_messages: warning messages kept for display
    - today: upper bound for snapshot dates (None = current date)
    """

    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_error_rows: int = DEFAULT_MAX_ERROR_ROWS
    max_warning_messages: int = DEFAULT_MAX_WARNING_MESSAGES
    parallel: bool = True
    today: date | None = None


@dataclass(frozen=True)
class AnalyticsSettings:
    """
    Trend and anomaly settings.

    Units
    - window: points in the moving-average window
    - alpha: EMA smoothing factor (0, 1]
    - predict_steps: weeks to forecast past the last point
    - anomaly_threshold: None uses the method default
    """

    metric: str = "loss_ratio"
    trend_method: str = "linear"
    window: int = 3
    alpha: float = 0.3
    degree: int = 2
    predict_steps: int = 0
    anomaly_method: str = "zscore"
    anomaly_threshold: float | None = None
    min_data_points: int = 5

    def effective_threshold(self) -> float:
        if self.anomaly_threshold is not None:
            return float(self.anomaly_threshold)
        return DEFAULT_THRESHOLDS.get(self.anomaly_method, 3.0)


@dataclass(frozen=True)
class OutputSettings:
    summary_path: str | None = None
    log_path: str | None = None


@dataclass(frozen=True)
class RunSettings:
    inputs: list[str]
    parser: ParserSettings
    filters: FilterState
    kpi: KPIOptions
    analytics: AnalyticsSettings
    enum_defaults: dict[str, str] = field(default_factory=dict)
    outputs: OutputSettings = field(default_factory=OutputSettings)


def _optional_date(value: object) -> date | None:
    if value is None:
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def load_parser_settings(config: Mapping[str, object]) -> ParserSettings:
    cfg = _as_mapping(config.get("parser"))
    defaults = ParserSettings()
    settings = ParserSettings(
        chunk_size=int(cfg.get("chunk_size", defaults.chunk_size)),
        max_error_rows=int(cfg.get("max_error_rows", defaults.max_error_rows)),
        max_warning_messages=int(cfg.get("max_warning_messages", defaults.max_warning_messages)),
        parallel=bool(cfg.get("parallel", defaults.parallel)),
        today=_optional_date(cfg.get("today")),
    )
    if settings.chunk_size <= 0:
        raise ValueError("parser.chunk_size must be positive.")
    if settings.max_error_rows < 0:
        raise ValueError("parser.max_error_rows must be non-negative.")
    return settings


def load_analytics_settings(config: Mapping[str, object]) -> AnalyticsSettings:
    cfg = _as_mapping(config.get("analytics"))
    defaults = AnalyticsSettings()
    threshold = cfg.get("anomaly_threshold")
    return AnalyticsSettings(
        metric=str(cfg.get("metric", defaults.metric)),
        trend_method=str(cfg.get("trend_method", defaults.trend_method)),
        window=int(cfg.get("window", defaults.window)),
        alpha=float(cfg.get("alpha", defaults.alpha)),
        degree=int(cfg.get("degree", defaults.degree)),
        predict_steps=int(cfg.get("predict_steps", defaults.predict_steps)),
        anomaly_method=str(cfg.get("anomaly_method", defaults.anomaly_method)),
        anomaly_threshold=None if threshold is None else float(threshold),
        min_data_points=int(cfg.get("min_data_points", defaults.min_data_points)),
    )


def load_settings(config: Mapping[str, object]) -> RunSettings:
    """
    Read a full run configuration.

    The KPI mode follows ``filters.data_view_type``.
    """
    raw_inputs = config.get("inputs", [])
    if isinstance(raw_inputs, str):
        raw_inputs = [raw_inputs]
    if not isinstance(raw_inputs, list):
        raise ValueError("inputs must be a list of CSV paths.")

    filters = FilterState.from_mapping(_as_mapping(config.get("filters")))
    kpi = KPIOptions.from_mapping(_as_mapping(config.get("kpi")), mode=filters.data_view_type)
    if kpi.current_week_number is None and filters.single_mode_week is not None:
        kpi = KPIOptions(
            annual_target_yuan=kpi.annual_target_yuan,
            mode=kpi.mode,
            current_week_number=filters.single_mode_week,
            year=kpi.year,
            policy_count_target=kpi.policy_count_target,
        )

    outputs_cfg = _as_mapping(config.get("outputs"))
    summary_path = outputs_cfg.get("summary_path")
    log_path = outputs_cfg.get("log_path")

    return RunSettings(
        inputs=[str(item) for item in raw_inputs],
        parser=load_parser_settings(config),
        filters=filters,
        kpi=kpi,
        analytics=load_analytics_settings(config),
        enum_defaults={
            str(k): str(v) for k, v in _as_mapping(config.get("enum_defaults")).items()
        },
        outputs=OutputSettings(
            summary_path=None if summary_path is None else str(summary_path),
            log_path=None if log_path is None else str(log_path),
        ),
    )
