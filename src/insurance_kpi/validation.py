from __future__ import annotations

"""
Configuration validation helpers.

Fail fast on settings that would make a run meaningless, and surface
unknown or suspicious keys as warnings.
"""

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Mapping

from .analytics.anomaly import ANOMALY_METHODS
from .analytics.trend import TREND_METHODS
from .filters import DATA_VIEW_TYPES, VIEW_MODES, FilterDimension
from .schema import DEFAULT_ENUM_VALUES


@dataclass(frozen=True)
class ValidationIssue:
    level: str  # "warning" | "error"
    code: str
    path: str
    message: str


_KNOWN_TOP_LEVEL_KEYS = {
    "inputs",
    "parser",
    "filters",
    "kpi",
    "analytics",
    "enum_defaults",
    "outputs",
}

_FILTER_KEYS = {d.value for d in FilterDimension} | {
    "view_mode",
    "data_view_type",
    "single_mode_week",
    "trend_mode_weeks",
}


def _as_mapping(value: object) -> Mapping[str, object]:
    if isinstance(value, Mapping):
        return value
    return {}


def _add_issue(
    issues: list[ValidationIssue],
    *,
    level: str,
    code: str,
    path: str,
    message: str,
) -> None:
    issues.append(ValidationIssue(level=level, code=code, path=path, message=message))


def _as_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def _validate_top_level_keys(config: Mapping[str, object], issues: list[ValidationIssue]) -> None:
    for key in sorted(config.keys()):
        if key not in _KNOWN_TOP_LEVEL_KEYS:
            _add_issue(
                issues,
                level="warning",
                code="unknown_top_level_key",
                path=str(key),
                message="Unknown top-level key. Check for typos or stale settings.",
            )


def _validate_inputs(config: Mapping[str, object], issues: list[ValidationIssue]) -> None:
    inputs = config.get("inputs")
    if inputs is None:
        _add_issue(
            issues,
            level="warning",
            code="missing_inputs",
            path="inputs",
            message="No input CSV files are configured.",
        )
        return
    if isinstance(inputs, str):
        return
    if not isinstance(inputs, list):
        _add_issue(
            issues,
            level="error",
            code="invalid_inputs_type",
            path="inputs",
            message="inputs must be a list of CSV paths.",
        )
        return
    for index, entry in enumerate(inputs):
        if not isinstance(entry, str) or not entry.strip():
            _add_issue(
                issues,
                level="error",
                code="invalid_input_entry",
                path=f"inputs[{index}]",
                message="Each input must be a non-empty path string.",
            )


def _validate_parser_settings(config: Mapping[str, object], issues: list[ValidationIssue]) -> None:
    parser = _as_mapping(config.get("parser"))
    if "chunk_size" in parser:
        chunk_size = _as_int(parser.get("chunk_size"))
        if chunk_size is None or chunk_size <= 0:
            _add_issue(
                issues,
                level="error",
                code="invalid_chunk_size",
                path="parser.chunk_size",
                message="chunk_size must be a positive integer.",
            )
    if "max_error_rows" in parser:
        max_errors = _as_int(parser.get("max_error_rows"))
        if max_errors is None or max_errors < 0:
            _add_issue(
                issues,
                level="error",
                code="invalid_max_error_rows",
                path="parser.max_error_rows",
                message="max_error_rows must be an integer >= 0.",
            )
    today = parser.get("today")
    if today is not None and not isinstance(today, date):
        try:
            date.fromisoformat(str(today))
        except ValueError:
            _add_issue(
                issues,
                level="error",
                code="invalid_today",
                path="parser.today",
                message="today must be an ISO date (YYYY-MM-DD).",
            )


def _validate_filter_settings(config: Mapping[str, object], issues: list[ValidationIssue]) -> None:
    filters = _as_mapping(config.get("filters"))
    for key in sorted(filters.keys()):
        if key not in _FILTER_KEYS:
            _add_issue(
                issues,
                level="warning",
                code="unknown_filter_key",
                path=f"filters.{key}",
                message="Unknown filter key; it will be ignored.",
            )
    view_mode = filters.get("view_mode")
    if view_mode is not None and str(view_mode) not in VIEW_MODES:
        _add_issue(
            issues,
            level="error",
            code="invalid_view_mode",
            path="filters.view_mode",
            message=f"view_mode must be one of {', '.join(VIEW_MODES)}.",
        )
    data_view_type = filters.get("data_view_type")
    if data_view_type is not None and str(data_view_type) not in DATA_VIEW_TYPES:
        _add_issue(
            issues,
            level="error",
            code="invalid_data_view_type",
            path="filters.data_view_type",
            message=f"data_view_type must be one of {', '.join(DATA_VIEW_TYPES)}.",
        )
    if str(data_view_type) == "increment" and not filters.get("weeks"):
        _add_issue(
            issues,
            level="warning",
            code="increment_without_weeks",
            path="filters.weeks",
            message="Increment view without a week selection compares against an empty period.",
        )


def _validate_analytics_settings(
    config: Mapping[str, object], issues: list[ValidationIssue]
) -> None:
    analytics = _as_mapping(config.get("analytics"))
    method = analytics.get("trend_method")
    if method is not None and str(method) not in TREND_METHODS:
        _add_issue(
            issues,
            level="error",
            code="unsupported_trend_method",
            path="analytics.trend_method",
            message=f"trend_method must be one of {', '.join(TREND_METHODS)}.",
        )
    anomaly = analytics.get("anomaly_method")
    if anomaly is not None and str(anomaly) not in ANOMALY_METHODS:
        _add_issue(
            issues,
            level="error",
            code="unsupported_anomaly_method",
            path="analytics.anomaly_method",
            message=f"anomaly_method must be one of {', '.join(ANOMALY_METHODS)}.",
        )
    alpha = analytics.get("alpha")
    if alpha is not None:
        try:
            alpha_value = float(alpha)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            alpha_value = -1.0
        if not 0.0 < alpha_value <= 1.0:
            _add_issue(
                issues,
                level="error",
                code="invalid_alpha",
                path="analytics.alpha",
                message="alpha must be in (0, 1].",
            )


def _validate_enum_defaults(config: Mapping[str, object], issues: list[ValidationIssue]) -> None:
    defaults = _as_mapping(config.get("enum_defaults"))
    for key in sorted(defaults.keys()):
        if key not in DEFAULT_ENUM_VALUES:
            _add_issue(
                issues,
                level="warning",
                code="unknown_enum_default",
                path=f"enum_defaults.{key}",
                message="No enum field with this name; the default is ignored.",
            )


def validate_config(config: Mapping[str, object]) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    _validate_top_level_keys(config, issues)
    _validate_inputs(config, issues)
    _validate_parser_settings(config, issues)
    _validate_filter_settings(config, issues)
    _validate_analytics_settings(config, issues)
    _validate_enum_defaults(config, issues)
    return issues


def has_validation_errors(issues: Iterable[ValidationIssue]) -> bool:
    return any(issue.level == "error" for issue in issues)


def format_validation_issues(
    issues: Iterable[ValidationIssue],
    *,
    prefix: str = "config_validation",
) -> list[str]:
    lines: list[str] = []
    for issue in issues:
        lines.append(f"{prefix}:{issue.level}: [{issue.code}] {issue.path} - {issue.message}")
    return lines
