from __future__ import annotations

"""
Multi-dimensional record filtering.

Each dimension is an inclusion set; an empty set places no constraint. All
dimensions are ANDed.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Sequence

from .normalize import normalize_text
from .records import InsuranceRecord

VIEW_MODES = ("single", "trend")
DATA_VIEW_TYPES = ("current", "increment")


class FilterDimension(str, Enum):
    YEARS = "years"
    WEEKS = "weeks"
    ORGANIZATIONS = "organizations"
    INSURANCE_TYPES = "insurance_types"
    BUSINESS_TYPES = "business_types"
    COVERAGE_TYPES = "coverage_types"
    CUSTOMER_CATEGORIES = "customer_categories"
    VEHICLE_GRADES = "vehicle_grades"
    TERMINAL_SOURCES = "terminal_sources"
    RENEWAL_STATUSES = "renewal_statuses"
    IS_NEW_ENERGY = "is_new_energy"


# Dimension -> record attribute.
DIMENSION_FIELDS: dict[FilterDimension, str] = {
    FilterDimension.YEARS: "policy_start_year",
    FilterDimension.WEEKS: "week_number",
    FilterDimension.ORGANIZATIONS: "third_level_organization",
    FilterDimension.INSURANCE_TYPES: "insurance_type",
    FilterDimension.BUSINESS_TYPES: "business_type_category",
    FilterDimension.COVERAGE_TYPES: "coverage_type",
    FilterDimension.CUSTOMER_CATEGORIES: "customer_category_3",
    FilterDimension.VEHICLE_GRADES: "vehicle_insurance_grade",
    FilterDimension.TERMINAL_SOURCES: "terminal_source",
    FilterDimension.RENEWAL_STATUSES: "renewal_status",
    FilterDimension.IS_NEW_ENERGY: "is_new_energy_vehicle",
}

_NORMALIZED_DIMENSIONS = frozenset(
    {
        FilterDimension.ORGANIZATIONS,
        FilterDimension.BUSINESS_TYPES,
        FilterDimension.CUSTOMER_CATEGORIES,
        FilterDimension.TERMINAL_SOURCES,
    }
)
_INT_DIMENSIONS = frozenset({FilterDimension.YEARS, FilterDimension.WEEKS})


@dataclass(frozen=True)
class FilterState:
    """
    Immutable filter selection.

    - view_mode: ``single`` (one week) or ``trend`` (several weeks)
    - data_view_type: ``current`` (cumulative) or ``increment`` (week-over-week)
    - is_new_energy: None ignores the flag
    """

    years: frozenset[int] = frozenset()
    weeks: frozenset[int] = frozenset()
    organizations: frozenset[str] = frozenset()
    insurance_types: frozenset[str] = frozenset()
    business_types: frozenset[str] = frozenset()
    coverage_types: frozenset[str] = frozenset()
    customer_categories: frozenset[str] = frozenset()
    vehicle_grades: frozenset[str] = frozenset()
    terminal_sources: frozenset[str] = frozenset()
    renewal_statuses: frozenset[str] = frozenset()
    is_new_energy: bool | None = None
    view_mode: str = "single"
    data_view_type: str = "current"
    single_mode_week: int | None = None
    trend_mode_weeks: tuple[int, ...] = field(default_factory=tuple)

    def selection(self, dimension: FilterDimension) -> frozenset:
        if dimension is FilterDimension.IS_NEW_ENERGY:
            return frozenset() if self.is_new_energy is None else frozenset({self.is_new_energy})
        return getattr(self, dimension.value)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for dimension in FilterDimension:
            if dimension is FilterDimension.IS_NEW_ENERGY:
                payload[dimension.value] = self.is_new_energy
            else:
                payload[dimension.value] = sorted(getattr(self, dimension.value), key=str)
        payload["view_mode"] = self.view_mode
        payload["data_view_type"] = self.data_view_type
        payload["single_mode_week"] = self.single_mode_week
        payload["trend_mode_weeks"] = list(self.trend_mode_weeks)
        return payload

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "FilterState":
        """
        Build a FilterState from a config mapping.

        Missing keys keep their defaults; a scalar is accepted where a list is
        expected.
        """
        cfg = dict(data or {})
        kwargs: dict[str, Any] = {}
        for dimension in FilterDimension:
            if dimension is FilterDimension.IS_NEW_ENERGY:
                continue
            values = _as_list(cfg.get(dimension.value))
            if dimension in _INT_DIMENSIONS:
                kwargs[dimension.value] = frozenset(int(v) for v in values)
            elif dimension in _NORMALIZED_DIMENSIONS:
                kwargs[dimension.value] = frozenset(normalize_text(str(v)) for v in values)
            else:
                kwargs[dimension.value] = frozenset(str(v).strip() for v in values)

        raw_flag = cfg.get("is_new_energy")
        kwargs["is_new_energy"] = None if raw_flag is None else bool(raw_flag)

        view_mode = str(cfg.get("view_mode", "single"))
        if view_mode not in VIEW_MODES:
            raise ValueError(f"view_mode must be one of {VIEW_MODES}, got {view_mode!r}")
        data_view_type = str(cfg.get("data_view_type", "current"))
        if data_view_type not in DATA_VIEW_TYPES:
            raise ValueError(
                f"data_view_type must be one of {DATA_VIEW_TYPES}, got {data_view_type!r}"
            )
        single_week = cfg.get("single_mode_week")
        return cls(
            **kwargs,
            view_mode=view_mode,
            data_view_type=data_view_type,
            single_mode_week=None if single_week is None else int(single_week),
            trend_mode_weeks=tuple(int(v) for v in _as_list(cfg.get("trend_mode_weeks"))),
        )


def _as_list(value: object) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def _record_value(record: InsuranceRecord, dimension: FilterDimension) -> object:
    value = getattr(record, DIMENSION_FIELDS[dimension])
    if dimension in _NORMALIZED_DIMENSIONS:
        return normalize_text(value)
    return value


def _dimension_predicate(
    dimension: FilterDimension, selected: frozenset
) -> Callable[[InsuranceRecord], bool]:
    if dimension in _NORMALIZED_DIMENSIONS:
        wanted = frozenset(normalize_text(str(v)) for v in selected)
        return lambda r: _record_value(r, dimension) in wanted
    if dimension is FilterDimension.VEHICLE_GRADES:
        # Records without a grade are not constrained by a grade selection.
        return lambda r: r.vehicle_insurance_grade is None or r.vehicle_insurance_grade in selected
    return lambda r: _record_value(r, dimension) in selected


def filter_records(
    records: Iterable[InsuranceRecord],
    filters: FilterState,
    excluded_dimensions: Sequence[FilterDimension | str] = (),
) -> list[InsuranceRecord]:
    excluded = {FilterDimension(d) for d in excluded_dimensions}
    predicates = [
        _dimension_predicate(dimension, filters.selection(dimension))
        for dimension in FilterDimension
        if dimension not in excluded and filters.selection(dimension)
    ]
    return [r for r in records if all(check(r) for check in predicates)]


def available_values(
    records: Iterable[InsuranceRecord],
    filters: FilterState,
    dimension: FilterDimension | str,
) -> list:
    """
    Distinct values of ``dimension`` left by every other active filter.

    Used for cascading option lists. Records without a value are skipped.
    """
    dim = FilterDimension(dimension)
    remaining = filter_records(records, filters, excluded_dimensions=[dim])
    values = {_record_value(r, dim) for r in remaining}
    values.discard(None)
    values.discard("")
    return sorted(values, key=lambda v: (str(type(v)), v))


def previous_period_filters(filters: FilterState) -> FilterState | None:
    """
    Shift the selected weeks back by one.

    Returns None when no week would remain (e.g. only week 1 selected or no
    week selection at all).
    """
    weeks = frozenset(w - 1 for w in filters.weeks if w - 1 >= 1)
    if not weeks:
        return None
    single = filters.single_mode_week
    return replace(
        filters,
        weeks=weeks,
        single_mode_week=None if single is None or single - 1 < 1 else single - 1,
        trend_mode_weeks=tuple(w - 1 for w in filters.trend_mode_weeks if w - 1 >= 1),
    )


def records_for_week(records: Iterable[InsuranceRecord], week_number: int) -> list[InsuranceRecord]:
    return [r for r in records if r.week_number == int(week_number)]


def records_for_week_range(
    records: Iterable[InsuranceRecord], start_week: int, end_week: int
) -> list[InsuranceRecord]:
    lo, hi = sorted((int(start_week), int(end_week)))
    return [r for r in records if lo <= r.week_number <= hi]
