from __future__ import annotations

"""
KPI aggregation engine.

Records are summed into an ``Aggregation`` (yuan and counts), and every KPI
is derived from those sums. Ratios are recomputed from sums rather than
averaged, so group results add up to the whole for absolute metrics only.

Units
- absolute monetary metrics: 万元 (yuan / 10,000), not rounded
- ratios: percent, except autonomy_coefficient (plain ratio)
- averages: yuan per policy / per claim
"""

from dataclasses import asdict, dataclass, fields, replace
import logging
from typing import Any, Iterable, Mapping, Sequence

from .dates import time_progress
from .filters import (
    DIMENSION_FIELDS,
    FilterDimension,
    FilterState,
    filter_records,
    previous_period_filters,
)
from .records import InsuranceRecord

logger = logging.getLogger(__name__)

YUAN_PER_WAN = 10_000.0
MODES = ("current", "increment")
FLAT_THRESHOLD = 1e-9


@dataclass(frozen=True)
class Aggregation:
    """
    Raw sums over a record set.

    Units
    - *_yuan: CNY (yuan)
    - policy_count / claim_case_count / record_count: count
    """

    signed_premium_yuan: float = 0.0
    matured_premium_yuan: float = 0.0
    reported_claim_payment_yuan: float = 0.0
    expense_amount_yuan: float = 0.0
    commercial_premium_before_discount_yuan: float = 0.0
    premium_plan_yuan: float = 0.0
    marginal_contribution_amount_yuan: float = 0.0
    policy_count: int = 0
    claim_case_count: int = 0
    record_count: int = 0

    def __sub__(self, other: "Aggregation") -> "Aggregation":
        return Aggregation(
            **{f.name: getattr(self, f.name) - getattr(other, f.name) for f in fields(self)}
        )

    def __add__(self, other: "Aggregation") -> "Aggregation":
        return Aggregation(
            **{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)}
        )


def aggregate(records: Iterable[InsuranceRecord]) -> Aggregation:
    signed = matured = claims_paid = expense = before_discount = plan = contribution = 0.0
    policies = claim_cases = count = 0
    for r in records:
        signed += r.signed_premium_yuan
        matured += r.matured_premium_yuan
        claims_paid += r.reported_claim_payment_yuan
        expense += r.expense_amount_yuan
        before_discount += r.commercial_premium_before_discount_yuan
        plan += r.premium_plan_yuan or 0.0
        contribution += r.marginal_contribution_amount_yuan
        policies += r.policy_count
        claim_cases += r.claim_case_count
        count += 1
    return Aggregation(
        signed_premium_yuan=signed,
        matured_premium_yuan=matured,
        reported_claim_payment_yuan=claims_paid,
        expense_amount_yuan=expense,
        commercial_premium_before_discount_yuan=before_discount,
        premium_plan_yuan=plan,
        marginal_contribution_amount_yuan=contribution,
        policy_count=policies,
        claim_case_count=claim_cases,
        record_count=count,
    )


@dataclass(frozen=True)
class KPIOptions:
    """
    Calculation options.

    Units
    - annual_target_yuan: CNY; overrides the summed premium plan
    - policy_count_target: count per year
    - year / current_week_number: default to the latest in the data
    """

    annual_target_yuan: float | None = None
    mode: str = "current"
    current_week_number: int | None = None
    year: int | None = None
    policy_count_target: int | None = None

    def __post_init__(self) -> None:
        if self.mode not in MODES:
            raise ValueError(f"mode must be one of {MODES}, got {self.mode!r}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None, *, mode: str = "current") -> "KPIOptions":
        cfg = dict(data or {})
        target = cfg.get("annual_target_yuan")
        count_target = cfg.get("policy_count_target")
        week = cfg.get("current_week_number")
        year = cfg.get("year")
        return cls(
            annual_target_yuan=None if target is None else float(target),
            mode=str(cfg.get("mode", mode)),
            current_week_number=None if week is None else int(week),
            year=None if year is None else int(year),
            policy_count_target=None if count_target is None else int(count_target),
        )


@dataclass(frozen=True)
class KPIResult:
    signed_premium: float
    matured_premium: float
    reported_claim_payment: float
    expense_amount: float
    contribution_margin_amount: float
    policy_count: int
    claim_case_count: int

    loss_ratio: float | None
    expense_ratio: float | None
    maturity_ratio: float | None
    contribution_margin_ratio: float | None
    variable_cost_ratio: float | None
    matured_claim_ratio: float | None
    autonomy_coefficient: float | None
    premium_progress: float | None
    policy_count_progress: float | None

    average_premium: float | None
    average_claim: float | None
    average_expense: float | None
    average_contribution: float | None

    annual_premium_target: float | None
    annual_policy_count_target: int | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def get(self, key: str) -> float | int | None:
        if key not in _METRIC_NAMES:
            raise KeyError(f"Unknown KPI metric: {key}")
        return getattr(self, key)

    @staticmethod
    def absolute_fields() -> tuple[str, ...]:
        return ABSOLUTE_FIELDS

    @staticmethod
    def ratio_fields() -> tuple[str, ...]:
        return RATIO_FIELDS


ABSOLUTE_FIELDS: tuple[str, ...] = (
    "signed_premium",
    "matured_premium",
    "reported_claim_payment",
    "expense_amount",
    "contribution_margin_amount",
    "policy_count",
    "claim_case_count",
)

RATIO_FIELDS: tuple[str, ...] = (
    "loss_ratio",
    "expense_ratio",
    "maturity_ratio",
    "contribution_margin_ratio",
    "variable_cost_ratio",
    "matured_claim_ratio",
    "autonomy_coefficient",
    "premium_progress",
    "policy_count_progress",
    "average_premium",
    "average_claim",
    "average_expense",
    "average_contribution",
)

TARGET_FIELDS: tuple[str, ...] = ("annual_premium_target", "annual_policy_count_target")

_METRIC_NAMES = frozenset(ABSOLUTE_FIELDS + RATIO_FIELDS + TARGET_FIELDS)


def _divide(numerator: float, denominator: float, flat_zero: bool = False) -> float | None:
    """
    numerator / denominator, or None when the denominator is zero.

    With ``flat_zero`` a zero numerator over a zero denominator gives 0.0
    (an unchanged delta).
    """
    if denominator == 0:
        if flat_zero and numerator == 0:
            return 0.0
        return None
    return numerator / denominator


def _percent(numerator: float, denominator: float, flat_zero: bool = False) -> float | None:
    value = _divide(numerator, denominator, flat_zero)
    return None if value is None else value * 100.0


def empty_kpi_result() -> KPIResult:
    """All absolutes zero, every ratio and target unset."""
    return KPIResult(
        **{name: 0 for name in ABSOLUTE_FIELDS},
        **{name: None for name in RATIO_FIELDS + TARGET_FIELDS},
    )


def compute_kpis(
    agg: Aggregation,
    options: KPIOptions | None = None,
    *,
    year: int | None = None,
    week_number: int | None = None,
    flat_zero: bool = False,
) -> KPIResult:
    """
    Derive every KPI from one aggregation.

    ``flat_zero`` is used for week-over-week deltas, where 0/0 means no
    change rather than undefined.
    """
    opts = options or KPIOptions()

    loss_ratio = _percent(agg.reported_claim_payment_yuan, agg.matured_premium_yuan, flat_zero)
    expense_ratio = _percent(agg.expense_amount_yuan, agg.signed_premium_yuan, flat_zero)
    maturity_ratio = _percent(agg.matured_premium_yuan, agg.signed_premium_yuan, flat_zero)
    contribution_margin_ratio = _percent(
        agg.marginal_contribution_amount_yuan, agg.matured_premium_yuan, flat_zero
    )

    if expense_ratio is None and loss_ratio is None:
        variable_cost_ratio = None
    else:
        variable_cost_ratio = (expense_ratio or 0.0) + (loss_ratio or 0.0)

    # Kept as (claims / policies) x maturity ratio, the established business convention.
    claim_frequency = _divide(agg.claim_case_count, agg.policy_count, flat_zero)
    if claim_frequency is None or maturity_ratio is None:
        matured_claim_ratio = None
    else:
        matured_claim_ratio = claim_frequency * (maturity_ratio / 100.0) * 100.0

    autonomy_coefficient = _divide(
        agg.signed_premium_yuan, agg.commercial_premium_before_discount_yuan, flat_zero
    )

    progress = 0.0
    if year is not None and week_number is not None:
        progress = time_progress(year, week_number)

    if opts.annual_target_yuan is not None:
        plan_yuan = max(0.0, float(opts.annual_target_yuan))
    else:
        plan_yuan = agg.premium_plan_yuan
    completion = _divide(agg.signed_premium_yuan, plan_yuan, flat_zero)
    premium_progress = None
    if completion is not None and progress > 0:
        premium_progress = completion / progress * 100.0

    count_target = None
    if opts.policy_count_target is not None:
        count_target = max(0, int(round(opts.policy_count_target)))
    policy_count_progress = None
    if count_target is not None:
        count_completion = _divide(agg.policy_count, count_target, flat_zero)
        if count_completion is not None and progress > 0:
            policy_count_progress = count_completion / progress * 100.0

    return KPIResult(
        signed_premium=agg.signed_premium_yuan / YUAN_PER_WAN,
        matured_premium=agg.matured_premium_yuan / YUAN_PER_WAN,
        reported_claim_payment=agg.reported_claim_payment_yuan / YUAN_PER_WAN,
        expense_amount=agg.expense_amount_yuan / YUAN_PER_WAN,
        contribution_margin_amount=agg.marginal_contribution_amount_yuan / YUAN_PER_WAN,
        policy_count=int(agg.policy_count),
        claim_case_count=int(agg.claim_case_count),
        loss_ratio=loss_ratio,
        expense_ratio=expense_ratio,
        maturity_ratio=maturity_ratio,
        contribution_margin_ratio=contribution_margin_ratio,
        variable_cost_ratio=variable_cost_ratio,
        matured_claim_ratio=matured_claim_ratio,
        autonomy_coefficient=autonomy_coefficient,
        premium_progress=premium_progress,
        policy_count_progress=policy_count_progress,
        average_premium=_divide(agg.signed_premium_yuan, agg.policy_count, flat_zero),
        average_claim=_divide(agg.reported_claim_payment_yuan, agg.claim_case_count, flat_zero),
        average_expense=_divide(agg.expense_amount_yuan, agg.policy_count, flat_zero),
        average_contribution=_divide(
            agg.marginal_contribution_amount_yuan, agg.policy_count, flat_zero
        ),
        annual_premium_target=plan_yuan / YUAN_PER_WAN if plan_yuan > 0 else None,
        annual_policy_count_target=count_target,
    )


def _period(
    records: Sequence[InsuranceRecord], options: KPIOptions
) -> tuple[int | None, int | None]:
    year = options.year
    week = options.current_week_number
    if year is None and records:
        year = max(r.policy_start_year for r in records)
    if week is None and records:
        week = max(r.week_number for r in records)
    return year, week


def calculate(
    records: Iterable[InsuranceRecord],
    options: KPIOptions | None = None,
    *,
    previous: Iterable[InsuranceRecord] | None = None,
) -> KPIResult | None:
    """
    KPIs for ``records``; None when the record set is empty.

    In ``increment`` mode the result describes ``records`` minus ``previous``
    (an absent previous period counts as empty).
    """
    items = list(records)
    if not items:
        return None
    opts = options or KPIOptions()
    year, week = _period(items, opts)
    if opts.mode == "increment":
        delta = aggregate(items) - aggregate(previous or [])
        return compute_kpis(delta, opts, year=year, week_number=week, flat_zero=True)
    return compute_kpis(aggregate(items), opts, year=year, week_number=week)


def calculate_increment(
    current: Iterable[InsuranceRecord],
    previous: Iterable[InsuranceRecord],
    options: KPIOptions | None = None,
) -> KPIResult | None:
    opts = options or KPIOptions()
    if opts.mode != "increment":
        opts = KPIOptions(
            annual_target_yuan=opts.annual_target_yuan,
            mode="increment",
            current_week_number=opts.current_week_number,
            year=opts.year,
            policy_count_target=opts.policy_count_target,
        )
    return calculate(current, opts, previous=previous)


def group_records(
    records: Iterable[InsuranceRecord], field_name: str
) -> dict[Any, list[InsuranceRecord]]:
    """Partition by a record attribute, keeping first-seen key order."""
    groups: dict[Any, list[InsuranceRecord]] = {}
    for r in records:
        groups.setdefault(getattr(r, field_name), []).append(r)
    return groups


def calculate_by_dimension(
    records: Iterable[InsuranceRecord],
    dimension: str,
    options: KPIOptions | None = None,
    filters: FilterState | None = None,
) -> dict[Any, KPIResult]:
    """
    KPIs per distinct value of ``dimension``.

    ``dimension`` is a record attribute name or a FilterDimension value.
    """
    field_name = _dimension_field(dimension)
    items = filter_records(records, filters) if filters is not None else list(records)
    results: dict[Any, KPIResult] = {}
    for key, group in group_records(items, field_name).items():
        result = calculate(group, options)
        if result is not None:
            results[key] = result
    return results


def _dimension_field(dimension: str) -> str:
    try:
        return DIMENSION_FIELDS[FilterDimension(dimension)]
    except ValueError:
        pass
    if dimension not in {f.name for f in fields(InsuranceRecord)}:
        raise ValueError(f"Unknown grouping dimension: {dimension}")
    return dimension


def calculate_trend(
    records: Iterable[InsuranceRecord],
    filters: FilterState | None,
    weeks: Sequence[int],
    options: KPIOptions | None = None,
) -> dict[int, KPIResult | None]:
    """
    KPIs per week number, ignoring any week selection in ``filters``.

    In increment mode each week is compared with the week before it.
    """
    opts = options or KPIOptions()
    base = filters or FilterState()
    items = filter_records(records, base, excluded_dimensions=[FilterDimension.WEEKS])
    by_week = group_records(items, "week_number")
    trend: dict[int, KPIResult | None] = {}
    for week in sorted({int(w) for w in weeks}):
        week_opts = KPIOptions(
            annual_target_yuan=opts.annual_target_yuan,
            mode=opts.mode,
            current_week_number=week,
            year=opts.year,
            policy_count_target=opts.policy_count_target,
        )
        previous = by_week.get(week - 1, [])
        trend[week] = calculate(by_week.get(week, []), week_opts, previous=previous)
    return trend


def kpi_series(trend: Mapping[int, KPIResult | None], metric: str) -> list[float]:
    """
    Ordered numeric series of ``metric`` over a trend (weeks ascending).

    Missing weeks and null values become NaN so analytics can drop them.
    """
    series: list[float] = []
    for week in sorted(trend):
        result = trend[week]
        value = None if result is None else result.get(metric)
        series.append(float("nan") if value is None else float(value))
    return series


def calculate_smart_comparison(
    records: Iterable[InsuranceRecord],
    week_number: int,
    filters: FilterState | None = None,
    options: KPIOptions | None = None,
) -> dict[str, Any]:
    """
    Compare ``week_number`` with the week before under the same filters.

    Returns current / previous KPIs plus per-metric changes.
    """
    opts = options or KPIOptions(current_week_number=week_number)
    base = filters or FilterState()
    current_filters = replace(base, weeks=frozenset({int(week_number)}))
    items = list(records)
    current = calculate(filter_records(items, current_filters), opts)
    previous_filters = previous_period_filters(current_filters)
    previous = None
    if previous_filters is not None:
        prev_opts = KPIOptions(
            annual_target_yuan=opts.annual_target_yuan,
            mode=opts.mode,
            current_week_number=int(week_number) - 1,
            year=opts.year,
            policy_count_target=opts.policy_count_target,
        )
        previous = calculate(filter_records(items, previous_filters), prev_opts)
    return {
        "current_week": int(week_number),
        "previous_week": int(week_number) - 1 if previous_filters is not None else None,
        "current": current,
        "previous": previous,
        "changes": compare_kpis(current, previous) if current and previous else {},
    }


def compare_kpis(current: KPIResult, baseline: KPIResult) -> dict[str, dict[str, Any]]:
    """
    Per-metric change from ``baseline`` to ``current``.

    Each entry has absolute_change, percent_change (None on a zero or
    missing baseline) and direction ``up`` / ``down`` / ``flat``.
    """
    changes: dict[str, dict[str, Any]] = {}
    for name in ABSOLUTE_FIELDS + RATIO_FIELDS:
        now = getattr(current, name)
        before = getattr(baseline, name)
        if now is None or before is None:
            changes[name] = {
                "current": now,
                "baseline": before,
                "absolute_change": None,
                "percent_change": None,
                "direction": None,
            }
            continue
        diff = float(now) - float(before)
        pct = None if abs(before) < FLAT_THRESHOLD else diff / abs(float(before)) * 100.0
        if abs(diff) < FLAT_THRESHOLD:
            direction = "flat"
        else:
            direction = "up" if diff > 0 else "down"
        changes[name] = {
            "current": now,
            "baseline": before,
            "absolute_change": diff,
            "percent_change": pct,
            "direction": direction,
        }
    return changes


def calculate_batch(
    records: Iterable[InsuranceRecord],
    filters_list: Sequence[FilterState],
    options: KPIOptions | None = None,
) -> list[KPIResult | None]:
    items = list(records)
    return [calculate(filter_records(items, f), options) for f in filters_list]
