from __future__ import annotations

"""
Per-row validation of raw CSV cells into ``InsuranceRecord``.

Problems are split into errors (the row is dropped) and warnings (the row is
kept with a resolved value). Every field is checked so that one pass reports
all problems of a row.
"""

from dataclasses import dataclass, field
from datetime import date
import difflib
import math
import re
from typing import Mapping, Sequence

from .normalize import normalize_text
from .records import (
    CHENGDU_BRANCHES,
    COVERAGE_TYPES,
    HIGHWAY_RISK_GRADES,
    INSURANCE_TYPES,
    KNOWN_ORGANIZATIONS,
    RENEWAL_STATUSES,
    TRUCK_SCORES,
    VEHICLE_GRADES,
    InsuranceRecord,
)

MIN_SNAPSHOT_DATE = date(2020, 1, 1)
MIN_POLICY_YEAR = 2020
MAX_POLICY_YEAR = 2030
MIN_WEEK = 1
MAX_WEEK = 105
MAX_PREMIUM_YUAN = 10_000_000.0
FUZZY_CUTOFF = 0.6

REQUIRED_TEXT_FIELDS: tuple[str, ...] = (
    "third_level_organization",
    "customer_category_3",
    "business_type_category",
    "terminal_source",
)

ENUM_VALUES: dict[str, tuple[str, ...]] = {
    "chengdu_branch": CHENGDU_BRANCHES,
    "insurance_type": INSURANCE_TYPES,
    "coverage_type": COVERAGE_TYPES,
    "renewal_status": RENEWAL_STATUSES,
}

DEFAULT_ENUM_VALUES: dict[str, str] = {
    "chengdu_branch": "成都",
    "insurance_type": "商业险",
    "coverage_type": "主全",
    "renewal_status": "新保",
}

ENUM_ALIASES: dict[str, dict[str, str]] = {
    "insurance_type": {
        "商业保险": "商业险",
        "商险": "商业险",
        "商业": "商业险",
        "交强": "交强险",
        "交强保险": "交强险",
        "强制险": "交强险",
    },
    "renewal_status": {
        "新": "新保",
        "新保单": "新保",
        "续": "续保",
        "续保单": "续保",
        "转": "转保",
        "转保单": "转保",
    },
}

GRADE_VALUES: dict[str, tuple[str, ...]] = {
    "vehicle_insurance_grade": VEHICLE_GRADES,
    "highway_risk_grade": HIGHWAY_RISK_GRADES,
    "large_truck_score": TRUCK_SCORES,
    "small_truck_score": TRUCK_SCORES,
}

TRUE_TOKENS = frozenset({"true", "1", "yes", "y", "是"})
FALSE_TOKENS = frozenset({"false", "0", "no", "n", "否"})

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class _NumberRule:
    integer: bool = False
    minimum: float | None = 0.0
    maximum: float | None = None
    required: bool = False
    nullable: bool = False


NUMBER_RULES: dict[str, _NumberRule] = {
    "policy_start_year": _NumberRule(
        integer=True, minimum=MIN_POLICY_YEAR, maximum=MAX_POLICY_YEAR, required=True
    ),
    "week_number": _NumberRule(integer=True, minimum=MIN_WEEK, maximum=MAX_WEEK, required=True),
    "signed_premium_yuan": _NumberRule(maximum=MAX_PREMIUM_YUAN),
    "matured_premium_yuan": _NumberRule(maximum=MAX_PREMIUM_YUAN),
    "policy_count": _NumberRule(integer=True),
    "claim_case_count": _NumberRule(integer=True),
    "reported_claim_payment_yuan": _NumberRule(),
    "expense_amount_yuan": _NumberRule(),
    "commercial_premium_before_discount_yuan": _NumberRule(),
    "premium_plan_yuan": _NumberRule(nullable=True),
    "marginal_contribution_amount_yuan": _NumberRule(minimum=None),
}


@dataclass(frozen=True)
class RowValidation:
    record: InsuranceRecord | None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.record is not None


def _cell(row: Mapping[str, object], name: str) -> str:
    value = row.get(name)
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    return str(value).strip()


def fuzzy_match(value: str, candidates: Sequence[str], cutoff: float = FUZZY_CUTOFF) -> str | None:
    matches = difflib.get_close_matches(value, list(candidates), n=1, cutoff=cutoff)
    return matches[0] if matches else None


def resolve_enum(
    name: str,
    raw: str,
    default: str,
    warnings: list[str],
) -> str:
    """
    Resolve an enum cell: exact, alias, fuzzy, then default.

    Only the exact and alias paths are silent.
    """
    legal = ENUM_VALUES[name]
    if raw in legal:
        return raw
    alias = ENUM_ALIASES.get(name, {}).get(raw)
    if alias is not None:
        return alias
    if raw:
        corrected = fuzzy_match(raw, legal)
        if corrected is not None:
            warnings.append(f"{name}: '{raw}' corrected to '{corrected}'")
            return corrected
        warnings.append(f"{name}: unknown value '{raw}', using default '{default}'")
    else:
        warnings.append(f"{name}: blank, using default '{default}'")
    return default


def _resolve_grade(name: str, raw: str, warnings: list[str]) -> str | None:
    if not raw:
        return None
    value = raw.upper()
    if value in GRADE_VALUES[name]:
        return value
    warnings.append(f"{name}: invalid grade '{raw}', treated as blank")
    return None


def parse_bool(name: str, raw: str, warnings: list[str]) -> bool:
    if raw == "True":
        return True
    if raw == "False":
        return False
    token = raw.lower()
    if token in TRUE_TOKENS:
        warnings.append(f"{name}: non-canonical boolean '{raw}' read as True")
        return True
    if token in FALSE_TOKENS:
        warnings.append(f"{name}: non-canonical boolean '{raw}' read as False")
        return False
    warnings.append(f"{name}: unrecognized boolean '{raw}', using False")
    return False


def parse_number(name: str, raw: str, errors: list[str]) -> float | None:
    """
    Parse one numeric cell.

    Returns None when the cell is unusable (error recorded) or when a
    nullable cell is blank; callers distinguish the two via ``errors``.
    """
    rule = NUMBER_RULES[name]
    if raw == "":
        if rule.required:
            errors.append(f"{name}: required value is blank")
            return None
        return None if rule.nullable else 0.0

    try:
        value = float(raw.replace(",", ""))
    except ValueError:
        errors.append(f"{name}: '{raw}' is not a number")
        return None
    if not math.isfinite(value):
        errors.append(f"{name}: '{raw}' is not a finite number")
        return None

    ok = True
    if rule.integer and not value.is_integer():
        errors.append(f"{name}: '{raw}' must be an integer")
        ok = False
    if rule.minimum is not None and value < rule.minimum:
        errors.append(f"{name}: {raw} is below the minimum {rule.minimum:g}")
        ok = False
    if rule.maximum is not None and value > rule.maximum:
        errors.append(f"{name}: {raw} exceeds the maximum {rule.maximum:g}")
        ok = False
    return value if ok else None


def parse_snapshot_date(raw: str, today: date, errors: list[str]) -> date | None:
    if not raw:
        errors.append("snapshot_date: required value is blank")
        return None
    if not _DATE_PATTERN.match(raw):
        errors.append(f"snapshot_date: '{raw}' is not in YYYY-MM-DD format")
        return None
    try:
        value = date.fromisoformat(raw)
    except ValueError:
        errors.append(f"snapshot_date: '{raw}' is not a valid calendar date")
        return None
    if value < MIN_SNAPSHOT_DATE or value > today:
        errors.append(
            f"snapshot_date: {raw} is outside "
            f"[{MIN_SNAPSHOT_DATE.isoformat()}, {today.isoformat()}]"
        )
        return None
    return value


def validate_row(
    row: Mapping[str, object],
    *,
    today: date | None = None,
    defaults: Mapping[str, str] | None = None,
) -> RowValidation:
    """
    Validate one raw CSV row (column name -> cell text).

    ``defaults`` overrides the fallback value per enum field; unknown keys are
    ignored. ``today`` bounds the snapshot date (defaults to the current date).
    """
    errors: list[str] = []
    warnings: list[str] = []
    today = today or date.today()
    enum_defaults = dict(DEFAULT_ENUM_VALUES)
    for key, value in (defaults or {}).items():
        if key in enum_defaults and value:
            enum_defaults[key] = str(value)

    snapshot = parse_snapshot_date(_cell(row, "snapshot_date"), today, errors)

    texts: dict[str, str] = {}
    for name in REQUIRED_TEXT_FIELDS:
        texts[name] = _cell(row, name)
        if not texts[name]:
            errors.append(f"{name}: required value is blank")

    organization = texts["third_level_organization"]
    if organization and normalize_text(organization) not in KNOWN_ORGANIZATIONS:
        warnings.append(f"third_level_organization: unknown organization '{organization}'")

    enums = {
        name: resolve_enum(name, _cell(row, name), enum_defaults[name], warnings)
        for name in ENUM_VALUES
    }
    grades = {name: _resolve_grade(name, _cell(row, name), warnings) for name in GRADE_VALUES}
    is_new_energy = parse_bool(
        "is_new_energy_vehicle", _cell(row, "is_new_energy_vehicle"), warnings
    )
    is_transferred = parse_bool(
        "is_transferred_vehicle", _cell(row, "is_transferred_vehicle"), warnings
    )

    numbers: dict[str, float | None] = {}
    for name in NUMBER_RULES:
        numbers[name] = parse_number(name, _cell(row, name), errors)

    signed = numbers["signed_premium_yuan"]
    matured = numbers["matured_premium_yuan"]
    if signed is not None and matured is not None and matured > signed:
        errors.append(
            f"matured_premium_yuan ({matured:g}) exceeds signed_premium_yuan ({signed:g})"
        )

    if errors or snapshot is None:
        return RowValidation(record=None, errors=errors, warnings=warnings)

    def _num(name: str) -> float:
        value = numbers[name]
        return 0.0 if value is None else float(value)

    record = InsuranceRecord(
        snapshot_date=snapshot,
        policy_start_year=int(_num("policy_start_year")),
        week_number=int(_num("week_number")),
        chengdu_branch=enums["chengdu_branch"],
        third_level_organization=organization,
        customer_category_3=texts["customer_category_3"],
        insurance_type=enums["insurance_type"],
        business_type_category=texts["business_type_category"],
        coverage_type=enums["coverage_type"],
        renewal_status=enums["renewal_status"],
        is_new_energy_vehicle=is_new_energy,
        is_transferred_vehicle=is_transferred,
        vehicle_insurance_grade=grades["vehicle_insurance_grade"],
        highway_risk_grade=grades["highway_risk_grade"],
        large_truck_score=grades["large_truck_score"],
        small_truck_score=grades["small_truck_score"],
        terminal_source=texts["terminal_source"],
        signed_premium_yuan=_num("signed_premium_yuan"),
        matured_premium_yuan=_num("matured_premium_yuan"),
        policy_count=int(_num("policy_count")),
        claim_case_count=int(_num("claim_case_count")),
        reported_claim_payment_yuan=_num("reported_claim_payment_yuan"),
        expense_amount_yuan=_num("expense_amount_yuan"),
        commercial_premium_before_discount_yuan=_num("commercial_premium_before_discount_yuan"),
        premium_plan_yuan=numbers["premium_plan_yuan"],
        marginal_contribution_amount_yuan=_num("marginal_contribution_amount_yuan"),
    )
    return RowValidation(record=record, errors=errors, warnings=warnings)
