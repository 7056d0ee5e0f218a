from __future__ import annotations

"""
Insurance policy-week record model.

One record corresponds to one row of the weekly variable-cost extract
(保单周变动成本明细表). Monetary measures are kept in yuan exactly as
delivered; unit conversion to 万元 happens in the KPI engine.
"""

from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Iterable, Mapping

REQUIRED_FIELDS: tuple[str, ...] = (
    "snapshot_date",
    "policy_start_year",
    "business_type_category",
    "chengdu_branch",
    "third_level_organization",
    "customer_category_3",
    "insurance_type",
    "is_new_energy_vehicle",
    "coverage_type",
    "is_transferred_vehicle",
    "renewal_status",
    "vehicle_insurance_grade",
    "highway_risk_grade",
    "large_truck_score",
    "small_truck_score",
    "terminal_source",
    "signed_premium_yuan",
    "matured_premium_yuan",
    "policy_count",
    "claim_case_count",
    "reported_claim_payment_yuan",
    "expense_amount_yuan",
    "commercial_premium_before_discount_yuan",
    "premium_plan_yuan",
    "marginal_contribution_amount_yuan",
    "week_number",
)

KNOWN_ORGANIZATIONS: tuple[str, ...] = (
    "本部",
    "达州",
    "德阳",
    "高新",
    "乐山",
    "泸州",
    "青羊",
    "天府",
    "武侯",
    "新都",
    "宜宾",
    "资阳",
    "自贡",
)

CHENGDU_BRANCHES: tuple[str, ...] = ("成都", "中支")
INSURANCE_TYPES: tuple[str, ...] = ("商业险", "交强险")
COVERAGE_TYPES: tuple[str, ...] = ("主全", "交三", "单交")
RENEWAL_STATUSES: tuple[str, ...] = ("新保", "续保", "转保")
VEHICLE_GRADES: tuple[str, ...] = ("A", "B", "C", "D", "E", "F", "G", "X")
HIGHWAY_RISK_GRADES: tuple[str, ...] = ("A", "B", "C", "D", "E", "F", "X")
TRUCK_SCORES: tuple[str, ...] = ("A", "B", "C", "D", "E", "X")

# Fields that identify one business cell of the extract.
_DEDUP_KEY_FIELDS: tuple[str, ...] = (
    "snapshot_date",
    "week_number",
    "policy_start_year",
    "third_level_organization",
    "customer_category_3",
    "insurance_type",
    "business_type_category",
)


@dataclass(frozen=True)
class InsuranceRecord:
    """
    One policy-week observation.

    Units
    - snapshot_date: calendar date of the extract
    - policy_start_year: policy year (2020-2030)
    - week_number: week index within the policy year (1-105)
    - *_yuan: CNY (yuan)
    - policy_count / claim_case_count: count
    - marginal_contribution_amount_yuan: CNY, may be negative
    """

    snapshot_date: date
    policy_start_year: int
    week_number: int

    chengdu_branch: str
    third_level_organization: str

    customer_category_3: str

    insurance_type: str
    business_type_category: str
    coverage_type: str

    renewal_status: str
    is_new_energy_vehicle: bool
    is_transferred_vehicle: bool

    vehicle_insurance_grade: str | None
    highway_risk_grade: str | None
    large_truck_score: str | None
    small_truck_score: str | None

    terminal_source: str

    signed_premium_yuan: float
    matured_premium_yuan: float
    policy_count: int
    claim_case_count: int
    reported_claim_payment_yuan: float
    expense_amount_yuan: float
    commercial_premium_before_discount_yuan: float
    premium_plan_yuan: float | None
    marginal_contribution_amount_yuan: float

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["snapshot_date"] = self.snapshot_date.isoformat()
        return payload

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "InsuranceRecord":
        """
        Rebuild a record from ``to_dict`` output (e.g. a persisted payload).

        Values are trusted; use ``schema.validate_row`` for raw CSV input.
        """
        missing = [name for name in REQUIRED_FIELDS if name not in data]
        if missing:
            raise ValueError(f"Record payload is missing fields: {', '.join(missing)}")
        raw_date = data["snapshot_date"]
        snapshot = raw_date if isinstance(raw_date, date) else date.fromisoformat(str(raw_date))
        plan = data["premium_plan_yuan"]
        return cls(
            snapshot_date=snapshot,
            policy_start_year=int(data["policy_start_year"]),
            week_number=int(data["week_number"]),
            chengdu_branch=str(data["chengdu_branch"]),
            third_level_organization=str(data["third_level_organization"]),
            customer_category_3=str(data["customer_category_3"]),
            insurance_type=str(data["insurance_type"]),
            business_type_category=str(data["business_type_category"]),
            coverage_type=str(data["coverage_type"]),
            renewal_status=str(data["renewal_status"]),
            is_new_energy_vehicle=bool(data["is_new_energy_vehicle"]),
            is_transferred_vehicle=bool(data["is_transferred_vehicle"]),
            vehicle_insurance_grade=_optional_str(data["vehicle_insurance_grade"]),
            highway_risk_grade=_optional_str(data["highway_risk_grade"]),
            large_truck_score=_optional_str(data["large_truck_score"]),
            small_truck_score=_optional_str(data["small_truck_score"]),
            terminal_source=str(data["terminal_source"]),
            signed_premium_yuan=float(data["signed_premium_yuan"]),
            matured_premium_yuan=float(data["matured_premium_yuan"]),
            policy_count=int(data["policy_count"]),
            claim_case_count=int(data["claim_case_count"]),
            reported_claim_payment_yuan=float(data["reported_claim_payment_yuan"]),
            expense_amount_yuan=float(data["expense_amount_yuan"]),
            commercial_premium_before_discount_yuan=float(
                data["commercial_premium_before_discount_yuan"]
            ),
            premium_plan_yuan=None if plan is None else float(plan),
            marginal_contribution_amount_yuan=float(data["marginal_contribution_amount_yuan"]),
        )


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text or None


def deduplicate_records(records: Iterable[InsuranceRecord]) -> list[InsuranceRecord]:
    """
    Keep the first record per business key, preserving input order.
    """
    seen: set[tuple[object, ...]] = set()
    result: list[InsuranceRecord] = []
    for record in records:
        key = tuple(getattr(record, name) for name in _DEDUP_KEY_FIELDS)
        if key in seen:
            continue
        seen.add(key)
        result.append(record)
    return result


def merge_records(*record_sets: Iterable[InsuranceRecord]) -> list[InsuranceRecord]:
    merged: list[InsuranceRecord] = []
    for records in record_sets:
        merged.extend(records)
    return deduplicate_records(merged)


def record_statistics(records: Iterable[InsuranceRecord]) -> dict[str, Any]:
    """
    Summarize a record collection for data-management displays.

    Units
    - total_premium_yuan: CNY
    - total_policy_count: count
    """
    items = list(records)
    if not items:
        return {
            "total_records": 0,
            "total_premium_yuan": 0.0,
            "total_policy_count": 0,
            "unique_weeks": [],
            "unique_organizations": [],
            "date_range": None,
        }
    dates = sorted(record.snapshot_date for record in items)
    return {
        "total_records": len(items),
        "total_premium_yuan": float(sum(record.signed_premium_yuan for record in items)),
        "total_policy_count": int(sum(record.policy_count for record in items)),
        "unique_weeks": sorted({record.week_number for record in items}),
        "unique_organizations": sorted({record.third_level_organization for record in items}),
        "date_range": {"min": dates[0].isoformat(), "max": dates[-1].isoformat()},
    }
