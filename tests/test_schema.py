from __future__ import annotations

import sys
from datetime import date
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from insurance_kpi.schema import (  # noqa: E402
    fuzzy_match,
    parse_bool,
    parse_number,
    parse_snapshot_date,
    resolve_enum,
    validate_row,
)

TODAY = date(2026, 1, 1)


def _row(**overrides: str) -> dict[str, str]:
    row = {
        "snapshot_date": "2025-03-01",
        "policy_start_year": "2025",
        "business_type_category": "非营业客车新车",
        "chengdu_branch": "成都",
        "third_level_organization": "天府",
        "customer_category_3": "非营业个人客车",
        "insurance_type": "商业险",
        "is_new_energy_vehicle": "False",
        "coverage_type": "主全",
        "is_transferred_vehicle": "False",
        "renewal_status": "新保",
        "vehicle_insurance_grade": "A",
        "highway_risk_grade": "",
        "large_truck_score": "",
        "small_truck_score": "",
        "terminal_source": "0110融合销售",
        "signed_premium_yuan": "100000",
        "matured_premium_yuan": "80000",
        "policy_count": "40",
        "claim_case_count": "6",
        "reported_claim_payment_yuan": "48000",
        "expense_amount_yuan": "15000",
        "commercial_premium_before_discount_yuan": "110000",
        "premium_plan_yuan": "5200000",
        "marginal_contribution_amount_yuan": "17000",
        "week_number": "9",
    }
    row.update(overrides)
    return row


def test_valid_row_produces_record_without_messages() -> None:
    outcome = validate_row(_row(), today=TODAY)

    assert outcome.is_valid
    assert outcome.errors == []
    assert outcome.warnings == []
    record = outcome.record
    assert record.snapshot_date == date(2025, 3, 1)
    assert record.week_number == 9
    assert record.signed_premium_yuan == 100_000.0
    assert record.highway_risk_grade is None


def test_alias_resolves_silently() -> None:
    outcome = validate_row(_row(insurance_type="交强", renewal_status="续"), today=TODAY)

    assert outcome.record.insurance_type == "交强险"
    assert outcome.record.renewal_status == "续保"
    assert outcome.warnings == []


def test_fuzzy_match_corrects_with_warning() -> None:
    warnings: list[str] = []

    value = resolve_enum("insurance_type", "商业险种", "商业险", warnings)

    assert value == "商业险"
    assert warnings == ["insurance_type: '商业险种' corrected to '商业险'"]


def test_unknown_and_blank_enum_fall_back_to_default_with_warning() -> None:
    outcome = validate_row(_row(coverage_type="", chengdu_branch="XYZ"), today=TODAY)

    assert outcome.record.coverage_type == "主全"
    assert outcome.record.chengdu_branch == "成都"
    assert len(outcome.warnings) == 2


def test_enum_defaults_can_be_overridden() -> None:
    outcome = validate_row(_row(coverage_type=""), today=TODAY, defaults={"coverage_type": "交三"})

    assert outcome.record.coverage_type == "交三"


def test_fuzzy_match_returns_none_below_cutoff() -> None:
    assert fuzzy_match("XYZ", ["商业险", "交强险"]) is None


def test_grades_are_uppercased_and_invalid_grades_dropped() -> None:
    outcome = validate_row(_row(vehicle_insurance_grade="b", large_truck_score="Z"), today=TODAY)

    assert outcome.record.vehicle_insurance_grade == "B"
    assert outcome.record.large_truck_score is None
    assert any("large_truck_score" in message for message in outcome.warnings)


def test_parse_bool_accepts_canonical_and_lenient_tokens() -> None:
    warnings: list[str] = []

    assert parse_bool("flag", "True", warnings) is True
    assert warnings == []
    assert parse_bool("flag", "是", warnings) is True
    assert parse_bool("flag", "maybe", warnings) is False
    assert warnings == [
        "flag: non-canonical boolean '是' read as True",
        "flag: unrecognized boolean 'maybe', using False",
    ]


def test_parse_number_strips_thousand_separators() -> None:
    errors: list[str] = []

    assert parse_number("signed_premium_yuan", "1,000", errors) == 1000.0
    assert errors == []


@pytest.mark.parametrize(
    ("name", "raw", "fragment"),
    [
        ("signed_premium_yuan", "abc", "is not a number"),
        ("signed_premium_yuan", "nan", "is not a finite number"),
        ("signed_premium_yuan", "-5", "is below the minimum"),
        ("signed_premium_yuan", "20000000", "exceeds the maximum"),
        ("policy_count", "1.5", "must be an integer"),
        ("week_number", "0", "is below the minimum"),
        ("week_number", "106", "exceeds the maximum"),
        ("policy_start_year", "", "required value is blank"),
    ],
)
def test_parse_number_reports_errors(name: str, raw: str, fragment: str) -> None:
    errors: list[str] = []

    assert parse_number(name, raw, errors) is None
    assert len(errors) == 1
    assert fragment in errors[0]


def test_blank_numbers_default_by_rule() -> None:
    errors: list[str] = []

    assert parse_number("premium_plan_yuan", "", errors) is None
    assert parse_number("expense_amount_yuan", "", errors) == 0.0
    assert errors == []


def test_negative_contribution_is_allowed() -> None:
    outcome = validate_row(_row(marginal_contribution_amount_yuan="-3000"), today=TODAY)

    assert outcome.record.marginal_contribution_amount_yuan == -3000.0


@pytest.mark.parametrize(
    ("raw", "fragment"),
    [
        ("", "required value is blank"),
        ("2025/03/01", "is not in YYYY-MM-DD format"),
        ("2025-02-30", "is not a valid calendar date"),
        ("2019-12-31", "is outside"),
        ("2026-06-01", "is outside"),
    ],
)
def test_parse_snapshot_date_rejects_bad_values(raw: str, fragment: str) -> None:
    errors: list[str] = []

    assert parse_snapshot_date(raw, TODAY, errors) is None
    assert fragment in errors[0]


def test_matured_above_signed_is_an_error() -> None:
    outcome = validate_row(_row(matured_premium_yuan="120000"), today=TODAY)

    assert outcome.record is None
    assert outcome.errors == ["matured_premium_yuan (120000) exceeds signed_premium_yuan (100000)"]


def test_unknown_organization_is_only_a_warning() -> None:
    outcome = validate_row(_row(third_level_organization="北京"), today=TODAY)

    assert outcome.is_valid
    assert outcome.warnings == ["third_level_organization: unknown organization '北京'"]


def test_blank_required_text_is_an_error() -> None:
    outcome = validate_row(_row(terminal_source=""), today=TODAY)

    assert outcome.record is None
    assert "terminal_source: required value is blank" in outcome.errors


def test_errors_accumulate_per_row() -> None:
    outcome = validate_row(_row(week_number="abc", policy_count="-1"), today=TODAY)

    assert outcome.record is None
    assert len(outcome.errors) == 2
