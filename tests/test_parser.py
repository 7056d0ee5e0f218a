from __future__ import annotations

import asyncio
import sys
from datetime import date
from pathlib import Path

import pandas as pd
import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from insurance_kpi.parser import (  # noqa: E402
    PHASE_COMPLETE,
    PHASE_PARSING,
    MissingColumnsError,
    ParseProgress,
    collect_records,
    iter_parse_chunks,
    parse_csv_bytes,
    parse_csv_file,
    parse_csv_text,
    parse_csv_text_async,
    parse_files,
)
from insurance_kpi.records import REQUIRED_FIELDS  # noqa: E402

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


def _csv(rows: list[dict[str, str]], columns: list[str] | None = None) -> str:
    return pd.DataFrame(rows, columns=columns or list(REQUIRED_FIELDS)).to_csv(index=False)


def test_parse_csv_text_returns_records_and_stats() -> None:
    text = _csv([_row(), _row(week_number="10", snapshot_date="2025-03-08")])

    result = parse_csv_text(text, today=TODAY)

    assert result.success
    assert len(result.data) == 2
    assert result.errors == []
    assert result.stats.total_rows == 2
    assert result.stats.valid_rows == 2
    assert result.stats.invalid_rows == 0
    assert result.stats.encoding == "utf-8"


def test_row_numbers_count_the_header_line() -> None:
    text = _csv([_row(), _row(matured_premium_yuan="120000"), _row(week_number="x")])

    result = parse_csv_text(text, today=TODAY)

    assert [error.row for error in result.errors] == [3, 4]
    assert "exceeds signed_premium_yuan" in result.errors[0].messages[0]
    assert result.stats.valid_rows == 1
    assert result.stats.invalid_rows == 2
    assert result.success


def test_all_invalid_rows_is_not_success() -> None:
    text = _csv([_row(week_number="0")])

    result = parse_csv_text(text, today=TODAY)

    assert not result.success
    assert result.stats.invalid_rows == 1


def test_warnings_are_prefixed_with_row_number() -> None:
    text = _csv([_row(), _row(third_level_organization="北京")])

    result = parse_csv_text(text, today=TODAY)

    assert result.warnings == ["row 3: third_level_organization: unknown organization '北京'"]
    assert result.stats.warning_rows == 1
    assert len(result.data) == 2


def test_records_are_normalized() -> None:
    text = _csv([_row(customer_category_3="非营业个人客�", third_level_organization=" 天府 ")])

    record = parse_csv_text(text, today=TODAY).data[0]

    assert record.customer_category_3 == "非营业个人客车"
    assert record.third_level_organization == "天府"


def test_error_rows_are_capped_but_counted() -> None:
    text = _csv([_row(week_number="0") for _ in range(5)])

    result = parse_csv_text(text, today=TODAY, max_error_rows=2)

    assert len(result.errors) == 2
    assert result.stats.invalid_rows == 5


def test_missing_columns_raise_before_any_progress() -> None:
    columns = [name for name in REQUIRED_FIELDS if name != "policy_count"]
    text = _csv([_row()], columns=columns)
    reports: list[ParseProgress] = []

    with pytest.raises(MissingColumnsError) as excinfo:
        parse_csv_text(text, on_progress=reports.append, today=TODAY)

    assert excinfo.value.missing == ["policy_count"]
    assert reports == []


def test_empty_text_raises_missing_columns() -> None:
    with pytest.raises(MissingColumnsError):
        parse_csv_text("", today=TODAY)


def test_extra_columns_are_ignored() -> None:
    columns = list(REQUIRED_FIELDS) + ["remark"]
    text = _csv([{**_row(), "remark": "x"}], columns=columns)

    result = parse_csv_text(text, today=TODAY)

    assert len(result.data) == 1


def test_progress_reports_start_validate_and_complete() -> None:
    text = _csv([_row() for _ in range(5)])
    reports: list[ParseProgress] = []

    parse_csv_text(text, on_progress=reports.append, chunk_size=2, today=TODAY)

    assert reports[0].current_phase == PHASE_PARSING
    assert reports[0].processed_rows == 0
    assert reports[-1].current_phase == PHASE_COMPLETE
    assert reports[-1].percentage == 100.0
    assert reports[-1].estimated_time_remaining == 0.0
    # One validating report per chunk (2 + 2 + 1 rows).
    assert len(reports) == 5
    processed = [report.processed_rows for report in reports]
    assert processed == sorted(processed)


def test_iter_parse_chunks_respects_chunk_size() -> None:
    text = _csv([_row() for _ in range(5)])

    chunks = list(iter_parse_chunks(text, chunk_size=2, today=TODAY))

    assert [chunk.rows for chunk in chunks] == [2, 2, 1]


def test_iter_parse_chunks_rejects_non_positive_chunk_size() -> None:
    with pytest.raises(ValueError):
        iter_parse_chunks(_csv([_row()]), chunk_size=0, today=TODAY)


def test_async_parse_matches_sync_parse() -> None:
    text = _csv([_row(), _row(week_number="0"), _row(third_level_organization="北京")])

    sync_result = parse_csv_text(text, chunk_size=1, today=TODAY)
    async_result = asyncio.run(parse_csv_text_async(text, chunk_size=1, today=TODAY))

    assert async_result.data == sync_result.data
    assert async_result.errors == sync_result.errors
    assert async_result.warnings == sync_result.warnings


def test_parse_csv_bytes_detects_gb18030() -> None:
    buffer = _csv([_row()]).encode("gb18030")

    result = parse_csv_bytes(buffer, today=TODAY)

    assert result.stats.encoding == "gb18030"
    assert result.data[0].third_level_organization == "天府"


def test_parse_csv_file_reads_from_disk(tmp_path: Path) -> None:
    path = tmp_path / "week9.csv"
    path.write_text(_csv([_row()]), encoding="utf-8")

    result = parse_csv_file(path, today=TODAY)

    assert len(result.data) == 1


@pytest.mark.parametrize("parallel", [True, False])
def test_parse_files_keeps_input_order_and_isolates_failures(
    tmp_path: Path, parallel: bool
) -> None:
    good = tmp_path / "good.csv"
    good.write_text(_csv([_row()]), encoding="utf-8")
    broken = tmp_path / "broken.csv"
    broken.write_text("a,b\n1,2\n", encoding="utf-8")
    missing = tmp_path / "missing.csv"

    outcomes = parse_files([broken, good, missing], parallel=parallel, today=TODAY)

    assert [outcome.path for outcome in outcomes] == [broken, good, missing]
    assert [outcome.ok for outcome in outcomes] == [False, True, False]
    assert "missing required columns" in outcomes[0].error
    assert len(collect_records(outcomes)) == 1


def _lines(rows: list[dict[str, str]]) -> list[str]:
    return _csv(rows).splitlines()


def test_unclosed_quote_becomes_a_row_error() -> None:
    lines = _lines([_row(), _row(week_number="10"), _row(week_number="11")])
    lines[3] = lines[3].replace("天府", '"天府', 1)

    result = parse_csv_text("\n".join(lines) + "\n", today=TODAY)

    assert result.stats.total_rows == 3
    assert result.stats.valid_rows == 2
    assert result.stats.invalid_rows == 1
    assert [error.row for error in result.errors] == [4]
    assert "unterminated quoted field" in result.errors[0].messages[0]


def test_unclosed_quote_mid_file_keeps_later_rows() -> None:
    lines = _lines([_row(), _row(week_number="10"), _row(week_number="11")])
    lines[2] = lines[2].replace("天府", '"天府', 1)

    result = parse_csv_text("\n".join(lines) + "\n", today=TODAY)

    assert [error.row for error in result.errors] == [3]
    assert sorted(record.week_number for record in result.data) == [9, 11]


def test_row_with_extra_field_is_counted_as_invalid() -> None:
    lines = _lines([_row(), _row(week_number="10"), _row(week_number="11")])
    lines[3] += ",EXTRA"

    result = parse_csv_text("\n".join(lines) + "\n", today=TODAY)

    assert result.stats.total_rows == 3
    assert result.stats.invalid_rows == 1
    assert [error.row for error in result.errors] == [4]
    assert f"expected {len(REQUIRED_FIELDS)} fields, found {len(REQUIRED_FIELDS) + 1}" in (
        result.errors[0].messages[0]
    )


def test_row_with_missing_field_is_counted_as_invalid() -> None:
    lines = _lines([_row(), _row(week_number="10")])
    lines[2] = lines[2].rsplit(",", 1)[0]

    result = parse_csv_text("\n".join(lines) + "\n", today=TODAY)

    assert result.stats.total_rows == 2
    assert [error.row for error in result.errors] == [3]


def test_row_numbers_are_physical_lines_across_blank_lines() -> None:
    lines = _lines([_row(), _row(week_number="x")])
    lines.insert(2, "")

    result = parse_csv_text("\n".join(lines) + "\n", today=TODAY)

    assert result.stats.total_rows == 2
    assert [error.row for error in result.errors] == [4]


def test_quoted_field_with_line_break_is_one_row() -> None:
    text = _csv([_row(third_level_organization="天\n府"), _row(week_number="x")])

    result = parse_csv_text(text, today=TODAY)

    assert result.stats.total_rows == 2
    assert result.stats.valid_rows == 1
    assert [error.row for error in result.errors] == [4]


@pytest.mark.parametrize("parallel", [True, False])
def test_parse_files_reports_malformed_rows_per_file(tmp_path: Path, parallel: bool) -> None:
    good = tmp_path / "good.csv"
    good.write_text(_csv([_row()]), encoding="utf-8")
    lines = _lines([_row(), _row(week_number="10")])
    lines[2] = lines[2].replace("天府", '"天府', 1)
    bad = tmp_path / "bad.csv"
    bad.write_text("\n".join(lines) + "\n", encoding="utf-8")

    outcomes = parse_files([good, bad], parallel=parallel, today=TODAY)

    assert [outcome.ok for outcome in outcomes] == [True, True]
    assert [error.row for error in outcomes[1].result.errors] == [3]
    assert len(collect_records(outcomes)) == 2
