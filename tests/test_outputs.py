from __future__ import annotations

import json
import sys
from datetime import date
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from insurance_kpi.filters import FilterState  # noqa: E402
from insurance_kpi.kpi import calculate  # noqa: E402
from insurance_kpi.outputs import write_kpi_log, write_run_summary_json  # noqa: E402
from insurance_kpi.parser import FileParseOutcome, collect_records, parse_csv_text  # noqa: E402
from insurance_kpi.records import REQUIRED_FIELDS  # noqa: E402

_GOOD_ROW = [
    "2025-03-01", "2025", "非营业客车新车", "成都", "天府", "非营业个人客车", "商业险",
    "False", "主全", "False", "新保", "A", "", "", "", "0110融合销售",
    "100000", "80000", "40", "6", "48000", "15000", "110000", "5200000", "17000", "9",
]


def _outcome(tmp_path: Path, *, bad_row: bool = False) -> FileParseOutcome:
    rows = [",".join(REQUIRED_FIELDS), ",".join(_GOOD_ROW)]
    if bad_row:
        broken = list(_GOOD_ROW)
        broken[16] = "abc"
        rows.append(",".join(broken))
    result = parse_csv_text("\n".join(rows), today=date(2026, 1, 1))
    return FileParseOutcome(path=tmp_path / "week9.csv", result=result)


def test_write_run_summary_json(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "summary.json"

    write_run_summary_json(path, {"meta": {"source": "kpi"}, "kpi": None})

    assert json.loads(path.read_text(encoding="utf-8")) == {"meta": {"source": "kpi"}, "kpi": None}


def test_write_kpi_log_lists_inputs_and_metrics(tmp_path: Path) -> None:
    outcome = _outcome(tmp_path, bad_row=True)
    filters = FilterState(weeks=frozenset({9}))
    result = calculate(collect_records([outcome]))

    path = write_kpi_log(tmp_path / "out" / "kpi_log.txt", [outcome], filters, result)
    text = path.read_text(encoding="utf-8")
    lines = text.splitlines()

    assert lines[0] == "kpi"
    assert "weeks: [9]" in lines
    assert any("total_rows=2 valid_rows=1 invalid_rows=1" in line for line in lines)
    assert any(line.startswith("error: row 3: signed_premium_yuan:") for line in lines)
    loss_line = next(line for line in lines if line.startswith("loss_ratio: "))
    assert loss_line.endswith("%")
    assert float(loss_line[len("loss_ratio: ") : -1]) == pytest.approx(60.0)
    assert "signed_premium: 10.0万元" in lines


def test_write_kpi_log_without_matches(tmp_path: Path) -> None:
    failed = FileParseOutcome(path=tmp_path / "bad.csv", result=None, error="boom")

    path = write_kpi_log(tmp_path / "kpi_log.txt", [failed], FilterState(), None)
    text = path.read_text(encoding="utf-8")

    assert f"{tmp_path / 'bad.csv'} error=boom" in text
    assert text.endswith("no records matched the filters")
