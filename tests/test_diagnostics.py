from __future__ import annotations

import hashlib
import math
import sys
from datetime import date
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from insurance_kpi.analytics import detect_anomalies, fit_trend  # noqa: E402
from insurance_kpi.diagnostics import (  # noqa: E402
    build_execution_context,
    build_run_summary,
    build_trend_section,
)
from insurance_kpi.filters import FilterState  # noqa: E402
from insurance_kpi.kpi import calculate  # noqa: E402
from insurance_kpi.parser import collect_records, parse_files  # noqa: E402
from insurance_kpi.sample_data import SampleDataSpec, write_sample_csv  # noqa: E402


def _outcomes(tmp_path: Path):
    good = write_sample_csv(tmp_path / "good.csv", seed=5, spec=SampleDataSpec(weeks=2))
    broken = tmp_path / "broken.csv"
    broken.write_text("snapshot_date,week_number\n2025-01-04,1\n", encoding="utf-8")
    return parse_files([good, broken], today=date(2026, 1, 1))


def test_build_execution_context_records_input_digests(tmp_path: Path) -> None:
    data = tmp_path / "input.csv"
    data.write_bytes(b"abc")
    missing = tmp_path / "missing.csv"

    context = build_execution_context(
        base_dir=tmp_path,
        command="insurance_kpi.cli kpi",
        input_paths=[data, missing],
    )

    assert context["command"] == "insurance_kpi.cli kpi"
    assert context["argv"] == []
    assert context["config_path"] is None
    assert context["libraries"]["numpy"] is not None
    assert context["input_files"] == [
        {
            "path": str(data),
            "exists": True,
            "size_bytes": 3,
            "sha256": hashlib.sha256(b"abc").hexdigest(),
        },
        {"path": str(missing), "exists": False},
    ]


def test_build_run_summary_collects_parse_and_kpi_sections(tmp_path: Path) -> None:
    outcomes = _outcomes(tmp_path)
    records = collect_records(outcomes)
    filters = FilterState(weeks=frozenset({2}))
    result = calculate([r for r in records if r.week_number == 2])

    summary = build_run_summary({"inputs": ["good.csv"]}, outcomes, filters, result)

    assert summary["meta"]["source"] == "kpi"
    assert len(summary["meta"]["config_hash"]) == 64
    parse = summary["parse"]
    assert parse["file_count"] == 2
    assert parse["failed_files"] == [str(tmp_path / "broken.csv")]
    assert parse["total_rows"] == parse["valid_rows"] == 32
    assert parse["files"][0]["ok"] is True
    assert parse["files"][0]["stats"]["encoding"] == "utf-8"
    assert parse["files"][1]["error"].startswith("CSV header is missing required columns")
    assert summary["filters"]["weeks"] == [2]
    assert summary["kpi"]["values"]["signed_premium"] == result.signed_premium
    assert summary["kpi"]["units"]["loss_ratio"] == "%"
    assert "by_dimension" not in summary
    assert "trend" not in summary


def test_build_run_summary_without_matches_has_null_kpi(tmp_path: Path) -> None:
    summary = build_run_summary({}, _outcomes(tmp_path), FilterState(), None, source="kpi")

    assert summary["kpi"] is None


def test_build_trend_section_maps_indices_to_weeks() -> None:
    weeks = [1, 2, 3, 4, 5, 6, 7, 8]
    series = [10.0, 11.0, 10.0, 11.0, math.nan, 10.0, 11.0, 40.0]
    trend = fit_trend(series, "linear")
    anomalies = detect_anomalies(series, "iqr")

    section = build_trend_section("loss_ratio", weeks, series, trend, anomalies)

    assert section["metric"] == "loss_ratio"
    assert section["series"][4] is None
    assert [a["week"] for a in section["anomalies"]] == [8]
    assert section["anomaly_summary"]["anomaly_count"] == 1
    assert section["fit"]["direction"] == trend.direction
    assert isinstance(section["description"], str)
