from __future__ import annotations

import sys
from datetime import date
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from insurance_kpi.dates import (  # noqa: E402
    days_in_year,
    first_week_end,
    time_progress,
    week_end_date,
)


def test_first_week_ends_on_first_saturday() -> None:
    # 2025-01-01 is a Wednesday.
    assert first_week_end(2025) == date(2025, 1, 4)
    # 2022-01-01 is itself a Saturday.
    assert first_week_end(2022) == date(2022, 1, 1)


def test_week_end_date_steps_by_seven_days() -> None:
    assert week_end_date(2025, 2) == date(2025, 1, 11)
    assert week_end_date(2025, 9) == date(2025, 3, 1)


def test_days_in_year_handles_leap_years() -> None:
    assert days_in_year(2024) == 366
    assert days_in_year(2025) == 365


def test_time_progress_counts_week_end_day() -> None:
    assert time_progress(2025, 1) == pytest.approx(4 / 365)
    assert time_progress(2025, 9) == pytest.approx(60 / 365)


def test_time_progress_is_clamped() -> None:
    assert time_progress(2025, 0) == 0.0
    assert time_progress(2025, 105) == 1.0
