from __future__ import annotations

"""
Chunked CSV parsing into validated insurance records.

The text is split into records by line, with quote tracking, so every row
keeps its physical line number. Bounded chunks of well-formed rows are read
with pandas (every cell as text), validated and normalized one at a time,
and reported through an optional progress callback. A bad row, malformed
CSV included, never stops the parse; only a header without the required
columns does.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date
from io import StringIO
from itertools import islice
import logging
import re
from pathlib import Path
import time
from typing import Callable, Iterator, Mapping, Sequence

import pandas as pd

from .encoding import detect_encoding
from .normalize import normalize_record
from .records import REQUIRED_FIELDS, InsuranceRecord
from .schema import validate_row

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_MAX_ERROR_ROWS = 20
DEFAULT_MAX_WARNING_MESSAGES = 200

# Row numbers are physical line numbers; the header is line 1.
UNTERMINATED_QUOTE = "unterminated quoted field"
_LINE_BREAK = re.compile(r"\r\n|\r|\n")

PHASE_PARSING = "parsing"
PHASE_VALIDATING = "validating"
PHASE_COMPLETE = "complete"


class MissingColumnsError(ValueError):
    def __init__(self, missing: Sequence[str]):
        self.missing = list(missing)
        if self.missing:
            message = "CSV header is missing required columns: " + ", ".join(self.missing)
        else:
            message = "CSV text has no header row"
        super().__init__(message)


@dataclass(frozen=True)
class ParseProgress:
    """
    Units
    - percentage: 0-100
    - estimated_time_remaining: seconds (None until the first chunk is timed)
    """

    processed_rows: int
    total_rows: int
    percentage: float
    current_phase: str
    estimated_time_remaining: float | None
    error_count: int


ProgressCallback = Callable[[ParseProgress], None]


@dataclass(frozen=True)
class RowError:
    row: int
    messages: list[str]


@dataclass(frozen=True)
class ParseStats:
    """
    Units
    - parse_seconds: wall-clock seconds
    """

    total_rows: int
    valid_rows: int
    invalid_rows: int
    warning_rows: int
    encoding: str
    parse_seconds: float

    def to_dict(self) -> dict[str, object]:
        return {
            "total_rows": self.total_rows,
            "valid_rows": self.valid_rows,
            "invalid_rows": self.invalid_rows,
            "warning_rows": self.warning_rows,
            "encoding": self.encoding,
            "parse_seconds": self.parse_seconds,
        }


@dataclass(frozen=True)
class ParseResult:
    success: bool
    data: list[InsuranceRecord]
    errors: list[RowError]
    warnings: list[str]
    stats: ParseStats


@dataclass(frozen=True)
class SourceRow:
    """One CSV record as written, with the line it starts on."""

    line: int
    text: str
    problem: str | None = None


@dataclass(frozen=True)
class ChunkOutcome:
    records: list[InsuranceRecord]
    errors: list[RowError]
    warnings: list[str]
    rows: int
    invalid_rows: int
    warning_rows: int


@dataclass(frozen=True)
class FileParseOutcome:
    path: Path
    result: ParseResult | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.result is not None and self.error is None


@dataclass
class _Accumulator:
    """Mutable state of one parse; owned by a single parse call."""

    total_estimate: int
    max_error_rows: int
    max_warning_messages: int
    on_progress: ProgressCallback | None
    started: float = field(default_factory=time.perf_counter)
    records: list[InsuranceRecord] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    rows: int = 0
    invalid_rows: int = 0
    warning_rows: int = 0

    def add(self, chunk: ChunkOutcome) -> None:
        self.records.extend(chunk.records)
        room = self.max_error_rows - len(self.errors)
        if room > 0:
            self.errors.extend(chunk.errors[:room])
        room = self.max_warning_messages - len(self.warnings)
        if room > 0:
            self.warnings.extend(chunk.warnings[:room])
        self.rows += chunk.rows
        self.invalid_rows += chunk.invalid_rows
        self.warning_rows += chunk.warning_rows

    def report(self, phase: str) -> None:
        if self.on_progress is None:
            return
        total = max(self.total_estimate, self.rows)
        if phase == PHASE_COMPLETE:
            total = self.rows
        percentage = 100.0 if total == 0 else min(100.0, 100.0 * self.rows / total)
        remaining: float | None = None
        if phase == PHASE_COMPLETE:
            remaining = 0.0
        elif self.rows > 0:
            elapsed = time.perf_counter() - self.started
            remaining = elapsed / self.rows * max(0, total - self.rows)
        self.on_progress(
            ParseProgress(
                processed_rows=self.rows,
                total_rows=total,
                percentage=percentage,
                current_phase=phase,
                estimated_time_remaining=remaining,
                error_count=self.invalid_rows,
            )
        )

    def result(self, encoding: str) -> ParseResult:
        stats = ParseStats(
            total_rows=self.rows,
            valid_rows=len(self.records),
            invalid_rows=self.invalid_rows,
            warning_rows=self.warning_rows,
            encoding=encoding,
            parse_seconds=time.perf_counter() - self.started,
        )
        logger.info(
            "parsed %d rows: %d valid, %d invalid, %d with warnings",
            stats.total_rows,
            stats.valid_rows,
            stats.invalid_rows,
            stats.warning_rows,
        )
        if len(self.warnings) < self.warning_rows:
            logger.warning(
                "%d rows carried warnings; only the first %d messages are kept",
                self.warning_rows,
                len(self.warnings),
            )
        return ParseResult(
            success=stats.valid_rows > 0,
            data=self.records,
            errors=self.errors,
            warnings=self.warnings,
            stats=stats,
        )


def split_rows(text: str) -> Iterator[SourceRow]:
    """
    Split CSV text into records numbered by the physical line they start on.

    A record runs across line breaks while a quote is open. A quote still
    open at the end of the text marks only its starting line as broken, and
    splitting resumes on the next line. Blank lines are skipped but keep
    their line numbers.
    """
    lines = _LINE_BREAK.split(text)
    start = 0
    while start < len(lines):
        if not lines[start].strip():
            start += 1
            continue
        end = start
        quotes = lines[start].count('"')
        while quotes % 2 and end + 1 < len(lines):
            end += 1
            quotes += lines[end].count('"')
        if quotes % 2:
            yield SourceRow(line=start + 1, text=lines[start], problem=UNTERMINATED_QUOTE)
            start += 1
            continue
        yield SourceRow(line=start + 1, text="\n".join(lines[start : end + 1]))
        start = end + 1


def field_count(record: str) -> int:
    """Number of fields in one record; commas between quotes do not count."""
    return sum(part.count(",") for part in record.split('"')[::2]) + 1


def read_header(text: str) -> list[str]:
    """
    Return the header columns of CSV ``text``.

    Raises MissingColumnsError when the text has no readable header row.
    """
    header = next(split_rows(text), None)
    if header is None or header.problem is not None:
        raise MissingColumnsError([])
    frame = pd.read_csv(StringIO(header.text), dtype=str, nrows=0)
    return [str(column).strip() for column in frame.columns]


def check_header(columns: Sequence[str]) -> None:
    present = {str(column).strip() for column in columns}
    missing = [name for name in REQUIRED_FIELDS if name not in present]
    if missing:
        logger.warning("missing required columns: %s", ", ".join(missing))
        raise MissingColumnsError(missing)
    extra = sorted(present - set(REQUIRED_FIELDS))
    if extra:
        logger.warning("ignoring extra columns: %s", ", ".join(extra))


def estimate_row_count(text: str) -> int:
    """Data-row estimate from the line count (quoted newlines overcount)."""
    lines = [line for line in text.splitlines() if line.strip()]
    return max(0, len(lines) - 1)


def _clean_row(raw: Mapping[str, object]) -> dict[str, object]:
    return {str(key).strip(): value for key, value in raw.items()}


def iter_parse_chunks(
    text: str,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    today: date | None = None,
    defaults: Mapping[str, str] | None = None,
) -> Iterator[ChunkOutcome]:
    """
    Validate ``text`` chunk by chunk.

    The header is checked eagerly, before the iterator is returned.
    """
    check_header(read_header(text))
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return _chunks(text, chunk_size, today, defaults)


def _structural_problem(row: SourceRow, width: int) -> str | None:
    if row.problem is not None:
        return row.problem
    fields = field_count(row.text)
    if fields != width:
        return f"expected {width} fields, found {fields}"
    return None


def _frame_rows(header: str, rows: Sequence[SourceRow]) -> list[dict[str, object]]:
    body = "\n".join([header, *(row.text for row in rows)])
    frame = pd.read_csv(
        StringIO(body),
        dtype=str,
        keep_default_na=False,
        index_col=False,
    )
    cells = frame.to_dict(orient="records")
    if len(cells) != len(rows):
        raise pd.errors.ParserError(f"expected {len(rows)} rows, read {len(cells)}")
    return cells


def _read_cells(header: str, rows: Sequence[SourceRow]) -> list[dict[str, object] | str]:
    """
    Cells per row, read with pandas a chunk at a time.

    When pandas rejects the chunk, rows are re-read one by one and each row it
    still rejects is returned as an error message in its place.
    """
    if not rows:
        return []
    try:
        return list(_frame_rows(header, rows))
    except pd.errors.ParserError as exc:
        logger.debug("chunk unreadable, retrying row by row: %s", exc)
    cells: list[dict[str, object] | str] = []
    for row in rows:
        try:
            cells.extend(_frame_rows(header, [row]))
        except pd.errors.ParserError as exc:
            cells.append(f"unreadable by the CSV reader ({exc})")
    return cells


def _validate_batch(
    header: SourceRow,
    width: int,
    batch: Sequence[SourceRow],
    today: date | None,
    defaults: Mapping[str, str] | None,
) -> ChunkOutcome:
    problems = [_structural_problem(row, width) for row in batch]
    readable = [row for row, problem in zip(batch, problems) if problem is None]
    cells = iter(_read_cells(header.text, readable))

    records: list[InsuranceRecord] = []
    errors: list[RowError] = []
    warnings: list[str] = []
    invalid_rows = 0
    warning_rows = 0
    for row, problem in zip(batch, problems):
        raw = next(cells) if problem is None else None
        if isinstance(raw, str):
            problem = raw
        if raw is None or problem is not None:
            invalid_rows += 1
            errors.append(RowError(row=row.line, messages=[f"malformed CSV row: {problem}"]))
            continue
        outcome = validate_row(_clean_row(raw), today=today, defaults=defaults)
        if outcome.warnings:
            warning_rows += 1
            warnings.extend(f"row {row.line}: {message}" for message in outcome.warnings)
        if outcome.record is None:
            invalid_rows += 1
            errors.append(RowError(row=row.line, messages=list(outcome.errors)))
            continue
        records.append(normalize_record(outcome.record))
    logger.debug("chunk done: %d rows (%d invalid)", len(batch), invalid_rows)
    return ChunkOutcome(
        records=records,
        errors=errors,
        warnings=warnings,
        rows=len(batch),
        invalid_rows=invalid_rows,
        warning_rows=warning_rows,
    )


def _chunks(
    text: str,
    chunk_size: int,
    today: date | None,
    defaults: Mapping[str, str] | None,
) -> Iterator[ChunkOutcome]:
    rows = split_rows(text)
    header = next(rows)
    width = field_count(header.text)
    while batch := list(islice(rows, chunk_size)):
        yield _validate_batch(header, width, batch, today, defaults)


def _new_accumulator(
    text: str,
    on_progress: ProgressCallback | None,
    max_error_rows: int,
    max_warning_messages: int,
) -> _Accumulator:
    return _Accumulator(
        total_estimate=estimate_row_count(text),
        max_error_rows=max(0, int(max_error_rows)),
        max_warning_messages=max(0, int(max_warning_messages)),
        on_progress=on_progress,
    )


def parse_csv_text(
    text: str,
    *,
    on_progress: ProgressCallback | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_error_rows: int = DEFAULT_MAX_ERROR_ROWS,
    max_warning_messages: int = DEFAULT_MAX_WARNING_MESSAGES,
    today: date | None = None,
    defaults: Mapping[str, str] | None = None,
    encoding: str = "utf-8",
) -> ParseResult:
    """
    Parse decoded CSV text into a ParseResult.

    Raises MissingColumnsError before any row is processed when the header
    lacks required columns.
    """
    chunks = iter_parse_chunks(text, chunk_size=chunk_size, today=today, defaults=defaults)
    acc = _new_accumulator(text, on_progress, max_error_rows, max_warning_messages)
    acc.report(PHASE_PARSING)
    for chunk in chunks:
        acc.add(chunk)
        acc.report(PHASE_VALIDATING)
    acc.report(PHASE_COMPLETE)
    return acc.result(encoding)


async def parse_csv_text_async(
    text: str,
    *,
    on_progress: ProgressCallback | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_error_rows: int = DEFAULT_MAX_ERROR_ROWS,
    max_warning_messages: int = DEFAULT_MAX_WARNING_MESSAGES,
    today: date | None = None,
    defaults: Mapping[str, str] | None = None,
    encoding: str = "utf-8",
) -> ParseResult:
    """Same as ``parse_csv_text`` but yields to the event loop between chunks."""
    chunks = iter_parse_chunks(text, chunk_size=chunk_size, today=today, defaults=defaults)
    acc = _new_accumulator(text, on_progress, max_error_rows, max_warning_messages)
    acc.report(PHASE_PARSING)
    for chunk in chunks:
        acc.add(chunk)
        acc.report(PHASE_VALIDATING)
        await asyncio.sleep(0)
    acc.report(PHASE_COMPLETE)
    return acc.result(encoding)


def parse_csv_bytes(buffer: bytes, **kwargs) -> ParseResult:
    decoded = detect_encoding(buffer)
    return parse_csv_text(decoded.text, encoding=decoded.encoding, **kwargs)


async def parse_csv_bytes_async(buffer: bytes, **kwargs) -> ParseResult:
    decoded = detect_encoding(buffer)
    return await parse_csv_text_async(decoded.text, encoding=decoded.encoding, **kwargs)


def parse_csv_file(path: str | Path, **kwargs) -> ParseResult:
    p = Path(path)
    logger.info("parsing %s", p)
    return parse_csv_bytes(p.read_bytes(), **kwargs)


async def parse_csv_file_async(path: str | Path, **kwargs) -> ParseResult:
    p = Path(path)
    logger.info("parsing %s", p)
    return await parse_csv_bytes_async(p.read_bytes(), **kwargs)


async def _parse_one(path: Path, **kwargs) -> FileParseOutcome:
    try:
        result = await parse_csv_file_async(path, **kwargs)
    except (MissingColumnsError, OSError, pd.errors.ParserError) as exc:
        logger.warning("failed to parse %s: %s", path, exc)
        return FileParseOutcome(path=path, result=None, error=str(exc))
    return FileParseOutcome(path=path, result=result)


async def parse_files_async(
    paths: Sequence[str | Path],
    *,
    parallel: bool = True,
    **kwargs,
) -> list[FileParseOutcome]:
    """
    Parse several files, returning one outcome per path in input order.

    A structural failure in one file is captured in its outcome.
    """
    items = [Path(p) for p in paths]
    if parallel:
        return list(await asyncio.gather(*(_parse_one(p, **kwargs) for p in items)))
    outcomes: list[FileParseOutcome] = []
    for p in items:
        outcomes.append(await _parse_one(p, **kwargs))
    return outcomes


def parse_files(
    paths: Sequence[str | Path],
    *,
    parallel: bool = True,
    **kwargs,
) -> list[FileParseOutcome]:
    return asyncio.run(parse_files_async(paths, parallel=parallel, **kwargs))


def collect_records(outcomes: Sequence[FileParseOutcome]) -> list[InsuranceRecord]:
    records: list[InsuranceRecord] = []
    for outcome in outcomes:
        if outcome.result is not None:
            records.extend(outcome.result.data)
    return records
