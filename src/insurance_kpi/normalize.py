from __future__ import annotations

"""
Text canonicalization for categorical record fields.

Extracts are exported from several upstream systems and occasionally pass
through a lossy GBK round trip, so the same organization can arrive as
full-width text, with doubled spaces, or with U+FFFD where a character was
lost. Everything that is used as a grouping or filter key goes through
``normalize_text`` so that equal-meaning strings compare equal.
"""

from dataclasses import replace
import re
import unicodedata
from typing import Iterable

from .records import InsuranceRecord

NORMALIZED_TEXT_FIELDS: tuple[str, ...] = (
    "third_level_organization",
    "customer_category_3",
    "business_type_category",
    "terminal_source",
)

_REPLACEMENT = "�"
_WHITESPACE_RUN = re.compile(r"\s+")
# 客车/货车 are the only damaged terms seen in customer categories.
_BROKEN_VEHICLE = re.compile(r"([客货])�+")
_BROKEN_TRANSFER = re.compile(r"旧车�+过户")
_TRUNCATED_VEHICLE = re.compile(r"([客货])$")


def normalize_text(value: str | None) -> str:
    """
    Canonicalize one categorical text value.

    NFKC folds full-width letters, digits and spaces into their half-width
    forms; whitespace runs collapse to one space. The function is idempotent.
    """
    if value is None:
        return ""
    text = unicodedata.normalize("NFKC", str(value)).strip()
    if not text:
        return ""

    text = _BROKEN_VEHICLE.sub(r"\1车", text)
    text = _BROKEN_TRANSFER.sub("旧车过户", text)
    text = text.replace(_REPLACEMENT, "")
    text = _WHITESPACE_RUN.sub(" ", text).strip()
    return _TRUNCATED_VEHICLE.sub(r"\1车", text)


def normalize_record(record: InsuranceRecord) -> InsuranceRecord:
    updates = {name: normalize_text(getattr(record, name)) for name in NORMALIZED_TEXT_FIELDS}
    return replace(record, **updates)


def normalize_records(records: Iterable[InsuranceRecord]) -> list[InsuranceRecord]:
    return [normalize_record(record) for record in records]
