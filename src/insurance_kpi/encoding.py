from __future__ import annotations

"""
Encoding detection for CSV extracts.

Branch exports arrive either as UTF-8 (with or without BOM) or in one of the
GB family encodings. Detection decodes a bounded prefix under each candidate
and scores the result by how Chinese it looks.
"""

import codecs
from dataclasses import dataclass, field
import logging
import math
from typing import Sequence

logger = logging.getLogger(__name__)

DEFAULT_CANDIDATES: tuple[str, ...] = ("utf-8", "gb18030", "gbk", "gb2312")
DEFAULT_SAMPLE_SIZE = 256 * 1024

CJK_WEIGHT = 5.0
REPLACEMENT_PENALTY = -20.0

_BOM = "﻿"


@dataclass(frozen=True)
class DecodedText:
    text: str
    encoding: str
    scores: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class _CandidateScore:
    encoding: str
    score: float
    latin_extended: int
    order: int


def _is_cjk(ch: str) -> bool:
    code = ord(ch)
    return 0x4E00 <= code <= 0x9FFF or 0x3400 <= code <= 0x4DBF


def _is_latin_extended(ch: str) -> bool:
    return 0x00C0 <= ord(ch) <= 0x024F


def score_text(text: str) -> tuple[float, int]:
    """
    Return (score, latin_extended_count) for a decoded sample.

    Latin-extended characters carry no weight in the score; mis-decoded GB
    bytes often land there, so the count is kept as a tie-break signal.
    """
    cjk = 0
    replacement = 0
    latin_extended = 0
    for ch in text:
        if ch == "�":
            replacement += 1
        elif _is_cjk(ch):
            cjk += 1
        elif _is_latin_extended(ch):
            latin_extended += 1
    return CJK_WEIGHT * cjk + REPLACEMENT_PENALTY * replacement, latin_extended


def _decode_sample(sample: bytes, encoding: str) -> str:
    # final=False leaves a multi-byte sequence cut at the sample boundary pending.
    decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
    return decoder.decode(sample, final=False)


def _is_strict_utf8(sample: bytes) -> bool:
    try:
        codecs.getincrementaldecoder("utf-8")(errors="strict").decode(sample, final=False)
    except UnicodeDecodeError:
        return False
    return True


def _strip_bom(text: str) -> str:
    return text[1:] if text.startswith(_BOM) else text


def detect_encoding(
    buffer: bytes,
    candidates: Sequence[str] = DEFAULT_CANDIDATES,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> DecodedText:
    """
    Pick the best candidate encoding and decode the whole buffer with it.

    Never raises: failing candidates score -inf and, when every candidate
    fails, the buffer is decoded as UTF-8 with replacement characters.
    """
    sample = bytes(buffer[: max(0, int(sample_size))])
    ranked: list[_CandidateScore] = []
    scores: dict[str, float] = {}

    for order, encoding in enumerate(candidates):
        try:
            decoded = _decode_sample(sample, encoding)
        except (LookupError, UnicodeError) as exc:
            logger.debug("encoding candidate %s failed: %s", encoding, exc)
            scores[encoding] = -math.inf
            continue
        score, latin_extended = score_text(decoded)
        logger.debug(
            "encoding candidate %s score=%.1f latin_extended=%d", encoding, score, latin_extended
        )
        scores[encoding] = score
        ranked.append(_CandidateScore(encoding, score, latin_extended, order))

    if "utf-8" in scores and scores["utf-8"] != -math.inf and _is_strict_utf8(sample):
        # GB decoders accept most UTF-8 CJK byte pairs and can outscore it.
        best = next(c for c in ranked if c.encoding == "utf-8")
    elif not ranked:
        logger.warning("no candidate encoding could decode the buffer; falling back to utf-8")
        return DecodedText(
            text=_strip_bom(bytes(buffer).decode("utf-8", errors="replace")),
            encoding="utf-8",
            scores=scores,
        )
    else:
        best = min(ranked, key=lambda c: (-c.score, c.latin_extended, c.order))
    try:
        text = bytes(buffer).decode(best.encoding, errors="replace")
    except (LookupError, UnicodeError) as exc:
        logger.debug("full decode with %s failed: %s", best.encoding, exc)
        return DecodedText(
            text=_strip_bom(bytes(buffer).decode("utf-8", errors="replace")),
            encoding="utf-8",
            scores=scores,
        )

    logger.info("detected encoding %s (score %.1f)", best.encoding, best.score)
    return DecodedText(text=_strip_bom(text), encoding=best.encoding, scores=scores)
