from __future__ import annotations

import math
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from insurance_kpi.encoding import detect_encoding, score_text  # noqa: E402

SAMPLE = "third_level_organization,customer_category_3\n天府,非营业个人客车\n乐山,营业货车\n"


def test_score_text_rewards_cjk_and_penalizes_replacement() -> None:
    score, latin_extended = score_text("天府�é")

    assert score == 2 * 5.0 - 20.0
    assert latin_extended == 1


def test_detect_encoding_prefers_utf8_for_utf8_chinese() -> None:
    decoded = detect_encoding(SAMPLE.encode("utf-8"))

    assert decoded.encoding == "utf-8"
    assert decoded.text == SAMPLE


def test_detect_encoding_strips_utf8_bom() -> None:
    decoded = detect_encoding(SAMPLE.encode("utf-8-sig"))

    assert decoded.encoding == "utf-8"
    assert decoded.text == SAMPLE


def test_detect_encoding_recognizes_gb18030_bytes() -> None:
    decoded = detect_encoding(SAMPLE.encode("gb18030"))

    assert decoded.encoding == "gb18030"
    assert decoded.text == SAMPLE
    assert decoded.scores["gb18030"] > decoded.scores["utf-8"]


def test_detect_encoding_skips_unknown_candidates() -> None:
    decoded = detect_encoding(SAMPLE.encode("utf-8"), candidates=("no-such-codec", "utf-8"))

    assert decoded.encoding == "utf-8"
    assert decoded.scores["no-such-codec"] == -math.inf


def test_detect_encoding_falls_back_when_every_candidate_fails() -> None:
    decoded = detect_encoding(b"a,b\n1,2\n", candidates=("no-such-codec",))

    assert decoded.encoding == "utf-8"
    assert decoded.text == "a,b\n1,2\n"
