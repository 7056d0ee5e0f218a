from __future__ import annotations  # 型注釈の前方参照を許可するため

"""
Diagnostics helpers for structured outputs.
"""

from datetime import datetime, timezone  # タイムスタンプ生成に使うため
import hashlib  # 設定ハッシュとファイルダイジェストに使うため
from importlib import metadata  # ライブラリの版を記録するため
import json  # 構造化出力のため
import math  # 欠損値(NaN)の判定に使うため
from pathlib import Path  # ファイルパスを扱うため
import platform  # 実行環境情報を記録するため
from typing import Any, Mapping, Sequence  # 型注釈に使うため

from .analytics.anomaly import AnomalyPoint, anomaly_summary  # 異常値セクションの組み立てに使うため
from .analytics.trend import TrendFittingResult, describe_trend  # トレンドセクションの組み立てに使うため
from .filters import FilterState  # フィルタ条件を記録するため
from .formulas import get_kpi_formula  # 指標の単位を添えるため
from .kpi import ABSOLUTE_FIELDS, RATIO_FIELDS, KPIResult  # KPI結果の型と項目順に使うため
from .parser import FileParseOutcome  # ファイル単位の解析結果を記録するため


def _config_hash(config: Mapping[str, Any]) -> str:  # 設定内容のハッシュを作る
    payload = json.dumps(config, sort_keys=True, ensure_ascii=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


_TRACKED_DISTRIBUTIONS = ("numpy", "pandas", "PyYAML")  # 結果に影響するライブラリ
_DIGEST_BLOCK_BYTES = 1024 * 1024


def _input_digest(path: Path) -> dict[str, Any]:  # 入力CSVの同一性を記録する
    entry: dict[str, Any] = {"path": str(path), "exists": path.is_file()}
    if not entry["exists"]:
        return entry
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        while block := handle.read(_DIGEST_BLOCK_BYTES):
            digest.update(block)
    entry["size_bytes"] = path.stat().st_size
    entry["sha256"] = digest.hexdigest()
    return entry


def _library_versions() -> dict[str, str | None]:  # 依存ライブラリの版を記録する
    versions: dict[str, str | None] = {}
    for name in _TRACKED_DISTRIBUTIONS:
        try:
            versions[name] = metadata.version(name)
        except metadata.PackageNotFoundError:
            versions[name] = None
    return versions


def build_execution_context(
    base_dir: Path,
    config_path: Path | None = None,
    command: str | None = None,
    argv: Sequence[str] | None = None,
    input_paths: Sequence[Path] = (),
) -> dict[str, Any]:
    """
    Where and with what a run executed: paths, interpreter, library versions
    and a digest per input CSV.
    """
    return {
        "command": command,
        "argv": list(argv or []),
        "cwd": str(Path.cwd().resolve()),
        "base_dir": str(base_dir.resolve()),
        "config_path": None if config_path is None else str(config_path.resolve()),
        "python_version": platform.python_version(),
        "platform": platform.platform(),
        "libraries": _library_versions(),
        "input_files": [_input_digest(path) for path in input_paths],
    }


def _parse_entry(outcome: FileParseOutcome) -> dict[str, Any]:  # ファイルごとの解析統計を作る
    entry: dict[str, Any] = {"path": str(outcome.path), "ok": outcome.ok}
    if outcome.error is not None:
        entry["error"] = outcome.error
    if outcome.result is not None:
        entry["success"] = outcome.result.success
        entry["stats"] = outcome.result.stats.to_dict()
        entry["errors"] = [
            {"row": err.row, "messages": list(err.messages)} for err in outcome.result.errors
        ]
        entry["warning_count"] = len(outcome.result.warnings)
    return entry


def _kpi_section(result: KPIResult | None) -> dict[str, Any] | None:  # KPI結果を単位付きで整形する
    if result is None:
        return None
    values = result.to_dict()
    units: dict[str, str] = {}
    for name in ABSOLUTE_FIELDS + RATIO_FIELDS:
        formula = get_kpi_formula(name)
        if formula is not None:
            units[name] = formula.unit
    return {"values": values, "units": units}


def build_trend_section(
    metric: str,
    weeks: Sequence[int],
    series: Sequence[float],
    trend: TrendFittingResult,
    anomalies: Sequence[AnomalyPoint],
    anomaly_method: str | None = None,
    anomaly_threshold: float | None = None,
) -> dict[str, Any]:
    return {
        "metric": metric,
        "anomaly_method": anomaly_method,
        "anomaly_threshold": anomaly_threshold,
        "weeks": [int(w) for w in weeks],
        "series": [float(value) if math.isfinite(value) else None for value in series],
        "fit": trend.to_dict(),
        "description": describe_trend(trend),
        "anomalies": [
            {**point.to_dict(), "week": int(weeks[point.index])} for point in anomalies
        ],
        "anomaly_summary": anomaly_summary(series, anomalies),
    }


def build_run_summary(
    config: Mapping[str, Any],
    outcomes: Sequence[FileParseOutcome],
    filters: FilterState,
    kpi: KPIResult | None,
    source: str = "kpi",
    execution_context: Mapping[str, Any] | None = None,
    by_dimension: Mapping[Any, KPIResult] | None = None,
    trend: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    meta: dict[str, Any] = {
        "source": source,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "config_hash": _config_hash(config),
    }
    if execution_context is not None:
        meta["execution_context"] = dict(execution_context)

    total_rows = sum(o.result.stats.total_rows for o in outcomes if o.result is not None)
    valid_rows = sum(o.result.stats.valid_rows for o in outcomes if o.result is not None)

    summary: dict[str, Any] = {
        "meta": meta,
        "parse": {
            "file_count": len(outcomes),
            "failed_files": [str(o.path) for o in outcomes if not o.ok],
            "total_rows": total_rows,
            "valid_rows": valid_rows,
            "files": [_parse_entry(o) for o in outcomes],
        },
        "filters": filters.to_dict(),
        "kpi": _kpi_section(kpi),
    }
    if by_dimension is not None:
        summary["by_dimension"] = {
            str(key): result.to_dict() for key, result in by_dimension.items()
        }
    if trend is not None:
        summary["trend"] = dict(trend)
    return summary
