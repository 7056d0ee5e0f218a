from __future__ import annotations  # 型注釈の前方参照を許可し、循環参照を避けるため

"""
Output helpers for KPI run results.
"""

from pathlib import Path  # パスの操作をOS非依存で行うため
import json  # JSON出力に使うため
from typing import Any, Mapping, Sequence  # 型注釈に使うため

from .filters import FilterState  # フィルタ条件をログに残すため
from .formulas import get_kpi_formula  # 指標の単位を表示するため
from .kpi import ABSOLUTE_FIELDS, RATIO_FIELDS, KPIResult  # KPI結果の型と表示順に使うため
from .parser import FileParseOutcome  # ファイル単位の解析結果を参照するため


def _format_metric(name: str, value: Any) -> str:  # 指標1行分の表示を作る
    formula = get_kpi_formula(name)  # 単位を引くためにカタログを参照する
    unit = formula.unit if formula is not None else ""  # 未登録の指標は単位なし
    if value is None:  # 分母ゼロなどで算出不能の場合
        return f"{name}: n/a"  # 欠損として表示する
    return f"{name}: {value}{unit}"  # 値と単位を連結する


def write_run_summary_json(path: Path, summary: Mapping[str, Any]) -> Path:  # 構造化サマリを保存する
    path.parent.mkdir(parents=True, exist_ok=True)  # 出力先ディレクトリを作成する
    path.write_text(json.dumps(summary, indent=2, ensure_ascii=True), encoding="utf-8")  # JSONとして保存する
    return path  # 保存先を返す


def write_kpi_log(  # KPI計算結果をテキストで出力する
    path: Path,  # ログ出力先
    outcomes: Sequence[FileParseOutcome],  # 入力ファイルごとの解析結果
    filters: FilterState,  # 適用したフィルタ
    result: KPIResult | None,  # KPI計算結果
    command: str = "kpi",  # 実行コマンド名
) -> Path:  # 保存先を返す
    """
    Write a plain-text log with parse statistics, filters and KPI values.
    """
    path.parent.mkdir(parents=True, exist_ok=True)  # 出力先ディレクトリを作成する

    lines = [  # ログの先頭部分を作る
        command,  # セクション名
        f"view_mode: {filters.view_mode}",  # 表示モード
        f"data_view_type: {filters.data_view_type}",  # 当期/増分
        f"years: {sorted(filters.years)}",  # 保单年度
        f"weeks: {sorted(filters.weeks)}",  # 周次
    ]  # ログのヘッダーここまで

    lines.append("inputs")  # 入力ファイルの見出し
    for outcome in outcomes:  # ファイルごとに解析統計を記録する
        if outcome.result is None:  # 構造エラーで解析できなかった場合
            lines.append(f"{outcome.path} error={outcome.error}")  # エラー内容を記録する
            continue
        stats = outcome.result.stats  # 解析統計を取り出す
        lines.append(  # 1行で主要な統計を出力する
            f"{outcome.path} encoding={stats.encoding} total_rows={stats.total_rows} "
            f"valid_rows={stats.valid_rows} invalid_rows={stats.invalid_rows} "
            f"warning_rows={stats.warning_rows}"
        )
        for error in outcome.result.errors:  # 行エラーを列挙する
            lines.append(f"error: row {error.row}: {'; '.join(error.messages)}")  # 行エラーとして追加する

    lines.append("kpi")  # KPIセクションの見出し
    if result is None:  # 対象レコードがない場合
        lines.append("no records matched the filters")  # 空であることを明記する
    else:
        for name in ABSOLUTE_FIELDS + RATIO_FIELDS:  # 表示順を固定して出力する
            lines.append(_format_metric(name, getattr(result, name)))  # 指標を1行ずつ追加する
        lines.append(f"annual_premium_target: {result.annual_premium_target}")  # 年度保费目标
        lines.append(f"annual_policy_count_target: {result.annual_policy_count_target}")  # 年度件数目标

    path.write_text("\n".join(lines), encoding="utf-8")  # テキストとして保存する
    return path  # 保存先を返す
