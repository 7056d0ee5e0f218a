from __future__ import annotations  # 型注釈の前方参照を許可して循環参照を避けるため

"""
CLI entrypoint for insurance KPI automation.
"""

import argparse  # CLI引数を扱うため
import logging  # ログ出力レベルを設定するため
from pathlib import Path  # パスをOSに依存せず扱うため
import sys  # argvを診断情報に残すため
from typing import Any  # 型注釈に使うため

import yaml  # YAML設定を読み込むため

from .analytics.anomaly import detect_anomalies  # 異常週の検出に使うため
from .analytics.trend import describe_trend, fit_trend  # トレンド推定に使うため
from .config import RunSettings, load_settings  # 設定値の解釈に使うため
from .diagnostics import build_execution_context, build_run_summary, build_trend_section  # 構造化診断に使うため
from .filters import filter_records, previous_period_filters  # フィルタ適用と前週条件の生成に使うため
from .kpi import (  # KPI計算の本体を呼び出すため
    ABSOLUTE_FIELDS,
    RATIO_FIELDS,
    TARGET_FIELDS,
    KPIResult,
    calculate,
    calculate_by_dimension,
    calculate_trend,
    kpi_series,
)
from .outputs import write_kpi_log, write_run_summary_json  # 出力ファイル生成に使うため
from .parser import FileParseOutcome, collect_records, parse_files  # CSV取込に使うため
from .paths import resolve_base_dir, resolve_input_paths, resolve_output_path  # 相対パス解決の基準を決めるため
from .records import InsuranceRecord, deduplicate_records  # レコード型と重複除去に使うため
from .validation import format_validation_issues, has_validation_errors, validate_config  # 設定検証に使うため

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _load_config(path: Path) -> dict:  # YAMLを読み込んで辞書に変換する補助関数
    loaded = yaml.safe_load(path.read_text(encoding="utf-8"))  # ファイルをUTF-8で読み、YAMLを安全にパースする
    return loaded if isinstance(loaded, dict) else {}  # 空ファイルは空設定として扱う


class _Run:  # 1回のCLI実行で共有する状態をまとめる
    def __init__(self, config_path: Path, command: str):
        self.config_path = config_path.expanduser().resolve()  # 設定ファイルの絶対パス
        self.command = command  # 実行コマンド名
        self.config = _load_config(self.config_path)  # 設定ファイルを読み込む
        _check_config(self.config)  # 実行前に設定を検証する
        try:
            self.settings: RunSettings = load_settings(self.config)  # 設定をデータクラスに変換する
        except ValueError as exc:  # 値の型・範囲が不正な場合
            print(f"config_error: {exc}")
            raise SystemExit(2) from exc
        self.base_dir = resolve_base_dir(self.config_path)  # 相対パス解決の基準ディレクトリを取得する
        self.input_paths = resolve_input_paths(self.base_dir, self.settings.inputs)  # 入力CSVの絶対パス（重複指定は1回）
        if not self.input_paths:  # 入力がなければ実行できない
            print("config_error: no input CSV files configured")
            raise SystemExit(2)

    def parse(self) -> list[FileParseOutcome]:  # 全入力ファイルを解析する
        parser_settings = self.settings.parser
        return parse_files(
            self.input_paths,
            parallel=parser_settings.parallel,
            chunk_size=parser_settings.chunk_size,
            max_error_rows=parser_settings.max_error_rows,
            max_warning_messages=parser_settings.max_warning_messages,
            today=parser_settings.today,
            defaults=self.settings.enum_defaults,
        )

    def records(self, outcomes: list[FileParseOutcome]) -> list[InsuranceRecord]:  # 構造エラーがあれば中断する
        failed = [outcome for outcome in outcomes if not outcome.ok]
        for outcome in failed:
            print(f"input_error: {outcome.path} - {outcome.error}")
        if failed:
            raise SystemExit(2)
        collected = collect_records(outcomes)
        records = deduplicate_records(collected)  # 複数ファイル間の重複を除く
        if len(records) < len(collected):
            logger.info("dropped %d duplicate records", len(collected) - len(records))
        return records

    def execution_context(self) -> dict[str, Any]:
        return build_execution_context(
            base_dir=self.base_dir,
            config_path=self.config_path,
            command=f"insurance_kpi.cli {self.command}",
            argv=sys.argv[1:],
            input_paths=self.input_paths,
        )

    def summary_path(self, raw: str | None) -> Path:  # サマリJSONの出力先を決める
        configured = raw if raw is not None else self.settings.outputs.summary_path
        return resolve_output_path(self.base_dir, configured, f"out/{self.command}_summary.json")


def _check_config(config: dict) -> None:  # 設定の検証結果を表示し、エラーなら終了する
    issues = validate_config(config)
    for line in format_validation_issues(issues):
        print(line)
    if has_validation_errors(issues):
        raise SystemExit(2)


def _format_kpi_lines(result: KPIResult | None) -> list[str]:  # KPI結果を人が読みやすい行に整形する
    if result is None:
        return ["no records matched the filters"]
    lines: list[str] = []
    for name in ABSOLUTE_FIELDS + RATIO_FIELDS + TARGET_FIELDS:  # 表示順を固定する
        value = getattr(result, name)
        lines.append(f"{name}: {'n/a' if value is None else value}")
    return lines


def validate_from_config(config_path: Path) -> int:  # 入力CSVの取込だけを行い、品質を確認する
    """
    Parse every configured input and print per-file statistics.
    """
    run = _Run(config_path, "validate")
    outcomes = run.parse()
    exit_code = 0
    for outcome in outcomes:
        if outcome.result is None:  # 構造エラーで解析できなかったファイル
            print(f"input_error: {outcome.path} - {outcome.error}")
            exit_code = 2
            continue
        stats = outcome.result.stats
        print(
            f"file: {outcome.path} encoding={stats.encoding} total_rows={stats.total_rows} "
            f"valid_rows={stats.valid_rows} invalid_rows={stats.invalid_rows} "
            f"warning_rows={stats.warning_rows} success={outcome.result.success}"
        )
        for error in outcome.result.errors:  # 先頭の行エラーを表示する
            print(f"row_error: row {error.row}: {'; '.join(error.messages)}")
    return exit_code


def kpi_from_config(config_path: Path, out_path: Path | None = None) -> int:  # フィルタ済みKPIを計算して出力する
    """
    Calculate KPIs for the configured filters and write summary/log outputs.
    """
    run = _Run(config_path, "kpi")
    outcomes = run.parse()
    records = run.records(outcomes)
    settings = run.settings

    current = filter_records(records, settings.filters)  # 当期のレコードを抽出する
    if settings.kpi.mode == "increment":  # 増分表示では前週との差分を取る
        previous_filters = previous_period_filters(settings.filters)
        previous = [] if previous_filters is None else filter_records(records, previous_filters)
        result = calculate(current, settings.kpi, previous=previous)
    else:
        result = calculate(current, settings.kpi)

    summary_path = run.summary_path(None if out_path is None else str(out_path))
    log_path = resolve_output_path(run.base_dir, settings.outputs.log_path, "out/kpi_log.txt")
    summary = build_run_summary(
        run.config,
        outcomes,
        settings.filters,
        result,
        source="kpi",
        execution_context=run.execution_context(),
    )
    write_run_summary_json(summary_path, summary)  # 構造化サマリを書き出す
    write_kpi_log(log_path, outcomes, settings.filters, result)  # テキストログを書き出す

    for line in _format_kpi_lines(result):  # 標準出力にも結果を表示する
        print(line)
    print(f"wrote: {summary_path}")
    print(f"wrote: {log_path}")
    return 0


def by_dimension_from_config(  # 次元ごとのKPIを計算して出力する
    config_path: Path,
    dimension: str,
    out_path: Path | None = None,
) -> int:
    run = _Run(config_path, "by-dimension")
    outcomes = run.parse()
    records = run.records(outcomes)
    settings = run.settings
    try:
        results = calculate_by_dimension(records, dimension, settings.kpi, settings.filters)
    except ValueError as exc:  # 未知の次元名
        print(f"argument_error: {exc}")
        raise SystemExit(2) from exc

    for key, result in results.items():
        print(
            f"{key} signed_premium={result.signed_premium} loss_ratio={result.loss_ratio} "
            f"expense_ratio={result.expense_ratio} "
            f"contribution_margin_ratio={result.contribution_margin_ratio}"
        )

    summary_path = run.summary_path(None if out_path is None else str(out_path))
    summary = build_run_summary(
        run.config,
        outcomes,
        settings.filters,
        calculate(filter_records(records, settings.filters), settings.kpi),
        source="by-dimension",
        execution_context=run.execution_context(),
        by_dimension=results,
    )
    summary["dimension"] = dimension
    write_run_summary_json(summary_path, summary)
    print(f"wrote: {summary_path}")
    return 0


def trend_from_config(  # 週次KPI系列のトレンドと異常週を出力する
    config_path: Path,
    metric: str | None = None,
    out_path: Path | None = None,
) -> int:
    run = _Run(config_path, "trend")
    settings = run.settings
    analytics = settings.analytics
    metric_name = metric or analytics.metric
    if metric_name not in ABSOLUTE_FIELDS + RATIO_FIELDS + TARGET_FIELDS:  # 未知の指標は実行前に弾く
        print(f"argument_error: unknown KPI metric '{metric_name}'")
        raise SystemExit(2)

    outcomes = run.parse()
    records = run.records(outcomes)
    filters = settings.filters
    weeks = list(filters.trend_mode_weeks) or sorted(filters.weeks)  # 週の指定がなければデータ中の全週
    if not weeks:
        weeks = sorted({record.week_number for record in filter_records(records, filters)})

    trend = calculate_trend(records, filters, weeks, settings.kpi)
    weeks = sorted(trend)
    series = kpi_series(trend, metric_name)
    fit = fit_trend(
        series,
        analytics.trend_method,
        window=analytics.window,
        alpha=analytics.alpha,
        degree=analytics.degree,
        predict=analytics.predict_steps > 0,
        predict_steps=analytics.predict_steps,
    )
    threshold = analytics.effective_threshold()  # 未指定なら手法ごとの既定値
    anomalies = detect_anomalies(
        series,
        analytics.anomaly_method,
        threshold=threshold,
        min_data_points=analytics.min_data_points,
    )

    for week, value in zip(weeks, series):
        print(f"week {week}: {metric_name}={value}")
    print(f"trend: {describe_trend(fit)} r_squared={fit.r_squared:.4f}")
    for point in anomalies:
        print(f"anomaly: week {weeks[point.index]} value={point.value} type={point.type}")

    summary_path = run.summary_path(None if out_path is None else str(out_path))
    summary = build_run_summary(
        run.config,
        outcomes,
        filters,
        None,
        source="trend",
        execution_context=run.execution_context(),
        trend=build_trend_section(
            metric_name,
            weeks,
            series,
            fit,
            anomalies,
            anomaly_method=analytics.anomaly_method,
            anomaly_threshold=threshold,
        ),
    )
    write_run_summary_json(summary_path, summary)
    print(f"wrote: {summary_path}")
    return 0


def main(argv: list[str] | None = None) -> int:  # CLIのメイン処理を実装する
    parser = argparse.ArgumentParser(description="Insurance KPI automation CLI.")  # CLI全体の説明を設定する
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=_LOG_LEVELS,
        default="WARNING",
        help="Logging level for library diagnostics (written to stderr).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)  # サブコマンドを必須化する

    validate_parser = subparsers.add_parser(
        "validate", help="Parse the configured CSV inputs and report data quality."
    )
    validate_parser.add_argument("config", type=str, help="Path to config YAML.")

    kpi_parser = subparsers.add_parser("kpi", help="Calculate KPIs for the configured filters.")
    kpi_parser.add_argument("config", type=str, help="Path to config YAML.")
    kpi_parser.add_argument("--out", type=str, default=None, help="Run summary JSON path.")

    dimension_parser = subparsers.add_parser(
        "by-dimension", help="Calculate KPIs per value of one dimension."
    )
    dimension_parser.add_argument("config", type=str, help="Path to config YAML.")
    dimension_parser.add_argument(
        "--dimension",
        type=str,
        required=True,
        help="Filter dimension (e.g. organizations) or record field name.",
    )
    dimension_parser.add_argument("--out", type=str, default=None, help="Run summary JSON path.")

    trend_parser = subparsers.add_parser(
        "trend", help="Fit a trend and flag anomalies on a weekly KPI series."
    )
    trend_parser.add_argument("config", type=str, help="Path to config YAML.")
    trend_parser.add_argument("--metric", type=str, default=None, help="KPI metric key.")
    trend_parser.add_argument("--out", type=str, default=None, help="Run summary JSON path.")

    args = parser.parse_args(argv)  # CLI引数を解析する
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    out_path = Path(args.out) if getattr(args, "out", None) else None  # 出力先（指定時のみ）

    if args.command == "validate":  # validateコマンドの場合
        return validate_from_config(Path(args.config))
    if args.command == "kpi":  # kpiコマンドの場合
        return kpi_from_config(Path(args.config), out_path=out_path)
    if args.command == "by-dimension":  # by-dimensionコマンドの場合
        return by_dimension_from_config(Path(args.config), args.dimension, out_path=out_path)
    if args.command == "trend":  # trendコマンドの場合
        return trend_from_config(Path(args.config), metric=args.metric, out_path=out_path)
    return 1  # 未知のコマンドは異常終了として扱う


if __name__ == "__main__":  # 直接実行された場合のみCLIを起動する
    raise SystemExit(main())  # mainの戻り値を終了コードとして返す
