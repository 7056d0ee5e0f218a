from __future__ import annotations  # 型注釈の前方参照を許可し、循環参照を避けるため

import argparse  # CLI引数を扱うため
from pathlib import Path  # パスをOS非依存で扱うため

from insurance_kpi.sample_data import SampleDataSpec, write_sample_csv  # サンプル明細の生成に使うため


def main() -> int:  # スクリプトのメイン処理をまとめる
    parser = argparse.ArgumentParser()  # 引数パーサを作る
    parser.add_argument("--out", default="data/sample_weekly.csv")  # 出力先CSVの指定
    parser.add_argument("--seed", type=int, default=12345)  # 乱数シードの指定
    parser.add_argument("--year", type=int, default=2025)  # 保单年度の指定
    parser.add_argument("--weeks", type=int, default=8)  # 生成週数の指定
    parser.add_argument("--encoding", default="utf-8")  # 文字コード（gb18030 で判定確認用）
    args = parser.parse_args()  # 引数を解析する

    spec = SampleDataSpec(year=args.year, weeks=args.weeks)  # 入力仕様を構築する
    out_path = write_sample_csv(Path(args.out), seed=args.seed, spec=spec, encoding=args.encoding)  # CSVを書き出す
    print(f"wrote: {out_path}")  # 出力先を表示する
    return 0  # 正常終了コードを返す


if __name__ == "__main__":  # 直接実行時のみmainを呼ぶ
    raise SystemExit(main())  # 終了コードを返す
