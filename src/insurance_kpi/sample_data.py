from __future__ import annotations  # 型注釈の前方参照を許可し、循環参照を避けるため

"""
サンプル週次明細（保单周变动成本明细表）を再現性つきで生成するモジュール。

目的
- 実データが手元にない段階でも、取込・KPI計算・トレンド分析を一通り動かせる
  入力CSVを一貫した規約で用意する。
- 「妥当に見える」ことよりも、「再現性」と「パラメータの意味が明確である」ことを優先する。

重要な規約
- 乱数は seed で固定する。seed が同一なら出力CSVも同一になる。
- 金額は年初からの累計（当周累计）で出力する。週ごとの増分は必ず非負になる。
- 満期保費は签单保费に満期率を掛けて作るため、常に签单保费以下になる。
- snapshot_date は各週の週末日（土曜日）とする。
"""

from dataclasses import dataclass  # 入力パラメータを構造化するため
from pathlib import Path  # ファイルパスをOS非依存で扱うため

import numpy as np  # 乱数と配列計算に使うため
import pandas as pd  # データフレーム作成に使うため

from .dates import time_progress, week_end_date  # 週末日と時間進度の計算に使うため
from .records import REQUIRED_FIELDS  # 出力列の順序を揃えるため


@dataclass(frozen=True)  # 入力パラメータを不変で扱うため
class SampleDataSpec:  # サンプル明細の前提条件をまとめる
    """
    サンプル明細生成の入力パラメータ。

    単位
    - 金額：元
    - 率：比率（例：0.6 は 60%）
    - 件数：件（1週あたりの新規件数）
    """

    year: int = 2025  # 保单年度
    weeks: int = 8  # 生成する週数（第1周から）

    organizations: tuple[str, ...] = ("天府", "高新", "乐山", "宜宾")  # 三级机构
    customer_categories: tuple[str, ...] = ("非营业个人客车", "营业货车")  # 客户三级分类
    insurance_types: tuple[str, ...] = ("商业险", "交强险")  # 险种
    terminal_sources: tuple[str, ...] = ("0110融合销售", "0106移动展业(App)")  # 终端来源

    weekly_premium_yuan: float = 50_000.0  # 1セル1週あたりの签单保费（元）
    average_premium_yuan: float = 2_500.0  # 件均保费（元）
    maturity_rate: float = 0.8  # 满期率（满期保费 / 签单保费）
    loss_ratio: float = 0.6  # 赔付率の中心値（赔款 / 满期保费）
    expense_ratio: float = 0.15  # 费用率の中心値（费用 / 签单保费）
    average_claim_yuan: float = 5_000.0  # 案均赔款（元）
    plan_multiplier: float = 1.05  # 保费计划 = 年化签单保费 × 倍率

    noise_sd_ratio: float = 0.05  # 乱数ノイズの標準偏差比率
    new_energy_share: float = 0.3  # 新能源车の割合

    grades: tuple[str, ...] = ("A", "B", "C", "D")  # 车险分等级の候補


def _noisy(rng: np.random.Generator, x: float, sd_ratio: float) -> float:  # 乗算ノイズを付与する
    """
    乗算ノイズ（1 + 正規ノイズ）を適用し、負値は0に切り上げる。
    """
    z = rng.normal(loc=0.0, scale=sd_ratio)  # 正規乱数を生成する
    return max(0.0, x * (1.0 + z))  # 乗算ノイズを適用する


def generate_sample_records_df(seed: int, spec: SampleDataSpec) -> pd.DataFrame:  # サンプル明細を生成する
    """
    サンプル明細のデータフレームを生成する。

    返却列は ``records.REQUIRED_FIELDS`` と同じ順序とする。
    """
    rng = np.random.default_rng(seed)  # 再現性のある乱数生成器を作る
    rows: list[dict[str, object]] = []  # 出力行を蓄積する

    for org in spec.organizations:  # 機構ごと
        for category in spec.customer_categories:  # 客户分类ごと
            for ins_type in spec.insurance_types:  # 险种ごと
                is_truck = category.endswith("货车")  # 货车かどうか
                new_energy = bool(rng.random() < spec.new_energy_share)  # 新能源车フラグ
                grade = str(rng.choice(spec.grades))  # 车险分等级
                terminal = str(rng.choice(spec.terminal_sources))  # 终端来源
                annual_plan = spec.weekly_premium_yuan * 52 * spec.plan_multiplier  # 年度保费计划

                signed = matured = claims = expense = 0.0  # 累計値の初期化
                policies = cases = 0  # 件数の初期化
                for week in range(1, spec.weeks + 1):  # 週ごとに累計を積み上げる
                    weekly_signed = _noisy(rng, spec.weekly_premium_yuan, spec.noise_sd_ratio)  # 当周签单保费
                    signed += weekly_signed  # 签单保费の累計
                    matured = signed * spec.maturity_rate * time_progress(spec.year, week) / time_progress(spec.year, spec.weeks)  # 满期保费（経過に比例）
                    matured = min(matured, signed)  # 满期保费は签单保费を超えない
                    claims = max(claims, _noisy(rng, matured * spec.loss_ratio, spec.noise_sd_ratio))  # 赔款の累計（単調増加）
                    expense += _noisy(rng, weekly_signed * spec.expense_ratio, spec.noise_sd_ratio)  # 费用の累計
                    policies += max(1, int(round(weekly_signed / spec.average_premium_yuan)))  # 保单件数の累計
                    cases = max(cases, int(round(claims / spec.average_claim_yuan)))  # 赔案件数の累計
                    contribution = matured - claims - expense  # 边际贡献额

                    rows.append(  # 1行分の明細を追加する
                        {
                            "snapshot_date": week_end_date(spec.year, week).isoformat(),  # 快照日期
                            "policy_start_year": spec.year,  # 保单年度
                            "business_type_category": "非营业客车旧车非过户" if not is_truck else "营业货车",  # 业务类型
                            "chengdu_branch": "成都" if org in ("天府", "高新") else "中支",  # 成都/中支
                            "third_level_organization": org,  # 三级机构
                            "customer_category_3": category,  # 客户三级分类
                            "insurance_type": ins_type,  # 险种
                            "is_new_energy_vehicle": "True" if new_energy else "False",  # 新能源车
                            "coverage_type": "主全" if ins_type == "商业险" else "单交",  # 险别组合
                            "is_transferred_vehicle": "False",  # 过户车
                            "renewal_status": "续保" if week % 2 == 0 else "新保",  # 续保状态
                            "vehicle_insurance_grade": grade,  # 车险分等级
                            "highway_risk_grade": "B" if is_truck else "",  # 高速风险等级
                            "large_truck_score": "C" if is_truck else "",  # 大货车评分
                            "small_truck_score": "",  # 小货车评分
                            "terminal_source": terminal,  # 终端来源
                            "signed_premium_yuan": round(signed, 2),  # 签单保费
                            "matured_premium_yuan": round(matured, 2),  # 满期保费
                            "policy_count": policies,  # 保单件数
                            "claim_case_count": cases,  # 赔案件数
                            "reported_claim_payment_yuan": round(claims, 2),  # 已报告赔款
                            "expense_amount_yuan": round(expense, 2),  # 费用金额
                            "commercial_premium_before_discount_yuan": round(signed * 1.1, 2),  # 商业险折前保费
                            "premium_plan_yuan": round(annual_plan, 2),  # 保费计划
                            "marginal_contribution_amount_yuan": round(contribution, 2),  # 边际贡献额
                            "week_number": week,  # 周次
                        }
                    )

    df = pd.DataFrame(rows, columns=list(REQUIRED_FIELDS))  # 列順を揃えてデータフレームにまとめる
    return df  # データフレームを返す


def write_sample_csv(  # CSVとして保存する
    path: str | Path,
    seed: int,
    spec: SampleDataSpec,
    encoding: str = "utf-8",
) -> Path:
    """
    CSVとして保存する。
    - encoding に gb18030 などを指定すると、文字コード判定の確認用データになる。
    """
    out_path = Path(path)  # 文字列をPathに変換する
    out_path.parent.mkdir(parents=True, exist_ok=True)  # 出力先ディレクトリを作る
    df = generate_sample_records_df(seed=seed, spec=spec)  # データフレームを生成する
    df.to_csv(out_path, index=False, encoding=encoding)  # CSVとして保存する
    return out_path  # 保存先を返す
