from __future__ import annotations

"""
Read-only KPI formula catalog.

Display text is in Chinese because it is shown to business users next to
the metric values; keys match ``KPIResult`` field names.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class KPIFormula:
    key: str
    name: str
    formula: str
    description: str
    unit: str
    business_meaning: str
    numerator: str | None = None
    denominator: str | None = None
    example: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "key": self.key,
            "name": self.name,
            "formula": self.formula,
            "description": self.description,
            "unit": self.unit,
            "business_meaning": self.business_meaning,
            "numerator": self.numerator,
            "denominator": self.denominator,
            "example": self.example,
        }


_CATALOG: tuple[KPIFormula, ...] = (
    KPIFormula(
        key="loss_ratio",
        name="满期赔付率",
        formula="已报告赔款 / 满期保费 × 100%",
        description="每一元已满期保费对应的已报告赔款",
        unit="%",
        business_meaning="衡量承保质量的核心指标，越低说明赔付压力越小",
        numerator="已报告赔款",
        denominator="满期保费",
        example="赔款 60 万元 / 满期保费 100 万元 = 60%",
    ),
    KPIFormula(
        key="expense_ratio",
        name="费用率",
        formula="费用金额 / 签单保费 × 100%",
        description="获取业务所支出的费用占签单保费的比例",
        unit="%",
        business_meaning="反映渠道与获客成本，过高会侵蚀边际贡献",
        numerator="费用金额",
        denominator="签单保费",
        example="费用 15 万元 / 签单保费 100 万元 = 15%",
    ),
    KPIFormula(
        key="maturity_ratio",
        name="满期率",
        formula="满期保费 / 签单保费 × 100%",
        description="签单保费中已经赚取的部分",
        unit="%",
        business_meaning="说明保费的赚取进度，年初偏低、年末趋近 100%",
        numerator="满期保费",
        denominator="签单保费",
        example="满期保费 80 万元 / 签单保费 100 万元 = 80%",
    ),
    KPIFormula(
        key="contribution_margin_ratio",
        name="满期边际贡献率",
        formula="边际贡献额 / 满期保费 × 100%",
        description="扣除赔款与变动费用后，满期保费中留存的贡献比例",
        unit="%",
        business_meaning="盈利能力指标，负值表示业务在变动成本层面亏损",
        numerator="边际贡献额",
        denominator="满期保费",
        example="边际贡献 10 万元 / 满期保费 80 万元 = 12.5%",
    ),
    KPIFormula(
        key="variable_cost_ratio",
        name="变动成本率",
        formula="费用率 + 满期赔付率",
        description="赔付与费用两项变动成本之和；缺失的一项按 0 计",
        unit="%",
        business_meaning="高于 100% 时业务在变动成本层面不盈利",
        example="费用率 15% + 满期赔付率 60% = 75%",
    ),
    KPIFormula(
        key="matured_claim_ratio",
        name="满期出险率",
        formula="(赔案件数 / 保单件数) × 满期率",
        description="按满期程度折算后的出险频度",
        unit="%",
        business_meaning="出险频率指标，与满期赔付率配合判断赔付是频度驱动还是案均驱动",
        numerator="赔案件数",
        denominator="保单件数",
        example="(30 件 / 1000 件) × 80% = 2.4%",
    ),
    KPIFormula(
        key="autonomy_coefficient",
        name="商业险自主系数",
        formula="签单保费 / 商业险折前保费",
        description="实际签单价格相对折前价格的比值",
        unit="",
        business_meaning="定价折扣水平，越低说明折扣越大",
        numerator="签单保费",
        denominator="商业险折前保费",
        example="签单保费 85 万元 / 折前保费 100 万元 = 0.85",
    ),
    KPIFormula(
        key="premium_progress",
        name="保费时间进度达成率",
        formula="(签单保费 / 保费计划) / 时间进度 × 100%",
        description="保费完成率与年度时间进度之比",
        unit="%",
        business_meaning="100% 表示保费进度与时间进度同步，低于 100% 表示落后",
        numerator="签单保费",
        denominator="保费计划",
        example="(完成率 45% / 时间进度 50%) = 90%",
    ),
    KPIFormula(
        key="policy_count_progress",
        name="件数时间进度达成率",
        formula="(保单件数 / 件数目标) / 时间进度 × 100%",
        description="件数完成率与年度时间进度之比",
        unit="%",
        business_meaning="衡量业务规模是否按时间进度推进",
        numerator="保单件数",
        denominator="件数目标",
        example="(完成率 55% / 时间进度 50%) = 110%",
    ),
    KPIFormula(
        key="signed_premium",
        name="签单保费",
        formula="Σ 签单保费 / 10000",
        description="所选范围内签单保费合计",
        unit="万元",
        business_meaning="业务规模的基础指标",
    ),
    KPIFormula(
        key="matured_premium",
        name="满期保费",
        formula="Σ 满期保费 / 10000",
        description="所选范围内已赚取保费合计",
        unit="万元",
        business_meaning="赔付率与边际贡献率的分母",
    ),
    KPIFormula(
        key="reported_claim_payment",
        name="已报告赔款",
        formula="Σ 已报告赔款 / 10000",
        description="已报案件的赔款合计（含已决与未决）",
        unit="万元",
        business_meaning="赔付成本的绝对规模",
    ),
    KPIFormula(
        key="expense_amount",
        name="费用金额",
        formula="Σ 费用金额 / 10000",
        description="手续费等变动费用合计",
        unit="万元",
        business_meaning="获客成本的绝对规模",
    ),
    KPIFormula(
        key="contribution_margin_amount",
        name="边际贡献额",
        formula="Σ 边际贡献额 / 10000",
        description="满期保费扣除赔款和变动费用后的金额合计",
        unit="万元",
        business_meaning="业务对固定成本和利润的贡献，可为负",
    ),
    KPIFormula(
        key="policy_count",
        name="保单件数",
        formula="Σ 保单件数",
        description="所选范围内的保单数量",
        unit="件",
        business_meaning="业务规模的件数口径",
    ),
    KPIFormula(
        key="claim_case_count",
        name="赔案件数",
        formula="Σ 赔案件数",
        description="所选范围内的报案数量",
        unit="件",
        business_meaning="出险频度的绝对规模",
    ),
    KPIFormula(
        key="average_premium",
        name="单均保费",
        formula="签单保费 / 保单件数",
        description="每张保单的平均签单保费",
        unit="元",
        business_meaning="反映业务结构与定价水平",
        numerator="签单保费",
        denominator="保单件数",
        example="签单保费 100 万元 / 2000 件 = 500 元",
    ),
    KPIFormula(
        key="average_claim",
        name="案均赔款",
        formula="已报告赔款 / 赔案件数",
        description="每个赔案的平均赔款",
        unit="元",
        business_meaning="赔付强度指标，与出险率共同决定赔付率",
        numerator="已报告赔款",
        denominator="赔案件数",
        example="赔款 60 万元 / 120 件 = 5000 元",
    ),
    KPIFormula(
        key="average_expense",
        name="单均费用",
        formula="费用金额 / 保单件数",
        description="每张保单的平均变动费用",
        unit="元",
        business_meaning="单位获客成本",
        numerator="费用金额",
        denominator="保单件数",
        example="费用 15 万元 / 2000 件 = 75 元",
    ),
    KPIFormula(
        key="average_contribution",
        name="单均边际贡献",
        formula="边际贡献额 / 保单件数",
        description="每张保单的平均边际贡献",
        unit="元",
        business_meaning="单位业务的盈利贡献",
        numerator="边际贡献额",
        denominator="保单件数",
        example="边际贡献 10 万元 / 2000 件 = 50 元",
    ),
    KPIFormula(
        key="annual_premium_target",
        name="年度保费目标",
        formula="年度目标（或 Σ 保费计划）/ 10000",
        description="用于计算保费达成率的年度计划",
        unit="万元",
        business_meaning="保费时间进度达成率的分母来源",
    ),
    KPIFormula(
        key="annual_policy_count_target",
        name="年度件数目标",
        formula="配置的年度件数目标",
        description="用于计算件数达成率的年度计划",
        unit="件",
        business_meaning="件数时间进度达成率的分母来源",
    ),
)

KPI_FORMULAS: dict[str, KPIFormula] = {item.key: item for item in _CATALOG}


def get_kpi_formula(key: str) -> KPIFormula | None:
    return KPI_FORMULAS.get(key)


def all_kpi_formulas() -> list[KPIFormula]:
    return list(_CATALOG)


def _format_value(value: float | None) -> str:
    if value is None:
        return "-"
    return f"{value:,.2f}".rstrip("0").rstrip(".")


def format_calculation_detail(
    key: str,
    numerator: float | None = None,
    denominator: float | None = None,
    result: float | None = None,
) -> str:
    """
    Human-readable calculation breakdown for tooltips and logs.

    Formulas without a numerator/denominator pair return the formula text;
    unknown keys return an empty string.
    """
    formula = get_kpi_formula(key)
    if formula is None:
        return ""
    if not formula.numerator or not formula.denominator:
        return formula.formula
    return (
        f"{formula.numerator}: {_format_value(numerator)}\n"
        f"{formula.denominator}: {_format_value(denominator)}\n"
        f"结果 = {_format_value(result)}{formula.unit}"
    )
