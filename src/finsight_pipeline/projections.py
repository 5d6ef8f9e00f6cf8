# FinSight Pipeline - Financial data normalization & projections for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Multi-year financial projections.

Starting from the base-year figures of a canonical field set, project()
builds four yearly series for relative years A0..AN:

1. P&L
   revenue(t) = revenue(0) * (1 + growth/100) ** t
   EBITDA margin = clamp(base margin) + scenario adjustment, clamped again
   to [5%, 45%]
   ebitda(t) = revenue(t) * margin, costs(t) = revenue(t) - ebitda(t)

2. Balance sheet
   fixed(t)   = fixed(t-1) + capex(t) - depreciation(t)
   capex(t)   = capex% * revenue(t)
   depreciation(t) = 5% * fixed(t-1)
   current(t) = current(0) * (1 + growth/100) ** t
   cash(t)    = opening cash (closing cash of t-1, base cash at t=0)
   equity(t)  = total_assets(t) / (1 + D/E0), debt(t) = rest,
                split 70% long-term / 30% short-term

3. Cash flow
   taxes(t) = tax% * 0.5 * ebitda(t)
   OCF = ebitda - taxes, ICF = -capex
   interest(t) = average debt(t-1, t) * effective rate
   FCF = OCF + ICF - interest, closing cash = max(0, opening + FCF)

4. Ratios
   ROE, ROA, ROIC, current / quick / cash ratios, D/E, D/A, times
   interest earned and DSCR. A zero denominator yields 0.

Each year is computed in that order (P&L -> balance -> cash flow ->
ratios) because every layer reads the previous one. The balance identity
assets = equity + long-term debt + short-term debt holds exactly for every
projected year.

Amounts keep the unit of the input field set; nothing is rounded.
"""

import enum
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

import pandas as pd


class Scenario(enum.Enum):
    BASE = "base"
    OPTIMISTA = "optimista"
    PESIMISTA = "pesimista"

    @property
    def margin_adjustment(self) -> float:
        """EBITDA margin adjustment, in percentage points."""
        return {"base": 0.0, "optimista": 2.0, "pesimista": -2.0}[self.value]

    @classmethod
    def parse(cls, value: "str | Scenario") -> "Scenario":
        if isinstance(value, Scenario):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            allowed = ", ".join(s.value for s in cls)
            raise ValueError(
                f"Unknown scenario {value!r}. Expected one of: {allowed}."
            ) from exc


@dataclass(frozen=True)
class ProjectionAssumptions:
    """
    Parameters of the projection model.

    Percentages are expressed in percent (5.0 means 5%), rates as
    fractions (0.05 means 5%).
    """

    growth_rate: float = 5.0
    capex_pct_revenue: float = 3.0
    tax_rate: float = 25.0
    depreciation_rate: float = 0.05
    long_term_debt_share: float = 0.7
    quick_assets_share: float = 0.7
    default_interest_rate: float = 0.05
    min_interest_rate: float = 0.01
    default_ebitda_margin: float = 20.0
    min_margin: float = 5.0
    max_margin: float = 45.0


@dataclass(frozen=True)
class BaseFinancials:
    """Base-year (A0) figures the projections start from."""

    revenue: float = 0.0
    ebitda: float = 0.0
    fixed_assets: float = 0.0
    current_assets: float = 0.0
    cash: float = 0.0
    total_debt: float = 0.0
    equity: float = 0.0
    interest: float = 0.0

    @classmethod
    def from_fields(cls, fields: Mapping[str, float]) -> "BaseFinancials":
        """Extract base figures from a canonical field set.

        Missing fields count as 0. Current assets exclude cash when both
        activo_corriente and tesoreria are known, since cash is carried
        separately.
        """

        def _get(*keys: str) -> float:
            for key in keys:
                value = fields.get(key)
                if value is not None:
                    return float(value)
            return 0.0

        current = _get("activo_corriente")
        cash = _get("tesoreria")
        if fields.get("activo_corriente") is not None and fields.get("tesoreria") is not None:
            current = current - cash

        return cls(
            revenue=_get("ventas"),
            ebitda=_get("ebitda", "resultado_explotacion"),
            fixed_assets=_get("activo_no_corriente"),
            current_assets=current,
            cash=cash,
            total_debt=_get("deuda_financiera", "pasivo_total"),
            equity=_get("patrimonio_neto"),
            interest=_get("gastos_financieros"),
        )


@dataclass(frozen=True)
class PLYear:
    year: str
    revenue: float
    costs: float
    ebitda: float
    ebitda_margin: float


@dataclass(frozen=True)
class BalanceYear:
    year: str
    fixed_assets: float
    current_assets: float
    cash: float
    total_assets: float
    equity: float
    long_term_debt: float
    short_term_debt: float

    @property
    def total_debt(self) -> float:
        return self.long_term_debt + self.short_term_debt


@dataclass(frozen=True)
class CashFlowYear:
    year: str
    taxes: float
    operating_cf: float
    investing_cf: float
    interest: float
    free_cf: float
    cash_on_hand: float


@dataclass(frozen=True)
class RatiosYear:
    year: str
    roe: float
    roa: float
    roic: float
    current_ratio: float
    quick_ratio: float
    cash_ratio: float
    debt_to_equity: float
    debt_to_assets: float
    times_interest_earned: float
    dscr: float


@dataclass
class ProjectionSeries:
    """Yearly projected statements and ratios for one scenario."""

    scenario: Scenario
    ebitda_margin: float
    pl: list[PLYear] = field(default_factory=list)
    balance: list[BalanceYear] = field(default_factory=list)
    cash_flow: list[CashFlowYear] = field(default_factory=list)
    ratios: list[RatiosYear] = field(default_factory=list)

    @property
    def years(self) -> list[str]:
        return [row.year for row in self.pl]

    def to_frames(self) -> dict[str, pd.DataFrame]:
        """Return one DataFrame per series, indexed by year label."""

        def _frame(rows: list[Any]) -> pd.DataFrame:
            df = pd.DataFrame([asdict(r) for r in rows])
            if df.empty:
                return df
            return df.set_index("year")

        return {
            "pl": _frame(self.pl),
            "balance": _frame(self.balance),
            "cash_flow": _frame(self.cash_flow),
            "ratios": _frame(self.ratios),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenario": self.scenario.value,
            "ebitda_margin": self.ebitda_margin,
            "pl": [asdict(r) for r in self.pl],
            "balance": [asdict(r) for r in self.balance],
            "cash_flow": [asdict(r) for r in self.cash_flow],
            "ratios": [asdict(r) for r in self.ratios],
        }


def _safe_div(num: float, den: float) -> float:
    return num / den if den != 0 else 0.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def scenario_margin(
    base: BaseFinancials, scenario: Scenario, assumptions: ProjectionAssumptions
) -> float:
    """EBITDA margin (%) used for every projected year."""
    if base.revenue > 0:
        margin = base.ebitda / base.revenue * 100
    else:
        margin = assumptions.default_ebitda_margin
    margin = _clamp(margin, assumptions.min_margin, assumptions.max_margin)
    return _clamp(
        margin + scenario.margin_adjustment,
        assumptions.min_margin,
        assumptions.max_margin,
    )


def _zero_series(
    labels: list[str], scenario: Scenario, margin: float
) -> ProjectionSeries:
    series = ProjectionSeries(scenario=scenario, ebitda_margin=margin)
    for y in labels:
        series.pl.append(PLYear(y, 0.0, 0.0, 0.0, 0.0))
        series.balance.append(BalanceYear(y, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0))
        series.cash_flow.append(CashFlowYear(y, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0))
        series.ratios.append(
            RatiosYear(y, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0)
        )
    return series


def _slice(series: ProjectionSeries, start: int) -> ProjectionSeries:
    return ProjectionSeries(
        scenario=series.scenario,
        ebitda_margin=series.ebitda_margin,
        pl=series.pl[start:],
        balance=series.balance[start:],
        cash_flow=series.cash_flow[start:],
        ratios=series.ratios[start:],
    )


def project(
    base: BaseFinancials,
    scenario: "Scenario | str" = Scenario.BASE,
    year_range: tuple[int, int] = (0, 5),
    assumptions: Optional[ProjectionAssumptions] = None,
) -> ProjectionSeries:
    """Project P&L, balance sheet, cash flow and ratios.

    Args:
        base: Base-year figures.
        scenario: Scenario or its name ('base', 'optimista', 'pesimista').
        year_range: (start, end) relative years, both included. Years
            before ``start`` are still computed (they feed later years)
            but are left out of the result.
        assumptions: Model parameters; defaults to ProjectionAssumptions().

    Returns:
        A ProjectionSeries with one row per year in ``year_range``.

    Raises:
        ValueError: if ``year_range`` is not 0 <= start <= end.
    """
    scenario = Scenario.parse(scenario)
    a = assumptions or ProjectionAssumptions()
    start, end = year_range
    if start < 0 or end < start:
        raise ValueError(f"Invalid year range: {year_range!r}")

    labels = [f"A{t}" for t in range(end + 1)]
    margin = scenario_margin(base, scenario, a)

    if base.revenue <= 0:
        return _slice(_zero_series(labels, scenario, 0.0), start)

    growth = 1 + a.growth_rate / 100
    de0 = (
        base.total_debt / base.equity
        if base.equity > 0 and base.total_debt >= 0
        else 1.0
    )
    if base.total_debt > 0:
        rate = max(a.min_interest_rate, base.interest / base.total_debt)
    else:
        rate = a.default_interest_rate

    series = ProjectionSeries(scenario=scenario, ebitda_margin=margin)
    fixed = max(0.0, base.fixed_assets)
    cash = max(0.0, base.cash)
    previous_debt = max(0.0, base.total_debt)

    for t, year in enumerate(labels):
        # P&L
        revenue = base.revenue * growth**t
        ebitda = revenue * margin / 100
        series.pl.append(
            PLYear(year, revenue, revenue - ebitda, ebitda, margin)
        )

        # Balance sheet
        capex = a.capex_pct_revenue / 100 * revenue
        depreciation = a.depreciation_rate * fixed
        fixed = max(0.0, fixed + capex - depreciation)
        current = max(0.0, base.current_assets * growth**t)
        opening_cash = cash
        total_assets = fixed + current + opening_cash
        equity = total_assets / (1 + de0)
        debt = total_assets - equity
        long_term = debt * a.long_term_debt_share
        short_term = debt - long_term
        balance = BalanceYear(
            year,
            fixed,
            current,
            opening_cash,
            total_assets,
            equity,
            long_term,
            short_term,
        )
        series.balance.append(balance)

        # Cash flow
        taxes = a.tax_rate / 100 * ebitda * 0.5
        ocf = ebitda - taxes
        icf = -capex
        interest = (previous_debt + debt) / 2 * rate
        fcf = ocf + icf - interest
        cash = max(0.0, opening_cash + fcf)
        previous_debt = debt
        series.cash_flow.append(
            CashFlowYear(year, taxes, ocf, icf, interest, fcf, cash)
        )

        # Ratios
        ebit = ebitda - depreciation
        tax = a.tax_rate / 100 * max(0.0, ebit - interest)
        net_income = ebit - interest - tax
        current_ratio = _safe_div(current, short_term)
        series.ratios.append(
            RatiosYear(
                year,
                roe=_safe_div(net_income, equity) * 100,
                roa=_safe_div(net_income, total_assets) * 100,
                roic=_safe_div(ebit, debt + equity) * 100,
                current_ratio=current_ratio,
                quick_ratio=current_ratio * a.quick_assets_share,
                cash_ratio=_safe_div(opening_cash, short_term),
                debt_to_equity=_safe_div(debt, equity),
                debt_to_assets=_safe_div(debt, total_assets),
                times_interest_earned=_safe_div(ebit, interest),
                dscr=_safe_div(ocf, interest + short_term),
            )
        )

    return _slice(series, start)
