# FinSight Pipeline - Financial data normalization & projections for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Named heuristic constants.

The synthetic backfill engine and the KPI benchmark report rely on rules of
thumb (typical gross margin, share of personnel costs, reference current
ratio, ...). They are gathered here, in two frozen dataclasses, so they can
be tuned from the TOML configuration and tested independently from the code
that applies them.
"""

from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from typing import Any


@dataclass(frozen=True)
class RatioAssumptions:
    """
    Ratios used to estimate missing line items.

    Attributes:
        cost_of_sales_pct_sales: coste_ventas / ventas (35% gross margin).
        personnel_pct_sales: gastos_personal / ventas.
        other_expenses_pct_sales: otros_gastos / ventas.
        current_assets_pct_assets: activo_corriente / activo_total.
        financial_debt_pct_liabilities: deuda_financiera / pasivo_total.
        operating_cf_pct_ebitda: flujo_operativo / ebitda.
        cash_pct_sales: tesoreria / ventas.
    """

    cost_of_sales_pct_sales: float = 0.65
    personnel_pct_sales: float = 0.18
    other_expenses_pct_sales: float = 0.12
    current_assets_pct_assets: float = 0.5
    financial_debt_pct_liabilities: float = 0.65
    operating_cf_pct_ebitda: float = 0.85
    cash_pct_sales: float = 0.075


@dataclass(frozen=True)
class Benchmarks:
    """
    Reference values for KPIs, used for above/below comparisons only.

    These are indicative defaults, not business rules; override them in the
    [benchmarks] section of the configuration.
    """

    ratio_liquidez: float = 1.5
    roe: float = 15.0
    roa: float = 5.0
    margen_ebitda: float = 10.0
    margen_neto: float = 5.0
    ratio_endeudamiento: float = 1.0
    ratio_deuda_ebitda: float = 3.0
    rotacion_activos: float = 1.0

    # KPIs for which a lower value is the better one.
    lower_is_better: tuple[str, ...] = ("ratio_endeudamiento", "ratio_deuda_ebitda")

    def values(self) -> dict[str, float]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "lower_is_better"
        }


def with_overrides(base: Any, overrides: Mapping[str, Any]) -> Any:
    """Return a copy of a numeric assumptions dataclass with overrides applied.

    Unknown keys raise ValueError; values must be convertible to float.
    """
    known = {f.name for f in fields(base)}
    changes: dict[str, float] = {}
    for key, value in overrides.items():
        if key not in known or key == "lower_is_better":
            raise ValueError(
                f"Unknown setting {key!r} for {type(base).__name__}."
            )
        try:
            changes[key] = float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(
                f"Invalid value for {type(base).__name__}.{key}: {value!r}"
            ) from exc
    return replace(base, **changes)
