# FinSight Pipeline - Financial data normalization & projections for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Synthetic backfill and derived fields.

Two related operations live here:

1. Derived fields (compute_derived)
   --------------------------------
   Exact accounting relationships computed once when their inputs exist and
   the target is absent:

       margen_bruto        = ventas - coste_ventas
       ebitda              = resultado_explotacion + amortizaciones
       ratio_endeudamiento = deuda_financiera / patrimonio_neto

   An explicitly supplied value is never recomputed.

2. Synthetic backfill (backfill)
   -----------------------------
   Estimates for missing *required* fields so that a chart can still be
   drawn. Estimates use the ratio table in assumptions.py, except
   pasivo_total which follows the balance identity exactly.

   Every synthetic value is tagged ``"synthetic"`` in the provenance map.
   Fields present in the input are never overwritten nor retagged.

Provenance labels
-----------------
    "input"      value read from the uploaded data
    "derived"    exact computation from other fields
    "synthetic"  heuristic estimate
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Optional

from .assumptions import RatioAssumptions
from .issues import CALCULATION, MISSING_DATA, ValidationSuggestion
from .vocabulary import CanonicalFieldSet

INPUT = "input"
DERIVED = "derived"
SYNTHETIC = "synthetic"


@dataclass(frozen=True)
class SyntheticRule:
    """Estimate for one field from other fields and the ratio table."""

    inputs: tuple[str, ...]
    compute: Callable[[Mapping[str, float], RatioAssumptions], float]
    exact: bool = False


# Order matters: pasivo_total must come before deuda_financiera, which may
# be estimated from a synthetic pasivo_total.
SYNTHETIC_RULES: dict[str, SyntheticRule] = {
    "coste_ventas": SyntheticRule(
        ("ventas",), lambda f, a: f["ventas"] * a.cost_of_sales_pct_sales
    ),
    "gastos_personal": SyntheticRule(
        ("ventas",), lambda f, a: f["ventas"] * a.personnel_pct_sales
    ),
    "otros_gastos": SyntheticRule(
        ("ventas",), lambda f, a: f["ventas"] * a.other_expenses_pct_sales
    ),
    "pasivo_total": SyntheticRule(
        ("activo_total", "patrimonio_neto"),
        lambda f, a: f["activo_total"] - f["patrimonio_neto"],
        exact=True,
    ),
    "activo_corriente": SyntheticRule(
        ("activo_total",), lambda f, a: f["activo_total"] * a.current_assets_pct_assets
    ),
    "deuda_financiera": SyntheticRule(
        ("pasivo_total",),
        lambda f, a: f["pasivo_total"] * a.financial_debt_pct_liabilities,
    ),
    "flujo_operativo": SyntheticRule(
        ("ebitda",), lambda f, a: f["ebitda"] * a.operating_cf_pct_ebitda
    ),
    "tesoreria": SyntheticRule(
        ("ventas",), lambda f, a: f["ventas"] * a.cash_pct_sales
    ),
}


@dataclass
class BackfillResult:
    """
    Outcome of a backfill pass.

    Attributes:
        filled: Input values plus the synthetic ones.
        provenance: {field -> "synthetic"} for every value added by the pass.
        unfillable: Required fields still missing (no rule, or rule inputs
            absent).
        suggestions: One missing_data suggestion per synthetic value.
    """

    filled: CanonicalFieldSet
    provenance: dict[str, str] = field(default_factory=dict)
    unfillable: list[str] = field(default_factory=list)
    suggestions: list[ValidationSuggestion] = field(default_factory=list)


def backfill(
    fields: Mapping[str, float],
    required: Iterable[str],
    assumptions: Optional[RatioAssumptions] = None,
    logger: Optional[logging.Logger] = None,
) -> BackfillResult:
    """Estimate the missing fields of ``required``.

    Args:
        fields: Current canonical values (real, possibly with derived ones).
        required: Field names that must be present for the caller.
        assumptions: Ratio table; defaults to RatioAssumptions().
        logger: Optional logger.

    Returns:
        A BackfillResult. Fields already present are left untouched.
    """
    log = logger or logging.getLogger(__name__)
    assumptions = assumptions or RatioAssumptions()
    working: dict[str, float] = dict(fields)
    wanted = [k for k in dict.fromkeys(required) if working.get(k) is None]

    provenance: dict[str, str] = {}
    suggestions: list[ValidationSuggestion] = []

    for name, rule in SYNTHETIC_RULES.items():
        if name not in wanted:
            continue
        if any(working.get(i) is None for i in rule.inputs):
            continue
        value = float(rule.compute(working, assumptions))
        working[name] = value
        provenance[name] = SYNTHETIC
        kind = "derived from the balance identity" if rule.exact else "estimated"
        suggestions.append(
            ValidationSuggestion(
                type=MISSING_DATA,
                message=f"{name} {kind} from {', '.join(rule.inputs)}: {value:g}",
                action="synthetic_backfill",
            )
        )
        log.info("Synthetic %s = %g (from %s)", name, value, ", ".join(rule.inputs))

    unfillable = [k for k in wanted if k not in provenance]
    if unfillable:
        log.debug("No synthetic rule could fill: %s", ", ".join(unfillable))

    return BackfillResult(
        filled=CanonicalFieldSet(working),
        provenance=provenance,
        unfillable=unfillable,
        suggestions=suggestions,
    )


@dataclass
class DerivedResult:
    fields: CanonicalFieldSet
    provenance: dict[str, str] = field(default_factory=dict)
    suggestions: list[ValidationSuggestion] = field(default_factory=list)


def compute_derived(
    fields: Mapping[str, float],
    logger: Optional[logging.Logger] = None,
) -> DerivedResult:
    """Compute exact derived fields that are absent from ``fields``."""
    log = logger or logging.getLogger(__name__)
    working: dict[str, float] = dict(fields)
    provenance: dict[str, str] = {}
    suggestions: list[ValidationSuggestion] = []

    def _store(name: str, value: float, action: str, message: str) -> None:
        working[name] = value
        provenance[name] = DERIVED
        suggestions.append(
            ValidationSuggestion(type=CALCULATION, message=message, action=action)
        )
        log.debug("Derived %s = %g", name, value)

    def _has(*keys: str) -> bool:
        return all(working.get(k) is not None for k in keys)

    if not _has("margen_bruto") and _has("ventas", "coste_ventas"):
        _store(
            "margen_bruto",
            working["ventas"] - working["coste_ventas"],
            "calculated_margin",
            "Gross margin calculated automatically",
        )

    if not _has("ebitda") and _has("resultado_explotacion", "amortizaciones"):
        _store(
            "ebitda",
            working["resultado_explotacion"] + working["amortizaciones"],
            "calculated_ebitda",
            "EBITDA calculated automatically",
        )

    if (
        not _has("ratio_endeudamiento")
        and _has("deuda_financiera", "patrimonio_neto")
        and working["patrimonio_neto"] != 0
    ):
        _store(
            "ratio_endeudamiento",
            working["deuda_financiera"] / working["patrimonio_neto"],
            "calculated_debt_ratio",
            "Debt ratio calculated automatically",
        )

    return DerivedResult(
        fields=CanonicalFieldSet(working),
        provenance=provenance,
        suggestions=suggestions,
    )
