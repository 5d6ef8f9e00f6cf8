# FinSight Pipeline - Financial data normalization & projections for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Chart data assignment and dashboard KPIs.

Each dashboard chart declares the canonical fields it needs:

- required:  fields without which the chart cannot be drawn,
- optional:  fields that enrich the chart,
- generates: derived values the chart displays (ratios, subtotals).

For every requested chart, assign_chart():

1. maps the present required/optional fields onto the chart,
2. computes the ``generates`` values whose inputs are present in the real
   data (never from estimates),
3. when required fields are missing, runs the synthetic backfill engine on
   exactly that missing set and counts every filled field as found,
4. scores the chart:

       confidence = 0.8 * required_found / required_total
                  + 0.2 * optional_found / optional_total

   where the optional ratio is 1 when the chart declares no optional field.

Fields that no rule can fill stay in ``missing_fields``: they are reported
to the caller, never hidden.

assign_charts() runs every requested chart on the same input, merges the
real, synthetic and derived values, computes the global KPIs on the merged
set and averages the chart confidences into a completion score. KPIs whose
inputs are missing or whose denominator is zero are simply absent.
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from .assumptions import Benchmarks, RatioAssumptions
from .backfill import DERIVED, INPUT, SYNTHETIC, backfill
from .vocabulary import CanonicalFieldSet

REQUIRED_WEIGHT = 0.8
OPTIONAL_WEIGHT = 0.2


@dataclass(frozen=True)
class ChartRequirement:
    required: tuple[str, ...]
    optional: tuple[str, ...] = ()
    generates: tuple[str, ...] = ()


CHART_REQUIREMENTS: dict[str, ChartRequirement] = {
    "profit_loss": ChartRequirement(
        required=("ventas", "coste_ventas", "gastos_personal", "otros_gastos"),
        optional=("ebitda", "resultado_neto", "amortizaciones"),
        generates=("margen_bruto", "resultado_explotacion"),
    ),
    "balance_sheet": ChartRequirement(
        required=("activo_total", "patrimonio_neto"),
        optional=(
            "pasivo_total",
            "activo_corriente",
            "pasivo_corriente",
            "deuda_financiera",
        ),
        generates=("ratio_liquidez", "ratio_endeudamiento"),
    ),
    "cash_flow": ChartRequirement(
        required=("ebitda",),
        optional=("flujo_operativo", "flujo_inversion", "flujo_financiacion", "tesoreria"),
        generates=("flujo_libre", "variacion_tesoreria"),
    ),
    "financial_ratios": ChartRequirement(
        required=("ventas", "activo_total", "patrimonio_neto"),
        optional=("resultado_neto", "ebitda", "deuda_financiera"),
        generates=("roe", "roa", "margen_ebitda", "rotacion_activos"),
    ),
    "sales_segments": ChartRequirement(
        required=("ventas",),
        optional=("segmentos_producto", "segmentos_region", "segmentos_cliente"),
        generates=("distribucion_ventas",),
    ),
    "debt_service": ChartRequirement(
        required=("ebitda", "deuda_financiera"),
        optional=("gastos_financieros", "amortizacion_deuda"),
        generates=("dscr", "cobertura_intereses"),
    ),
}


def _ratio(
    values: Mapping[str, float], num: str, den: str, scale: float = 1.0
) -> Optional[float]:
    """num / den * scale, or None if an input is missing or den is zero."""
    n = values.get(num)
    d = values.get(den)
    if n is None or d is None or d == 0:
        return None
    return n / d * scale


def _gross_margin(v: Mapping[str, float]) -> Optional[float]:
    if v.get("margen_bruto") is not None:
        return v["margen_bruto"]
    if v.get("ventas") is None or v.get("coste_ventas") is None:
        return None
    return v["ventas"] - v["coste_ventas"]


def _operating_result(v: Mapping[str, float]) -> Optional[float]:
    margin = _gross_margin(v)
    if margin is None or v.get("gastos_personal") is None or v.get("otros_gastos") is None:
        return None
    return margin - v["gastos_personal"] - v["otros_gastos"]


def _free_cash_flow(v: Mapping[str, float]) -> Optional[float]:
    if v.get("flujo_operativo") is None or v.get("flujo_inversion") is None:
        return None
    return v["flujo_operativo"] + v["flujo_inversion"]


def _cash_variation(v: Mapping[str, float]) -> Optional[float]:
    keys = ("flujo_operativo", "flujo_inversion", "flujo_financiacion")
    if any(v.get(k) is None for k in keys):
        return None
    return sum(v[k] for k in keys)


def _sales_distribution(v: Mapping[str, float]) -> Optional[float]:
    """Largest segment breakdown total, as a percentage of sales."""
    segments = [
        v[k]
        for k in ("segmentos_producto", "segmentos_region", "segmentos_cliente")
        if v.get(k) is not None
    ]
    ventas = v.get("ventas")
    if not segments or not ventas:
        return None
    return max(segments) / ventas * 100


def _dscr(v: Mapping[str, float]) -> Optional[float]:
    """Operating cash flow (or EBITDA) over interest plus principal due."""
    cash = v.get("flujo_operativo")
    if cash is None:
        cash = v.get("ebitda")
    interest = v.get("gastos_financieros")
    if cash is None or interest is None:
        return None
    service = interest + (v.get("amortizacion_deuda") or 0.0)
    if service == 0:
        return None
    return cash / service


GENERATORS: dict[str, Callable[[Mapping[str, float]], Optional[float]]] = {
    "margen_bruto": _gross_margin,
    "resultado_explotacion": _operating_result,
    "ratio_liquidez": lambda v: _ratio(v, "activo_corriente", "pasivo_corriente"),
    "ratio_endeudamiento": lambda v: _ratio(v, "deuda_financiera", "patrimonio_neto"),
    "flujo_libre": _free_cash_flow,
    "variacion_tesoreria": _cash_variation,
    "roe": lambda v: _ratio(v, "resultado_neto", "patrimonio_neto", 100.0),
    "roa": lambda v: _ratio(v, "resultado_neto", "activo_total", 100.0),
    "margen_ebitda": lambda v: _ratio(v, "ebitda", "ventas", 100.0),
    "rotacion_activos": lambda v: _ratio(v, "ventas", "activo_total"),
    "distribucion_ventas": _sales_distribution,
    "dscr": _dscr,
    "cobertura_intereses": lambda v: _ratio(v, "ebitda", "gastos_financieros"),
}


@dataclass(frozen=True)
class ChartAssignment:
    """
    Data assigned to one chart.

    Attributes:
        chart_id: Registry key of the chart.
        data_mapping: {canonical field -> chart slot}.
        confidence: Score in [0, 1] (see module docstring).
        missing_fields: Required fields that could not be filled.
        synthetic_data: Estimated values used by the chart, or None.
        derived_data: Values computed for the chart's ``generates`` list.
        required_found: Required fields available after backfill.
    """

    chart_id: str
    data_mapping: dict[str, str]
    confidence: float
    missing_fields: list[str]
    synthetic_data: Optional[dict[str, float]] = None
    derived_data: dict[str, float] = field(default_factory=dict)
    required_found: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "chart_id": self.chart_id,
            "data_mapping": dict(self.data_mapping),
            "confidence": self.confidence,
            "missing_fields": list(self.missing_fields),
            "synthetic_data": (
                dict(self.synthetic_data) if self.synthetic_data is not None else None
            ),
            "derived_data": dict(self.derived_data),
            "required_found": self.required_found,
        }


@dataclass
class DashboardData:
    """All chart assignments of a run, with merged values and KPIs."""

    charts: list[ChartAssignment]
    kpis: dict[str, float]
    merged_fields: CanonicalFieldSet
    provenance: dict[str, str]
    completion_score: float


def chart_confidence(
    required_found: int, required_total: int, optional_found: int, optional_total: int
) -> float:
    required_ratio = required_found / required_total if required_total else 1.0
    optional_ratio = optional_found / optional_total if optional_total else 1.0
    return REQUIRED_WEIGHT * required_ratio + OPTIONAL_WEIGHT * optional_ratio


def assign_chart(
    chart_id: str,
    fields: Mapping[str, float],
    requirement: ChartRequirement,
    assumptions: Optional[RatioAssumptions] = None,
    logger: Optional[logging.Logger] = None,
) -> ChartAssignment:
    """Assign the available data to one chart, backfilling required gaps."""
    data_mapping: dict[str, str] = {}
    missing: list[str] = []
    required_found = 0
    optional_found = 0

    for name in requirement.required:
        if fields.get(name) is not None:
            data_mapping[name] = name
            required_found += 1
        else:
            missing.append(name)

    for name in requirement.optional:
        if fields.get(name) is not None:
            data_mapping[name] = name
            optional_found += 1

    derived: dict[str, float] = {}
    for name in requirement.generates:
        generator = GENERATORS.get(name)
        value = generator(fields) if generator is not None else None
        if value is not None:
            derived[name] = value
            data_mapping[name] = name

    synthetic: dict[str, float] = {}
    if missing:
        result = backfill(fields, missing, assumptions=assumptions, logger=logger)
        for name in result.provenance:
            synthetic[name] = result.filled[name]
            data_mapping[name] = name
            required_found += 1
        missing = result.unfillable

    confidence = chart_confidence(
        required_found,
        len(requirement.required),
        optional_found,
        len(requirement.optional),
    )

    return ChartAssignment(
        chart_id=chart_id,
        data_mapping=data_mapping,
        confidence=confidence,
        missing_fields=missing,
        synthetic_data=synthetic or None,
        derived_data=derived,
        required_found=required_found,
    )


def compute_global_kpis(values: Mapping[str, float]) -> dict[str, float]:
    """Dashboard-wide KPIs, each present only when computable."""
    candidates = {
        "margen_neto": _ratio(values, "resultado_neto", "ventas", 100.0),
        "margen_ebitda": _ratio(values, "ebitda", "ventas", 100.0),
        "rotacion_activos": _ratio(values, "ventas", "activo_total"),
        "ratio_deuda_ebitda": _ratio(values, "deuda_financiera", "ebitda"),
        "dias_tesoreria": _ratio(values, "tesoreria", "ventas", 365.0),
        "roe": _ratio(values, "resultado_neto", "patrimonio_neto", 100.0),
        "roa": _ratio(values, "resultado_neto", "activo_total", 100.0),
        "ratio_liquidez": _ratio(values, "activo_corriente", "pasivo_corriente"),
        "ratio_endeudamiento": _ratio(values, "deuda_financiera", "patrimonio_neto"),
    }
    return {k: v for k, v in candidates.items() if v is not None}


def assign_charts(
    fields: Mapping[str, float],
    requested_charts: Optional[Iterable[str]] = None,
    assumptions: Optional[RatioAssumptions] = None,
    base_provenance: Optional[Mapping[str, str]] = None,
    logger: Optional[logging.Logger] = None,
) -> DashboardData:
    """Assign data to every requested chart and compute global KPIs.

    Args:
        fields: Cleaned canonical values (real and exact-derived).
        requested_charts: Chart ids; all registered charts when None. An
            empty list assigns no chart.
            Unknown ids are skipped with a warning.
        assumptions: Ratio table used by the backfill engine.
        base_provenance: Provenance of ``fields`` ({field -> label}); fields
            not listed are considered input values.
        logger: Optional logger.

    Returns:
        A DashboardData instance.
    """
    log = logger or logging.getLogger(__name__)
    chart_ids = list(
        CHART_REQUIREMENTS if requested_charts is None else requested_charts
    )

    provenance: dict[str, str] = {
        k: (base_provenance or {}).get(k, INPUT) for k in fields
    }
    merged: dict[str, float] = dict(fields)
    charts: list[ChartAssignment] = []

    for chart_id in chart_ids:
        requirement = CHART_REQUIREMENTS.get(chart_id)
        if requirement is None:
            log.warning("Unknown chart: %s", chart_id)
            continue

        assignment = assign_chart(
            chart_id, fields, requirement, assumptions=assumptions, logger=log
        )
        charts.append(assignment)

        for name, value in (assignment.synthetic_data or {}).items():
            if name not in merged:
                merged[name] = value
                provenance[name] = SYNTHETIC
        for name, value in assignment.derived_data.items():
            if name not in merged:
                merged[name] = value
                provenance[name] = DERIVED

    kpis = compute_global_kpis(merged)
    completion = sum(c.confidence for c in charts) / len(charts) if charts else 0.0
    log.info("Assigned %d charts, completion score %.2f", len(charts), completion)

    return DashboardData(
        charts=charts,
        kpis=kpis,
        merged_fields=CanonicalFieldSet(merged),
        provenance=provenance,
        completion_score=completion,
    )


def benchmark_report(
    kpis: Mapping[str, float], benchmarks: Optional[Benchmarks] = None
) -> dict[str, dict[str, Any]]:
    """Compare KPIs with reference values.

    Returns:
        {kpi -> {"value", "benchmark", "status"}} where status is "above" or
        "below" the benchmark, inverted for lower-is-better KPIs ("above"
        always means "better than the reference").
    """
    benchmarks = benchmarks or Benchmarks()
    report: dict[str, dict[str, Any]] = {}
    for key, reference in benchmarks.values().items():
        value = kpis.get(key)
        if value is None:
            continue
        better = value <= reference if key in benchmarks.lower_is_better else value >= reference
        report[key] = {
            "value": value,
            "benchmark": reference,
            "status": "above" if better else "below",
        }
    return report
