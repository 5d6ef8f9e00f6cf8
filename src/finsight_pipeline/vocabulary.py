# FinSight Pipeline - Financial data normalization & projections for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Canonical financial vocabulary for FinSight Pipeline.

Every label found in an uploaded spreadsheet is eventually resolved to one
of the canonical concepts declared here (``ventas``, ``activo_total``,
``ebitda``, ...). The vocabulary is fixed: it is the validated key
enumeration of every typed field set flowing through the pipeline.

This module exposes:
- FieldDef:           metadata of one canonical concept (label, category,
                      sign expectation, input vs derived),
- CANONICAL_FIELDS:   ordered registry {key -> FieldDef},
- CanonicalFieldSet:  read-only mapping {canonical key -> float} whose keys
                      are checked against the registry once, at
                      construction.

Keys are validated at the boundary only; internal modules may then rely on
``CanonicalFieldSet`` never containing an unknown key.
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Optional

from .errors import UnknownCanonicalFieldError

# Categories used to tag canonical fields and synonym entries.
BALANCE_SHEET = "balance_sheet"
INCOME_STATEMENT = "income_statement"
CASH_FLOW = "cash_flow"
RATIOS = "ratios"
SEGMENTS = "segments"


@dataclass(frozen=True)
class FieldDef:
    """
    Metadata for a canonical financial concept.

    Attributes:
        key: Canonical identifier (e.g. 'activo_total').
        label: Human-readable label used in reports.
        category: One of the category constants above.
        usually_positive: True when a negative value is suspicious
            (revenue, total assets, equity, cash).
        kind: 'input' for line items read from statements, 'derived' for
            values computed from other fields (margins, ratios).
    """

    key: str
    label: str
    category: str
    usually_positive: bool = False
    kind: str = "input"


_DEFINITIONS: tuple[FieldDef, ...] = (
    # Income statement
    FieldDef("ventas", "Ventas", INCOME_STATEMENT, usually_positive=True),
    FieldDef("coste_ventas", "Coste de ventas", INCOME_STATEMENT),
    FieldDef("margen_bruto", "Margen bruto", INCOME_STATEMENT, kind="derived"),
    FieldDef("gastos_personal", "Gastos de personal", INCOME_STATEMENT),
    FieldDef("otros_gastos", "Otros gastos de explotación", INCOME_STATEMENT),
    FieldDef("amortizaciones", "Amortizaciones", INCOME_STATEMENT),
    FieldDef(
        "resultado_explotacion",
        "Resultado de explotación",
        INCOME_STATEMENT,
        kind="derived",
    ),
    FieldDef("ebitda", "EBITDA", INCOME_STATEMENT),
    FieldDef("gastos_financieros", "Gastos financieros", INCOME_STATEMENT),
    FieldDef("impuestos", "Impuesto sobre beneficios", INCOME_STATEMENT),
    FieldDef("resultado_neto", "Resultado neto", INCOME_STATEMENT),
    # Balance sheet
    FieldDef("activo_total", "Activo total", BALANCE_SHEET, usually_positive=True),
    FieldDef("activo_corriente", "Activo corriente", BALANCE_SHEET),
    FieldDef("activo_no_corriente", "Activo no corriente", BALANCE_SHEET),
    FieldDef("existencias", "Existencias", BALANCE_SHEET),
    FieldDef("clientes", "Clientes", BALANCE_SHEET),
    FieldDef("tesoreria", "Tesorería", BALANCE_SHEET, usually_positive=True),
    FieldDef("pasivo_total", "Pasivo total", BALANCE_SHEET),
    FieldDef("pasivo_corriente", "Pasivo corriente", BALANCE_SHEET),
    FieldDef("pasivo_no_corriente", "Pasivo no corriente", BALANCE_SHEET),
    FieldDef("proveedores", "Proveedores", BALANCE_SHEET),
    FieldDef(
        "patrimonio_neto", "Patrimonio neto", BALANCE_SHEET, usually_positive=True
    ),
    FieldDef("deuda_financiera", "Deuda financiera", BALANCE_SHEET),
    FieldDef("amortizacion_deuda", "Amortización de deuda", BALANCE_SHEET),
    # Cash flow
    FieldDef("flujo_operativo", "Flujo de caja operativo", CASH_FLOW),
    FieldDef("flujo_inversion", "Flujo de caja de inversión", CASH_FLOW),
    FieldDef("flujo_financiacion", "Flujo de caja de financiación", CASH_FLOW),
    FieldDef("flujo_libre", "Flujo de caja libre", CASH_FLOW, kind="derived"),
    FieldDef(
        "variacion_tesoreria", "Variación de tesorería", CASH_FLOW, kind="derived"
    ),
    # Sales segments
    FieldDef("segmentos_producto", "Ventas por producto", SEGMENTS),
    FieldDef("segmentos_region", "Ventas por región", SEGMENTS),
    FieldDef("segmentos_cliente", "Ventas por cliente", SEGMENTS),
    FieldDef(
        "distribucion_ventas", "Distribución de ventas", SEGMENTS, kind="derived"
    ),
    # Ratios and KPIs
    FieldDef("ratio_endeudamiento", "Ratio de endeudamiento", RATIOS, kind="derived"),
    FieldDef("ratio_liquidez", "Ratio de liquidez", RATIOS, kind="derived"),
    FieldDef("roe", "ROE (%)", RATIOS, kind="derived"),
    FieldDef("roa", "ROA (%)", RATIOS, kind="derived"),
    FieldDef("margen_ebitda", "Margen EBITDA (%)", RATIOS, kind="derived"),
    FieldDef("margen_neto", "Margen neto (%)", RATIOS, kind="derived"),
    FieldDef("rotacion_activos", "Rotación de activos", RATIOS, kind="derived"),
    FieldDef("ratio_deuda_ebitda", "Deuda / EBITDA", RATIOS, kind="derived"),
    FieldDef("dias_tesoreria", "Días de tesorería", RATIOS, kind="derived"),
    FieldDef("dscr", "DSCR", RATIOS, kind="derived"),
    FieldDef("cobertura_intereses", "Cobertura de intereses", RATIOS, kind="derived"),
)

CANONICAL_FIELDS: dict[str, FieldDef] = {d.key: d for d in _DEFINITIONS}


def is_canonical(key: str) -> bool:
    """Return True if ``key`` belongs to the canonical vocabulary."""
    return key in CANONICAL_FIELDS


def is_usually_positive(key: str) -> bool:
    """Return True if a negative value for ``key`` deserves a warning."""
    definition = CANONICAL_FIELDS.get(key)
    return bool(definition and definition.usually_positive)


class CanonicalFieldSet(Mapping[str, float]):
    """Read-only mapping of canonical field names to normalized values.

    All values share the unit of the run that produced the set. Instances
    are never mutated.
    """

    __slots__ = ("_values",)

    def __init__(self, values: Optional[Mapping[str, float]] = None):
        checked: dict[str, float] = {}
        for key, value in (values or {}).items():
            if not is_canonical(key):
                raise UnknownCanonicalFieldError(key)
            checked[key] = float(value)
        self._values = checked

    def __getitem__(self, key: str) -> float:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"CanonicalFieldSet({self._values!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, CanonicalFieldSet):
            return self._values == other._values
        if isinstance(other, Mapping):
            return self._values == dict(other)
        return NotImplemented

    def to_dict(self) -> dict[str, float]:
        """Return a plain ``dict`` copy, in canonical registry order."""
        order = list(CANONICAL_FIELDS)
        return {
            k: self._values[k]
            for k in sorted(self._values, key=order.index)
        }
