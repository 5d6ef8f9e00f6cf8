# FinSight Pipeline - Financial data normalization & projections for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Synonym resolution for FinSight Pipeline.

This module maps arbitrary spreadsheet labels ("Importe neto de la cifra de
negocios", "Total Activo", "Coste Ventas", ...) onto the canonical
vocabulary defined in vocabulary.py.

Resolution order for a single label
-----------------------------------
1. Normalize the label: lowercase, every non-alphanumeric run replaced by a
   single underscore, leading/trailing underscores stripped.
2. Client override table (exact match on the normalized label),
   confidence 1.0.
3. Global synonym index (exact match). Canonical terms are indexed at the
   table's stored score, their aliases at 0.9x that score.
4. Fuzzy fallback: normalized Levenshtein similarity
   ``(len(longer) - distance) / len(longer)`` against every index key. The
   best key is accepted only when its similarity is strictly greater than
   0.7; confidence = index score x similarity.

A label that matches nothing is not an error: it is reported in the
``unmapped`` list of the MappingResult, never silently dropped.

Synonym tables
--------------
The default table ships as ``data/financial_synonyms.csv``:

    canonical_term, synonyms, category, confidence_score

where ``synonyms`` is a semicolon-separated list. Tables are read with
pandas, like the mapping templates of the statement engine, and are
read-only once loaded.

Sheet helpers
-------------
``normalize_sheet_name``, ``classify_sheet`` and ``sheet_confidence`` give
a coarse statement type for a workbook sheet, used by callers that feed the
pipeline one sheet at a time.
"""

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from importlib import resources
from pathlib import Path
from typing import Any, Optional, Union

import pandas as pd
from rapidfuzz.distance import Levenshtein

from .vocabulary import is_canonical

logger = logging.getLogger(__name__)

# Aliases are trusted slightly less than the canonical term itself.
ALIAS_CONFIDENCE_FACTOR = 0.9

# Fuzzy matches must be strictly above this similarity.
FUZZY_THRESHOLD = 0.7

EXACT_CLIENT = "client"
EXACT_INDEX = "exact"
FUZZY = "fuzzy"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class SynonymEntry:
    """
    One row of a synonym table.

    Attributes:
        canonical_term: Canonical field name (must exist in the vocabulary).
        synonyms: Alternative labels for the same concept.
        category: Category tag (balance_sheet, income_statement, ...).
        confidence_score: Trust in this entry, in [0, 1].
    """

    canonical_term: str
    synonyms: tuple[str, ...]
    category: str
    confidence_score: float

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence_score <= 1.0:
            raise ValueError(
                f"confidence_score for {self.canonical_term!r} must be in [0, 1]."
            )


@dataclass(frozen=True)
class IndexEntry:
    canonical: str
    confidence: float


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one label.

    ``similarity`` is 1.0 for exact matches.
    """

    canonical: str
    confidence: float
    method: str
    similarity: float = 1.0


@dataclass(frozen=True)
class MappingDecision:
    """How one input label was resolved during a mapping pass."""

    source: str
    canonical: str
    confidence: float
    method: str
    overwritten: bool = False


@dataclass
class MappingResult:
    """
    Result of mapping a full raw field set.

    Attributes:
        mapped: {canonical field -> raw value}, last writer wins.
        decisions: One MappingDecision per mapped input label, input order.
        unmapped: Labels that could not be resolved, input order.
        suggestions: Human-readable notes (fuzzy matches, unmapped fields,
            coherence remarks).
        confidence: Mean confidence of the mapped labels (0.0 if none).
    """

    mapped: dict[str, Any] = field(default_factory=dict)
    decisions: list[MappingDecision] = field(default_factory=list)
    unmapped: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    confidence: float = 0.0

    def source_of(self, canonical: str) -> Optional[str]:
        """Return the input label whose value currently backs ``canonical``."""
        for decision in reversed(self.decisions):
            if decision.canonical == canonical and not decision.overwritten:
                return decision.source
        return None


def normalize_field_name(name: str) -> str:
    """Normalize a label for lookup.

    Examples:
        "Total Activo"    -> "total_activo"
        "  P&L / Ventas " -> "p_l_ventas"
    """
    return _NON_ALNUM.sub("_", str(name).lower()).strip("_")


def similarity(a: str, b: str) -> float:
    """Normalized Levenshtein similarity, relative to the longer string."""
    longer = max(len(a), len(b))
    if longer == 0:
        return 1.0
    distance = Levenshtein.distance(a, b)
    return (longer - distance) / longer


class SynonymIndex:
    """Lookup table {normalized label -> IndexEntry} built from entries.

    Canonical terms are inserted before any alias, so an alias can never
    shadow a canonical term; between aliases, the first entry wins.
    """

    def __init__(self, entries: Iterable[SynonymEntry]):
        self.entries: list[SynonymEntry] = list(entries)
        self._index: dict[str, IndexEntry] = {}

        for entry in self.entries:
            if not is_canonical(entry.canonical_term):
                raise ValueError(
                    f"Synonym table references unknown canonical term "
                    f"{entry.canonical_term!r}."
                )
            key = normalize_field_name(entry.canonical_term)
            self._index.setdefault(
                key, IndexEntry(entry.canonical_term, entry.confidence_score)
            )

        for entry in self.entries:
            alias_score = entry.confidence_score * ALIAS_CONFIDENCE_FACTOR
            for alias in entry.synonyms:
                key = normalize_field_name(alias)
                if not key:
                    continue
                self._index.setdefault(key, IndexEntry(entry.canonical_term, alias_score))

    def __contains__(self, key: str) -> bool:
        return key in self._index

    def __len__(self) -> int:
        return len(self._index)

    def get(self, key: str) -> Optional[IndexEntry]:
        return self._index.get(key)

    def keys(self) -> list[str]:
        return list(self._index)

    @staticmethod
    def from_dataframe(df: pd.DataFrame) -> "SynonymIndex":
        """Build an index from a DataFrame with the synonym table columns."""
        df = df.copy()
        df.columns = [str(c).strip().lower() for c in df.columns]
        required = {"canonical_term", "synonyms", "category", "confidence_score"}
        missing = required.difference(df.columns)
        if missing:
            cols = ", ".join(sorted(missing))
            raise ValueError(f"Synonym table is missing column(s): {cols}")

        df = df.fillna("")
        entries: list[SynonymEntry] = []
        for _, r in df.iterrows():
            raw_synonyms = str(r["synonyms"])
            try:
                score = float(r["confidence_score"])
            except (TypeError, ValueError) as exc:
                raise ValueError(
                    f"Invalid confidence_score for {r['canonical_term']!r}."
                ) from exc
            entries.append(
                SynonymEntry(
                    canonical_term=str(r["canonical_term"]).strip(),
                    synonyms=tuple(
                        s.strip() for s in raw_synonyms.split(";") if s.strip()
                    ),
                    category=str(r["category"]).strip(),
                    confidence_score=score,
                )
            )
        return SynonymIndex(entries)

    @staticmethod
    def from_csv(path: Union[str, Path]) -> "SynonymIndex":
        """Load a synonym table from a CSV file."""
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"Synonym table not found: {path}")
        return SynonymIndex.from_dataframe(pd.read_csv(path))

    @staticmethod
    def default() -> "SynonymIndex":
        """Load the synonym table bundled with the package."""
        source = resources.files("finsight_pipeline").joinpath(
            "data/financial_synonyms.csv"
        )
        with resources.as_file(source) as path:
            return SynonymIndex.from_csv(path)

    def extended(self, other: "SynonymIndex") -> "SynonymIndex":
        """Return a new index where the entries of ``other`` take precedence."""
        return SynonymIndex([*other.entries, *self.entries])


def _normalize_overrides(
    client_overrides: Optional[Mapping[str, str]],
) -> dict[str, str]:
    """Normalize override keys and drop targets outside the vocabulary."""
    normalized: dict[str, str] = {}
    for source, target in (client_overrides or {}).items():
        if not is_canonical(target):
            logger.warning(
                "Ignoring client override %r -> %r: not a canonical field.",
                source,
                target,
            )
            continue
        normalized[normalize_field_name(source)] = target
    return normalized


def _fuzzy_match(key: str, index: SynonymIndex) -> Optional[Resolution]:
    best: Optional[Resolution] = None
    best_score = 0.0
    for candidate in index.keys():
        score = similarity(key, candidate)
        # Strict comparisons: ties keep the first key, 0.7 exactly is rejected.
        if score > best_score and score > FUZZY_THRESHOLD:
            entry = index.get(candidate)
            assert entry is not None
            best_score = score
            best = Resolution(
                canonical=entry.canonical,
                confidence=entry.confidence * score,
                method=FUZZY,
                similarity=score,
            )
    return best


def resolve(
    field_name: str,
    index: SynonymIndex,
    client_overrides: Optional[Mapping[str, str]] = None,
) -> Optional[Resolution]:
    """Resolve one label to a canonical field.

    Args:
        field_name: Raw label from the uploaded file.
        index: Synonym index to search.
        client_overrides: Optional {label -> canonical field} table specific
            to the client. Keys are normalized like ``field_name``.

    Returns:
        A Resolution, or None when no rule matches (a normal outcome).
    """
    key = normalize_field_name(field_name)
    overrides = _normalize_overrides(client_overrides)

    if key in overrides:
        return Resolution(canonical=overrides[key], confidence=1.0, method=EXACT_CLIENT)

    entry = index.get(key)
    if entry is not None:
        return Resolution(
            canonical=entry.canonical, confidence=entry.confidence, method=EXACT_INDEX
        )

    if not key:
        return None

    return _fuzzy_match(key, index)


def coherence_notes(values: Mapping[str, Any]) -> list[str]:
    """Quick plausibility remarks on freshly mapped numeric values.

    Only numeric values are considered; these notes are advisory and do
    not replace the coherence validator.
    """
    nums = {
        k: float(v)
        for k, v in values.items()
        if isinstance(v, (int, float)) and not isinstance(v, bool)
    }
    notes: list[str] = []

    activo = nums.get("activo_total")
    pasivo = nums.get("pasivo_total")
    patrimonio = nums.get("patrimonio_neto")
    if activo and pasivo is not None and patrimonio is not None:
        gap = abs(activo - (pasivo + patrimonio))
        if gap > abs(activo) * 0.01:
            notes.append(
                f"Balance mismatch: activo_total ({activo:g}) != "
                f"pasivo_total + patrimonio_neto ({pasivo + patrimonio:g})"
            )
        else:
            notes.append("Balance identity verified")

    ventas = nums.get("ventas")
    coste = nums.get("coste_ventas")
    if ventas and coste is not None and coste > ventas:
        notes.append(f"coste_ventas ({coste:g}) is greater than ventas ({ventas:g})")

    ebitda = nums.get("ebitda")
    if ventas and ebitda is not None and ebitda > ventas:
        notes.append(f"ebitda ({ebitda:g}) is greater than ventas ({ventas:g})")

    return notes


def map_fields(
    raw: Mapping[str, Any],
    index: SynonymIndex,
    client_overrides: Optional[Mapping[str, str]] = None,
    logger: Optional[logging.Logger] = None,
) -> MappingResult:
    """Resolve every label of a raw field set.

    Two labels resolving to the same canonical field are both recorded;
    the later one wins and the earlier decision is flagged ``overwritten``.
    """
    log = logger or logging.getLogger(__name__)
    result = MappingResult()
    total_confidence = 0.0

    for source, value in raw.items():
        resolution = resolve(str(source), index, client_overrides)
        if resolution is None:
            result.unmapped.append(str(source))
            result.suggestions.append(
                f'Field "{source}" could not be mapped automatically'
            )
            log.debug("Unmapped field %r", source)
            continue

        if resolution.canonical in result.mapped:
            for i, previous in enumerate(result.decisions):
                if previous.canonical == resolution.canonical and not previous.overwritten:
                    result.decisions[i] = replace(previous, overwritten=True)
                    log.info(
                        "Field %r overrides %r for canonical %r",
                        source,
                        previous.source,
                        resolution.canonical,
                    )

        result.mapped[resolution.canonical] = value
        result.decisions.append(
            MappingDecision(
                source=str(source),
                canonical=resolution.canonical,
                confidence=resolution.confidence,
                method=resolution.method,
            )
        )
        total_confidence += resolution.confidence

        if resolution.method == FUZZY:
            result.suggestions.append(
                f'Field "{source}" mapped to "{resolution.canonical}" '
                f"with confidence {round(resolution.confidence * 100)}%"
            )

    if result.decisions:
        result.confidence = total_confidence / len(result.decisions)

    result.suggestions.extend(coherence_notes(result.mapped))
    log.info(
        "Mapped %d of %d fields (confidence %.2f)",
        len(result.decisions),
        len(raw),
        result.confidence,
    )
    return result


def learned_rules(result: MappingResult) -> dict[str, str]:
    """Derive client override rules from a mapping pass.

    Every effective decision obtained from the shared index becomes a
    ``normalized label -> canonical`` rule that callers may store and pass
    back as ``client_overrides`` for the next upload of the same client.
    """
    rules: dict[str, str] = {}
    for decision in result.decisions:
        if decision.method == EXACT_CLIENT or decision.overwritten:
            continue
        rules[normalize_field_name(decision.source)] = decision.canonical
    return rules


# ---------------------------------------------------------------------------
# Sheet helpers
# ---------------------------------------------------------------------------

_SHEET_NAMES: tuple[tuple[str, str], ...] = (
    ("balance general", "balance_sheet"),
    ("balance", "balance_sheet"),
    ("situacion", "balance_sheet"),
    ("perdidas y ganancias", "income_statement"),
    ("estado de resultados", "income_statement"),
    ("pyg", "income_statement"),
    ("p&g", "income_statement"),
    ("cash flow", "cash_flow_statement"),
    ("flujo de efectivo", "cash_flow_statement"),
    ("efectivo", "cash_flow_statement"),
    ("ratios", "financial_ratios"),
    ("kpis", "financial_ratios"),
    ("indicadores", "financial_ratios"),
    ("diario", "journal_entries"),
    ("journal", "journal_entries"),
)

_RECOGNIZED_KEYWORDS: tuple[str, ...] = (
    "activo",
    "pasivo",
    "ingresos",
    "ventas",
    "costos",
    "gastos",
    "efectivo",
    "deuda",
)


def normalize_sheet_name(sheet_name: str) -> str:
    """Map a workbook sheet title to a statement type."""
    lower = sheet_name.lower()
    for needle, target in _SHEET_NAMES:
        if needle in lower:
            return target
    return "financial_data"


def classify_sheet(sheet_name: str, fields: Iterable[str]) -> str:
    """Classify a sheet from its title and its field labels."""
    lower = sheet_name.lower()
    joined = " ".join(f.lower() for f in fields)

    if "balance" in lower or "activo" in joined or "pasivo" in joined:
        return "balance_sheet"
    if "pyg" in lower or "p&g" in lower or "ingresos" in joined or "ventas" in joined:
        return "income_statement"
    if "cash" in lower or "efectivo" in lower or "flujo" in joined:
        return "cash_flow"
    if "ratio" in lower or "kpi" in lower or "ratio" in joined:
        return "financial_ratios"
    return "financial_data"


def sheet_confidence(sheet_name: str, fields: Iterable[str]) -> float:
    """Heuristic confidence that a sheet holds usable financial data."""
    labels = [f.lower() for f in fields]
    confidence = 0.5
    if classify_sheet(sheet_name, labels) != "financial_data":
        confidence += 0.3
    if labels:
        recognized = sum(
            1 for label in labels if any(k in label for k in _RECOGNIZED_KEYWORDS)
        )
        confidence += min(0.2, recognized / len(labels) * 0.2)
    return min(confidence, 1.0)
