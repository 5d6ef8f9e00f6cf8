import pandas as pd
import pytest

from finsight_pipeline.synonyms import (
    EXACT_CLIENT,
    EXACT_INDEX,
    FUZZY,
    SynonymEntry,
    SynonymIndex,
    classify_sheet,
    learned_rules,
    map_fields,
    normalize_field_name,
    normalize_sheet_name,
    resolve,
    sheet_confidence,
    similarity,
)


def make_index(*entries: SynonymEntry) -> SynonymIndex:
    """Helper to build a small in-memory synonym index."""
    return SynonymIndex(entries)


@pytest.fixture(scope="module")
def default_index() -> SynonymIndex:
    return SynonymIndex.default()


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Total Activo", "total_activo"),
        ("  P&L / Ventas ", "p_l_ventas"),
        ("Coste Ventas", "coste_ventas"),
        ("___", ""),
    ],
)
def test_normalize_field_name(raw, expected):
    assert normalize_field_name(raw) == expected


def test_default_index_resolves_canonical_terms_exactly(default_index):
    res = resolve("Ventas", default_index)
    assert res is not None
    assert res.canonical == "ventas"
    assert res.method == EXACT_INDEX
    assert res.confidence == pytest.approx(0.95)


def test_aliases_score_below_canonical_entry(default_index):
    res = resolve("Importe neto cifra negocios", default_index)
    assert res is not None
    assert res.canonical == "ventas"
    assert res.method == EXACT_INDEX
    assert res.confidence == pytest.approx(0.95 * 0.9)


def test_client_override_wins_over_index(default_index):
    res = resolve("Ventas", default_index, client_overrides={"ventas": "ebitda"})
    assert res is not None
    assert res.canonical == "ebitda"
    assert res.method == EXACT_CLIENT
    assert res.confidence == 1.0


def test_client_override_to_unknown_field_is_ignored(default_index):
    res = resolve("Ventas", default_index, client_overrides={"ventas": "not_a_field"})
    assert res is not None
    assert res.canonical == "ventas"
    assert res.method == EXACT_INDEX


def test_fuzzy_confidence_is_score_times_similarity():
    # Alias score is 0.9 (1.0 x alias factor); query differs by 3 chars out of 20.
    index = make_index(
        SynonymEntry("activo_total", ("total_activo_balance",), "balance_sheet", 1.0)
    )
    query = "total_activo_balaxyz"
    assert similarity(query, "total_activo_balance") == pytest.approx(0.85)

    res = resolve(query, index)
    assert res is not None
    assert res.canonical == "activo_total"
    assert res.method == FUZZY
    assert res.similarity == pytest.approx(0.85)
    assert res.confidence == pytest.approx(0.765)


def test_fuzzy_threshold_is_strict():
    index = make_index(SynonymEntry("ventas", ("a" * 100,), "income_statement", 1.0))

    exactly_070 = "a" * 70 + "b" * 30
    assert similarity(exactly_070, "a" * 100) == 0.7
    assert resolve(exactly_070, index) is None

    above = "a" * 71 + "b" * 29
    res = resolve(above, index)
    assert res is not None
    assert res.canonical == "ventas"
    assert res.similarity == pytest.approx(0.71)


def test_unknown_label_is_none(default_index):
    assert resolve("Número de empleados en plantilla", default_index) is None
    assert resolve("", default_index) is None


def test_index_rejects_unknown_canonical_terms():
    with pytest.raises(ValueError):
        make_index(SynonymEntry("not_a_field", (), "balance_sheet", 0.9))


def test_entry_confidence_must_be_in_unit_interval():
    with pytest.raises(ValueError):
        SynonymEntry("ventas", (), "income_statement", 1.5)


def test_from_dataframe_requires_columns():
    df = pd.DataFrame({"canonical_term": ["ventas"], "synonyms": ["sales"]})
    with pytest.raises(ValueError, match="missing column"):
        SynonymIndex.from_dataframe(df)


def test_extended_index_gives_precedence_to_new_entries(default_index):
    extra = make_index(
        SynonymEntry("ebitda", ("facturacion",), "income_statement", 1.0)
    )
    merged = default_index.extended(extra)
    res = resolve("Facturacion", merged)
    assert res is not None
    assert res.canonical == "ebitda"
    # The original index is untouched.
    assert resolve("Facturacion", default_index).canonical == "ventas"


def test_map_fields_reports_unmapped_and_confidence(default_index):
    raw = {"Ventas": "1.500,00", "Coste Ventas": 900, "Campo raro": 3}
    result = map_fields(raw, default_index)

    assert result.mapped == {"ventas": "1.500,00", "coste_ventas": 900}
    assert result.unmapped == ["Campo raro"]
    assert any("Campo raro" in s for s in result.suggestions)
    assert result.confidence == pytest.approx((0.95 + 0.9) / 2)


def test_map_fields_last_writer_wins_and_flags_overwritten(default_index):
    raw = {"Ventas": 100, "Revenue": 200}
    result = map_fields(raw, default_index)

    assert result.mapped["ventas"] == 200
    assert [d.overwritten for d in result.decisions] == [True, False]
    assert result.source_of("ventas") == "Revenue"


def test_map_fields_adds_coherence_notes(default_index):
    raw = {"Activo total": 1000, "Pasivo total": 600, "Patrimonio neto": 300}
    result = map_fields(raw, default_index)
    assert any("Balance mismatch" in s for s in result.suggestions)


def test_learned_rules_skip_client_and_overwritten_decisions(default_index):
    raw = {"Ventas": 100, "Revenue": 200, "Mi EBITDA": 50}
    result = map_fields(raw, default_index, client_overrides={"Mi EBITDA": "ebitda"})
    assert learned_rules(result) == {"revenue": "ventas"}


def test_sheet_helpers():
    assert normalize_sheet_name("Balance de situación 2024") == "balance_sheet"
    assert classify_sheet("Hoja1", ["Activo total", "Pasivo"]) == "balance_sheet"
    assert classify_sheet("Hoja1", ["Ventas"]) == "income_statement"
    assert classify_sheet("Hoja1", ["foo"]) == "financial_data"
    assert sheet_confidence("Hoja1", []) == pytest.approx(0.5)
    assert sheet_confidence("Balance", ["activo total"]) > 0.8
