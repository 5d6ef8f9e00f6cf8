import pytest

from finsight_pipeline.assumptions import RatioAssumptions, with_overrides
from finsight_pipeline.backfill import (
    DERIVED,
    SYNTHETIC,
    backfill,
    compute_derived,
)
from finsight_pipeline.issues import CALCULATION, MISSING_DATA


def test_backfill_profit_and_loss_from_sales():
    result = backfill(
        {"ventas": 1200}, ["ventas", "coste_ventas", "gastos_personal", "otros_gastos"]
    )

    assert result.filled["coste_ventas"] == pytest.approx(780)
    assert result.filled["gastos_personal"] == pytest.approx(216)
    assert result.filled["otros_gastos"] == pytest.approx(144)
    assert result.provenance == {
        "coste_ventas": SYNTHETIC,
        "gastos_personal": SYNTHETIC,
        "otros_gastos": SYNTHETIC,
    }
    assert result.unfillable == []
    assert all(s.type == MISSING_DATA for s in result.suggestions)
    assert all(s.action == "synthetic_backfill" for s in result.suggestions)


def test_backfill_never_overwrites_or_retags_input_fields():
    fields = {"ventas": 1000, "coste_ventas": 123}
    result = backfill(fields, ["coste_ventas", "gastos_personal"])

    assert result.filled["coste_ventas"] == 123
    assert "coste_ventas" not in result.provenance
    assert result.provenance == {"gastos_personal": SYNTHETIC}


def test_backfill_chains_balance_identity_before_debt():
    fields = {"activo_total": 1000, "patrimonio_neto": 400}
    result = backfill(fields, ["pasivo_total", "deuda_financiera"])

    assert result.filled["pasivo_total"] == pytest.approx(600)
    assert result.filled["deuda_financiera"] == pytest.approx(600 * 0.65)


def test_backfill_reports_unfillable_fields():
    result = backfill({}, ["coste_ventas", "ventas", "clientes"])
    assert result.unfillable == ["coste_ventas", "ventas", "clientes"]
    assert result.provenance == {}


def test_backfill_uses_the_given_ratio_table():
    ratios = with_overrides(RatioAssumptions(), {"cost_of_sales_pct_sales": 0.5})
    result = backfill({"ventas": 1000}, ["coste_ventas"], assumptions=ratios)
    assert result.filled["coste_ventas"] == pytest.approx(500)


def test_with_overrides_rejects_unknown_keys():
    with pytest.raises(ValueError, match="Unknown setting"):
        with_overrides(RatioAssumptions(), {"gross_margin": 0.3})


def test_compute_derived_margin_ebitda_and_debt_ratio():
    result = compute_derived(
        {
            "ventas": 1500,
            "coste_ventas": 900,
            "resultado_explotacion": 200,
            "amortizaciones": 50,
            "deuda_financiera": 300,
            "patrimonio_neto": 600,
        }
    )

    assert result.fields["margen_bruto"] == pytest.approx(600)
    assert result.fields["ebitda"] == pytest.approx(250)
    assert result.fields["ratio_endeudamiento"] == pytest.approx(0.5)
    assert set(result.provenance.values()) == {DERIVED}
    assert {s.action for s in result.suggestions} == {
        "calculated_margin",
        "calculated_ebitda",
        "calculated_debt_ratio",
    }
    assert all(s.type == CALCULATION for s in result.suggestions)


def test_compute_derived_keeps_supplied_values_and_guards_zero_equity():
    result = compute_derived(
        {
            "ventas": 1500,
            "coste_ventas": 900,
            "margen_bruto": 650,
            "deuda_financiera": 300,
            "patrimonio_neto": 0,
        }
    )
    assert result.fields["margen_bruto"] == 650
    assert "ratio_endeudamiento" not in result.fields
    assert result.provenance == {}
