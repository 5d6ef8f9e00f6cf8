import pytest

from finsight_pipeline.assumptions import Benchmarks
from finsight_pipeline.backfill import DERIVED, INPUT, SYNTHETIC
from finsight_pipeline.charts import (
    CHART_REQUIREMENTS,
    assign_chart,
    assign_charts,
    benchmark_report,
    chart_confidence,
    compute_global_kpis,
)


def test_profit_loss_with_sales_only_is_backfilled():
    assignment = assign_chart(
        "profit_loss", {"ventas": 1200}, CHART_REQUIREMENTS["profit_loss"]
    )

    assert assignment.synthetic_data == pytest.approx(
        {"coste_ventas": 780, "gastos_personal": 216, "otros_gastos": 144}
    )
    assert assignment.missing_fields == []
    assert assignment.required_found == 4
    assert assignment.confidence == pytest.approx(0.8)


def test_chart_without_any_data_keeps_missing_fields():
    assignment = assign_chart("debt_service", {}, CHART_REQUIREMENTS["debt_service"])
    assert assignment.missing_fields == ["ebitda", "deuda_financiera"]
    assert assignment.synthetic_data is None
    assert assignment.confidence == pytest.approx(0.0)


def test_optional_ratio_is_one_without_optional_fields():
    assert chart_confidence(1, 1, 0, 0) == pytest.approx(1.0)
    assert chart_confidence(2, 4, 1, 2) == pytest.approx(0.8 * 0.5 + 0.2 * 0.5)


def test_generated_values_come_from_real_data_only():
    fields = {"ventas": 1000, "coste_ventas": 600}
    assignment = assign_chart("profit_loss", fields, CHART_REQUIREMENTS["profit_loss"])

    assert assignment.derived_data == {"margen_bruto": 400}
    # resultado_explotacion needs gastos_personal / otros_gastos, which are
    # only estimated here.
    assert "resultado_explotacion" not in assignment.derived_data
    assert set(assignment.synthetic_data) == {"gastos_personal", "otros_gastos"}


@pytest.mark.parametrize("chart_id", sorted(CHART_REQUIREMENTS))
def test_confidence_never_decreases_with_more_fields(chart_id):
    requirement = CHART_REQUIREMENTS[chart_id]
    fields: dict[str, float] = {}
    previous = assign_chart(chart_id, fields, requirement).confidence

    for name in requirement.required + requirement.optional:
        fields[name] = 100.0
        current = assign_chart(chart_id, fields, requirement).confidence
        assert current >= previous - 1e-12
        previous = current

    assert previous == pytest.approx(1.0)


def test_assign_charts_merges_values_and_tags_provenance():
    fields = {"ventas": 1200, "margen_bruto": 500}
    dashboard = assign_charts(
        fields,
        ["profit_loss", "sales_segments"],
        base_provenance={"margen_bruto": DERIVED},
    )

    assert [c.chart_id for c in dashboard.charts] == ["profit_loss", "sales_segments"]
    assert dashboard.provenance["ventas"] == INPUT
    assert dashboard.provenance["margen_bruto"] == DERIVED
    assert dashboard.provenance["coste_ventas"] == SYNTHETIC
    assert dashboard.merged_fields["coste_ventas"] == pytest.approx(780)
    assert dashboard.completion_score == pytest.approx(
        sum(c.confidence for c in dashboard.charts) / 2
    )


def test_assign_charts_skips_unknown_chart_ids():
    dashboard = assign_charts({"ventas": 100}, ["profit_loss", "pie_of_everything"])
    assert [c.chart_id for c in dashboard.charts] == ["profit_loss"]


def test_assign_charts_defaults_to_every_chart():
    dashboard = assign_charts({"ventas": 100})
    assert {c.chart_id for c in dashboard.charts} == set(CHART_REQUIREMENTS)


def test_assign_charts_with_empty_request_assigns_nothing():
    dashboard = assign_charts({"ventas": 100}, [])
    assert dashboard.charts == []
    assert dashboard.completion_score == 0.0


def test_global_kpis_skip_missing_inputs_and_zero_denominators():
    kpis = compute_global_kpis(
        {
            "ventas": 1000,
            "resultado_neto": 50,
            "ebitda": 150,
            "activo_total": 2000,
            "patrimonio_neto": 0,
            "tesoreria": 100,
        }
    )
    assert kpis["margen_neto"] == pytest.approx(5.0)
    assert kpis["margen_ebitda"] == pytest.approx(15.0)
    assert kpis["rotacion_activos"] == pytest.approx(0.5)
    assert kpis["dias_tesoreria"] == pytest.approx(36.5)
    assert kpis["roa"] == pytest.approx(2.5)
    assert "roe" not in kpis
    assert "ratio_liquidez" not in kpis


def test_benchmark_report_inverts_lower_is_better_kpis():
    report = benchmark_report(
        {"roe": 20.0, "ratio_endeudamiento": 2.0, "ratio_liquidez": 1.0},
        Benchmarks(),
    )
    assert report["roe"]["status"] == "above"
    assert report["ratio_endeudamiento"]["status"] == "below"
    assert report["ratio_liquidez"] == {
        "value": 1.0,
        "benchmark": 1.5,
        "status": "below",
    }
