import pytest

from finsight_pipeline.config import DeepValidationConfig, PipelineConfig
from finsight_pipeline.errors import ConfigurationError
from finsight_pipeline.issues import ERROR, INFO
from finsight_pipeline.pipeline import run_pipeline
from finsight_pipeline.units import Unit


class ReportingValidator:
    def __init__(self, report=None, error=None):
        self.report = report
        self.error = error
        self.seen = None

    def validate(self, fields):
        self.seen = dict(fields)
        if self.error is not None:
            raise self.error
        return self.report


def test_locale_formatted_input_is_normalized_and_valid():
    result = run_pipeline({"Ventas": "1.500,00", "Coste Ventas": 900})

    assert result.fields["ventas"] == 1500.0
    assert result.fields["coste_ventas"] == 900.0
    assert result.fields["margen_bruto"] == 600.0
    assert result.provenance["margen_bruto"] == "derived"
    assert [i for i in result.issues if i.severity == ERROR] == []
    assert result.is_valid
    assert result.confidence == 1.0
    # 1500 and 900 do not point at any single unit convention.
    assert result.detection.mixed
    assert any(s.action == "review_units" for s in result.suggestions)


def test_unbalanced_balance_sheet_is_invalid():
    result = run_pipeline(
        {"Activo total": 1000, "Pasivo total": 900, "Patrimonio neto": 50}
    )
    assert not result.is_valid
    errors = [i for i in result.issues if i.severity == ERROR]
    assert [i.field for i in errors] == ["balance_equation"]


def test_input_is_not_mutated():
    raw = {"Ventas": "1.500,00", "Coste Ventas": 900}
    snapshot = dict(raw)
    run_pipeline(raw)
    assert raw == snapshot


def test_unmapped_labels_are_reported_but_do_not_lower_confidence():
    result = run_pipeline({"Ventas": 1200, "Color favorito": "azul"})
    assert result.unmapped == ["Color favorito"]
    assert result.confidence == 1.0


def test_unparseable_value_lowers_confidence_and_blocks_validity():
    result = run_pipeline({"Ventas": 1200, "Coste Ventas": "n/a"})
    assert result.confidence == pytest.approx(0.5)
    assert not result.is_valid
    assert any(i.field == "coste_ventas" and i.severity == ERROR for i in result.issues)


def test_synthetic_values_are_flagged_and_kept_out_of_fields():
    result = run_pipeline({"Ventas": 1200}, charts=["profit_loss"])

    chart = result.charts[0]
    assert chart.confidence == pytest.approx(0.8)
    assert result.provenance["coste_ventas"] == "synthetic"
    assert result.dashboard_fields["coste_ventas"] == pytest.approx(780)
    assert "coste_ventas" not in result.fields
    assert any(s.action == "synthetic_backfill" for s in result.suggestions)


def test_configured_target_unit_rescales_values():
    config = PipelineConfig(target_unit=Unit.K_EUROS)
    result = run_pipeline({"Ventas": 50_000_000}, config=config)
    assert result.unit is Unit.K_EUROS
    assert result.fields["ventas"] == pytest.approx(50_000)
    assert any(s.action == "unit_normalized" for s in result.suggestions)


def test_client_overrides_are_applied():
    result = run_pipeline(
        {"Facturación anual": 1200}, overrides={"Facturación anual": "ventas"}
    )
    assert result.fields["ventas"] == 1200
    assert result.mapping.decisions[0].confidence == 1.0


def test_projections_run_when_scenario_is_given():
    result = run_pipeline(
        {"Ventas": 1200, "EBITDA": 180}, scenario="optimista", year_range=(0, 3)
    )
    assert result.projections is not None
    assert result.projections.years == ["A0", "A1", "A2", "A3"]
    assert result.projections.ebitda_margin == pytest.approx(17.0)


def test_projections_without_revenue_are_skipped_with_info():
    result = run_pipeline({"Activo total": 1000}, scenario="base")
    assert result.projections is None
    assert any(i.severity == INFO and i.field == "ventas" for i in result.issues)


def test_invalid_scenario_raises_before_any_work():
    with pytest.raises(ValueError):
        run_pipeline({"Ventas": 1200}, scenario="catastrofico")


def test_deep_validator_report_is_attached():
    report = {
        "validation_results": {
            "overall_score": 0.95,
            "critical_errors": [],
            "warnings": [],
        },
        "financial_checks": {},
        "confidence_scores": {},
        "recommendations": [],
    }
    validator = ReportingValidator(report=report)
    result = run_pipeline({"Ventas": 1200}, deep_validator=validator)

    assert validator.seen == {"ventas": 1200.0}
    assert result.deep_report["validation_results"]["overall_score"] == 0.95


def test_failing_deep_validator_falls_back_without_failing_the_run():
    validator = ReportingValidator(error=RuntimeError("service unavailable"))
    result = run_pipeline({"Ventas": 1200}, deep_validator=validator)

    assert result.deep_report["validation_results"]["overall_score"] == 0.6
    assert result.is_valid
    assert any(i.field == "deep_validation" for i in result.issues)


def test_enabled_deep_validation_without_key_is_a_configuration_error(monkeypatch):
    monkeypatch.delenv("FINSIGHT_TEST_API_KEY", raising=False)
    config = PipelineConfig(
        deep_validation=DeepValidationConfig(
            enabled=True, api_key_env="FINSIGHT_TEST_API_KEY"
        )
    )
    with pytest.raises(ConfigurationError):
        run_pipeline({"Ventas": 1200}, config=config)


def test_result_serializes_to_plain_dict():
    result = run_pipeline({"Ventas": 1200}, scenario="base", year_range=(0, 1))
    data = result.to_dict()
    assert data["canonical_fields"] == {"ventas": 1200.0}
    assert data["unit"] == result.unit.value
    assert data["projections"]["scenario"] == "base"
    assert len(data["charts"]) == 6


def test_audit_record_from_result():
    result = run_pipeline({"Activo total": 1000, "Pasivo total": 900, "Patrimonio neto": 50})
    record = result.to_audit_record("u1", "s1", "balance.json")
    assert record.is_valid is False
    assert record.issues[0]["field"] == "balance_equation"


def test_overflowing_value_never_reaches_the_result():
    result = run_pipeline(
        {"Ventas": "1" + "0" * 400, "Coste Ventas": 900}, scenario="base"
    )
    assert "ventas" not in result.fields
    assert "margen_bruto" not in result.fields
    assert result.projections is None
    assert any(
        i.field == "ventas" and i.severity == ERROR for i in result.issues
    )


def test_explicit_empty_chart_list_assigns_no_chart():
    result = run_pipeline({"Ventas": 1200}, charts=[])
    assert result.charts == []
    assert "coste_ventas" not in result.dashboard_fields
