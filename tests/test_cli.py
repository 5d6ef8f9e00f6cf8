import json

import pandas as pd
import pytest

from finsight_pipeline import __version__
from finsight_pipeline.cli import main


@pytest.fixture
def upload(tmp_path):
    path = tmp_path / "upload.json"
    path.write_text(
        json.dumps({"Ventas": "1.500,00", "Coste Ventas": 900}), encoding="utf-8"
    )
    return path


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    # No stray finsight_pipeline_config.toml is picked up.
    monkeypatch.chdir(tmp_path)


def test_version(capsys):
    main(["--version"])
    out = capsys.readouterr().out
    assert __version__ in out


def test_no_command_prints_help(capsys):
    main([])
    assert "usage" in capsys.readouterr().out.lower()


def test_run_prints_summary_and_writes_json(upload, tmp_path, capsys):
    output = tmp_path / "out" / "result.json"
    main(["run", str(upload), "--output", str(output)])

    out = capsys.readouterr().out
    assert "Result: VALID" in out
    assert "margen_bruto" in out

    data = json.loads(output.read_text(encoding="utf-8"))
    assert data["canonical_fields"]["ventas"] == 1500.0
    assert data["is_valid"] is True


def test_run_with_projections(upload, capsys):
    main(["run", str(upload), "--scenario", "pesimista", "--years", "2", "--growth", "10"])
    out = capsys.readouterr().out
    assert "Projection P&L (pesimista)" in out
    assert "A2" in out


def test_missing_input_is_a_usage_error(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        main(["run", str(tmp_path / "missing.json")])
    assert excinfo.value.code == 2


def test_deep_validate_without_key_exits_with_configuration_error(
    upload, monkeypatch, capsys
):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    with pytest.raises(SystemExit) as excinfo:
        main(["run", str(upload), "--deep-validate"])
    assert excinfo.value.code == 1
    assert "Configuration error" in capsys.readouterr().err


def test_audit_records_runs(upload, tmp_path, capsys):
    config = tmp_path / "config.toml"
    config.write_text('[audit]\nenabled = true\npath = "audit.sqlite"\n', encoding="utf-8")

    main(["--config", str(config), "run", str(upload), "--user", "ana", "--session", "s1"])
    main(["--config", str(config), "audit", "--user", "ana"])

    out = capsys.readouterr().out
    assert "upload.json" in out
    assert "s1" in out


def test_audit_disabled_message(capsys):
    main(["audit"])
    assert "disabled" in capsys.readouterr().out


def test_run_reports_excel_sheet_profile(tmp_path, capsys):
    path = tmp_path / "upload.xlsx"
    pd.DataFrame([["Activo total", 1000], ["Patrimonio neto", 400]]).to_excel(
        path, sheet_name="Balance", header=False, index=False, engine="openpyxl"
    )
    main(["run", str(path), "--charts", "balance_sheet"])
    assert "Sheet 'Balance': balance_sheet" in capsys.readouterr().out
