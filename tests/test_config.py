from pathlib import Path

import pytest

from finsight_pipeline.config import (
    AuditConfig,
    DeepValidationConfig,
    PipelineConfig,
    load_pipeline_config,
)
from finsight_pipeline.deep_validation import HttpDeepValidator
from finsight_pipeline.errors import ConfigurationError
from finsight_pipeline.units import Unit


def write_config(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "finsight_pipeline_config.toml"
    path.write_text(content, encoding="utf-8")
    return path


def test_defaults_when_no_file_is_present(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = load_pipeline_config()
    assert config == PipelineConfig()
    assert config.target_unit is None
    assert config.thresholds.balance_tolerance == 0.02


def test_missing_explicit_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_pipeline_config(str(tmp_path / "nope.toml"))


def test_sections_are_parsed(tmp_path):
    path = write_config(
        tmp_path,
        """
[units]
target = "k_euros"

[validation]
balance_tolerance = 0.01

[backfill]
cost_of_sales_pct_sales = 0.6

[projections]
growth_rate = 8.0

[benchmarks]
roe = 12.0

[synonyms]
file = "extra_synonyms.csv"

[deep_validation]
enabled = true
timeout_seconds = 10
max_retries = 3

[audit]
enabled = true
path = "db/audit.sqlite"
""",
    )
    config = load_pipeline_config(str(path))

    assert config.target_unit is Unit.K_EUROS
    assert config.thresholds.balance_tolerance == 0.01
    assert config.ratio_assumptions.cost_of_sales_pct_sales == 0.6
    assert config.projection_assumptions.growth_rate == 8.0
    assert config.benchmarks.roe == 12.0
    assert config.synonyms_file == (tmp_path / "extra_synonyms.csv").resolve()
    assert config.deep_validation.enabled
    assert config.deep_validation.timeout_seconds == 10.0
    assert config.deep_validation.max_retries == 1
    assert config.audit.path == (tmp_path / "db" / "audit.sqlite").resolve()


def test_auto_target_unit_keeps_detected_unit(tmp_path):
    path = write_config(tmp_path, '[units]\ntarget = "auto"\n')
    assert load_pipeline_config(str(path)).target_unit is None


@pytest.mark.parametrize(
    "content",
    [
        '[units]\ntarget = "dollars"\n',
        '[deep_validation]\nenabled = "false"\n',
        "[audit]\nenabled = 1\n",
        "[validation]\nunknown_threshold = 1\n",
        '[projections]\ngrowth_rate = "fast"\n',
        "[deep_validation]\ntimeout_seconds = 0\n",
        "this is not toml = = =\n",
    ],
)
def test_invalid_content_raises_value_error(tmp_path, content):
    path = write_config(tmp_path, content)
    with pytest.raises(ValueError):
        load_pipeline_config(str(path))


def test_build_validator_reads_key_from_environment(monkeypatch):
    monkeypatch.setenv("FINSIGHT_TEST_API_KEY", "secret")
    settings = DeepValidationConfig(enabled=True, api_key_env="FINSIGHT_TEST_API_KEY")
    validator = settings.build_validator()
    assert isinstance(validator, HttpDeepValidator)
    assert validator.api_key == "secret"


def test_build_validator_without_key_fails(monkeypatch):
    monkeypatch.delenv("FINSIGHT_TEST_API_KEY", raising=False)
    settings = DeepValidationConfig(enabled=True, api_key_env="FINSIGHT_TEST_API_KEY")
    with pytest.raises(ConfigurationError):
        settings.build_validator()


def test_audit_store_requires_path_when_enabled():
    assert AuditConfig().open_store() is None
    with pytest.raises(ConfigurationError):
        AuditConfig(enabled=True).open_store()


def test_boolean_switches_are_read_as_booleans(tmp_path):
    path = write_config(
        tmp_path, "[deep_validation]\nenabled = false\n\n[audit]\nenabled = true\n"
    )
    config = load_pipeline_config(str(path))
    assert config.deep_validation.enabled is False
    assert config.audit.enabled is True
