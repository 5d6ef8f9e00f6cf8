# FinSight Pipeline - Financial data normalization & projections for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Configuration helpers for FinSight Pipeline.

This module is responsible for:
- loading the pipeline configuration from a TOML file,
- turning each section into the typed, frozen objects consumed by the
  computation modules (thresholds, ratio tables, projection parameters),
- building the optional deep validator from its settings.

Every section is optional: a missing file section falls back to the
defaults of the corresponding dataclass.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import tomllib

from .assumptions import Benchmarks, RatioAssumptions, with_overrides
from .audit import SQLiteAuditStore
from .deep_validation import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_MODEL,
    DEFAULT_TIMEOUT_SECONDS,
    HttpDeepValidator,
)
from .errors import ConfigurationError
from .projections import ProjectionAssumptions
from .units import Unit
from .validator import CoherenceThresholds

DEFAULT_CONFIG_FILE = "finsight_pipeline_config.toml"
DEFAULT_ENDPOINT = "https://api.anthropic.com/v1/messages"


@dataclass(frozen=True)
class DeepValidationConfig:
    """Settings of the optional external validation step."""

    enabled: bool = False
    endpoint: Optional[str] = DEFAULT_ENDPOINT
    model: str = DEFAULT_MODEL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    api_key_env: str = "ANTHROPIC_API_KEY"

    def api_key(self) -> Optional[str]:
        return os.environ.get(self.api_key_env) or None

    def build_validator(self) -> HttpDeepValidator:
        """
        Build the HTTP validator.

        Raises:
            ConfigurationError: if the endpoint or the API key is missing.
        """
        return HttpDeepValidator(
            endpoint=self.endpoint,
            api_key=self.api_key(),
            model=self.model,
            timeout=self.timeout_seconds,
        )


@dataclass(frozen=True)
class AuditConfig:
    enabled: bool = False
    path: Optional[Path] = None

    def open_store(self) -> Optional[SQLiteAuditStore]:
        if not self.enabled:
            return None
        if self.path is None:
            raise ConfigurationError("[audit] is enabled but no path is set.")
        return SQLiteAuditStore(self.path)


@dataclass(frozen=True)
class PipelineConfig:
    """
    Pipeline-wide configuration.

    This aggregates:
    - the target unit (None keeps the detected unit),
    - the coherence thresholds,
    - the backfill ratio table and KPI benchmarks,
    - the default projection assumptions,
    - an optional extra synonym table,
    - deep validation and audit settings.
    """

    target_unit: Optional[Unit] = None
    thresholds: CoherenceThresholds = field(default_factory=CoherenceThresholds)
    ratio_assumptions: RatioAssumptions = field(default_factory=RatioAssumptions)
    projection_assumptions: ProjectionAssumptions = field(
        default_factory=ProjectionAssumptions
    )
    benchmarks: Benchmarks = field(default_factory=Benchmarks)
    synonyms_file: Optional[Path] = None
    deep_validation: DeepValidationConfig = field(default_factory=DeepValidationConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)


def _load_toml(path: Path) -> dict[str, Any]:
    """
    Load a TOML file and return its content as a dictionary.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the TOML content cannot be parsed.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Failed to parse TOML config file: {path}") from exc


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = raw.get(name) or {}
    if not isinstance(section, Mapping):
        raise ValueError(f"Config section [{name}] must be a table.")
    return section


def _parse_target_unit(units_section: Mapping[str, Any]) -> Optional[Unit]:
    raw_target = str(units_section.get("target", "auto")).strip().lower()
    if raw_target in ("", "auto"):
        return None
    try:
        return Unit.parse(raw_target)
    except ValueError as exc:
        raise ValueError(f"Invalid value for 'units.target': {raw_target!r}") from exc


def _parse_bool(
    section: Mapping[str, Any], key: str, default: bool, section_name: str
) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(
            f"Invalid value for '{section_name}.{key}': {value!r} (expected true or false)."
        )
    return value


def _with_section(base: Any, raw: Mapping[str, Any], name: str) -> Any:
    section = _section(raw, name)
    if not section:
        return base
    try:
        return with_overrides(base, section)
    except ValueError as exc:
        raise ValueError(f"Invalid [{name}] section: {exc}") from exc


def _parse_deep_validation(section: Mapping[str, Any]) -> DeepValidationConfig:
    defaults = DeepValidationConfig()
    try:
        timeout = float(section.get("timeout_seconds", defaults.timeout_seconds))
        retries = int(section.get("max_retries", defaults.max_retries))
    except (TypeError, ValueError) as exc:
        raise ValueError(
            "Invalid value for 'deep_validation.timeout_seconds' or "
            "'deep_validation.max_retries'."
        ) from exc
    if timeout <= 0:
        raise ValueError("'deep_validation.timeout_seconds' must be positive.")

    return DeepValidationConfig(
        enabled=_parse_bool(section, "enabled", defaults.enabled, "deep_validation"),
        endpoint=section.get("endpoint", defaults.endpoint) or None,
        model=str(section.get("model", defaults.model)),
        timeout_seconds=timeout,
        max_retries=max(0, min(retries, 1)),
        api_key_env=str(section.get("api_key_env", defaults.api_key_env)),
    )


def parse_config(raw: Mapping[str, Any], base_dir: Path) -> PipelineConfig:
    """Build a PipelineConfig from parsed TOML data.

    Relative paths are resolved against ``base_dir``.
    """
    target_unit = _parse_target_unit(_section(raw, "units"))

    thresholds = _with_section(CoherenceThresholds(), raw, "validation")
    ratio_assumptions = _with_section(RatioAssumptions(), raw, "backfill")
    projection_assumptions = _with_section(ProjectionAssumptions(), raw, "projections")
    benchmarks = _with_section(Benchmarks(), raw, "benchmarks")

    synonyms_section = _section(raw, "synonyms")
    synonyms_raw = synonyms_section.get("file")
    synonyms_file = (base_dir / str(synonyms_raw)).resolve() if synonyms_raw else None

    deep_validation = _parse_deep_validation(_section(raw, "deep_validation"))

    audit_section = _section(raw, "audit")
    audit_path_raw = audit_section.get("path") or "data/db/finsight_audit.sqlite"
    audit = AuditConfig(
        enabled=_parse_bool(audit_section, "enabled", False, "audit"),
        path=(base_dir / str(audit_path_raw)).resolve(),
    )

    return PipelineConfig(
        target_unit=target_unit,
        thresholds=thresholds,
        ratio_assumptions=ratio_assumptions,
        projection_assumptions=projection_assumptions,
        benchmarks=benchmarks,
        synonyms_file=synonyms_file,
        deep_validation=deep_validation,
        audit=audit,
    )


def load_pipeline_config(config_path: Optional[str] = None) -> PipelineConfig:
    """
    Load the FinSight Pipeline configuration from a TOML file.

    Expected (all optional) sections in the TOML file
    -------------------------------------------------
    [units]            target = "auto" | "euros" | "k_euros" | "m_euros"
    [validation]       coherence thresholds (balance_tolerance, ...)
    [backfill]         synthetic backfill ratios (cost_of_sales_pct_sales, ...)
    [projections]      default projection assumptions (growth_rate, ...)
    [benchmarks]       KPI reference values
    [synonyms]         file = extra synonym CSV merged over the bundled one
    [deep_validation]  enabled, endpoint, model, timeout_seconds,
                       max_retries, api_key_env
    [audit]            enabled, path (SQLite file)

    Parameters
    ----------
    config_path : str, optional
        Path to the TOML file. When omitted, ``finsight_pipeline_config.toml``
        in the current directory is used if it exists, otherwise defaults
        apply.

    Returns
    -------
    PipelineConfig
        Parsed and validated configuration.
    """
    if config_path is None:
        config_file = Path(DEFAULT_CONFIG_FILE).resolve()
        if not config_file.is_file():
            return PipelineConfig()
    else:
        config_file = Path(config_path).resolve()

    raw = _load_toml(config_file)
    return parse_config(raw, config_file.parent)
