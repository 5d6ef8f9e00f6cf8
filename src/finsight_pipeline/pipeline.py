# FinSight Pipeline - Financial data normalization & projections for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
End-to-end pipeline orchestration.

run_pipeline() chains every stage on one raw field set, in a fixed order:

1. mapping             labels -> canonical fields (synonyms.map_fields)
2. parsing             raw values -> floats (cleaner.parse_value)
3. unit detection      on the parsed values (units.detect_unit)
4. cleaning            range checks + rescaling to the target unit
5. derived fields      exact computations (backfill.compute_derived)
6. coherence checks    balance / margin / liquidity (validator.validate)
7. chart assignment    per-chart data, synthetic backfill, KPIs
8. projections         when requested and revenue is present
9. deep validation     when a validator is given or enabled in config

Data problems never raise: they end up as issues and suggestions in the
PipelineResult. Only configuration-class failures (ConfigurationError,
invalid scenario or year range) propagate to the caller.

Each run works on its own copy of the input; the synonym index and the
chart registry are shared read-only.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Optional

from .audit import AuditRecord
from .backfill import SYNTHETIC, compute_derived
from .charts import ChartAssignment, assign_charts, benchmark_report
from .cleaner import finalize, parse_value
from .config import PipelineConfig
from .deep_validation import DeepValidator, deep_validate, is_fallback
from .issues import (
    INFO,
    MISSING_DATA,
    UNIT_CONVERSION,
    IssueLog,
    ValidationIssue,
    ValidationSuggestion,
)
from .projections import (
    BaseFinancials,
    ProjectionAssumptions,
    ProjectionSeries,
    Scenario,
    project,
)
from .synonyms import MappingResult, SynonymIndex, learned_rules, map_fields
from .units import Unit, UnitDetection, detect_unit
from .validator import validate
from .vocabulary import CanonicalFieldSet

DEFAULT_YEAR_RANGE = (0, 5)


@dataclass
class PipelineResult:
    """
    Everything produced by one pipeline run.

    Attributes:
        fields: Cleaned canonical values plus exact derived fields.
        dashboard_fields: ``fields`` plus synthetic and chart-derived values.
        provenance: {field -> "input" | "derived" | "synthetic"} for
            ``dashboard_fields``.
        unit: Unit of every amount in the result.
        detection: Unit detected on the input.
        mapping: Label resolution details.
        issues / suggestions: All findings of the run, in stage order.
        charts: One ChartAssignment per requested chart.
        kpis: Global KPIs computed on ``dashboard_fields``.
        benchmarks: KPI comparison with the configured reference values.
        completion_score: Mean chart confidence.
        confidence: Share of mapped fields that survived cleaning.
        is_valid: Coherence verdict (confidence and no error).
        projections: Projection series, when requested.
        deep_report: Deep validation report, when run.
    """

    fields: CanonicalFieldSet
    dashboard_fields: CanonicalFieldSet
    provenance: dict[str, str]
    unit: Unit
    detection: UnitDetection
    mapping: MappingResult
    issues: list[ValidationIssue]
    suggestions: list[ValidationSuggestion]
    charts: list[ChartAssignment]
    kpis: dict[str, float]
    benchmarks: dict[str, dict[str, Any]]
    completion_score: float
    confidence: float
    is_valid: bool
    projections: Optional[ProjectionSeries] = None
    deep_report: Optional[dict[str, Any]] = None

    @property
    def unmapped(self) -> list[str]:
        return list(self.mapping.unmapped)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation of the result."""
        return {
            "canonical_fields": self.fields.to_dict(),
            "dashboard_fields": self.dashboard_fields.to_dict(),
            "provenance": dict(self.provenance),
            "unit": self.unit.value,
            "detected_unit": {
                "unit": self.detection.unit.value,
                "mixed": self.detection.mixed,
            },
            "mapping": {
                "confidence": self.mapping.confidence,
                "decisions": [
                    {
                        "source": d.source,
                        "canonical": d.canonical,
                        "confidence": d.confidence,
                        "method": d.method,
                        "overwritten": d.overwritten,
                    }
                    for d in self.mapping.decisions
                ],
                "unmapped": list(self.mapping.unmapped),
                "notes": list(self.mapping.suggestions),
                "learned_rules": learned_rules(self.mapping),
            },
            "issues": [i.to_dict() for i in self.issues],
            "suggestions": [s.to_dict() for s in self.suggestions],
            "charts": [c.to_dict() for c in self.charts],
            "kpis": dict(self.kpis),
            "benchmarks": dict(self.benchmarks),
            "completion_score": self.completion_score,
            "confidence": self.confidence,
            "is_valid": self.is_valid,
            "projections": (
                self.projections.to_dict() if self.projections is not None else None
            ),
            "deep_validation": self.deep_report,
        }

    def to_audit_record(
        self, user_id: str, session_id: str, file_name: str
    ) -> AuditRecord:
        return AuditRecord(
            user_id=user_id,
            session_id=session_id,
            file_name=file_name,
            confidence=self.confidence,
            is_valid=self.is_valid,
            issues=[i.to_dict() for i in self.issues],
            suggestions=[s.to_dict() for s in self.suggestions],
        )


def load_index(config: PipelineConfig) -> SynonymIndex:
    """Bundled synonym index, extended with the configured table if any."""
    index = SynonymIndex.default()
    if config.synonyms_file is not None:
        index = index.extended(SynonymIndex.from_csv(config.synonyms_file))
    return index


def run_pipeline(
    raw: Mapping[str, Any],
    *,
    overrides: Optional[Mapping[str, str]] = None,
    charts: Optional[Iterable[str]] = None,
    scenario: "Scenario | str | None" = None,
    assumptions: Optional[ProjectionAssumptions] = None,
    year_range: Optional[tuple[int, int]] = None,
    config: Optional[PipelineConfig] = None,
    deep_validator: Optional[DeepValidator] = None,
    index: Optional[SynonymIndex] = None,
    logger: Optional[logging.Logger] = None,
) -> PipelineResult:
    """Run the whole pipeline on a raw ``label -> value`` field set.

    Args:
        raw: Raw field set as read from the upload.
        overrides: Client-specific {label -> canonical field} table.
        charts: Requested chart ids; all charts when None.
        scenario: Projection scenario. Projections run when ``scenario`` or
            ``year_range`` is given.
        assumptions: Projection assumptions; defaults to the configured ones.
        year_range: (start, end) relative years; defaults to (0, 5).
        config: Pipeline configuration; defaults to PipelineConfig().
        deep_validator: Deep validator to use. When None and deep validation
            is enabled in ``config``, the HTTP validator is built from it.
        index: Synonym index; defaults to the bundled (and configured) one.
        logger: Optional logger passed to every stage.

    Returns:
        A PipelineResult.

    Raises:
        ConfigurationError: if deep validation is enabled but not configured.
        ValueError: if ``scenario`` or ``year_range`` is invalid.
    """
    log = logger or logging.getLogger(__name__)
    config = config or PipelineConfig()
    snapshot = dict(raw)

    # Configuration-class checks first, before any work is done.
    projection_scenario: Optional[Scenario] = None
    if scenario is not None or year_range is not None:
        projection_scenario = Scenario.parse(scenario or Scenario.BASE)
    if deep_validator is None and config.deep_validation.enabled:
        deep_validator = config.deep_validation.build_validator()

    if index is None:
        index = load_index(config)

    # 1) Mapping
    mapping = map_fields(snapshot, index, overrides, logger=log)

    # 2) Parsing
    issue_log = IssueLog()
    parsed: dict[str, float] = {}
    for name, value in mapping.mapped.items():
        number = parse_value(name, value, issue_log)
        if number is not None:
            parsed[name] = number

    # 3) Unit detection
    detection = detect_unit(parsed.values())
    target = config.target_unit or detection.unit
    if detection.mixed:
        issue_log.suggest(
            UNIT_CONVERSION,
            "Values span several magnitudes; the unit could not be detected "
            f"reliably (assumed {detection.unit.value}). Please review units.",
            action="review_units",
        )
    log.info(
        "Detected unit %s (mixed=%s), target %s",
        detection.unit.value,
        detection.mixed,
        target.value,
    )

    # 4) Cleaning
    cleaned = {
        name: finalize(
            name, value, mapping.mapped[name], issue_log, detection.unit, target
        )
        for name, value in parsed.items()
    }

    # 5) Derived fields
    derived = compute_derived(cleaned, logger=log)
    issue_log.suggestions.extend(derived.suggestions)

    # 6) Coherence
    coherence = validate(
        derived.fields,
        total_input_fields=len(mapping.mapped),
        cleaned_fields=len(cleaned),
        thresholds=config.thresholds,
        prior_issues=issue_log.issues,
        logger=log,
    )
    issue_log.issues.extend(coherence.issues)

    # 7) Charts and KPIs
    dashboard = assign_charts(
        derived.fields,
        requested_charts=charts,
        assumptions=config.ratio_assumptions,
        base_provenance=derived.provenance,
        logger=log,
    )
    for name, label in dashboard.provenance.items():
        if label == SYNTHETIC:
            issue_log.suggest(
                MISSING_DATA,
                f"{name} is a synthetic estimate "
                f"({dashboard.merged_fields[name]:g}); provide the real value "
                "to improve accuracy.",
                action="synthetic_backfill",
            )
    benchmarks = benchmark_report(dashboard.kpis, config.benchmarks)

    # 8) Projections
    projections: Optional[ProjectionSeries] = None
    if projection_scenario is not None:
        if derived.fields.get("ventas") is None:
            issue_log.issue(
                INFO,
                "ventas",
                "Projections skipped: revenue is missing.",
            )
        else:
            projections = project(
                BaseFinancials.from_fields(derived.fields),
                projection_scenario,
                year_range or DEFAULT_YEAR_RANGE,
                assumptions or config.projection_assumptions,
            )

    # 9) Deep validation
    deep_report: Optional[dict[str, Any]] = None
    if deep_validator is not None:
        deep_report = deep_validate(
            derived.fields,
            deep_validator,
            timeout=config.deep_validation.timeout_seconds,
            retries=config.deep_validation.max_retries,
            logger=log,
        )
        if is_fallback(deep_report):
            issue_log.issue(
                INFO,
                "deep_validation",
                "Automated deep validation did not complete; "
                "a default report was used.",
                original_value=deep_report["metadata"]["fallback_reason"],
            )

    return PipelineResult(
        fields=derived.fields,
        dashboard_fields=dashboard.merged_fields,
        provenance=dashboard.provenance,
        unit=target,
        detection=detection,
        mapping=mapping,
        issues=issue_log.issues,
        suggestions=issue_log.suggestions,
        charts=dashboard.charts,
        kpis=dashboard.kpis,
        benchmarks=benchmarks,
        completion_score=dashboard.completion_score,
        confidence=coherence.confidence,
        is_valid=coherence.is_valid,
        projections=projections,
        deep_report=deep_report,
    )
