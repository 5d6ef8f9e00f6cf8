# FinSight Pipeline - Financial data normalization & projections for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Accounting coherence checks.

Runs on a cleaned, unit-normalized canonical field set:

1. Balance identity
   activo_total = pasivo_total + patrimonio_neto, within a tolerance
   expressed as a share of total assets (2% by default). A violation is an
   error and makes the set invalid.

2. Gross margin sanity
   (ventas - coste_ventas) / ventas below 0 or above 0.8 is a warning.

3. Liquidity sanity
   activo_corriente / pasivo_corriente below 1 is a warning.

Overall confidence is the share of input fields that survived cleaning.
A set is valid when confidence > 0.7 and no error was recorded.

validate() never raises: even an empty input yields a result
(confidence 0.0, not valid).
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Optional

from .issues import ERROR, WARNING, IssueLog, ValidationIssue


@dataclass(frozen=True)
class CoherenceThresholds:
    """Tunable bounds of the coherence checks."""

    balance_tolerance: float = 0.02
    min_gross_margin: float = 0.0
    max_gross_margin: float = 0.8
    min_current_ratio: float = 1.0
    min_confidence: float = 0.7


@dataclass
class CoherenceResult:
    """Outcome of validate(). ``issues`` holds the coherence findings only."""

    is_valid: bool
    issues: list[ValidationIssue] = field(default_factory=list)
    confidence: float = 0.0


def _present(fields: Mapping[str, float], *keys: str) -> bool:
    return all(fields.get(k) is not None for k in keys)


def check_balance(
    fields: Mapping[str, float], log: IssueLog, tolerance: float
) -> None:
    if not _present(fields, "activo_total", "pasivo_total", "patrimonio_neto"):
        return
    activo = fields["activo_total"]
    pasivo = fields["pasivo_total"]
    patrimonio = fields["patrimonio_neto"]

    difference = abs(activo - (pasivo + patrimonio))
    allowed = abs(activo) * tolerance
    if difference > allowed:
        log.issue(
            ERROR,
            "balance_equation",
            f"Balance does not square: activo_total {activo:g} != "
            f"pasivo_total + patrimonio_neto {pasivo + patrimonio:g} "
            f"(difference {difference:g} > tolerance {allowed:g})",
            original_value={
                "activo_total": activo,
                "pasivo_total": pasivo,
                "patrimonio_neto": patrimonio,
            },
        )


def check_gross_margin(
    fields: Mapping[str, float],
    log: IssueLog,
    min_margin: float,
    max_margin: float,
) -> None:
    if not _present(fields, "ventas", "coste_ventas") or fields["ventas"] == 0:
        return
    margin = (fields["ventas"] - fields["coste_ventas"]) / fields["ventas"]
    if margin < min_margin:
        log.issue(
            WARNING,
            "margen_bruto",
            "Negative gross margin. Check cost of sales.",
            original_value=margin,
        )
    elif margin > max_margin:
        log.issue(
            WARNING,
            "margen_bruto",
            f"Unusually high gross margin ({margin * 100:.1f}%). Check cost data.",
            original_value=margin,
        )


def check_liquidity(
    fields: Mapping[str, float], log: IssueLog, min_ratio: float
) -> None:
    if (
        not _present(fields, "activo_corriente", "pasivo_corriente")
        or fields["pasivo_corriente"] == 0
    ):
        return
    ratio = fields["activo_corriente"] / fields["pasivo_corriente"]
    if ratio < min_ratio:
        log.issue(
            WARNING,
            "liquidez",
            f"Low current ratio ({ratio:.2f}). Possible cash tension.",
            original_value=ratio,
        )


def validate(
    fields: Mapping[str, float],
    total_input_fields: Optional[int] = None,
    cleaned_fields: Optional[int] = None,
    thresholds: Optional[CoherenceThresholds] = None,
    prior_issues: Sequence[ValidationIssue] = (),
    logger: Optional[logging.Logger] = None,
) -> CoherenceResult:
    """Run the coherence checks on a canonical field set.

    Args:
        fields: Cleaned canonical values.
        total_input_fields: Number of fields in the raw input. Defaults to
            ``len(fields)``.
        cleaned_fields: Number of fields successfully cleaned. Defaults to
            ``len(fields)``.
        thresholds: Check bounds; defaults to CoherenceThresholds().
        prior_issues: Issues from earlier stages (cleaning). Their errors
            also block validity but are not repeated in the result.
        logger: Optional logger.

    Returns:
        A CoherenceResult.
    """
    log_ = logger or logging.getLogger(__name__)
    thresholds = thresholds or CoherenceThresholds()
    log = IssueLog()

    check_balance(fields, log, thresholds.balance_tolerance)
    check_gross_margin(
        fields, log, thresholds.min_gross_margin, thresholds.max_gross_margin
    )
    check_liquidity(fields, log, thresholds.min_current_ratio)

    total = len(fields) if total_input_fields is None else total_input_fields
    cleaned = len(fields) if cleaned_fields is None else cleaned_fields
    confidence = cleaned / total if total > 0 else 0.0

    has_errors = log.has_errors or any(i.severity == ERROR for i in prior_issues)
    is_valid = confidence > thresholds.min_confidence and not has_errors

    log_.info(
        "Coherence validation: valid=%s confidence=%.2f issues=%d",
        is_valid,
        confidence,
        len(log.issues),
    )
    return CoherenceResult(is_valid=is_valid, issues=log.issues, confidence=confidence)
