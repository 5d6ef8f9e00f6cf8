# FinSight Pipeline - Financial data normalization & projections for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Validation issues and suggestions.

Every stage of the pipeline reports data-quality findings as values rather
than exceptions:

- ValidationIssue:      something is wrong or suspicious with a field
                        (severity error / warning / info),
- ValidationSuggestion: advisory note (unit conversion applied, value
                        computed, synthetic backfill used, ...).

Both are frozen dataclasses: once produced they are never mutated. The
IssueLog collects them for one pipeline run and is the side output passed
to the cleaner, the validator and the backfill engine.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Optional

ERROR = "error"
WARNING = "warning"
INFO = "info"

SEVERITIES: tuple[str, ...] = (ERROR, WARNING, INFO)

UNIT_CONVERSION = "unit_conversion"
DATA_CLEANUP = "data_cleanup"
MISSING_DATA = "missing_data"
CALCULATION = "calculation"

SUGGESTION_TYPES: tuple[str, ...] = (
    UNIT_CONVERSION,
    DATA_CLEANUP,
    MISSING_DATA,
    CALCULATION,
)


@dataclass(frozen=True)
class ValidationIssue:
    """
    A finding about one field (or one accounting identity).

    Attributes:
        severity: 'error', 'warning' or 'info'. Only errors block validity.
        field: Field name, or a pseudo-field such as 'balance_equation'.
        message: Human-readable description.
        original_value: Value that triggered the issue (raw or computed).
        suggested_value: Optional replacement value.
    """

    severity: str
    field: str
    message: str
    original_value: Any = None
    suggested_value: Optional[Any] = None

    def __post_init__(self) -> None:
        if self.severity not in SEVERITIES:
            raise ValueError(f"Invalid issue severity: {self.severity!r}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ValidationSuggestion:
    """Advisory note produced by the pipeline. Never blocks validity."""

    type: str
    message: str
    action: Optional[str] = None

    def __post_init__(self) -> None:
        if self.type not in SUGGESTION_TYPES:
            raise ValueError(f"Invalid suggestion type: {self.type!r}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class IssueLog:
    """Accumulator for the issues and suggestions of a single run."""

    issues: list[ValidationIssue] = field(default_factory=list)
    suggestions: list[ValidationSuggestion] = field(default_factory=list)

    def issue(
        self,
        severity: str,
        field_name: str,
        message: str,
        original_value: Any = None,
        suggested_value: Optional[Any] = None,
    ) -> ValidationIssue:
        item = ValidationIssue(
            severity=severity,
            field=field_name,
            message=message,
            original_value=original_value,
            suggested_value=suggested_value,
        )
        self.issues.append(item)
        return item

    def suggest(
        self, type_: str, message: str, action: Optional[str] = None
    ) -> ValidationSuggestion:
        item = ValidationSuggestion(type=type_, message=message, action=action)
        self.suggestions.append(item)
        return item

    @property
    def has_errors(self) -> bool:
        return any(i.severity == ERROR for i in self.issues)
