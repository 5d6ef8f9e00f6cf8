# FinSight Pipeline - Financial data normalization & projections for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Exception types for FinSight Pipeline.

Data-quality problems are never raised: they are reported as
ValidationIssue values (see issues.py). Exceptions are reserved for
configuration problems, programming errors at the typed boundary, and the
internal signalling between the deep-validation client and its fallback
wrapper.
"""


class PipelineError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(PipelineError):
    """Missing or invalid runtime configuration. Always fatal for a run."""


class UnknownCanonicalFieldError(PipelineError, ValueError):
    """A key outside the canonical vocabulary reached a typed field set."""

    def __init__(self, key: str):
        super().__init__(f"Unknown canonical field: {key!r}")
        self.key = key


class MalformedReportError(PipelineError):
    """The external validation service answered with an unexpected shape."""
