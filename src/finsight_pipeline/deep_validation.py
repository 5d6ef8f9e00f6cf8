# FinSight Pipeline - Financial data normalization & projections for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Optional deep validation through an external LLM service.

The pipeline can ask a language model to review the canonical field set
and return a structured report. The call is slow and unreliable by nature,
so it is isolated behind a small capability interface:

- DeepValidator:      anything with ``validate(fields) -> dict``,
- HttpDeepValidator:  implementation posting to the Anthropic Messages API
                      with ``requests``,
- deep_validate():    runs one validator under a hard time budget, retries
                      at most once and falls back to default_report().

deep_validate() never raises for collaborator failures (timeout, HTTP
error, unparseable or malformed answer). Only configuration errors, raised
when an HttpDeepValidator is built without endpoint or API key, are fatal.

Only the integration contract is checked here (report shape, timeout,
fallback). Nothing is asserted about the quality of the model's judgment.
"""

import json
import logging
import time
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import requests

from .errors import ConfigurationError, MalformedReportError

DEFAULT_TIMEOUT_SECONDS = 22.0
DEFAULT_MAX_RETRIES = 1
DEFAULT_MODEL = "claude-sonnet-4-20250514"
ANTHROPIC_VERSION = "2023-06-01"

REPORT_KEYS: tuple[str, ...] = (
    "validation_results",
    "financial_checks",
    "confidence_scores",
    "recommendations",
)

SYSTEM_PROMPT = (
    "You are an expert financial auditor reviewing normalized financial "
    "data of a small or medium-sized company. Detect critical errors "
    "(balance sheet that does not square, missing critical data, "
    "calculation errors), warnings (unusual values, ratios out of normal "
    "range), give confidence scores between 0 and 1 and recommend concrete "
    "actions. Answer ONLY with a JSON object."
)

REPORT_TEMPLATE = """{
  "validation_results": {
    "overall_score": <0..1>,
    "is_valid": <bool>,
    "critical_errors": [{"type": "...", "description": "...", "location": "...",
                         "severity": "critical|high|medium|low", "suggested_fix": "..."}],
    "warnings": [{"type": "...", "description": "...", "location": "...",
                  "impact": "...", "recommendation": "..."}]
  },
  "financial_checks": {
    "balance_sheet_integrity": {"is_balanced": <bool>, "difference_percentage": <number>,
                                "confidence": <0..1>},
    "data_completeness": {"missing_critical_fields": [], "completeness_score": <0..1>,
                          "required_for_analysis": []},
    "ratio_validation": {"calculated_ratios": {"current_ratio": null, "debt_to_equity": null,
                                               "gross_margin": null},
                         "ratio_warnings": []}
  },
  "confidence_scores": {"data_accuracy": <0..1>, "structure_quality": <0..1>,
                        "completeness": <0..1>, "overall_confidence": <0..1>},
  "recommendations": [{"priority": "high|medium|low", "category": "...",
                       "action": "...", "expected_improvement": "..."}]
}"""


class DeepValidator(Protocol):
    def validate(self, fields: Mapping[str, float]) -> dict[str, Any]:
        ...


def _now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def extract_json_block(text: str) -> dict[str, Any]:
    """Parse the outermost ``{ ... }`` block of a model answer."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise MalformedReportError("No JSON object found in the model answer.")
    try:
        payload = json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise MalformedReportError(f"Invalid JSON in the model answer: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedReportError("The model answer is not a JSON object.")
    return payload


def parse_report(payload: Any) -> dict[str, Any]:
    """Check that ``payload`` follows the report schema and return it.

    Raises:
        MalformedReportError: on any deviation from the expected shape.
    """
    if not isinstance(payload, Mapping):
        raise MalformedReportError("Validation report must be a JSON object.")

    missing = [k for k in REPORT_KEYS if k not in payload]
    if missing:
        raise MalformedReportError(
            f"Validation report is missing keys: {', '.join(missing)}"
        )

    results = payload["validation_results"]
    if not isinstance(results, Mapping):
        raise MalformedReportError("'validation_results' must be an object.")
    if not _is_number(results.get("overall_score")):
        raise MalformedReportError("'validation_results.overall_score' must be a number.")
    for key in ("critical_errors", "warnings"):
        if not isinstance(results.get(key), list):
            raise MalformedReportError(f"'validation_results.{key}' must be a list.")

    if not isinstance(payload["financial_checks"], Mapping):
        raise MalformedReportError("'financial_checks' must be an object.")
    if not isinstance(payload["confidence_scores"], Mapping):
        raise MalformedReportError("'confidence_scores' must be an object.")
    if not isinstance(payload["recommendations"], list):
        raise MalformedReportError("'recommendations' must be a list.")

    return dict(payload)


def default_report(fields: Mapping[str, float], reason: str) -> dict[str, Any]:
    """Deterministic report used when deep validation could not complete."""
    return {
        "validation_results": {
            "overall_score": 0.6,
            "is_valid": True,
            "critical_errors": [],
            "warnings": [
                {
                    "type": "validation_incomplete",
                    "description": (
                        "Automated validation did not complete; "
                        "manual review is required."
                    ),
                    "location": "system",
                    "impact": "medium",
                    "recommendation": (
                        "Review the data manually before continuing the analysis."
                    ),
                }
            ],
        },
        "financial_checks": {
            "balance_sheet_integrity": {
                "is_balanced": None,
                "difference_percentage": None,
                "confidence": 0.5,
            },
            "data_completeness": {
                "missing_critical_fields": [],
                "completeness_score": 0.7,
                "required_for_analysis": [],
            },
            "ratio_validation": {
                "calculated_ratios": {
                    "current_ratio": None,
                    "debt_to_equity": None,
                    "gross_margin": None,
                },
                "ratio_warnings": [],
            },
        },
        "confidence_scores": {
            "data_accuracy": 0.6,
            "structure_quality": 0.7,
            "completeness": 0.6,
            "overall_confidence": 0.6,
        },
        "recommendations": [
            {
                "priority": "medium",
                "category": "data_quality",
                "action": "Validate the extracted data manually.",
                "expected_improvement": "Higher confidence in the financial analysis.",
            }
        ],
        "metadata": {
            "validation_type": "fallback",
            "timestamp": _now_utc_iso(),
            "fields_validated": len(fields),
            "fallback_reason": reason,
        },
    }


def is_fallback(report: Mapping[str, Any]) -> bool:
    """True if ``report`` was produced by default_report()."""
    metadata = report.get("metadata") or {}
    return "fallback_reason" in metadata


class HttpDeepValidator:
    """DeepValidator backed by the Anthropic Messages API."""

    def __init__(
        self,
        endpoint: Optional[str],
        api_key: Optional[str],
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_tokens: int = 6000,
        session: Optional[requests.Session] = None,
    ):
        if not endpoint:
            raise ConfigurationError("Deep validation endpoint is not configured.")
        if not api_key:
            raise ConfigurationError("Deep validation API key is not configured.")
        self.endpoint = endpoint
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.session = session or requests.Session()

    def build_payload(self, fields: Mapping[str, float]) -> dict[str, Any]:
        user_prompt = (
            "Validate the following normalized financial data:\n\n"
            f"{json.dumps(dict(fields), indent=2, ensure_ascii=False)}\n\n"
            "Answer ONLY with valid JSON following this structure:\n"
            f"{REPORT_TEMPLATE}"
        )
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": 0.1,
            "system": SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": user_prompt}],
        }

    def validate(self, fields: Mapping[str, float]) -> dict[str, Any]:
        response = self.session.post(
            self.endpoint,
            json=self.build_payload(fields),
            headers={
                "content-type": "application/json",
                "x-api-key": self.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            },
            timeout=self.timeout,
        )
        response.raise_for_status()

        body = response.json()
        try:
            text = body["content"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise MalformedReportError("Unexpected Messages API response body.") from exc

        report = parse_report(extract_json_block(text))
        metadata = dict(report.get("metadata") or {})
        metadata.setdefault("model", self.model)
        metadata.setdefault("timestamp", _now_utc_iso())
        metadata.setdefault("fields_validated", len(fields))
        report["metadata"] = metadata
        return report


def deep_validate(
    fields: Mapping[str, float],
    validator: DeepValidator,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    retries: int = DEFAULT_MAX_RETRIES,
    logger: Optional[logging.Logger] = None,
) -> dict[str, Any]:
    """Run ``validator`` under a hard time budget.

    Args:
        fields: Canonical field set sent to the validator.
        validator: DeepValidator implementation (HTTP or fake).
        timeout: Total budget in seconds, retries included.
        retries: Extra attempts after a failure (capped at 1).
        logger: Optional logger.

    Returns:
        The validator's report, or default_report() when every attempt
        failed or the budget ran out. A late answer is discarded.
    """
    log = logger or logging.getLogger(__name__)
    attempts = 1 + max(0, min(retries, 1))
    deadline = time.monotonic() + timeout
    snapshot = dict(fields)
    reason = "deep validation was not attempted"

    executor = ThreadPoolExecutor(
        max_workers=attempts, thread_name_prefix="deep-validation"
    )
    try:
        for attempt in range(1, attempts + 1):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                reason = "time budget exhausted"
                break

            future = executor.submit(validator.validate, snapshot)
            try:
                report = parse_report(future.result(timeout=remaining))
            except FuturesTimeout:
                reason = f"timeout after {timeout:g}s"
                log.warning("Deep validation timed out (attempt %d)", attempt)
                break
            except ConfigurationError:
                raise
            except Exception as exc:
                reason = f"{type(exc).__name__}: {exc}"
                log.warning("Deep validation failed (attempt %d): %s", attempt, reason)
                continue

            log.info("Deep validation completed (attempt %d)", attempt)
            return report
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    log.info("Using default deep validation report (%s)", reason)
    return default_report(snapshot, reason)
