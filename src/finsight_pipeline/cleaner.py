# FinSight Pipeline - Financial data normalization & projections for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Field value cleaning.

Raw values arrive as numbers, numeric strings in Spanish or English
formatting ("1.500,00", "1,500.00", "€ 12.300"), blanks, or garbage. This
module turns them into floats and records what went wrong in an IssueLog
instead of raising:

- None / empty string       -> warning, value is None (never coerced to 0)
- unparsable string         -> error, value is None
- string with symbols       -> data_cleanup suggestion ("€ 1.200", "45 k€")
- unsupported type / NaN    -> error, value is None
- |value| > 1e12            -> warning, value kept
- negative on a field that
  is usually positive       -> warning, value kept (no sign flipping)

Every accepted value is then rescaled from the detected source unit to the
target unit of the run (see units.py).
"""

import math
import re
from typing import Any, Optional

from .issues import DATA_CLEANUP, ERROR, UNIT_CONVERSION, WARNING, IssueLog
from .units import Unit, normalize
from .vocabulary import is_usually_positive

MAX_REASONABLE_ABS_VALUE = 1e12

_NOT_NUMERIC = re.compile(r"[^0-9.,\-]")
_LEADING_FLOAT = re.compile(r"^-?(\d+\.?\d*|\.\d+)")


def _normalize_separators(text: str) -> str:
    """Resolve thousands/decimal separators into a plain dotted number.

    When both '.' and ',' appear, the last one is the decimal separator.
    A lone ',' is a decimal comma; several '.' and no ',' are thousands
    separators.
    """
    has_dot = "." in text
    has_comma = "," in text

    if has_dot and has_comma:
        if text.rfind(",") > text.rfind("."):
            return text.replace(".", "").replace(",", ".")
        return text.replace(",", "")
    if has_comma:
        if text.count(",") > 1:
            return text.replace(",", "")
        return text.replace(",", ".")
    if text.count(".") > 1:
        return text.replace(".", "")
    return text


def parse_numeric_string(text: str) -> Optional[float]:
    """Parse a formatted number, or return None if no number can be read.

    Only the leading numeric part is used ("12-3" -> 12.0).

    Examples:
        "1.500,00"  -> 1500.0
        "€ 12,5"    -> 12.5
        "-3.200.000" -> -3200000.0
        "n/a"       -> None
    """
    stripped = _NOT_NUMERIC.sub("", text)
    match = _LEADING_FLOAT.match(_normalize_separators(stripped))
    if match is None:
        return None
    return float(match.group(0))


def parse_value(field: str, raw: Any, log: IssueLog) -> Optional[float]:
    """Coerce a raw value to float, recording null/invalid values in ``log``."""
    if raw is None or (isinstance(raw, str) and raw.strip() == ""):
        log.issue(WARNING, field, "Empty or null value", original_value=raw)
        return None

    if isinstance(raw, bool):
        log.issue(ERROR, field, "Unsupported value type: bool", original_value=raw)
        return None

    if isinstance(raw, str):
        value = parse_numeric_string(raw)
        if value is None:
            log.issue(
                ERROR,
                field,
                f'Could not convert "{raw}" to a number',
                original_value=raw,
            )
            return None
        if not math.isfinite(value):
            log.issue(ERROR, field, "Value is not a finite number", original_value=raw)
            return None
        if _NOT_NUMERIC.search(raw.strip()):
            log.suggest(
                DATA_CLEANUP,
                f'Field {field}: "{raw}" read as {value:g} after removing '
                "non-numeric characters.",
                action="stripped_characters",
            )
        return value

    if isinstance(raw, (int, float)):
        value = float(raw)
        if not math.isfinite(value):
            log.issue(ERROR, field, "Value is not a finite number", original_value=raw)
            return None
        return value

    log.issue(
        ERROR,
        field,
        f"Unsupported value type: {type(raw).__name__}",
        original_value=raw,
    )
    return None


def check_range(field: str, value: float, raw: Any, log: IssueLog) -> None:
    """Record sanity warnings for an accepted value. Never rejects it."""
    if abs(value) > MAX_REASONABLE_ABS_VALUE:
        log.issue(WARNING, field, f"Very large value: {value:g}", original_value=raw)
    elif value < 0 and is_usually_positive(field):
        log.issue(
            WARNING,
            field,
            "Negative value in a field that is usually positive",
            original_value=raw,
        )


def clean(
    field: str,
    raw: Any,
    log: IssueLog,
    source_unit: Unit = Unit.EUROS,
    target_unit: Unit = Unit.EUROS,
) -> Optional[float]:
    """Clean one field value.

    Args:
        field: Canonical field name (used for sign expectations and in issues).
        raw: Raw value as extracted from the file.
        log: Issue log receiving warnings/errors/suggestions.
        source_unit: Unit the raw value is expressed in.
        target_unit: Unit of the cleaned output.

    Returns:
        The cleaned value in ``target_unit``, or None if the value had to be
        discarded (an issue explains why).
    """
    value = parse_value(field, raw, log)
    if value is None:
        return None
    return finalize(field, value, raw, log, source_unit, target_unit)


def finalize(
    field: str,
    value: float,
    raw: Any,
    log: IssueLog,
    source_unit: Unit = Unit.EUROS,
    target_unit: Unit = Unit.EUROS,
) -> float:
    """Range-check an already parsed value and rescale it to ``target_unit``."""
    check_range(field, value, raw, log)

    normalized = normalize(value, source_unit, target_unit)
    if normalized != value:
        log.suggest(
            UNIT_CONVERSION,
            f"Field {field}: {value:g} converted to {normalized:g} "
            f"({target_unit.value})",
            action="unit_normalized",
        )
    return normalized
