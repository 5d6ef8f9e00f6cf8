# FinSight Pipeline - Financial data normalization & projections for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Unit detection and normalization.

Uploaded statements come in raw euros, thousands of euros or millions of
euros, rarely labelled. The magnitude of the numbers is used to guess the
convention of a whole data set:

    max > 10,000,000                 -> euros
    max > 10,000 and mean > 1,000    -> thousands (k_euros)
    max < 1,000                      -> millions (m_euros)
    anything else                    -> euros, flagged as mixed/ambiguous

Only strictly positive finite values take part in the detection.

Conversion between units is a single multiplication/division by 1, 1e3 or
1e6. Converting a value to the unit it is already in returns it untouched,
which makes normalization idempotent bit-for-bit.
"""

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum


class Unit(Enum):
    """Magnitude convention of a data set, with its factor in euros."""

    EUROS = "euros"
    K_EUROS = "k_euros"
    M_EUROS = "m_euros"

    @property
    def factor(self) -> float:
        return _FACTORS[self]

    @classmethod
    def parse(cls, value: str) -> "Unit":
        """Parse a unit name ('euros', 'k_euros', 'm_euros', case-insensitive)."""
        normalized = str(value).strip().lower()
        for unit in cls:
            if unit.value == normalized:
                return unit
        raise ValueError(
            f"Unknown unit {value!r}; expected one of "
            f"{', '.join(u.value for u in cls)}."
        )


_FACTORS = {
    Unit.EUROS: 1.0,
    Unit.K_EUROS: 1_000.0,
    Unit.M_EUROS: 1_000_000.0,
}

EURO_SCALE_THRESHOLD = 10_000_000
THOUSANDS_MAX_THRESHOLD = 10_000
THOUSANDS_MEAN_THRESHOLD = 1_000
MILLIONS_MAX_THRESHOLD = 1_000


@dataclass(frozen=True)
class UnitDetection:
    """Detected unit of a data set; ``mixed`` means the guess is unreliable."""

    unit: Unit
    mixed: bool = False


def detect_unit(values: Iterable[float]) -> UnitDetection:
    """Guess the unit convention of a set of values.

    Args:
        values: Numeric values of one data set. Non-positive and non-finite
            values are ignored.

    Returns:
        A UnitDetection. An empty set defaults to euros, not mixed.
    """
    positives = [
        float(v)
        for v in values
        if isinstance(v, (int, float))
        and not isinstance(v, bool)
        and math.isfinite(v)
        and v > 0
    ]
    if not positives:
        return UnitDetection(Unit.EUROS, mixed=False)

    max_value = max(positives)
    mean_value = sum(positives) / len(positives)

    if max_value > EURO_SCALE_THRESHOLD:
        return UnitDetection(Unit.EUROS)
    if max_value > THOUSANDS_MAX_THRESHOLD and mean_value > THOUSANDS_MEAN_THRESHOLD:
        return UnitDetection(Unit.K_EUROS)
    if max_value < MILLIONS_MAX_THRESHOLD:
        return UnitDetection(Unit.M_EUROS)

    return UnitDetection(Unit.EUROS, mixed=True)


def normalize(value: float, source: Unit, target: Unit) -> float:
    """Rescale ``value`` from ``source`` to ``target``."""
    if source is target:
        return value
    return value * source.factor / target.factor


def normalize_fieldset(
    values: Mapping[str, float], source: Unit, target: Unit
) -> dict[str, float]:
    """Apply :func:`normalize` to every value of a field set."""
    return {key: normalize(value, source, target) for key, value in values.items()}
