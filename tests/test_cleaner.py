import math

import pytest

from finsight_pipeline.cleaner import clean, parse_numeric_string, parse_value
from finsight_pipeline.issues import (
    DATA_CLEANUP,
    ERROR,
    UNIT_CONVERSION,
    WARNING,
    IssueLog,
)
from finsight_pipeline.units import Unit


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1.500,00", 1500.0),
        ("1,500.00", 1500.0),
        ("€ 12,5", 12.5),
        ("-3.200.000", -3200000.0),
        ("12-3", 12.0),
        ("900", 900.0),
        ("  45.7 k€", 45.7),
    ],
)
def test_parse_numeric_string(text, expected):
    assert parse_numeric_string(text) == pytest.approx(expected)


@pytest.mark.parametrize("text", ["n/a", "-", "abc", ""])
def test_parse_numeric_string_returns_none_for_garbage(text):
    assert parse_numeric_string(text) is None


def test_empty_value_is_a_warning_and_never_zero():
    log = IssueLog()
    assert parse_value("ventas", None, log) is None
    assert parse_value("ventas", "   ", log) is None
    assert [i.severity for i in log.issues] == [WARNING, WARNING]


def test_unparsable_string_is_an_error():
    log = IssueLog()
    assert clean("ventas", "sin datos", log) is None
    assert len(log.issues) == 1
    assert log.issues[0].severity == ERROR
    assert log.issues[0].original_value == "sin datos"


@pytest.mark.parametrize("raw", [True, [1, 2], {"a": 1}, math.nan, math.inf])
def test_unsupported_values_are_errors(raw):
    log = IssueLog()
    assert clean("ventas", raw, log) is None
    assert log.has_errors


def test_overflowing_numeric_string_is_rejected():
    log = IssueLog()
    assert clean("ventas", "1" + "0" * 400, log) is None
    assert log.has_errors
    assert log.issues[0].message == "Value is not a finite number"


def test_negative_value_on_usually_positive_field_is_kept_with_warning():
    log = IssueLog()
    assert clean("activo_total", -1000, log) == -1000.0
    assert log.issues[0].severity == WARNING
    assert "usually positive" in log.issues[0].message


def test_negative_value_on_expense_field_is_silent():
    log = IssueLog()
    assert clean("coste_ventas", -500, log) == -500.0
    assert log.issues == []


def test_very_large_value_is_flagged_but_kept():
    log = IssueLog()
    assert clean("ventas", 5e12, log) == 5e12
    assert log.issues[0].severity == WARNING
    assert "Very large" in log.issues[0].message


def test_clean_converts_units_and_suggests():
    log = IssueLog()
    assert clean("ventas", "1,5", log, Unit.K_EUROS, Unit.EUROS) == 1500.0
    assert len(log.suggestions) == 1
    assert log.suggestions[0].type == UNIT_CONVERSION
    assert log.suggestions[0].action == "unit_normalized"


def test_clean_without_conversion_adds_no_suggestion():
    log = IssueLog()
    assert clean("ventas", 1200, log) == 1200.0
    assert log.suggestions == []


def test_currency_symbols_are_stripped_with_a_cleanup_suggestion():
    log = IssueLog()
    assert parse_value("ventas", "€ 1.200,50", log) == pytest.approx(1200.5)
    assert log.issues == []
    assert [s.type for s in log.suggestions] == [DATA_CLEANUP]
    assert log.suggestions[0].action == "stripped_characters"
