from decimal import Decimal

import pytest

from oilmart.utils.formatters import (
    calculate_percentage_change,
    format_amount,
    format_currency,
    format_percentage,
    format_phone,
    is_valid_integer,
    parse_integer,
    parse_number,
    round2,
    truncate_text,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        (12, 12.0),
        (3.5, 3.5),
        ("₹1,250.50", 1250.5),
        ("  42 ", 42.0),
        ("-7.25", -7.25),
        (Decimal("99.90"), 99.9),
    ],
)
def test_parse_number_accepts_numbers_and_formatted_strings(value, expected):
    assert parse_number(value) == expected


@pytest.mark.parametrize("value", [None, "abc", "", True, float("nan"), [1, 2]])
def test_parse_number_falls_back_to_default(value):
    assert parse_number(value, default=-1.0) == -1.0


def test_parse_integer_floors():
    assert parse_integer("7.9") == 7
    assert parse_integer("oops", default=3) == 3


def test_round2_rounds_half_up():
    assert round2(2.675) == 2.68
    assert round2(0.125) == 0.13
    assert round2(10) == 10.0
    assert round2("19.999") == 20.0


def test_format_amount_uses_indian_grouping():
    assert format_amount(123456.78) == "1,23,456.78"
    assert format_amount(1234567) == "12,34,567.00"
    assert format_amount(999) == "999.00"
    assert format_amount(0) == "0.00"


def test_format_currency_places_sign_before_symbol():
    assert format_currency(1500) == "₹1,500.00"
    assert format_currency(-250.5) == "-₹250.50"


def test_format_phone():
    assert format_phone("9876543210") == "987-654-3210"
    assert format_phone("12345") == "12345"
    assert format_phone("") == ""


def test_truncate_text():
    assert truncate_text("short") == "short"
    assert truncate_text("a" * 60, 10) == "a" * 10 + "..."
    assert truncate_text("") == ""


def test_percentage_change_from_zero_baseline():
    assert calculate_percentage_change(50, 0) == 100.0
    assert calculate_percentage_change(0, 0) == 0.0
    assert calculate_percentage_change(150, 100) == 50.0
    assert calculate_percentage_change(50, 100) == -50.0


def test_format_percentage():
    assert format_percentage(12.345) == "12.3%"


def test_is_valid_integer():
    assert is_valid_integer("3")
    assert not is_valid_integer("2.5")
    assert not is_valid_integer(0)
