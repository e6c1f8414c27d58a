import pytest

from oilmart.core.exceptions import ValidationFailed
from oilmart.utils.validation import (
    get_validation_errors,
    normalize_phone,
    validate_amount,
    validate_email,
    validate_max_length,
    validate_min_length,
    validate_name,
    validate_numeric_range,
    validate_phone,
    validate_quantity,
    validate_required,
)


@pytest.mark.parametrize("phone", ["9876543210", "987-654-3210", "(987) 654-3210", "+987.654.3210"])
def test_valid_phones(phone):
    assert validate_phone(phone)


@pytest.mark.parametrize("phone", ["", "12345", "98765432101", "abcdefghij"])
def test_invalid_phones(phone):
    assert not validate_phone(phone)


def test_normalize_phone_strips_punctuation():
    assert normalize_phone(" 987-654-3210 ") == "9876543210"


def test_normalize_phone_rejects_invalid_numbers():
    with pytest.raises(ValidationFailed) as exc:
        normalize_phone("12345")
    assert exc.value.status_code == 422
    assert exc.value.extra["field"] == "phone"


def test_email_pattern():
    assert validate_email("ravi@example.com")
    assert not validate_email("ravi@example")


def test_quantity_must_be_positive_integer():
    assert validate_quantity("3")
    assert not validate_quantity("0")
    assert not validate_quantity("2.5")
    assert not validate_quantity("-1")


def test_amount_allows_two_decimals():
    assert validate_amount("10.50")
    assert not validate_amount("10.505")
    assert not validate_amount("0")


def test_name_rules():
    assert validate_name("Ravi Kumar")
    assert not validate_name("R")
    assert not validate_name("Ravi123")


def test_length_and_range_helpers():
    assert validate_required("  x ")
    assert not validate_required("   ")
    assert validate_min_length("abc", 3)
    assert validate_max_length("abc", 3)
    assert not validate_max_length("abcd", 3)
    assert validate_numeric_range(5, 1, 10)
    assert not validate_numeric_range(11, 1, 10)


def test_get_validation_errors_reports_each_bad_field():
    errors = get_validation_errors({
        "name": "R",
        "phone": "123",
        "email": "bad",
        "quantity": "1.5",
        "amount": "-3",
    })
    assert set(errors) == {"name", "phone", "email", "quantity", "amount"}


def test_get_validation_errors_ignores_missing_fields():
    assert get_validation_errors({"name": "Ravi Kumar", "phone": "9876543210"}) == {}
