"""Tests for the UK identifier validators."""

import pytest

from care_kernel.domain.validation import (
    nhs_check_digit,
    require,
    validate_choice,
    validate_email,
    validate_nhs_number,
    validate_ni_number,
    validate_postcode,
    validate_sort_code,
    validate_uk_phone,
)
from care_kernel.exceptions import (
    InvalidChoiceError,
    InvalidEmailError,
    InvalidNHSNumberError,
    InvalidNINumberError,
    InvalidPhoneNumberError,
    ValidationError,
)


class TestRequire:
    def test_blank_string_rejected(self):
        with pytest.raises(ValidationError) as exc:
            require("   ", "first_name")
        assert exc.value.field == "first_name"

    def test_value_returned(self):
        assert require("Ada", "first_name") == "Ada"


class TestNINumber:
    def test_normalises_spaces_and_case(self):
        assert validate_ni_number("ab 12 34 56 c") == "AB123456C"

    @pytest.mark.parametrize("value", ["QQ123456C", "GB123456A", "AB123456E", "AB12345C", ""])
    def test_rejects_invalid(self, value):
        with pytest.raises(InvalidNINumberError):
            validate_ni_number(value)


class TestNHSNumber:
    def test_valid_number_with_spaces(self):
        assert validate_nhs_number("943 476 5919") == "9434765919"

    def test_wrong_check_digit(self):
        with pytest.raises(InvalidNHSNumberError):
            validate_nhs_number("9434765918")

    def test_check_digit_of_ten_is_never_issued(self):
        # weighted sum 12 leaves remainder 1, which would need check digit 10
        assert nhs_check_digit("100000001") is None

    def test_not_ten_digits(self):
        with pytest.raises(InvalidNHSNumberError):
            validate_nhs_number("94347659")


class TestContactDetails:
    def test_phone_strips_formatting(self):
        assert validate_uk_phone("(0161) 496-0000") == "01614960000"
        assert validate_uk_phone("+44 7700 900123") == "+447700900123"

    def test_phone_rejects_short_numbers(self):
        with pytest.raises(InvalidPhoneNumberError):
            validate_uk_phone("01234")

    def test_email_lowercased(self):
        assert validate_email(" Jane.Doe@Example.org ") == "jane.doe@example.org"

    def test_email_without_domain(self):
        with pytest.raises(InvalidEmailError):
            validate_email("jane@")

    def test_postcode_and_sort_code(self):
        assert validate_postcode("m11ae") == "M1 1AE"
        assert validate_sort_code("123456") == "12-34-56"


def test_validate_choice_lists_allowed_values():
    with pytest.raises(InvalidChoiceError) as exc:
        validate_choice("purple", ("red", "green"), "colour")
    assert exc.value.code == "INVALID_CHOICE"
    assert exc.value.http_status == 400
    assert exc.value.allowed == ("green", "red")
