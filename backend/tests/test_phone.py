"""Tests for phone-number normalization."""
import pytest

from portal.auth.phone import format_phone_number


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("1234567890", "+11234567890"),
        ("+11234567890", "+11234567890"),
        ("(123) 456-7890", "+11234567890"),
        ("123.456.7890", "+11234567890"),
        ("+44 20 7946 0958", "+442079460958"),
        ("447911123456", "+447911123456"),
    ],
)
def test_format_phone_number(raw, expected):
    assert format_phone_number(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", "abc", "+", None])
def test_no_digits_gives_empty_string(raw):
    assert format_phone_number(raw) == ""


@pytest.mark.parametrize("raw", ["1234567890", "(123) 456-7890", "+44 20 7946 0958", "12345"])
def test_formatting_is_idempotent(raw):
    once = format_phone_number(raw)
    assert format_phone_number(once) == once
