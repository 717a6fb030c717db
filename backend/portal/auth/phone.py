"""Phone-number normalization for Cognito usernames and ``phone_number``.

Cognito expects E.164 (``+`` followed by digits). Users type all sorts of
punctuation; we keep the digits and add a country code for bare
North American numbers.
"""
import re

_NON_DIGITS = re.compile(r"\D")


def format_phone_number(phone: str) -> str:
    """Normalize *phone* to ``+<digits>``.

    ``"1234567890"``, ``"+11234567890"`` and ``"(123) 456-7890"`` all give
    ``"+11234567890"``. The function is idempotent. Input without any digit
    gives an empty string.
    """
    digits = _NON_DIGITS.sub("", phone or "")
    if not digits:
        return ""
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"
