from __future__ import annotations

import re
from dataclasses import dataclass

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberType

from ..core.errors import ValidationError

_MOBILE_TYPES = {PhoneNumberType.MOBILE, PhoneNumberType.FIXED_LINE_OR_MOBILE}


@dataclass(frozen=True)
class PhoneInfo:
    valid: bool
    e164: str
    country: str
    line_type: str  # mobile | landline | unknown

    def to_dict(self) -> dict:
        return {"valid": self.valid, "number": self.e164, "country": self.country, "type": self.line_type}


def _digits(s: str) -> str:
    return re.sub(r"\D", "", s)


def _line_type(num: phonenumbers.PhoneNumber) -> str:
    t = phonenumbers.number_type(num)
    if t in _MOBILE_TYPES:
        return "mobile"
    if t == PhoneNumberType.FIXED_LINE:
        return "landline"
    return "unknown"


def parse_phone(raw: str | None, country: str | None = None, default_country: str = "US") -> PhoneInfo:
    """Parse ``raw`` as an international number, retrying in a default region.

    The retry only happens when the input has between 7 and 15 digits.
    Raises ``ValidationError`` when neither attempt parses.
    """
    if not raw or not str(raw).strip():
        raise ValidationError("phone is required")
    raw = str(raw).strip()
    try:
        num = phonenumbers.parse(raw, None)
    except NumberParseException as first:
        if not 7 <= len(_digits(raw)) <= 15:
            raise ValidationError(
                "Please provide a valid phone number in E.164 format (e.g., +1234567890)"
            ) from first
        try:
            num = phonenumbers.parse(raw, (country or default_country).upper())
        except NumberParseException:
            raise ValidationError(
                "Please provide a valid phone number in E.164 format (e.g., +1234567890)"
            ) from first
    return PhoneInfo(
        valid=phonenumbers.is_valid_number(num),
        e164=phonenumbers.format_number(num, phonenumbers.PhoneNumberFormat.E164),
        country=phonenumbers.region_code_for_number(num) or "UNKNOWN",
        line_type=_line_type(num),
    )


def to_e164(raw: str | None, default_country: str = "US") -> str:
    """Canonical E.164 form of a valid number; ``ValidationError`` otherwise."""
    info = parse_phone(raw, default_country=default_country)
    if not info.valid:
        raise ValidationError("Please provide a valid phone number")
    return info.e164
