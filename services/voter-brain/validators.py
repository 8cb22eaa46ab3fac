"""Shape checks for fields extracted from voter documents.

Each validator returns None for an acceptable value or a short error
message. Field names without a registered validator always pass.
"""

import re
from collections.abc import Callable, Iterable

from models import ExtractedField, FieldValidationError

_EPIC_RE = re.compile(r"^[A-Z]{3}\d{7}$")
_AADHAAR_RE = re.compile(r"^\d{12}$")
_DATE_RE = re.compile(r"\d{2}[/\-]\d{2}[/\-]\d{4}|\d{4}[/\-]\d{2}[/\-]\d{2}")
_GENDER_RE = re.compile(
    r"^(male|female|other|transgender|M|F|O|T|പുരുഷൻ|സ്ത്രീ)$",
    re.IGNORECASE,
)
_PHONE_RE = re.compile(r"^(\+91|91|0)?[6-9]\d{9}$")
_EMAIL_RE = re.compile(r"^[\w._%+-]+@[\w.-]+\.[a-zA-Z]{2,}$")


def _epic_number(value: str) -> str | None:
    if _EPIC_RE.match(value):
        return None
    return "EPIC format should be 3 letters + 7 digits (e.g., ABC1234567)"


def _aadhaar_number(value: str) -> str | None:
    if _AADHAAR_RE.match(value):
        return None
    return "Aadhaar should be 12 digits"


def _dob(value: str) -> str | None:
    if _DATE_RE.search(value):
        return None
    return "Date format unclear"


def _gender(value: str) -> str | None:
    if _GENDER_RE.match(value):
        return None
    return "Gender value unclear"


def _phone(value: str) -> str | None:
    if _PHONE_RE.match(re.sub(r"[\s-]", "", value)):
        return None
    return "Phone number format invalid"


def _email(value: str) -> str | None:
    if _EMAIL_RE.match(value):
        return None
    return "Email format invalid"


FIELD_VALIDATORS: dict[str, Callable[[str], str | None]] = {
    "epic_number": _epic_number,
    "aadhaar_number": _aadhaar_number,
    "dob": _dob,
    "gender": _gender,
    "phone": _phone,
    "email": _email,
}


def validate_field(name: str, value: str) -> str | None:
    validator = FIELD_VALIDATORS.get(name)
    if validator is None:
        return None
    return validator(value)


def validate_fields(fields: Iterable[ExtractedField]) -> list[FieldValidationError]:
    """Run every field through its validator, keeping errors in field order."""
    errors = []
    for field in fields:
        error = validate_field(field.name, field.value)
        if error:
            errors.append(FieldValidationError(field=field.name, error=error))
    return errors
