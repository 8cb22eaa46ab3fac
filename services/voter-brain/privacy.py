"""PII hashing and redaction for logs, audit records and stored memory."""

import hashlib
import re

from config import settings

# Single table for every redaction in the service; email runs before phone
# so digits in an address are not masked as a number first.
PII_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\b\d{4}\s?\d{4}\s?\d{4}\b"), "[AADHAAR]"),
    (re.compile(r"\b[A-Z]{3}\d{7}\b"), "[VOTER_ID]"),
    (re.compile(r"\b[A-Z]{5}\d{4}[A-Z]\b"), "[PAN]"),
    (re.compile(r"\b[\w._%+-]+@[\w.-]+\.[a-zA-Z]{2,}\b"), "[EMAIL]"),
    (re.compile(r"\b(\+91|91|0)?[6-9]\d{9}\b"), "[PHONE]"),
]


def hash_identifier(identifier: str, salt: str | None = None) -> str:
    """Salted SHA-256 of an identifier, truncated to 16 hex chars for logs."""
    salt = salt if salt is not None else settings.HASH_SALT
    return hashlib.sha256(f"{salt}:{identifier}".encode()).hexdigest()[:16]


def redact_pii(text: str) -> str:
    for pattern, replacement in PII_PATTERNS:
        text = pattern.sub(replacement, text)
    return text
