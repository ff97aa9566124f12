"""Text normalization utilities for sentence content and emails.

Sentence text is mostly Vietnamese; composed and decomposed diacritics must
compare equal, so everything is NFC-normalized before lowercasing.
"""
from __future__ import annotations

import re
import unicodedata
from datetime import datetime, timezone

from corpus.errors import ValidationError

EMAIL_PATTERN = re.compile(r'^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$')


def normalize_whitespace(text: str) -> str:
    """Normalize whitespace: collapse multiple spaces, remove leading/trailing."""
    text = re.sub(r'\s+', ' ', text)
    return text.strip()


def normalize_content(text: str | None) -> str:
    """Duplicate-detection key for a sentence: trimmed, NFC, lowercase."""
    if not text:
        return ""
    text = unicodedata.normalize('NFC', text)
    return text.strip().lower()


def normalize_email(email: str | None) -> str:
    """Lowercase and trim an email, rejecting empty or malformed values."""
    if not email or not email.strip():
        raise ValidationError("Email is required")
    email = email.strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValidationError(f"Invalid email: {email}")
    return email


def parse_datetime(value: str | datetime | None, field: str = "date") -> datetime | None:
    """Parse an ISO-8601 date or datetime into naive UTC.

    Accepts plain dates (``2024-05-01``), full datetimes and a trailing ``Z``.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError as e:
            raise ValidationError(f"Malformed {field}: {value}") from e
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
