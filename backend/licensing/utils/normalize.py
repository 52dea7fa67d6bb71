"""String normalisation helpers shared by form validation and the service layer."""

from __future__ import annotations

import re
from typing import Any

_WHITESPACE = re.compile(r"\s+")


def clean_text(value: Any) -> str:
    """Trim and collapse internal whitespace runs to a single space."""
    if value is None:
        return ""
    return _WHITESPACE.sub(" ", str(value)).strip()


def clean_email(value: Any) -> str:
    return clean_text(value).lower()


def clean_phone(value: Any) -> str:
    """Remove every whitespace character from a phone number."""
    if value is None:
        return ""
    return _WHITESPACE.sub("", str(value))


def clean_postcode(value: Any) -> str:
    """Upper-case a UK postcode and put exactly one space before the inward code.

    `sw1a1aa`, `SW1A  1AA` and ` sw1a 1aa ` all become `SW1A 1AA`.
    """
    compact = clean_phone(value).upper()
    if len(compact) <= 3:
        return compact
    return f"{compact[:-3]} {compact[-3:]}"


def as_list(value: Any) -> list:
    """Normalise a scalar-or-collection form value to a list without blanks."""
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        items = list(value)
    else:
        items = [value]
    return [item for item in items if not (isinstance(item, str) and not item.strip())]
