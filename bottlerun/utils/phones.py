"""
Helpers for turning a typed mobile number into a customer identity key.

Primary function:
- mobile_key(text) -> str: trimmed, case-folded mobile used for lookups.

Matching is textual, so "0412 345 678" and "0412345678" are different
customers. Customer search falls back to `digits_only` so punctuation does
not matter there.
"""

from __future__ import annotations

import re


_NON_DIGITS_RE = re.compile(r"\D+")


def digits_only(text: object) -> str:
    if text is None:
        return ""
    s = str(text)
    # Fast path for already clean
    if s.isdigit():
        return s
    return _NON_DIGITS_RE.sub("", s)


def clean_mobile(text: object) -> str:
    """Value stored on the customer record."""
    if text is None:
        return ""
    return str(text).strip()


def mobile_key(text: object) -> str:
    """Identity key: trimmed and case-insensitive.

    Examples:
    - " 0412 345 678 " -> "0412 345 678"
    - "EXT-12A" -> "ext-12a"
    """
    return clean_mobile(text).casefold()
