"""Phone number helpers for test-message destinations."""

from __future__ import annotations

import re

_WA_SUFFIXES = ("@s.whatsapp.net", "@c.us")
_WA_ID_RE = re.compile(r"^\d{6,20}$")
_SEPARATORS_RE = re.compile(r"[\s\-().]")


def normalize_wa_id(raw: str) -> str:
    """Reduce a number or chat id to bare digits.

    Accepts ``+52 55 1234 5678``, ``5215512345678`` and
    ``5215512345678@c.us`` style inputs.
    """
    candidate = (raw or "").strip()
    for suffix in _WA_SUFFIXES:
        if candidate.endswith(suffix):
            candidate = candidate[: -len(suffix)]
            break
    candidate = _SEPARATORS_RE.sub("", candidate)
    if candidate.startswith("+"):
        candidate = candidate[1:]
    if not _WA_ID_RE.fullmatch(candidate):
        raise ValueError("Invalid WhatsApp number. Use digits only with optional '+' prefix.")
    return candidate


def display_number(raw: str) -> str:
    try:
        return f"+{normalize_wa_id(raw)}"
    except ValueError:
        return raw
