from __future__ import annotations

import re
from typing import Iterable, List, Set


_ISSN_RE = re.compile(r"[0-9]{4}-[0-9]{3}[0-9X]")


def normalize_serial_number(value: str | None) -> str:
    """Bring a serial number into ``1234-567X`` form where possible."""
    text = (value or "").strip().upper()
    if len(text) == 8:
        return f"{text[:4]}-{text[4:]}"
    return text


def is_issn(value: str) -> bool:
    return _ISSN_RE.fullmatch(value) is not None


def find_serial_numbers(text: str | None) -> List[str]:
    """Return all ISSN-shaped substrings of free text, e.g. ``"1990-0104;1990-0090"``."""
    return _ISSN_RE.findall((text or "").upper())


def normalize_all(values: Iterable[str | None]) -> Set[str]:
    normalized = set()
    for value in values:
        text = normalize_serial_number(value)
        if text:
            normalized.add(text)
    return normalized
