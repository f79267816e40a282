# src/licensetag/domain/errors.py
"""
Error taxonomy.

Coverage violations are not errors; see ``licensetag.domain.coverage``.
"""

from __future__ import annotations

from typing import Optional


class LicenseTagError(Exception):
    """Base class for all licensetag failures."""


class ConfigurationError(LicenseTagError):
    """Malformed filter tree definition, unknown filter or unreadable file."""


class DateParseError(LicenseTagError, ValueError):
    """No known date layout matched the given value."""

    def __init__(self, value: str):
        super().__init__(f"invalid date: {value!r}")
        self.value = value


class DecodeError(LicenseTagError):
    """Malformed serialized record or frozen tree blob."""


class WorkerError(LicenseTagError):
    """A record failed inside the batch pipeline."""

    def __init__(self, message: str, *, line: Optional[int] = None):
        super().__init__(message if line is None else f"line {line}: {message}")
        self.line = line
