# src/licensetag/application/services/coverage_index.py
"""
Coverage index.

Maps normalized ISSNs to the holdings entries that claim them.
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from licensetag.domain.coverage import CoverageEntry, CoverageViolation
from licensetag.domain.errors import DateParseError
from licensetag.domain.serial_number import normalize_serial_number
from licensetag.infrastructure.kbart import load_entries

logger = logging.getLogger(__name__)


class CoverageIndex:
    """
    Read-only lookup from ISSN to coverage entries.

    Several entries may claim the same ISSN (e.g. one title licensed through
    two packages); callers have to try all of them.
    """

    def __init__(self, entries: Iterable[CoverageEntry] = ()):
        self._entries: List[CoverageEntry] = list(entries)
        self._by_identifier: Dict[str, List[CoverageEntry]] = {}
        for entry in self._entries:
            for identifier in entry.normalized_identifiers():
                self._by_identifier.setdefault(identifier, []).append(entry)

    @classmethod
    def from_files(cls, paths: Sequence[Union[str, Path]]) -> "CoverageIndex":
        entries: List[CoverageEntry] = []
        for path in paths:
            entries.extend(load_entries(path))
        index = cls(entries)
        logger.info(
            f"Indexed {len(entries)} entries under {len(index._by_identifier)} identifiers"
        )
        return index

    @property
    def entries(self) -> Sequence[CoverageEntry]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identifier: str) -> bool:
        return normalize_serial_number(identifier) in self._by_identifier

    def identifiers(self) -> List[str]:
        return sorted(self._by_identifier)

    def lookup(self, identifier: str) -> Sequence[CoverageEntry]:
        """Return all entries that claim the identifier, possibly none."""
        return tuple(self._by_identifier.get(normalize_serial_number(identifier), ()))

    def covers(
        self,
        identifiers: Iterable[str],
        date_value: str | None,
        volume: str | None = "",
        issue: str | None = "",
        *,
        today: Optional[date] = None,
    ) -> Optional[CoverageEntry]:
        """
        Find an entry covering the signature under any of the identifiers.

        An unparsable date covers nothing.

        Returns:
            The first covering entry, or None
        """
        for identifier in identifiers:
            for entry in self.lookup(identifier):
                try:
                    violation = entry.covers(date_value, volume, issue, today=today)
                except DateParseError:
                    logger.debug(f"Unparsable date {date_value!r} for {identifier}")
                    return None
                if violation is None:
                    return entry
        return None

    def explain(
        self,
        identifiers: Iterable[str],
        date_value: str | None,
        volume: str | None = "",
        issue: str | None = "",
        *,
        today: Optional[date] = None,
    ) -> List[Tuple[CoverageEntry, Optional[CoverageViolation]]]:
        """
        Evaluate every candidate entry.

        Raises:
            DateParseError: if the date cannot be parsed and there are candidates
        """
        outcomes: List[Tuple[CoverageEntry, Optional[CoverageViolation]]] = []
        seen = set()
        for identifier in identifiers:
            for entry in self.lookup(identifier):
                if id(entry) in seen:
                    continue
                seen.add(id(entry))
                outcomes.append(
                    (entry, entry.covers(date_value, volume, issue, today=today))
                )
        return outcomes
