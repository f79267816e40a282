# src/licensetag/domain/coverage.py
"""
Licensing coverage model.

A CoverageEntry is one row of a KBART style holdings file. It answers whether
a given date, volume and issue of a serial falls inside the licensed coverage
window, taking moving walls into account:

- CoverageEntry: raw string fields, the source of truth
- ResolvedCoverage: parsed boundaries and embargo, computed once per entry
- CoverageViolation: the reason an entry does not cover a request
"""

from __future__ import annotations

import calendar
import logging
import re
from dataclasses import dataclass, fields
from datetime import date, datetime, timedelta
from enum import Enum, IntEnum
from functools import cached_property, lru_cache
from typing import Dict, Mapping, Optional, Set, Tuple

from licensetag.domain.errors import DateParseError
from licensetag.domain.serial_number import find_serial_numbers, normalize_serial_number

logger = logging.getLogger(__name__)


class Granularity(IntEnum):
    """Precision of a date; lower values are coarser."""

    YEAR = 0
    MONTH = 1
    DAY = 2


class CoverageViolation(str, Enum):
    """Why an entry does not cover a date, volume or issue."""

    BEFORE_FIRST_ISSUE_DATE = "before first issue date"
    AFTER_LAST_ISSUE_DATE = "after last issue date"
    BEFORE_FIRST_VOLUME = "before first volume"
    AFTER_LAST_VOLUME = "after last volume"
    BEFORE_FIRST_ISSUE = "before first issue"
    AFTER_LAST_ISSUE = "after last issue"


EXTREME_PAST = date(1, 1, 1)
EXTREME_FUTURE = date(2364, 1, 1)

# Tried in order, first match wins.
DATE_LAYOUTS: Tuple[Tuple[str, Granularity], ...] = (
    ("%Y", Granularity.YEAR),
    ("%Y-%m-%d", Granularity.DAY),
    ("%Y-", Granularity.YEAR),
    ("%Y-%m", Granularity.MONTH),
    ("%Y-%b-%d", Granularity.DAY),
    ("%Y-%b", Granularity.MONTH),
    ("%Y-%B-%d", Granularity.DAY),
    ("%Y-%B", Granularity.MONTH),
    ("%Y-x-x", Granularity.YEAR),
    ("%Y-x-xx", Granularity.YEAR),
    ("%Y-x", Granularity.YEAR),
    ("%Y-xx-x", Granularity.YEAR),
    ("%Y-xx-xx", Granularity.YEAR),
    ("%Y-xx", Granularity.YEAR),
    ("%Y%m%d", Granularity.DAY),
    ("%Y%m", Granularity.MONTH),
)

_INT_RE = re.compile(r"[0-9]+")
_EMBARGO_RE = re.compile(r"^\s*([PR])\s*([0-9]+)\s*([DMY])\s*$", re.IGNORECASE)


@lru_cache(maxsize=65536)
def parse_date(value: str) -> Tuple[date, Granularity]:
    """
    Parse a date string of varying precision.

    Returns:
        Tuple of (date, granularity at which the value was given)

    Raises:
        DateParseError: if no layout matches
    """
    text = (value or "").strip()
    if text:
        for layout, granularity in DATE_LAYOUTS:
            try:
                return datetime.strptime(text, layout).date(), granularity
            except ValueError:
                continue
    raise DateParseError(value)


def truncate(value: date, granularity: Granularity) -> date:
    if granularity == Granularity.YEAR:
        return date(value.year, 1, 1)
    if granularity == Granularity.MONTH:
        return date(value.year, value.month, 1)
    return value


def find_int(value: str | None) -> Optional[int]:
    """First integer embedded in value ("Vol. 12" -> 12, "12-13" -> 12), or None."""
    match = _INT_RE.search(value or "")
    if not match:
        return None
    return int(match.group())


def _shift_back(today: date, amount: int, unit: str) -> date:
    if unit == "D":
        try:
            return today - timedelta(days=amount)
        except OverflowError:
            return EXTREME_PAST
    months = amount * 12 if unit == "Y" else amount
    year, month = divmod(today.year * 12 + today.month - 1 - months, 12)
    if year < 1:
        return EXTREME_PAST
    month += 1
    return date(year, month, min(today.day, calendar.monthrange(year, month)[1]))


@dataclass(frozen=True)
class Embargo:
    """
    Moving wall from the ``embargo_info`` column.

    ``P12M``: the most recent twelve months are not available.
    ``R10Y``: only the most recent ten years are available.
    """

    kind: str
    amount: int
    unit: str

    @classmethod
    def parse(cls, value: str | None) -> Optional["Embargo"]:
        """Return None for empty or unparsable values, which means no restriction."""
        text = (value or "").strip()
        if not text:
            return None
        match = _EMBARGO_RE.match(text)
        if not match:
            logger.debug(f"Ignoring unparsable embargo {text!r}")
            return None
        kind, amount, unit = match.groups()
        return cls(kind=kind.upper(), amount=int(amount), unit=unit.upper())

    def wall(self, today: date) -> date:
        return _shift_back(today, self.amount, self.unit)

    def check(
        self, when: date, granularity: Granularity, today: date
    ) -> Optional[CoverageViolation]:
        wall = truncate(self.wall(today), granularity)
        when = truncate(when, granularity)
        if self.kind == "P" and when > wall:
            return CoverageViolation.AFTER_LAST_ISSUE_DATE
        if self.kind == "R" and when < wall:
            return CoverageViolation.BEFORE_FIRST_ISSUE_DATE
        return None


@dataclass(frozen=True)
class ResolvedCoverage:
    """Parsed view of an entry's coverage window."""

    begin: date
    begin_granularity: Granularity
    end: date
    end_granularity: Granularity
    embargo: Optional[Embargo]


def _parse_boundary(value: str, default: date) -> Tuple[date, Granularity]:
    try:
        return parse_date(value)
    except DateParseError:
        return default, Granularity.DAY


# Field name -> KBART column header.
KBART_COLUMNS: Dict[str, str] = {
    "publication_title": "publication_title",
    "print_identifier": "print_identifier",
    "online_identifier": "online_identifier",
    "first_issue_date": "date_first_issue_online",
    "first_volume": "num_first_vol_online",
    "first_issue": "num_first_issue_online",
    "last_issue_date": "date_last_issue_online",
    "last_volume": "num_last_vol_online",
    "last_issue": "num_last_issue_online",
    "title_url": "title_url",
    "first_author": "first_author",
    "title_id": "title_id",
    "embargo": "embargo_info",
    "coverage_depth": "coverage_depth",
    "coverage_notes": "coverage_notes",
    "publisher_name": "publisher_name",
    "own_anchor": "own_anchor",
    "package_collection": "package:collection",
    "all_serial_numbers": "all_issns",
    "zdb_id": "zdb_id",
}


@dataclass(frozen=True)
class CoverageEntry:
    """
    A licensed serial with its coverage window.

    All fields are the raw strings found in the holdings file. Parsed
    boundaries live in ``resolved``, which is computed on first use; use
    ``dataclasses.replace`` to derive a changed entry with a fresh cache.
    """

    publication_title: str = ""
    print_identifier: str = ""
    online_identifier: str = ""
    first_issue_date: str = ""
    first_volume: str = ""
    first_issue: str = ""
    last_issue_date: str = ""
    last_volume: str = ""
    last_issue: str = ""
    title_url: str = ""
    first_author: str = ""
    title_id: str = ""
    embargo: str = ""
    coverage_depth: str = ""
    coverage_notes: str = ""
    publisher_name: str = ""
    own_anchor: str = ""
    package_collection: str = ""
    all_serial_numbers: str = ""
    zdb_id: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Optional[str]]) -> "CoverageEntry":
        """Create an entry from a KBART row keyed by column header."""
        return cls(
            **{name: (row.get(column) or "").strip() for name, column in KBART_COLUMNS.items()}
        )

    @classmethod
    def field_names(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    @cached_property
    def resolved(self) -> ResolvedCoverage:
        begin, begin_granularity = _parse_boundary(self.first_issue_date, EXTREME_PAST)
        end, end_granularity = _parse_boundary(self.last_issue_date, EXTREME_FUTURE)
        return ResolvedCoverage(
            begin=begin,
            begin_granularity=begin_granularity,
            end=end,
            end_granularity=end_granularity,
            embargo=Embargo.parse(self.embargo),
        )

    def normalized_identifiers(self) -> Set[str]:
        identifiers = set()
        for value in (self.print_identifier, self.online_identifier):
            text = normalize_serial_number(value)
            if text:
                identifiers.add(text)
        identifiers.update(find_serial_numbers(self.all_serial_numbers))
        return identifiers

    def describe(self) -> str:
        return self.publication_title or self.title_id or self.print_identifier or "<untitled>"

    def covers(
        self,
        date_value: str | None,
        volume: str | None = "",
        issue: str | None = "",
        *,
        today: Optional[date] = None,
    ) -> Optional[CoverageViolation]:
        """
        Check whether a date, volume and issue lie within this entry's coverage.

        An empty date is contained in every window. Volume and issue bounds are
        only compared within the first and last year of coverage.

        Returns:
            None if covered, otherwise the first violation found

        Raises:
            DateParseError: if a non-empty date cannot be parsed
        """
        if not date_value:
            return None
        when, granularity = parse_date(date_value)
        view = self.resolved

        g = min(granularity, view.begin_granularity)
        if truncate(when, g) < truncate(view.begin, g):
            return CoverageViolation.BEFORE_FIRST_ISSUE_DATE
        g = min(granularity, view.end_granularity)
        if truncate(when, g) > truncate(view.end, g):
            return CoverageViolation.AFTER_LAST_ISSUE_DATE

        if view.embargo is not None:
            violation = view.embargo.check(when, granularity, today or date.today())
            if violation is not None:
                return violation

        if view.begin.year == when.year:
            if _less(volume, self.first_volume):
                return CoverageViolation.BEFORE_FIRST_VOLUME
            if _less(issue, self.first_issue):
                return CoverageViolation.BEFORE_FIRST_ISSUE

        if view.end.year == when.year:
            if _less(self.last_volume, volume):
                return CoverageViolation.AFTER_LAST_VOLUME
            if _less(self.last_issue, issue):
                return CoverageViolation.AFTER_LAST_ISSUE

        return None


def _less(left: str | None, right: str | None) -> bool:
    a, b = find_int(left), find_int(right)
    return a is not None and b is not None and a < b
