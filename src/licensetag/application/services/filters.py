# src/licensetag/application/services/filters.py
"""
Filter tree nodes.

A filter tree is a strict tree of nodes; inner nodes combine children with
boolean logic, leaves test a single property of a record. Every node is
immutable and evaluation has no side effects, so one tree can be shared by
any number of worker threads.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from enum import IntEnum
from typing import ClassVar, FrozenSet, Iterable, Optional, Tuple

from licensetag.application.services.coverage_index import CoverageIndex
from licensetag.domain.record import IntermediateRecord
from licensetag.domain.serial_number import normalize_all


class NodeKind(IntEnum):
    """Discriminator of every node type; also the tag byte of the frozen form."""

    ANY = 0x01
    AND = 0x02
    OR = 0x03
    NOT = 0x04
    HOLDINGS = 0x10
    ISSN = 0x11
    DOI = 0x12
    COLLECTION = 0x13
    PACKAGE = 0x14
    SOURCE = 0x15
    SUBJECT = 0x16


class FilterNode(ABC):
    kind: ClassVar[NodeKind]

    @abstractmethod
    def evaluate(self, record: IntermediateRecord) -> bool:
        ...

    def __call__(self, record: IntermediateRecord) -> bool:
        return self.evaluate(record)


@dataclass(frozen=True)
class AnyFilter(FilterNode):
    """Matches every record."""

    kind: ClassVar[NodeKind] = NodeKind.ANY

    def evaluate(self, record: IntermediateRecord) -> bool:
        return True


@dataclass(frozen=True)
class AndFilter(FilterNode):
    kind: ClassVar[NodeKind] = NodeKind.AND

    children: Tuple[FilterNode, ...] = ()

    def evaluate(self, record: IntermediateRecord) -> bool:
        return all(child.evaluate(record) for child in self.children)


@dataclass(frozen=True)
class OrFilter(FilterNode):
    kind: ClassVar[NodeKind] = NodeKind.OR

    children: Tuple[FilterNode, ...] = ()

    def evaluate(self, record: IntermediateRecord) -> bool:
        return any(child.evaluate(record) for child in self.children)


@dataclass(frozen=True)
class NotFilter(FilterNode):
    kind: ClassVar[NodeKind] = NodeKind.NOT

    child: FilterNode = field(default_factory=AnyFilter)

    def evaluate(self, record: IntermediateRecord) -> bool:
        return not self.child.evaluate(record)


def _frozen(values: Iterable[str]) -> FrozenSet[str]:
    return frozenset(v for v in values if v)


@dataclass(frozen=True)
class ValueSetFilter(FilterNode):
    """Base for leaves that test a record attribute against a set of strings."""

    values: FrozenSet[str] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, "values", _frozen(self.values))

    @abstractmethod
    def candidates(self, record: IntermediateRecord) -> Iterable[str]:
        ...

    def evaluate(self, record: IntermediateRecord) -> bool:
        return any(value in self.values for value in self.candidates(record))


@dataclass(frozen=True)
class ISSNFilter(ValueSetFilter):
    kind: ClassVar[NodeKind] = NodeKind.ISSN

    def __post_init__(self):
        object.__setattr__(self, "values", frozenset(normalize_all(self.values)))

    def candidates(self, record: IntermediateRecord) -> Iterable[str]:
        return record.identifiers


@dataclass(frozen=True)
class CollectionFilter(ValueSetFilter):
    kind: ClassVar[NodeKind] = NodeKind.COLLECTION

    def candidates(self, record: IntermediateRecord) -> Iterable[str]:
        return record.collections


@dataclass(frozen=True)
class PackageFilter(ValueSetFilter):
    kind: ClassVar[NodeKind] = NodeKind.PACKAGE

    def candidates(self, record: IntermediateRecord) -> Iterable[str]:
        return record.packages


@dataclass(frozen=True)
class SourceFilter(ValueSetFilter):
    kind: ClassVar[NodeKind] = NodeKind.SOURCE

    def candidates(self, record: IntermediateRecord) -> Iterable[str]:
        return (record.source_id,)


@dataclass(frozen=True)
class SubjectFilter(ValueSetFilter):
    kind: ClassVar[NodeKind] = NodeKind.SUBJECT

    def candidates(self, record: IntermediateRecord) -> Iterable[str]:
        return record.subjects


@dataclass(frozen=True)
class DOIFilter(FilterNode):
    """
    Without values, matches records that carry a DOI at all.
    With values, matches records whose DOI is listed (DOIs compare case-insensitively).
    """

    kind: ClassVar[NodeKind] = NodeKind.DOI

    values: FrozenSet[str] = frozenset()

    def __post_init__(self):
        object.__setattr__(
            self, "values", frozenset(v.strip().lower() for v in self.values if v.strip())
        )

    def evaluate(self, record: IntermediateRecord) -> bool:
        doi = record.doi.strip().lower()
        if not self.values:
            return bool(doi)
        return doi in self.values


@dataclass(frozen=True, eq=False)
class HoldingsFilter(FilterNode):
    """
    Matches records covered by at least one entry of a holdings index.

    Records without a known ISSN, or with an unparsable date, are not covered.
    ``today`` pins the reference date for moving walls; None means the
    current date at evaluation time.
    """

    kind: ClassVar[NodeKind] = NodeKind.HOLDINGS

    index: CoverageIndex = field(default_factory=CoverageIndex)
    today: Optional[date] = None

    def evaluate(self, record: IntermediateRecord) -> bool:
        identifiers = record.identifiers
        if not identifiers:
            return False
        entry = self.index.covers(
            sorted(identifiers), record.date, record.volume, record.issue, today=self.today
        )
        return entry is not None
