# src/licensetag/application/services/freeze.py
"""
Frozen filter trees.

A decoded configuration, including the holdings it references, is written to
a compact binary blob, so that later runs can skip YAML decoding and KBART
parsing. Layout (all integers are unsigned LEB128 varints, all strings are
length prefixed UTF-8):

    magic "LTAG", version byte
    index count, then per index: column count, column names,
        entry count, then per entry one string per column
    label count, then per label: label string, node

    node := tag byte, followed by
        ANY                 nothing
        AND, OR             child count, children
        NOT                 child
        ISSN, DOI, ...      value count, values (sorted)
        HOLDINGS            index position, reference date flag [, ordinal]
"""

from __future__ import annotations

from datetime import date
from typing import Callable, Dict, List, Mapping, Tuple

from licensetag.application.services.coverage_index import CoverageIndex
from licensetag.application.services.filters import (
    AndFilter,
    AnyFilter,
    CollectionFilter,
    DOIFilter,
    FilterNode,
    HoldingsFilter,
    ISSNFilter,
    NodeKind,
    NotFilter,
    OrFilter,
    PackageFilter,
    SourceFilter,
    SubjectFilter,
)
from licensetag.domain.coverage import CoverageEntry
from licensetag.domain.errors import DecodeError

MAGIC = b"LTAG"
VERSION = 1
MAX_DEPTH = 256

_VALUE_SETS = {
    NodeKind.ISSN: ISSNFilter,
    NodeKind.DOI: DOIFilter,
    NodeKind.COLLECTION: CollectionFilter,
    NodeKind.PACKAGE: PackageFilter,
    NodeKind.SOURCE: SourceFilter,
    NodeKind.SUBJECT: SubjectFilter,
}


class _Writer:
    def __init__(self):
        self._buf = bytearray()

    def raw(self, data: bytes) -> None:
        self._buf.extend(data)

    def byte(self, value: int) -> None:
        self._buf.append(value)

    def uvarint(self, value: int) -> None:
        if value < 0:
            raise ValueError(f"cannot encode negative integer {value}")
        while value >= 0x80:
            self._buf.append((value & 0x7F) | 0x80)
            value >>= 7
        self._buf.append(value)

    def string(self, value: str) -> None:
        data = value.encode("utf-8")
        self.uvarint(len(data))
        self._buf.extend(data)

    def getvalue(self) -> bytes:
        return bytes(self._buf)


class _Reader:
    def __init__(self, data: bytes):
        self._data = memoryview(data)
        self._pos = 0

    def _take(self, n: int) -> memoryview:
        end = self._pos + n
        if end > len(self._data):
            raise DecodeError("frozen blob is truncated")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def byte(self) -> int:
        return self._take(1)[0]

    def uvarint(self) -> int:
        result = 0
        shift = 0
        while True:
            b = self.byte()
            result |= (b & 0x7F) << shift
            if not b & 0x80:
                return result
            shift += 7
            if shift > 63:
                raise DecodeError("varint overflow in frozen blob")

    def string(self) -> str:
        try:
            return bytes(self._take(self.uvarint())).decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"invalid string in frozen blob: {e}") from e

    def remaining(self) -> int:
        return len(self._data) - self._pos

    def at_end(self) -> bool:
        return self._pos == len(self._data)


def _collect_indexes(node: FilterNode, found: Dict[int, Tuple[int, CoverageIndex]]) -> None:
    if isinstance(node, HoldingsFilter):
        found.setdefault(id(node.index), (len(found), node.index))
    elif isinstance(node, (AndFilter, OrFilter)):
        for child in node.children:
            _collect_indexes(child, found)
    elif isinstance(node, NotFilter):
        _collect_indexes(node.child, found)


def _write_index(w: _Writer, index: CoverageIndex) -> None:
    columns = CoverageEntry.field_names()
    w.uvarint(len(columns))
    for column in columns:
        w.string(column)
    w.uvarint(len(index))
    for entry in index.entries:
        for column in columns:
            w.string(getattr(entry, column))


def _write_node(w: _Writer, node: FilterNode, positions: Mapping[int, int]) -> None:
    w.byte(node.kind)
    if isinstance(node, (AndFilter, OrFilter)):
        w.uvarint(len(node.children))
        for child in node.children:
            _write_node(w, child, positions)
    elif isinstance(node, NotFilter):
        _write_node(w, node.child, positions)
    elif isinstance(node, HoldingsFilter):
        w.uvarint(positions[id(node.index)])
        if node.today is None:
            w.byte(0)
        else:
            w.byte(1)
            w.uvarint(node.today.toordinal())
    elif node.kind in _VALUE_SETS:
        values = sorted(node.values)
        w.uvarint(len(values))
        for value in values:
            w.string(value)
    elif not isinstance(node, AnyFilter):
        raise TypeError(f"cannot freeze {type(node).__name__}")


def freeze(trees: Mapping[str, FilterNode]) -> bytes:
    """Encode labelled filter trees, with their holdings, into a blob."""
    found: Dict[int, Tuple[int, CoverageIndex]] = {}
    for node in trees.values():
        _collect_indexes(node, found)

    w = _Writer()
    w.raw(MAGIC)
    w.byte(VERSION)
    indexes = sorted(found.values(), key=lambda item: item[0])
    w.uvarint(len(indexes))
    for _, index in indexes:
        _write_index(w, index)

    positions = {key: position for key, (position, _) in found.items()}
    w.uvarint(len(trees))
    for label in sorted(trees):
        w.string(label)
        _write_node(w, trees[label], positions)
    return w.getvalue()


def _read_index(r: _Reader) -> CoverageIndex:
    known = set(CoverageEntry.field_names())
    columns = [r.string() for _ in range(r.uvarint())]
    if not columns:
        raise DecodeError("holdings index without columns in frozen blob")
    unknown = [c for c in columns if c not in known]
    if unknown or len(set(columns)) != len(columns):
        raise DecodeError(f"bad holdings columns in frozen blob: {columns!r}")
    count = r.uvarint()
    # every value takes at least its length byte
    if count * len(columns) > r.remaining():
        raise DecodeError("frozen blob is truncated")
    entries: List[CoverageEntry] = []
    for _ in range(count):
        values = [r.string() for _ in columns]
        entries.append(CoverageEntry(**dict(zip(columns, values))))
    return CoverageIndex(entries)


class _NodeReader:
    def __init__(self, r: _Reader, indexes: List[CoverageIndex]):
        self.r = r
        self.indexes = indexes
        self._readers: Mapping[int, Callable[[int], FilterNode]] = {
            NodeKind.ANY: self._any,
            NodeKind.AND: self._and,
            NodeKind.OR: self._or,
            NodeKind.NOT: self._not,
            NodeKind.HOLDINGS: self._holdings,
        }

    def node(self, depth: int = 0) -> FilterNode:
        if depth > MAX_DEPTH:
            raise DecodeError("frozen filter tree is nested too deeply")
        tag = self.r.byte()
        reader = self._readers.get(tag)
        if reader is not None:
            return reader(depth)
        if tag in _VALUE_SETS:
            cls = _VALUE_SETS[NodeKind(tag)]
            return cls(values=frozenset(self.r.string() for _ in range(self.r.uvarint())))
        raise DecodeError(f"unknown node tag 0x{tag:02x} in frozen blob")

    def _any(self, depth: int) -> FilterNode:
        return AnyFilter()

    def _children(self, depth: int) -> Tuple[FilterNode, ...]:
        return tuple(self.node(depth + 1) for _ in range(self.r.uvarint()))

    def _and(self, depth: int) -> FilterNode:
        return AndFilter(children=self._children(depth))

    def _or(self, depth: int) -> FilterNode:
        return OrFilter(children=self._children(depth))

    def _not(self, depth: int) -> FilterNode:
        return NotFilter(child=self.node(depth + 1))

    def _holdings(self, depth: int) -> FilterNode:
        position = self.r.uvarint()
        if position >= len(self.indexes):
            raise DecodeError(f"holdings reference {position} out of range")
        today = None
        if self.r.byte():
            try:
                today = date.fromordinal(self.r.uvarint())
            except (ValueError, OverflowError) as e:
                raise DecodeError(f"invalid reference date in frozen blob: {e}") from e
        return HoldingsFilter(index=self.indexes[position], today=today)


def unfreeze(blob: bytes) -> Dict[str, FilterNode]:
    """
    Decode labelled filter trees from a blob made by ``freeze``.

    Raises:
        DecodeError: if the blob is not a valid frozen configuration
    """
    if not blob.startswith(MAGIC):
        raise DecodeError("not a frozen licensetag configuration")
    r = _Reader(blob[len(MAGIC):])
    version = r.byte()
    if version != VERSION:
        raise DecodeError(f"unsupported frozen format version {version}")

    indexes = [_read_index(r) for _ in range(r.uvarint())]
    nodes = _NodeReader(r, indexes)
    trees: Dict[str, FilterNode] = {}
    for _ in range(r.uvarint()):
        label = r.string()
        trees[label] = nodes.node()
    if not r.at_end():
        raise DecodeError("trailing bytes after frozen configuration")
    return trees


def freeze_filter(node: FilterNode) -> bytes:
    return freeze({"": node})


def unfreeze_filter(blob: bytes) -> FilterNode:
    trees = unfreeze(blob)
    if list(trees) != [""]:
        raise DecodeError("blob does not hold a single filter tree")
    return trees[""]
