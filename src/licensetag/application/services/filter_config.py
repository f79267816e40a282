# src/licensetag/application/services/filter_config.py
"""
Declarative filter configuration.

A filter expression is a mapping with exactly one key, the filter name:

    {"and": [{"source": {"list": ["48"]}}, {"holdings": {"file": "de15.tsv"}}]}

Names are resolved through a fixed dispatch table; anything else is a
configuration error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from licensetag.application.services.coverage_index import CoverageIndex
from licensetag.application.services.filters import (
    AndFilter,
    AnyFilter,
    CollectionFilter,
    DOIFilter,
    FilterNode,
    HoldingsFilter,
    ISSNFilter,
    NotFilter,
    OrFilter,
    PackageFilter,
    SourceFilter,
    SubjectFilter,
    ValueSetFilter,
)
from licensetag.domain.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class DecodeContext:
    """
    State shared while decoding one configuration.

    Relative file names are resolved against ``base_dir``. Holdings files
    named more than once are loaded once.
    """

    base_dir: Path = field(default_factory=Path.cwd)
    today: Optional[date] = None
    indexes: Dict[Tuple[Path, ...], CoverageIndex] = field(default_factory=dict)

    def resolve(self, name: Any) -> Path:
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError(f"expected a file name, got {name!r}")
        path = Path(name.strip()).expanduser()
        if not path.is_absolute():
            path = self.base_dir / path
        return path

    def holdings_index(self, paths: Tuple[Path, ...]) -> CoverageIndex:
        if paths not in self.indexes:
            self.indexes[paths] = CoverageIndex.from_files(paths)
        return self.indexes[paths]


def _options(name: str, value: Any, allowed: Tuple[str, ...]) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"{name}: expected a mapping, got {type(value).__name__}")
    unknown = sorted(set(value) - set(allowed))
    if unknown:
        raise ConfigurationError(f"{name}: unknown option(s) {', '.join(map(str, unknown))}")
    return value


def _string_list(name: str, value: Any) -> List[str]:
    if not isinstance(value, list):
        raise ConfigurationError(f"{name}: expected a list, got {type(value).__name__}")
    items = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, (str, int)):
            raise ConfigurationError(f"{name}: expected strings, got {item!r}")
        items.append(str(item).strip())
    return items


def _read_lines(name: str, path: Path) -> List[str]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"{name}: cannot read {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise ConfigurationError(f"{name}: {path} is not valid UTF-8: {e}") from e
    return [line.strip() for line in text.splitlines() if line.strip()]


def _values(name: str, value: Any, ctx: DecodeContext) -> List[str]:
    options = _options(name, value, ("list", "file"))
    values: List[str] = []
    if "list" in options:
        values.extend(_string_list(name, options["list"]))
    if "file" in options:
        values.extend(_read_lines(name, ctx.resolve(options["file"])))
    return values


def _children(name: str, value: Any, ctx: DecodeContext) -> Tuple[FilterNode, ...]:
    if not isinstance(value, list):
        raise ConfigurationError(f"{name}: expected a list of filters")
    return tuple(decode_filter(item, ctx) for item in value)


def _decode_any(value: Any, ctx: DecodeContext) -> FilterNode:
    _options("any", value, ())
    return AnyFilter()


def _decode_and(value: Any, ctx: DecodeContext) -> FilterNode:
    return AndFilter(children=_children("and", value, ctx))


def _decode_or(value: Any, ctx: DecodeContext) -> FilterNode:
    return OrFilter(children=_children("or", value, ctx))


def _decode_not(value: Any, ctx: DecodeContext) -> FilterNode:
    if isinstance(value, list):
        if len(value) != 1:
            raise ConfigurationError("not: expected exactly one filter")
        value = value[0]
    return NotFilter(child=decode_filter(value, ctx))


def _value_set(name: str, cls: type) -> Callable[[Any, DecodeContext], FilterNode]:
    def decode(value: Any, ctx: DecodeContext) -> ValueSetFilter:
        values = _values(name, value, ctx)
        if not values:
            logger.warning(f"{name} filter without values never matches")
        return cls(values=frozenset(values))

    return decode


def _decode_doi(value: Any, ctx: DecodeContext) -> FilterNode:
    return DOIFilter(values=frozenset(_values("doi", value, ctx)))


def _decode_holdings(value: Any, ctx: DecodeContext) -> FilterNode:
    if isinstance(value, Mapping) and "urls" in value:
        raise ConfigurationError("holdings: fetching holdings from URLs is not supported")
    options = _options("holdings", value, ("file", "files"))
    names: List[Any] = []
    if "file" in options:
        names.append(options["file"])
    if "files" in options:
        if not isinstance(options["files"], list):
            raise ConfigurationError("holdings: files must be a list")
        names.extend(options["files"])
    if not names:
        raise ConfigurationError("holdings: a file is required")
    paths = tuple(ctx.resolve(name) for name in names)
    return HoldingsFilter(index=ctx.holdings_index(paths), today=ctx.today)


FILTER_DECODERS: Mapping[str, Callable[[Any, DecodeContext], FilterNode]] = MappingProxyType(
    {
        "any": _decode_any,
        "and": _decode_and,
        "or": _decode_or,
        "not": _decode_not,
        "holdings": _decode_holdings,
        "issn": _value_set("issn", ISSNFilter),
        "doi": _decode_doi,
        "collection": _value_set("collection", CollectionFilter),
        "package": _value_set("package", PackageFilter),
        "source": _value_set("source", SourceFilter),
        "subject": _value_set("subject", SubjectFilter),
    }
)


def decode_filter(spec: Any, ctx: Optional[DecodeContext] = None) -> FilterNode:
    """
    Build a filter tree from its declarative form.

    Raises:
        ConfigurationError: on unknown filter names or malformed options
    """
    ctx = ctx or DecodeContext()
    if not isinstance(spec, Mapping) or len(spec) != 1:
        raise ConfigurationError(f"a filter must be a mapping with exactly one key, got {spec!r}")
    name, value = next(iter(spec.items()))
    decoder = FILTER_DECODERS.get(name)
    if decoder is None:
        raise ConfigurationError(f"unknown filter: {name!r}")
    return decoder(value, ctx)
