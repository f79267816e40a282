# src/licensetag/application/services/tagger.py
"""
Tagger: institution label -> filter tree.

Usage:
    tagger = load_tagger("tagger.yaml")           # or inline YAML / JSON text
    labels = tagger.tag(record)                   # {"DE-15", "DE-14"}
    tagged = tagger.apply(record)                 # record with x.labels set

    Path("tagger.bin").write_bytes(tagger.freeze())
    tagger = Tagger.unfreeze(Path("tagger.bin").read_bytes())
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional, Set, Union

import yaml

from licensetag.application.services.filter_config import DecodeContext, decode_filter
from licensetag.application.services.filters import FilterNode
from licensetag.application.services.freeze import freeze, unfreeze
from licensetag.domain.errors import ConfigurationError
from licensetag.domain.record import IntermediateRecord

logger = logging.getLogger(__name__)


class Tagger:
    """
    Evaluates one filter tree per label against a record.

    Immutable after construction; safe to share between worker threads.
    """

    def __init__(self, trees: Mapping[str, FilterNode]):
        self._trees: Mapping[str, FilterNode] = MappingProxyType(dict(trees))

    @property
    def trees(self) -> Mapping[str, FilterNode]:
        return self._trees

    @property
    def labels(self) -> Set[str]:
        return set(self._trees)

    def __len__(self) -> int:
        return len(self._trees)

    def __iter__(self) -> Iterator[str]:
        return iter(self._trees)

    def tag(self, record: IntermediateRecord) -> Set[str]:
        """Return every label whose tree matches the record."""
        return {label for label, tree in self._trees.items() if tree.evaluate(record)}

    def apply(self, record: IntermediateRecord) -> IntermediateRecord:
        """Return a copy of the record carrying its labels in ``x.labels``."""
        return record.with_labels(self.tag(record))

    def tag_line(self, line: str) -> str:
        """Decode, tag and re-encode one line of newline delimited JSON."""
        return self.apply(IntermediateRecord.from_json(line)).to_json()

    def freeze(self) -> bytes:
        return freeze(self._trees)

    @classmethod
    def unfreeze(cls, blob: bytes) -> "Tagger":
        return cls(unfreeze(blob))

    @classmethod
    def from_config(cls, config: Any, ctx: Optional[DecodeContext] = None) -> "Tagger":
        """
        Build a tagger from a decoded configuration document.

        Raises:
            ConfigurationError: if the document or any filter is malformed
        """
        if not isinstance(config, Mapping):
            raise ConfigurationError(
                f"tagger configuration must map labels to filters, got {type(config).__name__}"
            )
        ctx = ctx or DecodeContext()
        trees = {}
        for label, spec in config.items():
            if label is None or str(label).strip() == "":
                raise ConfigurationError("empty label in tagger configuration")
            try:
                trees[str(label)] = decode_filter(spec, ctx)
            except ConfigurationError as e:
                raise ConfigurationError(f"{label}: {e}") from e
        logger.info(f"Built tagger with {len(trees)} labels")
        return cls(trees)


def _parse_document(text: str, origin: str) -> Any:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid tagger configuration in {origin}: {e}") from e


def load_tagger(
    config: Union[str, Path],
    *,
    today: Optional[date] = None,
) -> Tagger:
    """
    Load a tagger from inline YAML/JSON text or from a file holding the same.

    Inline text is tried first; anything that does not decode to a mapping is
    taken as a file name. Relative file names inside a configuration file are
    resolved against the directory of that file.

    Raises:
        ConfigurationError: if the configuration cannot be read or decoded
    """
    inline_error: Optional[ConfigurationError] = None
    if isinstance(config, str):
        try:
            document = _parse_document(config, "inline configuration")
        except ConfigurationError as e:
            inline_error = e
        else:
            if isinstance(document, Mapping):
                return Tagger.from_config(document, DecodeContext(today=today))

    path = Path(config).expanduser()
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        if inline_error is not None:
            raise inline_error from e
        raise ConfigurationError(f"cannot read tagger configuration {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise ConfigurationError(f"tagger configuration {path} is not valid UTF-8: {e}") from e
    document = _parse_document(text, str(path))
    ctx = DecodeContext(base_dir=path.resolve().parent, today=today)
    return Tagger.from_config(document, ctx)
