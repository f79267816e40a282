# src/licensetag/application/workflows/tagging.py
"""
Tagging workflows.

Glue between a Tagger and the batch pipeline:
- tag: every record is written back with its labels in ``x.labels``
- label: one ``record_id<TAB>labels`` line per record, ``X`` if unmatched
"""

from __future__ import annotations

import fileinput
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence, TextIO, Tuple

from licensetag.application.services.coverage_index import CoverageIndex
from licensetag.application.services.filters import HoldingsFilter
from licensetag.application.services.tagger import Tagger
from licensetag.application.workflows.batch_pipeline import (
    BatchPipeline,
    LineTransform,
    PipelineConfig,
    PipelineResult,
)
from licensetag.domain.errors import ConfigurationError
from licensetag.domain.record import IntermediateRecord

logger = logging.getLogger(__name__)

UNMATCHED = "X"


def tag_transform(tagger: Tagger) -> LineTransform:
    return tagger.tag_line


def label_transform(tagger: Tagger, *, separator: str = ",") -> LineTransform:
    def transform(line: str) -> str:
        record = IntermediateRecord.from_json(line)
        labels = sorted(tagger.tag(record))
        return f"{record.record_id}\t{separator.join(labels) or UNMATCHED}"

    return transform


def parse_holdings_labels(specs: Sequence[str]) -> List[Tuple[str, str]]:
    """Split ``LABEL:FILE`` arguments."""
    pairs = []
    for spec in specs:
        label, sep, path = spec.partition(":")
        if not sep or not label.strip() or not path.strip():
            raise ConfigurationError(f"expected LABEL:FILE, got {spec!r}")
        pairs.append((label.strip(), path.strip()))
    return pairs


def holdings_tagger(pairs: Sequence[Tuple[str, str]]) -> Tagger:
    """A tagger with one holdings filter per label."""
    indexes = {}
    trees = {}
    for label, path in pairs:
        if label in trees:
            raise ConfigurationError(f"label {label!r} given more than once")
        if path not in indexes:
            indexes[path] = CoverageIndex.from_files([path])
        trees[label] = HoldingsFilter(index=indexes[path])
    return Tagger(trees)


@contextmanager
def open_inputs(files: Optional[Sequence[str]]) -> Iterator[Iterator[str]]:
    """
    Concatenated lines of the given files, or of stdin if there are none.

    Undecodable bytes are kept as surrogate escapes, so a bad line fails in
    its own record transform and can still be passed through unchanged.
    """
    names = list(files or []) or ["-"]
    try:
        with fileinput.input(files=names, encoding="utf-8", errors="surrogateescape") as lines:
            yield lines
    except OSError as e:
        raise ConfigurationError(f"cannot read input: {e}") from e


def run_pipeline(
    transform: LineTransform,
    files: Optional[Sequence[str]],
    out: TextIO,
    config: Optional[PipelineConfig] = None,
) -> PipelineResult:
    pipeline = BatchPipeline(transform, config)
    with open_inputs(files) as lines:
        return pipeline.run(lines, out)
