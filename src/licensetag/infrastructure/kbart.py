"""KBART holdings file loading."""
from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import IO, Iterator, List, Union

from licensetag.domain.coverage import KBART_COLUMNS, CoverageEntry
from licensetag.domain.errors import ConfigurationError

logger = logging.getLogger(__name__)

# KBART files are large; some columns hold whole notes.
csv.field_size_limit(16 * 1024 * 1024)


def _known_columns(header: List[str]) -> List[str]:
    known = set(KBART_COLUMNS.values())
    return [name for name in header if name in known]


def iter_entries(handle: IO[str], *, delimiter: str = "\t") -> Iterator[CoverageEntry]:
    """
    Yield entries from an open KBART file.

    The first row names the columns; order does not matter and unknown
    columns are ignored.
    """
    reader = csv.DictReader(handle, delimiter=delimiter, quoting=csv.QUOTE_NONE)
    header = [name.strip().lstrip("\ufeff") for name in (reader.fieldnames or [])]
    if not _known_columns(header):
        raise ConfigurationError(f"no KBART header found, got columns {header!r}")
    reader.fieldnames = header
    for row in reader:
        yield CoverageEntry.from_row(row)


def load_entries(path: Union[str, Path], *, delimiter: str = "\t") -> List[CoverageEntry]:
    """Load all entries of a KBART file."""
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8", newline="") as f:
            entries = list(iter_entries(f, delimiter=delimiter))
    except OSError as e:
        raise ConfigurationError(f"cannot read holdings file {path}: {e}") from e
    except csv.Error as e:
        raise ConfigurationError(f"malformed holdings file {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise ConfigurationError(f"holdings file {path} is not valid UTF-8: {e}") from e

    logger.info(f"Loaded {len(entries)} coverage entries from {path}")
    return entries
