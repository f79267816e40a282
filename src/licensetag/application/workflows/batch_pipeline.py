# src/licensetag/application/workflows/batch_pipeline.py
"""
Ordered batch pipeline.

Reads newline delimited records, hands fixed-size batches to a pool of
worker threads and writes the results in input order, whatever order the
workers finish in.

Workers are threads: trees and indexes are shared without copying, and the
GIL limits the speedup of pure Python tagging on CPython. Large runs can be
split across processes by input file.
"""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Callable,
    Dict,
    Generic,
    Iterable,
    Iterator,
    List,
    Optional,
    Set,
    TextIO,
    Tuple,
    TypeVar,
)

from licensetag.domain.errors import ConfigurationError, WorkerError
from licensetag.utils.logging_config import Logger, LogFiles

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 20000

# Transforms one input line (without newline) into one output line.
LineTransform = Callable[[str], str]


class ErrorPolicy(str, Enum):
    """What to do with a record whose transform raised."""

    RAISE = "raise"  # abort the run
    PASS = "pass"  # write the input line unchanged
    SKIP = "skip"  # write nothing for the record


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _env_policy(name: str) -> ErrorPolicy:
    raw = (os.getenv(name) or "").strip().lower()
    if raw in ("", "0", "false", "no", "n"):
        return ErrorPolicy.RAISE
    if raw in ("1", "true", "yes", "y"):
        return ErrorPolicy.PASS
    try:
        return ErrorPolicy(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be pass, skip or raise, got {raw!r}") from e


@dataclass
class PipelineConfig:
    """Configuration for a pipeline run."""

    num_workers: int = field(default_factory=lambda: os.cpu_count() or 1)
    batch_size: int = DEFAULT_BATCH_SIZE
    on_error: ErrorPolicy = ErrorPolicy.RAISE

    def __post_init__(self):
        if self.num_workers < 1:
            raise ConfigurationError(f"number of workers must be positive, got {self.num_workers}")
        if self.batch_size < 1:
            raise ConfigurationError(f"batch size must be positive, got {self.batch_size}")
        try:
            self.on_error = ErrorPolicy(self.on_error)
        except ValueError as e:
            raise ConfigurationError(f"unknown error policy: {self.on_error!r}") from e

    @classmethod
    def from_env(
        cls,
        *,
        num_workers: Optional[int] = None,
        batch_size: Optional[int] = None,
        on_error: Optional[str] = None,
    ) -> "PipelineConfig":
        """
        Read LICENSETAG_WORKERS, LICENSETAG_BATCH_SIZE and LICENSETAG_BEST_EFFORT;
        explicit arguments win.
        """
        return cls(
            num_workers=(
                _env_int("LICENSETAG_WORKERS", os.cpu_count() or 1)
                if num_workers is None
                else num_workers
            ),
            batch_size=(
                _env_int("LICENSETAG_BATCH_SIZE", DEFAULT_BATCH_SIZE)
                if batch_size is None
                else batch_size
            ),
            on_error=_env_policy("LICENSETAG_BEST_EFFORT") if on_error is None else on_error,
        )


@dataclass
class RecordFailure:
    line: int
    error: str


@dataclass
class BatchResult:
    seq: int
    lines: List[str]
    failures: List[RecordFailure] = field(default_factory=list)


@dataclass
class PipelineResult:
    """Counters of a finished run."""

    records_in: int = 0
    records_out: int = 0
    batches: int = 0
    failures: List[RecordFailure] = field(default_factory=list)
    duration_seconds: float = 0.0


class ReorderBuffer(Generic[T]):
    """
    Releases items in sequence order, however they arrive.

    Items pushed ahead of a gap are held until the gap is filled.
    """

    def __init__(self, start: int = 0):
        self._next = start
        self._held: Dict[int, T] = {}

    @property
    def next_seq(self) -> int:
        return self._next

    def __len__(self) -> int:
        return len(self._held)

    def push(self, seq: int, item: T) -> List[T]:
        if seq < self._next or seq in self._held:
            raise ValueError(f"sequence number {seq} already seen")
        self._held[seq] = item
        ready = []
        while self._next in self._held:
            ready.append(self._held.pop(self._next))
            self._next += 1
        return ready


def batched(lines: Iterable[str], size: int) -> Iterator[Tuple[int, List[str]]]:
    """Yield (number of first line, lines) chunks; line numbers start at 1."""
    batch: List[str] = []
    first = 1
    for number, line in enumerate(lines, start=1):
        if not batch:
            first = number
        batch.append(line.rstrip("\r\n"))
        if len(batch) >= size:
            yield first, batch
            batch = []
    if batch:
        yield first, batch


class BatchPipeline:
    """
    Applies a line transform with a fixed pool of worker threads.

    The transform must not mutate shared state; taggers and coverage indexes
    are read-only and safe to share.
    """

    def __init__(self, transform: LineTransform, config: Optional[PipelineConfig] = None):
        self.transform = transform
        self.config = config or PipelineConfig()

    def process_batch(self, seq: int, first_line: int, lines: List[str]) -> BatchResult:
        """
        Transform one batch.

        Raises:
            WorkerError: for the first failing record, unless best effort is on
        """
        result = BatchResult(seq=seq, lines=[])
        for offset, line in enumerate(lines):
            try:
                result.lines.append(self.transform(line))
            except Exception as e:
                number = first_line + offset
                if self.config.on_error == ErrorPolicy.RAISE:
                    raise WorkerError(str(e), line=number) from e
                result.failures.append(RecordFailure(line=number, error=str(e)))
                if self.config.on_error == ErrorPolicy.PASS:
                    result.lines.append(line)
        return result

    def _emit(self, result: BatchResult, out: TextIO, stats: PipelineResult) -> None:
        for line in result.lines:
            out.write(line)
            out.write("\n")
        stats.records_out += len(result.lines)
        for failure in result.failures:
            message = f"line {failure.line}: {failure.error} ({self.config.on_error.value})"
            logger.warning(message)
            Logger.warning(message, file=LogFiles.RECORDS)
        stats.failures.extend(result.failures)

    def run(self, lines: Iterable[str], out: TextIO) -> PipelineResult:
        """
        Process all lines and write results to ``out`` in input order.

        On the first fatal error no further input is read; batches already
        submitted are drained before the error is raised.

        Raises:
            WorkerError: if a record fails and best effort is off
        """
        started = time.monotonic()
        stats = PipelineResult()
        reorder: ReorderBuffer[BatchResult] = ReorderBuffer()
        pending: Set[Future] = set()
        failure: Optional[BaseException] = None
        max_in_flight = 2 * self.config.num_workers

        def collect(limit: int) -> None:
            nonlocal failure
            while len(pending) > limit:
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    pending.discard(future)
                    try:
                        result = future.result()
                    except Exception as e:
                        failure = failure or e
                        continue
                    for ready in reorder.push(result.seq, result):
                        self._emit(ready, out, stats)

        with ThreadPoolExecutor(
            max_workers=self.config.num_workers, thread_name_prefix="licensetag"
        ) as executor:
            for seq, (first_line, batch) in enumerate(batched(lines, self.config.batch_size)):
                collect(max_in_flight - 1)
                if failure is not None:
                    break
                stats.records_in += len(batch)
                stats.batches += 1
                pending.add(executor.submit(self.process_batch, seq, first_line, batch))
            collect(0)

        stats.duration_seconds = time.monotonic() - started
        if failure is not None:
            logger.error(f"Pipeline aborted after {stats.records_out} records: {failure}")
            if isinstance(failure, WorkerError):
                raise failure
            raise WorkerError(str(failure)) from failure

        logger.info(
            f"Pipeline finished: {stats.records_in} in, {stats.records_out} out, "
            f"{len(stats.failures)} failures, {stats.batches} batches "
            f"in {stats.duration_seconds:.2f}s"
        )
        return stats
