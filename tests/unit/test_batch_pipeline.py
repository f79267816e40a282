"""
Batch pipeline unit tests.
"""

import io
import itertools
import time
from pathlib import Path

import pytest

from licensetag.application.workflows.batch_pipeline import (
    DEFAULT_BATCH_SIZE,
    BatchPipeline,
    ErrorPolicy,
    PipelineConfig,
    ReorderBuffer,
    batched,
)
from licensetag.domain.errors import ConfigurationError, WorkerError


def _upper(line: str) -> str:
    if line == "bad":
        raise ValueError("cannot handle this one")
    return line.upper()


def _run(lines, transform=_upper, **config):
    out = io.StringIO()
    result = BatchPipeline(transform, PipelineConfig(**config)).run(lines, out)
    return out.getvalue().splitlines(), result


class TestReorderBuffer:
    def test_releases_in_order_for_every_arrival_order(self):
        for order in itertools.permutations(range(5)):
            buffer = ReorderBuffer()
            released = []
            for seq in order:
                released.extend(buffer.push(seq, f"item-{seq}"))
            assert released == [f"item-{i}" for i in range(5)], order
            assert len(buffer) == 0
            assert buffer.next_seq == 5

    def test_holds_items_behind_gap(self):
        buffer = ReorderBuffer()
        assert buffer.push(1, "b") == []
        assert buffer.push(2, "c") == []
        assert len(buffer) == 2
        assert buffer.push(0, "a") == ["a", "b", "c"]

    def test_rejects_seen_sequence_numbers(self):
        buffer = ReorderBuffer()
        buffer.push(0, "a")
        buffer.push(2, "c")
        with pytest.raises(ValueError):
            buffer.push(0, "again")
        with pytest.raises(ValueError):
            buffer.push(2, "again")


def test_batched_numbers_lines():
    assert list(batched(["a\n", "b\r\n", "c"], 2)) == [(1, ["a", "b"]), (3, ["c"])]
    assert list(batched([], 2)) == []


class TestPipelineConfig:
    def test_defaults(self):
        config = PipelineConfig()
        assert config.num_workers >= 1
        assert config.batch_size == DEFAULT_BATCH_SIZE
        assert config.on_error == ErrorPolicy.RAISE

    def test_policy_from_string(self):
        assert PipelineConfig(on_error="skip").on_error == ErrorPolicy.SKIP

    @pytest.mark.parametrize(
        "kwargs", [{"num_workers": 0}, {"batch_size": 0}, {"on_error": "ignore"}]
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigurationError):
            PipelineConfig(**kwargs)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("LICENSETAG_WORKERS", "3")
        monkeypatch.setenv("LICENSETAG_BATCH_SIZE", "7")
        monkeypatch.setenv("LICENSETAG_BEST_EFFORT", "skip")

        config = PipelineConfig.from_env()
        assert (config.num_workers, config.batch_size, config.on_error) == (3, 7, ErrorPolicy.SKIP)

        config = PipelineConfig.from_env(num_workers=5, batch_size=9, on_error="pass")
        assert (config.num_workers, config.batch_size, config.on_error) == (5, 9, ErrorPolicy.PASS)

    @pytest.mark.parametrize(
        "raw,policy",
        [("", ErrorPolicy.RAISE), ("false", ErrorPolicy.RAISE), ("true", ErrorPolicy.PASS), ("1", ErrorPolicy.PASS)],
    )
    def test_best_effort_flag_values(self, monkeypatch, raw, policy):
        monkeypatch.setenv("LICENSETAG_BEST_EFFORT", raw)
        assert PipelineConfig.from_env().on_error == policy

    def test_invalid_env(self, monkeypatch):
        monkeypatch.setenv("LICENSETAG_WORKERS", "many")
        with pytest.raises(ConfigurationError, match="LICENSETAG_WORKERS"):
            PipelineConfig.from_env()
        monkeypatch.delenv("LICENSETAG_WORKERS")
        monkeypatch.setenv("LICENSETAG_BEST_EFFORT", "maybe")
        with pytest.raises(ConfigurationError, match="LICENSETAG_BEST_EFFORT"):
            PipelineConfig.from_env()


class TestBatchPipeline:
    def test_output_order_matches_input_order(self):
        lines = [f"r{i}" for i in range(200)]
        output, result = _run(lines, num_workers=4, batch_size=7)

        assert output == [line.upper() for line in lines]
        assert result.records_in == 200
        assert result.records_out == 200
        assert result.batches == 29
        assert result.failures == []

    def test_order_survives_out_of_order_completion(self):
        finished = []

        def slow_first(line: str) -> str:
            # earlier records take longer, so later batches finish first
            time.sleep((10 - int(line)) * 0.02)
            finished.append(line)
            return f"done {line}"

        lines = [str(i) for i in range(10)]
        output, _ = _run(lines, slow_first, num_workers=4, batch_size=1)

        assert output == [f"done {i}" for i in range(10)]
        assert finished != lines

    def test_empty_input(self):
        output, result = _run([], num_workers=2)
        assert output == []
        assert result.records_in == 0
        assert result.batches == 0

    def test_failure_aborts_with_line_number(self):
        with pytest.raises(WorkerError) as excinfo:
            _run(["a", "b", "bad", "d"], num_workers=2, batch_size=2)

        assert excinfo.value.line == 3
        assert "line 3" in str(excinfo.value)
        assert isinstance(excinfo.value.__cause__, ValueError)

    def test_failure_stops_intake(self):
        consumed = []

        def lines():
            for i in range(1000):
                consumed.append(i)
                yield "bad" if i == 0 else "ok"

        with pytest.raises(WorkerError):
            _run(lines(), num_workers=1, batch_size=1)
        assert len(consumed) < 1000

    def test_pass_policy_writes_input_unchanged(self, tmp_path: Path):
        output, result = _run(["a", "bad", "c"], num_workers=2, batch_size=1, on_error="pass")

        assert output == ["A", "bad", "C"]
        assert [f.line for f in result.failures] == [2]
        assert result.records_out == 3

        log = (tmp_path / "logs" / "records" / "records.log").read_text(encoding="utf-8")
        assert "line 2: cannot handle this one (pass)" in log

    def test_skip_policy_drops_record(self):
        output, result = _run(["a", "bad", "c", "bad"], batch_size=3, on_error="skip")

        assert output == ["A", "C"]
        assert [f.line for f in result.failures] == [2, 4]
        assert result.records_in == 4
        assert result.records_out == 2


@pytest.mark.parametrize("kwargs", [{"num_workers": 0}, {"batch_size": 0}])
def test_explicit_zero_is_not_replaced_by_default(monkeypatch, kwargs):
    monkeypatch.setenv("LICENSETAG_WORKERS", "3")
    with pytest.raises(ConfigurationError):
        PipelineConfig.from_env(**kwargs)
