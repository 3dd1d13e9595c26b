"""
Tests for end-to-end dispatch: resolve, run, print and record.
"""

import io
import os
import shlex
import sys
import tempfile
from datetime import datetime

import pytest

from tokentrim.adapters.base import CompactionResult, LineAdapter, PassthroughAdapter
from tokentrim.adapters.registry import AdapterRegistry
from tokentrim.core.dispatch import (
    EXIT_CODE_ABNORMAL,
    DispatchResult,
    Dispatcher,
    RawOutputTee,
)
from tokentrim.core.tokens import estimate_units
from tokentrim.runner.process import RunOutcome
from tokentrim.storage.repository import InMemoryUsageStore, StoreWriteFailure

PYTHON = os.path.basename(sys.executable)
NOW = datetime(2026, 1, 28, 12, 0, 0)


class CountAdapter(LineAdapter):
    name = "count"

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self.count = 0

    def on_line(self, line, stream):
        self.count += 1

    def summarize(self, exit_code):
        return [f"{self.count} lines"]


class VerboseAdapter(CountAdapter):
    """Produces a summary longer than its input."""

    name = "verbose"

    def summarize(self, exit_code):
        return ["x" * 400]


class FailingStore(InMemoryUsageStore):
    def append(self, record):
        raise StoreWriteFailure("disk I/O error")


def _registry(factory=CountAdapter):
    registry = AdapterRegistry()
    registry.register(PYTHON, (), factory)
    return registry


def _python(code):
    return [sys.executable, "-c", code]


def _dispatcher(registry=None, store=None, **kwargs):
    out, err = io.StringIO(), io.StringIO()
    dispatcher = Dispatcher(
        registry or _registry(),
        store if store is not None else InMemoryUsageStore(),
        out=out,
        err=err,
        clock=lambda: NOW,
        **kwargs,
    )
    return dispatcher, out, err


class TestDispatch:
    """Test the normal path."""

    def test_summary_printed_and_recorded(self):
        store = InMemoryUsageStore()
        dispatcher, out, err = _dispatcher(store=store)
        argv = _python("for i in range(50): print('line', i)")

        result = dispatcher.dispatch(argv)

        assert result.exit_code == 0
        assert out.getvalue() == "50 lines\n"
        assert err.getvalue() == ""
        record, = store.iter_records()
        assert record.tool_id == PYTHON
        assert record.timestamp == NOW
        assert record.success is True
        assert record.command == shlex.join(argv)
        assert record.compacted_unit_count == estimate_units("50 lines")
        assert record.raw_unit_count > record.compacted_unit_count

    def test_failure_exit_code_preserved_and_recorded(self):
        store = InMemoryUsageStore()
        dispatcher, out, _ = _dispatcher(store=store)

        result = dispatcher.dispatch(_python("import sys; print('boom'); sys.exit(4)"))

        assert result.exit_code == 4
        assert result.record.success is False
        assert len(list(store.iter_records())) == 1

    def test_compacted_never_exceeds_raw(self):
        dispatcher, out, _ = _dispatcher(registry=_registry(VerboseAdapter))

        result = dispatcher.dispatch(_python("print('hi')"))

        assert result.record.raw_unit_count == estimate_units("hi\n")
        assert result.record.compacted_unit_count == result.record.raw_unit_count
        assert result.record.saved_units == 0

    def test_raw_mode_shows_output_unchanged(self):
        dispatcher, out, _ = _dispatcher()

        result = dispatcher.dispatch(_python("print('a'); print('b')"), raw=True)

        assert out.getvalue() == "a\nb\n"
        assert result.record.raw_unit_count == result.record.compacted_unit_count

    def test_unmatched_command_streams_live(self):
        dispatcher, out, _ = _dispatcher(registry=AdapterRegistry())

        result = dispatcher.dispatch(_python("print('plain')"))

        assert out.getvalue() == "plain\n"
        assert result.record.tool_id.startswith(PYTHON)

    def test_empty_argv_rejected(self):
        dispatcher, _, _ = _dispatcher()
        with pytest.raises(ValueError):
            dispatcher.dispatch([])


class TestDispatchFailures:
    """Test failures of the tool and of tokentrim itself."""

    def test_missing_tool(self):
        store = InMemoryUsageStore()
        dispatcher, out, err = _dispatcher(store=store)

        result = dispatcher.dispatch(["/nonexistent/tokentrim-tool", "status"])

        assert result == DispatchResult(exit_code=127)
        assert "tokentrim: command not found: /nonexistent/tokentrim-tool" in err.getvalue()
        assert list(store.iter_records()) == []

    def test_store_failure_does_not_change_exit_code(self):
        dispatcher, out, err = _dispatcher(store=FailingStore())

        result = dispatcher.dispatch(_python("import sys; sys.exit(2)"))

        assert result.exit_code == 2
        assert result.record is None
        assert "tokentrim: accounting unavailable" in err.getvalue()

    def test_timeout_records_partial_output(self):
        store = InMemoryUsageStore()
        dispatcher, out, err = _dispatcher(store=store, timeout=2)
        code = "import sys, time; print('started'); sys.stdout.flush(); time.sleep(30)"

        result = dispatcher.dispatch(_python(code))

        assert result.exit_code == EXIT_CODE_ABNORMAL
        assert f"tokentrim: {PYTHON}: timeout" in err.getvalue()
        assert out.getvalue() == "1 lines\n"
        record, = store.iter_records()
        assert record.success is False
        assert record.raw_unit_count == estimate_units("started\n")


class TestRawOutputTee:
    """Test saving full output of failed runs."""

    @pytest.fixture
    def tee_dir(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            yield temp_dir

    def test_failed_run_saved(self, tee_dir):
        dispatcher, out, _ = _dispatcher(tee=RawOutputTee(tee_dir))

        result = dispatcher.dispatch(_python("import sys; print('detail'); sys.exit(1)"))

        assert result.tee_path is not None
        assert result.tee_path.read_text(encoding="utf-8") == "detail\n"
        assert out.getvalue() == f"1 lines\n[full output: {result.tee_path}]\n"

    def test_successful_run_not_saved(self, tee_dir):
        dispatcher, out, _ = _dispatcher(tee=RawOutputTee(tee_dir))

        result = dispatcher.dispatch(_python("print('fine')"))

        assert result.tee_path is None
        assert os.listdir(tee_dir) == []

    def test_always_mode(self, tee_dir):
        tee = RawOutputTee(tee_dir, mode="always")
        outcome = RunOutcome(["git", "status"], 0, CompactionResult(["ok"], 1, 1), "ok\n", 5)
        assert tee.wants(outcome)
        assert not RawOutputTee(tee_dir, mode="never").wants(outcome)

    def test_rotation_keeps_newest(self, tee_dir):
        tee = RawOutputTee(tee_dir, max_files=2)
        outcome = RunOutcome(["git", "push"], 1, CompactionResult([], 1, 1), "rejected\n", 5)

        paths = [tee.save(outcome, "git push", datetime(2026, 1, 28, 12, 0, second)) for second in range(3)]

        assert sorted(os.listdir(tee_dir)) == sorted(p.name for p in paths[1:])
        assert paths[0].name.endswith("_git_push.log")

    def test_invalid_mode(self, tee_dir):
        with pytest.raises(ValueError):
            RawOutputTee(tee_dir, mode="sometimes")

    def test_passthrough_not_teed(self, tee_dir):
        dispatcher, out, _ = _dispatcher(registry=_registry(PassthroughAdapter), tee=RawOutputTee(tee_dir))

        result = dispatcher.dispatch(_python("import sys; print('x'); sys.exit(1)"))

        assert result.exit_code == 1
        assert result.tee_path is None
