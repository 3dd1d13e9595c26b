"""
Tests for child process execution.

These start real child processes using the running interpreter, so they
exercise the pipes, reader threads and termination paths end to end.
"""

import io
import sys

import pytest

from tokentrim.adapters.base import LineAdapter, PassthroughAdapter, Stream
from tokentrim.runner.process import AbnormalTermination, ProcessRunner, ToolNotFound


class CollectingAdapter(LineAdapter):
    name = "collecting"

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self.lines = []

    def on_line(self, line, stream):
        self.lines.append((stream, line))

    def summarize(self, exit_code):
        return [f"{len(self.lines)} lines"]


def _python(code):
    return [sys.executable, "-c", code]


class TestProcessRunner:
    """Test normal completion."""

    def test_exit_code_and_streams(self):
        adapter = CollectingAdapter()
        code = "import sys; print('out'); sys.stdout.flush(); print('err', file=sys.stderr); sys.exit(3)"

        outcome = ProcessRunner().run(_python(code), adapter)

        assert outcome.exit_code == 3
        assert not outcome.success
        assert not outcome.abnormal
        assert (Stream.STDOUT, "out") in adapter.lines
        assert (Stream.STDERR, "err") in adapter.lines
        assert outcome.result.summary_lines == ["2 lines"]

    def test_transcript_and_units(self):
        outcome = ProcessRunner().run(_python("print('x' * 400)"), CollectingAdapter())

        assert outcome.transcript == "x" * 400 + "\n"
        assert outcome.result.estimated_input_units == 101
        assert outcome.elapsed_ms >= 0

    def test_multibyte_character_split_across_writes(self):
        code = (
            "import sys, time\n"
            "sys.stdout.buffer.write(b'caf\\xc3'); sys.stdout.flush(); time.sleep(0.2)\n"
            "sys.stdout.buffer.write(b'\\xa9\\n'); sys.stdout.flush()\n"
        )
        adapter = CollectingAdapter()
        ProcessRunner().run(_python(code), adapter)

        assert adapter.lines == [(Stream.STDOUT, "café")]

    def test_invalid_utf8_replaced(self):
        adapter = CollectingAdapter()
        ProcessRunner().run(_python("import sys; sys.stdout.buffer.write(b'bad \\xff byte\\n')"), adapter)
        assert adapter.lines == [(Stream.STDOUT, "bad \ufffd byte")]

    def test_echo_writes_as_output_arrives(self):
        out, err = io.StringIO(), io.StringIO()
        code = "import sys; print('visible'); print('warning', file=sys.stderr)"

        ProcessRunner(echo=True, out=out, err=err).run(_python(code), PassthroughAdapter())

        assert out.getvalue() == "visible\n"
        assert err.getvalue() == "warning\n"

    def test_invalid_timeout(self):
        with pytest.raises(ValueError):
            ProcessRunner(timeout=0)


class TestAbnormalTermination:
    """Test timeouts, signals and missing programs."""

    def test_timeout_keeps_partial_output(self):
        code = (
            "import sys, time\n"
            "for i in range(10000): print('line', i)\n"
            "sys.stdout.flush()\n"
            "time.sleep(30)\n"
        )
        adapter = CollectingAdapter()

        with pytest.raises(AbnormalTermination) as info:
            ProcessRunner(timeout=2).run(_python(code), adapter)

        outcome = info.value.outcome
        assert info.value.reason == "timeout"
        assert outcome.exit_code is None
        assert outcome.abnormal
        assert outcome.result.estimated_input_units > 0
        assert outcome.result.summary_lines == ["10000 lines"]

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
    def test_killed_by_signal(self):
        code = "import os, signal; print('before', flush=True); os.kill(os.getpid(), signal.SIGKILL)"

        with pytest.raises(AbnormalTermination) as info:
            ProcessRunner().run(_python(code), CollectingAdapter())

        assert info.value.reason == "signal"
        assert info.value.signal == 9
        assert str(info.value) == "killed by signal 9"
        assert info.value.outcome.transcript == "before\n"

    def test_missing_program(self):
        with pytest.raises(ToolNotFound) as info:
            ProcessRunner().run(["/nonexistent/tokentrim-test-tool"], CollectingAdapter())
        assert info.value.exit_code == 127
        assert info.value.program == "/nonexistent/tokentrim-test-tool"
