"""
Adapter contract for compacting tool output.

Adapters receive output incrementally through feed() and produce exactly one
CompactionResult from finish(). They must cope with output that stops at any
point, including mid-line, because the process may be killed.

Shared policy enforced by LineAdapter:
1. Lines matching the adapter's failure signal always reach the summary
2. The input unit estimate is a running count of everything fed so far
3. Any parse error degrades the adapter to passthrough for the invocation
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Pattern, Sequence

from tokentrim.core.tokens import UnitCounter, estimate_lines_units

logger = logging.getLogger(__name__)

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b\][^\x07]*\x07")


class Stream(Enum):
    """Which output stream of the child a chunk came from."""
    STDOUT = "stdout"
    STDERR = "stderr"


class AdapterParseFailure(Exception):
    """Raised by adapters when output does not match their grammar."""


# Errors that mean "unexpected output", never "bug worth crashing for"
PARSE_ERRORS = (AdapterParseFailure, ValueError, IndexError, KeyError, TypeError)


@dataclass(frozen=True)
class CompactionResult:
    """Summary of one invocation's output."""
    summary_lines: List[str]
    estimated_input_units: int
    estimated_output_units: int
    degraded: bool = False

    @property
    def text(self) -> str:
        return "\n".join(self.summary_lines)


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE.sub("", text)


def clean_line(raw: str) -> str:
    """Normalise a raw line for matching.

    Carriage-return redraws (progress bars, spinners) keep only the final
    visible segment, and colour codes are removed.
    """
    line = strip_ansi(raw)
    if "\r" in line:
        segments = [s for s in line.split("\r") if s.strip()]
        line = segments[-1] if segments else ""
    return line.rstrip()


def truncate(text: str, width: int) -> str:
    if len(text) <= width:
        return text
    return text[: max(width - 3, 0)] + "..."


class Adapter:
    """Base of all adapters: incremental feed, single finish."""

    name = "adapter"
    # Adapters that stream raw output to the terminal as it arrives
    streams_live = False

    def __init__(self, args: Sequence[str] = (), max_lines: Optional[int] = None):
        self.args = list(args)
        if max_lines is not None:
            self.max_lines = max_lines
        self._counter = UnitCounter()
        self._finished = False

    @property
    def input_units(self) -> int:
        """Units consumed so far; never decreases."""
        return self._counter.units

    def feed(self, chunk: str, stream: Stream = Stream.STDOUT) -> None:
        raise NotImplementedError

    def finish(self, exit_code: Optional[int]) -> CompactionResult:
        raise NotImplementedError

    def compact(self, chunks: Iterable, exit_code: Optional[int] = 0) -> CompactionResult:
        """Feed a sequence of chunks and finish.

        Args:
            chunks: Strings (stdout) or (stream, text) pairs
            exit_code: Exit status of the tool, None if it did not exit normally
        """
        for chunk in chunks:
            if isinstance(chunk, tuple):
                stream, text = chunk
                self.feed(text, stream)
            else:
                self.feed(chunk)
        return self.finish(exit_code)


class PassthroughAdapter(Adapter):
    """No-op adapter: output is reproduced unchanged and nothing is saved."""

    name = "passthrough"
    streams_live = True

    def __init__(self, args: Sequence[str] = (), max_lines: Optional[int] = None):
        super().__init__(args, max_lines)
        self._chunks: List[str] = []

    def feed(self, chunk: str, stream: Stream = Stream.STDOUT) -> None:
        self._counter.add(chunk)
        self._chunks.append(chunk)

    def finish(self, exit_code: Optional[int]) -> CompactionResult:
        text = "".join(self._chunks)
        units = self.input_units
        return CompactionResult(
            summary_lines=text.split("\n") if text else [],
            estimated_input_units=units,
            estimated_output_units=units,
        )


class LineAdapter(Adapter):
    """Adapter working on complete lines.

    Subclasses implement on_line() to update their parse state and
    summarize() to produce the summary once output ends. failure_pattern
    marks lines that must never be dropped.
    """

    failure_pattern: Optional[Pattern] = None
    max_lines = 100

    def __init__(self, args: Sequence[str] = (), max_lines: Optional[int] = None):
        super().__init__(args, max_lines)
        self._partial: Dict[Stream, str] = {Stream.STDOUT: "", Stream.STDERR: ""}
        self._raw_lines: List[str] = []
        self._failure_lines: List[str] = []
        self._degraded = False
        self._visible_lines = 0

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def saw_output(self) -> bool:
        """True once any non-blank line has been read."""
        return self._visible_lines > 0

    def feed(self, chunk: str, stream: Stream = Stream.STDOUT) -> None:
        if self._finished:
            raise RuntimeError(f"{self.name} adapter already finished")
        self._counter.add(chunk)
        pending = self._partial[stream] + chunk
        *complete, self._partial[stream] = pending.split("\n")
        for raw in complete:
            self._take_line(raw, stream)

    def _take_line(self, raw: str, stream: Stream) -> None:
        self._raw_lines.append(raw)
        if self._degraded:
            return
        line = clean_line(raw)
        if line.strip():
            self._visible_lines += 1
        if self.is_failure(line):
            self._failure_lines.append(line)
        try:
            self.on_line(line, stream)
        except PARSE_ERRORS as e:
            self._degrade(e)

    def _degrade(self, error: Exception) -> None:
        logger.info("%s adapter fell back to passthrough: %s", self.name, error)
        self._degraded = True

    def is_failure(self, line: str) -> bool:
        return bool(self.failure_pattern and line and self.failure_pattern.search(line))

    def on_line(self, line: str, stream: Stream) -> None:
        raise NotImplementedError

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        raise NotImplementedError

    def finish(self, exit_code: Optional[int]) -> CompactionResult:
        if self._finished:
            raise RuntimeError(f"{self.name} adapter already finished")
        for stream, rest in self._partial.items():
            if rest:
                self._take_line(rest, stream)
            self._partial[stream] = ""
        self._finished = True

        lines: List[str] = []
        if not self._degraded:
            try:
                lines = list(self.summarize(exit_code))
            except PARSE_ERRORS as e:
                self._degrade(e)

        if self._degraded:
            return CompactionResult(
                summary_lines=list(self._raw_lines),
                estimated_input_units=self.input_units,
                estimated_output_units=self.input_units,
                degraded=True,
            )

        lines = _with_failures(lines, self._failure_lines)
        return CompactionResult(
            summary_lines=lines,
            estimated_input_units=self.input_units,
            estimated_output_units=estimate_lines_units(lines),
        )


class FilterAdapter(LineAdapter):
    """Line filter: drop noise, keep signal, say "ok" when nothing is left.

    A line is dropped if it matches skip_pattern, kept if it matches
    keep_pattern (or always, when keep_pattern is None), and dropped
    otherwise. empty_message replaces an empty summary on success.

    Output in which no line matched either pattern is not output this
    filter knows, so the adapter degrades instead of reporting success.
    """

    skip_pattern: Optional[Pattern] = None
    keep_pattern: Optional[Pattern] = None
    empty_message = "ok ✓"

    def __init__(self, args: Sequence[str] = (), max_lines: Optional[int] = None):
        super().__init__(args, max_lines)
        self.kept: List[str] = []
        self.hidden = 0
        self.recognised = 0

    def keep(self, line: str) -> bool:
        if not line.strip():
            return False
        if self.skip_pattern is not None and self.skip_pattern.search(line):
            self.recognised += 1
            return False
        if self.keep_pattern is None or self.keep_pattern.search(line):
            self.recognised += 1
            return True
        return False

    def on_line(self, line: str, stream: Stream) -> None:
        if not self.keep(line):
            return
        if len(self.kept) >= self.max_lines:
            self.hidden += 1
            return
        self.kept.append(line)

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        if self.saw_output and not self.recognised:
            raise AdapterParseFailure(f"no {self.name} output recognised")
        lines = list(self.kept)
        if self.hidden:
            lines.append(f"... ({self.hidden} more lines)")
        if not lines and exit_code == 0:
            return [self.empty_message]
        return lines


def _with_failures(lines: List[str], failures: List[str]) -> List[str]:
    """Append failure lines the summary does not already contain."""
    present = set(lines)
    joined = "\n".join(lines)
    for failure in failures:
        if failure in present or failure.strip() in joined:
            continue
        lines.append(failure)
        present.add(failure)
    return lines

