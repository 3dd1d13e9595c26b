"""
Deno output compaction: test, lint, check, fmt, task and run.
"""

import re
from typing import List, Optional

from .base import AdapterParseFailure, FilterAdapter, LineAdapter, Stream

DENO_FAILURE = re.compile(r"^error(\[|:)|\.\.\. FAILED|^FAILED\b|AssertionError|Uncaught")

ERROR_BLOCK_LINES = 15


class DenoTestAdapter(LineAdapter):
    """Collapse per-test `... ok` lines into counts; keep failures verbatim."""

    name = "deno.test"
    failure_pattern = DENO_FAILURE

    _RESULT = re.compile(r"^(.*) \.\.\. (ok|FAILED|ignored)\b")
    _FINAL = re.compile(r"^(ok|FAILED) \| \d+ passed")
    _HEADER = re.compile(r"^running \d+ tests? from ")

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self.passed = 0
        self.failed: List[str] = []
        self.ignored = 0
        self.errors: List[str] = []
        self.final: Optional[str] = None
        self._section: Optional[str] = None
        self._headers = 0

    def on_line(self, line: str, stream: Stream) -> None:
        text = line.strip()
        if self._HEADER.match(text):
            self._headers += 1
            return
        if text in ("ERRORS", "FAILURES"):
            self._section = text
            return
        final = self._FINAL.match(text)
        if final:
            self.final = text
            self._section = None
            return
        if self._section == "ERRORS":
            if text and len(self.errors) < self.max_lines:
                self.errors.append(line)
            return
        if self._section == "FAILURES":
            return
        match = self._RESULT.match(text)
        if not match:
            return
        outcome = match.group(2)
        if outcome == "ok":
            self.passed += 1
        elif outcome == "ignored":
            self.ignored += 1
        else:
            self.failed.append(match.group(1).strip())

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        recognised = (
            self._headers or self.passed or self.failed or self.ignored
            or self.errors or self.final or self._section
        )
        if self.saw_output and not recognised:
            raise AdapterParseFailure("no deno test output recognised")
        lines: List[str] = []
        if self.failed:
            lines.append(f"Failed tests ({len(self.failed)}):")
            lines.extend(f"  ✗ {name}" for name in self.failed)
        lines.extend(self.errors[:ERROR_BLOCK_LINES])
        if len(self.errors) > ERROR_BLOCK_LINES:
            lines.append(f"... ({len(self.errors) - ERROR_BLOCK_LINES} more error lines)")
        if self.final:
            lines.append(self.final)
        elif self.passed or self.failed:
            lines.append(
                f"{self.passed} passed | {len(self.failed)} failed | {self.ignored} ignored (incomplete run)"
            )
        elif exit_code == 0:
            lines.append("ok ✓ All tests passed")
        return lines


class DenoLintAdapter(FilterAdapter):
    name = "deno.lint"
    failure_pattern = DENO_FAILURE
    skip_pattern = re.compile(r"^Checked \d+ files?")
    keep_pattern = re.compile(
        r"^(error|warning)|^\([\w-]+\)|^\s*(-->|at )\S|^\s*hint:|^Found \d+ problems?"
    )
    empty_message = "ok ✓ No lint issues"


class DenoCheckAdapter(FilterAdapter):
    name = "deno.check"
    failure_pattern = DENO_FAILURE
    skip_pattern = re.compile(r"^Check (file|https?)://|^Download ")
    keep_pattern = re.compile(r"error|\bTS\d+\b|^\s+at |^\s*\^|Found \d+ errors?")
    empty_message = "ok ✓ Type check passed"


class DenoFmtAdapter(LineAdapter):
    """`deno fmt`: count formatted files; keep --check diffs and errors."""

    name = "deno.fmt"
    failure_pattern = DENO_FAILURE

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self.formatted = 0
        self.checked: Optional[str] = None
        self.problems: List[str] = []

    def on_line(self, line: str, stream: Stream) -> None:
        text = line.strip()
        if not text:
            return
        if text.startswith("Checked "):
            self.checked = text
        elif text.startswith(("error", "from ")) or "not formatted" in text:
            self.problems.append(text)
        elif re.match(r"^\d+\s*\|", text) and len(self.problems) < self.max_lines:
            self.problems.append(f"  {text}")
        elif not text.startswith(("Download", "Warning")):
            self.formatted += 1

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        if self.problems:
            return self.problems + ([self.checked] if self.checked else [])
        if self.saw_output and self.checked is None:
            raise AdapterParseFailure("no 'Checked N files' line in deno fmt output")
        if exit_code != 0:
            return []
        if self.formatted:
            return [f"ok ✓ Formatted {self.formatted} files"]
        return ["ok ✓ No formatting needed"]


class DenoRunAdapter(FilterAdapter):
    """`deno run` / `deno task`: program output without runtime chatter."""

    name = "deno.run"
    failure_pattern = DENO_FAILURE
    skip_pattern = re.compile(
        r"^(Download|Compile|Check) (file|https?|jsr|npm):|^Task \S+ |^Warning .*--allow-"
    )
