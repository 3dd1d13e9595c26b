"""
pytest output compaction.

Progress lines (`tests/test_x.py ..F.s`) collapse into a count of collected
files; the FAILURES / ERRORS sections are cut down to their headers and
assertion lines, and the short test summary and final status line are kept.
"""

import re
from typing import List, Optional

from .base import AdapterParseFailure, LineAdapter, Stream

PYTEST_FAILURE = re.compile(r"^(FAILED|ERROR) |Interrupted:")

_PROGRESS = re.compile(r"^\S+\.py [.FEsxX]+(\s+\[\s*\d+%\])?$")
_VERBOSE_RESULT = re.compile(r"^\S+::\S+ (PASSED|FAILED|ERROR|SKIPPED|XFAIL|XPASS)")
_SECTION = re.compile(r"^={3,} (.*?) ={3,}$")
_FINAL = re.compile(
    r"(\d+|no) (passed|failed|error|errors|skipped|deselected|tests? collected|tests ran)\b.* in [\d.]+s"
)

FAILURE_DETAIL_LINES = 5


class PytestAdapter(LineAdapter):
    name = "pytest"
    failure_pattern = PYTEST_FAILURE

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self.files = 0
        self.result_lines = 0
        self.details: List[str] = []
        self.short_summary: List[str] = []
        self.final: Optional[str] = None
        self._section = ""
        self._detail_budget = 0

    def on_line(self, line: str, stream: Stream) -> None:
        section = _SECTION.match(line)
        if section:
            title = section.group(1)
            if _FINAL.search(title):
                self.final = line
                self._section = ""
            else:
                self._section = title
            return
        if _FINAL.match(line):
            # -q prints the final counts without the === frame
            self.final = line
        elif self._section in ("FAILURES", "ERRORS"):
            self._take_detail(line)
        elif self._section == "short test summary info":
            if line.strip() and len(self.short_summary) < self.max_lines:
                self.short_summary.append(line)
        elif _PROGRESS.match(line):
            self.files += 1
        elif _VERBOSE_RESULT.match(line):
            self.result_lines += 1

    def _take_detail(self, line: str) -> None:
        if line.startswith("____"):
            self.details.append(line)
            self._detail_budget = FAILURE_DETAIL_LINES
        elif line.startswith(("E ", ">")) or re.match(r"^\S+\.py:\d+:", line):
            if self._detail_budget > 0:
                self.details.append(line)
                self._detail_budget -= 1

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        if not (self.details or self.short_summary or self.final or self.files or self.result_lines):
            # --version, --help and plugin output have none of the run structure
            raise AdapterParseFailure("no pytest run output recognised")
        lines = self.details[: self.max_lines]
        lines.extend(self.short_summary)
        if self.final:
            lines.append(self.final)
        elif self.files or self.result_lines:
            lines.append(f"(incomplete run after {self.files or self.result_lines} progress lines)")
        return lines
