"""
Nx output compaction.

Strips the task graph preview, Nx Cloud prompts and dependency listings,
then keeps what matters for the kind of target being run.
"""

import re
from typing import List, Optional

from .base import AdapterParseFailure, LineAdapter, Stream

NX_FAILURE = re.compile(r"\bERROR\b|\bFAILED\b|^\s*FAIL\s|Ran target .* failed|✖")

_NOISE = re.compile(r"Nx Cloud|nx\.app|faster remote builds|run-many|NX\s+Nx ")
_DEPENDENCY = re.compile(r"^\s+- .*\[")
_RUN_HEADER = re.compile(r"^\s*>\s+nx run \S+")

_KEEP = {
    "serve": re.compile(
        r"Application bundle generation complete|Compiled successfully|Local:|ready -|started|ERROR|WARNING"
    ),
    "test": re.compile(r"\bPASS\b|\bFAIL\b|Test Suites:|Tests:|Snapshots:|ERROR"),
    "build": re.compile(
        r"Building|Compiling|Successfully|✓|ERROR|WARNING|Bundle|Initial Chunk Files"
    ),
    "affected": re.compile(r"Affected projects:|^\s+- |NX\s+Running target"),
    "default": re.compile(
        r"✓|✔|Successfully|ERROR|FAILED|Warning|NX\s+Successfully ran target|NX\s+Ran target"
    ),
}


def _mode(args: List[str]) -> str:
    if any(a in ("serve", "dev", "start") or a.startswith("start:") for a in args):
        return "serve"
    if any(a in ("test", "e2e") or a.endswith(":test") for a in args):
        return "test"
    if any(a == "build" or a.endswith(":build") for a in args):
        return "build"
    if any(a == "affected" or a.startswith("affected:") for a in args):
        return "affected"
    return "default"


class NxAdapter(LineAdapter):
    name = "nx"
    failure_pattern = NX_FAILURE

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self.mode = _mode(self.args)
        self.kept: List[str] = []
        self.recognised = 0
        self._in_task_graph = False

    def on_line(self, line: str, stream: Stream) -> None:
        if "Tasks to run for affected projects" in line or (line.startswith(" >") and ":" in line):
            self._in_task_graph = True
            self.recognised += 1
            return
        if self._in_task_graph:
            if not line.strip():
                self._in_task_graph = False
            return
        if _NOISE.search(line) or _DEPENDENCY.match(line) or _RUN_HEADER.match(line):
            self.recognised += 1
            return
        if _KEEP[self.mode].search(line):
            self.recognised += 1
            if len(self.kept) < self.max_lines:
                self.kept.append(line)

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        if self.saw_output and not self.recognised:
            # `nx show projects`, `nx --version` and the like
            raise AdapterParseFailure("no nx output recognised")
        if not self.kept:
            if exit_code == 0:
                return ["ok ✓"]
            # compiler errors often match no keep pattern
            raise AdapterParseFailure("failed nx run left nothing to keep")
        return self.kept
