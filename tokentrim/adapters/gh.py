"""
GitHub CLI (gh) output compaction.

gh prints tab-separated rows when its output is piped, which is always the
case under the runner. Lists become `#number title` rows, checks become
counts plus the failing checks, and views keep their header fields and the
start of the body.
"""

import json
import re
from typing import Dict, List, Optional

from .base import AdapterParseFailure, LineAdapter, Stream, truncate

GH_FAILURE = re.compile(r"^(error|failed|could not|HTTP [45]\d\d)\b|GraphQL:", re.IGNORECASE)

LIST_ROWS_SHOWN = 20
TITLE_WIDTH = 60
BODY_LINES_SHOWN = 3

STATE_ICONS = {"OPEN": "🟢", "MERGED": "🟣", "CLOSED": "🔴", "DRAFT": "⚪"}


class GhChecksAdapter(LineAdapter):
    """`gh pr checks`: pass/fail/pending counts and the failing checks."""

    name = "gh.checks"
    failure_pattern = GH_FAILURE

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self.counts: Dict[str, int] = {"pass": 0, "fail": 0, "pending": 0, "skipping": 0}
        self.failed: List[str] = []

    def on_line(self, line: str, stream: Stream) -> None:
        if not line.strip() or stream is Stream.STDERR:
            return
        parts = line.split("\t")
        if len(parts) >= 2:
            name, status = parts[0].strip(), parts[1].strip().lower()
        else:
            name, status = line.strip(), _symbol_status(line)
        if status not in self.counts:
            return
        self.counts[status] += 1
        if status == "fail":
            self.failed.append(name)

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        if not sum(self.counts.values()):
            if exit_code == 0:
                raise AdapterParseFailure("no check rows recognised")
            return []
        lines = [
            "🔍 CI Checks Summary:",
            f"  ✅ Passed: {self.counts['pass']}",
            f"  ❌ Failed: {self.counts['fail']}",
        ]
        if self.counts["pending"]:
            lines.append(f"  ⏳ Pending: {self.counts['pending']}")
        if self.counts["skipping"]:
            lines.append(f"  ⏭  Skipped: {self.counts['skipping']}")
        if self.failed:
            lines.append("  Failed checks:")
            lines.extend(f"    {name}" for name in self.failed)
        return lines


def _symbol_status(line: str) -> str:
    text = line.strip()
    if text.startswith("✓"):
        return "pass"
    if text.startswith(("X", "✗")):
        return "fail"
    if text.startswith("*"):
        return "pending"
    if text.startswith("-"):
        return "skipping"
    return ""


class GhListAdapter(LineAdapter):
    """`gh pr list`, `gh issue list`, `gh run list` and their --json forms."""

    name = "gh.list"
    failure_pattern = GH_FAILURE

    def __init__(self, args=(), max_lines=None, kind: str = "pr"):
        super().__init__(args, max_lines)
        self.kind = kind
        self.json_mode = any(a == "--json" or a.startswith("--json=") for a in self.args)
        self.rows: List[str] = []
        self._json_text: List[str] = []

    def on_line(self, line: str, stream: Stream) -> None:
        if stream is Stream.STDERR or not line.strip():
            return
        if self.json_mode:
            self._json_text.append(line)
            return
        parts = line.split("\t")
        if len(parts) < 3:
            self.rows.append(line.strip())
            return
        self.rows.append(self._format_row(parts))

    def _format_row(self, parts: List[str]) -> str:
        if self.kind == "issue":
            number, state, title = parts[0], parts[1], parts[2]
            return f"{STATE_ICONS.get(state.upper(), '⚪')} #{number} {truncate(title, TITLE_WIDTH)}"
        if self.kind == "run":
            status, conclusion, title = parts[0], parts[1], parts[2]
            workflow = parts[3] if len(parts) > 3 else ""
            run_id = parts[6] if len(parts) > 6 else ""
            icon = "✓" if conclusion == "success" else ("✗" if conclusion == "failure" else status)
            return f"{icon} {truncate(title, TITLE_WIDTH)} [{workflow}] {run_id}".rstrip()
        number, title = parts[0], parts[1]
        state = parts[3] if len(parts) > 3 else ""
        return f"{STATE_ICONS.get(state.upper(), '⚪')} #{number} {truncate(title, TITLE_WIDTH)}"

    def _json_rows(self) -> List[str]:
        data = json.loads("\n".join(self._json_text)) if self._json_text else []
        if not isinstance(data, list):
            data = [data]
        rows = []
        for item in data:
            if isinstance(item, dict) and "number" in item and "title" in item:
                state = str(item.get("state", ""))
                icon = STATE_ICONS.get(state.upper(), "⚪")
                rows.append(f"{icon} #{item['number']} {truncate(str(item['title']), TITLE_WIDTH)}")
            else:
                rows.append(json.dumps(item, separators=(",", ":"), ensure_ascii=False))
        return rows

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        rows = self._json_rows() if self.json_mode else self.rows
        if len(rows) > LIST_ROWS_SHOWN:
            hidden = len(rows) - LIST_ROWS_SHOWN
            rows = rows[:LIST_ROWS_SHOWN] + [f"  ... {hidden} more"]
        return rows


class GhViewAdapter(LineAdapter):
    """`gh pr view` / `gh issue view`: header fields and first body lines."""

    name = "gh.view"
    failure_pattern = GH_FAILURE

    KEEP_FIELDS = ("title", "state", "author", "url", "number", "reviewers", "assignees")

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self.fields: List[str] = []
        self.body: List[str] = []
        self._in_body = False

    def on_line(self, line: str, stream: Stream) -> None:
        if stream is Stream.STDERR:
            return
        if self._in_body:
            if line.strip():
                self.body.append(line.strip())
            return
        if line.strip() == "--":
            self._in_body = True
            return
        key, sep, value = line.partition(":\t")
        if sep and key.strip() in self.KEEP_FIELDS and value.strip():
            self.fields.append(f"{key.strip()}: {value.strip()}")

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        if exit_code == 0 and not self.fields and not self.body:
            raise AdapterParseFailure("no view fields recognised")
        lines = list(self.fields)
        for line in self.body[:BODY_LINES_SHOWN]:
            lines.append(f"  {truncate(line, 80)}")
        if len(self.body) > BODY_LINES_SHOWN:
            lines.append(f"  ... ({len(self.body) - BODY_LINES_SHOWN} more body lines)")
        return lines
