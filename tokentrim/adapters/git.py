"""
Git output compaction.

Covers status, diff/show, log, branch and the write commands (add, commit,
push, pull, fetch). The wrapped git always runs with the user's arguments;
these adapters only read what it prints.
"""

import re
from typing import Dict, List, Optional

from .base import AdapterParseFailure, LineAdapter, Stream

GIT_FAILURE = re.compile(
    r"^(fatal|error):|^\s*! \[(rejected|remote rejected)\]|^CONFLICT\b|Automatic merge failed"
)

STAGED_SHOWN = 5
MODIFIED_SHOWN = 5
UNTRACKED_SHOWN = 3
HUNK_LINES_SHOWN = 10
LOG_COMMITS_SHOWN = 20
REMOTE_BRANCHES_SHOWN = 10

STAT_FLAGS = {"--stat", "--numstat", "--shortstat", "--name-only", "--name-status", "--raw"}
SHORT_STATUS_FLAGS = {"-s", "--short", "--porcelain", "--porcelain=v1"}
# XY status letters of `git status --short` and porcelain v1
SHORT_STATUS_CODES = set(" MTADRCU?!")


def _file_list(label: str, icon: str, files: List[str], shown: int) -> List[str]:
    lines = [f"{icon} {label}: {len(files)} files"]
    lines.extend(f"   {f}" for f in files[:shown])
    if len(files) > shown:
        lines.append(f"   ... +{len(files) - shown} more")
    return lines


class GitStatusAdapter(LineAdapter):
    """Summarise `git status` as branch plus counted file groups."""

    name = "git.status"
    failure_pattern = GIT_FAILURE

    _SECTIONS = {
        "Changes to be committed:": "staged",
        "Changes not staged for commit:": "modified",
        "Untracked files:": "untracked",
        "Unmerged paths:": "conflicts",
    }

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self.short = any(
            a in SHORT_STATUS_FLAGS
            or a.startswith("--porcelain")
            or re.fullmatch(r"-[a-z]*s[a-z]*", a)
            for a in self.args
        )
        self.branch: Optional[str] = None
        self.tracking: List[str] = []
        self.files: Dict[str, List[str]] = {
            "staged": [], "modified": [], "untracked": [], "conflicts": []
        }
        self.clean = False
        self._section: Optional[str] = None
        self._saw_output = False

    def on_line(self, line: str, stream: Stream) -> None:
        if not line.strip():
            return
        self._saw_output = True
        if self.short:
            self._on_short_line(line)
        else:
            self._on_long_line(line)

    def _on_short_line(self, line: str) -> None:
        if line.startswith("## "):
            self.branch = line[3:]
            return
        if len(line) < 4:
            raise AdapterParseFailure(f"unexpected short status line: {line!r}")
        status, path = line[:2], line[3:]
        if not set(status) <= SHORT_STATUS_CODES or line[2] != " ":
            # porcelain v2 records (`1 .M ...`, `? path`, `# branch.oid`) land here
            raise AdapterParseFailure(f"unexpected short status line: {line!r}")
        if status == "??":
            self.files["untracked"].append(path)
            return
        if "U" in status or status in ("AA", "DD"):
            self.files["conflicts"].append(path)
            return
        if status[0] in "MADRCT":
            self.files["staged"].append(path)
        if status[1] in "MDT":
            self.files["modified"].append(path)

    def _on_long_line(self, line: str) -> None:
        text = line.strip()
        if text.startswith("On branch "):
            self.branch = text[len("On branch "):]
        elif text.startswith("HEAD detached"):
            self.branch = text
        elif text.startswith("Your branch"):
            self.tracking.append(text)
        elif text in self._SECTIONS:
            self._section = self._SECTIONS[text]
        elif text.startswith("nothing to commit"):
            self.clean = True
        elif text.startswith("(") or text.startswith("no changes added"):
            return
        elif self._section is not None and line.startswith(("\t", "  ")):
            if self._section == "untracked":
                self.files["untracked"].append(text)
            else:
                # "modified:   path" / "both modified:   path"
                _, sep, path = text.partition(":")
                self.files[self._section].append(path.strip() if sep else text)

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        if self._saw_output and self.branch is None and not self.short and exit_code == 0:
            raise AdapterParseFailure("no branch line in git status output")

        lines: List[str] = []
        if self.branch:
            lines.append(f"📌 {self.branch}")
        for tracking in self.tracking:
            if "up to date" not in tracking:
                lines.append(f"   {tracking}")
        if self.files["staged"]:
            lines.extend(_file_list("Staged", "✅", self.files["staged"], STAGED_SHOWN))
        if self.files["modified"]:
            lines.extend(_file_list("Modified", "📝", self.files["modified"], MODIFIED_SHOWN))
        if self.files["untracked"]:
            lines.extend(_file_list("Untracked", "❓", self.files["untracked"], UNTRACKED_SHOWN))
        if self.files["conflicts"]:
            lines.append(f"⚠️  Conflicts: {len(self.files['conflicts'])} files")
            lines.extend(f"   {f}" for f in self.files["conflicts"])
        if exit_code == 0 and not any(self.files.values()):
            lines.append("Clean working tree")
        return lines


class GitDiffAdapter(LineAdapter):
    """Compact unified diffs from `git diff` and `git show`.

    Each file gets its name, hunk headers, at most HUNK_LINES_SHOWN changed
    lines per hunk and a `+added -removed` tally. For `git show` the commit
    header collapses to one line.
    """

    name = "git.diff"
    failure_pattern = GIT_FAILURE

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self.stat_mode = any(a in STAT_FLAGS for a in self.args)
        self._out: List[str] = []
        self._truncated = False
        self._file: Optional[str] = None
        self._added = 0
        self._removed = 0
        self._in_hunk = False
        self._hunk_shown = 0
        self._files = 0
        self._total_added = 0
        self._total_removed = 0
        self._commit: Optional[str] = None
        self._author: Optional[str] = None
        self._subject: Optional[str] = None

    def _emit(self, line: str) -> None:
        if len(self._out) >= self.max_lines:
            self._truncated = True
            return
        self._out.append(line)

    def _close_file(self) -> None:
        if self._file is not None and (self._added or self._removed):
            self._emit(f"  +{self._added} -{self._removed}")
        self._total_added += self._added
        self._total_removed += self._removed
        self._added = self._removed = 0

    def on_line(self, line: str, stream: Stream) -> None:
        if self.stat_mode:
            if line.strip():
                self._emit(line)
            return

        if line.startswith("commit ") and self._file is None:
            self._commit = line.split()[1][:7]
            return
        if line.startswith("Author:") and self._file is None:
            self._author = line[len("Author:"):].split("<")[0].strip()
            return
        if self._commit and self._subject is None and self._file is None and line.startswith("    "):
            self._subject = line.strip()
            self._emit(f"{self._commit} {self._subject} ({self._author or '?'})")
            return

        if line.startswith("diff --git"):
            self._close_file()
            parts = line.split(" b/", 1)
            self._file = parts[1] if len(parts) == 2 else "unknown"
            self._files += 1
            self._in_hunk = False
            self._emit(f"📄 {self._file}")
        elif line.startswith("Binary files"):
            self._emit(f"  {line}")
        elif line.startswith("@@"):
            self._in_hunk = True
            self._hunk_shown = 0
            parts = line.split("@@")
            self._emit(f"  @@ {parts[1].strip()} @@" if len(parts) > 1 else f"  {line}")
        elif self._in_hunk:
            self._on_hunk_line(line)

    def _on_hunk_line(self, line: str) -> None:
        if line.startswith("+") and not line.startswith("+++"):
            self._added += 1
        elif line.startswith("-") and not line.startswith("---"):
            self._removed += 1
        else:
            return
        if self._hunk_shown < HUNK_LINES_SHOWN:
            self._emit(f"  {line}")
        elif self._hunk_shown == HUNK_LINES_SHOWN:
            self._emit("  ... (truncated)")
        self._hunk_shown += 1

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        if self.stat_mode:
            return self._out
        self._close_file()
        lines = list(self._out)
        if self._truncated:
            lines.append("... (more changes truncated)")
        if self._files:
            lines.append(
                f"{self._files} files changed, +{self._total_added} -{self._total_removed}"
            )
        elif self.saw_output and self._commit is None:
            # --check, --word-diff=porcelain and friends
            raise AdapterParseFailure("no diff headers recognised")
        elif exit_code == 0 and self._commit is None:
            lines.append("No changes")
        return lines


class GitLogAdapter(LineAdapter):
    """One line per commit: `hash subject (author)`."""

    name = "git.log"
    failure_pattern = re.compile(r"^(fatal|error):")

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self.limited = any(
            re.fullmatch(r"-\d+|-n\d*|--max-count(=\d+)?", a) for a in self.args
        )
        self.commits: List[str] = []
        self._oneline: List[str] = []
        self._hash: Optional[str] = None
        self._author: Optional[str] = None
        self._subject: Optional[str] = None

    def _close_commit(self) -> None:
        if self._hash is not None:
            self.commits.append(
                f"{self._hash} {self._subject or ''} ({self._author or '?'})".replace("  ", " ")
            )
        self._hash = self._author = self._subject = None

    def on_line(self, line: str, stream: Stream) -> None:
        match = re.match(r"^commit ([0-9a-f]{7,40})", line)
        if match:
            self._close_commit()
            self._hash = match.group(1)[:7]
        elif self._hash is None:
            if line.strip():
                self._oneline.append(line)
        elif line.startswith("Author:"):
            self._author = line[len("Author:"):].split("<")[0].strip()
        elif self._subject is None and line.startswith("    ") and line.strip():
            self._subject = line.strip()

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        self._close_commit()
        entries = self.commits or self._oneline
        if self.limited or len(entries) <= LOG_COMMITS_SHOWN:
            return entries
        shown = entries[:LOG_COMMITS_SHOWN]
        shown.append(f"... +{len(entries) - LOG_COMMITS_SHOWN} more commits")
        return shown


class GitBranchAdapter(LineAdapter):
    """Current, local and remote-only branches; action flags collapse to ok."""

    name = "git.branch"
    failure_pattern = GIT_FAILURE

    ACTION_FLAGS = {"-d", "-D", "-m", "-M", "-c", "-C", "--delete", "--move", "--copy"}

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self.action = any(a in self.ACTION_FLAGS for a in self.args)
        self.current: Optional[str] = None
        self.local: List[str] = []
        self.remote: List[str] = []

    def on_line(self, line: str, stream: Stream) -> None:
        if self.action:
            return
        text = line.strip()
        if not text or stream is Stream.STDERR:
            return
        if text.startswith("* "):
            self.current = text[2:]
        elif text.startswith("remotes/"):
            branch = text.split("/", 2)[-1]
            if " -> " not in branch:
                self.remote.append(branch)
        else:
            self.local.append(text)

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        if self.action:
            return ["ok ✓"] if exit_code == 0 else ["FAILED: git branch"]
        lines = []
        if self.current:
            lines.append(f"* {self.current}")
        lines.extend(f"  {b}" for b in self.local)
        known = set(self.local) | {self.current}
        remote_only = [b for b in self.remote if b not in known]
        if remote_only:
            lines.append(f"  remote-only ({len(remote_only)}):")
            lines.extend(f"    {b}" for b in remote_only[:REMOTE_BRANCHES_SHOWN])
            if len(remote_only) > REMOTE_BRANCHES_SHOWN:
                lines.append(f"    ... +{len(remote_only) - REMOTE_BRANCHES_SHOWN} more")
        return lines


class _GitWriteAdapter(LineAdapter):
    """Shared shape of add/commit/push/pull/fetch: one status line."""

    failure_pattern = GIT_FAILURE
    verb = ""

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self.lines: List[str] = []

    def on_line(self, line: str, stream: Stream) -> None:
        if line.strip():
            self.lines.append(line.strip())

    def success_line(self) -> str:
        return "ok ✓"

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        if exit_code == 0:
            return [self.success_line()]
        return [f"FAILED: git {self.verb}"]


class GitAddAdapter(_GitWriteAdapter):
    name = "git.add"
    verb = "add"


class GitCommitAdapter(_GitWriteAdapter):
    name = "git.commit"
    verb = "commit"

    def success_line(self) -> str:
        for line in self.lines:
            match = re.match(r"^\[(\S+)(?: \(root-commit\))? ([0-9a-f]{7,40})\]", line)
            if match:
                return f"ok ✓ {match.group(2)[:7]}"
        return "ok ✓"

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        if any("nothing to commit" in line for line in self.lines):
            return ["ok (nothing to commit)"]
        return super().summarize(exit_code)


class GitPushAdapter(_GitWriteAdapter):
    name = "git.push"
    verb = "push"

    def success_line(self) -> str:
        if any("Everything up-to-date" in line for line in self.lines):
            return "ok (up-to-date)"
        for line in self.lines:
            if "->" in line:
                return f"ok ✓ {line.split()[-1]}"
        return "ok ✓"


class GitPullAdapter(_GitWriteAdapter):
    name = "git.pull"
    verb = "pull"

    _STAT = re.compile(
        r"(\d+) files? changed(?:, (\d+) insertions?\(\+\))?(?:, (\d+) deletions?\(-\))?"
    )

    def success_line(self) -> str:
        if any("Already up to date" in l or "Already up-to-date" in l for l in self.lines):
            return "ok (up-to-date)"
        for line in self.lines:
            match = self._STAT.search(line)
            if match:
                files, added, removed = (int(g or 0) for g in match.groups())
                return f"ok ✓ {files} files +{added} -{removed}"
        return "ok ✓"


class GitFetchAdapter(_GitWriteAdapter):
    name = "git.fetch"
    verb = "fetch"

    def success_line(self) -> str:
        new_refs = sum(1 for line in self.lines if "->" in line or "[new" in line)
        if new_refs:
            return f"ok fetched ({new_refs} new refs)"
        return "ok fetched"
