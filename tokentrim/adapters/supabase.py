"""
Supabase CLI output compaction.

Most supabase subcommands print container or migration progress followed by
a one-line result, so the majority of adapters here are line filters with a
subcommand-specific keep pattern. `start`, `status` and `migration list`
need a little more structure.
"""

import re
from typing import List, Optional

from .base import AdapterParseFailure, FilterAdapter, LineAdapter, Stream

SUPABASE_FAILURE = re.compile(r"\bERROR\b|\bError\b|\bFailed\b|\bfailed to\b")

KEY_PREFIX_CHARS = 20
MIGRATIONS_SHOWN = 5
MIGRATION_LIST_LIMIT = 10


class SupabaseStartAdapter(LineAdapter):
    """`supabase start`: service URLs and shortened keys only."""

    name = "supabase.start"
    failure_pattern = SUPABASE_FAILURE

    _SKIP = re.compile(r"Starting container|Container|Seeding data|Loading\.\.\.|Applying migration")
    _KEEP = re.compile(r"Started supabase|API URL:|DB URL:|Studio URL:|anon key:|service_role key:")
    _KEY = re.compile(r"^(\s*(?:anon|service_role) key):\s*(\S*)")

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self.kept: List[str] = []
        self.recognised = 0

    def on_line(self, line: str, stream: Stream) -> None:
        if self._SKIP.search(line):
            self.recognised += 1
            return
        if not self._KEEP.search(line):
            return
        self.recognised += 1
        key = self._KEY.match(line)
        if key:
            line = f"{key.group(1)}: {key.group(2)[:KEY_PREFIX_CHARS]}..."
        self.kept.append(line)

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        if self.saw_output and not self.recognised:
            raise AdapterParseFailure("no supabase start output recognised")
        if not self.kept and exit_code == 0:
            return ["ok ✓ Supabase started"]
        return self.kept


class SupabaseStatusAdapter(LineAdapter):
    """`supabase status`: the service table without separators."""

    name = "supabase.status"
    failure_pattern = SUPABASE_FAILURE

    _HEADER = re.compile(r"SERVICE|RUNNING|API URL|DB URL")

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self.kept: List[str] = []
        self._in_table = False

    def on_line(self, line: str, stream: Stream) -> None:
        if not line.strip() or set(line) <= {"-", " "}:
            return
        if self._HEADER.search(line):
            self.kept.append(line)
            self._in_table = True
        elif self._in_table and "│" in line:
            self.kept.append(line)

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        if self.saw_output and not self.kept:
            raise AdapterParseFailure("no service table in supabase status output")
        if not self.kept and exit_code == 0:
            return ["No services running"]
        return self.kept


class SupabaseMigrationListAdapter(LineAdapter):
    """`supabase migration list`: migration names plus applied/pending counts."""

    name = "supabase.migration.list"
    failure_pattern = SUPABASE_FAILURE

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self.names: List[str] = []
        self.applied = 0
        self.pending = 0

    def on_line(self, line: str, stream: Stream) -> None:
        if not line.strip() or set(line) <= {"-", "=", " "}:
            return
        if "local" in line or "pending" in line:
            self.pending += 1
        elif "applied" in line:
            self.applied += 1
        if ".sql" in line or line.startswith("20"):
            self.names.append(line.split()[0])

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        counts = f"Migrations: {self.applied} applied, {self.pending} pending"
        if not self.names:
            if self.applied or self.pending:
                return [counts]
            if self.saw_output:
                raise AdapterParseFailure("no migration rows recognised")
            return ["No migrations found"] if exit_code == 0 else []
        if len(self.names) > MIGRATION_LIST_LIMIT:
            return self.names[:MIGRATIONS_SHOWN] + [
                f"{len(self.names)} total migrations ({MIGRATIONS_SHOWN} shown)"
            ]
        return self.names + [counts]


class _SupabaseFilter(FilterAdapter):
    failure_pattern = SUPABASE_FAILURE


class SupabaseStopAdapter(_SupabaseFilter):
    name = "supabase.stop"
    skip_pattern = re.compile(r"^Stopping containers")
    keep_pattern = re.compile(r"Stopped supabase|stopped|ERROR|Error")
    empty_message = "ok ✓ Supabase stopped"


class SupabaseDbPushAdapter(_SupabaseFilter):
    name = "supabase.db.push"
    skip_pattern = re.compile(r"Applying migration")
    keep_pattern = re.compile(r"Applied|Finished|ERROR|Warning")
    empty_message = "ok ✓ Database up to date"


class SupabaseDbResetAdapter(_SupabaseFilter):
    name = "supabase.db.reset"
    keep_pattern = re.compile(r"Finished|Reset|ERROR")
    empty_message = "ok ✓ Database reset"


class SupabaseDbLintAdapter(_SupabaseFilter):
    name = "supabase.db.lint"
    skip_pattern = re.compile(r"^Linting schema|^No schema errors found")
    keep_pattern = re.compile(r"ERROR|Warning|issue")
    empty_message = "ok ✓ No schema issues"


class SupabaseDbDiffAdapter(_SupabaseFilter):
    name = "supabase.db.diff"
    skip_pattern = re.compile(r"^(Connecting to|Creating shadow database|Initialising schema|Applying migration|Diffing schemas)|^No schema changes found")
    keep_pattern = re.compile(r"^(CREATE|ALTER|DROP|--)|ERROR")
    empty_message = "No schema changes"


class SupabaseMigrationNewAdapter(_SupabaseFilter):
    name = "supabase.migration.new"
    keep_pattern = re.compile(r"[Cc]reated|ERROR|Error")


class SupabaseMigrationUpAdapter(_SupabaseFilter):
    name = "supabase.migration.up"
    skip_pattern = re.compile(r"Applying|Running")
    keep_pattern = re.compile(r"Applied|Finished|ERROR|Error")
    empty_message = "ok ✓ Migrations up to date"


class SupabaseMigrationRepairAdapter(_SupabaseFilter):
    name = "supabase.migration.repair"
    keep_pattern = re.compile(r"[Rr]epaired|Fixed|ERROR|Error")


class SupabaseFunctionsDeployAdapter(_SupabaseFilter):
    name = "supabase.functions.deploy"
    keep_pattern = re.compile(r"Deploying|Deployed|✓|ERROR|Failed")


class SupabaseFunctionsServeAdapter(_SupabaseFilter):
    name = "supabase.functions.serve"
    keep_pattern = re.compile(r"Serving functions|Functions:|ERROR|Failed")


class SupabaseLinkAdapter(_SupabaseFilter):
    name = "supabase.link"
    keep_pattern = re.compile(r"Linked|linked to|ERROR|Error")


class SupabaseSecretsAdapter(_SupabaseFilter):
    name = "supabase.secrets"
    keep_pattern = re.compile(r"Set secret|Updated|ERROR|^\s*NAME|^\s*\S+\s+│")
