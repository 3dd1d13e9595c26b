"""
Adapter registry: command signature to adapter factory.

A signature is a program name plus a subcommand path, e.g. ("gh", ("pr",
"list")). Resolution picks the longest registered path that prefixes the
command's positional arguments; equal lengths go to whichever was registered
first. Anything unmatched runs through the passthrough adapter.
"""

import logging
import os
from dataclasses import dataclass
from functools import partial
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from . import deno, docker, gh, git, nx, pnpm, pytest_adapter, supabase
from .base import Adapter, PassthroughAdapter

logger = logging.getLogger(__name__)

AdapterFactory = Callable[..., Adapter]


@dataclass(frozen=True)
class AdapterEntry:
    """One registered signature."""
    program: str
    path: Tuple[str, ...]
    factory: AdapterFactory
    name: str

    @property
    def signature(self) -> str:
        return " ".join((self.program,) + self.path)


@dataclass(frozen=True)
class AdapterSpec:
    """Result of resolving a command line.

    tool_id identifies the invocation in the usage store: the program plus
    the matched subcommand path, or plus the first positional argument when
    nothing matched.
    """
    name: str
    tool_id: str
    factory: AdapterFactory
    max_lines: Optional[int] = None

    @property
    def is_passthrough(self) -> bool:
        return self.factory is PassthroughAdapter

    def create(self, args: Sequence[str]) -> Adapter:
        return self.factory(args, max_lines=self.max_lines)


def command_path(args: Sequence[str]) -> List[str]:
    """Arguments used for path matching: everything after the leading flags."""
    for index, arg in enumerate(args):
        if not arg.startswith("-"):
            return list(args[index:])
    return []


class AdapterRegistry:
    """Ordered collection of adapter registrations."""

    def __init__(self, disabled: Iterable[str] = (), max_lines: Optional[int] = None):
        self._entries: List[AdapterEntry] = []
        self.disabled = frozenset(disabled)
        self.max_lines = max_lines

    def register(
        self,
        program: str,
        path: Sequence[str],
        factory: AdapterFactory,
        name: Optional[str] = None,
    ) -> AdapterEntry:
        """Register a factory for `program path...`.

        Args:
            program: Executable basename, e.g. "git"
            path: Subcommand path; empty matches every invocation of program
            factory: Called as factory(args, max_lines=...) per invocation
            name: Name used in listings and the disable list

        Returns:
            The stored entry
        """
        if not program or os.sep in program:
            raise ValueError(f"program must be a bare executable name: {program!r}")
        entry = AdapterEntry(
            program=program,
            path=tuple(path),
            factory=factory,
            name=name or getattr(factory, "name", program),
        )
        self._entries.append(entry)
        return entry

    def entries(self) -> List[AdapterEntry]:
        return list(self._entries)

    def is_disabled(self, entry: AdapterEntry) -> bool:
        return entry.name in self.disabled or entry.program in self.disabled

    def match(self, command_name: str, args: Sequence[str]) -> Optional[AdapterEntry]:
        program = os.path.basename(command_name)
        path = command_path(args)
        best: Optional[AdapterEntry] = None
        for entry in self._entries:
            if entry.program != program or self.is_disabled(entry):
                continue
            if tuple(path[: len(entry.path)]) != entry.path:
                continue
            if best is None or len(entry.path) > len(best.path):
                best = entry
        return best

    def resolve(self, command_name: str, args: Sequence[str]) -> AdapterSpec:
        entry = self.match(command_name, args)
        program = os.path.basename(command_name)
        if entry is None:
            path = command_path(args)
            tool_id = " ".join([program] + path[:1])
            logger.debug("no adapter for %s, using passthrough", tool_id)
            return AdapterSpec(PassthroughAdapter.name, tool_id, PassthroughAdapter)
        logger.debug("resolved %s to %s", entry.signature, entry.name)
        return AdapterSpec(entry.name, entry.signature, entry.factory, self.max_lines)


def build_default_registry(disabled: Iterable[str] = (), max_lines: Optional[int] = None) -> AdapterRegistry:
    """Registry with every built-in tool family."""
    registry = AdapterRegistry(disabled=disabled, max_lines=max_lines)

    registry.register("git", ("status",), git.GitStatusAdapter)
    registry.register("git", ("diff",), git.GitDiffAdapter)
    registry.register("git", ("show",), git.GitDiffAdapter, name="git.show")
    registry.register("git", ("log",), git.GitLogAdapter)
    registry.register("git", ("branch",), git.GitBranchAdapter)
    registry.register("git", ("add",), git.GitAddAdapter)
    registry.register("git", ("commit",), git.GitCommitAdapter)
    registry.register("git", ("push",), git.GitPushAdapter)
    registry.register("git", ("pull",), git.GitPullAdapter)
    registry.register("git", ("fetch",), git.GitFetchAdapter)

    registry.register("gh", ("pr", "checks"), gh.GhChecksAdapter)
    registry.register("gh", ("pr", "list"), partial(gh.GhListAdapter, kind="pr"), name="gh.pr.list")
    registry.register("gh", ("issue", "list"), partial(gh.GhListAdapter, kind="issue"), name="gh.issue.list")
    registry.register("gh", ("run", "list"), partial(gh.GhListAdapter, kind="run"), name="gh.run.list")
    registry.register("gh", ("pr", "view"), gh.GhViewAdapter, name="gh.pr.view")
    registry.register("gh", ("issue", "view"), gh.GhViewAdapter, name="gh.issue.view")

    registry.register("deno", ("test",), deno.DenoTestAdapter)
    registry.register("deno", ("lint",), deno.DenoLintAdapter)
    registry.register("deno", ("check",), deno.DenoCheckAdapter)
    registry.register("deno", ("fmt",), deno.DenoFmtAdapter)
    registry.register("deno", ("task",), deno.DenoRunAdapter, name="deno.task")
    registry.register("deno", ("run",), deno.DenoRunAdapter)

    registry.register("nx", (), nx.NxAdapter)
    registry.register("npx", ("nx",), nx.NxAdapter, name="npx.nx")

    registry.register("pnpm", ("list",), pnpm.PnpmListAdapter)
    registry.register("pnpm", ("ls",), pnpm.PnpmListAdapter, name="pnpm.ls")
    registry.register("pnpm", ("outdated",), pnpm.PnpmOutdatedAdapter)
    registry.register("pnpm", ("install",), pnpm.PnpmInstallAdapter)
    registry.register("pnpm", ("add",), pnpm.PnpmInstallAdapter, name="pnpm.add")

    registry.register("supabase", ("start",), supabase.SupabaseStartAdapter)
    registry.register("supabase", ("stop",), supabase.SupabaseStopAdapter)
    registry.register("supabase", ("status",), supabase.SupabaseStatusAdapter)
    registry.register("supabase", ("db", "push"), supabase.SupabaseDbPushAdapter)
    registry.register("supabase", ("db", "reset"), supabase.SupabaseDbResetAdapter)
    registry.register("supabase", ("db", "lint"), supabase.SupabaseDbLintAdapter)
    registry.register("supabase", ("db", "diff"), supabase.SupabaseDbDiffAdapter)
    registry.register("supabase", ("migration", "list"), supabase.SupabaseMigrationListAdapter)
    registry.register("supabase", ("migration", "new"), supabase.SupabaseMigrationNewAdapter)
    registry.register("supabase", ("migration", "up"), supabase.SupabaseMigrationUpAdapter)
    registry.register("supabase", ("migration", "repair"), supabase.SupabaseMigrationRepairAdapter)
    registry.register("supabase", ("functions", "deploy"), supabase.SupabaseFunctionsDeployAdapter)
    registry.register("supabase", ("functions", "serve"), supabase.SupabaseFunctionsServeAdapter)
    registry.register("supabase", ("link",), supabase.SupabaseLinkAdapter)
    registry.register("supabase", ("secrets",), supabase.SupabaseSecretsAdapter)

    registry.register("pytest", (), pytest_adapter.PytestAdapter)

    registry.register("docker", ("build",), docker.DockerBuildAdapter)
    registry.register("docker", ("pull",), docker.DockerPullAdapter)
    registry.register("docker", ("ps",), docker.DockerPsAdapter)

    return registry
