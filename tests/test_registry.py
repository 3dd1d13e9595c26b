"""
Unit tests for adapter resolution.
"""

import pytest

from tokentrim.adapters.base import PassthroughAdapter
from tokentrim.adapters.gh import GhListAdapter
from tokentrim.adapters.git import GitDiffAdapter, GitStatusAdapter
from tokentrim.adapters.nx import NxAdapter
from tokentrim.adapters.registry import AdapterRegistry, build_default_registry, command_path


class FirstAdapter(PassthroughAdapter):
    name = "first"


class SecondAdapter(PassthroughAdapter):
    name = "second"


class TestCommandPath:
    """Test positional path extraction."""

    def test_leading_flags_skipped(self):
        assert command_path(["-C", "repo", "status"]) == ["repo", "status"]
        assert command_path(["--no-pager", "log", "-5"]) == ["log", "-5"]

    def test_only_flags(self):
        assert command_path(["--version"]) == []


class TestAdapterRegistry:
    """Test matching rules."""

    def test_longest_prefix_wins(self):
        registry = AdapterRegistry()
        registry.register("tool", ("a",), FirstAdapter)
        registry.register("tool", ("a", "b"), SecondAdapter)

        assert registry.resolve("tool", ["a", "b", "c"]).name == "second"
        assert registry.resolve("tool", ["a", "x"]).name == "first"

    def test_tie_goes_to_first_registration(self):
        registry = AdapterRegistry()
        registry.register("tool", ("a",), FirstAdapter)
        registry.register("tool", ("a",), SecondAdapter)

        assert registry.resolve("tool", ["a"]).name == "first"

    def test_program_matched_by_basename(self):
        registry = AdapterRegistry()
        registry.register("tool", (), FirstAdapter)

        spec = registry.resolve("/usr/local/bin/tool", ["anything"])
        assert spec.name == "first"
        assert spec.tool_id == "tool"

    def test_program_must_be_bare_name(self):
        with pytest.raises(ValueError):
            AdapterRegistry().register("/usr/bin/git", ("status",), GitStatusAdapter)

    def test_unmatched_is_passthrough(self):
        spec = AdapterRegistry().resolve("make", ["-j4", "build", "all"])

        assert spec.is_passthrough
        assert spec.tool_id == "make build"
        assert isinstance(spec.create(["build"]), PassthroughAdapter)

    def test_disabled_by_name_or_program(self):
        registry = AdapterRegistry(disabled=["second"])
        registry.register("tool", ("a",), FirstAdapter)
        registry.register("tool", ("a", "b"), SecondAdapter)
        assert registry.resolve("tool", ["a", "b"]).name == "first"

        registry = AdapterRegistry(disabled=["tool"])
        registry.register("tool", ("a",), FirstAdapter)
        assert registry.resolve("tool", ["a"]).is_passthrough

    def test_max_lines_reaches_adapter(self):
        registry = AdapterRegistry(max_lines=7)
        registry.register("git", ("diff",), GitDiffAdapter)

        adapter = registry.resolve("git", ["diff"]).create(["diff"])
        assert adapter.max_lines == 7


class TestDefaultRegistry:
    """Test the built-in registrations."""

    @pytest.fixture
    def registry(self):
        return build_default_registry()

    def test_git_subcommands(self, registry):
        assert registry.resolve("git", ["status", "-s"]).name == "git.status"
        assert registry.resolve("git", ["show", "HEAD"]).name == "git.show"
        assert registry.resolve("git", ["show", "HEAD"]).tool_id == "git show"

    def test_gh_two_level_paths(self, registry):
        spec = registry.resolve("gh", ["issue", "list", "--limit", "5"])
        adapter = spec.create(["issue", "list"])

        assert spec.tool_id == "gh issue list"
        assert isinstance(adapter, GhListAdapter)
        assert adapter.kind == "issue"

    def test_nx_direct_and_through_npx(self, registry):
        assert isinstance(registry.resolve("nx", ["build", "app"]).create(["build", "app"]), NxAdapter)
        assert registry.resolve("npx", ["nx", "test"]).name == "npx.nx"
        assert registry.resolve("npx", ["eslint", "."]).is_passthrough

    def test_unknown_subcommand_passthrough(self, registry):
        spec = registry.resolve("git", ["stash", "list"])
        assert spec.is_passthrough
        assert spec.tool_id == "git stash"

    def test_supabase_gen_is_passthrough(self, registry):
        assert registry.resolve("supabase", ["gen", "types", "typescript"]).is_passthrough

    def test_every_entry_has_unique_name(self, registry):
        names = [entry.name for entry in registry.entries()]
        assert len(names) == len(set(names))
