"""
pnpm output compaction: list, outdated and install.
"""

import re
from typing import List, Optional

from .base import AdapterParseFailure, FilterAdapter, LineAdapter, Stream

PNPM_FAILURE = re.compile(r"\bERR_PNPM_|\bERR!|^\s*ERROR\b|\berror\b")

_BOX = re.compile(r"[│├└┌┐┘┬┴┼─]")


class PnpmListAdapter(FilterAdapter):
    """`pnpm list`: the package tree without box drawing or store paths."""

    name = "pnpm.list"
    failure_pattern = PNPM_FAILURE
    skip_pattern = re.compile(r"[│├└┌┐]|^Legend:|node_modules/\.pnpm/")

    def on_line(self, line: str, stream: Stream) -> None:
        super().on_line(line.strip(), stream)


class PnpmOutdatedAdapter(LineAdapter):
    """`pnpm outdated`: one `package: current → latest` line per upgrade.

    pnpm exits 1 when anything is outdated, so a non-zero exit alone does
    not mean the listing failed.
    """

    name = "pnpm.outdated"
    failure_pattern = PNPM_FAILURE

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self.upgrades: List[str] = []
        self._table = False

    def on_line(self, line: str, stream: Stream) -> None:
        # Rows arrive either as a boxed table or as plain columns
        cells = [c.strip() for c in line.split("│")] if "│" in line else line.split()
        cells = [c for c in cells if c]
        if not cells:
            return
        if _BOX.search(line.replace("│", "")) or line.startswith(("Legend:", "Package")) or cells[0] == "Package":
            self._table = True
            return
        if len(cells) < 4:
            return
        package, current, latest = cells[0].split()[0], cells[1], cells[3]
        if current != latest:
            self.upgrades.append(f"{package}: {current} → {latest}")

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        if self.saw_output and not (self.upgrades or self._table):
            raise AdapterParseFailure("no pnpm outdated table recognised")
        if not self.upgrades and exit_code in (0, 1):
            return ["ok ✓ All packages up to date"]
        return self.upgrades


class PnpmInstallAdapter(LineAdapter):
    """`pnpm install` / `pnpm add`: drop progress, keep errors and the summary."""

    name = "pnpm.install"
    failure_pattern = PNPM_FAILURE

    _SUMMARY = re.compile(r"packages in|dependencies|^\+|^-|^Done in")

    def __init__(self, args=(), max_lines=None):
        super().__init__(args, max_lines)
        self.kept: List[str] = []
        self.recognised = 0

    def on_line(self, line: str, stream: Stream) -> None:
        if not line.strip():
            return
        if "Progress" in line or "│" in line or "%" in line:
            self.recognised += 1
            return
        if "ERR" in line or "error" in line.lower():
            self.kept.append(line)
        elif self._SUMMARY.search(line.strip()):
            self.recognised += 1
            if len(self.kept) < self.max_lines:
                self.kept.append(line.strip())

    def summarize(self, exit_code: Optional[int]) -> List[str]:
        if self.saw_output and not (self.kept or self.recognised):
            raise AdapterParseFailure("no pnpm install output recognised")
        if not self.kept and exit_code == 0:
            return ["ok ✓"]
        return self.kept
