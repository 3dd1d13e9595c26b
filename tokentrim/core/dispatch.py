"""
Invocation dispatch: resolve, run, print, record.

The dispatcher never changes what the wrapped tool means to the caller. The
exit code is the tool's own, unless the tool did not exit on its own, and
the full output stays recoverable through the tee file when something went
wrong.
"""

import logging
import re
import shlex
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Sequence, TextIO

from tokentrim.adapters.base import PassthroughAdapter
from tokentrim.adapters.registry import AdapterRegistry
from tokentrim.runner.process import AbnormalTermination, ProcessRunner, RunOutcome, ToolNotFound
from tokentrim.storage.models import InvocationRecord
from tokentrim.storage.repository import StoreWriteFailure, UsageStore

logger = logging.getLogger(__name__)

EXIT_CODE_ABNORMAL = 125
EXIT_CODE_INTERRUPTED = 130

TEE_MODES = ("failures", "always", "never")
DEFAULT_TEE_DIR = Path.home() / ".local" / "share" / "tokentrim" / "tee"
TEE_MAX_FILES = 20


class RawOutputTee:
    """Writes full transcripts to disk so compacted output stays recoverable."""

    def __init__(self, directory=None, mode: str = "failures", max_files: int = TEE_MAX_FILES):
        if mode not in TEE_MODES:
            raise ValueError(f"tee mode must be one of: {list(TEE_MODES)}")
        self.directory = Path(directory).expanduser() if directory else DEFAULT_TEE_DIR
        self.mode = mode
        self.max_files = max_files

    def wants(self, outcome: RunOutcome) -> bool:
        if self.mode == "always":
            return True
        return self.mode == "failures" and not outcome.success

    def save(self, outcome: RunOutcome, tool_id: str, when: datetime) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        slug = re.sub(r"[^A-Za-z0-9._-]+", "_", tool_id).strip("_") or "output"
        path = self.directory / f"{when:%Y%m%d-%H%M%S-%f}_{slug}.log"
        path.write_text(outcome.transcript, encoding="utf-8")
        self._rotate()
        return path

    def _rotate(self) -> None:
        files = sorted(self.directory.glob("*.log"))
        for stale in files[: max(len(files) - self.max_files, 0)]:
            stale.unlink()


@dataclass(frozen=True)
class DispatchResult:
    exit_code: int
    outcome: Optional[RunOutcome] = None
    record: Optional[InvocationRecord] = None
    tee_path: Optional[Path] = None


class Dispatcher:
    """Runs one wrapped command end to end.

    Args:
        registry: Resolves the command to an adapter
        store: Usage store the invocation is recorded in
        timeout: Seconds before the wrapped tool is killed, None for no limit
        tee: Where transcripts of failed runs go, None to keep nothing
        out: Stream the summary is written to
        err: Stream for tokentrim's own diagnostics
        clock: Source of record timestamps
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        store: UsageStore,
        timeout: Optional[float] = None,
        tee: Optional[RawOutputTee] = None,
        out: Optional[TextIO] = None,
        err: Optional[TextIO] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.registry = registry
        self.store = store
        self.timeout = timeout
        self.tee = tee
        self.out = out or sys.stdout
        self.err = err or sys.stderr
        self.clock = clock

    def dispatch(self, argv: Sequence[str], raw: bool = False) -> DispatchResult:
        """Run argv through its adapter and return the exit code to use.

        Args:
            argv: Program followed by its arguments
            raw: Skip compaction and show the tool's output unchanged
        """
        if not argv:
            raise ValueError("no command given")
        command, args = argv[0], list(argv[1:])
        spec = self.registry.resolve(command, args)
        adapter = PassthroughAdapter(args) if raw else spec.create(args)
        live = adapter.streams_live
        runner = ProcessRunner(timeout=self.timeout, echo=live, out=self.out, err=self.err)
        logger.info("dispatching %s via %s", spec.tool_id, adapter.name)

        abnormal: Optional[AbnormalTermination] = None
        try:
            outcome = runner.run(argv, adapter)
            exit_code = outcome.exit_code
        except ToolNotFound as e:
            self._warn(str(e))
            return DispatchResult(exit_code=e.exit_code)
        except AbnormalTermination as e:
            abnormal = e
            outcome = e.outcome
            exit_code = EXIT_CODE_INTERRUPTED if e.reason == "interrupted" else EXIT_CODE_ABNORMAL

        if not live:
            self._print_summary(outcome)
        if abnormal is not None:
            self._warn(f"{spec.tool_id}: {abnormal}")
        if outcome.result.degraded:
            logger.info("%s output was not recognised, shown unchanged", spec.tool_id)

        now = self.clock()
        tee_path = None
        if self.tee is not None and not live and self.tee.wants(outcome):
            try:
                tee_path = self.tee.save(outcome, spec.tool_id, now)
                self.out.write(f"[full output: {tee_path}]\n")
            except OSError as e:
                logger.warning("could not save full output: %s", e)

        record = self._record(spec.tool_id, argv, outcome, now)
        return DispatchResult(exit_code=exit_code, outcome=outcome, record=record, tee_path=tee_path)

    def _print_summary(self, outcome: RunOutcome) -> None:
        lines = outcome.result.summary_lines
        if lines:
            self.out.write("\n".join(lines) + "\n")
            self.out.flush()

    def _record(
        self, tool_id: str, argv: Sequence[str], outcome: RunOutcome, when: datetime
    ) -> Optional[InvocationRecord]:
        result = outcome.result
        raw_units = result.estimated_input_units
        record = InvocationRecord(
            timestamp=when,
            tool_id=tool_id,
            raw_unit_count=raw_units,
            compacted_unit_count=min(result.estimated_output_units, raw_units),
            success=outcome.success,
            command=shlex.join(argv),
            exec_time_ms=outcome.elapsed_ms,
        )
        try:
            return self.store.append(record)
        except StoreWriteFailure as e:
            logger.warning("%s", e)
            self._warn("accounting unavailable")
            return None

    def _warn(self, message: str) -> None:
        self.err.write(f"tokentrim: {message}\n")
        self.err.flush()
