"""
Child process execution with incremental output relay.

The wrapped tool runs with the caller's stdin and piped stdout/stderr. One
reader thread per pipe pushes raw chunks onto a queue; the calling thread
decodes them and feeds the adapter in arrival order, so each stream keeps
its own ordering even though the two may interleave.
"""

import codecs
import logging
import os
import queue
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

from tokentrim.adapters.base import Adapter, CompactionResult, Stream

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192
# Grace period between terminate() and kill() on interrupt
TERMINATE_GRACE_SECONDS = 2.0
READER_JOIN_SECONDS = 1.0


class ToolNotFound(Exception):
    """The wrapped program could not be executed."""

    def __init__(self, program: str, exit_code: int = 127):
        super().__init__(f"command not found: {program}")
        self.program = program
        self.exit_code = exit_code


@dataclass(frozen=True)
class RunOutcome:
    """Everything the dispatcher needs after one invocation."""
    argv: List[str]
    exit_code: Optional[int]
    result: CompactionResult
    transcript: str
    elapsed_ms: int
    signal: Optional[int] = None
    reason: Optional[str] = None

    @property
    def abnormal(self) -> bool:
        return self.exit_code is None

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class AbnormalTermination(Exception):
    """The child did not exit on its own.

    Raised after the adapter has been finished, so `outcome.result` holds the
    summary of whatever output arrived before the child stopped.
    """

    def __init__(self, outcome: RunOutcome):
        self.outcome = outcome
        self.signal = outcome.signal
        self.reason = outcome.reason
        if outcome.reason == "signal":
            message = f"killed by signal {outcome.signal}"
        else:
            message = outcome.reason or "abnormal termination"
        super().__init__(message)


def _pump(pipe, stream: Stream, chunks: "queue.Queue") -> None:
    try:
        while True:
            data = os.read(pipe.fileno(), CHUNK_SIZE)
            if not data:
                break
            chunks.put((stream, data))
    except OSError as e:
        logger.debug("reader for %s stopped: %s", stream.value, e)
    finally:
        chunks.put((stream, None))
        pipe.close()


class ProcessRunner:
    """Runs one command and relays its output to an adapter.

    Args:
        timeout: Seconds before the child is killed; None waits forever
        echo: Write decoded output to out/err as it arrives
        out: Echo target for stdout, defaults to sys.stdout
        err: Echo target for stderr, defaults to sys.stderr
    """

    def __init__(self, timeout: Optional[float] = None, echo: bool = False, out=None, err=None):
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be > 0")
        self.timeout = timeout
        self.echo = echo
        self.out = out
        self.err = err

    def run(self, argv: Sequence[str], adapter: Adapter) -> RunOutcome:
        """Run argv to completion, feeding adapter.

        Returns:
            RunOutcome of a child that exited on its own

        Raises:
            ToolNotFound: If the program does not exist or is not executable
            AbnormalTermination: On timeout, interrupt or death by signal
        """
        argv = list(argv)
        started = time.monotonic()
        try:
            proc = subprocess.Popen(argv, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except FileNotFoundError as e:
            raise ToolNotFound(argv[0]) from e
        except PermissionError as e:
            raise ToolNotFound(argv[0], exit_code=126) from e
        logger.debug("started %s (pid %s)", argv[0], proc.pid)

        chunks: "queue.Queue" = queue.Queue()
        readers = [
            threading.Thread(target=_pump, args=(proc.stdout, Stream.STDOUT, chunks), daemon=True),
            threading.Thread(target=_pump, args=(proc.stderr, Stream.STDERR, chunks), daemon=True),
        ]
        for reader in readers:
            reader.start()

        decoders = {
            stream: codecs.getincrementaldecoder("utf-8")(errors="replace") for stream in Stream
        }
        transcript: List[str] = []
        deadline = started + self.timeout if self.timeout else None
        reason: Optional[str] = None
        open_streams = len(readers)

        try:
            while open_streams:
                wait = None if deadline is None else deadline - time.monotonic()
                if wait is not None and wait <= 0:
                    reason = "timeout"
                    break
                try:
                    stream, data = chunks.get(timeout=wait)
                except queue.Empty:
                    reason = "timeout"
                    break
                if data is None:
                    open_streams -= 1
                    continue
                self._deliver(adapter, decoders[stream].decode(data), stream, transcript)
        except KeyboardInterrupt:
            reason = "interrupted"

        if reason is not None:
            logger.info("stopping %s: %s", argv[0], reason)
            self._stop(proc, force=reason == "timeout")

        for reader in readers:
            reader.join(READER_JOIN_SECONDS)
        # Output produced before the child stopped still counts
        while True:
            try:
                stream, data = chunks.get_nowait()
            except queue.Empty:
                break
            if data is not None:
                self._deliver(adapter, decoders[stream].decode(data), stream, transcript)
        for stream, decoder in decoders.items():
            self._deliver(adapter, decoder.decode(b"", final=True), stream, transcript)

        returncode = proc.wait()
        signal_number = -returncode if returncode < 0 else None
        if reason is None and signal_number is not None:
            reason = "signal"
        exit_code = None if reason is not None else returncode

        outcome = RunOutcome(
            argv=argv,
            exit_code=exit_code,
            result=adapter.finish(exit_code),
            transcript="".join(transcript),
            elapsed_ms=int((time.monotonic() - started) * 1000),
            signal=signal_number,
            reason=reason,
        )
        if outcome.abnormal:
            raise AbnormalTermination(outcome)
        return outcome

    def _deliver(self, adapter: Adapter, text: str, stream: Stream, transcript: List[str]) -> None:
        if not text:
            return
        transcript.append(text)
        adapter.feed(text, stream)
        if self.echo:
            if stream is Stream.STDOUT:
                target = self.out or sys.stdout
            else:
                target = self.err or sys.stderr
            target.write(text)
            target.flush()

    @staticmethod
    def _stop(proc: subprocess.Popen, force: bool) -> None:
        if proc.poll() is not None:
            return
        if force:
            proc.kill()
            return
        proc.terminate()
        try:
            proc.wait(TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            proc.kill()
