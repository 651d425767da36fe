"""
Process handle for managing one child process of the cluster.
"""

# Kubestrap - Local Single-Node Cluster Bootstrapper
# Copyright (C) 2026 Kubestrap Authors
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Union

from kubestrap.exceptions import ProcessError, ProcessStartError

logger = logging.getLogger(__name__)

# ── Constants ──────────────────────────────────────────────────
OUTPUT_LINE_LIMIT = 1024 * 1024   # 1MB; asyncio defaults to 64KB
OUTPUT_FLUSH_TIMEOUT = 5.0        # max wait for pipes to drain after exit


# ── Events ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class OutputEvent:
    """One line of captured output."""
    stream: str          # "stdout" or "stderr"
    data: bytes


@dataclass(frozen=True)
class ExitEvent:
    """Terminal status of a process. Emitted exactly once per start()."""
    success: bool
    returncode: int | None
    error: str | None = None


ProcessEvent = Union[OutputEvent, ExitEvent]


def classify_exit(returncode: int) -> ExitEvent:
    """Turn a return code into an :class:`ExitEvent`.

    Negative return codes mean the process was terminated by a signal.
    """
    if returncode == 0:
        return ExitEvent(success=True, returncode=0)
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = str(-returncode)
        return ExitEvent(success=False, returncode=returncode, error=f"signal: {name}")
    return ExitEvent(success=False, returncode=returncode, error=f"exit status {returncode}")


# ── Process State ──────────────────────────────────────────────

class ProcessState(Enum):
    """State of a child process."""
    NEW = "new"                # Not started yet
    RUNNING = "running"        # Spawned, not asked to stop
    STOPPING = "stopping"      # SIGTERM sent, exit not yet observed
    EXITED = "exited"          # Exit observed and reported


# ── Process Handle ─────────────────────────────────────────────

class ProcessHandle:
    """
    Handle for a single child process.

    Spawns the process, forwards every line of stdout/stderr as an
    :class:`OutputEvent` on :attr:`events` and finishes with exactly one
    :class:`ExitEvent` once the process is gone and its pipes are drained.
    The queue is unbounded so a slow consumer never holds up exit handling.

    A handle is single-use: create a new one to run the binary again.
    """

    def __init__(
        self,
        name: str,
        binary: Path | str,
        args: Sequence[str] = (),
        workdir: Path | None = None,
        sudo_method: str | None = None,
        capture_stdout: bool = True,
        capture_stderr: bool = True,
        env: dict[str, str] | None = None,
    ):
        self.name = name
        self.binary = str(binary)
        self.args = list(args)
        self.workdir = workdir
        self.sudo_method = sudo_method
        self.capture_stdout = capture_stdout
        self.capture_stderr = capture_stderr
        self.env = env

        self.state = ProcessState.NEW
        self.process: asyncio.subprocess.Process | None = None
        self.exit_status: ExitEvent | None = None
        self.events: asyncio.Queue[ProcessEvent] = asyncio.Queue()
        self._exited = asyncio.Event()
        self._reader_tasks: list[asyncio.Task] = []
        self._exit_task: asyncio.Task | None = None

    @property
    def argv(self) -> list[str]:
        """Full command line, including the privilege-escalation prefix."""
        prefix = [self.sudo_method] if self.sudo_method else []
        return [*prefix, self.binary, *self.args]

    @property
    def is_running(self) -> bool:
        return self.state in (ProcessState.RUNNING, ProcessState.STOPPING)

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process else None

    async def start(self) -> None:
        """
        Spawn the process and return immediately.

        Raises:
            ProcessError: If this handle was already started.
            ProcessStartError: If the binary cannot be located or executed.
                No background task is left behind in that case.
        """
        if self.state is not ProcessState.NEW:
            raise ProcessError(f"Process {self.name} already started (state={self.state.value})")

        argv = self.argv
        logger.info("Starting process: %s", self.name)
        logger.debug("Command: %s", " ".join(argv))

        try:
            self.process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.workdir) if self.workdir else None,
                env=self.env,
                start_new_session=True,
                limit=OUTPUT_LINE_LIMIT,
            )
        except OSError as e:
            raise ProcessStartError(f"Couldn't start {self.name} ({argv[0]}): {e}") from e

        self.state = ProcessState.RUNNING
        logger.info("Process started: %s (PID %s)", self.name, self.process.pid)

        self._reader_tasks = [
            asyncio.create_task(
                self._read_stream(self.process.stdout, "stdout", self.capture_stdout),
                name=f"{self.name}-stdout",
            ),
            asyncio.create_task(
                self._read_stream(self.process.stderr, "stderr", self.capture_stderr),
                name=f"{self.name}-stderr",
            ),
        ]
        self._exit_task = asyncio.create_task(self._wait_for_exit(), name=f"{self.name}-exit")

    async def _read_stream(
        self, stream: asyncio.StreamReader | None, stream_name: str, forward: bool,
    ) -> None:
        """Forward lines from one pipe until EOF.

        A line longer than OUTPUT_LINE_LIMIT is skipped up to and
        including its newline.
        """
        if stream is None:
            return
        skipping = False
        while True:
            try:
                line = await stream.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                # EOF; whatever is left is a final line without newline
                if e.partial and forward and not skipping:
                    self.events.put_nowait(OutputEvent(stream=stream_name, data=e.partial))
                return
            except asyncio.LimitOverrunError as e:
                await stream.readexactly(e.consumed)
                if not skipping:
                    logger.debug("Oversized %s line from %s skipped", stream_name, self.name)
                skipping = True
                continue
            if skipping:
                skipping = False
                continue
            if forward:
                self.events.put_nowait(OutputEvent(stream=stream_name, data=line))

    async def _wait_for_exit(self) -> None:
        """Wait for the process, flush its pipes, then report the exit once."""
        assert self.process is not None
        returncode = await self.process.wait()

        done, pending = await asyncio.wait(self._reader_tasks, timeout=OUTPUT_FLUSH_TIMEOUT)
        for task in pending:
            # A grandchild may still hold the pipe open
            logger.warning("Output of %s not drained after exit, discarding", self.name)
            task.cancel()
        await asyncio.gather(*self._reader_tasks, return_exceptions=True)

        self.exit_status = classify_exit(returncode)
        self.state = ProcessState.EXITED
        if self.exit_status.success:
            logger.info("Process exited: %s (code=0)", self.name)
        else:
            logger.info("Process exited: %s (%s)", self.name, self.exit_status.error)
        self.events.put_nowait(self.exit_status)
        self._exited.set()

    def stop(self) -> None:
        """
        Request termination (SIGTERM) and return without waiting.

        Safe before start(), after exit and when called repeatedly: the
        signal is sent at most once.  The exit event still arrives once
        the process is gone.
        """
        if self.state is not ProcessState.RUNNING:
            logger.debug("Stop ignored for %s (state=%s)", self.name, self.state.value)
            return
        self.state = ProcessState.STOPPING
        logger.info("Stopping process: %s (PID %s)", self.name, self.pid)
        self._send_signal(signal.SIGTERM)

    def kill(self) -> None:
        """Force kill the process with SIGKILL."""
        if not self.is_running:
            return
        self.state = ProcessState.STOPPING
        logger.warning("Killing process: %s (PID %s)", self.name, self.pid)
        self._send_signal(signal.SIGKILL)

    def _send_signal(self, sig: signal.Signals) -> None:
        assert self.process is not None
        try:
            self.process.send_signal(sig)
        except ProcessLookupError:
            logger.debug("Process %s already gone", self.name)
        except PermissionError as e:
            # Processes launched through sudo may not accept our signals
            logger.warning("Cannot signal %s (PID %s): %s", self.name, self.pid, e)

    async def wait(self) -> ExitEvent:
        """Block until the exit status is known, without consuming events."""
        if self.state is ProcessState.NEW:
            raise ProcessError(f"Process {self.name} was never started")
        await self._exited.wait()
        assert self.exit_status is not None
        return self.exit_status
