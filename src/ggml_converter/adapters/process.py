"""Subprocess-backed command runner implementing the application port."""

from __future__ import annotations

import logging
import shlex
import subprocess
import time
from collections.abc import Sequence
from pathlib import Path
from typing import IO

from ggml_converter.application.ports import CancellationToken, CommandOutcome
from ggml_converter.types import InFlightPolicy

logger = logging.getLogger(__name__)

# Shell conventions for commands that could not be started.
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127


def _open_log(log_path: Path | None) -> IO[bytes] | None:
    if log_path is None:
        return None
    log_path.parent.mkdir(parents=True, exist_ok=True)
    return log_path.open("ab")


class ProcessRunner:
    """Run converter tools as child processes.

    Parameters
    ----------
    poll_interval : float, default=0.1
        Seconds between cancellation/deadline checks while a process runs.
    grace_period : float, default=5.0
        Seconds to wait after ``terminate()`` before killing the process.
    """

    def __init__(self, poll_interval: float = 0.1, grace_period: float = 5.0) -> None:
        self._poll_interval = poll_interval
        self._grace_period = grace_period

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        cancellation: CancellationToken | None = None,
        timeout: float | None = None,
        policy: InFlightPolicy = InFlightPolicy.WAIT,
        log_path: Path | None = None,
    ) -> CommandOutcome:
        """Run ``argv`` to completion, termination or deadline.

        Parameters
        ----------
        argv : Sequence[str]
            Command and arguments; no shell is involved.
        cwd : Path | None, optional
            Working directory for the child process.
        cancellation : CancellationToken | None, optional
            Checked while the process runs when ``policy`` is ``TERMINATE``.
        timeout : float | None, optional
            Per-invocation deadline in seconds. On expiry the process is killed
            and its return code is reported as a failure.
        policy : InFlightPolicy, default=InFlightPolicy.WAIT
            Whether a cancellation request stops the running process.
        log_path : Path | None, optional
            File receiving combined stdout/stderr; output is discarded otherwise.

        Returns
        -------
        CommandOutcome
            Exit code plus cancellation/timeout flags.
        """
        command = list(argv)
        logger.info("running: %s", shlex.join(command))
        try:
            log = _open_log(log_path)
        except OSError as exc:
            logger.error("could not open log file %s: %s", log_path, exc)
            return CommandOutcome(exit_code=1)
        sink = subprocess.DEVNULL if log is None else log
        try:
            return self._launch(command, cwd, sink, cancellation, timeout, policy)
        finally:
            if log is not None:
                log.close()

    def _launch(
        self,
        command: list[str],
        cwd: Path | None,
        sink: IO[bytes] | int,
        cancellation: CancellationToken | None,
        timeout: float | None,
        policy: InFlightPolicy,
    ) -> CommandOutcome:
        try:
            process = subprocess.Popen(
                command,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=sink,
                stderr=subprocess.STDOUT,
            )
        except FileNotFoundError:
            logger.error("command not found: %s", command[0])
            return CommandOutcome(exit_code=EXIT_NOT_FOUND)
        except OSError as exc:
            # PermissionError, ENOEXEC and other launch failures.
            logger.error("command not executable: %s (%s)", command[0], exc)
            return CommandOutcome(exit_code=EXIT_NOT_EXECUTABLE)
        return self._supervise(process, cancellation, timeout, policy)

    def _supervise(
        self,
        process: subprocess.Popen[bytes],
        cancellation: CancellationToken | None,
        timeout: float | None,
        policy: InFlightPolicy,
    ) -> CommandOutcome:
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            try:
                exit_code = process.wait(timeout=self._poll_interval)
            except subprocess.TimeoutExpired:
                pass
            else:
                logger.debug("process %d exited with %d", process.pid, exit_code)
                return CommandOutcome(exit_code=exit_code)

            if (
                policy is InFlightPolicy.TERMINATE
                and cancellation is not None
                and cancellation.cancelled
            ):
                logger.info("terminating process %d on cancellation", process.pid)
                return CommandOutcome(exit_code=self._stop(process), cancelled=True)

            if deadline is not None and time.monotonic() >= deadline:
                logger.warning("killing process %d after deadline", process.pid)
                process.kill()
                return CommandOutcome(exit_code=process.wait(), timed_out=True)

    def _stop(self, process: subprocess.Popen[bytes]) -> int:
        process.terminate()
        try:
            return process.wait(timeout=self._grace_period)
        except subprocess.TimeoutExpired:
            process.kill()
            return process.wait()
