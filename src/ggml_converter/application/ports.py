"""Application ports for clean architecture boundaries."""

from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from ggml_converter.types import InFlightPolicy


class CancellationToken:
    """Thread-safe, one-way cancellation signal shared with a running pipeline."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` elapses; return the flag."""
        return self._event.wait(timeout)


@dataclass(frozen=True)
class CommandOutcome:
    """Terminal state of one external process invocation."""

    exit_code: int
    cancelled: bool = False
    timed_out: bool = False


class CommandRunner(Protocol):
    """Run an external converter process to completion."""

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
        """Run ``argv`` and report its exit code."""


class PipelineObserver(Protocol):
    """Receive step progress from a running pipeline."""

    def step_started(self, index: int, step: str) -> None:
        """Called before step ``index`` executes."""

    def step_finished(self, index: int, step: str, exit_code: int) -> None:
        """Called after step ``index`` terminates with ``exit_code``."""
