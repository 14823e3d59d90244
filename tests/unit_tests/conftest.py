"""Fakes shared by unit tests."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path

import pytest

from ggml_converter.application.ports import CancellationToken, CommandOutcome
from ggml_converter.types import InFlightPolicy

type Handler = Callable[[list[str]], int | CommandOutcome]


class RecordingRunner:
    """Command runner double recording argv and returning scripted outcomes."""

    def __init__(self, handler: Handler | None = None) -> None:
        self.calls: list[list[str]] = []
        self.options: list[dict[str, object]] = []
        self._handler = handler

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
        command = list(argv)
        self.calls.append(command)
        self.options.append(
            {
                "cwd": cwd,
                "cancellation": cancellation,
                "timeout": timeout,
                "policy": policy,
                "log_path": log_path,
            }
        )
        if self._handler is None:
            return CommandOutcome(exit_code=0)
        outcome = self._handler(command)
        if isinstance(outcome, CommandOutcome):
            return outcome
        return CommandOutcome(exit_code=outcome)


class RecordingObserver:
    def __init__(self) -> None:
        self.events: list[tuple[str, int, str, int | None]] = []

    def step_started(self, index: int, step: str) -> None:
        self.events.append(("started", index, step, None))

    def step_finished(self, index: int, step: str, exit_code: int) -> None:
        self.events.append(("finished", index, step, exit_code))


@pytest.fixture
def runner_factory() -> type[RecordingRunner]:
    return RecordingRunner


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()
