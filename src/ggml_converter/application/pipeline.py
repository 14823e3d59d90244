"""Ordered, fail-fast execution of a family's conversion steps."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from ggml_converter.application.descriptor import ValidatedConversionData
from ggml_converter.application.options import ConverterSettings
from ggml_converter.application.ports import (
    CancellationToken,
    CommandRunner,
    PipelineObserver,
)
from ggml_converter.application.results import (
    ConversionCancelled,
    ConversionFailure,
    ConversionStatus,
    ConversionSuccess,
)
from ggml_converter.errors import PipelineStateError, StepDefinitionError
from ggml_converter.schemas import ModelConversionData
from ggml_converter.types import ConversionStepId

logger = logging.getLogger(__name__)


@dataclass
class StepContext:
    """Mutable state shared by the steps of one pipeline run."""

    data: ModelConversionData
    settings: ConverterSettings
    runner: CommandRunner
    cancellation: CancellationToken
    step: ConversionStepId | None = None
    cancelled: bool = False
    artifacts: dict[str, list[Path]] = field(default_factory=dict)

    def run_command(self, argv: Sequence[str], *, cwd: Path | None = None) -> int:
        """Run one external process for the current step and return its exit code."""
        log_path = None
        if self.settings.log_directory is not None and self.step is not None:
            log_path = self.settings.log_directory / f"{self.step.value}.log"
        outcome = self.runner.run(
            argv,
            cwd=cwd,
            cancellation=self.cancellation,
            timeout=self.settings.step_timeout,
            policy=self.settings.in_flight_policy,
            log_path=log_path,
        )
        if outcome.cancelled:
            self.cancelled = True
        if outcome.timed_out:
            logger.warning(
                "step %s exceeded %.1fs deadline (exit code %d)",
                self.step,
                self.settings.step_timeout,
                outcome.exit_code,
            )
        return outcome.exit_code


type StepAction = Callable[[StepContext], int]


@dataclass(frozen=True)
class PipelineStep[StepT: ConversionStepId]:
    """One catalogue entry bound to the callable that performs it."""

    identifier: StepT
    action: StepAction


class PipelineState(StrEnum):
    """Lifecycle of a pipeline instance."""

    PENDING = "pending"
    RUNNING = "running"
    FINISHED = "finished"


class ConversionPipeline[StepT: ConversionStepId, ResultT]:
    """Execute a family's steps in catalogue order, stopping at the first failure.

    Parameters
    ----------
    validated : ValidatedConversionData
        Sealed data; it is claimed on construction and cannot back another
        pipeline.
    catalogue : Sequence[ConversionStepId]
        The family's declared step order.
    steps : Sequence[PipelineStep]
        Step implementations; identifiers must equal ``catalogue`` in order.
    result_factory : Callable[[StepContext], ResultT]
        Builds the success payload once every step succeeded.
    settings : ConverterSettings
        Tool locations and execution policy.
    runner : CommandRunner
        Process runner used by external steps.
    observer : PipelineObserver | None, optional
        Receives step start/finish notifications.
    cancellation : CancellationToken | None, optional
        Shared cancellation signal; a fresh token is created when omitted.
    """

    def __init__(
        self,
        validated: ValidatedConversionData[ModelConversionData],
        *,
        catalogue: Sequence[StepT],
        steps: Sequence[PipelineStep[StepT]],
        result_factory: Callable[[StepContext], ResultT],
        settings: ConverterSettings,
        runner: CommandRunner,
        observer: PipelineObserver | None = None,
        cancellation: CancellationToken | None = None,
    ) -> None:
        identifiers = tuple(step.identifier for step in steps)
        if identifiers != tuple(catalogue):
            raise StepDefinitionError(
                "Pipeline steps "
                f"{[str(s) for s in identifiers]} do not match catalogue "
                f"{[str(s) for s in catalogue]}."
            )
        data = validated.claim()
        self._steps = tuple(steps)
        self._result_factory = result_factory
        self._observer = observer
        self._cancellation = cancellation or CancellationToken()
        self._context = StepContext(
            data=data,
            settings=settings,
            runner=runner,
            cancellation=self._cancellation,
        )
        self._lock = threading.Lock()
        self._state = PipelineState.PENDING
        self._current_index: int | None = None
        self._status: ConversionStatus[ResultT] | None = None

    @property
    def steps(self) -> tuple[StepT, ...]:
        return tuple(step.identifier for step in self._steps)

    @property
    def data(self) -> ModelConversionData:
        return self._context.data

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def current_index(self) -> int | None:
        """Ordinal of the step executing now (or last executed)."""
        return self._current_index

    @property
    def current_step(self) -> StepT | None:
        if self._current_index is None:
            return None
        return self._steps[self._current_index].identifier

    @property
    def status(self) -> ConversionStatus[ResultT] | None:
        """Terminal status, once the run has finished."""
        return self._status

    @property
    def cancellation(self) -> CancellationToken:
        return self._cancellation

    def cancel(self) -> None:
        """Request cancellation; honoured before the next step starts."""
        logger.info("cancellation requested")
        self._cancellation.cancel()

    def run(self) -> ConversionStatus[ResultT]:
        """Execute every step in order and return the terminal status.

        Raises
        ------
        PipelineStateError
            If the pipeline has already been run.
        """
        with self._lock:
            if self._state is not PipelineState.PENDING:
                raise PipelineStateError("A conversion pipeline can only run once.")
            self._state = PipelineState.RUNNING
        try:
            self._status = self._execute()
        finally:
            self._state = PipelineState.FINISHED
        return self._status

    def start(self, executor: Executor | None = None) -> Future[ConversionStatus[ResultT]]:
        """Run on a background worker and return a future for the status."""
        if executor is not None:
            return executor.submit(self.run)
        worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ggml-pipeline")
        try:
            return worker.submit(self.run)
        finally:
            worker.shutdown(wait=False)

    def _execute(self) -> ConversionStatus[ResultT]:
        total = len(self._steps)
        for index, step in enumerate(self._steps):
            if self._cancellation.cancelled:
                logger.info("conversion cancelled before step %d/%d", index + 1, total)
                return ConversionCancelled(step_index=index, step=step.identifier.value)

            self._current_index = index
            self._context.step = step.identifier
            logger.info("step %d/%d: %s", index + 1, total, step.identifier.label)
            if self._observer is not None:
                self._observer.step_started(index, step.identifier.value)

            try:
                exit_code = step.action(self._context)
            except OSError:
                logger.exception("step %s failed with an OS error", step.identifier)
                exit_code = 1

            if self._observer is not None:
                self._observer.step_finished(index, step.identifier.value, exit_code)
            if self._context.cancelled:
                logger.info("step %s terminated by cancellation", step.identifier)
                return ConversionCancelled(step_index=index, step=step.identifier.value)
            if exit_code != 0:
                logger.error(
                    "step %s failed with exit code %d", step.identifier, exit_code
                )
                return ConversionFailure(exit_code=exit_code, step=step.identifier.value)

        return ConversionSuccess(result=self._result_factory(self._context))
