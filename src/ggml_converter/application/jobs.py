"""Background conversion jobs sharing one worker pool."""

from __future__ import annotations

import dataclasses
import logging
import threading
import uuid
from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ggml_converter.application.options import ConverterSettings
from ggml_converter.application.pipeline import ConversionPipeline, PipelineState
from ggml_converter.application.ports import CommandRunner
from ggml_converter.application.results import (
    ConversionFailure,
    ConversionStatus,
    ConversionSuccess,
)
from ggml_converter.application.use_cases import build_pipeline
from ggml_converter.errors import PipelineStateError

if TYPE_CHECKING:
    from ggml_converter.plugins.registry import DescriptorRegistry

logger = logging.getLogger(__name__)


class JobState(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class JobSnapshot:
    """Point-in-time view of a job for progress reporting."""

    id: str
    family: str
    state: JobState
    steps: tuple[str, ...]
    current_index: int | None
    current_step: str | None
    exit_code: int | None
    result: dict[str, Any] | None


def _result_payload(result: object) -> dict[str, Any] | None:
    if not dataclasses.is_dataclass(result) or isinstance(result, type):
        return None

    def _encode(value: object) -> Any:
        if isinstance(value, Path):
            return str(value)
        if isinstance(value, tuple | list):
            return [_encode(item) for item in value]
        return value

    return {key: _encode(value) for key, value in dataclasses.asdict(result).items()}


class ConversionJob:
    """One pipeline run submitted to a :class:`JobManager`."""

    def __init__(
        self,
        job_id: str,
        family: str,
        pipeline: ConversionPipeline[Any, Any],
        future: Future[ConversionStatus[Any]],
    ) -> None:
        self.id = job_id
        self.family = family
        self.pipeline = pipeline
        self.future = future

    def cancel(self) -> None:
        self.pipeline.cancel()

    def snapshot(self) -> JobSnapshot:
        status = self.pipeline.status
        exit_code: int | None = None
        result: dict[str, Any] | None = None
        if status is None:
            state = JobState.PENDING
            if self.pipeline.state is PipelineState.RUNNING:
                state = JobState.RUNNING
            elif self.pipeline.state is PipelineState.FINISHED:
                # The run raised; future.result() re-raises the exception.
                state = JobState.FAILED
        elif isinstance(status, ConversionSuccess):
            state = JobState.SUCCEEDED
            exit_code = status.exit_code
            result = _result_payload(status.result)
        elif isinstance(status, ConversionFailure):
            state = JobState.FAILED
            exit_code = status.exit_code
        else:
            state = JobState.CANCELLED
        current_step = self.pipeline.current_step
        return JobSnapshot(
            id=self.id,
            family=self.family,
            state=state,
            steps=tuple(step.value for step in self.pipeline.steps),
            current_index=self.pipeline.current_index,
            current_step=current_step.value if current_step is not None else None,
            exit_code=exit_code,
            result=result,
        )


class JobManager:
    """Run independent conversions concurrently on a thread pool.

    Parameters
    ----------
    registry : DescriptorRegistry
        Families available to submitted jobs.
    settings : ConverterSettings
        Settings shared by every job; ``max_workers`` sizes the pool and
        ``max_finished_jobs`` bounds how many finished jobs stay queryable.
    runner : CommandRunner | None, optional
        Runner override, mainly for tests.
    """

    def __init__(
        self,
        registry: DescriptorRegistry,
        settings: ConverterSettings,
        runner: CommandRunner | None = None,
    ) -> None:
        self._registry = registry
        self._settings = settings
        self._runner = runner
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_workers,
            thread_name_prefix="ggml-job",
        )
        self._jobs: dict[str, ConversionJob] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def registry(self) -> DescriptorRegistry:
        return self._registry

    def submit(self, family: str, payload: Mapping[str, Any]) -> ConversionJob:
        """Validate ``payload`` for ``family`` and schedule its pipeline.

        Raises
        ------
        DescriptorError
            If the family is unknown.
        InvalidConversionDataError
            If the payload does not parse.
        ConversionValidationError
            If the data does not pass the family's validation gate.
        PipelineStateError
            If the manager has been shut down.
        """
        if self._closed:
            raise PipelineStateError("Job manager is shut down.")
        descriptor = self._registry.get(family)
        data = descriptor.parse_data(payload)
        pipeline = build_pipeline(
            descriptor,
            data,
            settings=self._settings,
            runner=self._runner,
        )
        job_id = uuid.uuid4().hex
        future = pipeline.start(self._executor)
        job = ConversionJob(job_id, descriptor.name, pipeline, future)
        with self._lock:
            self._jobs[job_id] = job
            self._evict_finished()
        logger.info("submitted %s job %s", descriptor.name, job_id)
        return job

    def _evict_finished(self) -> None:
        # Dict order is submission order, so the oldest finished jobs go first.
        finished = [key for key, job in self._jobs.items() if job.future.done()]
        for key in finished[: max(0, len(finished) - self._settings.max_finished_jobs)]:
            del self._jobs[key]
            logger.debug("evicted finished job %s", key)

    def get(self, job_id: str) -> ConversionJob | None:
        with self._lock:
            return self._jobs.get(job_id)

    def jobs(self) -> list[ConversionJob]:
        with self._lock:
            return list(self._jobs.values())

    def cancel(self, job_id: str) -> ConversionJob | None:
        job = self.get(job_id)
        if job is not None:
            job.cancel()
        return job

    def forget(self, job_id: str) -> ConversionJob | None:
        """Drop a finished job from the table and return it.

        Raises
        ------
        PipelineStateError
            If the job is still pending or running.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if not job.future.done():
                raise PipelineStateError(f"Job {job_id} has not finished.")
            del self._jobs[job_id]
        return job

    def shutdown(self, *, cancel_running: bool = True) -> None:
        """Stop accepting jobs; optionally cancel running ones, then wait."""
        self._closed = True
        if cancel_running:
            for job in self.jobs():
                job.cancel()
        self._executor.shutdown(wait=True)
