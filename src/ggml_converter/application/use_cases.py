"""Application use-cases orchestrating validation and conversion runs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ggml_converter.application.descriptor import (
    ModelConversion,
    ValidatedConversionData,
)
from ggml_converter.application.options import ConverterSettings
from ggml_converter.application.pipeline import ConversionPipeline
from ggml_converter.application.ports import (
    CancellationToken,
    CommandRunner,
    PipelineObserver,
)
from ggml_converter.application.results import ConversionStatus, ModelConversionFile
from ggml_converter.errors import ConversionValidationError
from ggml_converter.schemas import ModelConversionData
from ggml_converter.types import ConversionStepId

logger = logging.getLogger(__name__)

type AnyConversion = ModelConversion[Any, Any, Any, Any]


@dataclass(frozen=True)
class PreflightReport:
    """Checklist of required files and planned steps for one conversion."""

    family: str
    required_files: tuple[ModelConversionFile, ...]
    steps: tuple[ConversionStepId, ...]
    validated: ValidatedConversionData[Any] | None = None
    error: ConversionValidationError | None = None

    @property
    def valid(self) -> bool:
        return self.validated is not None


def check_conversion(
    descriptor: AnyConversion,
    data: ModelConversionData,
) -> PreflightReport:
    """Use-case: validate data and collect the pre-flight checklist."""
    required_files: list[ModelConversionFile] = []
    outcome = descriptor.validate(data, required_files)
    if isinstance(outcome, ConversionValidationError):
        logger.info(
            "%s validation failed (%s): %s", descriptor.name, outcome.kind, outcome
        )
        return PreflightReport(
            family=descriptor.name,
            required_files=tuple(required_files),
            steps=tuple(descriptor.conversion_steps),
            error=outcome,
        )
    return PreflightReport(
        family=descriptor.name,
        required_files=tuple(required_files),
        steps=tuple(descriptor.conversion_steps),
        validated=outcome,
    )


def build_pipeline(
    descriptor: AnyConversion,
    data: ModelConversionData,
    *,
    settings: ConverterSettings | None = None,
    runner: CommandRunner | None = None,
    observer: PipelineObserver | None = None,
    cancellation: CancellationToken | None = None,
) -> ConversionPipeline[Any, Any]:
    """Use-case: validate and bind a fresh pipeline.

    Raises
    ------
    ConversionValidationError
        The family's validation error when ``data`` does not pass the gate.
    """
    outcome = descriptor.validate(data)
    if isinstance(outcome, ConversionValidationError):
        raise outcome
    return descriptor.make_conversion_pipeline(
        outcome,
        settings=settings,
        runner=runner,
        observer=observer,
        cancellation=cancellation,
    )


def convert_model(
    descriptor: AnyConversion,
    data: ModelConversionData,
    *,
    settings: ConverterSettings | None = None,
    runner: CommandRunner | None = None,
    observer: PipelineObserver | None = None,
    cancellation: CancellationToken | None = None,
) -> ConversionStatus[Any]:
    """Use-case: validate, build a pipeline and run it on the calling thread."""
    pipeline = build_pipeline(
        descriptor,
        data,
        settings=settings,
        runner=runner,
        observer=observer,
        cancellation=cancellation,
    )
    status = pipeline.run()
    logger.info("%s conversion finished: %s", descriptor.name, status)
    return status
