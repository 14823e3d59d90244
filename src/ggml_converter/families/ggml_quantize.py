"""Quantization of an existing f16 GGML model file."""

from __future__ import annotations

import logging
import os
import shutil
from enum import StrEnum
from functools import partial
from pathlib import Path

from ggml_converter.adapters.process import (
    EXIT_NOT_EXECUTABLE,
    EXIT_NOT_FOUND,
    ProcessRunner,
)
from ggml_converter.application.descriptor import (
    ModelConversion,
    ValidatedConversionData,
    probe_files,
    publish_probes,
)
from ggml_converter.application.options import ConverterSettings
from ggml_converter.application.pipeline import (
    ConversionPipeline,
    PipelineStep,
    StepContext,
)
from ggml_converter.application.ports import (
    CancellationToken,
    CommandRunner,
    PipelineObserver,
)
from ggml_converter.application.results import ModelConversionFile, QuantizeResult
from ggml_converter.errors import ConversionValidationError
from ggml_converter.formats import read_ggml_header
from ggml_converter.schemas import GgmlQuantizeData
from ggml_converter.types import ConversionStepId

logger = logging.getLogger(__name__)


class QuantizeStep(ConversionStepId):
    CHECKING_QUANTIZER = "checking_quantizer"
    QUANTIZING_MODEL = "quantizing_model"
    VERIFYING_OUTPUT = "verifying_output"


class QuantizeValidationErrorKind(StrEnum):
    MISSING_FILES = "missing_files"
    INVALID_MAGIC = "invalid_magic"
    UNSUPPORTED_FORMAT_VERSION = "unsupported_format_version"
    OUTPUT_IS_SOURCE = "output_is_source"
    UNREADABLE_SOURCE = "unreadable_source"


class QuantizeValidationError(ConversionValidationError):
    """Validation failure for a GGML quantization request."""

    def __init__(
        self,
        kind: QuantizeValidationErrorKind,
        message: str,
        missing_files: tuple[Path, ...] = (),
    ) -> None:
        super().__init__(kind, message)
        self.missing_files = missing_files


def _check_quantizer(context: StepContext) -> int:
    binary = context.settings.quantize_binary
    resolved = shutil.which(binary)
    if resolved is None:
        if Path(binary).exists():
            logger.error("quantizer %s is not executable", binary)
            return EXIT_NOT_EXECUTABLE
        logger.error("quantizer %s not found", binary)
        return EXIT_NOT_FOUND
    logger.debug("using quantizer %s", resolved)
    return 0


def _quantize(data: GgmlQuantizeData, context: StepContext) -> int:
    try:
        data.destination.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("could not create %s: %s", data.destination.parent, exc)
        return 1
    return context.run_command(
        [
            context.settings.quantize_binary,
            str(data.source),
            str(data.destination),
            str(data.quantization.tool_code),
            str(context.settings.thread_count),
        ]
    )


def _verify(data: GgmlQuantizeData, context: StepContext) -> int:
    del context
    output = data.destination
    if not output.is_file():
        logger.error("quantizer reported success but %s was not written", output)
        return 1
    try:
        header = read_ggml_header(output)
    except OSError as exc:
        logger.error("could not read %s: %s", output, exc)
        return 1
    if header is None or not header.supported:
        logger.error("%s is not a readable GGML model", output)
        return 1
    return 0


class GgmlQuantizeConversion(
    ModelConversion[
        GgmlQuantizeData,
        QuantizeStep,
        QuantizeValidationError,
        QuantizeResult,
    ]
):
    """Quantize an f16 GGML model with the ``quantize`` tool."""

    name = "ggml-quantize"
    description = "Quantize an f16 GGML model file"
    data_model = GgmlQuantizeData
    validation_error = QuantizeValidationError
    conversion_steps = tuple(QuantizeStep)

    def required_files_for(self, data: GgmlQuantizeData) -> list[Path]:
        return [data.source]

    def validate(
        self,
        data: GgmlQuantizeData,
        required_files: list[ModelConversionFile] | None = None,
    ) -> ValidatedConversionData[GgmlQuantizeData] | QuantizeValidationError:
        probes = probe_files(self.required_files_for(data))
        publish_probes(probes, required_files)

        missing = tuple(probe.path for probe in probes if not probe.found)
        if missing:
            return QuantizeValidationError(
                QuantizeValidationErrorKind.MISSING_FILES,
                f"Missing required file: {data.source}",
                missing_files=missing,
            )
        if os.path.abspath(data.destination) == os.path.abspath(data.source):
            return QuantizeValidationError(
                QuantizeValidationErrorKind.OUTPUT_IS_SOURCE,
                f"Output path {data.destination} would overwrite the source model.",
            )
        try:
            header = read_ggml_header(data.source)
        except OSError as exc:
            return QuantizeValidationError(
                QuantizeValidationErrorKind.UNREADABLE_SOURCE,
                f"Cannot read {data.source}: {exc}",
            )
        if header is None:
            return QuantizeValidationError(
                QuantizeValidationErrorKind.INVALID_MAGIC,
                f"{data.source} does not start with a GGML magic number.",
            )
        if not header.supported:
            return QuantizeValidationError(
                QuantizeValidationErrorKind.UNSUPPORTED_FORMAT_VERSION,
                f"{data.source} uses unsupported container version {header.version}.",
            )
        return self._seal(data)

    def make_conversion_pipeline(
        self,
        validated: ValidatedConversionData[GgmlQuantizeData],
        *,
        settings: ConverterSettings | None = None,
        runner: CommandRunner | None = None,
        observer: PipelineObserver | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ConversionPipeline[QuantizeStep, QuantizeResult]:
        settings = settings or ConverterSettings.default()
        runner = runner or ProcessRunner(
            poll_interval=settings.poll_interval,
            grace_period=settings.terminate_grace_period,
        )
        data = validated.validated
        steps = [
            PipelineStep(QuantizeStep.CHECKING_QUANTIZER, _check_quantizer),
            PipelineStep(QuantizeStep.QUANTIZING_MODEL, partial(_quantize, data)),
            PipelineStep(QuantizeStep.VERIFYING_OUTPUT, partial(_verify, data)),
        ]
        return ConversionPipeline(
            validated,
            catalogue=self.conversion_steps,
            steps=steps,
            result_factory=lambda context: QuantizeResult(model_path=data.destination),
            settings=settings,
            runner=runner,
            observer=observer,
            cancellation=cancellation,
        )
