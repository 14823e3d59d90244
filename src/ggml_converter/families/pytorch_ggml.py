"""LLaMA PyTorch checkpoint to quantized GGML conversion family."""

from __future__ import annotations

import json
import logging
import re
from enum import StrEnum
from functools import partial
from pathlib import Path

from ggml_converter.adapters.process import ProcessRunner
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
from ggml_converter.application.results import (
    ModelConversionFile,
    PyTorchConversionResult,
)
from ggml_converter.errors import ConversionValidationError, StepDefinitionError
from ggml_converter.schemas import PyTorchCheckpointData
from ggml_converter.types import ConversionStepId

logger = logging.getLogger(__name__)

PARAMS_FILE = "params.json"
TOKENIZER_FILE = "tokenizer.model"
REQUIRED_PARAMS = ("dim", "n_layers", "n_heads")
DEPENDENCY_CHECK = "import numpy, sentencepiece, torch"
F16_FTYPE = "1"
_SHARD_PATTERN = re.compile(r"^consolidated\.(\d+)\.pth$")


class PyTorchStep(ConversionStepId):
    CHECKING_ENVIRONMENT = "checking_environment"
    CHECKING_DEPENDENCIES = "checking_dependencies"
    CONVERTING_MODEL = "converting_model"
    QUANTIZING_MODEL = "quantizing_model"
    CLEANING_UP = "cleaning_up"


class PyTorchValidationErrorKind(StrEnum):
    MISSING_FILES = "missing_files"
    INVALID_PARAMS = "invalid_params"
    MODEL_TYPE_MISMATCH = "model_type_mismatch"
    UNEXPECTED_SHARDS = "unexpected_shards"
    UNREADABLE_DIRECTORY = "unreadable_directory"


class PyTorchValidationError(ConversionValidationError):
    """Validation failure for a PyTorch checkpoint directory."""

    def __init__(
        self,
        kind: PyTorchValidationErrorKind,
        message: str,
        missing_files: tuple[Path, ...] = (),
    ) -> None:
        super().__init__(kind, message)
        self.missing_files = missing_files


def shard_name(index: int) -> str:
    return f"consolidated.{index:02d}.pth"


def part_suffix(index: int) -> str:
    """Suffix the conversion script appends to every part after the first."""
    return "" if index == 0 else f".{index}"


def f16_parts(data: PyTorchCheckpointData) -> list[Path]:
    return [
        data.directory / f"ggml-model-f16.bin{part_suffix(index)}"
        for index in range(data.model_type.shard_count)
    ]


def quantized_parts(data: PyTorchCheckpointData) -> list[Path]:
    return [
        data.destination / f"ggml-model-{data.quantization}.bin{part_suffix(index)}"
        for index in range(data.model_type.shard_count)
    ]


def _check_params(data: PyTorchCheckpointData) -> PyTorchValidationError | None:
    params_path = data.directory / PARAMS_FILE
    try:
        params = json.loads(params_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        return PyTorchValidationError(
            PyTorchValidationErrorKind.INVALID_PARAMS,
            f"{params_path} is not readable JSON: {exc}",
        )
    if not isinstance(params, dict):
        return PyTorchValidationError(
            PyTorchValidationErrorKind.INVALID_PARAMS,
            f"{params_path} must contain a JSON object.",
        )
    missing = [key for key in REQUIRED_PARAMS if not isinstance(params.get(key), int)]
    if missing:
        return PyTorchValidationError(
            PyTorchValidationErrorKind.INVALID_PARAMS,
            f"{params_path} is missing integer fields: {', '.join(missing)}.",
        )
    if params["dim"] != data.model_type.embedding_dim:
        return PyTorchValidationError(
            PyTorchValidationErrorKind.MODEL_TYPE_MISMATCH,
            f"{params_path} has dim={params['dim']}, expected "
            f"{data.model_type.embedding_dim} for a {data.model_type} model.",
        )
    return None


def _check_shards(data: PyTorchCheckpointData) -> PyTorchValidationError | None:
    expected = data.model_type.shard_count
    try:
        entries = list(data.directory.iterdir())
    except OSError as exc:
        return PyTorchValidationError(
            PyTorchValidationErrorKind.UNREADABLE_DIRECTORY,
            f"Cannot list {data.directory}: {exc}",
        )
    extra = sorted(
        entry.name
        for entry in entries
        if (match := _SHARD_PATTERN.match(entry.name))
        and int(match.group(1)) >= expected
    )
    if extra:
        return PyTorchValidationError(
            PyTorchValidationErrorKind.UNEXPECTED_SHARDS,
            f"Found {', '.join(extra)} but a {data.model_type} model has "
            f"{expected} shard(s).",
        )
    return None


def _run_tool(argv: list[str], context: StepContext) -> int:
    return context.run_command(argv)


def _convert(data: PyTorchCheckpointData, context: StepContext) -> int:
    exit_code = context.run_command(
        [
            context.settings.python_executable,
            str(context.settings.convert_script),
            str(data.directory),
            F16_FTYPE,
        ]
    )
    if exit_code == 0:
        context.artifacts["intermediate"] = f16_parts(data)
    return exit_code


def _quantize(data: PyTorchCheckpointData, context: StepContext) -> int:
    try:
        data.destination.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("could not create %s: %s", data.destination, exc)
        return 1
    produced: list[Path] = []
    for source, target in zip(f16_parts(data), quantized_parts(data), strict=True):
        exit_code = context.run_command(
            [
                context.settings.quantize_binary,
                str(source),
                str(target),
                str(data.quantization.tool_code),
                str(context.settings.thread_count),
            ]
        )
        if exit_code != 0 or context.cancelled:
            return exit_code
        produced.append(target)
    context.artifacts["models"] = produced
    return 0


def _clean_up(context: StepContext) -> int:
    if context.settings.keep_intermediate:
        return 0
    for path in context.artifacts.get("intermediate", []):
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("could not remove %s: %s", path, exc)
            return 1
    context.artifacts["intermediate"] = []
    return 0


def _result(context: StepContext) -> PyTorchConversionResult:
    return PyTorchConversionResult(
        model_paths=tuple(context.artifacts.get("models", [])),
        intermediate_paths=tuple(context.artifacts.get("intermediate", [])),
    )


class PyTorchToGgmlConversion(
    ModelConversion[
        PyTorchCheckpointData,
        PyTorchStep,
        PyTorchValidationError,
        PyTorchConversionResult,
    ]
):
    """Convert a LLaMA ``consolidated.*.pth`` checkpoint to a quantized GGML model."""

    name = "pytorch-ggml"
    description = "LLaMA PyTorch checkpoint to quantized GGML"
    data_model = PyTorchCheckpointData
    validation_error = PyTorchValidationError
    conversion_steps = tuple(PyTorchStep)

    def required_files_for(self, data: PyTorchCheckpointData) -> list[Path]:
        shards = [
            data.directory / shard_name(index)
            for index in range(data.model_type.shard_count)
        ]
        return [data.directory / PARAMS_FILE, data.directory / TOKENIZER_FILE, *shards]

    def validate(
        self,
        data: PyTorchCheckpointData,
        required_files: list[ModelConversionFile] | None = None,
    ) -> ValidatedConversionData[PyTorchCheckpointData] | PyTorchValidationError:
        probes = probe_files(self.required_files_for(data))
        publish_probes(probes, required_files)

        missing = tuple(probe.path for probe in probes if not probe.found)
        if missing:
            return PyTorchValidationError(
                PyTorchValidationErrorKind.MISSING_FILES,
                "Missing required files: " + ", ".join(str(path) for path in missing),
                missing_files=missing,
            )
        error = _check_params(data) or _check_shards(data)
        if error is not None:
            return error
        return self._seal(data)

    def make_conversion_pipeline(
        self,
        validated: ValidatedConversionData[PyTorchCheckpointData],
        *,
        settings: ConverterSettings | None = None,
        runner: CommandRunner | None = None,
        observer: PipelineObserver | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ConversionPipeline[PyTorchStep, PyTorchConversionResult]:
        settings = settings or ConverterSettings.default()
        if settings.convert_script is None:
            raise StepDefinitionError(
                f"{self.name} requires a conversion script; set "
                "GGML_CONVERTER_CONVERT_SCRIPT or pass --convert-script."
            )
        runner = runner or ProcessRunner(
            poll_interval=settings.poll_interval,
            grace_period=settings.terminate_grace_period,
        )
        data = validated.validated
        python = settings.python_executable
        steps = [
            PipelineStep(
                PyTorchStep.CHECKING_ENVIRONMENT,
                partial(_run_tool, [python, "--version"]),
            ),
            PipelineStep(
                PyTorchStep.CHECKING_DEPENDENCIES,
                partial(_run_tool, [python, "-c", DEPENDENCY_CHECK]),
            ),
            PipelineStep(PyTorchStep.CONVERTING_MODEL, partial(_convert, data)),
            PipelineStep(PyTorchStep.QUANTIZING_MODEL, partial(_quantize, data)),
            PipelineStep(PyTorchStep.CLEANING_UP, _clean_up),
        ]
        return ConversionPipeline(
            validated,
            catalogue=self.conversion_steps,
            steps=steps,
            result_factory=_result,
            settings=settings,
            runner=runner,
            observer=observer,
            cancellation=cancellation,
        )
