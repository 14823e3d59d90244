#!/usr/bin/env python3
"""Example plugin converting GPT4All models to the versioned GGML container.

Load it with::

    convert-to-ggml custom gpt4all-ggml \\
        --plugin-module examples/gpt4all_plugin.py \\
        --option model=models/gpt4all-lora-quantized.bin \\
        --option tokenizer=models/tokenizer.model \\
        --option script=llama.cpp/convert-gpt4all-to-ggml.py
"""

from __future__ import annotations

from dataclasses import dataclass
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
from ggml_converter.application.results import ModelConversionFile
from ggml_converter.errors import ConversionValidationError
from ggml_converter.formats import GGML_MAGIC, read_ggml_header
from ggml_converter.schemas import ModelConversionData
from ggml_converter.types import ConversionStepId


class Gpt4AllStep(ConversionStepId):
    CHECKING_ENVIRONMENT = "checking_environment"
    CONVERTING_MODEL = "converting_model"


class Gpt4AllErrorKind(StrEnum):
    MISSING_FILES = "missing_files"
    NOT_UNVERSIONED_GGML = "not_unversioned_ggml"
    UNREADABLE_MODEL = "unreadable_model"


class Gpt4AllValidationError(ConversionValidationError):
    """Validation failure for a GPT4All model."""

    def __init__(
        self,
        kind: Gpt4AllErrorKind,
        message: str,
        missing_files: tuple[Path, ...] = (),
    ) -> None:
        super().__init__(kind, message)
        self.missing_files = missing_files


class Gpt4AllData(ModelConversionData):
    model: Path
    tokenizer: Path
    script: Path


@dataclass(frozen=True)
class Gpt4AllResult:
    model_path: Path
    backup_path: Path


def _convert(data: Gpt4AllData, context: StepContext) -> int:
    # The script rewrites the model in place and keeps the original as *.orig.
    return context.run_command(
        [
            context.settings.python_executable,
            str(data.script),
            str(data.model),
            str(data.tokenizer),
        ]
    )


class Gpt4AllConversion(
    ModelConversion[Gpt4AllData, Gpt4AllStep, Gpt4AllValidationError, Gpt4AllResult]
):
    """Rewrite an unversioned GPT4All GGML file in the ``ggmf`` layout."""

    name = "gpt4all-ggml"
    description = "GPT4All model to versioned GGML"
    data_model = Gpt4AllData
    validation_error = Gpt4AllValidationError
    conversion_steps = tuple(Gpt4AllStep)

    def required_files_for(self, data: Gpt4AllData) -> list[Path]:
        return [data.model, data.tokenizer, data.script]

    def validate(
        self,
        data: Gpt4AllData,
        required_files: list[ModelConversionFile] | None = None,
    ) -> ValidatedConversionData[Gpt4AllData] | Gpt4AllValidationError:
        probes = probe_files(self.required_files_for(data))
        publish_probes(probes, required_files)
        missing = tuple(probe.path for probe in probes if not probe.found)
        if missing:
            return Gpt4AllValidationError(
                Gpt4AllErrorKind.MISSING_FILES,
                "Missing required files: " + ", ".join(str(path) for path in missing),
                missing_files=missing,
            )
        try:
            header = read_ggml_header(data.model)
        except OSError as exc:
            return Gpt4AllValidationError(
                Gpt4AllErrorKind.UNREADABLE_MODEL, f"Cannot read {data.model}: {exc}"
            )
        if header is None or header.magic != GGML_MAGIC:
            return Gpt4AllValidationError(
                Gpt4AllErrorKind.NOT_UNVERSIONED_GGML,
                f"{data.model} is not an unversioned GGML file.",
            )
        return self._seal(data)

    def make_conversion_pipeline(
        self,
        validated: ValidatedConversionData[Gpt4AllData],
        *,
        settings: ConverterSettings | None = None,
        runner: CommandRunner | None = None,
        observer: PipelineObserver | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ConversionPipeline[Gpt4AllStep, Gpt4AllResult]:
        settings = settings or ConverterSettings.default()
        runner = runner or ProcessRunner(
            poll_interval=settings.poll_interval,
            grace_period=settings.terminate_grace_period,
        )
        data = validated.validated
        python = settings.python_executable
        steps = [
            PipelineStep(
                Gpt4AllStep.CHECKING_ENVIRONMENT,
                lambda context: context.run_command([python, "-c", "import sentencepiece"]),
            ),
            PipelineStep(Gpt4AllStep.CONVERTING_MODEL, partial(_convert, data)),
        ]
        return ConversionPipeline(
            validated,
            catalogue=self.conversion_steps,
            steps=steps,
            result_factory=lambda context: Gpt4AllResult(
                model_path=data.model,
                backup_path=data.model.with_name(data.model.name + ".orig"),
            ),
            settings=settings,
            runner=runner,
            observer=observer,
            cancellation=cancellation,
        )


DESCRIPTOR = Gpt4AllConversion()
