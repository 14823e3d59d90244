"""Application-layer contracts, pipeline engine and use-cases."""

from __future__ import annotations

from ggml_converter.application.descriptor import (
    ModelConversion,
    ValidatedConversionData,
)
from ggml_converter.application.options import ConverterSettings, default_thread_count
from ggml_converter.application.pipeline import (
    ConversionPipeline,
    PipelineState,
    PipelineStep,
    StepContext,
)
from ggml_converter.application.ports import (
    CancellationToken,
    CommandOutcome,
    CommandRunner,
    PipelineObserver,
)
from ggml_converter.application.results import (
    ConversionCancelled,
    ConversionFailure,
    ConversionStatus,
    ConversionSuccess,
    ModelConversionFile,
    PyTorchConversionResult,
    QuantizeResult,
)
from ggml_converter.application.use_cases import (
    PreflightReport,
    build_pipeline,
    check_conversion,
    convert_model,
)

__all__ = [
    "CancellationToken",
    "CommandOutcome",
    "CommandRunner",
    "ConversionCancelled",
    "ConversionFailure",
    "ConversionPipeline",
    "ConversionStatus",
    "ConversionSuccess",
    "ConverterSettings",
    "ModelConversion",
    "ModelConversionFile",
    "PipelineObserver",
    "PipelineState",
    "PipelineStep",
    "PreflightReport",
    "PyTorchConversionResult",
    "QuantizeResult",
    "StepContext",
    "ValidatedConversionData",
    "build_pipeline",
    "check_conversion",
    "convert_model",
    "default_thread_count",
]
