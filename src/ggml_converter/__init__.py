"""Type-gated conversion of LLaMA model checkpoints to GGML."""

from __future__ import annotations

from ggml_converter.application import (
    CancellationToken,
    ConversionCancelled,
    ConversionFailure,
    ConversionPipeline,
    ConversionStatus,
    ConversionSuccess,
    ConverterSettings,
    ModelConversion,
    ModelConversionFile,
    ValidatedConversionData,
)
from ggml_converter.errors import (
    ConversionValidationError,
    ConverterError,
    DescriptorError,
    InvalidConversionDataError,
    PipelineStateError,
    StepDefinitionError,
)

__version__ = "0.1.0"

__all__ = [
    "CancellationToken",
    "ConversionCancelled",
    "ConversionFailure",
    "ConversionPipeline",
    "ConversionStatus",
    "ConversionSuccess",
    "ConversionValidationError",
    "ConverterError",
    "ConverterSettings",
    "DescriptorError",
    "InvalidConversionDataError",
    "ModelConversion",
    "ModelConversionFile",
    "PipelineStateError",
    "StepDefinitionError",
    "ValidatedConversionData",
    "__version__",
]
