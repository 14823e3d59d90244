"""Exception hierarchy for GGML conversion."""

from __future__ import annotations

from enum import StrEnum


class ConverterError(Exception):
    """Base class for converter errors."""


class ConversionValidationError(ConverterError):
    """Family-specific validation failure.

    Validation gates return instances of subclasses rather than raising them,
    so callers can inspect ``kind`` and decide whether to raise.

    Parameters
    ----------
    kind : StrEnum
        Family-specific error kind.
    message : str
        Human-readable description.
    """

    def __init__(self, kind: StrEnum, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


class InvalidConversionDataError(ConverterError):
    """Raw conversion payload could not be parsed into family data."""


class PipelineStateError(ConverterError):
    """Pipeline or validated data used outside its single-use lifecycle."""


class StepDefinitionError(ConverterError):
    """Pipeline steps do not match the family's step catalogue."""


class DescriptorError(ConverterError):
    """Conversion family lookup or registration failed."""
