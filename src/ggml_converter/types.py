"""Shared enums for conversion families."""

from __future__ import annotations

from enum import StrEnum


class ConversionStepId(StrEnum):
    """Base for per-family step identifiers.

    Members are declared in execution order; ``label`` gives the text shown in
    progress checklists.
    """

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").capitalize()


class QuantizationType(StrEnum):
    """Quantization formats understood by the ``quantize`` tool."""

    Q4_0 = "q4_0"
    Q4_1 = "q4_1"

    @property
    def tool_code(self) -> int:
        """Numeric type code passed to the ``quantize`` binary."""
        return {"q4_0": 2, "q4_1": 3}[self.value]


class InFlightPolicy(StrEnum):
    """What happens to a running step when cancellation is requested."""

    WAIT = "wait"
    TERMINATE = "terminate"
