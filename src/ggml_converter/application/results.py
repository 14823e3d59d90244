"""Application-layer result objects."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ModelConversionFile:
    """Existence probe for one required input file."""

    path: Path
    found: bool


@dataclass(frozen=True)
class ConversionSuccess[ResultT]:
    """Every step completed; carries the family-specific result."""

    result: ResultT

    @property
    def is_success(self) -> bool:
        return True

    @property
    def exit_code(self) -> int:
        return 0


@dataclass(frozen=True)
class ConversionFailure:
    """A step failed; ``exit_code`` is the step's process exit code as reported."""

    exit_code: int
    step: str | None = None

    @property
    def is_success(self) -> bool:
        return False


@dataclass(frozen=True)
class ConversionCancelled:
    """The run was cancelled before ``step_index`` could complete."""

    step_index: int
    step: str | None = None

    @property
    def is_success(self) -> bool:
        return False


type ConversionStatus[ResultT] = (
    ConversionSuccess[ResultT] | ConversionFailure | ConversionCancelled
)


@dataclass(frozen=True)
class PyTorchConversionResult:
    """Artifacts produced by the ``pytorch-ggml`` family."""

    model_paths: tuple[Path, ...]
    intermediate_paths: tuple[Path, ...] = ()


@dataclass(frozen=True)
class QuantizeResult:
    """Artifact produced by the ``ggml-quantize`` family."""

    model_path: Path
