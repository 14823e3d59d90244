"""Pydantic schemas for conversion data and transport payloads."""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ggml_converter.types import QuantizationType


class ModelConversionData(BaseModel):
    """Base for raw, unvalidated per-family conversion inputs.

    Field types are enforced on construction; nothing about the filesystem is.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)


class ModelType(StrEnum):
    """LLaMA checkpoint sizes."""

    SIZE_7B = "7B"
    SIZE_13B = "13B"
    SIZE_30B = "30B"
    SIZE_65B = "65B"

    @property
    def shard_count(self) -> int:
        return {"7B": 1, "13B": 2, "30B": 4, "65B": 8}[self.value]

    @property
    def embedding_dim(self) -> int:
        return {"7B": 4096, "13B": 5120, "30B": 6656, "65B": 8192}[self.value]


class PyTorchCheckpointData(ModelConversionData):
    """Input for converting a LLaMA PyTorch checkpoint directory."""

    model_type: ModelType
    directory: Path
    quantization: QuantizationType = QuantizationType.Q4_0
    output_directory: Path | None = None

    @property
    def destination(self) -> Path:
        return self.output_directory or self.directory


class GgmlQuantizeData(ModelConversionData):
    """Input for quantizing an f16 GGML model file."""

    source: Path
    output: Path | None = None
    quantization: QuantizationType = QuantizationType.Q4_0

    @property
    def destination(self) -> Path:
        if self.output is not None:
            return self.output
        return self.source.with_name(f"{self.source.stem}-{self.quantization}.bin")


class RequiredFilePayload(BaseModel):
    """Probe result for one required file."""

    model_config = ConfigDict(extra="forbid")

    path: str
    found: bool


class ValidationErrorPayload(BaseModel):
    """Family validation error surfaced to API clients."""

    model_config = ConfigDict(extra="forbid")

    kind: str
    message: str


class CheckResponse(BaseModel):
    """Pre-flight validation result."""

    model_config = ConfigDict(extra="forbid")

    family: str
    valid: bool
    required_files: list[RequiredFilePayload]
    steps: list[str]
    error: ValidationErrorPayload | None = None


class FamilyPayload(BaseModel):
    """Registered conversion family."""

    model_config = ConfigDict(extra="forbid")

    name: str
    description: str
    steps: list[str]


class ConversionRequestPayload(BaseModel):
    """Request body for starting a background conversion."""

    model_config = ConfigDict(extra="forbid")

    family: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("family")
    @classmethod
    def _normalize_family(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("family cannot be blank.")
        return normalized


class JobPayload(BaseModel):
    """Snapshot of a background conversion job."""

    model_config = ConfigDict(extra="forbid")

    id: str
    family: str
    state: str
    steps: list[str]
    current_index: int | None = None
    current_step: str | None = None
    exit_code: int | None = None
    result: dict[str, Any] | None = None
