"""Model conversion descriptor contract and the validated-data proof type."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import ValidationError

from ggml_converter.application.results import ModelConversionFile
from ggml_converter.errors import (
    ConversionValidationError,
    InvalidConversionDataError,
    PipelineStateError,
)
from ggml_converter.schemas import ModelConversionData
from ggml_converter.types import ConversionStepId

if TYPE_CHECKING:
    from ggml_converter.application.options import ConverterSettings
    from ggml_converter.application.pipeline import ConversionPipeline
    from ggml_converter.application.ports import (
        CancellationToken,
        CommandRunner,
        PipelineObserver,
    )

_SEAL = object()


class ValidatedConversionData[DataT: ModelConversionData]:
    """Proof that ``validated`` passed its family's validation gate.

    Instances come only from :meth:`ModelConversion.validate`. Each instance can
    be bound to a single pipeline.
    """

    __slots__ = ("_claimed", "_lock", "_validated")

    def __init__(self, validated: DataT, *, _seal: object = None) -> None:
        if _seal is not _SEAL:
            raise TypeError(
                "ValidatedConversionData can only be produced by a descriptor's validate()."
            )
        self._validated = validated
        self._claimed = False
        self._lock = threading.Lock()

    @property
    def validated(self) -> DataT:
        return self._validated

    @property
    def claimed(self) -> bool:
        return self._claimed

    def claim(self) -> DataT:
        """Bind the data to a pipeline; a second claim raises.

        Raises
        ------
        PipelineStateError
            If the data is already bound to a pipeline.
        """
        with self._lock:
            if self._claimed:
                raise PipelineStateError(
                    "Validated conversion data is already bound to a pipeline."
                )
            self._claimed = True
        return self._validated

    def __repr__(self) -> str:
        return f"ValidatedConversionData({self._validated!r})"


def probe_files(paths: Iterable[Path]) -> list[ModelConversionFile]:
    """Record whether each path exists as a regular file."""
    return [ModelConversionFile(path=path, found=path.is_file()) for path in paths]


def publish_probes(
    probes: list[ModelConversionFile],
    required_files: list[ModelConversionFile] | None,
) -> None:
    """Copy ``probes`` into the caller-supplied slot, replacing its contents."""
    if required_files is None:
        return
    required_files[:] = probes


class ModelConversion[
    DataT: ModelConversionData,
    StepT: ConversionStepId,
    ErrorT: ConversionValidationError,
    ResultT,
](ABC):
    """Per-family binding of required files, validation, steps and pipeline.

    Subclasses are stateless; one instance per family is registered by
    ``name``. Validation and step sequencing are always family-specific.
    """

    name: ClassVar[str]
    description: ClassVar[str] = ""
    data_model: ClassVar[type[ModelConversionData]]
    validation_error: ClassVar[type[ConversionValidationError]] = (
        ConversionValidationError
    )
    conversion_steps: ClassVar[tuple[ConversionStepId, ...]]

    def parse_data(self, payload: Mapping[str, Any]) -> DataT:
        """Parse a raw mapping into this family's conversion data.

        Raises
        ------
        InvalidConversionDataError
            If the payload does not match the family's data model.
        """
        try:
            return self.data_model.model_validate(dict(payload))  # type: ignore[return-value]
        except ValidationError as exc:
            raise InvalidConversionDataError(
                f"Invalid {self.name} conversion data: {exc}"
            ) from exc

    @abstractmethod
    def required_files_for(self, data: DataT) -> list[Path]:
        """Return every file the validation gate checks for existence."""

    @abstractmethod
    def validate(
        self,
        data: DataT,
        required_files: list[ModelConversionFile] | None = None,
    ) -> ValidatedConversionData[DataT] | ErrorT:
        """Validate ``data`` without side effects.

        Parameters
        ----------
        data
            Raw family conversion data.
        required_files : list[ModelConversionFile] | None, optional
            When given, filled with one probe per required file.

        Returns
        -------
        ValidatedConversionData | ConversionValidationError
            The sealed wrapper on success, the family error value otherwise.
        """

    @abstractmethod
    def make_conversion_pipeline(
        self,
        validated: ValidatedConversionData[DataT],
        *,
        settings: ConverterSettings | None = None,
        runner: CommandRunner | None = None,
        observer: PipelineObserver | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ConversionPipeline[StepT, ResultT]:
        """Build a single-use pipeline bound to ``validated``."""

    @staticmethod
    def _seal(data: DataT) -> ValidatedConversionData[DataT]:
        return ValidatedConversionData(data, _seal=_SEAL)
