"""Public conversion API (delegates to application use-cases)."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from ggml_converter.application.jobs import ConversionJob, JobManager
from ggml_converter.application.options import ConverterSettings
from ggml_converter.application.ports import CancellationToken, PipelineObserver
from ggml_converter.application.results import ConversionStatus
from ggml_converter.application.use_cases import (
    PreflightReport,
    check_conversion as _check_conversion,
    convert_model,
)
from ggml_converter.plugins.registry import create_default_registry


def check_conversion(
    family: str,
    data: Mapping[str, Any],
    *,
    plugin_modules: Iterable[str] | None = None,
) -> PreflightReport:
    """Validate raw conversion data and return the pre-flight checklist."""
    descriptor = create_default_registry(extra_modules=plugin_modules).get(family)
    return _check_conversion(descriptor, descriptor.parse_data(data))


def convert(
    family: str,
    data: Mapping[str, Any],
    *,
    settings: ConverterSettings | None = None,
    observer: PipelineObserver | None = None,
    cancellation: CancellationToken | None = None,
    plugin_modules: Iterable[str] | None = None,
) -> ConversionStatus[Any]:
    """Validate raw conversion data and run the family's pipeline to completion.

    Raises
    ------
    ConversionValidationError
        The family-specific validation error when the data is rejected.
    """
    descriptor = create_default_registry(extra_modules=plugin_modules).get(family)
    return convert_model(
        descriptor,
        descriptor.parse_data(data),
        settings=settings or ConverterSettings.from_env(),
        observer=observer,
        cancellation=cancellation,
    )


def submit_conversion(
    manager: JobManager,
    family: str,
    data: Mapping[str, Any],
) -> ConversionJob:
    """Validate raw conversion data and schedule it on ``manager``'s workers."""
    return manager.submit(family, data)
