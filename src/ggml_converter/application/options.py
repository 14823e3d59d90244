"""Typed option objects shared across conversion use-cases."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, replace
from pathlib import Path

from ggml_converter.types import InFlightPolicy


def default_thread_count() -> int:
    """Thread count for the quantizer, derived from the current processor count."""
    return max(1, os.cpu_count() or 1)


@dataclass(frozen=True)
class ConverterSettings:
    """External tool locations and execution policy.

    ``thread_count`` is explicit; use :meth:`default` or :meth:`from_env` to
    derive it from the machine instead of relying on ambient state.
    """

    python_executable: str = sys.executable
    convert_script: Path | None = None
    quantize_binary: str = "quantize"
    thread_count: int = 1
    step_timeout: float | None = None
    in_flight_policy: InFlightPolicy = InFlightPolicy.WAIT
    terminate_grace_period: float = 5.0
    poll_interval: float = 0.1
    max_workers: int = 2
    max_finished_jobs: int = 100
    log_directory: Path | None = None
    keep_intermediate: bool = False

    @classmethod
    def default(cls) -> ConverterSettings:
        """Build settings with machine-derived defaults."""
        return cls(thread_count=default_thread_count())

    @classmethod
    def from_env(cls) -> ConverterSettings:
        """Build settings from ``GGML_CONVERTER_*`` environment variables."""
        base = cls.default()
        script = os.getenv("GGML_CONVERTER_CONVERT_SCRIPT")
        timeout = os.getenv("GGML_CONVERTER_STEP_TIMEOUT")
        log_directory = os.getenv("GGML_CONVERTER_LOG_DIR")
        return replace(
            base,
            python_executable=os.getenv(
                "GGML_CONVERTER_PYTHON", base.python_executable
            ),
            convert_script=Path(script) if script else None,
            quantize_binary=os.getenv(
                "GGML_CONVERTER_QUANTIZE_BIN", base.quantize_binary
            ),
            thread_count=int(
                os.getenv("GGML_CONVERTER_THREADS", str(base.thread_count))
            ),
            step_timeout=float(timeout) if timeout else None,
            in_flight_policy=InFlightPolicy(
                os.getenv("GGML_CONVERTER_IN_FLIGHT_POLICY", base.in_flight_policy)
            ),
            max_workers=int(
                os.getenv("GGML_CONVERTER_MAX_WORKERS", str(base.max_workers))
            ),
            max_finished_jobs=int(
                os.getenv(
                    "GGML_CONVERTER_MAX_FINISHED_JOBS", str(base.max_finished_jobs)
                )
            ),
            log_directory=Path(log_directory) if log_directory else None,
        )
