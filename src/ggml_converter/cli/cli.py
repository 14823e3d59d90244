#!/usr/bin/env python3
"""
ggml_converter.cli.cli

Typer-based CLI for converting LLaMA checkpoints to GGML.

Every command validates its inputs first, prints the pre-flight checklist of
required files and the planned steps, then runs the conversion pipeline on a
background worker while reporting progress.

Examples
--------
Check a checkpoint without converting it:

    convert-to-ggml pytorch models/7B --model-type 7B --check-only

Convert and quantize:

    convert-to-ggml --convert-script convert-pth-to-ggml.py pytorch models/7B --model-type 7B
"""

from __future__ import annotations

import dataclasses
import logging
import shutil
import sys
import traceback
from pathlib import Path
from typing import Any

import typer

from ggml_converter.application.options import ConverterSettings
from ggml_converter.application.results import (
    ConversionFailure,
    ConversionStatus,
    ConversionSuccess,
)
from ggml_converter.application.use_cases import PreflightReport, check_conversion
from ggml_converter.errors import ConverterError, DescriptorError
from ggml_converter.schemas import ModelType
from ggml_converter.types import InFlightPolicy, QuantizationType

app = typer.Typer(
    name="convert-to-ggml",
    help="Convert LLaMA PyTorch checkpoints and f16 GGML files to quantized GGML.",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

EXIT_VALIDATION = 2
EXIT_CANCELLED = 130
CHECK_ONLY_HELP = "Only print the pre-flight checklist and step plan."
QUANTIZATION_HELP = "Quantization format for the output model."


# -----------------------------
# Output helpers
# -----------------------------
class _EchoObserver:
    """Print one line per step transition."""

    def __init__(self, total: int) -> None:
        self._total = total

    def step_started(self, index: int, step: str) -> None:
        typer.echo(f"[{index + 1}/{self._total}] {_label(step)}...")

    def step_finished(self, index: int, step: str, exit_code: int) -> None:
        if exit_code == 0:
            typer.secho(f"[{index + 1}/{self._total}] ✓ {_label(step)}", fg="green")
        else:
            typer.secho(
                f"[{index + 1}/{self._total}] ✗ {_label(step)} (exit code {exit_code})",
                fg="red",
                err=True,
            )


def _label(step: str) -> str:
    return step.replace("_", " ").capitalize()


def _configure_logging(verbose: bool, debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        force=True,
    )


def _print_checklist(report: PreflightReport) -> None:
    typer.echo(f"Required files ({report.family}):")
    for probe in report.required_files:
        mark = "✓" if probe.found else "✗"
        typer.secho(f"  {mark} {probe.path}", fg="green" if probe.found else "red")


def _print_plan(report: PreflightReport) -> None:
    typer.echo("Steps:")
    for index, step in enumerate(report.steps, start=1):
        typer.echo(f"  {index}. {step.label}")


def _print_unexpected_error(exc: Exception, debug: bool) -> int:
    """Print a user-friendly error and return the process exit code."""
    typer.secho(f"✗ {type(exc).__name__}: {exc}", fg="red", err=True)
    if debug:
        typer.echo("\nTraceback:", err=True)
        typer.echo(
            "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            err=True,
        )
    return 1


def _status_exit_code(status: ConversionStatus[Any]) -> int:
    """Map a terminal status to a process exit code.

    Failure codes pass through when they are valid process exit codes; signal
    terminations (negative codes) map to 1 but are still printed verbatim.
    """
    if isinstance(status, ConversionSuccess):
        return 0
    if isinstance(status, ConversionFailure):
        return status.exit_code if 0 < status.exit_code < 256 else 1
    return EXIT_CANCELLED


def _report_status(status: ConversionStatus[Any]) -> None:
    if isinstance(status, ConversionSuccess):
        result = status.result
        fields = dataclasses.asdict(result) if dataclasses.is_dataclass(result) else {}
        paths = [
            path
            for value in fields.values()
            for path in (value if isinstance(value, tuple | list) else [value])
            if isinstance(path, Path)
        ]
        for path in paths or [result]:
            typer.secho(f"✓ Saved: {path}", fg="green")
    elif isinstance(status, ConversionFailure):
        typer.secho(
            f"✗ Step '{status.step}' failed with exit code {status.exit_code}",
            fg="red",
            err=True,
        )
    else:
        typer.secho(f"✗ Conversion cancelled at step '{status.step}'", fg="yellow", err=True)


# -----------------------------
# Shared conversion flow
# -----------------------------
def _run_family(
    ctx: typer.Context,
    family: str,
    payload: dict[str, Any],
    check_only: bool,
    plugin_modules: list[str] | None = None,
) -> None:
    debug: bool = bool(ctx.obj.get("debug", False))
    settings: ConverterSettings = ctx.obj["settings"]

    from ggml_converter.plugins.registry import create_default_registry

    try:
        registry = create_default_registry(extra_modules=plugin_modules)
        descriptor = registry.get(family)
        data = descriptor.parse_data(payload)
    except ConverterError as exc:
        raise typer.BadParameter(str(exc)) from exc

    report = check_conversion(descriptor, data)
    _print_checklist(report)
    if report.error is not None:
        typer.secho(
            f"✗ Validation failed ({report.error.kind}): {report.error}",
            fg="red",
            err=True,
        )
        raise typer.Exit(code=EXIT_VALIDATION)
    _print_plan(report)
    if check_only:
        return

    try:
        pipeline = descriptor.make_conversion_pipeline(
            report.validated,
            settings=settings,
            observer=_EchoObserver(len(report.steps)),
        )
        future = pipeline.start()
        try:
            status = future.result()
        except KeyboardInterrupt:
            typer.secho("Cancelling conversion...", fg="yellow", err=True)
            pipeline.cancel()
            status = future.result()
    except ConverterError as exc:
        raise typer.Exit(code=_print_unexpected_error(exc, debug))
    except Exception as exc:
        # Unexpected crash: still show a clean message; debug prints traceback.
        raise typer.Exit(code=_print_unexpected_error(exc, debug))

    _report_status(status)
    code = _status_exit_code(status)
    if code:
        raise typer.Exit(code=code)


def _parse_options(option_items: list[str] | None) -> dict[str, object]:
    """Parse repeatable KEY=VALUE options for the custom command."""
    parsed: dict[str, object] = {}
    for item in option_items or []:
        if "=" not in item:
            raise typer.BadParameter(
                f"Invalid option entry '{item}'. Use KEY=VALUE format."
            )
        key, value = item.split("=", 1)
        key = key.strip()
        if not key:
            raise typer.BadParameter("Option key cannot be empty.")
        parsed[key] = value
    return parsed


# -----------------------------
# Global options
# -----------------------------
@app.callback()
def _main(
    ctx: typer.Context,
    debug: bool = typer.Option(False, "--debug", help="Show full tracebacks on error."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log pipeline activity."),
    python_executable: str | None = typer.Option(
        None, "--python", help="Python interpreter used by conversion scripts."
    ),
    convert_script: Path | None = typer.Option(
        None, "--convert-script", help="Path to the PyTorch-to-GGML conversion script."
    ),
    quantize_binary: str | None = typer.Option(
        None, "--quantize-bin", help="Path or name of the quantize executable."
    ),
    threads: int | None = typer.Option(
        None, "--threads", min=1, help="Threads passed to the quantizer."
    ),
    step_timeout: float | None = typer.Option(
        None, "--step-timeout", min=0.0, help="Per-step deadline in seconds."
    ),
    terminate_on_cancel: bool = typer.Option(
        False,
        "--terminate-on-cancel",
        help="Terminate the running tool on cancellation instead of letting it finish.",
    ),
    log_dir: Path | None = typer.Option(
        None, "--log-dir", help="Directory receiving per-step tool output."
    ),
) -> None:
    """Initialize shared CLI state."""
    _configure_logging(verbose, debug)
    settings = ConverterSettings.from_env()
    overrides: dict[str, Any] = {
        "python_executable": python_executable,
        "convert_script": convert_script,
        "quantize_binary": quantize_binary,
        "thread_count": threads,
        "step_timeout": step_timeout,
        "log_directory": log_dir,
    }
    if terminate_on_cancel:
        overrides["in_flight_policy"] = InFlightPolicy.TERMINATE
    settings = dataclasses.replace(
        settings, **{key: value for key, value in overrides.items() if value is not None}
    )
    ctx.obj = {"debug": debug, "settings": settings}


# -----------------------------
# Commands
# -----------------------------
@app.command("pytorch")
def pytorch_cmd(
    ctx: typer.Context,
    model_dir: Path = typer.Argument(
        ...,
        help="Directory holding params.json, tokenizer.model and consolidated.*.pth.",
    ),
    model_type: ModelType = typer.Option(..., "--model-type", help="Checkpoint size."),
    quantization: QuantizationType = typer.Option(
        QuantizationType.Q4_0, "--quantization", help=QUANTIZATION_HELP
    ),
    output_dir: Path | None = typer.Option(
        None, "--output-dir", help="Where to write quantized parts (default: MODEL_DIR)."
    ),
    keep_intermediate: bool = typer.Option(
        False, "--keep-intermediate", help="Keep the f16 GGML files."
    ),
    check_only: bool = typer.Option(False, "--check-only", help=CHECK_ONLY_HELP),
) -> None:
    """Convert a LLaMA PyTorch checkpoint to quantized GGML.

    Parameters
    ----------
    ctx : typer.Context
        Typer context containing global options.
    model_dir : Path
        Checkpoint directory.
    model_type : ModelType
        Checkpoint size, which fixes the expected shard count.
    quantization : QuantizationType, default=q4_0
        Output quantization format.

    Notes
    -----
    - Requires a conversion script (``--convert-script`` or
      ``GGML_CONVERTER_CONVERT_SCRIPT``) and a ``quantize`` executable.
    - The conversion script runs under ``--python`` and needs numpy,
      sentencepiece and torch.
    """
    if keep_intermediate:
        ctx.obj["settings"] = dataclasses.replace(
            ctx.obj["settings"], keep_intermediate=True
        )
    payload: dict[str, Any] = {
        "model_type": model_type,
        "directory": model_dir,
        "quantization": quantization,
    }
    if output_dir is not None:
        payload["output_directory"] = output_dir
    _run_family(ctx, "pytorch-ggml", payload, check_only)


@app.command("quantize")
def quantize_cmd(
    ctx: typer.Context,
    source: Path = typer.Argument(..., help="f16 GGML model file."),
    output: Path | None = typer.Argument(
        None, help="Output file (default: <source stem>-<quantization>.bin)."
    ),
    quantization: QuantizationType = typer.Option(
        QuantizationType.Q4_0, "--quantization", help=QUANTIZATION_HELP
    ),
    check_only: bool = typer.Option(False, "--check-only", help=CHECK_ONLY_HELP),
) -> None:
    """Quantize an existing f16 GGML model."""
    payload: dict[str, Any] = {"source": source, "quantization": quantization}
    if output is not None:
        payload["output"] = output
    _run_family(ctx, "ggml-quantize", payload, check_only)


@app.command("custom")
def custom_cmd(
    ctx: typer.Context,
    family: str = typer.Argument(..., help="Registered conversion family name."),
    plugin_module: list[str] | None = typer.Option(
        None,
        "--plugin-module",
        help="Plugin module import path or file path (repeatable).",
    ),
    option: list[str] | None = typer.Option(
        None, "--option", help="Conversion data KEY=VALUE (repeatable)."
    ),
    check_only: bool = typer.Option(False, "--check-only", help=CHECK_ONLY_HELP),
) -> None:
    """Run any registered family, including plugin-provided ones."""
    _run_family(ctx, family, _parse_options(option), check_only, plugin_module)


@app.command("families")
def families_cmd(
    plugin_module: list[str] | None = typer.Option(
        None, "--plugin-module", help="Plugin module to load (repeatable)."
    ),
) -> None:
    """List conversion families and their steps."""
    from ggml_converter.plugins.registry import create_default_registry

    try:
        registry = create_default_registry(extra_modules=plugin_module)
    except DescriptorError as exc:
        raise typer.BadParameter(str(exc)) from exc
    for descriptor in registry.descriptors():
        typer.echo(f"{descriptor.name}: {descriptor.description}")
        for index, step in enumerate(descriptor.conversion_steps, start=1):
            typer.echo(f"  {index}. {step.label}")


@app.command("doctor")
def doctor_cmd(ctx: typer.Context) -> None:
    """Print tool availability and installed package versions."""
    import importlib.metadata as metadata

    settings: ConverterSettings = ctx.obj["settings"]
    typer.echo(f"Python: {sys.version.split()[0]}")
    for package in ["pydantic", "typer", "fastapi", "uvicorn"]:
        try:
            typer.echo(f"{package}: {metadata.version(package)}")
        except metadata.PackageNotFoundError:
            typer.echo(f"{package}: <not installed>")

    typer.echo(f"python executable: {settings.python_executable}")
    script = settings.convert_script
    if script is None:
        typer.echo("convert script: <not configured>")
    else:
        state = "" if script.is_file() else " <missing>"
        typer.echo(f"convert script: {script}{state}")
    quantizer = shutil.which(settings.quantize_binary)
    typer.echo(f"quantize: {quantizer or '<not found>'}")
    typer.echo(f"threads: {settings.thread_count}")

    from ggml_converter.plugins.registry import create_default_registry

    typer.echo(f"families: {', '.join(create_default_registry().names())}")


if __name__ == "__main__":
    app()
