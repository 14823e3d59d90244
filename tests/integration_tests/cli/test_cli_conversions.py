"""Integration tests running full conversions with real child processes."""

from __future__ import annotations

import sys
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from ggml_converter.adapters.process import EXIT_NOT_EXECUTABLE
from ggml_converter.application.options import ConverterSettings
from ggml_converter.application.results import ConversionCancelled, ConversionFailure
from ggml_converter.application.use_cases import build_pipeline
from ggml_converter.cli.cli import app
from ggml_converter.families import GgmlQuantizeConversion, PyTorchToGgmlConversion
from ggml_converter.formats import GGJT_MAGIC, read_ggml_header
from ggml_converter.schemas import GgmlQuantizeData, PyTorchCheckpointData
from ggml_converter.types import InFlightPolicy

runner = CliRunner()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ["GGML_CONVERTER_CONVERT_SCRIPT", "GGML_CONVERTER_IN_FLIGHT_POLICY"]:
        monkeypatch.delenv(name, raising=False)


def _sleeping_tool(path: Path) -> Path:
    path.write_text(f"#!{sys.executable}\nimport time\ntime.sleep(30)\n", encoding="utf-8")
    path.chmod(0o755)
    return path


def test_pytorch_conversion_end_to_end(
    tmp_path: Path, tools: Any, make_checkpoint: Callable[..., Path]
) -> None:
    directory = make_checkpoint("7B")
    output_dir = tmp_path / "quantized"
    result = runner.invoke(
        app,
        [
            "--python",
            str(tools.python),
            "--convert-script",
            str(tools.convert_script),
            "--quantize-bin",
            str(tools.quantize),
            "--threads",
            "2",
            "--log-dir",
            str(tmp_path / "logs"),
            "pytorch",
            str(directory),
            "--model-type",
            "7B",
            "--output-dir",
            str(output_dir),
        ],
    )

    assert result.exit_code == 0, result.output
    model = output_dir / "ggml-model-q4_0.bin"
    assert f"✓ Saved: {model}" in result.output
    assert "[5/5] ✓ Cleaning up" in result.output
    header = read_ggml_header(model)
    assert header is not None and header.magic == GGJT_MAGIC
    assert not (directory / "ggml-model-f16.bin").exists()
    log = (tmp_path / "logs" / "quantizing_model.log").read_text(encoding="utf-8")
    assert "type 2 threads 2" in log


def test_quantize_conversion_end_to_end(
    tmp_path: Path, tools: Any, ggml_writer: Callable[..., Path]
) -> None:
    source = ggml_writer(tmp_path / "ggml-model-f16.bin")
    result = runner.invoke(
        app,
        [
            "--quantize-bin",
            str(tools.quantize),
            "quantize",
            str(source),
            "--quantization",
            "q4_1",
        ],
    )
    assert result.exit_code == 0, result.output
    assert (tmp_path / "ggml-model-f16-q4_1.bin").is_file()


def test_tool_failure_exit_code_passes_through(
    tmp_path: Path, tools: Any, make_checkpoint: Callable[..., Path]
) -> None:
    directory = make_checkpoint("7B")
    failing = tmp_path / "failing.py"
    failing.write_text("import sys\nsys.exit(9)\n", encoding="utf-8")
    result = runner.invoke(
        app,
        [
            "--python",
            str(tools.python),
            "--convert-script",
            str(failing),
            "pytorch",
            str(directory),
            "--model-type",
            "7B",
        ],
    )
    assert result.exit_code == 9
    assert "Step 'converting_model' failed with exit code 9" in result.output


def test_terminate_policy_cancels_running_quantizer(
    tmp_path: Path, ggml_writer: Callable[..., Path]
) -> None:
    source = ggml_writer(tmp_path / "model.bin")
    settings = ConverterSettings(
        quantize_binary=str(_sleeping_tool(tmp_path / "quantize")),
        in_flight_policy=InFlightPolicy.TERMINATE,
        poll_interval=0.05,
        terminate_grace_period=2.0,
    )
    pipeline = build_pipeline(
        GgmlQuantizeConversion(), GgmlQuantizeData(source=source), settings=settings
    )
    future = pipeline.start()
    deadline = time.monotonic() + 10
    while pipeline.current_index != 1 and time.monotonic() < deadline:
        time.sleep(0.05)
    assert pipeline.current_index == 1

    pipeline.cancel()
    status = future.result(timeout=15)
    assert status == ConversionCancelled(step_index=1, step="quantizing_model")


def test_step_deadline_reports_failure(
    tmp_path: Path, ggml_writer: Callable[..., Path]
) -> None:
    source = ggml_writer(tmp_path / "model.bin")
    settings = ConverterSettings(
        quantize_binary=str(_sleeping_tool(tmp_path / "quantize")),
        step_timeout=0.5,
        poll_interval=0.05,
    )
    status = build_pipeline(
        GgmlQuantizeConversion(), GgmlQuantizeData(source=source), settings=settings
    ).run()
    assert isinstance(status, ConversionFailure)
    assert status.step == "quantizing_model"
    assert status.exit_code != 0


def test_output_directory_that_is_a_file_fails_quantize_step(
    tmp_path: Path, tools: Any, make_checkpoint: Callable[..., Path]
) -> None:
    directory = make_checkpoint("7B")
    blocker = tmp_path / "out.bin"
    blocker.write_bytes(b"occupied")
    settings = ConverterSettings(
        python_executable=str(tools.python),
        convert_script=tools.convert_script,
        quantize_binary=str(tools.quantize),
    )
    data = PyTorchCheckpointData(
        model_type="7B", directory=directory, output_directory=blocker
    )
    pipeline = build_pipeline(PyTorchToGgmlConversion(), data, settings=settings)
    status = pipeline.run()
    assert status == ConversionFailure(exit_code=1, step="quantizing_model")
    assert pipeline.status == status


def test_quantizer_with_unknown_binary_format_fails_with_126(
    tmp_path: Path, ggml_writer: Callable[..., Path]
) -> None:
    source = ggml_writer(tmp_path / "model.bin")
    quantizer = tmp_path / "quantize"
    quantizer.write_bytes(b"\x00\x01not an executable image\n")
    quantizer.chmod(0o755)
    status = build_pipeline(
        GgmlQuantizeConversion(),
        GgmlQuantizeData(source=source),
        settings=ConverterSettings(quantize_binary=str(quantizer)),
    ).run()
    assert status == ConversionFailure(
        exit_code=EXIT_NOT_EXECUTABLE, step="quantizing_model"
    )
