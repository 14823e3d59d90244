"""Unit tests for the conversion daemon HTTP API."""

from __future__ import annotations

import stat
import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient  # noqa: E402

from ggml_converter.application.jobs import JobManager  # noqa: E402
from ggml_converter.application.options import ConverterSettings  # noqa: E402
from ggml_converter.converter import http_server  # noqa: E402
from ggml_converter.converter.http_server import create_app  # noqa: E402
from ggml_converter.families import ggml_quantize  # noqa: E402
from ggml_converter.plugins.registry import create_default_registry  # noqa: E402


@pytest.fixture
def manager(
    tmp_path: Path,
    ggml_writer: Callable[..., Path],
    runner_factory: type,
) -> Iterator[JobManager]:
    tool = tmp_path / "bin" / "quantize"
    tool.parent.mkdir()
    tool.write_text(f"#!{sys.executable}\n", encoding="utf-8")
    tool.chmod(tool.stat().st_mode | stat.S_IXUSR)

    def quantize(argv: list[str]) -> int:
        ggml_writer(Path(argv[2]))
        return 0

    jobs = JobManager(
        create_default_registry(),
        ConverterSettings(quantize_binary=str(tool)),
        runner=runner_factory(quantize),
    )
    yield jobs
    jobs.shutdown()


@pytest.fixture
def client(manager: JobManager) -> TestClient:
    return TestClient(create_app(manager))


def test_health_endpoints(client: TestClient) -> None:
    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.get("/readyz").json() == {"status": "ready"}


def test_list_families(client: TestClient) -> None:
    response = client.get("/v1/families")
    assert response.status_code == 200
    families = {item["name"]: item for item in response.json()}
    assert sorted(families) == ["ggml-quantize", "pytorch-ggml"]
    assert families["ggml-quantize"]["steps"] == [
        "checking_quantizer",
        "quantizing_model",
        "verifying_output",
    ]


def test_check_reports_missing_files(
    client: TestClient, make_checkpoint: Callable[..., Path]
) -> None:
    directory = make_checkpoint("13B", shards=1)
    response = client.post(
        "/v1/families/pytorch-ggml/check",
        json={"model_type": "13B", "directory": str(directory)},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is False
    assert body["error"]["kind"] == "missing_files"
    assert [item["found"] for item in body["required_files"]] == [True, True, True, False]
    assert body["steps"][0] == "checking_environment"


def test_check_unreadable_source_is_typed_error(
    client: TestClient,
    tmp_path: Path,
    ggml_writer: Callable[..., Path],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    source = ggml_writer(tmp_path / "model.bin")

    def deny(path: Path) -> None:
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(ggml_quantize, "read_ggml_header", deny)
    response = client.post(
        "/v1/families/ggml-quantize/check", json={"source": str(source)}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is False
    assert body["error"]["kind"] == "unreadable_source"


def test_check_unknown_family_is_404(client: TestClient) -> None:
    response = client.post("/v1/families/safetensors/check", json={})
    assert response.status_code == 404


def test_check_invalid_payload_is_422(client: TestClient, tmp_path: Path) -> None:
    response = client.post(
        "/v1/families/pytorch-ggml/check",
        json={"model_type": "3B", "directory": str(tmp_path)},
    )
    assert response.status_code == 422


def test_conversion_job_lifecycle(
    client: TestClient,
    manager: JobManager,
    tmp_path: Path,
    ggml_writer: Callable[..., Path],
) -> None:
    source = ggml_writer(tmp_path / "model-f16.bin")
    output = tmp_path / "model-q4_1.bin"
    response = client.post(
        "/v1/conversions",
        json={
            "family": " GGML-Quantize ",
            "data": {
                "source": str(source),
                "output": str(output),
                "quantization": "q4_1",
            },
        },
    )
    assert response.status_code == 202
    job_id = response.json()["id"]
    job = manager.get(job_id)
    assert job is not None
    job.future.result(timeout=10)

    body = client.get(f"/v1/conversions/{job_id}").json()
    assert body["state"] == "succeeded"
    assert body["exit_code"] == 0
    assert body["result"] == {"model_path": str(output)}
    listed = client.get("/v1/conversions").json()
    assert [item["id"] for item in listed] == [job_id]


def test_conversion_validation_error_is_400(client: TestClient, tmp_path: Path) -> None:
    response = client.post(
        "/v1/conversions",
        json={"family": "ggml-quantize", "data": {"source": str(tmp_path / "no.bin")}},
    )
    assert response.status_code == 400
    assert response.json()["detail"]["kind"] == "missing_files"


def test_blank_family_is_rejected(client: TestClient) -> None:
    response = client.post("/v1/conversions", json={"family": "  ", "data": {}})
    assert response.status_code == 422


def test_unknown_job_is_404(client: TestClient) -> None:
    assert client.get("/v1/conversions/missing").status_code == 404
    assert client.delete("/v1/conversions/missing").status_code == 404


def test_main_uses_env_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    uvicorn = pytest.importorskip("uvicorn")
    captured: dict[str, object] = {}

    def _fake_run(app_ref: str, **kwargs: object) -> None:
        captured["app_ref"] = app_ref
        captured.update(kwargs)

    monkeypatch.setattr(uvicorn, "run", _fake_run)
    monkeypatch.setenv("CONVERTER_HTTP_HOST", "0.0.0.0")
    monkeypatch.setenv("CONVERTER_HTTP_PORT", "9100")
    monkeypatch.setattr(sys, "argv", ["converter-http"])

    http_server.main()

    assert captured["app_ref"] == "ggml_converter.converter.http_server:create_app"
    assert captured["host"] == "0.0.0.0"
    assert captured["port"] == 9100
    assert captured["factory"] is True
