"""Shared pytest configuration, marker assignment and model fixtures."""

from __future__ import annotations

import json
import struct
from collections.abc import Callable
from pathlib import Path

import pytest

from ggml_converter.formats import GGJT_MAGIC
from ggml_converter.schemas import ModelType


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Attach suite markers based on test file path."""
    del config
    for item in items:
        path = Path(str(item.fspath))
        parts = set(path.parts)
        if "e2e_tests" in parts:
            item.add_marker(pytest.mark.e2e)
        elif "integration_tests" in parts:
            item.add_marker(pytest.mark.integration)
        elif "unit_tests" in parts:
            item.add_marker(pytest.mark.unit)


def write_ggml(path: Path, magic: int = GGJT_MAGIC, version: int | None = 3) -> Path:
    header = struct.pack("<I", magic)
    if version is not None:
        header += struct.pack("<I", version)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(header + b"\x00" * 16)
    return path


@pytest.fixture
def ggml_writer() -> Callable[..., Path]:
    """Write a file starting with a GGML header."""
    return write_ggml


@pytest.fixture
def make_checkpoint(tmp_path: Path) -> Callable[..., Path]:
    """Create a LLaMA checkpoint directory with stub weights.

    ``dim`` overrides the embedding size written to ``params.json``; ``shards``
    overrides how many ``consolidated.*.pth`` files are created.
    """

    def _make(
        model_type: str = "7B",
        *,
        dim: int | None = None,
        shards: int | None = None,
        tokenizer: bool = True,
        params: object | None = None,
        name: str = "model",
    ) -> Path:
        size = ModelType(model_type)
        directory = tmp_path / name / model_type
        directory.mkdir(parents=True)
        if params is None:
            params = {
                "dim": dim if dim is not None else size.embedding_dim,
                "n_layers": 32,
                "n_heads": 32,
                "vocab_size": -1,
            }
        (directory / "params.json").write_text(json.dumps(params), encoding="utf-8")
        if tokenizer:
            (directory / "tokenizer.model").write_bytes(b"tokenizer")
        count = size.shard_count if shards is None else shards
        for index in range(count):
            (directory / f"consolidated.{index:02d}.pth").write_bytes(b"weights")
        return directory

    return _make
