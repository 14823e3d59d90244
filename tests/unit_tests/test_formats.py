"""Unit tests for GGML header inspection."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from ggml_converter.formats import (
    GGJT_MAGIC,
    GGMF_MAGIC,
    GGML_MAGIC,
    GgmlHeader,
    read_ggml_header,
)


def test_magic_is_read_little_endian(tmp_path: Path) -> None:
    path = tmp_path / "model.bin"
    path.write_bytes(b"tjgg\x03\x00\x00\x00")
    assert read_ggml_header(path) == GgmlHeader(magic=GGJT_MAGIC, version=3)


def test_unversioned_container_ignores_following_bytes(
    tmp_path: Path, ggml_writer: Callable[..., Path]
) -> None:
    header = read_ggml_header(ggml_writer(tmp_path / "m.bin", GGML_MAGIC, None))
    assert header == GgmlHeader(magic=GGML_MAGIC)
    assert header is not None and header.supported


def test_truncated_files_have_no_header(tmp_path: Path) -> None:
    short = tmp_path / "short.bin"
    short.write_bytes(b"gg")
    versionless = tmp_path / "versionless.bin"
    versionless.write_bytes(b"fmgg")
    assert read_ggml_header(short) is None
    assert read_ggml_header(versionless) is None


def test_supported_versions() -> None:
    assert GgmlHeader(magic=GGMF_MAGIC, version=1).supported
    assert not GgmlHeader(magic=GGMF_MAGIC, version=2).supported
    assert GgmlHeader(magic=GGJT_MAGIC, version=2).supported
    assert not GgmlHeader(magic=0xDEADBEEF, version=1).supported
