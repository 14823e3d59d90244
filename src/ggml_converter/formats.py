"""GGML container header inspection."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from pathlib import Path

GGML_MAGIC = 0x67676D6C  # "ggml", unversioned
GGMF_MAGIC = 0x67676D66  # "ggmf", versioned
GGJT_MAGIC = 0x67676A74  # "ggjt", versioned, mmap-able

SUPPORTED_VERSIONS: dict[int, frozenset[int]] = {
    GGMF_MAGIC: frozenset({1}),
    GGJT_MAGIC: frozenset({1, 2, 3}),
}


@dataclass(frozen=True)
class GgmlHeader:
    """Magic and optional container version read from a model file."""

    magic: int
    version: int | None = None

    @property
    def supported(self) -> bool:
        if self.magic == GGML_MAGIC:
            return True
        return self.version in SUPPORTED_VERSIONS.get(self.magic, frozenset())


def read_ggml_header(path: Path) -> GgmlHeader | None:
    """Read the GGML header from ``path``.

    Returns ``None`` when the file is too short or starts with an unknown
    magic. ``OSError`` from opening or reading the file propagates.
    """
    with path.open("rb") as handle:
        raw = handle.read(8)
    if len(raw) < 4:
        return None
    (magic,) = struct.unpack("<I", raw[:4])
    if magic == GGML_MAGIC:
        return GgmlHeader(magic=magic)
    if magic in SUPPORTED_VERSIONS:
        if len(raw) < 8:
            return None
        (version,) = struct.unpack("<I", raw[4:8])
        return GgmlHeader(magic=magic, version=version)
    return None
