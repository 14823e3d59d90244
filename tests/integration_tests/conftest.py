"""Executable stand-ins for the external conversion tools."""

from __future__ import annotations

import stat
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path

import pytest

_PYTHON = """
import runpy
import sys

if sys.argv[1:] == ["--version"]:
    print("Python 3 (stand-in)")
    sys.exit(0)
if sys.argv[1] == "-c":
    sys.exit(0)
sys.argv = sys.argv[1:]
runpy.run_path(sys.argv[0], run_name="__main__")
"""

_CONVERT = """
import struct
import sys
from pathlib import Path

directory = Path(sys.argv[1])
assert sys.argv[2] == "1"
(directory / "ggml-model-f16.bin").write_bytes(struct.pack("<II", 0x67676D66, 1))
print("wrote", directory / "ggml-model-f16.bin")
"""

_QUANTIZE = """
import struct
import sys

source, target, qtype, threads = sys.argv[1:5]
with open(source, "rb") as handle:
    handle.read(4)
with open(target, "wb") as handle:
    handle.write(struct.pack("<II", 0x67676A74, 3))
print("quantized", source, "->", target, "type", qtype, "threads", threads)
"""


@dataclass(frozen=True)
class Tools:
    python: Path
    convert_script: Path
    quantize: Path


def _executable(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body), encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def tools(tmp_path: Path) -> Tools:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    return Tools(
        python=_executable(bin_dir / "python", _PYTHON),
        convert_script=_executable(bin_dir / "convert-pth-to-ggml.py", _CONVERT),
        quantize=_executable(bin_dir / "quantize", _QUANTIZE),
    )
