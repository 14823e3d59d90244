#!/usr/bin/env python3
"""Architecture boundary checks."""

from __future__ import annotations

from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
PACKAGE = ROOT / "src/ggml_converter"

TRANSPORT_IMPORTS = [
    "import typer",
    "from typer",
    "import fastapi",
    "from fastapi",
    "import uvicorn",
]


def _read(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def _assert_no_imports(path: Path, banned: list[str]) -> None:
    text = _read(path)
    for token in banned:
        if token in text:
            raise SystemExit(f"Architecture violation in {path}: found '{token}'")


def main() -> None:
    """Run repository architecture boundary checks."""
    # Application code reaches processes only through the CommandRunner port.
    for path in (PACKAGE / "application").glob("*.py"):
        _assert_no_imports(
            path,
            [
                *TRANSPORT_IMPORTS,
                "import subprocess",
                "ggml_converter.adapters",
                "ggml_converter.families",
                "ggml_converter.cli",
                "ggml_converter.converter",
            ],
        )

    for path in (PACKAGE / "families").glob("*.py"):
        _assert_no_imports(path, [*TRANSPORT_IMPORTS, "import subprocess"])

    _assert_no_imports(PACKAGE / "cli/cli.py", ["import subprocess", "import fastapi"])

    print("Architecture checks passed.")


if __name__ == "__main__":
    main()
