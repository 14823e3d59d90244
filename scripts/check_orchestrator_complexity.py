#!/usr/bin/env python3
"""Simple complexity guard for the use-cases and the pipeline engine."""

from __future__ import annotations

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
TARGETS = [
    ROOT / "src/ggml_converter/application/use_cases.py",
    ROOT / "src/ggml_converter/application/pipeline.py",
]
MAX_STATEMENTS = 40


def main() -> None:
    """Fail when any function or method exceeds the statement threshold."""
    violations: list[str] = []
    for target in TARGETS:
        tree = ast.parse(target.read_text(encoding="utf-8"))
        for node in ast.walk(tree):
            if isinstance(node, ast.FunctionDef | ast.AsyncFunctionDef):
                stmt_count = len(node.body)
                if stmt_count > MAX_STATEMENTS:
                    violations.append(
                        f"{target.name}:{node.name}: {stmt_count} statements"
                    )
    if violations:
        raise SystemExit(
            "Orchestrator complexity threshold exceeded:\n"
            + "\n".join(f"- {v}" for v in violations)
        )
    print("Orchestrator complexity check passed.")


if __name__ == "__main__":
    main()
