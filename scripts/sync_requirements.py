#!/usr/bin/env python3
"""Write or verify requirements.txt from the pyproject.toml declarations.

``requirements.txt`` pins the daemon profile: base dependencies plus the
``server`` extra. Run with ``--check`` in CI to fail on drift.
"""

from __future__ import annotations

import argparse
import tomllib
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
REQUIREMENTS = ROOT / "requirements.txt"
EXTRAS = ("server",)
HEADER = (
    f"# Generated from pyproject.toml (base + extras: {', '.join(EXTRAS)})\n"
    "# Do not edit manually; run: python scripts/sync_requirements.py\n"
)


def declared() -> list[str]:
    project = tomllib.loads((ROOT / "pyproject.toml").read_text(encoding="utf-8"))[
        "project"
    ]
    deps = set(project.get("dependencies", []))
    optional = project.get("optional-dependencies", {})
    for extra in EXTRAS:
        deps.update(optional.get(extra, []))
    return sorted(dep.strip() for dep in deps if dep.strip())


def pinned() -> list[str]:
    lines = REQUIREMENTS.read_text(encoding="utf-8").splitlines()
    entries = (line.split("#", 1)[0].strip() for line in lines)
    return sorted(entry for entry in entries if entry)


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--check", action="store_true", help="Fail if requirements.txt is stale."
    )
    args = parser.parse_args()

    expected = declared()
    if not args.check:
        REQUIREMENTS.write_text(HEADER + "\n".join(expected) + "\n", encoding="utf-8")
        print(f"Wrote {len(expected)} requirements to {REQUIREMENTS.name}")
        return

    actual = pinned()
    missing = sorted(set(expected) - set(actual))
    unexpected = sorted(set(actual) - set(expected))
    if missing or unexpected:
        report = [f"{REQUIREMENTS.name} is out of sync with pyproject.toml."]
        report += [f"- missing: {entry}" for entry in missing]
        report += [f"- unexpected: {entry}" for entry in unexpected]
        raise SystemExit("\n".join(report))
    print("Dependency sync check passed.")


if __name__ == "__main__":
    main()
