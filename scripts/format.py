"""Format script for graphchat."""

import subprocess
import sys
from pathlib import Path

RUFF_PASSES = [
    ["format"],
    # Whitespace-only fixes need preview + unsafe
    ["check", "--preview", "--fix", "--unsafe-fixes", "--select", "W291,W293,E3"],
    ["check", "--fix", "--ignore", "E501"],
]


def _targets() -> list[str]:
    tests = sorted(str(p) for p in Path(".").glob("test_*.py"))
    return ["graphchat/", "scripts/", *tests]


def main():
    """Run ruff format and targeted checks on the package and its tests."""
    targets = _targets()
    try:
        for ruff_args in RUFF_PASSES:
            subprocess.run(["uv", "run", "ruff", *ruff_args, *targets], check=True)
    except subprocess.CalledProcessError:
        sys.exit(1)


if __name__ == "__main__":
    main()
