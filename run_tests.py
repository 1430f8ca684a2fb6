#!/usr/bin/env python3
"""Test runner for the event check-in backend."""
import subprocess
import sys


def run_tests() -> int:
    """Run the full test suite and return the exit code."""
    completed = subprocess.run(
        [sys.executable, "-m", "pytest", "-q", *sys.argv[1:]],  # extra args go to pytest
        check=False,
    )
    if completed.returncode == 0:
        print("\n✅ All tests passed!")
    else:
        print(f"\n❌ Tests failed with exit code {completed.returncode}")
    return completed.returncode


if __name__ == "__main__":
    raise SystemExit(run_tests())
