#!/usr/bin/env python3
"""
Transform proxy test runner

Usage:
    python tests/run_tests.py              # all tests
    python tests/run_tests.py -k evict     # only tests matching "evict"
    python tests/run_tests.py --fast       # skip end-to-end route tests

Quick start:
    pip install -e ".[test]"
    python backend/tests/run_tests.py
"""

import subprocess
import sys
from pathlib import Path

tests_dir = Path(__file__).parent


def main():
    cmd = [sys.executable, "-m", "pytest", str(tests_dir)]
    args = sys.argv[1:]

    if not any(arg.startswith("-v") or arg == "-q" for arg in args):
        cmd.append("-v")

    if "--fast" in args:
        args.remove("--fast")
        cmd.extend(["--ignore", str(tests_dir / "test_routes.py")])

    cmd.extend(args)
    print(f"Running: {' '.join(cmd)}")
    sys.exit(subprocess.run(cmd).returncode)


if __name__ == "__main__":
    main()
