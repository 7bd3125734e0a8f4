"""The smallest possible command: greet the user."""

from __future__ import annotations

import argparse
import sys

GREETING = "Hello SLAM!"
LIBRARY_GREETING = "Hello SLAM"


def _emit(text: str) -> str:
    """Write one line to standard output and return what was written."""
    line = f"{text}\n"
    sys.stdout.write(line)
    sys.stdout.flush()
    return line


def print_hello() -> str:
    """Print the library greeting and return the line written."""
    line = f"{LIBRARY_GREETING}\n"
    sys.stdout.write(line)
    sys.stdout.flush()
    return line


def main(argv: list[str] | None = None) -> int:
    """Print a greeting; with ``--library`` use the library routine."""
    parser = argparse.ArgumentParser(prog="hello", description="Print a greeting.")
    parser.add_argument(
        "--library",
        action="store_true",
        help="greet through the library function",
    )
    args = parser.parse_args(argv)
    if args.library:
        print_hello()
    else:
        _emit(GREETING)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())