"""Entry point for running callpubs as a module or installed script.

Usage:
    callpubs <command> ... / python -m callpubs <command> ...
"""

import sys

from callpubs.cli import main


def run() -> None:
    """Entry point: dispatch to the CLI and exit with its status."""
    sys.exit(main())


if __name__ == "__main__":
    run()
