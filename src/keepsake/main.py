"""Keepsake entry point."""

import logging
import sys

from .cli import run_cli


def main() -> None:
    """Main entry point."""
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    sys.exit(run_cli(sys.argv[1:]))


if __name__ == "__main__":
    main()
