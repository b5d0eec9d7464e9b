"""Command-line entry for chronome."""

from __future__ import annotations

import argparse
import sys
from typing import NoReturn

from . import run_service


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the chronome CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="chronome",
        description="chronome - today's meetings from your calendar feeds, as JSON lines",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m chronome                          # Run with ./chronome.yaml until interrupted
  python -m chronome --config cal.yaml --once # Print one payload and exit
        """,
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Path to YAML configuration (default: $CHRONOME_CONFIG or ./chronome.yaml)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Perform a single refresh, print its payload and exit",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Override the configured log level",
    )

    return parser


def main(argv: list[str] | None = None) -> NoReturn:
    """Run the chronome CLI."""
    parser = _create_parser()
    args = parser.parse_args(argv)
    sys.exit(run_service(args))


if __name__ == "__main__":
    main()
