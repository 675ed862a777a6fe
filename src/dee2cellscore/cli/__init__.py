"""
dee2cellscore CLI - Build CellScore reference datasets from DEE2.

Commands:
    dee2cellscore build    - Fetch runs and build the raw/agg/deseq2/rank/tsne outputs
    dee2cellscore inspect  - Summarize serialized datasets
"""

import argparse
import sys
from typing import Optional, List

from dee2cellscore import __version__


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI dispatcher for dee2cellscore."""
    parser = argparse.ArgumentParser(
        prog="dee2cellscore",
        description="Build CellScore reference datasets from DEE2 RNA-seq counts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  build     Fetch runs and build the raw/agg/deseq2/rank/tsne outputs
  inspect   Summarize serialized datasets

Examples:
  dee2cellscore build --curated hsapiens_colData_transitions_v3.5.csv --output out --zip
  dee2cellscore build --config build.yaml --no-build-tsne
  dee2cellscore inspect out/homosapienDEE2Data_PASS_rank.zip
        """
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Import and register subcommands
    from dee2cellscore.cli import build, inspect
    build.register_parser(subparsers)
    inspect.register_parser(subparsers)

    if args is None:
        args = sys.argv[1:]
    parsed_args = parser.parse_args(args)
    parsed_args.argv = list(args)

    if parsed_args.command is None:
        parser.print_help()
        return 0

    # Dispatch to subcommand
    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
