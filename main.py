"""CLI entry point for the non-technical summary renderer.

Usage::

    python main.py project.json [-o summary.docx] [--theme path/to/theme.yaml] [-v]

``project.json`` holds a project record of the form
``{"project": {"title": ...}, "data": {...}}``.
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from nts.builder import SummaryBuilder
from nts.exceptions import SerializationError

logger = logging.getLogger("nts-summary")


def _build_argument_parser() -> argparse.ArgumentParser:
    """Create and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="nts-summary",
        description="Render a project's non-technical summary as a .docx document.",
    )

    parser.add_argument(
        "input",
        help="Path to the project record JSON file.",
    )
    parser.add_argument(
        "-o", "--output",
        default=None,
        help=(
            "Path to the output .docx file. "
            "Defaults to {input_stem}_nts.docx in the same directory."
        ),
    )
    parser.add_argument(
        "--theme",
        default=None,
        help="Path to a custom theme YAML file.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=False,
        help="Enable verbose (DEBUG) logging output.",
    )

    return parser


def _setup_logging(verbose: bool) -> None:
    """Configure the root logger for the application."""
    level = logging.DEBUG if verbose else logging.INFO

    log_dir = Path("logs")
    log_dir.mkdir(exist_ok=True)

    handlers: list[logging.Handler] = [
        logging.StreamHandler(sys.stderr),
        logging.FileHandler(log_dir / "nts-summary.log", encoding="utf-8"),
    ]

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def _resolve_output_path(input_path: str, output_arg: str | None) -> str:
    """Determine the output file path.

    If *output_arg* is provided it is returned as-is.  Otherwise the output
    is placed alongside the input file with an ``_nts.docx`` suffix.
    """
    if output_arg:
        return output_arg

    src = Path(input_path)
    return str(src.with_name(f"{src.stem}_nts.docx"))


def main() -> None:
    """Read a project record and write its summary document."""
    parser = _build_argument_parser()
    args = parser.parse_args()

    _setup_logging(args.verbose)

    input_path = args.input
    if not os.path.isfile(input_path):
        logger.error("Input file not found: %s", input_path)
        print(f"Error: Input file not found: {input_path}", file=sys.stderr)
        sys.exit(1)

    output_path = _resolve_output_path(input_path, args.output)
    logger.info("Input : %s", input_path)
    logger.info("Output: %s", output_path)

    try:
        with open(input_path, "r", encoding="utf-8") as fh:
            record = json.load(fh)
        if not isinstance(record, dict):
            raise ValueError("project record must be a JSON object")

        builder = SummaryBuilder(theme_path=args.theme)
        content = builder.build(record)

        out = Path(output_path)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(content)

        print(f"Summary saved to: {output_path}")
        logger.info("Summary written: %s (%d bytes)", output_path, len(content))

    except FileNotFoundError as exc:
        logger.error("File not found: %s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except ValueError as exc:
        # json.JSONDecodeError is a ValueError too.
        logger.error("Invalid input: %s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except SerializationError as exc:
        logger.error("Could not write document: %s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)
    except Exception as exc:
        logger.exception("Unexpected error while building the summary.")
        print(
            f"Error: An unexpected error occurred: {exc}\n"
            "Run with -v for detailed debug output.",
            file=sys.stderr,
        )
        sys.exit(2)


if __name__ == "__main__":
    main()
