"""CLI entry point for the Word generator.

Usage::

    python main.py request.json [-o exports/] [--settings overlay.yaml] \\
        [--base-url https://host] [--sweep] [-v]

``request.json`` holds a generation request (``title``, ``sections``,
optional ``header``, ``footer`` and ``wordConfig``).  With ``--sweep`` and no
request, only the exports directory clean-up runs.
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from wordgen.assembler import DocumentAssembler
from wordgen.models import DocumentRequest
from wordgen.settings import WordSettings
from wordgen.storage import ExportStore

logger = logging.getLogger("wordgen")

DEFAULT_BASE_URL = "http://localhost:3000"
DOWNLOAD_ROUTE = "/word-generator/downloads"


def _build_argument_parser() -> argparse.ArgumentParser:
    """Create and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="wordgen",
        description="Generate a Word document from a JSON request.",
    )

    parser.add_argument(
        "request",
        nargs="?",
        default=None,
        help="Path to the JSON request file.",
    )
    parser.add_argument(
        "-o", "--exports-dir",
        default=None,
        help="Directory the document is saved to (defaults to the configured exports directory).",
    )
    parser.add_argument(
        "--settings",
        default=None,
        help="Path to a settings overlay YAML file.",
    )
    parser.add_argument(
        "--base-url",
        default=None,
        help=(
            "Public base URL used to print the download link. "
            f"Defaults to $RENDER_EXTERNAL_URL or {DEFAULT_BASE_URL}."
        ),
    )
    parser.add_argument(
        "--sweep",
        action="store_true",
        default=False,
        help="Delete exported documents older than the retention window.",
    )

    # Verbosity
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
        logging.FileHandler(log_dir / "wordgen.log", encoding="utf-8"),
    ]

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def download_url(name: str, base_url: str | None = None) -> str:
    """Return the public download URL of artifact *name*."""
    base = base_url or os.environ.get("RENDER_EXTERNAL_URL") or DEFAULT_BASE_URL
    return f"{base.rstrip('/')}{DOWNLOAD_ROUTE}/{name}"


def _load_request(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as fh:
        payload = json.load(fh)
    if not isinstance(payload, dict):
        raise ValueError("Request must be a JSON object")
    return payload


def _print_summary(summary: dict, degraded: bool) -> None:
    """Print a human-readable document summary to stdout."""
    print("\n--- Generation Summary ---")
    print(f"  Headings     : {summary.get('headings', 0)}")
    print(f"  Paragraphs   : {summary.get('paragraphs', 0)}")
    print(f"  List items   : {summary.get('list_items', 0)}")
    print(f"  Tables       : {summary.get('tables', 0)}")
    print(f"  Images       : {summary.get('images', 0)}")
    print(f"  Placeholders : {summary.get('placeholders', 0)}")
    print(f"  Footnotes    : {summary.get('footnotes', 0)}")
    if degraded:
        print("  (generation failed: title-only document saved)")
    print("--------------------------\n")


def main(argv: list[str] | None = None) -> None:
    """Run the Word generator pipeline."""
    parser = _build_argument_parser()
    args = parser.parse_args(argv)

    # -- Logging -----------------------------------------------------------
    _setup_logging(args.verbose)

    if args.request is None and not args.sweep:
        parser.error("a request file is required unless --sweep is given")

    try:
        settings = WordSettings(overlay_path=args.settings)
        store = ExportStore.from_settings(settings, args.exports_dir)

        # -- Sweep ---------------------------------------------------------
        if args.sweep:
            removed = store.sweep()
            print(f"Removed {len(removed)} expired document(s) from {store.directory}")
            if args.request is None:
                return

        # -- Validate input ------------------------------------------------
        if not os.path.isfile(args.request):
            logger.error("Request file not found: %s", args.request)
            print(f"Error: Request file not found: {args.request}", file=sys.stderr)
            sys.exit(1)

        logger.info("Request: %s", args.request)
        logger.info("Exports: %s", store.directory)

        # -- Generate ------------------------------------------------------
        request = DocumentRequest.from_dict(_load_request(args.request), settings)
        assembler = DocumentAssembler(settings=settings, store=store)
        result = assembler.run(request)

        # -- Summary -------------------------------------------------------
        _print_summary(result.tree.summary(), result.degraded)
        print(f"Document saved to: {result.path}")
        print(f"Download URL: {download_url(result.name, args.base_url)}")
        logger.info("Generation complete: %s", result.name)

    except FileNotFoundError as exc:
        logger.error("File not found: %s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except ValueError as exc:
        # json.JSONDecodeError is a ValueError
        logger.error("Invalid input: %s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except Exception as exc:
        logger.exception("Unexpected error during generation.")
        print(
            f"Error: An unexpected error occurred: {exc}\n"
            "Run with -v for detailed debug output.",
            file=sys.stderr,
        )
        sys.exit(2)


if __name__ == "__main__":
    main()
