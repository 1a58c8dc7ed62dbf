#!/usr/bin/env python3
"""
Image Search CLI

Searches the image text index by keywords.  Every keyword must match the
text found in an image, its file name or its folder (case-insensitive).

Usage:
    python search_images.py receipt 2023
    python search_images.py --interactive

Examples:
    # Screenshots mentioning an error code
    python search_images.py error 0x80070005

    # Type queries and watch results update (also while a scan is running)
    python search_images.py -i
"""

import argparse
import asyncio
import logging
import os
import sys

# Add the project root to the Python path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from dotenv import load_dotenv
load_dotenv()


def setup_logging(verbose: bool = False, quiet: bool = False):
    """Configure logging based on verbosity."""
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def snippet(text: str, keywords, width: int = 80) -> str:
    """Part of the extracted text around the first keyword hit."""
    flat = " ".join(text.split())
    lowered = flat.lower()
    start = 0
    for keyword in keywords:
        index = lowered.find(keyword.lower())
        if index >= 0:
            start = max(0, index - width // 4)
            break
    excerpt = flat[start:start + width]
    if start > 0:
        excerpt = "..." + excerpt
    if start + width < len(flat):
        excerpt += "..."
    return excerpt


def print_results(query: str, results, limit: int, show_text: bool):
    from picfinder.core.images.search import tokenize

    keywords = tokenize(query)
    print(f"{len(results)} images match '{query}'")
    for image in results[:limit]:
        print(f"  {image.file_path}")
        if show_text and image.extracted_text:
            print(f"      {snippet(image.extracted_text, keywords)}")
    if len(results) > limit:
        print(f"  ... and {len(results) - limit} more")


async def search_once(args, engine) -> int:
    query = " ".join(args.keywords)
    if not query.strip():
        print("Error: no keywords given", file=sys.stderr)
        return 1

    results = await engine.query(query)
    print_results(query, results, args.limit, args.show_text)
    return 0 if results else 2


async def search_interactive(args, engine, debounce_seconds: float) -> int:
    from picfinder.core.images.search import LiveSearch

    live = LiveSearch(engine, debounce_seconds=debounce_seconds)

    def on_state(state):
        if state.is_loading or not state.query.strip():
            return
        print_results(state.query, list(state.results), args.limit, args.show_text)

    unsubscribe = live.state.subscribe(on_state)
    loop = asyncio.get_running_loop()
    print("Type keywords and press Enter (empty line or Ctrl-D to quit)")
    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line or not line.strip():
                break
            live.set_query(line.strip())
    finally:
        unsubscribe()
        await live.aclose()
    return 0


async def run(args) -> int:
    from picfinder.core.config import get_settings
    from picfinder.core.database import init_db
    from picfinder.core.images.repository import ImageRepository
    from picfinder.core.images.search import SearchEngine

    settings = get_settings()
    db = init_db(args.database_url)
    try:
        engine = SearchEngine(ImageRepository(db.session_factory))
        if args.interactive:
            return await search_interactive(args, engine, settings.search_debounce_seconds)
        return await search_once(args, engine)
    finally:
        db.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Search the image text index",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s invoice acme            # Images containing both words
  %(prog)s --show-text wifi        # Include a text excerpt per hit
  %(prog)s -i                      # Interactive search
        """
    )

    parser.add_argument(
        "keywords",
        nargs="*",
        help="Keywords (all must match)",
    )
    parser.add_argument(
        "--interactive", "-i",
        action="store_true",
        help="Read queries from stdin and print live results",
    )
    parser.add_argument(
        "--limit", "-l",
        type=int,
        default=50,
        help="Maximum number of results to print (default: 50)",
    )
    parser.add_argument(
        "--show-text", "-t",
        action="store_true",
        help="Print an excerpt of the extracted text for each hit",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        help="SQLAlchemy database URL (default: PICFINDER_DATABASE_URL or sqlite:///picfinder.db)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output",
    )
    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    if not args.interactive and not args.keywords:
        parser.error("keywords are required unless --interactive is given")

    # Setup logging
    setup_logging(verbose=args.verbose, quiet=args.quiet)

    exit_code = asyncio.run(run(args))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
