#!/usr/bin/env python3
"""
Image Folder CLI

Manages watched folders and keeps the image text index up to date.

Usage:
    python process_folders.py add ~/Pictures
    python process_folders.py scan ~/Pictures
    python process_folders.py scan-all

Examples:
    # Watch a folder and index it right away
    python process_folders.py add ~/Pictures/Screenshots --scan

    # Watch a granted tree (see config/tree_grants.yaml)
    python process_folders.py grants
    python process_folders.py add content://picfinder.tree/tree/camera

    # Periodic refresh from cron
    python process_folders.py scan-all --quiet
"""

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime

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


def format_scan_date(millis: int) -> str:
    """Render an epoch-millis scan date ('never' for 0)."""
    if not millis:
        return "never"
    return datetime.fromtimestamp(millis / 1000).strftime("%Y-%m-%d %H:%M")


class Services:
    """Components shared by the commands, built once per invocation."""

    def __init__(self, args):
        from picfinder.core.config import get_settings
        from picfinder.core.database import init_db
        from picfinder.core.images.folders import FolderService
        from picfinder.core.images.repository import ImageRepository
        from picfinder.core.images.scanner import create_enumerator, create_scanner
        from picfinder.core.images.storage import GrantedTreeStorage

        settings = get_settings()
        if args.config_dir:
            settings = settings.model_copy(update={"config_dir": args.config_dir})
        self.settings = settings

        self.db = init_db(args.database_url)
        self.repository = ImageRepository(self.db.session_factory)
        self.storage = GrantedTreeStorage.from_config_dir(
            self.settings.config_path, follow_symlinks=self.settings.follow_symlinks
        )
        self.folders = FolderService(self.repository, create_enumerator(self.settings, self.storage))
        self._scanner = None
        self._create_scanner = create_scanner

    @property
    def scanner(self):
        """Lazily create the scanner (needs the OCR engine)."""
        if self._scanner is None:
            self._scanner = self._create_scanner(self.repository, self.settings, storage=self.storage)
        return self._scanner

    def close(self):
        self.db.close()


def print_scan_result(result) -> int:
    from picfinder.core.images.scanner import ScanError

    if isinstance(result, ScanError):
        print(f"Error: {result.message}", file=sys.stderr)
        return 1

    print("\n" + "=" * 60)
    print(result.summary())
    print("=" * 60)
    return 0


def watch_progress(services: Services, verbose: bool):
    """Log scan progress snapshots (verbose mode only)."""
    from picfinder.core.images.progress import describe_progress

    logger = logging.getLogger(__name__)
    if not verbose:
        return lambda: None
    return services.scanner.progress.subscribe(lambda p: logger.debug(describe_progress(p)))


async def cmd_add(args, services: Services) -> int:
    from picfinder.core.images.errors import FolderAlreadyAddedError, InvalidFolderError

    try:
        folder = await services.folders.add_folder(args.folder)
    except (InvalidFolderError, FolderAlreadyAddedError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Watching {folder.display_name} ({folder.folder_path})")
    if args.scan:
        unsubscribe = watch_progress(services, args.verbose)
        try:
            return print_scan_result(await services.scanner.scan_folder(folder.folder_path))
        finally:
            unsubscribe()
    return 0


async def cmd_remove(args, services: Services) -> int:
    deleted = await services.folders.remove_folder(args.folder)
    print(f"Removed folder, {deleted} images deleted from the index")
    return 0


async def cmd_scan(args, services: Services) -> int:
    unsubscribe = watch_progress(services, args.verbose)
    try:
        result = await services.scanner.scan_folder(args.folder)
    finally:
        unsubscribe()
    return print_scan_result(result)


async def cmd_scan_all(args, services: Services) -> int:
    unsubscribe = watch_progress(services, args.verbose)
    try:
        result = await services.scanner.scan_all_folders()
    finally:
        unsubscribe()
    return print_scan_result(result)


async def cmd_cleanup(args, services: Services) -> int:
    removed = await services.scanner.cleanup_deleted_images()
    if removed > 0:
        print(f"Removed {removed} images whose files no longer exist")
    else:
        print("No deleted files detected")
    return 0


async def cmd_list(args, services: Services) -> int:
    if args.all:
        folders = await services.folders.list_folders()
    else:
        folders = await services.folders.list_active_folders()

    if not folders:
        print("No folders are being watched")
        return 0

    for folder in folders:
        status = "" if folder.is_active else " [removed]"
        print(
            f"{folder.display_name}{status}\n"
            f"    {folder.folder_path}\n"
            f"    {folder.image_count} images, last scan: {format_scan_date(folder.last_scan_date)}"
        )
    return 0


async def cmd_stats(args, services: Services) -> int:
    stats = await services.folders.get_stats()
    print(stats.summary())
    return 0


async def cmd_clear(args, services: Services) -> int:
    if not args.yes:
        print("Refusing to clear the index without --yes", file=sys.stderr)
        return 1
    deleted = await services.folders.clear_index()
    print(f"Cleared {deleted} images; folders will be re-indexed on the next scan")
    return 0


async def cmd_purge(args, services: Services) -> int:
    purged = await services.folders.purge_inactive_folders()
    print(f"Purged {purged} removed folders")
    return 0


async def cmd_grants(args, services: Services) -> int:
    from picfinder.core.images.storage import build_tree_uri

    grants = services.storage.grants
    if not grants:
        print(f"No tree grants configured in {services.settings.config_path}")
        return 0

    for grant in grants.values():
        print(f"{grant.display_name}\n    {build_tree_uri(grant.id)}\n    -> {grant.root}")
    return 0


COMMANDS = {
    "add": cmd_add,
    "remove": cmd_remove,
    "scan": cmd_scan,
    "scan-all": cmd_scan_all,
    "cleanup": cmd_cleanup,
    "list": cmd_list,
    "stats": cmd_stats,
    "clear": cmd_clear,
    "purge": cmd_purge,
    "grants": cmd_grants,
}


async def run(args) -> int:
    services = Services(args)
    try:
        return await COMMANDS[args.command](args, services)
    finally:
        services.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Manage watched image folders and the text index",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s add ~/Pictures --scan        # Watch and index a folder
  %(prog)s scan ~/Pictures              # Re-scan one folder
  %(prog)s scan-all                     # Cleanup, then scan every folder
  %(prog)s list --all                   # Include removed folders
  %(prog)s clear --yes                  # Drop all indexed images
        """
    )

    # Global options
    parser.add_argument(
        "--database-url",
        type=str,
        help="SQLAlchemy database URL (default: PICFINDER_DATABASE_URL or sqlite:///picfinder.db)",
    )
    parser.add_argument(
        "--config-dir",
        type=str,
        help="Directory holding tree_grants.yaml (default: PICFINDER_CONFIG_DIR or ./config)",
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

    subparsers = parser.add_subparsers(dest="command", required=True)

    add = subparsers.add_parser("add", help="Watch a folder (path or tree handle)")
    add.add_argument("folder", help="Folder path or content:// tree handle")
    add.add_argument("--scan", action="store_true", help="Scan the folder right away")

    remove = subparsers.add_parser("remove", help="Stop watching a folder and drop its images")
    remove.add_argument("folder", help="Folder path or tree handle")

    scan = subparsers.add_parser("scan", help="Scan one folder")
    scan.add_argument("folder", help="Folder path or tree handle")

    subparsers.add_parser("scan-all", help="Remove vanished files, then scan all watched folders")
    subparsers.add_parser("cleanup", help="Remove index entries whose files no longer exist")

    list_parser = subparsers.add_parser("list", help="List watched folders")
    list_parser.add_argument("--all", "-a", action="store_true", help="Include removed folders")

    subparsers.add_parser("stats", help="Show index statistics")

    clear = subparsers.add_parser("clear", help="Delete all indexed images (folders are kept)")
    clear.add_argument("--yes", "-y", action="store_true", help="Confirm clearing the index")

    subparsers.add_parser("purge", help="Forget removed folders for good")
    subparsers.add_parser("grants", help="List configured tree grants and their handles")

    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    # Setup logging
    setup_logging(verbose=args.verbose, quiet=args.quiet)

    exit_code = asyncio.run(run(args))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
