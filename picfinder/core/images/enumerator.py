"""
Image Enumerator

Lists the image files below a watched folder as flat ``FileDescriptor``s.
Supports:
- Direct filesystem traversal (``PathAddress``)
- Tree traversal through ``StorageAccess`` (``TreeAddress``)
- Extension filtering (case-insensitive)
- A recursion depth bound (guards against symlink loops and very deep trees)

Unreadable entries are logged and skipped.  Only an unreachable root is an
error (``RootUnreachableError``).
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Union

from picfinder.core.images.addressing import Address, AnyAddress, PathAddress, TreeAddress, parse_address
from picfinder.core.images.errors import RootUnreachableError, StorageAccessError
from picfinder.core.images.storage import StorageAccess

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "bmp", "webp"})

# The root is depth 0; directories deeper than this are not listed
MAX_SCAN_DEPTH = 10


def file_extension(file_name: str) -> str:
    """Lower-cased extension without the dot ('' if none)."""
    _, dot, ext = file_name.rpartition(".")
    return ext.lower() if dot else ""


def is_image_file(file_name: str, extensions: Iterable[str] = SUPPORTED_EXTENSIONS) -> bool:
    """Check whether a file name has a supported image extension."""
    return file_extension(file_name) in extensions


@dataclass(frozen=True)
class FileDescriptor:
    """An image file found during enumeration."""
    name: str
    address: str         # Absolute path or document URI
    last_modified: int   # epoch millis
    size: int


class ImageEnumerator:
    """
    Produces the current list of image files for a folder address.
    """

    def __init__(
        self,
        storage: Optional[StorageAccess] = None,
        extensions: Optional[Iterable[str]] = None,
        max_depth: int = MAX_SCAN_DEPTH,
        follow_symlinks: bool = False,
    ):
        """
        Initialize enumerator.

        Args:
            storage: Storage access for tree handles (None = paths only)
            extensions: Supported extensions (default: jpg, jpeg, png, bmp, webp)
            max_depth: Deepest directory level that is still listed
            follow_symlinks: Descend into symlinked directories
        """
        self.storage = storage
        self.extensions = frozenset(
            ext.lower().lstrip('.') for ext in (extensions or SUPPORTED_EXTENSIONS)
        )
        self.max_depth = max_depth
        self.follow_symlinks = follow_symlinks

    def is_image_file(self, file_name: str) -> bool:
        return is_image_file(file_name, self.extensions)

    # =========================================================================
    # Root validation
    # =========================================================================

    def validate_root(self, folder: Union[str, Address]) -> AnyAddress:
        """
        Check that a folder root can be enumerated.

        Returns:
            The parsed address

        Raises:
            RootUnreachableError: With a human-readable message
        """
        address = parse_address(folder)
        if isinstance(address, TreeAddress):
            self._validate_tree_root(address)
        else:
            self._validate_path_root(address)
        return address

    def _validate_path_root(self, address: PathAddress) -> None:
        path = address.path
        if not path.exists():
            raise RootUnreachableError(f"Folder does not exist: {address.value}")
        if not path.is_dir():
            raise RootUnreachableError(f"Path is not a directory: {address.value}")
        if not os.access(path, os.R_OK | os.X_OK):
            raise RootUnreachableError(f"Cannot read folder: {address.value}")

    def _validate_tree_root(self, address: TreeAddress) -> None:
        if self.storage is None:
            raise RootUnreachableError(f"Cannot access folder URI: {address.value} (no storage access configured)")
        try:
            if not self.storage.exists(address.value):
                raise RootUnreachableError(f"Cannot access folder URI: {address.value}")
            if not self.storage.is_directory(address.value):
                raise RootUnreachableError(f"Folder URI is not a directory: {address.value}")
            if not self.storage.can_read(address.value):
                raise RootUnreachableError(f"Cannot read folder URI: {address.value}")
        except StorageAccessError as e:
            raise RootUnreachableError(f"Cannot access folder URI: {address.value} ({e})") from e

    # =========================================================================
    # Listing
    # =========================================================================

    def list_images(self, folder: Union[str, Address]) -> List[FileDescriptor]:
        """
        List all image files below a folder.

        Args:
            folder: Folder address (path or tree handle)

        Returns:
            Flat list of FileDescriptor (empty if the folder holds no images)

        Raises:
            RootUnreachableError: If the root cannot be enumerated
        """
        address = self.validate_root(folder)
        if isinstance(address, TreeAddress):
            images = self._list_tree_images(address)
        else:
            images = self._list_path_images(address.path)
        logger.debug(f"Total image files found in {address.value}: {len(images)}")
        return images

    def _list_path_images(self, root: Path) -> List[FileDescriptor]:
        images: List[FileDescriptor] = []

        def scan_directory(dir_path: str, depth: int) -> None:
            try:
                with os.scandir(dir_path) as it:
                    entries = list(it)
            except OSError as e:
                if depth == 0:
                    raise RootUnreachableError(f"Cannot read folder: {dir_path} ({e})") from e
                logger.warning(f"Cannot list files in directory {dir_path}: {e}")
                return

            for entry in entries:
                try:
                    if entry.is_dir(follow_symlinks=self.follow_symlinks):
                        if depth < self.max_depth:
                            scan_directory(entry.path, depth + 1)
                        else:
                            logger.debug(f"Depth limit reached, skipping {entry.path}")
                        continue

                    if not entry.is_file() or not self.is_image_file(entry.name):
                        continue

                    stat = entry.stat()
                    images.append(FileDescriptor(
                        name=entry.name,
                        address=os.path.abspath(entry.path),
                        last_modified=stat.st_mtime_ns // 1_000_000,
                        size=stat.st_size,
                    ))
                except OSError as e:
                    logger.warning(f"Error processing file {entry.path}: {e}")

        scan_directory(str(root), 0)
        return images

    def _list_tree_images(self, root: TreeAddress) -> List[FileDescriptor]:
        images: List[FileDescriptor] = []

        def scan_document_directory(uri: str, depth: int) -> None:
            try:
                children = self.storage.list_children(uri)
            except StorageAccessError as e:
                if depth == 0:
                    raise RootUnreachableError(f"Cannot access folder URI: {uri} ({e})") from e
                logger.warning(f"Error scanning document directory {uri}: {e}")
                return

            for child in children:
                if child.is_directory:
                    if depth < self.max_depth:
                        scan_document_directory(child.uri, depth + 1)
                    else:
                        logger.debug(f"Depth limit reached, skipping {child.uri}")
                    continue

                if not child.is_file or not child.name or not self.is_image_file(child.name):
                    continue

                images.append(FileDescriptor(
                    name=child.name,
                    address=child.uri,
                    last_modified=child.last_modified,
                    size=child.size,
                ))

        scan_document_directory(root.value, 0)
        return images

    # =========================================================================
    # Existence checks (cleanup pass)
    # =========================================================================

    def image_exists(self, image: Union[str, Address]) -> bool:
        """
        Check that an indexed file's backing file still exists.

        Any failure to check (unknown tree, I/O error) counts as missing.
        """
        address = parse_address(image)
        try:
            if isinstance(address, TreeAddress):
                if self.storage is None:
                    return False
                return self.storage.exists(address.value)
            return address.path.is_file()
        except (OSError, StorageAccessError) as e:
            logger.debug(f"Existence check failed for {address.value}: {e}")
            return False
