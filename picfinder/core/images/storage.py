"""
Storage Access for Tree Handles

Folders granted through a picker are addressed by opaque ``content://``
handles rather than paths.  ``StorageAccess`` is the collaborator that
turns such handles into child listings, existence checks and file bytes;
the enumerator, the extractor and the cleanup pass use it for every
tree-addressed folder and file.

``GrantedTreeStorage`` is the local implementation: each configured
``TreeGrant`` maps a tree id to a directory on disk, and document handles
encode ``<tree id>:<relative path>`` inside the URI.
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote, urlsplit

from picfinder.core.images.addressing import TREE_URI_PREFIX, TREE_URI_SCHEME, TreeAddress
from picfinder.core.images.config import TreeGrant, load_tree_grants
from picfinder.core.images.errors import StorageAccessError, UnknownTreeError

logger = logging.getLogger(__name__)

TREE_AUTHORITY = "picfinder.tree"


@dataclass(frozen=True)
class TreeEntry:
    """A child of a tree directory."""
    uri: str
    name: str
    is_directory: bool
    is_file: bool
    last_modified: int = 0  # epoch millis
    size: int = 0


class StorageAccess(ABC):
    """
    Resolves tree handles for enumeration, existence checks and reads.

    Implementations raise ``StorageAccessError`` when a handle cannot be
    resolved at all; a handle that resolves to nothing is simply "not
    existing".
    """

    @abstractmethod
    def exists(self, uri: str) -> bool:
        """Whether the tree or document behind ``uri`` exists."""

    @abstractmethod
    def is_directory(self, uri: str) -> bool:
        """Whether ``uri`` refers to a directory."""

    @abstractmethod
    def can_read(self, uri: str) -> bool:
        """Whether ``uri`` can be listed (directories) or read (files)."""

    @abstractmethod
    def list_children(self, uri: str) -> List[TreeEntry]:
        """List the direct children of a directory handle."""

    @abstractmethod
    def read_bytes(self, uri: str) -> bytes:
        """Read the full content of a document handle."""


def build_tree_uri(tree_id: str) -> str:
    """Handle for the root of a granted tree."""
    return f"{TREE_URI_PREFIX}{TREE_AUTHORITY}/tree/{quote(tree_id, safe='')}"


def build_document_uri(tree_id: str, relative_path: str) -> str:
    """Handle for a file or directory inside a granted tree."""
    document_id = f"{tree_id}:{relative_path}"
    return f"{build_tree_uri(tree_id)}/document/{quote(document_id, safe='')}"


class GrantedTreeStorage(StorageAccess):
    """
    Storage access backed by locally granted directories.

    Handles are only ever resolved to paths inside a grant's root, so a
    crafted ``..`` in a document id cannot escape the granted tree.
    """

    def __init__(self, grants: Optional[Dict[str, TreeGrant]] = None, follow_symlinks: bool = False):
        self._grants: Dict[str, TreeGrant] = dict(grants or {})
        self.follow_symlinks = follow_symlinks

    @classmethod
    def from_config_dir(cls, config_dir: Path, follow_symlinks: bool = False) -> "GrantedTreeStorage":
        """Create storage from ``tree_grants.yaml`` in ``config_dir``."""
        return cls(load_tree_grants(config_dir), follow_symlinks=follow_symlinks)

    @property
    def grants(self) -> Dict[str, TreeGrant]:
        return dict(self._grants)

    def grant(self, grant: TreeGrant) -> str:
        """Register a grant and return its tree handle."""
        self._grants[grant.id] = grant
        return build_tree_uri(grant.id)

    def _resolve(self, uri: str) -> Tuple[TreeGrant, Path]:
        """
        Resolve a handle to (grant, absolute path).

        Raises:
            StorageAccessError: Not a handle of this storage, or escapes its tree
            UnknownTreeError: The tree id was never granted
        """
        parts = urlsplit(uri)
        if parts.scheme != TREE_URI_SCHEME or parts.netloc != TREE_AUTHORITY:
            raise StorageAccessError(f"Not a tree handle: {uri}")

        address = TreeAddress(uri)
        tree_id = address.tree_document_id
        if not tree_id:
            raise StorageAccessError(f"Missing tree id in handle: {uri}")

        grant = self._grants.get(tree_id)
        if grant is None:
            raise UnknownTreeError(f"Tree '{tree_id}' has not been granted")

        relative = ""
        document_id = address.document_id
        if document_id is not None:
            doc_tree, sep, relative = document_id.partition(":")
            if not sep or doc_tree != tree_id:
                raise StorageAccessError(f"Document does not belong to tree '{tree_id}': {uri}")

        root = grant.root
        path = Path(os.path.normpath(root / relative)) if relative else root
        if path != root and root not in path.parents:
            raise StorageAccessError(f"Handle escapes granted tree: {uri}")
        return grant, path

    def exists(self, uri: str) -> bool:
        _, path = self._resolve(uri)
        return path.exists()

    def is_directory(self, uri: str) -> bool:
        _, path = self._resolve(uri)
        return path.is_dir()

    def can_read(self, uri: str) -> bool:
        _, path = self._resolve(uri)
        if path.is_dir():
            return os.access(path, os.R_OK | os.X_OK)
        return os.access(path, os.R_OK)

    def list_children(self, uri: str) -> List[TreeEntry]:
        grant, path = self._resolve(uri)
        root = grant.root
        children = []

        try:
            with os.scandir(path) as it:
                entries = list(it)
        except OSError as e:
            raise StorageAccessError(f"Cannot list {uri}: {e}") from e

        for entry in entries:
            try:
                is_dir = entry.is_dir(follow_symlinks=self.follow_symlinks)
                is_file = entry.is_file()
                relative = Path(entry.path).relative_to(root).as_posix()
                last_modified = 0
                size = 0
                if is_file:
                    stat = entry.stat()
                    last_modified = stat.st_mtime_ns // 1_000_000
                    size = stat.st_size
                children.append(TreeEntry(
                    uri=build_document_uri(grant.id, relative),
                    name=entry.name,
                    is_directory=is_dir,
                    is_file=is_file,
                    last_modified=last_modified,
                    size=size,
                ))
            except OSError as e:
                logger.warning(f"Cannot stat tree entry {entry.path}: {e}")

        return children

    def read_bytes(self, uri: str) -> bytes:
        _, path = self._resolve(uri)
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageAccessError(f"Cannot read {uri}: {e}") from e
