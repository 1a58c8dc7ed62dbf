"""
Folder and file addresses.

An address is either a direct filesystem path or an opaque tree handle
(a ``content://`` URI granted through a picker).  Raw strings from the
index or the command line are parsed once into ``PathAddress`` or
``TreeAddress``; everything downstream dispatches on the type instead of
re-inspecting the string.
"""

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union
from urllib.parse import unquote, urlsplit

TREE_URI_SCHEME = "content"
TREE_URI_PREFIX = "content://"

DEFAULT_TREE_DISPLAY_NAME = "Selected Folder"


class Address(ABC):
    """Common interface of path and tree addresses."""

    value: str

    @property
    @abstractmethod
    def is_tree(self) -> bool:
        """Whether this is a tree or document handle rather than a path."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Last path component or document name."""

    def __str__(self) -> str:
        return self.value


class PathAddress(Address):
    """A direct filesystem path (always absolute)."""

    __slots__ = ("value",)

    def __init__(self, value: str):
        self.value = value

    @property
    def is_tree(self) -> bool:
        return False

    @property
    def path(self) -> Path:
        return Path(self.value)

    @property
    def name(self) -> str:
        return self.path.name

    def __eq__(self, other) -> bool:
        return isinstance(other, PathAddress) and other.value == self.value

    def __hash__(self) -> int:
        return hash(("path", self.value))

    def __repr__(self) -> str:
        return f"PathAddress({self.value!r})"


class TreeAddress(Address):
    """A permission-scoped tree or document handle (``content://...``)."""

    __slots__ = ("value",)

    def __init__(self, value: str):
        self.value = value

    @property
    def is_tree(self) -> bool:
        return True

    @property
    def tree_document_id(self) -> Optional[str]:
        """Decoded id following the ``/tree/`` segment, if any."""
        return _segment_after(self.value, "tree")

    @property
    def document_id(self) -> Optional[str]:
        """Decoded id following the ``/document/`` segment, if any."""
        return _segment_after(self.value, "document")

    @property
    def name(self) -> str:
        doc_id = self.document_id or self.tree_document_id or ""
        # Document ids look like "<tree>:<relative/path>"
        return doc_id.rsplit("/", 1)[-1].rsplit(":", 1)[-1]

    def __eq__(self, other) -> bool:
        return isinstance(other, TreeAddress) and other.value == self.value

    def __hash__(self) -> int:
        return hash(("tree", self.value))

    def __repr__(self) -> str:
        return f"TreeAddress({self.value!r})"


AnyAddress = Union[PathAddress, TreeAddress]


def _segment_after(uri: str, marker: str) -> Optional[str]:
    segments = urlsplit(uri).path.split("/")
    try:
        index = segments.index(marker)
    except ValueError:
        return None
    if index + 1 >= len(segments) or not segments[index + 1]:
        return None
    return unquote(segments[index + 1])


def is_tree_uri(raw: str) -> bool:
    return raw.startswith(TREE_URI_PREFIX)


def parse_address(raw: Union[str, Address]) -> AnyAddress:
    """
    Parse a raw address string.

    Tree URIs are kept verbatim (they are opaque); paths are expanded
    (``~``) and made absolute so the same folder always maps to the same
    index key.

    Raises:
        ValueError: If the address is empty
    """
    if isinstance(raw, (PathAddress, TreeAddress)):
        return raw
    if raw is None or not str(raw).strip():
        raise ValueError("Address must not be empty")

    raw = str(raw).strip()
    if is_tree_uri(raw):
        return TreeAddress(raw)
    return PathAddress(os.path.abspath(os.path.expanduser(raw)))


def display_name_for(address: AnyAddress) -> str:
    """
    Human-readable folder name.

    Paths use the directory name; tree handles use the last segment of the
    tree document id, falling back to a generic label.
    """
    if isinstance(address, TreeAddress):
        tree_id = address.tree_document_id
        if not tree_id:
            return DEFAULT_TREE_DISPLAY_NAME
        name = tree_id.rsplit("/", 1)[-1]
        if ":" in name:
            name = name.rsplit(":", 1)[-1] or name.rsplit(":", 1)[0]
        return name or DEFAULT_TREE_DISPLAY_NAME
    return address.path.name or address.value
