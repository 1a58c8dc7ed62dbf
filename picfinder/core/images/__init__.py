"""
Image Indexing Module

Keeps a searchable index of the text found in image files below watched
folders, and answers keyword searches against it.

- SQLAlchemy models for watched folders and indexed images
- Repository (index store) with change notifications
- Enumerator, OCR extractor and change detector
- Scan coordinator with published progress
- Keyword search, live subscriptions and debounced interactive search
"""

from picfinder.core.images.addressing import PathAddress, TreeAddress, parse_address
from picfinder.core.images.errors import (
    FolderAlreadyAddedError,
    InvalidFolderError,
    PicFinderError,
    RootUnreachableError,
    StorageAccessError,
    UnknownTreeError,
)
from picfinder.core.images.folders import FolderService, IndexStats
from picfinder.core.images.models import FolderRecord, ImageRecord, IndexedImage, WatchedFolder
from picfinder.core.images.progress import Complete, Error, Idle, Scanning
from picfinder.core.images.repository import ImageRepository, StoreChange
from picfinder.core.images.scanner import ScanCoordinator, ScanError, ScanSuccess, create_scanner
from picfinder.core.images.search import LiveSearch, SearchEngine, SearchState, SearchSubscription

__all__ = [
    "PathAddress",
    "TreeAddress",
    "parse_address",
    "PicFinderError",
    "RootUnreachableError",
    "InvalidFolderError",
    "FolderAlreadyAddedError",
    "StorageAccessError",
    "UnknownTreeError",
    "FolderService",
    "IndexStats",
    "FolderRecord",
    "ImageRecord",
    "IndexedImage",
    "WatchedFolder",
    "Idle",
    "Scanning",
    "Complete",
    "Error",
    "ImageRepository",
    "StoreChange",
    "ScanCoordinator",
    "ScanSuccess",
    "ScanError",
    "create_scanner",
    "SearchEngine",
    "SearchSubscription",
    "LiveSearch",
    "SearchState",
]
