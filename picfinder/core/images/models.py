"""
SQLAlchemy Models for the Image Index

Two tables:
- watched_folders: directories (or granted trees) the user asked to index
- indexed_images: one row per image file with its extracted text

Rows are keyed by address (absolute path or tree document URI) so the
scanner can diff the index against a fresh listing by address alone.
Timestamps are epoch milliseconds to compare exactly with file mtimes.

ORM rows never leave the repository; callers get frozen ``ImageRecord``
and ``FolderRecord`` snapshots instead.
"""

import time
from dataclasses import dataclass

from sqlalchemy import BigInteger, Boolean, Column, Index, Integer, String, Text

from picfinder.core.database.models import Base


def now_millis() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


class WatchedFolder(Base):
    """
    A folder the user selected for indexing.

    ``is_active`` is a soft-delete marker: removed folders stay in the table
    (excluded from scans) until purged.
    """
    __tablename__ = "watched_folders"

    folder_path = Column(Text, primary_key=True)       # Absolute path or tree URI
    display_name = Column(String(500), nullable=False)
    last_scan_date = Column(BigInteger, nullable=False, default=0)  # 0 = never scanned
    image_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index('idx_watched_folders_active', 'is_active'),
    )

    def __repr__(self) -> str:
        return f"<WatchedFolder(path={self.folder_path}, images={self.image_count}, active={self.is_active})>"


class IndexedImage(Base):
    """
    One indexed image file.

    ``last_modified`` is the source file's mtime at extraction time; a
    different mtime on disk is what triggers re-extraction.
    ``folder_path`` is not a foreign key: orphans are tolerated and
    cleaned up opportunistically.
    """
    __tablename__ = "indexed_images"

    file_path = Column(Text, primary_key=True)          # Absolute path or document URI
    file_name = Column(String(500), nullable=False)
    folder_path = Column(Text, nullable=False)
    extracted_text = Column(Text, nullable=False, default="")
    last_modified = Column(BigInteger, nullable=False)
    file_size = Column(BigInteger, nullable=False, default=0)
    scan_date = Column(BigInteger, nullable=False, default=now_millis)

    __table_args__ = (
        Index('idx_indexed_images_folder', 'folder_path'),
    )

    def __repr__(self) -> str:
        return f"<IndexedImage(path={self.file_path}, modified={self.last_modified})>"


@dataclass(frozen=True)
class ImageRecord:
    """Immutable snapshot of an ``indexed_images`` row."""
    file_path: str
    file_name: str
    folder_path: str
    extracted_text: str
    last_modified: int
    file_size: int
    scan_date: int = 0

    @classmethod
    def from_row(cls, row: IndexedImage) -> "ImageRecord":
        return cls(
            file_path=row.file_path,
            file_name=row.file_name,
            folder_path=row.folder_path,
            extracted_text=row.extracted_text or "",
            last_modified=row.last_modified,
            file_size=row.file_size or 0,
            scan_date=row.scan_date or 0,
        )

    def to_row(self) -> IndexedImage:
        return IndexedImage(
            file_path=self.file_path,
            file_name=self.file_name,
            folder_path=self.folder_path,
            extracted_text=self.extracted_text or "",
            last_modified=self.last_modified,
            file_size=self.file_size,
            scan_date=self.scan_date or now_millis(),
        )

    @property
    def has_text(self) -> bool:
        return bool(self.extracted_text.strip())


@dataclass(frozen=True)
class FolderRecord:
    """Immutable snapshot of a ``watched_folders`` row."""
    folder_path: str
    display_name: str
    last_scan_date: int = 0
    image_count: int = 0
    is_active: bool = True

    @classmethod
    def from_row(cls, row: WatchedFolder) -> "FolderRecord":
        return cls(
            folder_path=row.folder_path,
            display_name=row.display_name,
            last_scan_date=row.last_scan_date or 0,
            image_count=row.image_count or 0,
            is_active=bool(row.is_active),
        )

    def to_row(self) -> WatchedFolder:
        return WatchedFolder(
            folder_path=self.folder_path,
            display_name=self.display_name,
            last_scan_date=self.last_scan_date,
            image_count=self.image_count,
            is_active=self.is_active,
        )

    @property
    def never_scanned(self) -> bool:
        return self.last_scan_date == 0
