"""
Image Repository

The index store: persisted images and watched folders.

Every write runs in its own short-lived session and commits immediately,
so each upsert/delete is atomic per row and visible to concurrent readers
(search) as soon as it returns.  Reads return frozen ``ImageRecord`` /
``FolderRecord`` snapshots, never live ORM rows.

Writers notify subscribers through ``subscribe`` so live searches can
re-evaluate when the index changes.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from picfinder.core.images.models import (
    FolderRecord,
    ImageRecord,
    IndexedImage,
    WatchedFolder,
)

logger = logging.getLogger(__name__)

IMAGES_TABLE = IndexedImage.__tablename__
FOLDERS_TABLE = WatchedFolder.__tablename__

# Keep IN (...) lists below SQLite's host-parameter limit
_DELETE_CHUNK_SIZE = 500


@dataclass(frozen=True)
class StoreChange:
    """Notification emitted after a committed write."""
    table: str
    operation: str  # 'upsert', 'delete', 'update'
    keys: Tuple[str, ...] = ()


StoreListener = Callable[[StoreChange], None]


def escape_like(value: str, escape_char: str = "\\") -> str:
    """Escape LIKE wildcards so the value matches literally."""
    return (
        value.replace(escape_char, escape_char * 2)
        .replace("%", escape_char + "%")
        .replace("_", escape_char + "_")
    )


def _chunks(items: Sequence[str], size: int) -> Iterator[Sequence[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class ImageRepository:
    """
    Repository for image index CRUD operations.

    Handles:
    - Image upsert/delete (single and bulk) and point/folder lookups
    - Conjunctive keyword search over text, file name and folder
    - Watched folder lifecycle (insert, scan info, soft delete, purge)
    - Change notifications for live readers
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self._listeners: List[StoreListener] = []

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Index store error: {e}")
            db.rollback()
            raise
        finally:
            db.close()

    # =========================================================================
    # Change notifications
    # =========================================================================

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """
        Register a listener for committed changes.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, table: str, operation: str, keys: Iterable[str] = ()) -> None:
        change = StoreChange(table=table, operation=operation, keys=tuple(keys))
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as e:
                logger.error(f"Store listener failed for {table} {operation}: {e}")

    # =========================================================================
    # Image writes
    # =========================================================================

    async def upsert_image(self, record: ImageRecord) -> ImageRecord:
        """
        Insert or replace an image record.

        Args:
            record: Image snapshot to persist

        Returns:
            The persisted record
        """
        with self._session() as db:
            db.merge(record.to_row())
        self._notify(IMAGES_TABLE, "upsert", [record.file_path])
        return record

    async def upsert_images(self, records: Sequence[ImageRecord]) -> int:
        """Insert or replace several image records in one transaction."""
        if not records:
            return 0
        with self._session() as db:
            for record in records:
                db.merge(record.to_row())
        self._notify(IMAGES_TABLE, "upsert", [r.file_path for r in records])
        return len(records)

    async def delete_image(self, file_path: str) -> bool:
        """
        Delete an image record.

        Returns:
            True if a record was deleted
        """
        with self._session() as db:
            result = db.execute(delete(IndexedImage).where(IndexedImage.file_path == file_path))
            deleted = result.rowcount or 0
        if deleted:
            self._notify(IMAGES_TABLE, "delete", [file_path])
        return deleted > 0

    async def delete_images(self, file_paths: Sequence[str]) -> int:
        """
        Delete several image records.

        Returns:
            Number of records deleted
        """
        file_paths = list(file_paths)
        if not file_paths:
            return 0
        deleted = 0
        with self._session() as db:
            for chunk in _chunks(file_paths, _DELETE_CHUNK_SIZE):
                result = db.execute(delete(IndexedImage).where(IndexedImage.file_path.in_(chunk)))
                deleted += result.rowcount or 0
        if deleted:
            self._notify(IMAGES_TABLE, "delete", file_paths)
        return deleted

    async def delete_images_in_folder(self, folder_path: str) -> int:
        """Delete every image owned by a folder."""
        with self._session() as db:
            result = db.execute(delete(IndexedImage).where(IndexedImage.folder_path == folder_path))
            deleted = result.rowcount or 0
        if deleted:
            logger.info(f"Deleted {deleted} images from folder {folder_path}")
            self._notify(IMAGES_TABLE, "delete")
        return deleted

    async def delete_all_images(self) -> int:
        """Delete every image record."""
        with self._session() as db:
            result = db.execute(delete(IndexedImage))
            deleted = result.rowcount or 0
        logger.info(f"Deleted all {deleted} images from the index")
        self._notify(IMAGES_TABLE, "delete")
        return deleted

    async def delete_orphaned_images(self) -> int:
        """Delete images whose folder is missing or inactive."""
        active = select(WatchedFolder.folder_path).where(WatchedFolder.is_active == True)  # noqa: E712
        with self._session() as db:
            result = db.execute(delete(IndexedImage).where(IndexedImage.folder_path.not_in(active)))
            deleted = result.rowcount or 0
        if deleted:
            logger.info(f"Deleted {deleted} orphaned images")
            self._notify(IMAGES_TABLE, "delete")
        return deleted

    # =========================================================================
    # Image reads
    # =========================================================================

    async def get_image(self, file_path: str) -> Optional[ImageRecord]:
        """Get an image record by file address."""
        with self._session() as db:
            row = db.get(IndexedImage, file_path)
            return ImageRecord.from_row(row) if row else None

    async def get_images_in_folder(self, folder_path: str) -> List[ImageRecord]:
        """Get all image records owned by a folder."""
        stmt = (
            select(IndexedImage)
            .where(IndexedImage.folder_path == folder_path)
            .order_by(IndexedImage.file_path)
        )
        with self._session() as db:
            return [ImageRecord.from_row(row) for row in db.execute(stmt).scalars()]

    async def get_image_map(self, folder_path: str) -> Dict[str, ImageRecord]:
        """Image records of a folder keyed by file address."""
        images = await self.get_images_in_folder(folder_path)
        return {image.file_path: image for image in images}

    async def get_images_with_prefix(self, path_prefix: str) -> List[ImageRecord]:
        """Get image records whose address starts with ``path_prefix``."""
        pattern = escape_like(path_prefix) + "%"
        stmt = (
            select(IndexedImage)
            .where(IndexedImage.file_path.like(pattern, escape="\\"))
            .order_by(IndexedImage.file_path)
        )
        with self._session() as db:
            return [ImageRecord.from_row(row) for row in db.execute(stmt).scalars()]

    async def count_images_in_folder(self, folder_path: str) -> int:
        stmt = select(func.count()).select_from(IndexedImage).where(IndexedImage.folder_path == folder_path)
        with self._session() as db:
            return db.execute(stmt).scalar_one()

    async def count_images(self) -> int:
        stmt = select(func.count()).select_from(IndexedImage)
        with self._session() as db:
            return db.execute(stmt).scalar_one()

    async def count_images_with_text(self) -> int:
        stmt = select(func.count()).select_from(IndexedImage).where(IndexedImage.extracted_text != "")
        with self._session() as db:
            return db.execute(stmt).scalar_one()

    async def search_images(self, keywords: Sequence[str]) -> List[ImageRecord]:
        """
        Find images matching every keyword.

        A keyword matches when it is a case-insensitive substring of the
        extracted text, the file name or the folder address.  LIKE
        wildcards in keywords are matched literally.

        Args:
            keywords: Non-empty search terms

        Returns:
            Matching records ordered by file address ([] for no keywords)
        """
        keywords = [k for k in keywords if k]
        if not keywords:
            return []

        clauses = []
        for keyword in keywords:
            pattern = f"%{escape_like(keyword)}%"
            clauses.append(or_(
                IndexedImage.extracted_text.ilike(pattern, escape="\\"),
                IndexedImage.file_name.ilike(pattern, escape="\\"),
                IndexedImage.folder_path.ilike(pattern, escape="\\"),
            ))

        stmt = select(IndexedImage).where(and_(*clauses)).order_by(IndexedImage.file_path)
        with self._session() as db:
            return [ImageRecord.from_row(row) for row in db.execute(stmt).scalars()]

    # =========================================================================
    # Folders
    # =========================================================================

    async def insert_folder(self, folder: FolderRecord) -> FolderRecord:
        """Insert or replace a watched folder."""
        with self._session() as db:
            db.merge(folder.to_row())
        self._notify(FOLDERS_TABLE, "upsert", [folder.folder_path])
        return folder

    async def get_folder(self, folder_path: str) -> Optional[FolderRecord]:
        with self._session() as db:
            row = db.get(WatchedFolder, folder_path)
            return FolderRecord.from_row(row) if row else None

    async def list_folders(self) -> List[FolderRecord]:
        """All folders, active or not."""
        stmt = select(WatchedFolder).order_by(WatchedFolder.display_name, WatchedFolder.folder_path)
        with self._session() as db:
            return [FolderRecord.from_row(row) for row in db.execute(stmt).scalars()]

    async def list_active_folders(self) -> List[FolderRecord]:
        stmt = (
            select(WatchedFolder)
            .where(WatchedFolder.is_active == True)  # noqa: E712
            .order_by(WatchedFolder.display_name, WatchedFolder.folder_path)
        )
        with self._session() as db:
            return [FolderRecord.from_row(row) for row in db.execute(stmt).scalars()]

    async def update_folder_scan_info(self, folder_path: str, scan_date: int, image_count: int) -> bool:
        """
        Record scan time and image count for a folder.

        Returns:
            True if the folder exists
        """
        stmt = (
            update(WatchedFolder)
            .where(WatchedFolder.folder_path == folder_path)
            .values(last_scan_date=scan_date, image_count=image_count)
        )
        with self._session() as db:
            updated = db.execute(stmt).rowcount or 0
        if updated:
            self._notify(FOLDERS_TABLE, "update", [folder_path])
        return updated > 0

    async def reset_scan_info(self) -> int:
        """Reset last scan date and image count of all active folders."""
        stmt = (
            update(WatchedFolder)
            .where(WatchedFolder.is_active == True)  # noqa: E712
            .values(last_scan_date=0, image_count=0)
        )
        with self._session() as db:
            updated = db.execute(stmt).rowcount or 0
        self._notify(FOLDERS_TABLE, "update")
        return updated

    async def deactivate_folder(self, folder_path: str) -> bool:
        """Soft-delete a folder (kept for history until purged)."""
        stmt = (
            update(WatchedFolder)
            .where(WatchedFolder.folder_path == folder_path)
            .values(is_active=False)
        )
        with self._session() as db:
            updated = db.execute(stmt).rowcount or 0
        if updated:
            self._notify(FOLDERS_TABLE, "update", [folder_path])
        return updated > 0

    async def delete_folder(self, folder_path: str) -> bool:
        """Hard-delete a folder record (its images are not touched)."""
        with self._session() as db:
            deleted = db.execute(
                delete(WatchedFolder).where(WatchedFolder.folder_path == folder_path)
            ).rowcount or 0
        if deleted:
            self._notify(FOLDERS_TABLE, "delete", [folder_path])
        return deleted > 0

    async def delete_inactive_folders(self) -> List[str]:
        """
        Hard-delete all inactive folder records.

        Returns:
            Addresses of the purged folders
        """
        with self._session() as db:
            paths = list(db.execute(
                select(WatchedFolder.folder_path).where(WatchedFolder.is_active == False)  # noqa: E712
            ).scalars())
            if paths:
                db.execute(delete(WatchedFolder).where(WatchedFolder.folder_path.in_(paths)))
        if paths:
            self._notify(FOLDERS_TABLE, "delete", paths)
        return paths

    # =========================================================================
    # Statistics
    # =========================================================================

    async def get_stats(self) -> dict:
        """Get index statistics."""
        with self._session() as db:
            total_images = db.execute(select(func.count()).select_from(IndexedImage)).scalar_one()
            images_with_text = db.execute(
                select(func.count()).select_from(IndexedImage).where(IndexedImage.extracted_text != "")
            ).scalar_one()
            active_folders = db.execute(
                select(func.count()).select_from(WatchedFolder).where(WatchedFolder.is_active == True)  # noqa: E712
            ).scalar_one()
            inactive_folders = db.execute(
                select(func.count()).select_from(WatchedFolder).where(WatchedFolder.is_active == False)  # noqa: E712
            ).scalar_one()

        return {
            "total_images": total_images,
            "images_with_text": images_with_text,
            "active_folders": active_folders,
            "inactive_folders": inactive_folders,
        }
