"""
Scan Coordinator

Brings the index in line with the filesystem, one folder at a time:

    enumerate -> load previous records -> detect changes
    -> delete vanished -> extract + upsert added/modified -> write counts

Features:
- Incremental: unchanged files (same mtime) are never re-extracted
- Forward progress: one bad image is logged and counted, never fatal
- Checkpoints: the folder's image count is written back every N files
- Progress published as Idle -> Scanning -> Complete | Error
- Cleanup pass that drops records whose files disappeared

Callers must not run overlapping scans of the same folder.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Union

from picfinder.core.config import Settings, get_settings
from picfinder.core.images.addressing import Address, AnyAddress, parse_address
from picfinder.core.images.changes import ChangeSet, detect_changes
from picfinder.core.images.enumerator import FileDescriptor, ImageEnumerator
from picfinder.core.images.errors import RootUnreachableError
from picfinder.core.images.extractor import TextExtractor, TextRecognizer, create_extractor
from picfinder.core.images.models import ImageRecord, now_millis
from picfinder.core.images.progress import Complete, Error, Idle, Scanning, ScanProgress, StateSlot
from picfinder.core.images.repository import ImageRepository
from picfinder.core.images.storage import GrantedTreeStorage, StorageAccess

logger = logging.getLogger(__name__)

DEFAULT_CHECKPOINT_INTERVAL = 10


@dataclass(frozen=True)
class ScanSuccess:
    """A scan that ran to completion."""
    processed: int
    new: int
    deleted: int = 0

    def summary(self) -> str:
        """Return a human-readable summary."""
        return "\n".join([
            "Scan complete:",
            f"  Processed:   {self.processed}",
            f"  New images:  {self.new}",
            f"  Removed:     {self.deleted}",
        ])


@dataclass(frozen=True)
class ScanError:
    """A scan that could not run (or failed as a whole)."""
    message: str


ScanResult = Union[ScanSuccess, ScanError]


class ScanCoordinator:
    """
    Reconciles watched folders against the filesystem.

    Handles:
    - Single folder scans and scan-all (with cleanup first)
    - Progress publishing for observers
    - Removal of records whose backing files are gone
    """

    def __init__(
        self,
        repository: ImageRepository,
        enumerator: ImageEnumerator,
        extractor: TextExtractor,
        checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
        clock: Callable[[], int] = now_millis,
    ):
        """
        Initialize coordinator.

        Args:
            repository: Index store
            enumerator: Lists image files below a folder
            extractor: Turns an image into text
            checkpoint_interval: Write the folder count every N extracted files (0 disables)
            clock: Epoch-millis time source for scan dates
        """
        self.repository = repository
        self.enumerator = enumerator
        self.extractor = extractor
        self.checkpoint_interval = checkpoint_interval
        self.clock = clock
        self.progress: StateSlot[ScanProgress] = StateSlot(Idle())

    def _fail(self, message: str) -> ScanError:
        self.progress.publish(Error(message))
        return ScanError(message)

    # =========================================================================
    # Single folder
    # =========================================================================

    async def scan_folder(self, folder: Union[str, Address]) -> ScanResult:
        """
        Scan one folder and bring its index records up to date.

        Args:
            folder: Folder address (path or tree handle)

        Returns:
            ScanSuccess(processed, new) or ScanError(message)

        Raises:
            asyncio.CancelledError: If the scan is cancelled (rows already
                written stay in the index)
        """
        try:
            address = parse_address(folder)
        except ValueError as e:
            return self._fail(str(e))

        logger.info(f"Scanning folder {address.value}")
        loop = asyncio.get_running_loop()

        try:
            try:
                descriptors = await loop.run_in_executor(None, self.enumerator.list_images, address)
            except RootUnreachableError as e:
                logger.warning(f"Cannot scan {address.value}: {e}")
                return self._fail(str(e))

            if not descriptors:
                logger.info(f"No images found in {address.value}")

            result = await self._reconcile(address, descriptors)

        except asyncio.CancelledError:
            logger.warning(f"Scan of {address.value} cancelled")
            self.progress.publish(Error("Scan cancelled"))
            raise
        except Exception as e:
            logger.error(f"Error scanning folder {address.value}: {e}")
            return self._fail(f"Error scanning folder: {e}")

        self.progress.publish(Complete(result.processed, result.new))
        logger.info(
            f"Scanned {address.value}: {result.processed} processed, "
            f"{result.new} new, {result.deleted} removed"
        )
        return result

    async def _reconcile(self, address: AnyAddress, descriptors: Sequence[FileDescriptor]) -> ScanSuccess:
        previous = await self.repository.get_image_map(address.value)
        changes: ChangeSet = detect_changes(previous, descriptors)
        total = changes.total_files

        logger.info(
            f"Found {total} images in {address.value}: {len(changes.to_process)} to process "
            f"({changes.new_count} new, {changes.modified_count} modified), "
            f"{len(changes.unchanged)} unchanged, {len(changes.to_delete)} gone"
        )

        deleted = 0
        if changes.to_delete:
            deleted = await self.repository.delete_images(changes.to_delete)

        processed = len(changes.unchanged)
        new = 0
        since_checkpoint = 0

        for pending in changes.to_process:
            descriptor = pending.descriptor
            self.progress.publish(Scanning(descriptor.name, processed, total))

            try:
                text = await self.extractor.extract_text(descriptor.address)
                await self.repository.upsert_image(ImageRecord(
                    file_path=descriptor.address,
                    file_name=descriptor.name,
                    folder_path=address.value,
                    extracted_text=text,
                    last_modified=descriptor.last_modified,
                    file_size=descriptor.size,
                    scan_date=self.clock(),
                ))
                if pending.is_new:
                    new += 1
            except Exception as e:
                logger.error(f"Error processing image {descriptor.address}: {e}")

            processed += 1
            since_checkpoint += 1

            if self.checkpoint_interval > 0 and since_checkpoint >= self.checkpoint_interval:
                count = await self._write_folder_count(address.value)
                logger.debug(f"Checkpoint for {address.value}: {count} images indexed")
                since_checkpoint = 0

        await self._write_folder_count(address.value)
        return ScanSuccess(processed=processed, new=new, deleted=deleted)

    async def _write_folder_count(self, folder_path: str) -> int:
        count = await self.repository.count_images_in_folder(folder_path)
        await self.repository.update_folder_scan_info(folder_path, self.clock(), count)
        return count

    # =========================================================================
    # All folders
    # =========================================================================

    async def scan_all_folders(self) -> ScanResult:
        """
        Clean up vanished files, then scan every active folder.

        A folder that fails is logged and contributes nothing; the others
        are still scanned.

        Returns:
            Aggregate ScanSuccess, or ScanError if the folders cannot be listed
        """
        try:
            await self.cleanup_deleted_images()
        except Exception as e:
            logger.error(f"Cleanup before scan failed: {e}")

        try:
            folders = await self.repository.list_active_folders()
        except Exception as e:
            logger.error(f"Cannot list watched folders: {e}")
            return self._fail(f"Error scanning folders: {e}")

        logger.info(f"Scanning {len(folders)} active folders")
        processed = 0
        new = 0
        deleted = 0
        failed: List[str] = []

        for folder in folders:
            result = await self.scan_folder(folder.folder_path)
            if isinstance(result, ScanError):
                logger.warning(f"Skipping folder {folder.display_name}: {result.message}")
                failed.append(folder.folder_path)
                continue
            processed += result.processed
            new += result.new
            deleted += result.deleted

        if failed:
            logger.warning(f"{len(failed)} of {len(folders)} folders could not be scanned")

        self.progress.publish(Complete(processed, new))
        return ScanSuccess(processed=processed, new=new, deleted=deleted)

    # =========================================================================
    # Cleanup
    # =========================================================================

    def _find_missing(self, images: Sequence[ImageRecord]) -> List[str]:
        return [image.file_path for image in images if not self.enumerator.image_exists(image.file_path)]

    async def cleanup_deleted_images(self) -> int:
        """
        Remove records whose backing file no longer exists.

        Each active folder keeps its last scan date; only the image count is
        updated.  A folder that fails is logged and skipped.

        Returns:
            Number of records removed
        """
        loop = asyncio.get_running_loop()
        folders = await self.repository.list_active_folders()
        removed = 0

        for folder in folders:
            try:
                images = await self.repository.get_images_in_folder(folder.folder_path)
                missing = await loop.run_in_executor(None, self._find_missing, images)
                if missing:
                    removed += await self.repository.delete_images(missing)
                    logger.info(f"Removed {len(missing)} vanished images from {folder.display_name}")

                count = await self.repository.count_images_in_folder(folder.folder_path)
                await self.repository.update_folder_scan_info(
                    folder.folder_path, folder.last_scan_date, count
                )
            except Exception as e:
                logger.error(f"Cleanup failed for folder {folder.folder_path}: {e}")

        return removed


def create_scanner(
    repository: ImageRepository,
    settings: Optional[Settings] = None,
    storage: Optional[StorageAccess] = None,
    recognizer: Optional[TextRecognizer] = None,
) -> ScanCoordinator:
    """
    Create a scan coordinator from settings.

    Args:
        repository: Index store
        settings: Settings (default: global settings)
        storage: Tree storage (default: grants from the config directory)
        recognizer: OCR recognizer (default: Tesseract)

    Returns:
        Configured ScanCoordinator
    """
    settings = settings or get_settings()
    if storage is None:
        storage = GrantedTreeStorage.from_config_dir(settings.config_path, follow_symlinks=settings.follow_symlinks)

    enumerator = create_enumerator(settings, storage)

    if recognizer is not None:
        extractor = TextExtractor(recognizer, storage=storage)
    else:
        extractor = create_extractor(
            storage=storage,
            language=settings.ocr_language,
            timeout=settings.ocr_timeout_seconds,
            tesseract_cmd=settings.tesseract_cmd,
        )

    return ScanCoordinator(
        repository,
        enumerator,
        extractor,
        checkpoint_interval=settings.checkpoint_interval,
    )


def create_enumerator(settings: Settings, storage: Optional[StorageAccess] = None) -> ImageEnumerator:
    """Create an enumerator configured from settings."""
    return ImageEnumerator(
        storage=storage,
        extensions=settings.extensions_list,
        max_depth=settings.max_scan_depth,
        follow_symlinks=settings.follow_symlinks,
    )
