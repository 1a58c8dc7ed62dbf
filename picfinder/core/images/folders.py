"""
Folder Management

Adding, removing and purging watched folders, clearing the index and
reporting statistics.  Scanning itself lives in the scan coordinator.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Union

from picfinder.core.images.addressing import Address, PathAddress, display_name_for, parse_address
from picfinder.core.images.enumerator import ImageEnumerator
from picfinder.core.images.errors import FolderAlreadyAddedError, InvalidFolderError, RootUnreachableError
from picfinder.core.images.models import FolderRecord
from picfinder.core.images.repository import ImageRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexStats:
    """Index statistics."""
    total_images: int
    images_with_text: int
    active_folders: int
    inactive_folders: int = 0

    def summary(self) -> str:
        return "\n".join([
            "Index statistics:",
            f"  Images:            {self.total_images}",
            f"  Images with text:  {self.images_with_text}",
            f"  Active folders:    {self.active_folders}",
            f"  Inactive folders:  {self.inactive_folders}",
        ])


class FolderService:
    """
    Watched folder lifecycle.

    Handles:
    - Adding folders (reactivating previously removed ones)
    - Soft removal (folder kept, images deleted) and purging
    - Clearing the index while keeping the folders
    """

    def __init__(self, repository: ImageRepository, enumerator: ImageEnumerator):
        self.repository = repository
        self.enumerator = enumerator

    async def add_folder(self, folder: Union[str, Address]) -> FolderRecord:
        """
        Start watching a folder.

        Path folders must exist and be directories.  An inactive record for
        the same address is replaced by a fresh one (never scanned, no images).

        Args:
            folder: Folder path or tree handle

        Returns:
            The new folder record

        Raises:
            InvalidFolderError: Empty address, or a path that is not a readable directory
            FolderAlreadyAddedError: The folder is already watched
        """
        try:
            address = parse_address(folder)
        except ValueError as e:
            raise InvalidFolderError(str(e)) from e

        if isinstance(address, PathAddress):
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, self.enumerator.validate_root, address)
            except RootUnreachableError as e:
                raise InvalidFolderError(str(e)) from e

        existing = await self.repository.get_folder(address.value)
        if existing is not None:
            if existing.is_active:
                raise FolderAlreadyAddedError(f"Folder already added: {address.value}")
            logger.info(f"Reactivating previously removed folder {address.value}")
            await self.repository.delete_folder(address.value)

        record = FolderRecord(
            folder_path=address.value,
            display_name=display_name_for(address),
            last_scan_date=0,
            image_count=0,
            is_active=True,
        )
        await self.repository.insert_folder(record)
        logger.info(f"Added folder {record.display_name} ({record.folder_path})")
        return record

    async def remove_folder(self, folder: Union[str, Address]) -> int:
        """
        Stop watching a folder and delete its images.

        The folder record stays (inactive) until purged.

        Returns:
            Number of images deleted
        """
        address = parse_address(folder)
        if not await self.repository.deactivate_folder(address.value):
            logger.warning(f"Folder not found: {address.value}")
        deleted = await self.repository.delete_images_in_folder(address.value)
        logger.info(f"Removed folder {address.value} ({deleted} images deleted)")
        return deleted

    async def list_active_folders(self) -> List[FolderRecord]:
        return await self.repository.list_active_folders()

    async def list_folders(self) -> List[FolderRecord]:
        return await self.repository.list_folders()

    async def purge_inactive_folders(self) -> int:
        """
        Hard-delete inactive folders and any images still pointing at them.

        Returns:
            Number of folders purged
        """
        purged = await self.repository.delete_inactive_folders()
        orphans = await self.repository.delete_orphaned_images()
        logger.info(f"Purged {len(purged)} inactive folders, {orphans} orphaned images")
        return len(purged)

    async def clear_index(self) -> int:
        """
        Delete all images and mark every active folder as never scanned.

        Returns:
            Number of images deleted
        """
        deleted = await self.repository.delete_all_images()
        await self.repository.reset_scan_info()
        return deleted

    async def get_stats(self) -> IndexStats:
        stats = await self.repository.get_stats()
        return IndexStats(**stats)
