"""
Change Detection

Diffs the index contents of one folder against a fresh file listing.
A file needs (re)processing when it is new or its modification time
differs from the one recorded at extraction; size is not compared.
"""

from dataclasses import dataclass
from typing import FrozenSet, Mapping, Sequence, Tuple

from picfinder.core.images.enumerator import FileDescriptor
from picfinder.core.images.models import ImageRecord


@dataclass(frozen=True)
class PendingFile:
    """A file that needs text extraction."""
    descriptor: FileDescriptor
    is_new: bool

    @property
    def address(self) -> str:
        return self.descriptor.address


@dataclass(frozen=True)
class ChangeSet:
    """Reconciliation of an index folder against the filesystem."""
    unchanged: Tuple[str, ...] = ()
    to_process: Tuple[PendingFile, ...] = ()
    to_delete: Tuple[str, ...] = ()

    @property
    def total_files(self) -> int:
        """Number of files currently on disk."""
        return len(self.unchanged) + len(self.to_process)

    @property
    def new_count(self) -> int:
        return sum(1 for pending in self.to_process if pending.is_new)

    @property
    def modified_count(self) -> int:
        return len(self.to_process) - self.new_count

    @property
    def process_addresses(self) -> FrozenSet[str]:
        return frozenset(pending.address for pending in self.to_process)

    @property
    def has_changes(self) -> bool:
        return bool(self.to_process or self.to_delete)


def detect_changes(
    previous: Mapping[str, ImageRecord],
    current: Sequence[FileDescriptor],
) -> ChangeSet:
    """
    Compute added/modified, unchanged and deleted files.

    Args:
        previous: Indexed records of the folder keyed by file address
        current: Fresh listing of the folder

    Returns:
        ChangeSet (orders follow ``current`` and ``previous`` respectively)
    """
    unchanged = []
    to_process = []
    seen = set()

    for descriptor in current:
        if descriptor.address in seen:
            continue
        seen.add(descriptor.address)

        existing = previous.get(descriptor.address)
        if existing is not None and existing.last_modified == descriptor.last_modified:
            unchanged.append(descriptor.address)
        else:
            to_process.append(PendingFile(descriptor=descriptor, is_new=existing is None))

    to_delete = [address for address in previous if address not in seen]

    return ChangeSet(
        unchanged=tuple(unchanged),
        to_process=tuple(to_process),
        to_delete=tuple(to_delete),
    )
