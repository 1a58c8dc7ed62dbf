"""Exceptions raised by the image indexing package."""


class PicFinderError(Exception):
    """Base class for image index errors."""


class RootUnreachableError(PicFinderError):
    """A watched folder root is missing, not a directory, or unreadable."""


class InvalidFolderError(PicFinderError):
    """A folder cannot be added to the watch list."""


class FolderAlreadyAddedError(PicFinderError):
    """The folder is already being watched."""


class StorageAccessError(PicFinderError):
    """A tree handle could not be resolved or read."""


class UnknownTreeError(StorageAccessError):
    """The tree handle refers to a tree that was never granted."""
