"""
Published State

``StateSlot`` holds exactly one current value and notifies listeners on
change; readers always see the latest snapshot, never a backlog.  Scan
progress and live search results are both published this way.

Scan progress moves Idle -> Scanning -> Complete | Error.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Generic, List, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StateSlot(Generic[T]):
    """Single-slot observable value."""

    def __init__(self, initial: T):
        self._value = initial
        self._listeners: List[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        return self._value

    def publish(self, value: T) -> None:
        """Replace the current value and notify listeners."""
        self._value = value
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception as e:
                logger.error(f"State listener failed: {e}")

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            Callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


@dataclass(frozen=True)
class Idle:
    """No scan has run yet."""


@dataclass(frozen=True)
class Scanning:
    """A scan is working on ``current_item``."""
    current_item: str
    processed: int
    total: int


@dataclass(frozen=True)
class Complete:
    """The last scan finished."""
    processed: int
    new: int


@dataclass(frozen=True)
class Error:
    """The last scan failed."""
    message: str


ScanProgress = Union[Idle, Scanning, Complete, Error]


def describe_progress(progress: ScanProgress) -> str:
    """One-line status text for a progress snapshot."""
    if isinstance(progress, Idle):
        return "Idle"
    if isinstance(progress, Scanning):
        if progress.total:
            return f"Scanning {progress.current_item} ({progress.processed}/{progress.total})"
        return f"Scanning {progress.current_item}"
    if isinstance(progress, Complete):
        return f"Scanned {progress.processed} images, {progress.new} new"
    if isinstance(progress, Error):
        return f"Scan failed: {progress.message}"
    raise TypeError(f"Unknown scan progress: {progress!r}")
