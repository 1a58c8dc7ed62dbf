"""
Image Search Service

Keyword search over the image index.

Features:
- Multi-keyword AND search over extracted text, file name and folder
- Case-insensitive substring matching (LIKE wildcards matched literally)
- Live subscriptions that re-evaluate whenever the image table changes
- ``LiveSearch``: debounced, last-query-wins search state for interactive callers
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Tuple

from picfinder.core.images.models import ImageRecord
from picfinder.core.images.progress import StateSlot
from picfinder.core.images.repository import IMAGES_TABLE, ImageRepository, StoreChange

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.3


def tokenize(query: Optional[str]) -> List[str]:
    """Split a query into keywords on runs of whitespace."""
    if not query:
        return []
    return query.split()


class SearchSubscription:
    """
    Live result stream for one query.

    Iterating yields the current results once, then again after every
    committed change to the image table, until ``close()`` is called.
    Each ``async for`` starts a fresh evaluation, so a subscription can be
    iterated more than once.  A blank query yields ``[]`` once and ends
    without touching the store.
    """

    def __init__(self, repository: ImageRepository, query: str):
        self.repository = repository
        self.query = query
        self.keywords = tokenize(query)
        self._closed = False
        self._wakeups: List[Tuple[asyncio.AbstractEventLoop, asyncio.Event]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[List[ImageRecord]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[List[ImageRecord]]:
        if not self.keywords:
            yield []
            return

        loop = asyncio.get_running_loop()
        changed = asyncio.Event()
        wakeup = (loop, changed)

        def on_change(change: StoreChange) -> None:
            if change.table == IMAGES_TABLE:
                # Writers may run on executor threads
                loop.call_soon_threadsafe(changed.set)

        unsubscribe = self.repository.subscribe(on_change)
        self._wakeups.append(wakeup)
        try:
            while not self._closed:
                changed.clear()
                yield await self.repository.search_images(self.keywords)
                if self._closed:
                    break
                await changed.wait()
        finally:
            unsubscribe()
            if wakeup in self._wakeups:
                self._wakeups.remove(wakeup)

    def close(self) -> None:
        """Stop all iterations of this subscription."""
        self._closed = True
        for loop, event in list(self._wakeups):
            if not loop.is_closed():
                loop.call_soon_threadsafe(event.set)


class SearchEngine:
    """
    Keyword search over indexed images.

    Results are in index order (by file address); no ranking.
    """

    def __init__(self, repository: ImageRepository):
        self.repository = repository

    async def query(self, text: str) -> List[ImageRecord]:
        """
        Evaluate a query once.

        Args:
            text: Whitespace-separated keywords (all must match)

        Returns:
            Matching records ([] for a blank query)
        """
        keywords = tokenize(text)
        if not keywords:
            return []
        results = await self.repository.search_images(keywords)
        logger.debug(f"Search {keywords} matched {len(results)} images")
        return results

    def search(self, text: str) -> SearchSubscription:
        """Create a live subscription for a query (evaluated lazily)."""
        return SearchSubscription(self.repository, text)


@dataclass(frozen=True)
class SearchState:
    """Snapshot of the interactive search."""
    query: str = ""
    results: Tuple[ImageRecord, ...] = ()
    is_loading: bool = False


class LiveSearch:
    """
    Interactive search driven by a changing query.

    - Query changes are debounced
    - A query equal to the active one is ignored
    - Starting a new query cancels the previous subscription, and results
      of a superseded query are never published

    Must be used from a running event loop.
    """

    def __init__(self, engine: SearchEngine, debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS):
        self.engine = engine
        self.debounce_seconds = debounce_seconds
        self.state: StateSlot[SearchState] = StateSlot(SearchState())
        self._active_query: Optional[str] = None
        self._subscription: Optional[SearchSubscription] = None
        self._debounce_task: Optional[asyncio.Task] = None
        self._pump_task: Optional[asyncio.Task] = None

    @property
    def active_query(self) -> Optional[str]:
        return self._active_query

    def set_query(self, text: str) -> None:
        """Request a new query; it starts after the debounce interval."""
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = asyncio.get_running_loop().create_task(self._debounced(text))

    def clear(self) -> None:
        """Drop the query and results immediately."""
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._start("")

    async def _debounced(self, text: str) -> None:
        await asyncio.sleep(self.debounce_seconds)
        self._start(text)

    def _start(self, text: str) -> None:
        if text == self._active_query:
            return
        self._active_query = text
        self._stop_subscription()

        if not tokenize(text):
            self.state.publish(SearchState(query=text))
            return

        self.state.publish(SearchState(query=text, results=self.state.value.results, is_loading=True))
        subscription = self.engine.search(text)
        self._subscription = subscription
        self._pump_task = asyncio.get_running_loop().create_task(self._pump(subscription))

    def _stop_subscription(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()
        self._pump_task = None

    async def _pump(self, subscription: SearchSubscription) -> None:
        iterator = subscription.__aiter__()
        try:
            async for results in iterator:
                if subscription is not self._subscription:
                    return
                self.state.publish(SearchState(query=subscription.query, results=tuple(results)))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Search for '{subscription.query}' failed: {e}")
            if subscription is self._subscription:
                self.state.publish(SearchState(query=subscription.query))
        finally:
            await iterator.aclose()

    async def aclose(self) -> None:
        """Cancel pending work and wait for it to finish."""
        tasks = [t for t in (self._debounce_task, self._pump_task) if t is not None]
        if self._debounce_task is not None:
            self._debounce_task.cancel()
        self._stop_subscription()
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
