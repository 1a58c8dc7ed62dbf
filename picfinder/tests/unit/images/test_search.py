"""
Tests for image search.

Tests cover:
- Tokenizing queries
- One-shot queries
- Live subscriptions driven by store changes
- LiveSearch debouncing, deduplication and superseding
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from picfinder.core.images.models import ImageRecord
from picfinder.core.images.search import LiveSearch, SearchEngine, SearchState, tokenize

DEBOUNCE = 0.02


def image(path: str, text: str) -> ImageRecord:
    return ImageRecord(
        file_path=path,
        file_name=path.rsplit("/", 1)[-1],
        folder_path=path.rsplit("/", 1)[0],
        extracted_text=text,
        last_modified=1,
        file_size=1,
    )


@pytest.fixture
def engine(repository):
    return SearchEngine(repository)


async def index_cat_and_dog(repository):
    await repository.upsert_images([
        image("/photos/one.png", "the cat on the mat"),
        image("/photos/two.png", "a dog in the fog"),
    ])


async def wait_for_state(live: LiveSearch, predicate, timeout: float = 2.0) -> SearchState:
    """Poll the live state until ``predicate`` holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate(live.state.value):
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"state never matched: {live.state.value!r}")
        await asyncio.sleep(0.005)
    return live.state.value


def paths(results):
    return [r.file_path for r in results]


class TestTokenize:
    """Tests for tokenize."""

    def test_splits_on_whitespace_runs(self):
        assert tokenize("  cat \t mat\n") == ["cat", "mat"]

    def test_blank(self):
        assert tokenize("") == []
        assert tokenize("   ") == []
        assert tokenize(None) == []


class TestQuery:
    """Tests for SearchEngine.query."""

    @pytest.mark.asyncio
    async def test_conjunction(self, engine, repository):
        """'cat mat' -> first only; 'cat fog' -> none; '' -> none."""
        await index_cat_and_dog(repository)

        assert paths(await engine.query("cat mat")) == ["/photos/one.png"]
        assert await engine.query("cat fog") == []
        assert await engine.query("") == []

    @pytest.mark.asyncio
    async def test_blank_query_skips_store(self):
        repository = MagicMock()
        repository.search_images = AsyncMock()

        assert await SearchEngine(repository).query("   ") == []
        repository.search_images.assert_not_called()


class TestSubscription:
    """Tests for live subscriptions."""

    @pytest.mark.asyncio
    async def test_blank_query_yields_empty_once(self):
        repository = MagicMock()
        subscription = SearchEngine(repository).search(" \t ")

        emissions = [results async for results in subscription]

        assert emissions == [[]]
        repository.subscribe.assert_not_called()
        repository.search_images.assert_not_called()

    @pytest.mark.asyncio
    async def test_reevaluates_on_image_changes(self, engine, repository):
        await index_cat_and_dog(repository)
        subscription = engine.search("cat")
        iterator = subscription.__aiter__()

        assert paths(await iterator.__anext__()) == ["/photos/one.png"]

        await repository.upsert_image(image("/photos/three.png", "another CAT"))
        updated = await asyncio.wait_for(iterator.__anext__(), timeout=2)

        assert paths(updated) == ["/photos/one.png", "/photos/three.png"]
        await iterator.aclose()

    @pytest.mark.asyncio
    async def test_folder_changes_do_not_wake(self, engine, repository):
        """Only image-table changes trigger re-evaluation."""
        from picfinder.core.images.models import FolderRecord

        await index_cat_and_dog(repository)
        iterator = engine.search("cat").__aiter__()
        await iterator.__anext__()

        pending = asyncio.ensure_future(iterator.__anext__())
        await repository.insert_folder(FolderRecord(folder_path="/photos", display_name="photos"))
        await asyncio.sleep(0.05)

        assert not pending.done()
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending

    @pytest.mark.asyncio
    async def test_close_ends_iteration(self, engine, repository):
        await index_cat_and_dog(repository)
        subscription = engine.search("dog")
        emissions = []

        async def consume():
            async for results in subscription:
                emissions.append(paths(results))

        task = asyncio.ensure_future(consume())
        await asyncio.sleep(0.05)
        subscription.close()
        await asyncio.wait_for(task, timeout=2)

        assert emissions == [["/photos/two.png"]]
        assert subscription.closed

    @pytest.mark.asyncio
    async def test_unsubscribes_from_store(self, engine, repository):
        """A finished iteration must not keep a store listener."""
        iterator = engine.search("cat").__aiter__()
        await iterator.__anext__()
        assert len(repository._listeners) == 1

        await iterator.aclose()

        assert repository._listeners == []

    @pytest.mark.asyncio
    async def test_restartable(self, engine, repository):
        await index_cat_and_dog(repository)
        subscription = engine.search("fog")

        first = await subscription.__aiter__().__anext__()
        second = await subscription.__aiter__().__anext__()

        assert paths(first) == paths(second) == ["/photos/two.png"]


class TestLiveSearch:
    """Tests for LiveSearch."""

    @pytest.mark.asyncio
    async def test_publishes_results(self, engine, repository):
        await index_cat_and_dog(repository)
        live = LiveSearch(engine, debounce_seconds=DEBOUNCE)

        live.set_query("cat mat")
        state = await wait_for_state(live, lambda s: s.query == "cat mat" and not s.is_loading)

        assert paths(state.results) == ["/photos/one.png"]
        await live.aclose()

    @pytest.mark.asyncio
    async def test_loading_state_published(self, engine, repository):
        await index_cat_and_dog(repository)
        live = LiveSearch(engine, debounce_seconds=DEBOUNCE)
        states = []
        live.state.subscribe(states.append)

        live.set_query("dog")
        await wait_for_state(live, lambda s: s.query == "dog" and not s.is_loading)

        assert states[0] == SearchState(query="dog", results=(), is_loading=True)
        await live.aclose()

    @pytest.mark.asyncio
    async def test_debounce_coalesces_typing(self, engine, repository):
        """Rapid query changes should start only the last query."""
        await index_cat_and_dog(repository)
        live = LiveSearch(engine, debounce_seconds=DEBOUNCE)

        with patch.object(engine, "search", wraps=engine.search) as spy:
            for partial in ("c", "ca", "cat"):
                live.set_query(partial)
            await wait_for_state(live, lambda s: s.query == "cat" and not s.is_loading)

        spy.assert_called_once_with("cat")
        await live.aclose()

    @pytest.mark.asyncio
    async def test_identical_query_ignored(self, engine, repository):
        await index_cat_and_dog(repository)
        live = LiveSearch(engine, debounce_seconds=DEBOUNCE)

        with patch.object(engine, "search", wraps=engine.search) as spy:
            live.set_query("cat")
            await wait_for_state(live, lambda s: s.query == "cat" and not s.is_loading)
            live.set_query("cat")
            await asyncio.sleep(DEBOUNCE * 3)

        assert spy.call_count == 1
        await live.aclose()

    @pytest.mark.asyncio
    async def test_results_follow_index_changes(self, engine, repository):
        await index_cat_and_dog(repository)
        live = LiveSearch(engine, debounce_seconds=DEBOUNCE)
        live.set_query("cat")
        await wait_for_state(live, lambda s: s.query == "cat" and len(s.results) == 1)

        await repository.upsert_image(image("/photos/three.png", "cat picture"))

        state = await wait_for_state(live, lambda s: len(s.results) == 2)
        assert paths(state.results) == ["/photos/one.png", "/photos/three.png"]
        await live.aclose()

    @pytest.mark.asyncio
    async def test_superseded_query_never_published(self, engine, repository):
        """After switching queries, changes matching the old one are not published."""
        await index_cat_and_dog(repository)
        live = LiveSearch(engine, debounce_seconds=DEBOUNCE)
        live.set_query("cat")
        await wait_for_state(live, lambda s: s.query == "cat" and not s.is_loading)
        live.set_query("dog")
        await wait_for_state(live, lambda s: s.query == "dog" and not s.is_loading)

        states = []
        live.state.subscribe(states.append)
        await repository.upsert_image(image("/photos/three.png", "cat and dog"))
        await wait_for_state(live, lambda s: len(s.results) == 2)

        assert all(s.query == "dog" for s in states)
        assert paths(live.state.value.results) == ["/photos/three.png", "/photos/two.png"]
        await live.aclose()

    @pytest.mark.asyncio
    async def test_blank_query_clears_results(self, engine, repository):
        await index_cat_and_dog(repository)
        live = LiveSearch(engine, debounce_seconds=DEBOUNCE)
        live.set_query("cat")
        await wait_for_state(live, lambda s: len(s.results) == 1)

        live.set_query("   ")
        state = await wait_for_state(live, lambda s: s.query == "   ")

        assert state == SearchState(query="   ")
        await live.aclose()

    @pytest.mark.asyncio
    async def test_clear_is_immediate(self, engine, repository):
        await index_cat_and_dog(repository)
        live = LiveSearch(engine, debounce_seconds=DEBOUNCE)
        live.set_query("cat")
        await wait_for_state(live, lambda s: len(s.results) == 1)

        live.clear()

        assert live.state.value == SearchState(query="")
        await live.aclose()

    @pytest.mark.asyncio
    async def test_search_error_publishes_empty(self, engine, repository):
        """Store failures should be logged and shown as no results."""
        live = LiveSearch(engine, debounce_seconds=DEBOUNCE)

        with patch.object(repository, "search_images", AsyncMock(side_effect=RuntimeError("db gone"))):
            live.set_query("cat")
            state = await wait_for_state(live, lambda s: s.query == "cat" and not s.is_loading)

        assert state.results == ()
        await live.aclose()

    @pytest.mark.asyncio
    async def test_aclose_stops_updates(self, engine, repository):
        await index_cat_and_dog(repository)
        live = LiveSearch(engine, debounce_seconds=DEBOUNCE)
        live.set_query("cat")
        await wait_for_state(live, lambda s: len(s.results) == 1)

        await live.aclose()
        await repository.upsert_image(image("/photos/three.png", "cat"))
        await asyncio.sleep(0.05)

        assert len(live.state.value.results) == 1
        assert repository._listeners == []
