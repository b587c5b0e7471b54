"""Tests for session restore at startup."""

from unittest.mock import AsyncMock

import pytest

from conftest import record
from core.config import with_overrides
from core.errors import SessionCorruptError
from editor.buffers import LoadState, TabRegistry
from editor.loading import ContentLoader
from persistence.records import TabRecord
from persistence.session import SessionLoader, record_to_tab


async def _seed(store):
    await store.save_session(
        [
            record("a", "alpha", content="A", sort_index=0, mru_position=2),
            record("b", "beta", content="B", sort_index=1, mru_position=0),
            record("c", "gamma", content="C", sort_index=2, mru_position=1),
        ],
        [record("z", "closed", content="Z", original_index=1)],
    )


def _loader(config, store, files, initializer=None):
    registry = TabRegistry(config)
    content = ContentLoader(registry, store, files)
    return SessionLoader(registry, store, content, config, initializer=initializer)


class TestStartupBehavior:

    @pytest.mark.asyncio
    async def test_first(self, config, store, files):
        await _seed(store)
        registry = await _loader(config, store, files).load()

        assert registry.list() == ["a", "b", "c"]
        assert registry.active_id == "a"
        assert registry.mru == ["b", "c", "a"]
        assert registry.get("a").load_state == LoadState.LOADED
        assert registry.get("a").content == "A"
        assert registry.get("b").load_state == LoadState.UNLOADED

    @pytest.mark.asyncio
    async def test_last_focused(self, config, store, files):
        await _seed(store)
        config = with_overrides(config, session_startup_behavior="last-focused")

        registry = await _loader(config, store, files).load()

        assert registry.active_id == "b"
        assert registry.get("b").content == "B"

    @pytest.mark.asyncio
    async def test_new(self, config, store, files):
        await _seed(store)
        config = with_overrides(config, session_startup_behavior="new")

        registry = await _loader(config, store, files).load()

        assert len(registry.tabs) == 4
        active = registry.active()
        assert active.id not in {"a", "b", "c"}
        assert active.title == "New-1"
        assert all(registry.get(i).load_state == LoadState.UNLOADED for i in "abc")

    @pytest.mark.asyncio
    async def test_mru_falls_back_to_document_order(self, config, store, files):
        await store.save_session(
            [record("a", "alpha", content="A", sort_index=0), record("b", "beta", content="B", sort_index=1)],
            [],
        )
        config = with_overrides(config, session_startup_behavior="last-focused")

        registry = await _loader(config, store, files).load()

        assert registry.active_id == "a"
        assert registry.mru[:2] == ["a", "b"]


class TestRestore:

    @pytest.mark.asyncio
    async def test_closed_history_is_restored(self, config, store, files):
        await _seed(store)
        registry = await _loader(config, store, files).load()

        assert len(registry.closed) == 1
        entry = registry.closed[0]
        assert entry.tab.id == "z"
        assert entry.index == 1
        assert not entry.tab.content_loaded

    @pytest.mark.asyncio
    async def test_closed_history_over_capacity_keeps_newest(self, config, store, files):
        await store.save_session(
            [record("a", "alpha", content="A", sort_index=0)],
            [record(f"c{i}", f"closed {i}", content=str(i), original_index=0) for i in range(5)],
        )
        config = with_overrides(config, session_closed_history_capacity=3)

        registry = await _loader(config, store, files).load()

        assert [entry.tab.id for entry in registry.closed] == ["c0", "c1", "c2"]

    @pytest.mark.asyncio
    async def test_empty_store_gives_one_tab(self, config, store, files):
        registry = await _loader(config, store, files).load()

        assert len(registry.tabs) == 1
        assert registry.active_id == registry.tabs[0].id
        assert registry.tabs[0].title == "New-1"

    @pytest.mark.asyncio
    async def test_unreadable_session_falls_back(self, config, store, files):
        await _seed(store)
        store.restore_session = AsyncMock(side_effect=SessionCorruptError("bad header"))

        registry = await _loader(config, store, files).load()

        assert len(registry.tabs) == 1
        assert registry.active() is registry.tabs[0]
        assert len(registry.closed) == 0

    @pytest.mark.asyncio
    async def test_initializer_runs_for_active_tab(self, config, store, files):
        await _seed(store)
        initializer = AsyncMock()

        await _loader(config, store, files, initializer).load()

        initializer.assert_awaited_once_with("a")

    @pytest.mark.asyncio
    async def test_initializer_errors_are_contained(self, config, store, files):
        await _seed(store)
        initializer = AsyncMock(side_effect=RuntimeError("watch failed"))

        registry = await _loader(config, store, files, initializer).load()

        assert registry.active_id == "a"

    @pytest.mark.asyncio
    async def test_session_dirty_reflects_unsaved_scratch(self, config, store, files):
        await _seed(store)
        registry = await _loader(config, store, files).load()
        # "a" is a pathless tab whose text is now loaded
        assert registry.session_dirty


def test_record_to_tab():
    tab = record_to_tab(TabRecord(
        id="t", title="a.txt", content=None, is_dirty=False, path="/docs/a.txt",
        scroll_percentage=0.25, is_pinned=True, custom_title="Notes",
    ))

    assert tab.load_state == LoadState.UNLOADED
    assert not tab.content_loaded
    assert tab.is_persisted
    assert tab.last_saved_hash is None
    assert tab.display_title == "Notes"
    assert tab.scroll_percentage == 0.25


def test_record_to_tab_rejects_malformed():
    with pytest.raises(SessionCorruptError):
        record_to_tab(TabRecord(id="", title="x", content=None, is_dirty=False, path=None))
