"""Tests for the session stores."""

import pytest

from conftest import record
from core.errors import SessionCorruptError, StoreError
from persistence.records import SessionData, TabRecord
from persistence.store import MemorySessionStore, SqliteSessionStore


@pytest.fixture(params=["sqlite", "memory"])
def any_store(request, tmp_path):
    if request.param == "sqlite":
        return SqliteSessionStore(tmp_path / "session.db")
    return MemorySessionStore()


class TestSessionStore:

    @pytest.mark.asyncio
    async def test_restore_returns_metadata_in_order(self, any_store):
        await any_store.save_session(
            [
                record("b", "second", content="B", sort_index=1, mru_position=0),
                record("a", "first", content="A", sort_index=0, mru_position=1, is_pinned=True),
            ],
            [record("c", "closed", content="C", original_index=4)],
        )

        session = await any_store.restore_session()

        assert [r.id for r in session.active_tabs] == ["a", "b"]
        assert all(r.content is None for r in session.active_tabs)
        assert session.active_tabs[0].is_pinned
        assert session.active_tabs[1].mru_position == 0
        assert session.closed_tabs[0].original_index == 4
        assert await any_store.load_tab_content("c") == "C"

    @pytest.mark.asyncio
    async def test_missing_content_keeps_previous_body(self, any_store):
        await any_store.save_session([record("a", "doc", content="original")], [])
        await any_store.save_session([record("a", "renamed", content=None)], [])

        assert await any_store.load_tab_content("a") == "original"
        session = await any_store.restore_session()
        assert session.active_tabs[0].title == "renamed"

    @pytest.mark.asyncio
    async def test_absent_rows_are_deleted(self, any_store):
        await any_store.save_session([record("a", "a", content="1"), record("b", "b", content="2")], [])
        await any_store.save_session([record("a", "a")], [])

        session = await any_store.restore_session()

        assert [r.id for r in session.active_tabs] == ["a"]
        with pytest.raises(StoreError):
            await any_store.load_tab_content("b")

    @pytest.mark.asyncio
    async def test_body_follows_tab_into_closed_history(self, any_store):
        await any_store.save_session([record("a", "a", content="keep me")], [])
        # Closed without sending the body again
        await any_store.save_session([], [record("a", "a", original_index=0)])

        assert await any_store.load_tab_content("a") == "keep me"

        # And back again on reopen
        await any_store.save_session([record("a", "a", sort_index=0)], [])
        assert await any_store.load_tab_content("a") == "keep me"

    @pytest.mark.asyncio
    async def test_crlf_is_normalized(self, any_store):
        await any_store.save_session([record("a", "a", content="x\r\ny\r\n")], [])
        assert await any_store.load_tab_content("a") == "x\ny\n"

    @pytest.mark.asyncio
    async def test_unknown_tab_raises(self, any_store):
        with pytest.raises(StoreError):
            await any_store.load_tab_content("nope")

    @pytest.mark.asyncio
    async def test_empty_save_clears_everything(self, any_store):
        await any_store.save_session([record("a", "a", content="1")], [record("b", "b", content="2")])
        await any_store.save_session([], [])

        session = await any_store.restore_session()
        assert session.active_tabs == []
        assert session.closed_tabs == []


class TestSqliteSessionStore:

    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path):
        db_path = tmp_path / "nested" / "session.db"
        await SqliteSessionStore(db_path).save_session([record("a", "a", content="persisted")], [])

        reopened = SqliteSessionStore(db_path)

        assert await reopened.load_tab_content("a") == "persisted"
        assert reopened.stats() == {"active_tabs": 1, "closed_tabs": 0}

    @pytest.mark.asyncio
    async def test_closed_rows_are_indexed_by_history_position(self, tmp_path):
        store = SqliteSessionStore(tmp_path / "session.db")
        await store.save_session([], [
            record("new", "n", content="1", original_index=2),
            record("old", "o", content="2", original_index=0),
        ])

        session = await store.restore_session()

        assert [(r.id, r.sort_index) for r in session.closed_tabs] == [("new", 0), ("old", 1)]

    @pytest.mark.asyncio
    async def test_clear_and_vacuum(self, tmp_path):
        store = SqliteSessionStore(tmp_path / "session.db")
        await store.save_session([record(str(i), "t", content="x" * 5000) for i in range(20)], [])

        store.clear()

        assert store.stats() == {"active_tabs": 0, "closed_tabs": 0}
        assert store.vacuum() >= 0

    @pytest.mark.asyncio
    async def test_corrupt_database(self, tmp_path):
        db_path = tmp_path / "session.db"
        db_path.write_bytes(b"not a database" * 100)

        with pytest.raises(SessionCorruptError):
            await SqliteSessionStore(db_path).restore_session()


def test_records_round_trip_through_dicts():
    data = SessionData(
        active_tabs=[TabRecord(id="a", title="a", content=None, is_dirty=True, path=None, mru_position=0)],
        closed_tabs=[],
    )
    payload = data.to_dict()
    payload["active_tabs"][0]["unexpected"] = 1

    restored = SessionData.from_dict(payload)

    assert restored == data
