"""Tests for the command line interface."""

import asyncio

from typer.testing import CliRunner

from cli import app
from conftest import record
from persistence.store import SqliteSessionStore

runner = CliRunner()


def _seed(db_path):
    store = SqliteSessionStore(db_path)
    asyncio.run(store.save_session(
        [record("a", "notes", content="x", sort_index=0), record("b", "b.txt", content="y", path="/docs/b.txt", sort_index=1)],
        [record("c", "old", content="z", original_index=0)],
    ))
    return store


def test_session_show(tmp_path):
    db_path = tmp_path / "session.db"
    _seed(db_path)

    result = runner.invoke(app, ["session", "show", "--db", str(db_path)])

    assert result.exit_code == 0
    assert "Open tabs (2)" in result.output
    assert "notes" in result.output
    assert "/docs/b.txt" in result.output
    assert "Recently closed (1)" in result.output


def test_session_clear(tmp_path):
    db_path = tmp_path / "session.db"
    store = _seed(db_path)

    result = runner.invoke(app, ["session", "clear", "--db", str(db_path), "--yes"])

    assert result.exit_code == 0
    assert store.stats() == {"active_tabs": 0, "closed_tabs": 0}


def test_session_vacuum(tmp_path):
    db_path = tmp_path / "session.db"
    _seed(db_path)

    result = runner.invoke(app, ["session", "vacuum", "--db", str(db_path)])

    assert result.exit_code == 0


def test_config_show():
    result = runner.invoke(app, ["config", "show"])
    assert result.exit_code == 0
    assert "session_startup_behavior" in result.output


def test_doctor():
    result = runner.invoke(app, ["doctor"])
    assert result.exit_code == 0
    assert "File watching" in result.output
