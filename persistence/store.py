"""Backing store for the persisted session."""

import asyncio
import sqlite3
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional

from core.errors import SessionCorruptError, StoreError
from core.logging import logger
from core.utils import normalize_line_endings
from persistence.records import SessionData, TabRecord

_COLUMNS = (
    "id, title, content, is_dirty, path, scroll_percentage, created, modified, "
    "is_pinned, custom_title, file_check_failed, file_check_performed, "
    "mru_position, sort_index"
)

MIGRATIONS = [
    # v1: initial schema
    """
    CREATE TABLE IF NOT EXISTS tabs (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        content TEXT,
        is_dirty INTEGER NOT NULL,
        path TEXT,
        scroll_percentage REAL NOT NULL,
        created TEXT,
        modified TEXT,
        is_pinned INTEGER DEFAULT 0,
        custom_title TEXT,
        file_check_failed INTEGER DEFAULT 0,
        file_check_performed INTEGER DEFAULT 0,
        mru_position INTEGER,
        sort_index INTEGER DEFAULT 0
    );
    CREATE TABLE IF NOT EXISTS closed_tabs (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        content TEXT,
        is_dirty INTEGER NOT NULL,
        path TEXT,
        scroll_percentage REAL NOT NULL,
        created TEXT,
        modified TEXT,
        is_pinned INTEGER DEFAULT 0,
        custom_title TEXT,
        file_check_failed INTEGER DEFAULT 0,
        file_check_performed INTEGER DEFAULT 0,
        mru_position INTEGER,
        sort_index INTEGER DEFAULT 0,
        original_index INTEGER
    );
    """,
]


class SessionStore(ABC):
    """Durable home of the session projection."""

    @abstractmethod
    async def save_session(self, active_tabs: List[TabRecord], closed_tabs: List[TabRecord]) -> None:
        """Persist the full projection; ``content=None`` keeps the prior body."""
        ...

    @abstractmethod
    async def restore_session(self) -> SessionData:
        """Return all records without bodies, ordered by sort index."""
        ...

    @abstractmethod
    async def load_tab_content(self, tab_id: str) -> Optional[str]:
        """Return the stored body of one tab."""
        ...


def _normalized(records: List[TabRecord]) -> List[TabRecord]:
    return [
        replace(r, content=normalize_line_endings(r.content)) if r.content and "\r\n" in r.content else r
        for r in records
    ]


class SqliteSessionStore(SessionStore):
    """Session store backed by a SQLite database file."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._initialized = False

    # Connection and schema -------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=5.0)
        conn.execute("PRAGMA auto_vacuum = INCREMENTAL")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA busy_timeout = 5000")
        if not self._initialized:
            self._setup_schema(conn)
            self._initialized = True
        return conn

    def _setup_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY)")
        row = conn.execute("SELECT COALESCE(MAX(version), 0) FROM schema_version").fetchone()
        current = row[0] if row else 0

        for i, migration in enumerate(MIGRATIONS):
            version = i + 1
            if version <= current:
                continue
            logger.info(f"Applying session database migration v{version}")
            with conn:
                for statement in migration.split(";"):
                    if statement.strip():
                        conn.execute(statement)
                conn.execute("DELETE FROM schema_version")
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))

    # Write path ------------------------------------------------------

    def _carried_bodies(self, conn: sqlite3.Connection, records: List[TabRecord], other: str) -> Dict[str, str]:
        """Bodies of rows moving between tables, read before either table is swept."""
        carried = {}
        for record in records:
            if record.content is not None:
                continue
            row = conn.execute(f"SELECT content FROM {other} WHERE id = ?", (record.id,)).fetchone()
            if row and row[0] is not None:
                carried[record.id] = row[0]
        return carried

    def _sync_table(
        self,
        conn: sqlite3.Connection,
        table: str,
        records: List[TabRecord],
        carried: Dict[str, str],
        closed: bool
    ) -> None:
        if not records:
            conn.execute(f"DELETE FROM {table}")
            return

        conn.execute("CREATE TEMP TABLE IF NOT EXISTS _sync_keep_ids (id TEXT PRIMARY KEY)")
        conn.execute("DELETE FROM _sync_keep_ids")
        conn.executemany(
            "INSERT OR IGNORE INTO _sync_keep_ids (id) VALUES (?)",
            [(r.id,) for r in records],
        )
        conn.execute(f"DELETE FROM {table} WHERE id NOT IN (SELECT id FROM _sync_keep_ids)")

        columns = _COLUMNS + (", original_index" if closed else "")
        placeholders = ", ".join("?" for _ in columns.split(", "))
        updates = ", ".join(
            f"{c} = excluded.{c}" for c in columns.split(", ")[1:] if c != "content"
        )
        sql = (
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}, "
            f"content = COALESCE(excluded.content, {table}.content)"
        )

        rows = []
        for i, r in enumerate(records):
            content = r.content if r.content is not None else carried.get(r.id)
            row = [
                r.id, r.title, content, int(r.is_dirty), r.path, r.scroll_percentage,
                r.created, r.modified, int(r.is_pinned), r.custom_title,
                int(r.file_check_failed), int(r.file_check_performed),
                r.mru_position, i if closed else r.sort_index,
            ]
            if closed:
                row.append(r.original_index)
            rows.append(row)
        conn.executemany(sql, rows)

    def _save(self, active_tabs: List[TabRecord], closed_tabs: List[TabRecord]) -> None:
        conn = self._connect()
        try:
            with conn:
                carried_active = self._carried_bodies(conn, active_tabs, "closed_tabs")
                carried_closed = self._carried_bodies(conn, closed_tabs, "tabs")
                self._sync_table(conn, "tabs", active_tabs, carried_active, closed=False)
                self._sync_table(conn, "closed_tabs", closed_tabs, carried_closed, closed=True)
        finally:
            conn.close()

    async def save_session(self, active_tabs: List[TabRecord], closed_tabs: List[TabRecord]) -> None:
        start = time.perf_counter()
        active_tabs = _normalized(active_tabs)
        closed_tabs = _normalized(closed_tabs)
        with_content = sum(1 for t in active_tabs if t.content is not None)
        logger.debug(f"save_session: {len(active_tabs)} active, {len(closed_tabs)} closed, {with_content} with content")

        try:
            await asyncio.to_thread(self._save, active_tabs, closed_tabs)
        except sqlite3.Error as e:
            raise StoreError(f"save session: {e}") from e

        duration = (time.perf_counter() - start) * 1000
        logger.info(
            f"[Storage] save_session | duration={duration:.1f}ms | "
            f"active_tabs={len(active_tabs)} | closed_tabs={len(closed_tabs)}"
        )

    # Read path -------------------------------------------------------

    @staticmethod
    def _row_to_record(row: sqlite3.Row, closed: bool) -> TabRecord:
        return TabRecord(
            id=row["id"],
            title=row["title"],
            content=None,
            is_dirty=bool(row["is_dirty"]),
            path=row["path"],
            scroll_percentage=row["scroll_percentage"] or 0.0,
            created=row["created"],
            modified=row["modified"],
            is_pinned=bool(row["is_pinned"] or 0),
            custom_title=row["custom_title"],
            file_check_failed=bool(row["file_check_failed"] or 0),
            file_check_performed=bool(row["file_check_performed"] or 0),
            mru_position=row["mru_position"],
            sort_index=row["sort_index"],
            original_index=row["original_index"] if closed else None,
        )

    def _restore(self) -> SessionData:
        conn = self._connect()
        conn.row_factory = sqlite3.Row
        try:
            metadata = _COLUMNS.replace("content, ", "")
            active = conn.execute(f"SELECT {metadata} FROM tabs ORDER BY sort_index ASC").fetchall()
            closed = conn.execute(
                f"SELECT {metadata}, original_index FROM closed_tabs ORDER BY sort_index ASC"
            ).fetchall()
        finally:
            conn.close()

        return SessionData(
            active_tabs=[self._row_to_record(r, closed=False) for r in active],
            closed_tabs=[self._row_to_record(r, closed=True) for r in closed],
        )

    async def restore_session(self) -> SessionData:
        start = time.perf_counter()
        try:
            session = await asyncio.to_thread(self._restore)
        except sqlite3.DatabaseError as e:
            raise SessionCorruptError(f"restore session: {e}") from e

        duration = (time.perf_counter() - start) * 1000
        logger.info(
            f"[Storage] restore_session | duration={duration:.1f}ms | "
            f"active_tabs={len(session.active_tabs)} | closed_tabs={len(session.closed_tabs)}"
        )
        return session

    def _load_content(self, tab_id: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT content FROM tabs WHERE id = ? "
                "UNION ALL SELECT content FROM closed_tabs WHERE id = ?",
                (tab_id, tab_id),
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            raise StoreError(f"Tab not found: {tab_id}")
        return row[0]

    async def load_tab_content(self, tab_id: str) -> Optional[str]:
        start = time.perf_counter()
        try:
            content = await asyncio.to_thread(self._load_content, tab_id)
        except sqlite3.Error as e:
            raise StoreError(f"load tab content: {e}") from e

        duration = (time.perf_counter() - start) * 1000
        logger.info(
            f"[Storage] load_tab_content | duration={duration:.1f}ms | "
            f"tab_id={tab_id} | size={len(content or '')} chars"
        )
        return content

    # Maintenance -----------------------------------------------------

    def vacuum(self, pages: int = 100) -> int:
        """
        Reclaim free pages.

        Returns:
            Number of free pages found before vacuuming.
        """
        conn = self._connect()
        try:
            free = conn.execute("PRAGMA freelist_count").fetchone()[0]
            if free > 0:
                logger.info(f"Vacuuming session database: {free} free pages to reclaim")
                conn.execute(f"PRAGMA incremental_vacuum({int(pages)})")
            else:
                logger.debug("No free pages to reclaim in session database")
            return free
        finally:
            conn.close()

    def stats(self) -> Dict[str, int]:
        """Row counts per table."""
        conn = self._connect()
        try:
            return {
                "active_tabs": conn.execute("SELECT COUNT(*) FROM tabs").fetchone()[0],
                "closed_tabs": conn.execute("SELECT COUNT(*) FROM closed_tabs").fetchone()[0],
            }
        finally:
            conn.close()

    def clear(self) -> None:
        """Delete every stored tab."""
        conn = self._connect()
        try:
            with conn:
                conn.execute("DELETE FROM tabs")
                conn.execute("DELETE FROM closed_tabs")
        finally:
            conn.close()


class MemorySessionStore(SessionStore):
    """In-process store with the same semantics as the SQLite store."""

    def __init__(self) -> None:
        self.active: Dict[str, TabRecord] = {}
        self.closed: Dict[str, TabRecord] = {}
        self.save_calls: List[SessionData] = []

    @staticmethod
    def _merge(
        records: List[TabRecord],
        current: Dict[str, TabRecord],
        other: Dict[str, TabRecord],
        closed: bool
    ) -> Dict[str, TabRecord]:
        merged = {}
        for i, record in enumerate(records):
            content = record.content
            if content is None:
                prior = current.get(record.id) or other.get(record.id)
                content = prior.content if prior else None
            merged[record.id] = replace(
                record,
                content=content,
                sort_index=i if closed else record.sort_index,
                original_index=record.original_index if closed else None,
            )
        return merged

    async def save_session(self, active_tabs: List[TabRecord], closed_tabs: List[TabRecord]) -> None:
        active_tabs = _normalized(active_tabs)
        closed_tabs = _normalized(closed_tabs)
        self.save_calls.append(SessionData(list(active_tabs), list(closed_tabs)))
        active = self._merge(active_tabs, self.active, self.closed, closed=False)
        closed = self._merge(closed_tabs, self.closed, self.active, closed=True)
        self.active, self.closed = active, closed

    async def restore_session(self) -> SessionData:
        def ordered(records: Dict[str, TabRecord]) -> List[TabRecord]:
            rows = sorted(records.values(), key=lambda r: r.sort_index or 0)
            return [replace(r, content=None) for r in rows]

        return SessionData(active_tabs=ordered(self.active), closed_tabs=ordered(self.closed))

    async def load_tab_content(self, tab_id: str) -> Optional[str]:
        record = self.active.get(tab_id) or self.closed.get(tab_id)
        if record is None:
            raise StoreError(f"Tab not found: {tab_id}")
        return record.content
