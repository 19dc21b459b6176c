"""Session stores: durable per-user TimerSession documents.

merge() is fire-and-forget. Subscribers receive every snapshot the store
applies; the latest snapshot is always treated as ground truth by callers, so
a dropped write needs no retry.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

import aiosqlite

from .errors import StoreWriteError
from .session import DOCUMENT_KEYS, SERVER_TIMESTAMP, SessionCallback, TimerSession
from .signals import ActivityEvent

logger = logging.getLogger(__name__)

SESSION_COLUMNS = tuple(DOCUMENT_KEYS)


def _now_iso() -> str:
    return datetime.now().isoformat()


class SessionStore:
    """Interface shared by the store implementations."""

    def merge(self, session_id: str, fields: dict[str, Any]) -> None:
        raise NotImplementedError

    def subscribe(self, session_id: str, callback: SessionCallback) -> Callable[[], None]:
        raise NotImplementedError

    def log_event(self, session_id: str, source: str, event: ActivityEvent) -> None:
        raise NotImplementedError

    async def recent_events(self, session_id: str, limit: int = 50) -> list[dict]:
        raise NotImplementedError

    async def flush(self) -> None:
        """Wait until queued writes have been applied."""

    async def refresh(self, session_id: str) -> None:
        """Re-read the stored document and notify subscribers if it changed."""


class _Subscribers:
    def __init__(self):
        self._by_session: dict[str, list[SessionCallback]] = {}

    def add(self, session_id: str, callback: SessionCallback) -> Callable[[], None]:
        self._by_session.setdefault(session_id, []).append(callback)

        def unsubscribe():
            callbacks = self._by_session.get(session_id, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def notify(self, session_id: str, session: TimerSession) -> None:
        for callback in list(self._by_session.get(session_id, [])):
            try:
                callback(session)
            except Exception as e:
                logger.error(f"Session subscriber failed for {session_id}: {e}")


class MemorySessionStore(SessionStore):
    """In-process store; merges apply immediately and notify synchronously."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._sessions: dict[str, TimerSession] = {}
        self._events: dict[str, list[dict]] = {}
        self._subscribers = _Subscribers()
        self.writes: list[tuple[str, dict]] = []

    def get(self, session_id: str) -> TimerSession:
        return self._sessions.get(session_id, TimerSession())

    def put(self, session_id: str, session: TimerSession) -> None:
        """Replace the stored document outright (seeding, external writers)."""
        self._sessions[session_id] = session
        self._subscribers.notify(session_id, session)

    def merge(self, session_id: str, fields: dict[str, Any]) -> None:
        self.writes.append((session_id, dict(fields)))
        session = self.get(session_id).merged(fields, now=self._clock())
        for problem in session.invariant_violations():
            logger.warning(f"Session {session_id} invariant: {problem}")
        self.put(session_id, session)

    def subscribe(self, session_id: str, callback: SessionCallback) -> Callable[[], None]:
        unsubscribe = self._subscribers.add(session_id, callback)
        callback(self.get(session_id))
        return unsubscribe

    def log_event(self, session_id: str, source: str, event: ActivityEvent) -> None:
        self._events.setdefault(session_id, []).append({
            "source": source,
            "active": event.active,
            "at": event.at,
        })

    async def recent_events(self, session_id: str, limit: int = 50) -> list[dict]:
        return list(reversed(self._events.get(session_id, [])))[:limit]


class SqliteSessionStore(SessionStore):
    """aiosqlite-backed store with a single ordered writer task.

    Each merge updates only the columns it names, so merges from different
    writers compose instead of clobbering each other's fields.
    """

    def __init__(self, db_path: Path, clock: Callable[[], float] = time.time):
        self.db_path = Path(db_path)
        self._clock = clock
        self._queue: Optional[asyncio.Queue] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._subscribers = _Subscribers()
        self._cache: dict[str, TimerSession] = {}

    # ── DB Schema ──────────────────────────────────────────────

    async def init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA busy_timeout=5000")
            await db.execute("""
                CREATE TABLE IF NOT EXISTS timer_sessions (
                    session_id TEXT PRIMARY KEY,
                    mode TEXT NOT NULL DEFAULT 'idle',
                    total_duration REAL NOT NULL DEFAULT 0,
                    last_set_duration REAL NOT NULL DEFAULT 0,
                    start_time REAL,
                    pause_time REAL,
                    accumulated_pause_time REAL NOT NULL DEFAULT 0,
                    break_start_time REAL,
                    updated_at TEXT NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS activity_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    source TEXT NOT NULL,
                    active INTEGER NOT NULL,
                    observed_at REAL NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_activity_events_session
                ON activity_events(session_id, observed_at DESC)
            """)
            await db.commit()

    # ── Lifecycle ──────────────────────────────────────────────

    async def start(self) -> None:
        await self.init_db()
        self._queue = asyncio.Queue()
        self._writer_task = asyncio.create_task(self._writer())

    async def close(self) -> None:
        if self._writer_task is None:
            return
        await self.flush()
        self._writer_task.cancel()
        try:
            await self._writer_task
        except asyncio.CancelledError:
            pass
        self._writer_task = None

    async def flush(self) -> None:
        if self._queue is not None:
            await self._queue.join()

    # ── Reads ──────────────────────────────────────────────────

    async def load(self, session_id: str) -> TimerSession:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM timer_sessions WHERE session_id = ?", (session_id,)
            )
            row = await cursor.fetchone()
        if row is None:
            return TimerSession()
        return TimerSession().merged({col: row[col] for col in SESSION_COLUMNS})

    def subscribe(self, session_id: str, callback: SessionCallback) -> Callable[[], None]:
        unsubscribe = self._subscribers.add(session_id, callback)
        if session_id in self._cache:
            callback(self._cache[session_id])
        return unsubscribe

    async def refresh(self, session_id: str) -> None:
        session = await self.load(session_id)
        if self._cache.get(session_id) != session:
            self._cache[session_id] = session
            self._subscribers.notify(session_id, session)

    async def recent_events(self, session_id: str, limit: int = 50) -> list[dict]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """SELECT source, active, observed_at FROM activity_events
                   WHERE session_id = ? ORDER BY observed_at DESC, id DESC LIMIT ?""",
                (session_id, limit),
            )
            rows = await cursor.fetchall()
        return [
            {"source": row["source"], "active": bool(row["active"]), "at": row["observed_at"]}
            for row in rows
        ]

    # ── Writes (fire-and-forget) ───────────────────────────────

    def merge(self, session_id: str, fields: dict[str, Any]) -> None:
        self._enqueue(("merge", session_id, dict(fields)))

    def log_event(self, session_id: str, source: str, event: ActivityEvent) -> None:
        self._enqueue(("event", session_id, {"source": source, "event": event}))

    def _enqueue(self, item: tuple) -> None:
        if self._queue is None:
            logger.warning(f"Session store not started; dropping {item[0]} for {item[1]}")
            return
        self._queue.put_nowait(item)

    async def _writer(self) -> None:
        """Apply queued writes one at a time, in issuance order."""
        while True:
            kind, session_id, payload = await self._queue.get()
            try:
                if kind == "merge":
                    session = await self._apply_merge(session_id, payload)
                    self._cache[session_id] = session
                    self._subscribers.notify(session_id, session)
                else:
                    await self._insert_event(session_id, payload["source"], payload["event"])
            except Exception as e:
                # next observed snapshot stays authoritative; nothing is retried
                logger.warning(f"Session store write failed for {session_id} ({kind}): {e}")
            finally:
                self._queue.task_done()

    async def _apply_merge(self, session_id: str, fields: dict[str, Any]) -> TimerSession:
        unknown = set(fields) - set(SESSION_COLUMNS)
        if unknown:
            raise StoreWriteError(f"unknown session fields: {sorted(unknown)}")

        written_at = self._clock()
        values = {}
        for col, value in fields.items():
            if value is SERVER_TIMESTAMP:
                value = written_at
            elif col == "mode":
                value = getattr(value, "value", value)
            values[col] = value

        # column names come from SESSION_COLUMNS only
        assignments = ", ".join(f"{col} = ?" for col in values)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA busy_timeout=5000")
            await db.execute(
                """INSERT INTO timer_sessions (session_id, updated_at) VALUES (?, ?)
                   ON CONFLICT(session_id) DO NOTHING""",
                (session_id, _now_iso()),
            )
            if values:
                await db.execute(
                    f"UPDATE timer_sessions SET {assignments}, updated_at = ? WHERE session_id = ?",
                    (*values.values(), _now_iso(), session_id),
                )
            await db.commit()

        session = await self.load(session_id)
        for problem in session.invariant_violations():
            logger.warning(f"Session {session_id} invariant: {problem}")
        return session

    async def _insert_event(self, session_id: str, source: str, event: ActivityEvent) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """INSERT INTO activity_events (session_id, source, active, observed_at, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (session_id, source, 1 if event.active else 0, event.at, _now_iso()),
            )
            await db.commit()
