"""
IntentStore — SQLite persistence for scheduled intents.

DB: ~/.tickler/scheduler.db

Table: intents
    id              TEXT  PK
    description     TEXT
    kind            TEXT  ('one_off' | 'recurring')
    fire_at         REAL  (one_off only)
    recurrence_spec TEXT  (recurring only)
    task_type       TEXT
    payload         BLOB
    is_active       INT   (0/1)
    created_at      REAL
    next_run_time   REAL
    last_run_at     REAL
    last_status     TEXT
    last_result     TEXT
    fire_count      INT

Table: executions   one row per fire attempt (history)
Table: heartbeat    singleton row id=1 holding last_heartbeat

The store is the only source of truth after a restart. Rows are never
deleted: cancellation is a soft delete (is_active=0), so ids are never reused.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable, TypeVar

from tickler.core.errors import StoreError
from tickler.scheduler.intent import (
    ExecutionRecord,
    FireResult,
    FireStatus,
    ScheduledIntent,
    ScheduleKind,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS intents (
    id              TEXT PRIMARY KEY,
    description     TEXT NOT NULL,
    kind            TEXT NOT NULL CHECK(kind IN ('one_off', 'recurring')),
    fire_at         REAL,
    recurrence_spec TEXT,
    task_type       TEXT NOT NULL,
    payload         BLOB NOT NULL,
    is_active       INTEGER NOT NULL DEFAULT 1,
    created_at      REAL NOT NULL,
    next_run_time   REAL NOT NULL DEFAULT 0,
    last_run_at     REAL,
    last_status     TEXT,
    last_result     TEXT,
    fire_count      INTEGER NOT NULL DEFAULT 0,
    CHECK ((kind = 'one_off' AND fire_at IS NOT NULL AND recurrence_spec IS NULL)
        OR (kind = 'recurring' AND recurrence_spec IS NOT NULL AND fire_at IS NULL))
);
CREATE INDEX IF NOT EXISTS idx_intents_active_next ON intents(is_active, next_run_time);

CREATE TABLE IF NOT EXISTS executions (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    intent_id     TEXT NOT NULL REFERENCES intents(id),
    scheduled_for REAL NOT NULL,
    status        TEXT NOT NULL,
    executed_at   REAL NOT NULL,
    notes         TEXT
);
CREATE INDEX IF NOT EXISTS idx_executions_intent ON executions(intent_id, executed_at);

CREATE TABLE IF NOT EXISTS heartbeat (
    id             INTEGER PRIMARY KEY CHECK (id = 1),
    last_heartbeat REAL NOT NULL
);
"""


class IntentStore:
    """
    SQLite store for intents. All blocking ops run in the default executor.

    A single connection is shared across executor threads, guarded by a lock;
    every write is one transaction, so readers never see half-written rows.

    Usage:
        store = IntentStore(db_path)
        await store.initialize()

        await store.insert(intent)
        active = await store.list_active()
        await store.mark_fired(intent.id, next_run_time=None, result=result)
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or (Path.home() / ".tickler" / "scheduler.db")
        self._db: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @property
    def db_path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        await self._run(self._init_sync)

    def _init_sync(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = self._get_db()
        db.execute("PRAGMA journal_mode=WAL")
        db.execute("PRAGMA synchronous=FULL")
        db.executescript(_SCHEMA)
        db.commit()
        logger.debug(f"IntentStore initialised at {self._db_path}")

    def _get_db(self) -> sqlite3.Connection:
        if self._db is None:
            db = sqlite3.connect(str(self._db_path), check_same_thread=False)
            db.row_factory = sqlite3.Row
            self._db = db
        return self._db

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a sync DB function in the executor, serialised and error-wrapped."""

        def locked() -> T:
            with self._lock:
                try:
                    return fn(*args)
                except sqlite3.Error as e:
                    raise StoreError(f"Intent store failure: {e}", {"db": str(self._db_path)}) from e

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, locked)

    # ── Intents ──────────────────────────────────────────────────────────────

    async def insert(self, intent: ScheduledIntent) -> None:
        """Insert a new intent. Raises StoreError if the id already exists."""
        await self._run(self._insert_sync, intent)

    def _insert_sync(self, intent: ScheduledIntent) -> None:
        db = self._get_db()
        try:
            with db:
                db.execute(
                    """
                    INSERT INTO intents (id, description, kind, fire_at, recurrence_spec,
                        task_type, payload, is_active, created_at, next_run_time,
                        last_run_at, last_status, last_result, fire_count)
                    VALUES (:id, :description, :kind, :fire_at, :recurrence_spec,
                        :task_type, :payload, :is_active, :created_at, :next_run_time,
                        :last_run_at, :last_status, :last_result, :fire_count)
                    """,
                    {**intent.to_dict(), "is_active": int(intent.is_active)},
                )
        except sqlite3.IntegrityError as e:
            raise StoreError(f"Duplicate or invalid intent {intent.id!r}: {e}", {"id": intent.id}) from e

    async def get(self, intent_id: str) -> ScheduledIntent | None:
        return await self._run(self._get_sync, intent_id)

    def _get_sync(self, intent_id: str) -> ScheduledIntent | None:
        row = self._get_db().execute("SELECT * FROM intents WHERE id=?", (intent_id,)).fetchone()
        return self._row_to_intent(row) if row else None

    async def list_active(self) -> list[ScheduledIntent]:
        """Active intents, soonest first. One consistent snapshot."""
        return await self.get_all(active_only=True)

    async def get_all(self, active_only: bool = False) -> list[ScheduledIntent]:
        return await self._run(self._get_all_sync, active_only)

    def _get_all_sync(self, active_only: bool) -> list[ScheduledIntent]:
        q = "SELECT * FROM intents"
        if active_only:
            q += " WHERE is_active=1"
        q += " ORDER BY next_run_time ASC, created_at ASC"
        return [self._row_to_intent(r) for r in self._get_db().execute(q).fetchall()]

    async def mark_fired(
        self, intent_id: str, next_run_time: float | None, result: FireResult
    ) -> bool:
        """
        Record a completed fire attempt atomically.

        One-off intents are deactivated; recurring intents get next_run_time.
        Returns False (and writes nothing) if the intent is unknown or no
        longer active, i.e. a cancel won the race.
        """
        return await self._run(self._mark_fired_sync, intent_id, next_run_time, result)

    def _mark_fired_sync(
        self, intent_id: str, next_run_time: float | None, result: FireResult
    ) -> bool:
        db = self._get_db()
        with db:
            row = db.execute(
                "SELECT kind, is_active FROM intents WHERE id=?", (intent_id,)
            ).fetchone()
            if row is None or not row["is_active"]:
                return False
            recurring = row["kind"] == ScheduleKind.RECURRING.value
            db.execute(
                "INSERT INTO executions (intent_id, scheduled_for, status, executed_at, notes)"
                " VALUES (?, ?, ?, ?, ?)",
                (intent_id, result.scheduled_for, result.status.value, result.finished_at, result.notes),
            )
            if recurring and next_run_time is not None:
                db.execute(
                    """
                    UPDATE intents SET next_run_time=?, last_run_at=?, last_status=?,
                        last_result=?, fire_count=fire_count+1
                    WHERE id=?
                    """,
                    (next_run_time, result.finished_at, result.status.value, result.notes, intent_id),
                )
            else:
                db.execute(
                    """
                    UPDATE intents SET is_active=0, last_run_at=?, last_status=?,
                        last_result=?, fire_count=fire_count+1
                    WHERE id=?
                    """,
                    (result.finished_at, result.status.value, result.notes, intent_id),
                )
        return True

    async def update_next_run(self, intent_id: str, next_run_time: float) -> None:
        """Refresh the cached next_run_time of an active intent."""
        await self._run(self._update_next_run_sync, intent_id, next_run_time)

    def _update_next_run_sync(self, intent_id: str, next_run_time: float) -> None:
        db = self._get_db()
        with db:
            db.execute(
                "UPDATE intents SET next_run_time=? WHERE id=? AND is_active=1",
                (next_run_time, intent_id),
            )

    async def cancel(self, intent_id: str) -> bool:
        """
        Deactivate an intent. Idempotent: unknown or inactive ids succeed.

        Returns True only if this call changed an active intent.
        """
        return await self._run(self._cancel_sync, intent_id)

    def _cancel_sync(self, intent_id: str) -> bool:
        db = self._get_db()
        with db:
            cur = db.execute(
                "UPDATE intents SET is_active=0 WHERE id=? AND is_active=1", (intent_id,)
            )
        return cur.rowcount > 0

    # ── Execution history ────────────────────────────────────────────────────

    async def get_executions(self, intent_id: str, limit: int = 50) -> list[ExecutionRecord]:
        return await self._run(self._get_executions_sync, intent_id, limit)

    def _get_executions_sync(self, intent_id: str, limit: int) -> list[ExecutionRecord]:
        rows = self._get_db().execute(
            "SELECT * FROM executions WHERE intent_id=? ORDER BY executed_at DESC, id DESC LIMIT ?",
            (intent_id, limit),
        ).fetchall()
        return [
            ExecutionRecord(
                id=r["id"],
                intent_id=r["intent_id"],
                scheduled_for=r["scheduled_for"],
                status=FireStatus(r["status"]),
                executed_at=r["executed_at"],
                notes=r["notes"],
            )
            for r in rows
        ]

    # ── Heartbeat ────────────────────────────────────────────────────────────

    async def upsert_heartbeat(self, timestamp: float) -> None:
        await self._run(self._upsert_heartbeat_sync, timestamp)

    def _upsert_heartbeat_sync(self, timestamp: float) -> None:
        db = self._get_db()
        with db:
            db.execute(
                "INSERT INTO heartbeat (id, last_heartbeat) VALUES (1, ?)"
                " ON CONFLICT(id) DO UPDATE SET last_heartbeat=excluded.last_heartbeat",
                (timestamp,),
            )

    async def get_heartbeat(self) -> float | None:
        return await self._run(self._get_heartbeat_sync)

    def _get_heartbeat_sync(self) -> float | None:
        row = self._get_db().execute("SELECT last_heartbeat FROM heartbeat WHERE id=1").fetchone()
        return row["last_heartbeat"] if row else None

    async def close(self) -> None:
        if self._db:
            await self._run(self._db.close)
            self._db = None

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _row_to_intent(self, row: sqlite3.Row) -> ScheduledIntent:
        return ScheduledIntent.from_dict(dict(row))
