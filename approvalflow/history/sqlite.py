"""SQLite implementation of the history store."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from ..exceptions import HistoryConflictError, UnknownInstanceError
from .models import HistoryEntry, InstanceRecord
from .store import HistoryStore


class SQLiteHistoryStore(HistoryStore):
    """Persist instance history using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        # one connection shared by worker threads
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS instances (
                instance_id TEXT PRIMARY KEY,
                created_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS history (
                instance_id TEXT NOT NULL,
                sequence INTEGER NOT NULL,
                kind TEXT NOT NULL,
                step TEXT NOT NULL,
                payload TEXT,
                recorded_at TEXT NOT NULL,
                PRIMARY KEY (instance_id, sequence)
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        with self._lock:
            cur = self._conn.cursor()
            try:
                cur.execute(query, params)
            except sqlite3.IntegrityError as exc:
                self._conn.rollback()
                raise HistoryConflictError(str(exc)) from exc
            self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    @staticmethod
    def _entry(row: sqlite3.Row) -> HistoryEntry:
        return HistoryEntry(
            sequence=row["sequence"],
            kind=row["kind"],
            step=row["step"],
            payload=json.loads(row["payload"]) if row["payload"] else None,
            recorded_at=datetime.fromisoformat(row["recorded_at"]),
        )

    # ------------------------------------------------------------------
    # Store API
    async def create_instance(self, instance_id: str, created_at: datetime) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO instances (instance_id, created_at) VALUES (?, ?)",
            instance_id,
            created_at.isoformat(),
        )

    async def append(self, instance_id: str, entry: HistoryEntry) -> None:
        exists = await asyncio.to_thread(
            self._fetchone,
            "SELECT 1 FROM instances WHERE instance_id = ?",
            instance_id,
        )
        if not exists:
            raise UnknownInstanceError(instance_id)
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO history (instance_id, sequence, kind, step, payload, recorded_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            instance_id,
            entry.sequence,
            entry.kind.value,
            entry.step,
            json.dumps(entry.payload) if entry.payload is not None else None,
            entry.recorded_at.isoformat(),
        )

    async def load(self, instance_id: str) -> InstanceRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT instance_id, created_at FROM instances WHERE instance_id = ?",
            instance_id,
        )
        if not row:
            return None
        entry_rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT sequence, kind, step, payload, recorded_at FROM history WHERE instance_id = ? ORDER BY sequence",
            instance_id,
        )
        return InstanceRecord(
            instance_id=row["instance_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            history=[self._entry(r) for r in entry_rows],
        )

    async def list_instances(self) -> list[InstanceRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT instance_id FROM instances ORDER BY created_at, instance_id",
        )
        records: list[InstanceRecord] = []
        for row in rows:
            record = await self.load(row["instance_id"])
            if record is not None:
                records.append(record)
        return records

    def close(self) -> None:
        with self._lock:
            self._conn.close()
