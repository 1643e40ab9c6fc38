"""PostgreSQL implementation of the history store."""

from __future__ import annotations

import json
from datetime import datetime

import asyncpg

from ..exceptions import HistoryConflictError, UnknownInstanceError
from .models import HistoryEntry, InstanceRecord
from .store import HistoryStore


class PostgresHistoryStore(HistoryStore):
    """Persist instance history using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS instances (
                instance_id TEXT PRIMARY KEY,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS history (
                instance_id TEXT NOT NULL REFERENCES instances (instance_id),
                sequence INTEGER NOT NULL,
                kind TEXT NOT NULL,
                step TEXT NOT NULL,
                payload JSONB,
                recorded_at TIMESTAMPTZ NOT NULL,
                PRIMARY KEY (instance_id, sequence)
            )
            """
        )

    # ------------------------------------------------------------------
    async def create_instance(self, instance_id: str, created_at: datetime) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "INSERT INTO instances (instance_id, created_at) VALUES ($1, $2)",
                instance_id,
                created_at,
            )
        except asyncpg.UniqueViolationError as exc:
            raise HistoryConflictError(str(exc)) from exc
        finally:
            await conn.close()

    async def append(self, instance_id: str, entry: HistoryEntry) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO history (instance_id, sequence, kind, step, payload, recorded_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                instance_id,
                entry.sequence,
                entry.kind.value,
                entry.step,
                json.dumps(entry.payload) if entry.payload is not None else None,
                entry.recorded_at,
            )
        except asyncpg.UniqueViolationError as exc:
            raise HistoryConflictError(str(exc)) from exc
        except asyncpg.ForeignKeyViolationError as exc:
            raise UnknownInstanceError(instance_id) from exc
        finally:
            await conn.close()

    async def load(self, instance_id: str) -> InstanceRecord | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT instance_id, created_at FROM instances WHERE instance_id = $1",
                instance_id,
            )
            if not row:
                return None
            entry_rows = await conn.fetch(
                "SELECT sequence, kind, step, payload, recorded_at FROM history WHERE instance_id = $1 ORDER BY sequence",
                instance_id,
            )
        finally:
            await conn.close()
        return InstanceRecord(
            instance_id=row["instance_id"],
            created_at=row["created_at"],
            history=[
                HistoryEntry(
                    sequence=r["sequence"],
                    kind=r["kind"],
                    step=r["step"],
                    payload=json.loads(r["payload"]) if r["payload"] else None,
                    recorded_at=r["recorded_at"],
                )
                for r in entry_rows
            ],
        )

    async def list_instances(self) -> list[InstanceRecord]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT instance_id FROM instances ORDER BY created_at, instance_id"
            )
        finally:
            await conn.close()
        records: list[InstanceRecord] = []
        for row in rows:
            record = await self.load(row["instance_id"])
            if record is not None:
                records.append(record)
        return records
