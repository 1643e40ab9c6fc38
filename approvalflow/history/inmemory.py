"""In-memory implementation of the history store."""

from __future__ import annotations

from datetime import datetime
from typing import Dict

from ..exceptions import HistoryConflictError, UnknownInstanceError
from .models import HistoryEntry, InstanceRecord
from .store import HistoryStore


class InMemoryHistoryStore(HistoryStore):
    """Store instance history in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._instances: Dict[str, InstanceRecord] = {}

    # ------------------------------------------------------------------
    async def create_instance(self, instance_id: str, created_at: datetime) -> None:
        if instance_id in self._instances:
            raise HistoryConflictError(f"Instance {instance_id} already exists")
        self._instances[instance_id] = InstanceRecord(
            instance_id=instance_id, created_at=created_at
        )

    async def append(self, instance_id: str, entry: HistoryEntry) -> None:
        record = self._instances.get(instance_id)
        if record is None:
            raise UnknownInstanceError(instance_id)
        if any(e.sequence == entry.sequence for e in record.history):
            raise HistoryConflictError(
                f"Entry {entry.sequence} already recorded for {instance_id}"
            )
        record.history.append(entry)

    async def load(self, instance_id: str) -> InstanceRecord | None:
        record = self._instances.get(instance_id)
        if record is None:
            return None
        return record.model_copy(
            update={"history": sorted(record.history, key=lambda e: e.sequence)}
        )

    async def list_instances(self) -> list[InstanceRecord]:
        return [await self.load(instance_id) for instance_id in list(self._instances)]
