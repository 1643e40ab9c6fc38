"""Store abstraction for instance history persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from .models import HistoryEntry, InstanceRecord


class HistoryStore(Protocol):
    """Protocol for history persistence backends.

    Stores are append-only: an entry, once written, is never changed. Writing
    a second entry with an existing sequence number raises
    ``HistoryConflictError``.
    """

    async def create_instance(self, instance_id: str, created_at: datetime) -> None:
        """Persist a new, empty instance."""

    async def append(self, instance_id: str, entry: HistoryEntry) -> None:
        """Append one entry to the instance's history."""

    async def load(self, instance_id: str) -> InstanceRecord | None:
        """Retrieve the instance with its history in sequence order."""

    async def list_instances(self) -> list[InstanceRecord]:
        """Return all persisted instances with their histories."""
