"""History log persistence for approvalflow instances."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ApprovalFlowConfig, load_config
from .inmemory import InMemoryHistoryStore
from .models import EntryKind, HistoryEntry, InstanceRecord
from .sqlite import SQLiteHistoryStore
from .store import HistoryStore

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresHistoryStore
except ImportError:  # pragma: no cover - optional dependency
    PostgresHistoryStore = None  # type: ignore

_store_instance: HistoryStore | None = None


def get_history_store(
    database_url: Optional[str] = None, config: Optional[ApprovalFlowConfig] = None
) -> HistoryStore:
    """Factory function to obtain a history store.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``APPROVALFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory store is returned.
    """

    global _store_instance
    if _store_instance is not None and database_url is None and config is None:
        return _store_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("APPROVALFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        _store_instance = InMemoryHistoryStore()
        return _store_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _store_instance = SQLiteHistoryStore(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresHistoryStore is None:
            raise RuntimeError("Postgres support not available")
        _store_instance = PostgresHistoryStore(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _store_instance


__all__ = [
    "EntryKind",
    "HistoryEntry",
    "InstanceRecord",
    "HistoryStore",
    "InMemoryHistoryStore",
    "SQLiteHistoryStore",
    "PostgresHistoryStore",
    "get_history_store",
]
