"""Data models for persisted instance history."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EntryKind(str, Enum):
    INPUT_RECORDED = "InputRecorded"
    SIGNAL_RECEIVED = "SignalReceived"
    ACTIVITY_COMPLETED = "ActivityCompleted"
    STATUS_CHANGED = "StatusChanged"
    OUTPUT_SET = "OutputSet"
    INSTANCE_FAILED = "InstanceFailed"


class HistoryEntry(BaseModel):
    """One immutable record in an instance's history log.

    ``step`` names the point in the control logic that produced the entry:
    the signal name for SignalReceived, the activity name for
    ActivityCompleted and the transition name for StatusChanged.
    """

    model_config = ConfigDict(frozen=True)

    sequence: int = Field(ge=0)
    kind: EntryKind
    step: str
    payload: Any = None
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class InstanceRecord(BaseModel):
    """Persisted instance: identity, creation time and its full history."""

    instance_id: str
    created_at: datetime
    history: list[HistoryEntry] = Field(default_factory=list)
