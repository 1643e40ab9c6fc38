"""Status projections computed from an instance's history log.

Nothing here holds state: every value is recomputed from the recorded
entries, so what a poller sees is always consistent with replay.
"""

from __future__ import annotations

from typing import List, Mapping, Optional, Sequence

from .contracts import InstanceSummary, RuntimeState
from .history.models import EntryKind, HistoryEntry, InstanceRecord


def _last(history: Sequence[HistoryEntry], kind: EntryKind) -> Optional[HistoryEntry]:
    for entry in reversed(history):
        if entry.kind == kind:
            return entry
    return None


def derive_status(history: Sequence[HistoryEntry]) -> Optional[str]:
    """Custom status string of the most recent status change."""
    entry = _last(history, EntryKind.STATUS_CHANGED)
    return entry.payload["status"] if entry else None


def derive_runtime_state(history: Sequence[HistoryEntry]) -> RuntimeState:
    kinds = {entry.kind for entry in history}
    if EntryKind.INSTANCE_FAILED in kinds:
        return RuntimeState.FAILED
    if EntryKind.OUTPUT_SET in kinds:
        return RuntimeState.COMPLETED
    if EntryKind.STATUS_CHANGED in kinds:
        return RuntimeState.RUNNING
    return RuntimeState.PENDING


def derive_output(history: Sequence[HistoryEntry]) -> Optional[str]:
    entry = _last(history, EntryKind.OUTPUT_SET)
    return entry.payload["output"] if entry else None


def derive_failure(history: Sequence[HistoryEntry]) -> Optional[str]:
    entry = _last(history, EntryKind.INSTANCE_FAILED)
    return entry.payload["reason"] if entry else None


def summarize(record: InstanceRecord) -> InstanceSummary:
    history = record.history
    inputs = _last(history, EntryKind.INPUT_RECORDED)
    return InstanceSummary(
        instance_id=record.instance_id,
        runtime_state=derive_runtime_state(history),
        custom_status=derive_status(history),
        created_at=record.created_at,
        last_updated_at=history[-1].recorded_at if history else record.created_at,
        title=inputs.payload.get("title") if inputs else None,
        output=derive_output(history),
    )


def derive_pending(
    history: Sequence[HistoryEntry], wait_steps: Mapping[str, str]
) -> List[str]:
    """Signals recorded but not yet consumed, earliest first.

    ``wait_steps`` maps a signal name to the status step its wait records
    once the signal is consumed.
    """
    steps = {e.step for e in history if e.kind == EntryKind.STATUS_CHANGED}
    return [
        e.step
        for e in history
        if e.kind == EntryKind.SIGNAL_RECEIVED and wait_steps.get(e.step) not in steps
    ]
