"""Deterministic replay of workflow control logic against a history log.

Each time an instance is resumed the control logic runs again from the top
inside a :class:`ReplayContext`. Every step the logic takes is matched
against the entries already recorded: a recorded step returns its recorded
result, and the first step with no recorded entry is performed live and
appended. When the logic reaches a wait whose signal has not arrived it
raises :class:`SuspendExecution`, which hands control back to the engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import cached_property
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, TypeAdapter, ValidationError

from .activity import ActivityDispatcher, ActivityStatus
from .correlation import EventCorrelationTable
from .exceptions import (
    FatalActivityError,
    InvalidInputError,
    ReplayInconsistencyError,
    RetryableActivityError,
    WaitTimeoutError,
)
from .history.models import EntryKind, HistoryEntry

# Entries the control logic itself produces, in the order it produces them.
REPLAYED_KINDS = frozenset(
    {EntryKind.STATUS_CHANGED, EntryKind.ACTIVITY_COMPLETED, EntryKind.OUTPUT_SET}
)


class SuspendExecution(Exception):
    """Raised inside control logic to park the instance at a wait point."""

    def __init__(self, waiting_for: List[str]) -> None:
        super().__init__(f"waiting for {', '.join(waiting_for)}")
        self.waiting_for = waiting_for


@dataclass(frozen=True)
class Wait:
    """One row of a workflow's transition table.

    ``name`` identifies the wait (and the StatusChanged entry it records),
    ``signal`` is the external signal that satisfies it, ``payload_type``
    validates the payload, and ``on_arrival`` is the custom status set when
    the signal is consumed (``None`` for no status change).
    """

    name: str
    signal: str
    payload_type: Any
    on_arrival: Optional[str] = None

    @cached_property
    def _adapter(self) -> TypeAdapter:
        return TypeAdapter(self.payload_type)

    def validate(self, payload: Any) -> Any:
        try:
            return self._adapter.validate_python(payload)
        except ValidationError as exc:
            raise InvalidInputError(f"Invalid {self.signal} payload: {exc}") from exc

    def dump(self, value: Any) -> Any:
        if isinstance(value, BaseModel):
            return value.model_dump(mode="json")
        return value


class ReplayContext:
    """Execution context handed to workflow control logic."""

    def __init__(
        self,
        instance_id: str,
        history: Sequence[HistoryEntry],
        input_type: Any,
        correlation: EventCorrelationTable,
        dispatcher: ActivityDispatcher,
        append: Callable[[HistoryEntry], Awaitable[None]],
        clock: Callable[[], datetime],
        wait_timeout: Optional[float] = None,
    ) -> None:
        if not history or history[0].kind != EntryKind.INPUT_RECORDED:
            raise ReplayInconsistencyError(
                f"History of {instance_id} does not start with an InputRecorded entry"
            )
        self.instance_id = instance_id
        try:
            self.input = TypeAdapter(input_type).validate_python(history[0].payload)
        except ValidationError as exc:
            raise ReplayInconsistencyError(
                f"Recorded input of {instance_id} no longer validates: {exc}"
            ) from exc
        self.custom_status: Optional[str] = None
        self.output: Optional[str] = None
        self.appended: List[HistoryEntry] = []

        self._recorded = [e for e in history if e.kind in REPLAYED_KINDS]
        self._cursor = 0
        self._next_sequence = history[-1].sequence + 1
        self._correlation = correlation
        self._dispatcher = dispatcher
        self._append = append
        self._clock = clock
        self._wait_timeout = wait_timeout
        self._status_since: datetime = history[0].recorded_at

    # ------------------------------------------------------------------
    # Recording
    @property
    def is_replaying(self) -> bool:
        return self._cursor < len(self._recorded)

    async def _record(self, kind: EntryKind, step: str, payload: Any, compare: bool = True) -> HistoryEntry:
        if self.is_replaying:
            entry = self._recorded[self._cursor]
            if entry.kind != kind or entry.step != step or (compare and entry.payload != payload):
                raise ReplayInconsistencyError(
                    f"History entry #{entry.sequence} of {self.instance_id} records "
                    f"{entry.kind.value}:{entry.step} {entry.payload!r} but the workflow "
                    f"produced {kind.value}:{step} {payload!r}"
                )
            self._cursor += 1
            return entry

        entry = HistoryEntry(
            sequence=self._next_sequence,
            kind=kind,
            step=step,
            payload=payload,
            recorded_at=self._clock(),
        )
        await self._append(entry)
        self._next_sequence += 1
        self.appended.append(entry)
        return entry

    def verify_consumed(self) -> None:
        """Fail if history holds steps the control logic never reached."""
        if self.is_replaying:
            entry = self._recorded[self._cursor]
            raise ReplayInconsistencyError(
                f"History entry #{entry.sequence} of {self.instance_id} "
                f"({entry.kind.value}:{entry.step}) is not reachable by the workflow"
            )

    # ------------------------------------------------------------------
    # Workflow primitives
    async def set_status(self, step: str, status: str) -> None:
        entry = await self._record(EntryKind.STATUS_CHANGED, step, {"status": status})
        self.custom_status = status
        self._status_since = entry.recorded_at

    async def set_output(self, output: str) -> None:
        await self._record(EntryKind.OUTPUT_SET, "output", {"output": output})
        self.output = output

    def _check_timeout(self, opened_at: datetime, waiting_for: List[str]) -> None:
        if self._wait_timeout is None:
            return
        if self._clock() - opened_at > timedelta(seconds=self._wait_timeout):
            raise WaitTimeoutError(
                f"Timed out after {self._wait_timeout:g}s waiting for {', '.join(waiting_for)}"
            )

    async def _consume(self, wait: Wait) -> Any:
        # payloads were validated on delivery; a failure here means the model changed
        try:
            value = wait.validate(self._correlation.try_consume(self.instance_id, wait.signal))
        except InvalidInputError as exc:
            raise ReplayInconsistencyError(
                f"Recorded {wait.signal} payload of {self.instance_id} no longer validates: {exc}"
            ) from exc
        if wait.on_arrival is not None:
            await self.set_status(wait.name, wait.on_arrival)
        return value

    async def wait_for(self, wait: Wait) -> Any:
        """Return the signal's payload, or suspend until it arrives."""
        opened_at = self._status_since
        if not self._correlation.arrival_order(self.instance_id, [wait.signal]):
            self._check_timeout(opened_at, [wait.signal])
            raise SuspendExecution([wait.signal])
        return await self._consume(wait)

    async def when_all(self, waits: Sequence[Wait]) -> Dict[str, Any]:
        """Fan-in barrier over several waits.

        Arrived signals are consumed in arrival order, so their status changes
        are recorded in the order the signals came in. Returns payloads keyed
        by wait name once every wait is satisfied.
        """
        opened_at = self._status_since
        by_signal = {wait.signal: wait for wait in waits}
        results: Dict[str, Any] = {}
        for signal in self._correlation.arrival_order(self.instance_id, by_signal):
            wait = by_signal[signal]
            results[wait.name] = await self._consume(wait)

        missing = [wait.signal for wait in waits if wait.name not in results]
        if missing:
            self._check_timeout(opened_at, missing)
            raise SuspendExecution(missing)
        return results

    async def call_activity(self, document: Any) -> Any:
        """Run the dispatcher's activity once and return its result."""
        step = self._dispatcher.name
        if self.is_replaying:
            entry = await self._record(EntryKind.ACTIVITY_COMPLETED, step, None, compare=False)
            return entry.payload["result"]

        outcome = await self._dispatcher.invoke(self.instance_id, document)
        if outcome.status == ActivityStatus.FATAL_FAILURE:
            raise FatalActivityError(f"{step} failed: {outcome.error}")
        if outcome.status == ActivityStatus.RETRYABLE_FAILURE:
            raise RetryableActivityError(
                f"{step} failed after {outcome.attempts} attempt(s): {outcome.error}"
            )
        await self._record(
            EntryKind.ACTIVITY_COMPLETED,
            step,
            {"result": outcome.result, "attempts": outcome.attempts},
        )
        return outcome.result
