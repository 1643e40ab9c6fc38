"""Orchestration engine: starts, signals and resumes workflow instances."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from .activity import ActivityDispatcher, Notifier, get_notifier
from .config import ApprovalFlowConfig, load_config
from .contracts import (
    Completed,
    DeliveryResult,
    DocumentProperties,
    Failed,
    InstancePage,
    InstanceStatus,
    ResumeOutcome,
    RuntimeState,
    Suspended,
)
from .correlation import EventCorrelationTable
from .directory import InstanceDirectory
from .exceptions import (
    FatalActivityError,
    HistoryConflictError,
    InvalidInputError,
    ReplayInconsistencyError,
    RetryableActivityError,
    UnknownInstanceError,
    UnknownSignalError,
    WaitTimeoutError,
)
from .history import HistoryStore, get_history_store
from .history.models import EntryKind, HistoryEntry, InstanceRecord
from .replay import ReplayContext, SuspendExecution
from .status import (
    derive_failure,
    derive_output,
    derive_pending,
    derive_runtime_state,
    derive_status,
    summarize,
)
from .workflow import WAIT_STEPS, WAITS_BY_SIGNAL, document_approval_workflow

logger = logging.getLogger(__name__)

WorkflowFn = Callable[[ReplayContext], Awaitable[None]]

# Failures that end an instance rather than propagate to the caller.
TERMINAL_ERRORS = (
    ReplayInconsistencyError,
    WaitTimeoutError,
    RetryableActivityError,
    FatalActivityError,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class InstanceHandle:
    """Handle to a started instance.

    Callers read ``instance_id`` and poll :meth:`status`.
    """

    instance_id: str
    _engine: "OrchestrationEngine"

    async def status(self) -> InstanceStatus:
        return await self._engine.query_status(self.instance_id)

    async def signal(self, signal_name: str, payload: Any) -> DeliveryResult:
        return await self._engine.signal(self.instance_id, signal_name, payload)


class OrchestrationEngine:
    """Drives document approval instances by replaying their history.

    The history store, correlation table, directory and dispatcher are
    injected so the engine runs without any hosting runtime. All work on a
    single instance is serialized by a per-instance lock; different
    instances proceed independently.
    """

    def __init__(
        self,
        store: Optional[HistoryStore] = None,
        *,
        config: Optional[ApprovalFlowConfig] = None,
        dispatcher: Optional[ActivityDispatcher] = None,
        notifier: Optional[Notifier] = None,
        correlation: Optional[EventCorrelationTable] = None,
        directory: Optional[InstanceDirectory] = None,
        workflow: WorkflowFn = document_approval_workflow,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config or load_config()
        self._store = store or get_history_store()
        self._dispatcher = dispatcher or ActivityDispatcher(
            self._store, notifier or get_notifier(self._config), self._config.retry
        )
        self._correlation = correlation or EventCorrelationTable()
        self._directory = directory or InstanceDirectory(self._config.directory)
        self._workflow = workflow
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @property
    def store(self) -> HistoryStore:
        return self._store

    @property
    def correlation(self) -> EventCorrelationTable:
        return self._correlation

    @property
    def directory(self) -> InstanceDirectory:
        return self._directory

    @contextlib.asynccontextmanager
    async def _exclusive(self, instance_id: str) -> AsyncIterator[None]:
        """Hold the instance's lock; the entry is dropped once nobody holds or awaits it."""
        lock = self._locks.get(instance_id)
        if lock is None:
            lock = self._locks[instance_id] = asyncio.Lock()
        self._lock_users[instance_id] = self._lock_users.get(instance_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[instance_id] -= 1
            if not self._lock_users[instance_id]:
                del self._lock_users[instance_id]
                del self._locks[instance_id]

    # ------------------------------------------------------------------
    # Client operations
    async def start(
        self,
        properties: DocumentProperties | dict,
        instance_id: Optional[str] = None,
    ) -> InstanceHandle:
        """Create an instance for ``properties`` and run it to its first wait."""
        try:
            props = DocumentProperties.model_validate(properties)
        except ValidationError as exc:
            raise InvalidInputError(f"Invalid document properties: {exc}") from exc

        instance_id = instance_id or uuid.uuid4().hex
        async with self._exclusive(instance_id):
            created_at = self._clock()
            try:
                await self._store.create_instance(instance_id, created_at)
            except HistoryConflictError as exc:
                raise InvalidInputError(f"Instance {instance_id} already exists") from exc
            await self._store.append(
                instance_id,
                HistoryEntry(
                    sequence=0,
                    kind=EntryKind.INPUT_RECORDED,
                    step="input",
                    payload=props.model_dump(mode="json"),
                    recorded_at=created_at,
                ),
            )
            self._correlation.register(instance_id)
            logger.info(f"Started instance_id={instance_id} for '{props.title}'")
            await self._run(instance_id)
        return InstanceHandle(instance_id, self)

    async def signal(self, instance_id: str, signal_name: str, payload: Any) -> DeliveryResult:
        """Deliver an external signal and resume the instance.

        A signal whose wait is already satisfied, or one sent to a finished
        instance, is accepted and ignored.
        """
        wait = WAITS_BY_SIGNAL.get(signal_name)
        if wait is None:
            raise UnknownSignalError(signal_name)
        value = wait.dump(wait.validate(payload))

        async with self._exclusive(instance_id):
            record = await self._load(instance_id)
            if derive_runtime_state(record.history).is_terminal:
                logger.info(
                    f"Ignoring {signal_name} for finished instance_id={instance_id}"
                )
                return DeliveryResult.INSTANCE_CLOSED

            try:
                self._hydrate(record)
            except ReplayInconsistencyError:
                await self._run(instance_id)
                return DeliveryResult.INSTANCE_CLOSED
            result = self._correlation.deliver(instance_id, signal_name, value)
            if result is not DeliveryResult.ACCEPTED:
                return result

            entry = HistoryEntry(
                sequence=record.history[-1].sequence + 1,
                kind=EntryKind.SIGNAL_RECEIVED,
                step=signal_name,
                payload=value,
                recorded_at=self._clock(),
            )
            try:
                await self._store.append(instance_id, entry)
            except Exception:
                # rebuild from the store on next use
                self._correlation.evict(instance_id)
                raise
            logger.info(f"Received {signal_name} for instance_id={instance_id}")
            await self._run(instance_id)
        return result

    async def resume(self, instance_id: str) -> ResumeOutcome:
        """Replay the instance's history and advance it as far as possible."""
        async with self._exclusive(instance_id):
            return await self._run(instance_id)

    async def query_status(self, instance_id: str) -> InstanceStatus:
        """Project the instance's status from its history.

        This is a pure read: it neither replays the instance nor applies the
        wait timeout, so polling never appends to the history.
        """
        record = await self._load(instance_id)
        history = record.history
        return InstanceStatus(
            instance_id=instance_id,
            runtime_state=derive_runtime_state(history),
            custom_status=derive_status(history),
            output=derive_output(history),
            failure=derive_failure(history),
            created_at=record.created_at,
            pending_signals=derive_pending(history, WAIT_STEPS),
        )

    async def get_history(self, instance_id: str) -> List[HistoryEntry]:
        return (await self._load(instance_id)).history

    def list_instances(
        self,
        statuses: Optional[Iterable[RuntimeState]] = None,
        created_after: Optional[datetime] = None,
        page_size: Optional[int] = None,
        page_token: Optional[str] = None,
    ) -> InstancePage:
        return self._directory.list_instances(
            statuses=statuses,
            created_after=created_after,
            page_size=page_size,
            page_token=page_token,
        )

    # ------------------------------------------------------------------
    # Process lifecycle
    async def refresh_directory(self) -> int:
        """Publish a summary for every stored instance without replaying."""
        records = await self._store.list_instances()
        for record in records:
            self._directory.publish(summarize(record))
        return len(records)

    async def recover(self) -> Dict[str, ResumeOutcome]:
        """Reload all instances after a restart and resume unfinished ones."""
        outcomes: Dict[str, ResumeOutcome] = {}
        for record in await self._store.list_instances():
            self._directory.publish(summarize(record))
            if not derive_runtime_state(record.history).is_terminal:
                outcomes[record.instance_id] = await self.resume(record.instance_id)
        logger.info(f"Recovered {len(outcomes)} unfinished instance(s)")
        return outcomes

    async def expire_overdue(self) -> List[str]:
        """Fail suspended instances whose open wait exceeded the timeout."""
        if self._config.wait_timeout_seconds is None:
            return []
        expired: List[str] = []
        for record in await self._store.list_instances():
            if derive_runtime_state(record.history).is_terminal:
                continue
            outcome = await self.resume(record.instance_id)
            if isinstance(outcome, Failed):
                expired.append(record.instance_id)
        return expired

    # ------------------------------------------------------------------
    # Replay
    async def _load(self, instance_id: str) -> InstanceRecord:
        record = await self._store.load(instance_id)
        if record is None:
            raise UnknownInstanceError(instance_id)
        return record

    def _hydrate(self, record: InstanceRecord) -> None:
        if self._correlation.is_registered(record.instance_id):
            return
        try:
            self._correlation.hydrate(
                record.instance_id,
                (
                    (entry.step, entry.payload)
                    for entry in record.history
                    if entry.kind == EntryKind.SIGNAL_RECEIVED
                ),
            )
        except UnknownSignalError as exc:
            self._correlation.evict(record.instance_id)
            raise ReplayInconsistencyError(
                f"History of {record.instance_id} holds a signal the workflow does not know: {exc.signal_name}"
            ) from exc

    async def _run(self, instance_id: str) -> ResumeOutcome:
        record = await self._load(instance_id)
        history = record.history
        state = derive_runtime_state(history)
        if state.is_terminal:
            self._correlation.evict(instance_id)
            if state == RuntimeState.COMPLETED:
                return Completed(output=derive_output(history))
            return Failed(error=derive_failure(history))

        try:
            self._hydrate(record)
            ctx = ReplayContext(
                instance_id,
                history,
                DocumentProperties,
                self._correlation,
                self._dispatcher,
                functools.partial(self._store.append, instance_id),
                self._clock,
                self._config.wait_timeout_seconds,
            )
            try:
                await self._workflow(ctx)
                outcome: ResumeOutcome = Completed(output=ctx.output)
            except SuspendExecution as suspension:
                outcome = Suspended(waiting_for=suspension.waiting_for)
            ctx.verify_consumed()
        except TERMINAL_ERRORS as exc:
            outcome = await self._fail(instance_id, exc)
        if not isinstance(outcome, Suspended):
            # finished instances never consume another signal
            self._correlation.evict(instance_id)

        summary = summarize(await self._load(instance_id))
        self._directory.publish(summary)
        logger.info(
            f"instance_id={instance_id} is {outcome.state}, status: {summary.custom_status}"
        )
        return outcome

    async def _fail(self, instance_id: str, exc: Exception) -> Failed:
        reason = f"{type(exc).__name__}: {exc}"
        logger.error(f"instance_id={instance_id} failed: {reason}")
        record = await self._load(instance_id)
        await self._store.append(
            instance_id,
            HistoryEntry(
                sequence=record.history[-1].sequence + 1,
                kind=EntryKind.INSTANCE_FAILED,
                step="failure",
                payload={"reason": reason},
                recorded_at=self._clock(),
            ),
        )
        return Failed(error=reason)
