"""Submission activity: notify the approver once per instance."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Optional, Protocol

from pydantic import BaseModel

from .config import ApprovalFlowConfig, RetryConfig
from .constants import APPROVER_TOPIC, SUBMIT_DOCUMENT
from .contracts import WorkDocument
from .exceptions import FatalActivityError, RetryableActivityError
from .history.models import EntryKind
from .history.store import HistoryStore
from .transports import SignalTransport, get_transport
from .utils.retry import schedule_retry

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (RetryableActivityError, ConnectionError, asyncio.TimeoutError)


class ActivityStatus(str, Enum):
    SUCCESS = "Success"
    RETRYABLE_FAILURE = "RetryableFailure"
    FATAL_FAILURE = "FatalFailure"


class ActivityOutcome(BaseModel):
    status: ActivityStatus
    result: Any = None
    error: Optional[str] = None
    attempts: int = 0
    # True when the result came from history instead of a fresh invocation
    replayed: bool = False


class Notifier(Protocol):
    """Downstream collaborator told about a document awaiting approval."""

    async def notify(self, instance_id: str, document: WorkDocument) -> bool:
        ...


class LoggingNotifier:
    """Notifier that only writes the work document to the log."""

    async def notify(self, instance_id: str, document: WorkDocument) -> bool:
        logger.info(
            f"Work doc details: {document.properties}. "
            f"Interview feedback {document.interview_feedback}. "
            f"Background check feedback {document.background_check_feedback}. "
            f"Contract feedback: {document.contract_feedback} "
            f"(instance_id={instance_id})"
        )
        return True


class TransportNotifier:
    """Notifier that publishes an approval request on a transport topic."""

    def __init__(self, transport: SignalTransport, topic: str = APPROVER_TOPIC) -> None:
        self._transport = transport
        self._topic = topic

    async def notify(self, instance_id: str, document: WorkDocument) -> bool:
        envelope = await self._transport.request_approval(instance_id, document, self._topic)
        logger.info(
            f"Published approval request {envelope.message_id} to {self._topic} "
            f"for instance_id={instance_id}"
        )
        return True


def get_notifier(
    config: ApprovalFlowConfig, transport: Optional[SignalTransport] = None
) -> Notifier:
    """Notifier selected by ``config.notifier``.

    ``transport`` lets a worker publish approval requests on the transport it
    already listens on; otherwise one is built from the config.
    """
    if config.notifier == "transport":
        return TransportNotifier(transport or get_transport(config=config))
    return LoggingNotifier()


class ActivityDispatcher:
    """Runs the submission activity at most once per instance.

    Before invoking the notifier the dispatcher checks the instance's history
    for an ActivityCompleted entry; if one exists its recorded result is
    returned and the notifier is not called again. Transient failures are
    retried with exponential backoff up to ``retry.max_attempts``. The caller
    records ActivityCompleted on success.
    """

    name = SUBMIT_DOCUMENT

    def __init__(
        self,
        store: HistoryStore,
        notifier: Optional[Notifier] = None,
        retry: Optional[RetryConfig] = None,
    ) -> None:
        self._store = store
        self._notifier = notifier or LoggingNotifier()
        self._retry = retry or RetryConfig()

    async def _recorded_result(self, instance_id: str) -> Optional[ActivityOutcome]:
        record = await self._store.load(instance_id)
        if record is None:
            return None
        for entry in record.history:
            if entry.kind == EntryKind.ACTIVITY_COMPLETED and entry.step == self.name:
                return ActivityOutcome(
                    status=ActivityStatus.SUCCESS,
                    result=entry.payload.get("result"),
                    attempts=entry.payload.get("attempts", 0),
                    replayed=True,
                )
        return None

    async def invoke(self, instance_id: str, document: WorkDocument) -> ActivityOutcome:
        recorded = await self._recorded_result(instance_id)
        if recorded is not None:
            logger.info(
                f"{self.name} already completed for instance_id={instance_id}; not re-sending"
            )
            return recorded

        last_error: Optional[BaseException] = None
        for attempt in range(1, self._retry.max_attempts + 1):
            try:
                result = await self._notifier.notify(instance_id, document)
            except RETRYABLE_ERRORS as exc:
                last_error = exc
                logger.warning(
                    f"{self.name} attempt {attempt}/{self._retry.max_attempts} failed "
                    f"for instance_id={instance_id}: {exc}"
                )
                if attempt < self._retry.max_attempts:
                    await schedule_retry(attempt, self._retry)
                continue
            except FatalActivityError as exc:
                logger.error(f"{self.name} failed for instance_id={instance_id}: {exc}")
                return ActivityOutcome(
                    status=ActivityStatus.FATAL_FAILURE, error=str(exc), attempts=attempt
                )
            except Exception as exc:
                logger.exception(
                    f"{self.name} raised unexpectedly for instance_id={instance_id}"
                )
                return ActivityOutcome(
                    status=ActivityStatus.FATAL_FAILURE,
                    error=f"{type(exc).__name__}: {exc}",
                    attempts=attempt,
                )
            logger.info(f"{self.name} completed for instance_id={instance_id}")
            return ActivityOutcome(
                status=ActivityStatus.SUCCESS, result=result, attempts=attempt
            )

        return ActivityOutcome(
            status=ActivityStatus.RETRYABLE_FAILURE,
            error=str(last_error),
            attempts=self._retry.max_attempts,
        )
