"""Signal transport: carries envelopes between the engine and its parties."""

from __future__ import annotations

import abc
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from pydantic import ValidationError

from ..constants import APPROVER_TOPIC, DEAD_LETTER_SUFFIX, SIGNAL_TOPIC, SUBMIT_DOCUMENT
from ..contracts import Envelope, WorkDocument

logger = logging.getLogger(__name__)

# Longest single wait for a message before the lifespan is re-checked.
POLL_TIMEOUT = 1.0


def dead_letter_topic(topic: str) -> str:
    return f"{topic}{DEAD_LETTER_SUFFIX}"


@dataclass(frozen=True)
class Delivery:
    """An envelope taken off a topic and not yet settled."""

    topic: str
    raw: str
    envelope: Envelope


class SignalTransport(metaclass=abc.ABCMeta):
    """Carries signal envelopes in and approval requests out.

    Backends only move JSON strings between named queues. A popped message
    stays in flight until :meth:`ack` or :meth:`nack` settles it, and
    messages a dead consumer left in flight are restored when the next
    :meth:`receive` starts. A nacked envelope is requeued until it has been
    tried ``max_attempts`` times; after that it is parked on the topic's
    dead-letter queue.
    """

    def __init__(self, max_attempts: int = 3) -> None:
        self.max_attempts = max_attempts

    async def connect(self) -> None:
        """Open the backend connection (no-op by default)."""

    async def disconnect(self) -> None:
        """Close the backend connection (no-op by default)."""

    @abc.abstractmethod
    async def _push(self, queue: str, data: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def _pop(self, queue: str, timeout: float) -> Optional[str]:
        """Move the oldest message of ``queue`` in flight and return it.

        Returns None when nothing arrives within ``timeout`` seconds.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def _settle(self, queue: str, data: str) -> None:
        """Forget ``data`` from the in-flight messages of ``queue``."""
        raise NotImplementedError

    async def _restore(self, queue: str) -> int:
        """Requeue messages left in flight by a previous consumer."""
        return 0

    # ------------------------------------------------------------------
    # Producing
    async def publish(self, topic: str, envelope: Envelope) -> None:
        await self._push(topic, envelope.to_json())

    async def send_signal(
        self,
        instance_id: str,
        signal_name: str,
        payload: Any,
        topic: str = SIGNAL_TOPIC,
    ) -> Envelope:
        """Queue an external signal for the engine's listener."""
        envelope = Envelope(instance_id=instance_id, name=signal_name, payload=payload)
        await self.publish(topic, envelope)
        return envelope

    async def request_approval(
        self,
        instance_id: str,
        document: WorkDocument,
        topic: str = APPROVER_TOPIC,
    ) -> Envelope:
        """Queue the approval request carrying the completed work document."""
        envelope = Envelope(
            kind="approval_request",
            instance_id=instance_id,
            name=SUBMIT_DOCUMENT,
            payload=document.model_dump(mode="json"),
        )
        await self.publish(topic, envelope)
        return envelope

    # ------------------------------------------------------------------
    # Consuming
    async def receive(
        self,
        topic: str,
        kind: str = "signal",
        lifespan: Optional[float] = None,
    ) -> AsyncIterator[Delivery]:
        """Yield deliveries of ``kind`` from ``topic``.

        Runs until ``lifespan`` seconds have passed, or forever when it is
        None. Messages that do not decode, or that carry another kind, are
        settled and dropped with a warning.
        """
        restored = await self._restore(topic)
        if restored:
            logger.info(f"Restored {restored} in-flight message(s) on {topic}")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan is not None else None
        while deadline is None or loop.time() < deadline:
            timeout = POLL_TIMEOUT
            if deadline is not None:
                timeout = min(timeout, deadline - loop.time())
            raw = await self._pop(topic, max(timeout, 0.01))
            if raw is None:
                continue
            try:
                envelope = Envelope.from_json(raw)
            except ValidationError as e:
                logger.warning(f"Dropping malformed message on {topic}: {e}")
                await self._settle(topic, raw)
                continue
            if envelope.kind != kind:
                logger.warning(
                    f"Dropping {envelope.kind} message {envelope.message_id} on {topic}"
                )
                await self._settle(topic, raw)
                continue
            yield Delivery(topic, raw, envelope)

    async def ack(self, delivery: Delivery) -> None:
        await self._settle(delivery.topic, delivery.raw)

    async def nack(self, delivery: Delivery) -> bool:
        """Hand a delivery back for another attempt.

        Returns False once the envelope has used up ``max_attempts`` and has
        been moved to the dead-letter queue instead.
        """
        envelope = delivery.envelope
        if envelope.attempt < self.max_attempts:
            await self.publish(
                delivery.topic, envelope.model_copy(update={"attempt": envelope.attempt + 1})
            )
            await self._settle(delivery.topic, delivery.raw)
            return True
        logger.error(
            f"Dead-lettering message {envelope.message_id} on {delivery.topic} "
            f"after {envelope.attempt} attempt(s)"
        )
        await self._push(dead_letter_topic(delivery.topic), delivery.raw)
        await self._settle(delivery.topic, delivery.raw)
        return False
