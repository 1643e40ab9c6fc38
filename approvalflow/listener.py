"""Signal listener: feeds transport messages into the engine."""

from __future__ import annotations

import logging
from typing import Optional

from .constants import SIGNAL_TOPIC
from .contracts import DeliveryResult, Envelope
from .engine import OrchestrationEngine
from .exceptions import ClientError
from .transports import SignalTransport

logger = logging.getLogger(__name__)


class SignalListener:
    """Delivers signal envelopes arriving on a transport topic to the engine.

    Envelopes the engine rejects as client errors are acked and dropped; no
    retry can make them valid. Any other failure hands the envelope back to
    the transport for redelivery and stops the listener.
    """

    def __init__(
        self,
        transport: SignalTransport,
        engine: OrchestrationEngine,
        topic: str = SIGNAL_TOPIC,
    ) -> None:
        self._transport = transport
        self._engine = engine
        self._topic = topic

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Start listening for signals on the configured topic."""
        async for delivery in self._transport.receive(self._topic, lifespan=lifespan):
            try:
                await self.handle(delivery.envelope)
            except Exception:
                await self._transport.nack(delivery)
                raise
            await self._transport.ack(delivery)

    async def handle(self, envelope: Envelope) -> Optional[DeliveryResult]:
        """Deliver one envelope; rejected envelopes are logged and dropped."""
        if envelope.kind != "signal":
            logger.warning(
                f"Dropping {envelope.kind} message {envelope.message_id} on {self._topic}"
            )
            return None
        try:
            result = await self._engine.signal(
                envelope.instance_id, envelope.name, envelope.payload
            )
        except ClientError as e:
            logger.warning(f"Rejected message {envelope.message_id}: {e}")
            return None
        logger.info(
            f"{envelope.name} for instance_id={envelope.instance_id}: {result.value}"
        )
        return result
