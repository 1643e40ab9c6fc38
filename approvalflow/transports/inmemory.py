"""In-process transport for tests and single-process deployments."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional

from ..contracts import Envelope
from .base import SignalTransport

POLL_INTERVAL = 0.02


class InMemoryTransport(SignalTransport):
    """Per-topic FIFO queues with in-flight tracking, all inside one event loop."""

    def __init__(self, max_attempts: int = 3) -> None:
        super().__init__(max_attempts)
        self._queues: Dict[str, Deque[str]] = defaultdict(deque)
        self._in_flight: Dict[str, List[str]] = defaultdict(list)

    async def _push(self, queue: str, data: str) -> None:
        self._queues[queue].append(data)

    async def _pop(self, queue: str, timeout: float) -> Optional[str]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not self._queues[queue]:
            if loop.time() >= deadline:
                return None
            await asyncio.sleep(POLL_INTERVAL)
        data = self._queues[queue].popleft()
        self._in_flight[queue].append(data)
        return data

    async def _settle(self, queue: str, data: str) -> None:
        in_flight = self._in_flight[queue]
        if data in in_flight:
            in_flight.remove(data)

    async def _restore(self, queue: str) -> int:
        in_flight = self._in_flight.pop(queue, [])
        self._queues[queue].extendleft(reversed(in_flight))
        return len(in_flight)

    def queued(self, topic: str) -> List[Envelope]:
        """Envelopes waiting on ``topic``, oldest first, without consuming them."""
        return [Envelope.from_json(data) for data in self._queues[topic]]

    def in_flight(self, topic: str) -> int:
        return len(self._in_flight[topic])
