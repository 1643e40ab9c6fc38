"""Redis transport: one list per topic plus an in-flight list per topic."""

from __future__ import annotations

import logging
from typing import Any, Optional

import redis.asyncio as redis

from ..config import TransportConfig
from .base import SignalTransport

logger = logging.getLogger(__name__)


class RedisTransport(SignalTransport):
    """Queues signal envelopes on Redis lists.

    Producers ``LPUSH`` onto ``<prefix>:<topic>``. A consumer ``BLMOVE``s the
    oldest message onto ``<prefix>:<topic>:in-flight`` and removes it from
    there on ack, so a worker that dies mid-message leaves it recoverable.
    Needs Redis 6.2 or newer.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        prefix: str = "approvalflow",
        max_attempts: int = 3,
    ) -> None:
        super().__init__(max_attempts)
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.prefix = prefix
        self._redis: Optional[Any] = None

    @classmethod
    def from_config(cls, config: TransportConfig) -> "RedisTransport":
        return cls(
            host=config.redis.host,
            port=config.redis.port,
            db=config.redis.db,
            password=config.redis.password,
            prefix=config.redis.prefix,
            max_attempts=config.max_attempts,
        )

    def queue_key(self, topic: str) -> str:
        return f"{self.prefix}:{topic}"

    def in_flight_key(self, topic: str) -> str:
        return f"{self.prefix}:{topic}:in-flight"

    async def connect(self) -> None:
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()
        logger.info(f"Connected to Redis at {self.host}:{self.port}/{self.db}")

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def _client(self) -> Any:
        if not self._redis:
            await self.connect()
        return self._redis

    async def _push(self, queue: str, data: str) -> None:
        client = await self._client()
        await client.lpush(self.queue_key(queue), data)

    async def _pop(self, queue: str, timeout: float) -> Optional[str]:
        client = await self._client()
        return await client.blmove(
            self.queue_key(queue), self.in_flight_key(queue), timeout, "RIGHT", "LEFT"
        )

    async def _settle(self, queue: str, data: str) -> None:
        client = await self._client()
        await client.lrem(self.in_flight_key(queue), 1, data)

    async def _restore(self, queue: str) -> int:
        client = await self._client()
        restored = 0
        # newest in-flight first, each pushed to the consuming end
        while await client.lmove(
            self.in_flight_key(queue), self.queue_key(queue), "LEFT", "RIGHT"
        ):
            restored += 1
        return restored
