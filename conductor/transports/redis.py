"""Redis transport for cross-process messaging."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Optional, Tuple

import redis.asyncio as redis

from ..contracts import JobDispatch
from .base import BaseTransport

logger = logging.getLogger(__name__)

RawMessage = Tuple[str, str]


class RedisTransport(BaseTransport[RawMessage]):
    """Redis-based transport for distributed messaging.

    Each topic is a Redis list used as a FIFO queue. Messages nacked without
    requeue are pushed to ``<queue>:failed``.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = None

    @staticmethod
    def queue_name(topic: str) -> str:
        return f"conductor:{topic}"

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        # Test connection
        await self._redis.ping()
        logger.info("Redis connection to %s:%s established", self.host, self.port)

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def ping(self) -> None:
        if not self._redis:
            await self.connect()
        await self._redis.ping()

    async def publish(self, topic: str, message: JobDispatch) -> None:
        """Publish message to Redis list (acting as queue)."""
        if not self._redis:
            await self.connect()

        await self._redis.lpush(self.queue_name(topic), message.to_json())

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessage, JobDispatch]]:
        """Subscribe to messages from Redis queue."""
        if not self._redis:
            await self.connect()

        queue_name = self.queue_name(topic)
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                elapsed = loop.time() - start_time
                if elapsed >= lifespan:
                    break

            # Blocking pop with timeout
            result = await self._redis.brpop(queue_name, timeout=1)

            if result:
                _, message_json = result
                try:
                    message = JobDispatch.model_validate(json.loads(message_json))
                except (json.JSONDecodeError, ValueError) as e:
                    logger.error("Failed to parse message on %s: %s", queue_name, e)
                    await self._redis.lpush(f"{queue_name}:failed", message_json)
                    continue
                yield (queue_name, message_json), message

            # Brief sleep to prevent busy waiting when no messages
            await asyncio.sleep(0.01)

    async def ack(self, raw_message: RawMessage) -> None:
        """No-op acknowledgment for Redis transport (message already consumed)."""
        pass

    async def nack(self, raw_message: RawMessage, requeue: bool = True) -> None:
        queue_name, message_json = raw_message
        if requeue:
            # RPUSH puts it back at the consuming end
            await self._redis.rpush(queue_name, message_json)
        else:
            await self._redis.lpush(f"{queue_name}:failed", message_json)
