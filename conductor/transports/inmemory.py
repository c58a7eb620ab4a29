"""In-memory transport for testing and single-process runs."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, List, Optional, Tuple

from ..contracts import JobDispatch
from .base import BaseTransport

RawMessage = Tuple[str, str, JobDispatch]


class InMemoryTransport(BaseTransport[RawMessage]):
    """Simple in-process queue for unit tests.

    Raw messages are ``(topic, json, message)`` triples. Messages nacked
    without requeue land in ``failed[topic]``.
    """

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[RawMessage]] = defaultdict(deque)
        self.failed: Dict[str, List[JobDispatch]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def publish(self, topic: str, message: JobDispatch) -> None:
        """Publish message to in-memory queue."""
        raw = (topic, message.to_json(), message)
        async with self._lock:
            self._queues[topic].append(raw)

    def pending(self, topic: str) -> int:
        return len(self._queues[topic])

    async def get_nowait(self, topic: str) -> Optional[RawMessage]:
        """Pop the next raw message without waiting, or ``None``."""
        async with self._lock:
            if self._queues[topic]:
                return self._queues[topic].popleft()
        return None

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessage, JobDispatch]]:
        """Subscribe to messages from topic.

        Args:
            topic: The topic to subscribe to
            lifespan: Maximum time in seconds to keep connection open. If None, runs indefinitely.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                elapsed = loop.time() - start_time
                if elapsed >= lifespan:
                    break

            raw_message = await self.get_nowait(topic)
            if raw_message is not None:
                # the lock is released before yielding so the consumer can publish
                yield raw_message, raw_message[2]
                continue

            await asyncio.sleep(0.01)

    async def ack(self, raw_message: RawMessage) -> None:
        """No-op acknowledgment for in-memory transport."""
        pass

    async def nack(self, raw_message: RawMessage, requeue: bool = True) -> None:
        topic, _, message = raw_message
        async with self._lock:
            if requeue:
                self._queues[topic].appendleft(raw_message)
            else:
                self.failed[topic].append(message)
