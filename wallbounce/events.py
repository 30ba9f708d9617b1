"""
Typed events for collaboration runs and session state changes.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union
from uuid import UUID, uuid4

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    COLLABORATION_STARTED = "collaboration.started"
    COLLABORATION_COMPLETED = "collaboration.completed"
    COLLABORATION_FAILED = "collaboration.failed"

    PHASE_STARTED = "phase.started"
    PHASE_COMPLETED = "phase.completed"

    MODEL_INVOKED = "model.invoked"
    MODEL_FAILED = "model.failed"
    MODEL_TIMEOUT = "model.timeout"

    REVISION_DECIDED = "revision.decided"
    FAN_OUT_SETTLED = "fan_out.settled"

    SESSION_CREATED = "session.created"
    SESSION_UPDATED = "session.updated"
    SESSION_CONFLICT = "session.conflict"
    SESSION_REVERTED = "session.reverted"
    SESSION_DELETED = "session.deleted"
    SESSION_SYNCED = "session.synced"


@dataclass
class CollaborationEvent:
    """Standardized event for the wall-bounce engine."""

    type: EventType
    session_id: Optional[str] = None
    phase: Optional[str] = None
    model: Optional[str] = None
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    id: UUID = field(default_factory=uuid4)
    timestamp: float = 0.0
    duration_ms: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "type": self.type.value,
            "sessionId": self.session_id,
            "phase": self.phase,
            "model": self.model,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp,
            "durationMs": self.duration_ms,
        }


EventSink = Callable[[CollaborationEvent], Union[None, Awaitable[None]]]


class EventBus:
    """Delivers events to registered sinks and queue subscribers.

    Sink failures are logged and never reach the publisher. Subscriber queues
    are bounded; when one is full the oldest event is dropped.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time, queue_size: int = 1000) -> None:
        self._sinks: list[EventSink] = []
        self._queues: list[asyncio.Queue[CollaborationEvent]] = []
        self._queue_size = queue_size
        self._clock = clock

    def on_event(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def subscribe(self) -> asyncio.Queue[CollaborationEvent]:
        queue: asyncio.Queue[CollaborationEvent] = asyncio.Queue(maxsize=self._queue_size)
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[CollaborationEvent]) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    async def emit(self, event: CollaborationEvent) -> None:
        if not event.timestamp:
            event.timestamp = self._clock()

        for queue in self._queues:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(event)

        for sink in self._sinks:
            try:
                result = sink(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Event sink failed for %s", event.type.value)

    async def publish(self, type_: EventType, **fields: Any) -> CollaborationEvent:
        event = CollaborationEvent(type=type_, **fields)
        await self.emit(event)
        return event


class RedisEventPublisher:
    """Sink that relays session-scoped events to Redis Pub/Sub."""

    def __init__(self, redis: Redis, *, channel_prefix: str = "channel:session:") -> None:
        self._redis = redis
        self._channel_prefix = channel_prefix

    async def __call__(self, event: CollaborationEvent) -> None:
        if not event.session_id:
            return
        channel = f"{self._channel_prefix}{event.session_id}"
        try:
            await self._redis.publish(channel, json.dumps(event.to_dict(), default=str))
        except RedisError as exc:
            logger.warning("Redis publish failed: %s", exc)
