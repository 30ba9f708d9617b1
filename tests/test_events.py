import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from wallbounce.events import CollaborationEvent, EventBus, EventType, RedisEventPublisher


@pytest.mark.asyncio
async def test_sinks_and_subscribers_receive_events(clock) -> None:
    bus = EventBus(clock=clock)
    received: list[CollaborationEvent] = []
    bus.on_event(received.append)

    async def async_sink(event: CollaborationEvent) -> None:
        received.append(event)

    bus.on_event(async_sink)
    queue = bus.subscribe()

    event = await bus.publish(EventType.PHASE_STARTED, session_id="s-1", phase="propose")

    assert received == [event, event]
    assert queue.get_nowait() is event
    assert event.timestamp == clock.now
    assert event.to_dict()["sessionId"] == "s-1"
    assert event.to_dict()["type"] == "phase.started"


@pytest.mark.asyncio
async def test_failing_sink_does_not_reach_publisher(caplog) -> None:
    bus = EventBus()
    received: list[CollaborationEvent] = []

    def broken(event: CollaborationEvent) -> None:
        raise RuntimeError("sink down")

    bus.on_event(broken)
    bus.on_event(received.append)

    await bus.publish(EventType.SESSION_UPDATED, session_id="s-1")

    assert len(received) == 1
    assert "Event sink failed" in caplog.text


@pytest.mark.asyncio
async def test_full_queue_drops_oldest() -> None:
    bus = EventBus(queue_size=2)
    queue = bus.subscribe()
    for i in range(3):
        await bus.publish(EventType.MODEL_INVOKED, message=str(i))

    assert [queue.get_nowait().message for _ in range(2)] == ["1", "2"]

    bus.unsubscribe(queue)
    await bus.publish(EventType.MODEL_INVOKED)
    assert queue.empty()


@pytest.mark.asyncio
async def test_redis_publisher_uses_session_channel() -> None:
    redis = AsyncMock()
    publisher = RedisEventPublisher(redis)
    event = CollaborationEvent(type=EventType.SESSION_CREATED, session_id="s-1")

    await publisher(event)
    await publisher(CollaborationEvent(type=EventType.SESSION_CREATED))

    redis.publish.assert_awaited_once()
    channel, body = redis.publish.await_args.args
    assert channel == "channel:session:s-1"
    assert json.loads(body)["type"] == "session.created"


@pytest.mark.asyncio
async def test_redis_publisher_swallows_connection_errors() -> None:
    redis = AsyncMock()
    redis.publish.side_effect = RedisConnectionError("down")
    await RedisEventPublisher(redis)(CollaborationEvent(type=EventType.SESSION_CREATED, session_id="s"))
