"""Transport tests."""

import pytest

from conductor.contracts import JobDispatch
from conductor.transports.inmemory import InMemoryTransport


def _dispatch(job_id: int = 1) -> JobDispatch:
    return JobDispatch(job_id=job_id, workflow_id=7, node_name="test_node")


def test_dispatch_json_round_trip():
    message = _dispatch()
    restored = JobDispatch.from_json(message.to_json())
    assert restored == message
    assert restored.spec_version == "1.0"
    assert _dispatch().message_id != message.message_id


@pytest.mark.asyncio
async def test_inmemory_transport_basic():
    """Test basic InMemoryTransport publish/subscribe."""
    transport = InMemoryTransport()

    await transport.publish("jobs", _dispatch(1))
    await transport.publish("jobs", _dispatch(2))
    assert transport.pending("jobs") == 2

    received = []
    async for raw_msg, message in transport.subscribe("jobs", lifespan=0.2):
        received.append(message.job_id)
        await transport.ack(raw_msg)
        if len(received) == 2:
            break

    assert received == [1, 2]
    assert transport.pending("jobs") == 0


@pytest.mark.asyncio
async def test_inmemory_subscriber_can_publish_while_consuming():
    transport = InMemoryTransport()
    await transport.publish("jobs", _dispatch(1))

    seen = []
    async for raw_msg, message in transport.subscribe("jobs", lifespan=0.5):
        seen.append(message.job_id)
        await transport.ack(raw_msg)
        if message.job_id == 1:
            await transport.publish("jobs", _dispatch(2))
        else:
            break

    assert seen == [1, 2]


@pytest.mark.asyncio
async def test_inmemory_nack_routes_to_failure_channel():
    transport = InMemoryTransport()
    await transport.publish("jobs", _dispatch(1))

    raw = await transport.get_nowait("jobs")
    await transport.nack(raw, requeue=True)
    assert transport.pending("jobs") == 1

    raw = await transport.get_nowait("jobs")
    await transport.nack(raw, requeue=False)
    assert transport.pending("jobs") == 0
    assert [m.job_id for m in transport.failed["jobs"]] == [1]
    assert await transport.get_nowait("jobs") is None


@pytest.mark.asyncio
async def test_subscribe_stops_after_lifespan():
    transport = InMemoryTransport()
    messages = [m async for _, m in transport.subscribe("empty", lifespan=0.05)]
    assert messages == []


def test_redis_transport_instantiation():
    from conductor.transports.redis import RedisTransport

    transport = RedisTransport()
    assert transport.host == "localhost"
    assert transport.port == 6379
    assert RedisTransport.queue_name("conductor-jobs") == "conductor:conductor-jobs"
