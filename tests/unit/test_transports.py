"""Transport tests."""

import pytest

from invoflow.contracts import WorkItem
from invoflow.transports.inmemory import InMemoryTransport
from invoflow.transports.redis import RedisTransport


def _item(seq=1):
    return WorkItem(instance_id="test-123", sequence_no=seq, name="AddInvoice", input={"a": 1})


@pytest.mark.asyncio
async def test_inmemory_transport_basic():
    """Test basic InMemoryTransport publish/subscribe."""
    transport = InMemoryTransport(poll_interval=0.01)
    await transport.publish("activities", _item())

    message_received = False
    async for raw_msg, received in transport.subscribe("activities"):
        assert received.instance_id == "test-123"
        assert received.input == {"a": 1}
        await transport.ack(raw_msg)
        message_received = True
        break

    assert message_received
    assert transport.pending("activities") == 0


@pytest.mark.asyncio
async def test_inmemory_poll_is_fifo():
    transport = InMemoryTransport()
    await transport.publish("activities", _item(1))
    await transport.publish("activities", _item(2))

    _, first = await transport.poll("activities")
    _, second = await transport.poll("activities")
    assert (first.sequence_no, second.sequence_no) == (1, 2)
    assert await transport.poll("activities") is None


@pytest.mark.asyncio
async def test_inmemory_nack_requeues_redelivery():
    transport = InMemoryTransport()
    await transport.publish("activities", _item())

    raw, item = await transport.poll("activities")
    await transport.nack(raw)

    _, again = await transport.poll("activities")
    assert again.sequence_no == item.sequence_no
    assert again.attempt == item.attempt + 1


@pytest.mark.asyncio
async def test_subscribe_stops_after_lifespan():
    transport = InMemoryTransport(poll_interval=0.01)

    received = [item async for _, item in transport.subscribe("activities", lifespan=0.05)]
    assert received == []


def test_clear_drops_queued_messages():
    transport = InMemoryTransport()
    transport._queues["activities"].append(("activities", "{}", _item()))

    transport.clear()
    assert transport.pending("activities") == 0


def test_redis_transport_settings():
    transport = RedisTransport(host="redis.local", port=6380, db=2)
    assert transport.host == "redis.local"
    assert transport.port == 6380
    assert transport.db == 2
    assert transport._queue_name("activities") == "invoflow:activities"
