"""External event channel tests."""

from datetime import datetime, timezone

import pytest

from invoflow.engine import started_event
from invoflow.events import EventChannel
from invoflow.persistence.inmemory import InMemoryWorkflowRepository
from invoflow.persistence.models import WorkflowInstance

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


async def _channel():
    repo = InMemoryWorkflowRepository()
    await repo.create_instance(
        WorkflowInstance(instance_id="i", workflow_type="T", created_at=NOW),
        started_event("T", None, NOW),
    )
    return EventChannel(repo)


@pytest.mark.asyncio
async def test_buffer_is_fifo_per_name():
    channel = await _channel()
    await channel.buffer("i", "PayEvent", 1, NOW)
    await channel.buffer("i", "Other", "x", NOW)
    await channel.buffer("i", "PayEvent", 2, NOW)

    assert await channel.pending("i") == {"PayEvent": [1, 2], "Other": ["x"]}

    first = await channel.next_deliverable("i", ["PayEvent"])
    assert first.payload == 1
    await channel.consume(first)
    assert await channel.pending("i") == {"PayEvent": [2], "Other": ["x"]}


@pytest.mark.asyncio
async def test_next_deliverable_only_for_awaited_names():
    channel = await _channel()
    await channel.buffer("i", "Other", "x", NOW)

    assert await channel.next_deliverable("i", []) is None
    assert await channel.next_deliverable("i", ["PayEvent"]) is None
    assert (await channel.next_deliverable("i", ["PayEvent", "Other"])).name == "Other"


def test_received_record():
    record = EventChannel.received("PayEvent", True, NOW)
    assert record.name == "PayEvent"
    assert record.payload is True
    assert record.timestamp == NOW
