"""Activity runner tests."""

import pytest

from invoflow.activities import ActivityContext, ActivityRunner
from invoflow.contracts import WorkItem
from invoflow.errors import ActivityNotRegistered
from invoflow.registry import ActivityRegistry

registry = ActivityRegistry()


@registry.register("Echo")
def echo(ctx, payload):
    return {"payload": payload, "attempt": ctx.attempt}


@registry.register("AsyncUpper")
async def async_upper(ctx, payload):
    return payload.upper()


@registry.register("Broken")
def broken(ctx, payload):
    raise ValueError(f"cannot handle {payload}")


@pytest.mark.asyncio
async def test_invoke_sync_and_async_activities():
    runner = ActivityRunner(registry)

    assert await runner.invoke("AsyncUpper", "hi") == "HI"
    ctx = ActivityContext(instance_id="i", sequence_no=1, name="Echo", attempt=3)
    assert await runner.invoke("Echo", 1, ctx) == {"payload": 1, "attempt": 3}


@pytest.mark.asyncio
async def test_invoke_propagates_errors():
    runner = ActivityRunner(registry)

    with pytest.raises(ValueError):
        await runner.invoke("Broken", "x")
    with pytest.raises(ActivityNotRegistered):
        await runner.invoke("Missing")


@pytest.mark.asyncio
async def test_execute_captures_failure():
    runner = ActivityRunner(registry)

    outcome = await runner.execute(
        WorkItem(instance_id="i", sequence_no=4, name="Broken", input="x")
    )
    assert not outcome.succeeded
    assert outcome.failure.error_type == "ValueError"
    assert outcome.failure.message == "cannot handle x"

    outcome = await runner.execute(
        WorkItem(instance_id="i", sequence_no=5, name="Echo", input="y", attempt=2)
    )
    assert outcome.succeeded
    assert outcome.result == {"payload": "y", "attempt": 2}


def test_registry_names_and_lookup():
    assert "Echo" in registry
    assert registry.names() == ["AsyncUpper", "Broken", "Echo"]
    with pytest.raises(ActivityNotRegistered):
        registry.get("Missing")
