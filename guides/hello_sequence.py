"""Function chaining: three activities called one after another."""

import asyncio

from invoflow import (
    ActivityRegistry,
    InstanceManager,
    OrchestrationRegistry,
    OrchestrationRuntime,
)
from invoflow.persistence.inmemory import InMemoryWorkflowRepository
from invoflow.transports.inmemory import InMemoryTransport

orchestrations = OrchestrationRegistry()
activities = ActivityRegistry()


@activities.register("SayHello")
def say_hello(ctx, name):
    return f"Hello {name}!"


@orchestrations.register("HelloSequence")
def hello_sequence(ctx, _input):
    outputs = []
    for city in ("Tokyo", "Seattle", "London"):
        outputs.append((yield ctx.call_activity("SayHello", city)))
    return outputs


async def main():
    runtime = OrchestrationRuntime(
        InMemoryWorkflowRepository(), InMemoryTransport(), orchestrations, activities
    )
    manager = InstanceManager(runtime)

    instance_id = await manager.create_instance("HelloSequence")
    await runtime.run_until_idle()

    status = await manager.get_status(instance_id)
    print(f"Instance: {instance_id}")
    print(f"Status: {status.status.value}")
    print(f"Output: {status.output}")


if __name__ == "__main__":
    asyncio.run(main())
