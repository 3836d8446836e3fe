import uuid
from datetime import datetime, timedelta, timezone

import pytest

from invoflow.contracts import (
    ActivityCompleted,
    ActivityScheduled,
    FailureDetails,
    InstanceStatus,
    OrchestrationStarted,
)
from invoflow.engine import started_event
from invoflow.errors import HistoryConflict, InstanceAlreadyExists, InstanceNotFound
from invoflow.persistence import InMemoryWorkflowRepository, SQLiteWorkflowRepository
from invoflow.persistence.models import WorkflowInstance

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture(params=["inmemory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "inmemory":
        yield InMemoryWorkflowRepository()
    else:
        repository = SQLiteWorkflowRepository(tmp_path / "wf.db")
        yield repository
        repository.close()


async def _create(repo, input=None):
    instance_id = str(uuid.uuid4())
    await repo.create_instance(
        WorkflowInstance(
            instance_id=instance_id,
            workflow_type="InvoiceOrchestration",
            input=input,
            created_at=NOW,
        ),
        started_event("InvoiceOrchestration", input, NOW),
    )
    return instance_id


@pytest.mark.asyncio
async def test_create_and_read_instance(repo):
    instance_id = await _create(repo, {"clientName": "Acme"})

    instance = await repo.get_instance(instance_id)
    assert instance.status is InstanceStatus.RUNNING
    assert instance.input == {"clientName": "Acme"}
    assert instance.created_at == NOW

    history = await repo.get_history(instance_id)
    assert len(history) == 1
    assert isinstance(history[0], OrchestrationStarted)
    assert history[0].event_id == 1

    with pytest.raises(InstanceAlreadyExists):
        await repo.create_instance(
            instance.model_copy(), started_event("InvoiceOrchestration", None, NOW)
        )


@pytest.mark.asyncio
async def test_unknown_instance(repo):
    assert await repo.get_instance("missing") is None
    with pytest.raises(InstanceNotFound):
        await repo.get_history("missing")


@pytest.mark.asyncio
async def test_append_assigns_increasing_event_ids(repo):
    instance_id = await _create(repo)

    appended = await repo.append_history(
        instance_id, [ActivityScheduled(sequence_no=1, name="AddInvoice", input={"x": 1})], 1
    )
    assert [e.event_id for e in appended] == [2]
    await repo.append_history(instance_id, [ActivityCompleted(sequence_no=1, result="ok")], 2)

    history = await repo.get_history(instance_id)
    assert [e.event_id for e in history] == [1, 2, 3]
    assert history[1].input == {"x": 1}
    assert history[2].result == "ok"


@pytest.mark.asyncio
async def test_stale_append_is_rejected(repo):
    instance_id = await _create(repo)
    await repo.append_history(instance_id, [ActivityScheduled(sequence_no=1, name="A")], 1)

    with pytest.raises(HistoryConflict):
        await repo.append_history(instance_id, [ActivityScheduled(sequence_no=1, name="B")], 1)

    history = await repo.get_history(instance_id)
    assert [getattr(e, "name", None) for e in history] == [None, "A"]


@pytest.mark.asyncio
async def test_update_and_list_instances(repo):
    running = await _create(repo)
    failed = await _create(repo)

    await repo.update_instance(
        running, status=InstanceStatus.RUNNING, updated_at=NOW, waiting_for=["PayEvent"]
    )
    await repo.update_instance(
        failed,
        status=InstanceStatus.FAILED,
        updated_at=NOW + timedelta(seconds=1),
        failure=FailureDetails(error_type="ValueError", message="bad"),
    )

    assert (await repo.get_instance(running)).waiting_for == ["PayEvent"]
    stored = await repo.get_instance(failed)
    assert stored.failure.error_type == "ValueError"
    assert stored.updated_at == NOW + timedelta(seconds=1)

    listed = await repo.list_instances(InstanceStatus.RUNNING)
    assert [i.instance_id for i in listed] == [running]
    assert len(await repo.list_instances()) == 2


@pytest.mark.asyncio
async def test_event_buffer_roundtrip(repo):
    instance_id = await _create(repo)

    first = await repo.buffer_event(instance_id, "PayEvent", True, NOW)
    await repo.buffer_event(instance_id, "PayEvent", {"amount": 5}, NOW)

    buffered = await repo.list_buffered_events(instance_id)
    assert [e.payload for e in buffered] == [True, {"amount": 5}]

    await repo.remove_buffered_event(instance_id, first.buffer_id)
    buffered = await repo.list_buffered_events(instance_id)
    assert [e.payload for e in buffered] == [{"amount": 5}]
