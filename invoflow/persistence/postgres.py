"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Sequence

import asyncpg

from ..contracts import (
    FailureDetails,
    HistoryEvent,
    InstanceStatus,
    OrchestrationStarted,
    parse_history_event,
)
from ..errors import HistoryConflict, InstanceAlreadyExists, InstanceNotFound
from ..history import next_event_ids
from .models import BufferedEvent, WorkflowInstance
from .repository import WorkflowRepository


def _loads(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS instances (
                instance_id TEXT PRIMARY KEY,
                workflow_type TEXT NOT NULL,
                input JSONB,
                status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ,
                output JSONB,
                failure JSONB,
                waiting_for JSONB NOT NULL DEFAULT '[]'
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS history (
                instance_id TEXT NOT NULL REFERENCES instances (instance_id),
                event_id INTEGER NOT NULL,
                kind TEXT NOT NULL,
                body JSONB NOT NULL,
                PRIMARY KEY (instance_id, event_id)
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS event_buffer (
                buffer_id SERIAL PRIMARY KEY,
                instance_id TEXT NOT NULL REFERENCES instances (instance_id),
                name TEXT NOT NULL,
                payload JSONB,
                received_at TIMESTAMPTZ NOT NULL
            )
            """
        )

    @staticmethod
    def _row_to_instance(row: asyncpg.Record) -> WorkflowInstance:
        failure = _loads(row["failure"])
        return WorkflowInstance(
            instance_id=row["instance_id"],
            workflow_type=row["workflow_type"],
            input=_loads(row["input"]),
            status=InstanceStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            output=_loads(row["output"]),
            failure=FailureDetails.model_validate(failure) if failure else None,
            waiting_for=_loads(row["waiting_for"]) or [],
        )

    # ------------------------------------------------------------------
    async def create_instance(
        self, instance: WorkflowInstance, started: OrchestrationStarted
    ) -> None:
        event = next_event_ids(0, [started])[0]
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO instances
                        (instance_id, workflow_type, input, status, created_at, waiting_for)
                    VALUES ($1, $2, $3, $4, $5, $6)
                    """,
                    instance.instance_id,
                    instance.workflow_type,
                    json.dumps(instance.input),
                    instance.status.value,
                    instance.created_at,
                    json.dumps(instance.waiting_for),
                )
                await conn.execute(
                    "INSERT INTO history (instance_id, event_id, kind, body) VALUES ($1, $2, $3, $4)",
                    instance.instance_id,
                    event.event_id,
                    event.kind,
                    event.model_dump_json(),
                )
        except asyncpg.UniqueViolationError:
            raise InstanceAlreadyExists(instance.instance_id) from None
        finally:
            await conn.close()

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT * FROM instances WHERE instance_id = $1", instance_id
            )
        finally:
            await conn.close()
        return self._row_to_instance(row) if row else None

    async def list_instances(
        self, status: InstanceStatus | None = None
    ) -> list[WorkflowInstance]:
        conn = await self._connect()
        try:
            if status is None:
                rows = await conn.fetch("SELECT * FROM instances ORDER BY created_at")
            else:
                rows = await conn.fetch(
                    "SELECT * FROM instances WHERE status = $1 ORDER BY created_at",
                    status.value,
                )
        finally:
            await conn.close()
        return [self._row_to_instance(r) for r in rows]

    async def update_instance(
        self,
        instance_id: str,
        *,
        status: InstanceStatus,
        updated_at: datetime,
        output: Any = None,
        failure: FailureDetails | None = None,
        waiting_for: Sequence[str] = (),
    ) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                UPDATE instances
                SET status = $1, updated_at = $2, output = $3, failure = $4, waiting_for = $5
                WHERE instance_id = $6
                """,
                status.value,
                updated_at,
                json.dumps(output) if output is not None else None,
                failure.model_dump_json() if failure else None,
                json.dumps(list(waiting_for)),
                instance_id,
            )
        finally:
            await conn.close()

    async def get_history(self, instance_id: str) -> list[HistoryEvent]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT body FROM history WHERE instance_id = $1 ORDER BY event_id",
                instance_id,
            )
        finally:
            await conn.close()
        if not rows:
            raise InstanceNotFound(instance_id)
        return [parse_history_event(r["body"]) for r in rows]

    async def append_history(
        self, instance_id: str, events: Sequence[HistoryEvent], expected_version: int
    ) -> list[HistoryEvent]:
        appended = next_event_ids(expected_version, events)
        conn = await self._connect()
        try:
            async with conn.transaction():
                locked = await conn.fetchrow(
                    "SELECT instance_id FROM instances WHERE instance_id = $1 FOR UPDATE",
                    instance_id,
                )
                if locked is None:
                    raise InstanceNotFound(instance_id)
                version = await conn.fetchval(
                    "SELECT COUNT(*) FROM history WHERE instance_id = $1", instance_id
                )
                if version != expected_version:
                    raise HistoryConflict(instance_id, expected_version, version)
                await conn.executemany(
                    "INSERT INTO history (instance_id, event_id, kind, body) VALUES ($1, $2, $3, $4)",
                    [
                        (instance_id, e.event_id, e.kind, e.model_dump_json())
                        for e in appended
                    ],
                )
        except asyncpg.UniqueViolationError:
            raise HistoryConflict(instance_id, expected_version, -1) from None
        finally:
            await conn.close()
        return appended

    async def buffer_event(
        self, instance_id: str, name: str, payload: Any, received_at: datetime
    ) -> BufferedEvent:
        conn = await self._connect()
        try:
            buffer_id = await conn.fetchval(
                """
                INSERT INTO event_buffer (instance_id, name, payload, received_at)
                VALUES ($1, $2, $3, $4) RETURNING buffer_id
                """,
                instance_id,
                name,
                json.dumps(payload),
                received_at,
            )
        finally:
            await conn.close()
        return BufferedEvent(
            buffer_id=buffer_id,
            instance_id=instance_id,
            name=name,
            payload=payload,
            received_at=received_at,
        )

    async def list_buffered_events(self, instance_id: str) -> list[BufferedEvent]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT * FROM event_buffer WHERE instance_id = $1 ORDER BY buffer_id",
                instance_id,
            )
        finally:
            await conn.close()
        return [
            BufferedEvent(
                buffer_id=r["buffer_id"],
                instance_id=r["instance_id"],
                name=r["name"],
                payload=_loads(r["payload"]),
                received_at=r["received_at"],
            )
            for r in rows
        ]

    async def remove_buffered_event(self, instance_id: str, buffer_id: int) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "DELETE FROM event_buffer WHERE instance_id = $1 AND buffer_id = $2",
                instance_id,
                buffer_id,
            )
        finally:
            await conn.close()
