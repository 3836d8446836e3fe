"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Sequence

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


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS instances (
                instance_id TEXT PRIMARY KEY,
                workflow_type TEXT NOT NULL,
                input TEXT,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT,
                output TEXT,
                failure TEXT,
                waiting_for TEXT NOT NULL DEFAULT '[]'
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS history (
                instance_id TEXT NOT NULL,
                event_id INTEGER NOT NULL,
                kind TEXT NOT NULL,
                body TEXT NOT NULL,
                PRIMARY KEY (instance_id, event_id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS event_buffer (
                buffer_id INTEGER PRIMARY KEY AUTOINCREMENT,
                instance_id TEXT NOT NULL,
                name TEXT NOT NULL,
                payload TEXT,
                received_at TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.lastrowid

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def _insert_instance(self, instance: WorkflowInstance, started: OrchestrationStarted) -> None:
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        """
                        INSERT INTO instances
                            (instance_id, workflow_type, input, status, created_at, waiting_for)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (
                            instance.instance_id,
                            instance.workflow_type,
                            json.dumps(instance.input),
                            instance.status.value,
                            instance.created_at.isoformat(),
                            json.dumps(instance.waiting_for),
                        ),
                    )
                    event = next_event_ids(0, [started])[0]
                    self._conn.execute(
                        "INSERT INTO history (instance_id, event_id, kind, body) VALUES (?, ?, ?, ?)",
                        (instance.instance_id, event.event_id, event.kind, event.model_dump_json()),
                    )
            except sqlite3.IntegrityError:
                raise InstanceAlreadyExists(instance.instance_id) from None

    def _append(
        self, instance_id: str, events: Sequence[HistoryEvent], expected_version: int
    ) -> list[HistoryEvent]:
        with self._lock:
            try:
                with self._conn:
                    row = self._conn.execute(
                        "SELECT COUNT(*) AS n FROM history WHERE instance_id = ?",
                        (instance_id,),
                    ).fetchone()
                    if row["n"] == 0:
                        raise InstanceNotFound(instance_id)
                    if row["n"] != expected_version:
                        raise HistoryConflict(instance_id, expected_version, row["n"])
                    appended = next_event_ids(expected_version, events)
                    self._conn.executemany(
                        "INSERT INTO history (instance_id, event_id, kind, body) VALUES (?, ?, ?, ?)",
                        [
                            (instance_id, e.event_id, e.kind, e.model_dump_json())
                            for e in appended
                        ],
                    )
            except sqlite3.IntegrityError:
                raise HistoryConflict(instance_id, expected_version, -1) from None
        return appended

    @staticmethod
    def _row_to_instance(row: sqlite3.Row) -> WorkflowInstance:
        return WorkflowInstance(
            instance_id=row["instance_id"],
            workflow_type=row["workflow_type"],
            input=json.loads(row["input"]) if row["input"] else None,
            status=InstanceStatus(row["status"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
            output=json.loads(row["output"]) if row["output"] else None,
            failure=FailureDetails.model_validate_json(row["failure"]) if row["failure"] else None,
            waiting_for=json.loads(row["waiting_for"]),
        )

    # ------------------------------------------------------------------
    # Repository API
    async def create_instance(
        self, instance: WorkflowInstance, started: OrchestrationStarted
    ) -> None:
        await asyncio.to_thread(self._insert_instance, instance, started)

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM instances WHERE instance_id = ?", instance_id
        )
        return self._row_to_instance(row) if row else None

    async def list_instances(
        self, status: InstanceStatus | None = None
    ) -> list[WorkflowInstance]:
        if status is None:
            rows = await asyncio.to_thread(
                self._fetchall, "SELECT * FROM instances ORDER BY created_at"
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT * FROM instances WHERE status = ? ORDER BY created_at",
                status.value,
            )
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
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE instances
            SET status = ?, updated_at = ?, output = ?, failure = ?, waiting_for = ?
            WHERE instance_id = ?
            """,
            status.value,
            updated_at.isoformat(),
            json.dumps(output) if output is not None else None,
            failure.model_dump_json() if failure else None,
            json.dumps(list(waiting_for)),
            instance_id,
        )

    async def get_history(self, instance_id: str) -> list[HistoryEvent]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT body FROM history WHERE instance_id = ? ORDER BY event_id",
            instance_id,
        )
        if not rows:
            raise InstanceNotFound(instance_id)
        return [parse_history_event(r["body"]) for r in rows]

    async def append_history(
        self, instance_id: str, events: Sequence[HistoryEvent], expected_version: int
    ) -> list[HistoryEvent]:
        return await asyncio.to_thread(self._append, instance_id, events, expected_version)

    async def buffer_event(
        self, instance_id: str, name: str, payload: Any, received_at: datetime
    ) -> BufferedEvent:
        buffer_id = await asyncio.to_thread(
            self._execute,
            "INSERT INTO event_buffer (instance_id, name, payload, received_at) VALUES (?, ?, ?, ?)",
            instance_id,
            name,
            json.dumps(payload),
            received_at.isoformat(),
        )
        return BufferedEvent(
            buffer_id=buffer_id,
            instance_id=instance_id,
            name=name,
            payload=payload,
            received_at=received_at,
        )

    async def list_buffered_events(self, instance_id: str) -> list[BufferedEvent]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM event_buffer WHERE instance_id = ? ORDER BY buffer_id",
            instance_id,
        )
        return [
            BufferedEvent(
                buffer_id=r["buffer_id"],
                instance_id=r["instance_id"],
                name=r["name"],
                payload=json.loads(r["payload"]) if r["payload"] else None,
                received_at=datetime.fromisoformat(r["received_at"]),
            )
            for r in rows
        ]

    async def remove_buffered_event(self, instance_id: str, buffer_id: int) -> None:
        await asyncio.to_thread(
            self._execute,
            "DELETE FROM event_buffer WHERE instance_id = ? AND buffer_id = ?",
            instance_id,
            buffer_id,
        )
