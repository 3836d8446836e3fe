"""Append-only persistence sinks for invoice rows.

Every sink deduplicates on ``(invoice id, status)`` so an activity that is
dispatched twice for the same call writes one row.
"""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

import asyncpg

from ..config import InvoflowConfig, load_config
from ..errors import PersistenceFailure
from ..persistence import resolve_database_url
from .models import Invoice, InvoiceStatus


class InvoiceSink(Protocol):
    """Destination for invoice rows."""

    async def append(self, invoice: Invoice) -> bool:
        """Store ``invoice``; returns ``False`` when the row already existed."""

    async def flush(self) -> None:
        """Make appended rows durable."""

    async def rows(self, invoice_id: Optional[str] = None) -> List[Invoice]:
        """Stored rows in insertion order."""


class InMemoryInvoiceSink(InvoiceSink):
    """Keeps rows in a dict; useful for tests."""

    def __init__(self) -> None:
        self._rows: Dict[Tuple[str, str], Invoice] = {}
        self.append_calls: List[Invoice] = []

    async def append(self, invoice: Invoice) -> bool:
        self.append_calls.append(invoice)
        key = (str(invoice.id), invoice.status.value)
        if key in self._rows:
            return False
        self._rows[key] = invoice
        return True

    async def flush(self) -> None:
        pass

    async def rows(self, invoice_id: Optional[str] = None) -> List[Invoice]:
        return [
            row
            for row in self._rows.values()
            if invoice_id is None or str(row.id) == str(invoice_id)
        ]


class SQLiteInvoiceSink(InvoiceSink):
    """Persist invoice rows using SQLite."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS invoices (
                id TEXT NOT NULL,
                status TEXT NOT NULL,
                client_name TEXT NOT NULL,
                email_address TEXT,
                invoice_address TEXT,
                value TEXT NOT NULL,
                PRIMARY KEY (id, status)
            )
            """
        )
        self._conn.commit()

    def _insert(self, invoice: Invoice) -> bool:
        with self._lock:
            cur = self._conn.execute(
                """
                INSERT OR IGNORE INTO invoices
                    (id, status, client_name, email_address, invoice_address, value)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    str(invoice.id),
                    invoice.status.value,
                    invoice.client_name,
                    invoice.email_address,
                    invoice.invoice_address,
                    str(invoice.value),
                ),
            )
            return cur.rowcount == 1

    def _commit(self) -> None:
        with self._lock:
            self._conn.commit()

    def _select(self, invoice_id: Optional[str]) -> List[sqlite3.Row]:
        with self._lock:
            if invoice_id is None:
                return self._conn.execute("SELECT * FROM invoices ORDER BY rowid").fetchall()
            return self._conn.execute(
                "SELECT * FROM invoices WHERE id = ? ORDER BY rowid", (str(invoice_id),)
            ).fetchall()

    async def append(self, invoice: Invoice) -> bool:
        try:
            return await asyncio.to_thread(self._insert, invoice)
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Could not append invoice {invoice.id}: {e}") from e

    async def flush(self) -> None:
        try:
            await asyncio.to_thread(self._commit)
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Could not flush invoices: {e}") from e

    async def rows(self, invoice_id: Optional[str] = None) -> List[Invoice]:
        rows = await asyncio.to_thread(self._select, invoice_id)
        return [
            Invoice(
                id=r["id"],
                status=InvoiceStatus(r["status"]),
                client_name=r["client_name"],
                email_address=r["email_address"],
                invoice_address=r["invoice_address"],
                value=Decimal(r["value"]),
            )
            for r in rows
        ]


class PostgresInvoiceSink(InvoiceSink):
    """Persist invoice rows using PostgreSQL."""

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS invoices (
                    id UUID NOT NULL,
                    status TEXT NOT NULL,
                    client_name TEXT NOT NULL,
                    email_address TEXT,
                    invoice_address TEXT,
                    value NUMERIC NOT NULL,
                    PRIMARY KEY (id, status)
                )
                """
            )
            self._initialized = True
        return conn

    async def append(self, invoice: Invoice) -> bool:
        try:
            conn = await self._connect()
            try:
                result = await conn.execute(
                    """
                    INSERT INTO invoices
                        (id, status, client_name, email_address, invoice_address, value)
                    VALUES ($1, $2, $3, $4, $5, $6)
                    ON CONFLICT (id, status) DO NOTHING
                    """,
                    invoice.id,
                    invoice.status.value,
                    invoice.client_name,
                    invoice.email_address,
                    invoice.invoice_address,
                    invoice.value,
                )
            finally:
                await conn.close()
        except (asyncpg.PostgresError, OSError) as e:
            raise PersistenceFailure(f"Could not append invoice {invoice.id}: {e}") from e
        return result.endswith(" 1")

    async def flush(self) -> None:
        # Each append commits on its own connection.
        pass

    async def rows(self, invoice_id: Optional[str] = None) -> List[Invoice]:
        conn = await self._connect()
        try:
            if invoice_id is None:
                records = await conn.fetch("SELECT * FROM invoices")
            else:
                records = await conn.fetch(
                    "SELECT * FROM invoices WHERE id = $1", invoice_id
                )
        finally:
            await conn.close()
        return [
            Invoice(
                id=r["id"],
                status=InvoiceStatus(r["status"]),
                client_name=r["client_name"],
                email_address=r["email_address"],
                invoice_address=r["invoice_address"],
                value=r["value"],
            )
            for r in records
        ]


def get_invoice_sink(
    database_url: Optional[str] = None, config: Optional[InvoflowConfig] = None
) -> InvoiceSink:
    """Select an invoice sink the same way :func:`get_repository` selects a repository."""
    database_url = resolve_database_url(database_url, config or load_config())
    if not database_url:
        return InMemoryInvoiceSink()
    if database_url.startswith("sqlite://"):
        return SQLiteInvoiceSink(database_url.replace("sqlite://", "", 1))
    if database_url.startswith("postgres://") or database_url.startswith("postgresql://"):
        return PostgresInvoiceSink(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")
