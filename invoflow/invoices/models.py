"""Invoice domain model."""

from __future__ import annotations

import uuid
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class InvoiceStatus(str, Enum):
    INITIATED = "Initiated"
    PAID = "Paid"
    CANCELLED = "Cancelled"


class Invoice(BaseModel):
    """An invoice as sent by the client and persisted by the activities.

    Accepts both snake_case and the camelCase field names used on the wire.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    client_name: str
    email_address: Optional[str] = None
    invoice_address: Optional[str] = None
    value: Decimal = Decimal("0")
    status: InvoiceStatus = InvoiceStatus.INITIATED

    def with_status(self, status: InvoiceStatus) -> "Invoice":
        return self.model_copy(update={"status": status})
