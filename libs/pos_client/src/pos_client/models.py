from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict


class IntentStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    declined = "declined"
    canceled = "canceled"
    error = "error"
    expired = "expired"


TERMINAL_STATUSES = frozenset(
    {
        IntentStatus.approved,
        IntentStatus.declined,
        IntentStatus.canceled,
        IntentStatus.error,
        IntentStatus.expired,
    }
)


class IntentProjection(BaseModel):
    """Client view of a payment intent as returned by the POS service."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: int
    status: IntentStatus
    payment_method: str
    amount_cents: int
    amount: Decimal | None = None
    currency: str = "BRL"
    sale_id: int | None = None
    print_job_id: int | None = None
    created_at: datetime
    expires_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class CashSaleReceipt(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: int
    total_cents: int
    cash_received_cents: int | None = None
    change_cents: int | None = None
    print_job_id: int | None = None
