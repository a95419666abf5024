from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, UniqueConstraint, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from ..db.base import BaseModel


class PaymentIntentStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    declined = "declined"
    canceled = "canceled"
    error = "error"
    expired = "expired"


TERMINAL_STATUSES = frozenset(
    {
        PaymentIntentStatus.approved,
        PaymentIntentStatus.declined,
        PaymentIntentStatus.canceled,
        PaymentIntentStatus.error,
        PaymentIntentStatus.expired,
    }
)


class PaymentMethod(str, Enum):
    credit = "CREDIT"
    debit = "DEBIT"
    pix = "PIX"
    cash = "CASH"


ELECTRONIC_METHODS = frozenset({PaymentMethod.credit, PaymentMethod.debit, PaymentMethod.pix})


class PaymentIntent(BaseModel):
    __tablename__ = "payment_intents"
    __table_args__ = (
        UniqueConstraint("merchant_id", "idempotency_key", name="uq_payment_intent_idem"),
        Index("ix_payment_intent_status_expires", "status", "expires_at"),
    )

    merchant_id: Mapped[int] = mapped_column(index=True, nullable=False)
    sale_id: Mapped[int | None] = mapped_column(ForeignKey("sales.id"), nullable=True, default=None)
    print_job_id: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)

    # Minor currency units, computed server-side at creation and never rewritten.
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(8), nullable=False)

    status: Mapped[str] = mapped_column(
        String(12),
        nullable=False,
        server_default=text("'pending'"),
    )
    # [{"product_id": int, "quantity": int, "unit_price_cents": int}, ...]
    items: Mapped[list] = mapped_column(JSON, nullable=False)

    idempotency_key: Mapped[str | None] = mapped_column(String(64), nullable=True, default=None)
    provider: Mapped[str | None] = mapped_column(String(32), nullable=True, default=None)
    provider_ref: Mapped[str | None] = mapped_column(String(128), nullable=True, default=None)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)

    @property
    def is_terminal(self) -> bool:
        return PaymentIntentStatus(self.status) in TERMINAL_STATUSES
