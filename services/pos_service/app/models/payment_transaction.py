from __future__ import annotations

from sqlalchemy import JSON, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from ..db.base import BaseModel


class PaymentTransaction(BaseModel):
    """Audit row for every terminal result that moved an intent."""

    __tablename__ = "payment_transactions"

    intent_id: Mapped[int] = mapped_column(ForeignKey("payment_intents.id", ondelete="CASCADE"), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(12), nullable=False)
    provider: Mapped[str | None] = mapped_column(String(32), nullable=True, default=None)
    provider_ref: Mapped[str | None] = mapped_column(String(128), nullable=True, default=None)
    data: Mapped[dict | None] = mapped_column(JSON, nullable=True, default=None)
