from __future__ import annotations

from enum import Enum

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.base import BaseModel


class SaleStatus(str, Enum):
    paid = "paid"
    canceled = "canceled"


class Sale(BaseModel):
    __tablename__ = "sales"

    merchant_id: Mapped[int] = mapped_column(index=True, nullable=False)
    # Unique: a second sale for the same intent fails the finalize transaction.
    intent_id: Mapped[int | None] = mapped_column(Integer, unique=True, nullable=True, default=None)
    payment_method: Mapped[str] = mapped_column(String(8), nullable=False)
    status: Mapped[str] = mapped_column(String(12), nullable=False, default=SaleStatus.paid.value)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    cash_received_cents: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)
    change_cents: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)

    authorization_code: Mapped[str | None] = mapped_column(String(64), nullable=True, default=None)
    transaction_id: Mapped[str | None] = mapped_column(String(128), nullable=True, default=None)
    acquirer: Mapped[str | None] = mapped_column(String(32), nullable=True, default=None)

    items = relationship(
        "SaleItem",
        back_populates="sale",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class SaleItem(BaseModel):
    __tablename__ = "sale_items"

    sale_id: Mapped[int] = mapped_column(ForeignKey("sales.id", ondelete="CASCADE"), index=True, nullable=False)
    product_id: Mapped[int] = mapped_column(index=True, nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    sale = relationship("Sale", back_populates="items")
