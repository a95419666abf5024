from __future__ import annotations

from sqlalchemy import Boolean
from sqlalchemy.orm import Mapped, mapped_column

from ..db.base import BaseModel
from .payment_intent import PaymentMethod


class MerchantSettings(BaseModel):
    __tablename__ = "merchant_settings"

    merchant_id: Mapped[int] = mapped_column(unique=True, index=True, nullable=False)

    allow_credit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_debit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_pix: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_cash: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    stock_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_negative_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    @classmethod
    def defaults(cls, merchant_id: int) -> MerchantSettings:
        """Transient settings used when a merchant has never saved any."""
        return cls(
            merchant_id=merchant_id,
            allow_credit=True,
            allow_debit=True,
            allow_pix=True,
            allow_cash=True,
            stock_enabled=True,
            allow_negative_stock=False,
        )

    def allows(self, method: PaymentMethod) -> bool:
        return {
            PaymentMethod.credit: self.allow_credit,
            PaymentMethod.debit: self.allow_debit,
            PaymentMethod.pix: self.allow_pix,
            PaymentMethod.cash: self.allow_cash,
        }[method]
