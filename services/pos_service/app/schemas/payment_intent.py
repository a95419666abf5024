from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from ..models import PaymentMethod


class IntentItem(BaseModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0)
    # Display price sent by the client; accepted for logging only, never used for pricing.
    unit_price: Decimal | None = None


class PaymentIntentCreate(BaseModel):
    payment_method: PaymentMethod
    items: list[IntentItem] = Field(..., min_length=1)
    expected_amount_cents: int | None = Field(None, gt=0)
    idempotency_key: str | None = Field(None, max_length=64)

    @field_validator("payment_method", mode="before")
    @classmethod
    def _normalize_method(cls, value: object) -> object:
        if isinstance(value, str):
            aliases = {"CREDITO": "CREDIT", "CRÉDITO": "CREDIT", "DEBITO": "DEBIT", "DÉBITO": "DEBIT", "DINHEIRO": "CASH"}
            upper = value.strip().upper()
            return aliases.get(upper, upper)
        return value


class PaymentIntentResponse(BaseModel):
    id: int
    status: str
    payment_method: str
    amount_cents: int
    currency: str
    sale_id: int | None
    print_job_id: int | None
    created_at: datetime
    expires_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def amount(self) -> Decimal:
        return (Decimal(self.amount_cents) / 100).quantize(Decimal("0.01"))


class TerminalResultRequest(BaseModel):
    status: str = Field(..., min_length=1, max_length=32)
    provider: str | None = Field(None, max_length=32)
    provider_ref: str | None = Field(None, max_length=128)
    data: dict | None = None
