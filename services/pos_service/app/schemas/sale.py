from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from .payment_intent import IntentItem


class CashSaleCreate(BaseModel):
    items: list[IntentItem] = Field(..., min_length=1)
    cash_received: Decimal | None = Field(None, ge=0)


class SaleItemResponse(BaseModel):
    product_id: int
    quantity: int
    unit_price_cents: int

    model_config = ConfigDict(from_attributes=True)


class SaleResponse(BaseModel):
    id: int
    intent_id: int | None
    payment_method: str
    status: str
    total_cents: int
    cash_received_cents: int | None
    change_cents: int | None
    print_job_id: int | None = None
    items: list[SaleItemResponse]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
