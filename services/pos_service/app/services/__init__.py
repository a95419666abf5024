"""Service-layer helpers for the point-of-sale payment flow."""

from .intent_issuer import IntentIssuer, session_result_sink
from .sales import (
    PricedItem,
    create_cash_sale,
    create_sale,
    decrement_stock,
    enqueue_print_job,
    load_merchant_settings,
    price_items,
    to_cents,
)

__all__ = [
    "IntentIssuer",
    "session_result_sink",
    "PricedItem",
    "create_cash_sale",
    "create_sale",
    "decrement_stock",
    "enqueue_print_job",
    "load_merchant_settings",
    "price_items",
    "to_cents",
]
