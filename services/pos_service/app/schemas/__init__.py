from .payment_intent import (
    IntentItem,
    PaymentIntentCreate,
    PaymentIntentResponse,
    TerminalResultRequest,
)
from .sale import CashSaleCreate, SaleItemResponse, SaleResponse
from .system import MaintenanceStatus, PublicConfig

__all__ = [
    "IntentItem",
    "PaymentIntentCreate",
    "PaymentIntentResponse",
    "TerminalResultRequest",
    "CashSaleCreate",
    "SaleItemResponse",
    "SaleResponse",
    "MaintenanceStatus",
    "PublicConfig",
]
