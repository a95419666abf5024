from .payment_intent import (
    ELECTRONIC_METHODS,
    TERMINAL_STATUSES,
    PaymentIntent,
    PaymentIntentStatus,
    PaymentMethod,
)
from .product import Product
from .merchant_settings import MerchantSettings
from .sale import Sale, SaleItem, SaleStatus
from .print_job import PrintJob, PrintJobStatus
from .payment_transaction import PaymentTransaction

__all__ = [
    "ELECTRONIC_METHODS",
    "TERMINAL_STATUSES",
    "PaymentIntent",
    "PaymentIntentStatus",
    "PaymentMethod",
    "Product",
    "MerchantSettings",
    "Sale",
    "SaleItem",
    "SaleStatus",
    "PrintJob",
    "PrintJobStatus",
    "PaymentTransaction",
]
