from .api import PosApiClient, PosApiError
from .cart import Cart, CartLine
from .coordinator import (
    CartLockedError,
    CoordinatorError,
    CoordinatorHooks,
    EmptyCartError,
    PaymentMethodNotAllowedError,
    SaleCoordinator,
    SaleOutcome,
    SubmissionInFlightError,
)
from .models import CashSaleReceipt, IntentProjection, IntentStatus
from .poller import PollingTask, PollResult, ReconciliationPoller
from .presenter import DisplayState, StatusView, present
from .settings import ClientSettings, client_settings

__all__ = [
    "Cart",
    "CartLine",
    "CartLockedError",
    "CashSaleReceipt",
    "ClientSettings",
    "CoordinatorError",
    "CoordinatorHooks",
    "DisplayState",
    "EmptyCartError",
    "IntentProjection",
    "IntentStatus",
    "PaymentMethodNotAllowedError",
    "PollResult",
    "PollingTask",
    "PosApiClient",
    "PosApiError",
    "ReconciliationPoller",
    "SaleCoordinator",
    "SaleOutcome",
    "StatusView",
    "SubmissionInFlightError",
    "client_settings",
    "present",
]
