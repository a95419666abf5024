from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Awaitable, Callable, Protocol

from loguru import logger

from .cart import Cart
from .models import CashSaleReceipt, IntentProjection
from .poller import PollingTask, ReconciliationPoller
from .presenter import DisplayState, StatusView, present

CASH = "CASH"


class CoordinatorError(Exception):
    pass


class EmptyCartError(CoordinatorError):
    pass


class CartLockedError(CoordinatorError):
    pass


class SubmissionInFlightError(CoordinatorError):
    pass


class PaymentMethodNotAllowedError(CoordinatorError):
    pass


class PaymentsApi(Protocol):
    async def create_intent(
        self,
        payment_method: str,
        cart: Cart,
        *,
        expected_amount_cents: int | None = None,
        idempotency_key: str | None = None,
    ) -> IntentProjection: ...

    async def create_cash_sale(self, cart: Cart, cash_received: Decimal | None = None) -> CashSaleReceipt: ...


@dataclass(frozen=True)
class SaleOutcome:
    view: StatusView
    cart: Cart
    intent: IntentProjection | None

    @property
    def approved(self) -> bool:
        return self.view.state is DisplayState.approved

    @property
    def sale_id(self) -> int | None:
        return self.intent.sale_id if self.intent else None

    @property
    def print_job_id(self) -> int | None:
        return self.intent.print_job_id if self.intent else None

    @property
    def total(self) -> Decimal:
        if self.intent is not None:
            return Decimal(self.intent.amount_cents) / 100
        return self.cart.total


@dataclass(frozen=True)
class CoordinatorHooks:
    on_status: Callable[[StatusView], None] | None = None
    on_approved: Callable[[SaleOutcome], None] | None = None
    refresh_catalog: Callable[[], Awaitable[None]] | None = None
    is_payment_allowed: Callable[[str], bool] | None = None


class SaleCoordinator:
    """Drives one checkout at a time from cart to a resolved payment.

    The cart is frozen while an intent is outstanding and is only cleared once
    the server reports the intent approved. Every other ending keeps the cart
    so the operator can retry without re-entering items.
    """

    def __init__(
        self,
        api: PaymentsApi,
        poller: ReconciliationPoller,
        hooks: CoordinatorHooks | None = None,
    ) -> None:
        self.api = api
        self.poller = poller
        self.hooks = hooks or CoordinatorHooks()
        self._cart = Cart()
        self._in_flight = False
        self._polling: PollingTask | None = None

    @property
    def cart(self) -> Cart:
        return self._cart

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def add_item(self, product_id: int, quantity: int, unit_price: Decimal, name: str = "") -> Cart:
        self._ensure_unlocked()
        self._cart = self._cart.add(product_id, quantity, unit_price, name)
        return self._cart

    def set_quantity(self, product_id: int, quantity: int) -> Cart:
        self._ensure_unlocked()
        self._cart = self._cart.set_quantity(product_id, quantity)
        return self._cart

    def remove_item(self, product_id: int) -> Cart:
        self._ensure_unlocked()
        self._cart = self._cart.remove(product_id)
        return self._cart

    def clear_cart(self) -> None:
        self._ensure_unlocked()
        self._cart = Cart()

    def stop_polling(self) -> None:
        """Stop watching the outstanding intent. The intent itself stays pending."""
        if self._polling is not None:
            self._polling.stop()

    async def checkout(self, payment_method: str) -> SaleOutcome:
        method = payment_method.strip().upper()
        if method == CASH:
            raise CoordinatorError("Use checkout_cash for CASH payments")
        snapshot = self._begin(method)
        try:
            intent = await self.api.create_intent(
                method,
                snapshot,
                expected_amount_cents=_cents(snapshot.total),
                idempotency_key=uuid.uuid4().hex,
            )
            self._emit(present(intent, 0.0, self.poller.timeout))

            self._polling = self.poller.track(
                intent.id,
                on_update=lambda projection, elapsed: self._emit(present(projection, elapsed, self.poller.timeout)),
                initial=intent,
            )
            result = await self._polling.wait()
            last = result.projection or intent
            view = present(last, result.elapsed, self.poller.timeout)
            outcome = SaleOutcome(view=view, cart=snapshot, intent=last)
            if result.timed_out or result.stopped:
                self._emit(view)
            if outcome.approved:
                await self._complete(outcome)
            else:
                logger.info("Checkout of intent {} ended as {}; cart kept", intent.id, view.state.value)
            return outcome
        finally:
            if self._polling is not None and not self._polling.done:
                self._polling.stop()
            self._polling = None
            self._in_flight = False

    async def checkout_cash(self, cash_received: Decimal | None = None) -> CashSaleReceipt:
        snapshot = self._begin(CASH)
        try:
            receipt = await self.api.create_cash_sale(snapshot, cash_received)
        finally:
            self._in_flight = False
        self._cart = Cart()
        logger.info("Cash sale {} completed (total_cents={})", receipt.id, receipt.total_cents)
        await self._refresh_catalog()
        return receipt

    def _begin(self, method: str) -> Cart:
        if self._in_flight:
            raise SubmissionInFlightError("A payment is already in progress")
        if self._cart.is_empty:
            raise EmptyCartError("Cart is empty")
        if self.hooks.is_payment_allowed is not None and not self.hooks.is_payment_allowed(method):
            raise PaymentMethodNotAllowedError(f"Payment method {method} is disabled")
        self._in_flight = True
        return self._cart

    async def _complete(self, outcome: SaleOutcome) -> None:
        if self._cart is outcome.cart:
            self._cart = Cart()
        logger.info("Sale {} approved (print job {})", outcome.sale_id, outcome.print_job_id)
        if self.hooks.on_approved is not None:
            self.hooks.on_approved(outcome)
        await self._refresh_catalog()

    async def _refresh_catalog(self) -> None:
        if self.hooks.refresh_catalog is None:
            return
        try:
            await self.hooks.refresh_catalog()
        except Exception:
            logger.exception("Catalog refresh after sale failed")

    def _emit(self, view: StatusView) -> None:
        if self.hooks.on_status is not None:
            self.hooks.on_status(view)

    def _ensure_unlocked(self) -> None:
        if self._in_flight:
            raise CartLockedError("Cart cannot change while a payment is in progress")


def _cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
