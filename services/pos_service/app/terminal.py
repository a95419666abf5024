from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol

from loguru import logger

from .errors import FinalizeError, IntentValidationError
from .models import PaymentIntent, PaymentIntentStatus

_STATUS_ALIASES = {
    "APPROVED": PaymentIntentStatus.approved,
    "PAID": PaymentIntentStatus.approved,
    "SUCCESS": PaymentIntentStatus.approved,
    "OK": PaymentIntentStatus.approved,
    "DECLINED": PaymentIntentStatus.declined,
    "DENIED": PaymentIntentStatus.declined,
    "CANCELED": PaymentIntentStatus.canceled,
    "CANCELLED": PaymentIntentStatus.canceled,
    "CANCELADO": PaymentIntentStatus.canceled,
    "ERROR": PaymentIntentStatus.error,
    "FAILED": PaymentIntentStatus.error,
    "FAIL": PaymentIntentStatus.error,
    "EXPIRED": PaymentIntentStatus.expired,
}

_PROVIDER_FIELDS = {
    "status": ("status", "paymentStatus", "result"),
    "amount": ("amount",),
    "payment_type": ("paymentType", "payment_type"),
    "authorization_code": ("authorizationCode", "authorization_code", "authCode", "auth_code"),
    "transaction_id": ("transactionId", "transaction_id", "tid", "nsu"),
    "order_id": ("orderId", "order_id"),
}


def normalize_outcome_status(raw: str) -> PaymentIntentStatus:
    status = _STATUS_ALIASES.get(str(raw or "").strip().upper())
    if status is None:
        raise IntentValidationError(
            "Invalid terminal status. Use: approved, declined, canceled, error, expired"
        )
    return status


def sanitize_provider_data(data: dict | None) -> dict | None:
    """Keep only whitelisted scalar fields; raw provider payloads may carry card data."""
    if not isinstance(data, dict):
        return None

    def pick(*keys: str) -> str | int | float | None:
        for key in keys:
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return value
        return None

    return {name: pick(*keys) for name, keys in _PROVIDER_FIELDS.items()}


@dataclass(frozen=True)
class TerminalOutcome:
    status: PaymentIntentStatus
    provider: str = "UNKNOWN"
    provider_ref: str | None = None
    data: dict | None = None

    @classmethod
    def from_raw(
        cls,
        status: str,
        provider: str | None = None,
        provider_ref: str | None = None,
        data: dict | None = None,
    ) -> TerminalOutcome:
        return cls(
            status=normalize_outcome_status(status),
            provider=(provider or "UNKNOWN").strip() or "UNKNOWN",
            provider_ref=provider_ref,
            data=sanitize_provider_data(data),
        )

    @property
    def authorization_code(self) -> str | None:
        value = (self.data or {}).get("authorization_code")
        return str(value) if value is not None else None

    @property
    def transaction_id(self) -> str | None:
        value = (self.data or {}).get("transaction_id") or self.provider_ref
        return str(value) if value is not None else None


ResultSink = Callable[[int, int, TerminalOutcome], Awaitable[object]]


class TerminalGateway(Protocol):
    async def dispatch(self, intent: PaymentIntent) -> None:
        """Hand an intent to the terminal; must return without waiting for an outcome."""

    async def aclose(self) -> None: ...


class ExternalTerminal:
    """Physical terminals pull pending intents and push results over HTTP."""

    async def dispatch(self, intent: PaymentIntent) -> None:
        logger.info(
            "Intent {} ({} {} cents) awaiting terminal pickup for merchant {}",
            intent.id,
            intent.payment_method,
            intent.amount_cents,
            intent.merchant_id,
        )

    async def aclose(self) -> None:
        return None


@dataclass
class SimulatedTerminal:
    """Development terminal that reports a fixed outcome after a delay.

    Redelivers while the issuer reports a retryable finalize failure, which is
    the same at-least-once contract a real acquirer callback follows.
    """

    deliver: ResultSink
    outcome: str = "approved"
    delay_seconds: float = 3.0
    max_attempts: int = 5
    _tasks: set[asyncio.Task] = field(default_factory=set, init=False, repr=False)

    async def dispatch(self, intent: PaymentIntent) -> None:
        task = asyncio.create_task(self._run(intent.merchant_id, intent.id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, merchant_id: int, intent_id: int) -> None:
        outcome = TerminalOutcome.from_raw(self.outcome, provider="SIMULATED", provider_ref=f"sim-{intent_id}")
        for attempt in range(1, self.max_attempts + 1):
            await asyncio.sleep(self.delay_seconds * attempt)
            try:
                await self.deliver(merchant_id, intent_id, outcome)
                return
            except FinalizeError as exc:
                logger.warning(
                    "Simulated terminal delivery {}/{} for intent {} failed: {}",
                    attempt,
                    self.max_attempts,
                    intent_id,
                    exc,
                )
        logger.error("Simulated terminal gave up on intent {} after {} attempts", intent_id, self.max_attempts)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
