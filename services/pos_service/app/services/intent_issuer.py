from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db.base import utcnow
from ..errors import (
    FinalizeError,
    InsufficientStockError,
    IntentNotFoundError,
    IntentValidationError,
    PosError,
)
from ..metrics import (
    payment_intent_created_total,
    payment_intent_duplicate_result_total,
    payment_intent_expired_total,
    payment_intent_finalize_failure_total,
    payment_intent_resolved_total,
)
from ..models import (
    ELECTRONIC_METHODS,
    PaymentIntent,
    PaymentIntentStatus,
    PaymentMethod,
    PaymentTransaction,
)
from ..settings import pos_settings
from ..terminal import ExternalTerminal, ResultSink, TerminalGateway, TerminalOutcome
from .sales import (
    create_sale,
    decrement_stock,
    enqueue_print_job,
    load_merchant_settings,
    price_items,
)


class IntentIssuer:
    """Server-side authority for payment intents.

    Every status change is a conditional update guarded by ``status = 'pending'``;
    whichever writer matches the row first wins and every later writer
    (duplicate delivery, sweep, concurrent callback) becomes a no-op.
    """

    def __init__(
        self,
        session: AsyncSession,
        terminal: TerminalGateway | None = None,
        intent_ttl: timedelta | None = None,
        currency: str | None = None,
    ) -> None:
        settings = pos_settings()
        self.session = session
        self.terminal = terminal or ExternalTerminal()
        self.intent_ttl = intent_ttl or timedelta(seconds=settings.intent_ttl_seconds)
        self.currency = currency or settings.currency

    async def create_intent(
        self,
        merchant_id: int,
        payment_method: PaymentMethod,
        items: Iterable[tuple[int, int]],
        *,
        expected_amount_cents: int | None = None,
        idempotency_key: str | None = None,
    ) -> tuple[PaymentIntent, bool]:
        """Validate, price and persist a pending intent, then dispatch it.

        Returns ``(intent, created)``; ``created`` is False on an idempotent replay.
        """
        if payment_method not in ELECTRONIC_METHODS:
            raise IntentValidationError("Use /api/v1/sales/cash for CASH payments")

        try:
            async with self.session.begin():
                if idempotency_key:
                    existing = await self._find_by_idempotency_key(merchant_id, idempotency_key)
                    if existing is not None:
                        return existing, False

                settings = await load_merchant_settings(self.session, merchant_id)
                if not settings.allows(payment_method):
                    raise IntentValidationError(
                        f"Payment method {payment_method.value} is disabled for this merchant"
                    )

                priced = await price_items(self.session, merchant_id, items, settings)
                amount_cents = sum(item.total_cents for item in priced)
                if expected_amount_cents is not None and expected_amount_cents != amount_cents:
                    raise IntentValidationError("amount does not match server-calculated total")

                now = utcnow()
                intent = PaymentIntent(
                    merchant_id=merchant_id,
                    amount_cents=amount_cents,
                    currency=self.currency,
                    payment_method=payment_method.value,
                    status=PaymentIntentStatus.pending.value,
                    items=[item.snapshot() for item in priced],
                    idempotency_key=idempotency_key,
                    created_at=now,
                    updated_at=now,
                    expires_at=now + self.intent_ttl,
                )
                self.session.add(intent)
                await self.session.flush()
        except IntegrityError:
            # Lost a race on (merchant_id, idempotency_key); the winner's row is the answer.
            if not idempotency_key:
                raise
            existing = await self._find_by_idempotency_key(merchant_id, idempotency_key)
            if existing is None:
                raise
            return existing, False

        payment_intent_created_total.labels(payment_method=intent.payment_method).inc()
        logger.info(
            "Created intent {} for merchant {} ({} {} cents)",
            intent.id,
            merchant_id,
            intent.payment_method,
            intent.amount_cents,
        )
        await self._dispatch(intent)
        return intent, True

    async def get_status(self, merchant_id: int, intent_id: int) -> PaymentIntent:
        intent = await self.session.scalar(
            select(PaymentIntent)
            .where(PaymentIntent.id == intent_id, PaymentIntent.merchant_id == merchant_id)
            .execution_options(populate_existing=True)
        )
        if intent is None:
            raise IntentNotFoundError(intent_id)
        return intent

    async def list_pending(self, merchant_id: int, limit: int = 50) -> list[PaymentIntent]:
        result = await self.session.scalars(
            select(PaymentIntent)
            .where(
                PaymentIntent.merchant_id == merchant_id,
                PaymentIntent.status == PaymentIntentStatus.pending.value,
                PaymentIntent.expires_at > utcnow(),
            )
            .order_by(PaymentIntent.created_at, PaymentIntent.id)
            .limit(limit)
        )
        return list(result)

    async def on_terminal_result(
        self,
        merchant_id: int | None,
        intent_id: int,
        outcome: TerminalOutcome,
    ) -> PaymentIntent:
        """Apply one terminal outcome. Safe to call any number of times per intent."""
        if outcome.status is PaymentIntentStatus.pending:
            raise IntentValidationError("A terminal result cannot move an intent back to pending")
        if outcome.status is PaymentIntentStatus.approved:
            return await self._approve(merchant_id, intent_id, outcome)
        return await self._fail(merchant_id, intent_id, outcome.status, outcome)

    async def expire_sweep(self, now: datetime | None = None) -> int:
        """Expire every pending intent whose deadline has passed. Returns the count."""
        now = now or utcnow()
        async with self.session.begin():
            result = await self.session.execute(
                update(PaymentIntent)
                .where(
                    PaymentIntent.status == PaymentIntentStatus.pending.value,
                    PaymentIntent.expires_at <= now,
                )
                .values(status=PaymentIntentStatus.expired.value, failed_at=now)
                .execution_options(synchronize_session=False)
            )
        expired = result.rowcount or 0
        if expired:
            payment_intent_expired_total.inc(expired)
            payment_intent_resolved_total.labels(status=PaymentIntentStatus.expired.value).inc(expired)
            logger.info("Expiry sweep moved {} pending intent(s) to expired", expired)
        return expired

    async def _approve(self, merchant_id: int | None, intent_id: int, outcome: TerminalOutcome) -> PaymentIntent:
        try:
            async with self.session.begin():
                intent = await self._load_for_update(merchant_id, intent_id)
                if intent.is_terminal:
                    return self._duplicate(intent, outcome)

                now = utcnow()
                if not await self._transition(
                    intent.id,
                    PaymentIntentStatus.approved,
                    approved_at=now,
                    provider=outcome.provider,
                    provider_ref=outcome.provider_ref,
                ):
                    return self._duplicate(intent, outcome)

                settings = await load_merchant_settings(self.session, intent.merchant_id)
                await decrement_stock(self.session, intent.merchant_id, intent.items, settings)
                sale = await create_sale(
                    self.session,
                    merchant_id=intent.merchant_id,
                    payment_method=PaymentMethod(intent.payment_method),
                    lines=intent.items,
                    intent_id=intent.id,
                    authorization_code=outcome.authorization_code,
                    transaction_id=outcome.transaction_id,
                    acquirer=outcome.provider,
                    now=now,
                )
                job = await enqueue_print_job(self.session, sale, intent.items)
                await self.session.execute(
                    update(PaymentIntent)
                    .where(PaymentIntent.id == intent.id)
                    .values(sale_id=sale.id, print_job_id=job.id)
                    .execution_options(synchronize_session=False)
                )
                self._record(intent.id, PaymentIntentStatus.approved, outcome)
                await self.session.flush()
                await self.session.refresh(intent)
        except InsufficientStockError as exc:
            # Stock moved after the intent was priced; retrying cannot succeed.
            logger.warning("Approval for intent {} cannot be applied: {}", intent_id, exc)
            failure = TerminalOutcome(
                status=PaymentIntentStatus.error,
                provider=outcome.provider,
                provider_ref=outcome.provider_ref,
                data={**(outcome.data or {}), "error": "INSUFFICIENT_STOCK", "product_id": exc.product_id},
            )
            return await self._fail(merchant_id, intent_id, PaymentIntentStatus.error, failure)
        except PosError:
            raise
        except Exception as exc:
            payment_intent_finalize_failure_total.inc()
            logger.exception("Finalize of intent {} rolled back; intent stays pending (retryable)", intent_id)
            raise FinalizeError(intent_id, exc) from exc

        payment_intent_resolved_total.labels(status=PaymentIntentStatus.approved.value).inc()
        logger.info("Intent {} approved: sale {} print job {}", intent_id, sale.id, job.id)
        return intent

    async def _fail(
        self,
        merchant_id: int | None,
        intent_id: int,
        status: PaymentIntentStatus,
        outcome: TerminalOutcome,
    ) -> PaymentIntent:
        async with self.session.begin():
            intent = await self._load_for_update(merchant_id, intent_id)
            if intent.is_terminal:
                return self._duplicate(intent, outcome)
            if not await self._transition(
                intent.id,
                status,
                failed_at=utcnow(),
                provider=outcome.provider,
                provider_ref=outcome.provider_ref,
            ):
                return self._duplicate(intent, outcome)
            self._record(intent.id, status, outcome)
            await self.session.flush()
            await self.session.refresh(intent)

        payment_intent_resolved_total.labels(status=status.value).inc()
        logger.info("Intent {} moved to {}", intent_id, status.value)
        return intent

    async def _transition(self, intent_id: int, status: PaymentIntentStatus, **values: object) -> bool:
        result = await self.session.execute(
            update(PaymentIntent)
            .where(
                PaymentIntent.id == intent_id,
                PaymentIntent.status == PaymentIntentStatus.pending.value,
            )
            .values(status=status.value, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _record(self, intent_id: int, status: PaymentIntentStatus, outcome: TerminalOutcome) -> None:
        self.session.add(
            PaymentTransaction(
                intent_id=intent_id,
                status=status.value,
                provider=outcome.provider,
                provider_ref=outcome.provider_ref,
                data=outcome.data,
            )
        )

    def _duplicate(self, intent: PaymentIntent, outcome: TerminalOutcome) -> PaymentIntent:
        payment_intent_duplicate_result_total.labels(status=outcome.status.value).inc()
        if outcome.status is PaymentIntentStatus.approved and intent.status != PaymentIntentStatus.approved.value:
            logger.warning(
                "Late approval for intent {} ignored; intent already {} (provider_ref={})",
                intent.id,
                intent.status,
                outcome.provider_ref,
            )
        else:
            logger.info("Duplicate {} result for intent {} ignored (status={})", outcome.status.value, intent.id, intent.status)
        return intent

    async def _load_for_update(self, merchant_id: int | None, intent_id: int) -> PaymentIntent:
        stmt = (
            select(PaymentIntent)
            .where(PaymentIntent.id == intent_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if merchant_id is not None:
            stmt = stmt.where(PaymentIntent.merchant_id == merchant_id)
        intent = await self.session.scalar(stmt)
        if intent is None:
            raise IntentNotFoundError(intent_id)
        return intent

    async def _find_by_idempotency_key(self, merchant_id: int, key: str) -> PaymentIntent | None:
        return await self.session.scalar(
            select(PaymentIntent).where(
                PaymentIntent.merchant_id == merchant_id,
                PaymentIntent.idempotency_key == key,
            )
        )

    async def _dispatch(self, intent: PaymentIntent) -> None:
        try:
            await self.terminal.dispatch(intent)
        except Exception:
            # The intent is already committed; the sweep or a terminal pull still resolves it.
            logger.exception("Dispatch of intent {} to terminal failed", intent.id)


def session_result_sink(session_factory: async_sessionmaker[AsyncSession]) -> ResultSink:
    """Deliver terminal outcomes through a fresh session per result."""

    async def deliver(merchant_id: int, intent_id: int, outcome: TerminalOutcome) -> PaymentIntent:
        async with session_factory() as session:
            return await IntentIssuer(session).on_terminal_result(merchant_id, intent_id, outcome)

    return deliver
