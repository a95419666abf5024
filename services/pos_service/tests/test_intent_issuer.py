from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from services.pos_service.app.db.base import Base
from services.pos_service.app.errors import FinalizeError, IntentNotFoundError, IntentValidationError
from services.pos_service.app.models import PaymentIntentStatus, PaymentMethod, Product, Sale
from services.pos_service.app.services import IntentIssuer, session_result_sink
from services.pos_service.app.terminal import SimulatedTerminal, TerminalOutcome, normalize_outcome_status

MERCHANT_ID = 3


class RecordingTerminal:
    def __init__(self) -> None:
        self.dispatched: list[int] = []

    async def dispatch(self, intent) -> None:
        self.dispatched.append(intent.id)

    async def aclose(self) -> None:
        return None


class BrokenTerminal(RecordingTerminal):
    async def dispatch(self, intent) -> None:
        raise ConnectionError("terminal offline")


@pytest_asyncio.fixture()
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with factory() as session:
        session.add(Product(merchant_id=MERCHANT_ID, name="Water", price=Decimal("3.00"), stock=20, active=True))
        await session.commit()
    yield factory
    await engine.dispose()


async def _new_intent(session_factory, terminal=None, quantity: int = 2, **kwargs):
    async with session_factory() as session:
        issuer = IntentIssuer(session, terminal=terminal or RecordingTerminal())
        intent, created = await issuer.create_intent(MERCHANT_ID, PaymentMethod.credit, [(1, quantity)], **kwargs)
        assert created
        return intent


async def _deliver(session_factory, intent_id: int, status: str, **kwargs):
    async with session_factory() as session:
        outcome = TerminalOutcome.from_raw(status, **kwargs)
        return await IntentIssuer(session).on_terminal_result(MERCHANT_ID, intent_id, outcome)


@pytest.mark.asyncio
async def test_create_intent_sets_deadline_and_snapshot(session_factory):
    async with session_factory() as session:
        issuer = IntentIssuer(session, terminal=RecordingTerminal(), intent_ttl=timedelta(minutes=5))
        intent, created = await issuer.create_intent(MERCHANT_ID, PaymentMethod.pix, [(1, 1), (1, 2)])

    assert created
    assert intent.status == PaymentIntentStatus.pending.value
    assert intent.amount_cents == 900
    assert intent.items == [{"product_id": 1, "quantity": 3, "unit_price_cents": 300}]
    assert intent.expires_at - intent.created_at == timedelta(minutes=5)
    assert issuer.terminal.dispatched == [intent.id]


@pytest.mark.asyncio
async def test_create_intent_rejects_cash(session_factory):
    async with session_factory() as session:
        with pytest.raises(IntentValidationError):
            await IntentIssuer(session).create_intent(MERCHANT_ID, PaymentMethod.cash, [(1, 1)])


@pytest.mark.asyncio
async def test_dispatch_failure_does_not_lose_the_intent(session_factory):
    intent = await _new_intent(session_factory, terminal=BrokenTerminal())
    async with session_factory() as session:
        stored = await IntentIssuer(session).get_status(MERCHANT_ID, intent.id)
    assert stored.status == PaymentIntentStatus.pending.value


@pytest.mark.asyncio
async def test_get_status_is_scoped_to_merchant(session_factory):
    intent = await _new_intent(session_factory)
    async with session_factory() as session:
        with pytest.raises(IntentNotFoundError):
            await IntentIssuer(session).get_status(MERCHANT_ID + 1, intent.id)


@pytest.mark.asyncio
async def test_late_approval_after_client_gave_up_still_finalizes(session_factory):
    # The client stops polling long before the server deadline; the intent stays pending.
    intent = await _new_intent(session_factory)
    async with session_factory() as session:
        still_pending = await IntentIssuer(session).get_status(MERCHANT_ID, intent.id)
    assert still_pending.status == PaymentIntentStatus.pending.value

    approved = await _deliver(session_factory, intent.id, "SUCCESS", provider="CIELO", provider_ref="nsu-77")
    assert approved.status == PaymentIntentStatus.approved.value
    assert approved.sale_id is not None
    assert approved.provider == "CIELO"
    assert approved.approved_at is not None


@pytest.mark.asyncio
async def test_expired_intent_never_becomes_approved(session_factory):
    intent = await _new_intent(session_factory)
    async with session_factory() as session:
        expired = await IntentIssuer(session).expire_sweep(now=intent.expires_at + timedelta(seconds=1))
    assert expired == 1

    result = await _deliver(session_factory, intent.id, "approved")
    assert result.status == PaymentIntentStatus.expired.value
    assert result.sale_id is None
    async with session_factory() as session:
        assert await session.scalar(select(func.count()).select_from(Sale)) == 0


@pytest.mark.asyncio
async def test_first_terminal_result_wins(session_factory):
    intent = await _new_intent(session_factory)
    canceled = await _deliver(session_factory, intent.id, "CANCELLED")
    declined = await _deliver(session_factory, intent.id, "declined")
    assert canceled.status == declined.status == PaymentIntentStatus.canceled.value
    assert declined.failed_at is not None


@pytest.mark.asyncio
async def test_pending_outcome_is_rejected(session_factory):
    intent = await _new_intent(session_factory)
    async with session_factory() as session:
        with pytest.raises(IntentValidationError):
            await IntentIssuer(session).on_terminal_result(
                MERCHANT_ID, intent.id, TerminalOutcome(status=PaymentIntentStatus.pending)
            )


def test_outcome_normalization_and_sanitizing():
    assert normalize_outcome_status(" paid ") is PaymentIntentStatus.approved
    assert normalize_outcome_status("CANCELADO") is PaymentIntentStatus.canceled
    assert normalize_outcome_status("fail") is PaymentIntentStatus.error
    with pytest.raises(IntentValidationError):
        normalize_outcome_status("")

    outcome = TerminalOutcome.from_raw(
        "approved",
        provider="  ",
        data={"authCode": "XY12", "nsu": 991, "pan": "5555444433332222", "amount": "10.00"},
    )
    assert outcome.provider == "UNKNOWN"
    assert outcome.authorization_code == "XY12"
    assert outcome.transaction_id == "991"
    assert "pan" not in outcome.data
    assert outcome.data["amount"] == "10.00"


@pytest.mark.asyncio
async def test_simulated_terminal_redelivers_after_finalize_failure(session_factory):
    delivered = asyncio.Event()
    attempts: list[int] = []
    sink = session_result_sink(session_factory)

    async def deliver(merchant_id, intent_id, outcome):
        attempts.append(intent_id)
        if len(attempts) == 1:
            raise FinalizeError(intent_id, RuntimeError("database busy"))
        result = await sink(merchant_id, intent_id, outcome)
        delivered.set()
        return result

    terminal = SimulatedTerminal(deliver=deliver, outcome="approved", delay_seconds=0)
    intent = await _new_intent(session_factory, terminal=terminal)
    await asyncio.wait_for(delivered.wait(), timeout=2)
    await terminal.aclose()

    assert len(attempts) == 2
    async with session_factory() as session:
        stored = await IntentIssuer(session).get_status(MERCHANT_ID, intent.id)
    assert stored.status == PaymentIntentStatus.approved.value
    assert stored.provider == "SIMULATED"
