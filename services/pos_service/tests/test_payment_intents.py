from __future__ import annotations

from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from services.pos_service.app.db.base import Base
from services.pos_service.app.dependencies import get_current_merchant_id, get_session
from services.pos_service.app.main import create_app
from services.pos_service.app.models import (
    MerchantSettings,
    PaymentIntent,
    PaymentTransaction,
    PrintJob,
    Product,
    Sale,
)
from services.pos_service.app.services import intent_issuer as intent_issuer_module
from services.pos_service.app import settings as pos_settings_module

MERCHANT_ID = 7


def _asgi_client(app):
    transport = ASGITransport(app=app)
    return AsyncClient(transport=transport, base_url="http://testserver")


class RecordingTerminal:
    def __init__(self) -> None:
        self.dispatched: list[int] = []

    async def dispatch(self, intent) -> None:
        self.dispatched.append(intent.id)

    async def aclose(self) -> None:
        return None


async def _seed_products(session_factory, *rows: tuple[str, str, int]) -> list[int]:
    async with session_factory() as session:
        products = [
            Product(merchant_id=MERCHANT_ID, name=name, price=Decimal(price), stock=stock, active=True)
            for name, price, stock in rows
        ]
        session.add_all(products)
        await session.commit()
        return [product.id for product in products]


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


async def _stock(session_factory, product_id: int) -> int:
    async with session_factory() as session:
        return await session.scalar(select(Product.stock).where(Product.id == product_id))


@pytest_asyncio.fixture()
async def pos_test_app():
    pos_settings_module.pos_settings.cache_clear()

    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    async def _override_session() -> AsyncSession:
        session = session_factory()
        try:
            yield session
        finally:
            await session.close()

    def _override_current_merchant() -> int:
        return MERCHANT_ID

    app = create_app()
    app.state.terminal = RecordingTerminal()
    app.dependency_overrides[get_session] = _override_session
    app.dependency_overrides[get_current_merchant_id] = _override_current_merchant
    yield app, session_factory

    await engine.dispose()
    pos_settings_module.pos_settings.cache_clear()


async def _create_intent(client: AsyncClient, items: list[dict], method: str = "CREDIT", **extra) -> dict:
    response = await client.post(
        "/api/v1/payments/intents",
        json={"payment_method": method, "items": items, **extra},
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_create_intent_prices_items_from_catalog(pos_test_app):
    app, session_factory = pos_test_app
    coffee, bread = await _seed_products(session_factory, ("Coffee", "4.50", 10), ("Bread", "2.25", 5))
    async with _asgi_client(app) as client:
        body = await _create_intent(
            client,
            [
                {"product_id": coffee, "quantity": 2, "unit_price": "0.01"},
                {"product_id": bread, "quantity": 1},
            ],
        )

    assert body["status"] == "pending"
    assert body["payment_method"] == "CREDIT"
    assert body["amount_cents"] == 1125
    assert Decimal(body["amount"]) == Decimal("11.25")
    assert body["currency"] == "BRL"
    assert body["sale_id"] is None
    assert app.state.terminal.dispatched == [body["id"]]


@pytest.mark.asyncio
async def test_approved_result_finalizes_sale_once(pos_test_app):
    app, session_factory = pos_test_app
    (coffee,) = await _seed_products(session_factory, ("Coffee", "4.50", 10))
    async with _asgi_client(app) as client:
        intent = await _create_intent(client, [{"product_id": coffee, "quantity": 2}])
        result = await client.post(
            f"/api/v1/payments/intents/{intent['id']}/result",
            json={
                "status": "APPROVED",
                "provider": "STONE",
                "provider_ref": "tx-1",
                "data": {"authorizationCode": "A1B2", "cardNumber": "4111111111111111"},
            },
        )
        assert result.status_code == 200, result.text
        approved = result.json()
        assert approved["status"] == "approved"
        assert approved["sale_id"] is not None
        assert approved["print_job_id"] is not None

        current = await client.get(f"/api/v1/payments/intents/{intent['id']}")
        assert current.json() == approved

    assert await _stock(session_factory, coffee) == 8
    async with session_factory() as session:
        sale = await session.scalar(select(Sale).where(Sale.intent_id == intent["id"]))
        assert sale.total_cents == 900
        assert sale.authorization_code == "A1B2"
        assert sale.transaction_id == "tx-1"
        transaction = await session.scalar(select(PaymentTransaction))
        assert "cardNumber" not in transaction.data
        assert transaction.data["authorization_code"] == "A1B2"


@pytest.mark.asyncio
async def test_duplicate_approval_is_a_no_op(pos_test_app):
    app, session_factory = pos_test_app
    (coffee,) = await _seed_products(session_factory, ("Coffee", "4.50", 10))
    async with _asgi_client(app) as client:
        intent = await _create_intent(client, [{"product_id": coffee, "quantity": 1}])
        url = f"/api/v1/payments/intents/{intent['id']}/result"
        first = await client.post(url, json={"status": "approved", "provider_ref": "tx-9"})
        second = await client.post(url, json={"status": "PAID", "provider_ref": "tx-9"})

    assert first.status_code == second.status_code == 200
    assert first.json()["sale_id"] == second.json()["sale_id"]
    assert await _count(session_factory, Sale) == 1
    assert await _count(session_factory, PrintJob) == 1
    assert await _stock(session_factory, coffee) == 9


@pytest.mark.asyncio
async def test_declined_intent_ignores_late_approval(pos_test_app):
    app, session_factory = pos_test_app
    (coffee,) = await _seed_products(session_factory, ("Coffee", "4.50", 10))
    async with _asgi_client(app) as client:
        intent = await _create_intent(client, [{"product_id": coffee, "quantity": 1}], method="DEBIT")
        url = f"/api/v1/payments/intents/{intent['id']}/result"
        declined = await client.post(url, json={"status": "DECLINED"})
        assert declined.json()["status"] == "declined"

        late = await client.post(url, json={"status": "APPROVED"})
        assert late.status_code == 200
        assert late.json()["status"] == "declined"
        assert late.json()["sale_id"] is None

    assert await _count(session_factory, Sale) == 0
    assert await _stock(session_factory, coffee) == 10


@pytest.mark.asyncio
async def test_idempotency_key_returns_existing_intent(pos_test_app):
    app, session_factory = pos_test_app
    (coffee,) = await _seed_products(session_factory, ("Coffee", "4.50", 10))
    payload = {
        "payment_method": "PIX",
        "items": [{"product_id": coffee, "quantity": 1}],
        "idempotency_key": "cart-123",
    }
    async with _asgi_client(app) as client:
        first = await client.post("/api/v1/payments/intents", json=payload)
        second = await client.post("/api/v1/payments/intents", json=payload)

    assert first.status_code == 201
    assert second.status_code == 200
    assert first.json()["id"] == second.json()["id"]
    assert await _count(session_factory, PaymentIntent) == 1
    assert len(app.state.terminal.dispatched) == 1


@pytest.mark.asyncio
async def test_expected_amount_mismatch_is_rejected(pos_test_app):
    app, session_factory = pos_test_app
    (coffee,) = await _seed_products(session_factory, ("Coffee", "4.50", 10))
    async with _asgi_client(app) as client:
        response = await client.post(
            "/api/v1/payments/intents",
            json={
                "payment_method": "CREDIT",
                "items": [{"product_id": coffee, "quantity": 2}],
                "expected_amount_cents": 800,
            },
        )

    assert response.status_code == 400
    assert "amount does not match" in response.json()["detail"]
    assert await _count(session_factory, PaymentIntent) == 0


@pytest.mark.asyncio
async def test_create_intent_validation_errors(pos_test_app):
    app, session_factory = pos_test_app
    (coffee,) = await _seed_products(session_factory, ("Coffee", "4.50", 1))
    async with _asgi_client(app) as client:
        missing = await client.post(
            "/api/v1/payments/intents",
            json={"payment_method": "CREDIT", "items": [{"product_id": 999, "quantity": 1}]},
        )
        assert missing.status_code == 404

        short = await client.post(
            "/api/v1/payments/intents",
            json={"payment_method": "CREDIT", "items": [{"product_id": coffee, "quantity": 2}]},
        )
        assert short.status_code == 409

        cash = await client.post(
            "/api/v1/payments/intents",
            json={"payment_method": "DINHEIRO", "items": [{"product_id": coffee, "quantity": 1}]},
        )
        assert cash.status_code == 400

        empty = await client.post("/api/v1/payments/intents", json={"payment_method": "CREDIT", "items": []})
        assert empty.status_code == 422

    assert await _count(session_factory, PaymentIntent) == 0


@pytest.mark.asyncio
async def test_payment_method_alias_and_merchant_flags(pos_test_app):
    app, session_factory = pos_test_app
    (coffee,) = await _seed_products(session_factory, ("Coffee", "4.50", 10))
    async with session_factory() as session:
        settings = MerchantSettings.defaults(MERCHANT_ID)
        settings.allow_pix = False
        session.add(settings)
        await session.commit()

    async with _asgi_client(app) as client:
        credit = await _create_intent(client, [{"product_id": coffee, "quantity": 1}], method="credito")
        assert credit["payment_method"] == "CREDIT"

        pix = await client.post(
            "/api/v1/payments/intents",
            json={"payment_method": "PIX", "items": [{"product_id": coffee, "quantity": 1}]},
        )
        assert pix.status_code == 400
        assert "disabled" in pix.json()["detail"]


@pytest.mark.asyncio
async def test_result_rejects_pending_and_unknown_status(pos_test_app):
    app, session_factory = pos_test_app
    (coffee,) = await _seed_products(session_factory, ("Coffee", "4.50", 10))
    async with _asgi_client(app) as client:
        intent = await _create_intent(client, [{"product_id": coffee, "quantity": 1}])
        url = f"/api/v1/payments/intents/{intent['id']}/result"
        assert (await client.post(url, json={"status": "pending"})).status_code == 400
        assert (await client.post(url, json={"status": "maybe"})).status_code == 400

        unknown = await client.post("/api/v1/payments/intents/4040/result", json={"status": "approved"})
        assert unknown.status_code == 404

        current = await client.get(f"/api/v1/payments/intents/{intent['id']}")
        assert current.json()["status"] == "pending"


@pytest.mark.asyncio
async def test_approval_without_stock_moves_intent_to_error(pos_test_app):
    app, session_factory = pos_test_app
    (coffee,) = await _seed_products(session_factory, ("Coffee", "4.50", 1))
    async with _asgi_client(app) as client:
        intent = await _create_intent(client, [{"product_id": coffee, "quantity": 1}])
        cash = await client.post("/api/v1/sales/cash", json={"items": [{"product_id": coffee, "quantity": 1}]})
        assert cash.status_code == 201, cash.text

        result = await client.post(
            f"/api/v1/payments/intents/{intent['id']}/result",
            json={"status": "approved"},
        )

    assert result.status_code == 200
    assert result.json()["status"] == "error"
    assert result.json()["sale_id"] is None
    assert await _stock(session_factory, coffee) == 0
    async with session_factory() as session:
        sale = await session.scalar(select(Sale).where(Sale.intent_id == intent["id"]))
        assert sale is None
        transaction = await session.scalar(select(PaymentTransaction))
        assert transaction.data["error"] == "INSUFFICIENT_STOCK"


@pytest.mark.asyncio
async def test_finalize_failure_keeps_intent_pending_and_retryable(pos_test_app, monkeypatch):
    app, session_factory = pos_test_app
    (coffee,) = await _seed_products(session_factory, ("Coffee", "4.50", 10))

    original = intent_issuer_module.enqueue_print_job
    state = {"fail": True}

    async def flaky_enqueue(session, sale, lines):
        if state["fail"]:
            raise RuntimeError("print queue unavailable")
        return await original(session, sale, lines)

    monkeypatch.setattr(intent_issuer_module, "enqueue_print_job", flaky_enqueue)

    async with _asgi_client(app) as client:
        intent = await _create_intent(client, [{"product_id": coffee, "quantity": 3}])
        url = f"/api/v1/payments/intents/{intent['id']}/result"

        failed = await client.post(url, json={"status": "approved"})
        assert failed.status_code == 503
        assert failed.headers["retry-after"] == "2"
        assert failed.json()["detail"].startswith("retryable")

        current = await client.get(f"/api/v1/payments/intents/{intent['id']}")
        assert current.json()["status"] == "pending"
        assert await _stock(session_factory, coffee) == 10
        assert await _count(session_factory, Sale) == 0

        state["fail"] = False
        retried = await client.post(url, json={"status": "approved"})
        assert retried.status_code == 200
        assert retried.json()["status"] == "approved"

    assert await _stock(session_factory, coffee) == 7
    assert await _count(session_factory, Sale) == 1


@pytest.mark.asyncio
async def test_intents_are_scoped_to_merchant(pos_test_app):
    app, session_factory = pos_test_app
    (coffee,) = await _seed_products(session_factory, ("Coffee", "4.50", 10))
    async with _asgi_client(app) as client:
        intent = await _create_intent(client, [{"product_id": coffee, "quantity": 1}])
        app.dependency_overrides[get_current_merchant_id] = lambda: MERCHANT_ID + 1
        other = await client.get(f"/api/v1/payments/intents/{intent['id']}")
        assert other.status_code == 404
        result = await client.post(
            f"/api/v1/payments/intents/{intent['id']}/result",
            json={"status": "approved"},
        )
        assert result.status_code == 404


@pytest.mark.asyncio
async def test_list_pending_intents(pos_test_app):
    app, session_factory = pos_test_app
    (coffee,) = await _seed_products(session_factory, ("Coffee", "4.50", 10))
    async with _asgi_client(app) as client:
        first = await _create_intent(client, [{"product_id": coffee, "quantity": 1}])
        second = await _create_intent(client, [{"product_id": coffee, "quantity": 2}], method="DEBIT")
        await client.post(f"/api/v1/payments/intents/{first['id']}/result", json={"status": "canceled"})

        pending = await client.get("/api/v1/payments/intents", params={"status": "pending"})
        assert pending.status_code == 200
        assert [row["id"] for row in pending.json()] == [second["id"]]

        other = await client.get("/api/v1/payments/intents", params={"status": "approved"})
        assert other.status_code == 400


@pytest.mark.asyncio
async def test_bearer_token_resolves_merchant(pos_test_app):
    app, session_factory = pos_test_app
    (coffee,) = await _seed_products(session_factory, ("Coffee", "4.50", 10))
    del app.dependency_overrides[get_current_merchant_id]
    settings = pos_settings_module.pos_settings()
    claims = {
        "sub": "operator-1",
        "merchant_id": MERCHANT_ID,
        "scope": "access",
        "aud": settings.jwt_audience,
        "iss": settings.jwt_issuer,
    }
    token = jwt.encode(claims, settings.secret_key, algorithm="HS256")
    payload = {"payment_method": "CREDIT", "items": [{"product_id": coffee, "quantity": 1}]}

    async with _asgi_client(app) as client:
        anonymous = await client.post("/api/v1/payments/intents", json=payload)
        assert anonymous.status_code == 401

        refresh_token = jwt.encode({**claims, "scope": "refresh"}, settings.secret_key, algorithm="HS256")
        wrong_scope = await client.post(
            "/api/v1/payments/intents",
            json=payload,
            headers={"Authorization": f"Bearer {refresh_token}"},
        )
        assert wrong_scope.status_code == 401

        created = await client.post(
            "/api/v1/payments/intents",
            json=payload,
            headers={"Authorization": f"Bearer {token}"},
        )
        assert created.status_code == 201, created.text


@pytest.mark.asyncio
async def test_malformed_items_use_error_envelope(pos_test_app):
    app, session_factory = pos_test_app
    async with _asgi_client(app) as client:
        response = await client.post(
            "/api/v1/payments/intents",
            json={"payment_method": "PIX", "items": [{"product_id": 1, "quantity": 0}]},
            headers={"x-request-id": "req-422"},
        )

    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "Unprocessable Entity"
    assert body["request_id"] == "req-422"
    assert "items.0.quantity" in body["detail"]
    assert await _count(session_factory, PaymentIntent) == 0
