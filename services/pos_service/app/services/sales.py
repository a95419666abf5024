from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.base import utcnow
from ..errors import InsufficientStockError, IntentValidationError, ProductNotFoundError
from ..metrics import cash_sale_total
from ..models import MerchantSettings, PaymentMethod, PrintJob, Product, Sale, SaleItem, SaleStatus


@dataclass(frozen=True)
class PricedItem:
    product_id: int
    name: str
    quantity: int
    unit_price_cents: int

    @property
    def total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def snapshot(self) -> dict[str, int]:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
        }


def to_cents(value: Decimal | int | str) -> int:
    return int((Decimal(str(value)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


async def load_merchant_settings(session: AsyncSession, merchant_id: int) -> MerchantSettings:
    settings = await session.scalar(select(MerchantSettings).where(MerchantSettings.merchant_id == merchant_id))
    return settings or MerchantSettings.defaults(merchant_id)


async def price_items(
    session: AsyncSession,
    merchant_id: int,
    items: Iterable[tuple[int, int]],
    settings: MerchantSettings,
) -> list[PricedItem]:
    """Resolve ``(product_id, quantity)`` pairs against the live catalog.

    Duplicate product lines are merged. Prices always come from the catalog;
    whatever the client displayed is irrelevant here.
    """
    grouped: dict[int, int] = {}
    for product_id, quantity in items:
        if product_id <= 0 or quantity <= 0:
            raise IntentValidationError("Invalid items payload")
        grouped[product_id] = grouped.get(product_id, 0) + quantity
    if not grouped:
        raise IntentValidationError("Items array is required")

    products = await session.scalars(
        select(Product).where(
            Product.id.in_(list(grouped)),
            Product.merchant_id == merchant_id,
            Product.active.is_(True),
        )
    )
    by_id = {product.id: product for product in products}
    missing = sorted(set(grouped) - set(by_id))
    if missing:
        raise ProductNotFoundError(missing)

    priced: list[PricedItem] = []
    for product_id, quantity in grouped.items():
        product = by_id[product_id]
        if settings.stock_enabled and not settings.allow_negative_stock and product.stock < quantity:
            raise InsufficientStockError(product.id, product.name, product.stock, quantity)
        priced.append(PricedItem(product.id, product.name, quantity, to_cents(product.price)))
    return priced


async def decrement_stock(
    session: AsyncSession,
    merchant_id: int,
    lines: list[dict],
    settings: MerchantSettings,
) -> None:
    if not settings.stock_enabled:
        return
    for line in lines:
        product_id = int(line["product_id"])
        quantity = int(line["quantity"])
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.merchant_id == merchant_id)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        if not settings.allow_negative_stock:
            stmt = stmt.where(Product.stock >= quantity)
        result = await session.execute(stmt)
        if result.rowcount == 0:
            product = await session.get(Product, product_id)
            raise InsufficientStockError(
                product_id,
                product.name if product else f"#{product_id}",
                product.stock if product else 0,
                quantity,
            )


async def create_sale(
    session: AsyncSession,
    *,
    merchant_id: int,
    payment_method: PaymentMethod,
    lines: list[dict],
    intent_id: int | None = None,
    cash_received_cents: int | None = None,
    authorization_code: str | None = None,
    transaction_id: str | None = None,
    acquirer: str | None = None,
    now: datetime | None = None,
) -> Sale:
    now = now or utcnow()
    total_cents = sum(int(line["unit_price_cents"]) * int(line["quantity"]) for line in lines)
    change_cents = None if cash_received_cents is None else cash_received_cents - total_cents
    sale = Sale(
        merchant_id=merchant_id,
        intent_id=intent_id,
        payment_method=payment_method.value,
        status=SaleStatus.paid.value,
        total_cents=total_cents,
        cash_received_cents=cash_received_cents,
        change_cents=change_cents,
        authorization_code=authorization_code,
        transaction_id=transaction_id,
        acquirer=acquirer,
        created_at=now,
        updated_at=now,
        items=[
            SaleItem(
                product_id=int(line["product_id"]),
                quantity=int(line["quantity"]),
                unit_price_cents=int(line["unit_price_cents"]),
            )
            for line in lines
        ],
    )
    session.add(sale)
    await session.flush()
    return sale


async def enqueue_print_job(session: AsyncSession, sale: Sale, lines: list[dict]) -> PrintJob:
    """Queue the receipt for the sale; one job per sale."""
    existing = await session.scalar(select(PrintJob).where(PrintJob.sale_id == sale.id))
    if existing is not None:
        return existing

    product_ids = sorted({int(line["product_id"]) for line in lines})
    rows = await session.execute(select(Product.id, Product.name).where(Product.id.in_(product_ids)))
    names = {row.id: row.name for row in rows}
    payload = {
        "sale_id": sale.id,
        "intent_id": sale.intent_id,
        "payment_method": sale.payment_method,
        "total_cents": sale.total_cents,
        "items": [
            {
                "name": names.get(int(line["product_id"]), f"#{line['product_id']}"),
                "qty": int(line["quantity"]),
                "unit_price_cents": int(line["unit_price_cents"]),
                "total_cents": int(line["unit_price_cents"]) * int(line["quantity"]),
            }
            for line in lines
        ],
        "created_at": sale.created_at.isoformat(),
    }
    job = PrintJob(
        merchant_id=sale.merchant_id,
        sale_id=sale.id,
        intent_id=sale.intent_id,
        payload=payload,
    )
    session.add(job)
    await session.flush()
    return job


async def create_cash_sale(
    session: AsyncSession,
    merchant_id: int,
    items: Iterable[tuple[int, int]],
    cash_received_cents: int | None = None,
) -> tuple[Sale, PrintJob]:
    """Cash is settled at the counter, so the sale is finalized in the request."""
    async with session.begin():
        settings = await load_merchant_settings(session, merchant_id)
        if not settings.allows(PaymentMethod.cash):
            raise IntentValidationError("Payment method CASH is disabled for this merchant")
        priced = await price_items(session, merchant_id, items, settings)
        total_cents = sum(item.total_cents for item in priced)
        if cash_received_cents is not None and cash_received_cents < total_cents:
            raise IntentValidationError("Cash received is less than the sale total")

        lines = [item.snapshot() for item in priced]
        await decrement_stock(session, merchant_id, lines, settings)
        sale = await create_sale(
            session,
            merchant_id=merchant_id,
            payment_method=PaymentMethod.cash,
            lines=lines,
            cash_received_cents=cash_received_cents,
        )
        job = await enqueue_print_job(session, sale, lines)

    cash_sale_total.inc()
    logger.info("Cash sale {} recorded for merchant {} (total_cents={})", sale.id, merchant_id, sale.total_cents)
    return sale, job
