from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies import CurrentMerchantIdDep, get_session
from ..errors import PosError, as_http_exception
from ..schemas import CashSaleCreate, SaleResponse
from ..services import create_cash_sale, to_cents

router = APIRouter(prefix="/sales")

SessionDep = Annotated[AsyncSession, Depends(get_session)]


@router.post("/cash", response_model=SaleResponse, status_code=status.HTTP_201_CREATED)
async def create_cash_sale_endpoint(
    payload: CashSaleCreate,
    session: SessionDep,
    merchant_id: int = CurrentMerchantIdDep,
) -> SaleResponse:
    cash_received_cents = None if payload.cash_received is None else to_cents(payload.cash_received)
    try:
        sale, job = await create_cash_sale(
            session,
            merchant_id,
            [(item.product_id, item.quantity) for item in payload.items],
            cash_received_cents,
        )
    except PosError as exc:
        raise as_http_exception(exc) from exc
    response = SaleResponse.model_validate(sale)
    response.print_job_id = job.id
    return response
