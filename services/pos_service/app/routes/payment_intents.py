from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies import get_current_merchant_id, get_session, get_terminal
from ..errors import PosError, as_http_exception
from ..models import PaymentIntentStatus
from ..schemas import PaymentIntentCreate, PaymentIntentResponse, TerminalResultRequest
from ..services import IntentIssuer
from ..terminal import TerminalGateway, TerminalOutcome

router = APIRouter(prefix="/payments/intents")

SessionDep = Annotated[AsyncSession, Depends(get_session)]
MerchantDep = Annotated[int, Depends(get_current_merchant_id)]
TerminalDep = Annotated[TerminalGateway, Depends(get_terminal)]


@router.post("", response_model=PaymentIntentResponse, status_code=status.HTTP_201_CREATED)
async def create_intent(
    payload: PaymentIntentCreate,
    response: Response,
    session: SessionDep,
    merchant_id: MerchantDep,
    terminal: TerminalDep,
) -> PaymentIntentResponse:
    issuer = IntentIssuer(session, terminal=terminal)
    try:
        intent, created = await issuer.create_intent(
            merchant_id,
            payload.payment_method,
            [(item.product_id, item.quantity) for item in payload.items],
            expected_amount_cents=payload.expected_amount_cents,
            idempotency_key=payload.idempotency_key,
        )
    except PosError as exc:
        raise as_http_exception(exc) from exc
    if not created:
        response.status_code = status.HTTP_200_OK  # idempotent replay
    return PaymentIntentResponse.model_validate(intent)


@router.get("", response_model=list[PaymentIntentResponse])
async def list_intents(
    session: SessionDep,
    merchant_id: MerchantDep,
    status_filter: Annotated[str, Query(alias="status")] = PaymentIntentStatus.pending.value,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> list[PaymentIntentResponse]:
    if status_filter != PaymentIntentStatus.pending.value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only status=pending can be listed")
    intents = await IntentIssuer(session).list_pending(merchant_id, limit=limit)
    return [PaymentIntentResponse.model_validate(intent) for intent in intents]


@router.get("/{intent_id}", response_model=PaymentIntentResponse)
async def get_intent(intent_id: int, session: SessionDep, merchant_id: MerchantDep) -> PaymentIntentResponse:
    try:
        intent = await IntentIssuer(session).get_status(merchant_id, intent_id)
    except PosError as exc:
        raise as_http_exception(exc) from exc
    return PaymentIntentResponse.model_validate(intent)


@router.post("/{intent_id}/result", response_model=PaymentIntentResponse)
async def deliver_terminal_result(
    intent_id: int,
    payload: TerminalResultRequest,
    session: SessionDep,
    merchant_id: MerchantDep,
) -> PaymentIntentResponse:
    """Terminal callback. Delivery is at-least-once; repeats return the current intent."""
    try:
        outcome = TerminalOutcome.from_raw(payload.status, payload.provider, payload.provider_ref, payload.data)
        intent = await IntentIssuer(session).on_terminal_result(merchant_id, intent_id, outcome)
    except PosError as exc:
        raise as_http_exception(exc) from exc
    return PaymentIntentResponse.model_validate(intent)
