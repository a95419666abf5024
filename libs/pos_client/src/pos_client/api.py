from __future__ import annotations

from decimal import Decimal
from typing import Any

import httpx
from loguru import logger

from .cart import Cart
from .models import CashSaleReceipt, IntentProjection
from .settings import ClientSettings, client_settings

RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 502, 503, 504})


class PosApiError(Exception):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail

    @property
    def retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUS_CODES or self.status_code >= 500

    @classmethod
    def from_response(cls, response: httpx.Response) -> PosApiError:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            detail = body.get("detail") or body.get("message") or response.reason_phrase
        else:
            detail = response.text or response.reason_phrase
        return cls(response.status_code, str(detail))


class PosApiClient:
    """Thin async client for the POS service payment and sales endpoints."""

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or client_settings()
        headers = {"Accept": "application/json"}
        if self.settings.token:
            headers["Authorization"] = f"Bearer {self.settings.token}"
        self._client = httpx.AsyncClient(
            base_url=self.settings.base_url,
            headers=headers,
            timeout=self.settings.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> PosApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_intent(
        self,
        payment_method: str,
        cart: Cart,
        *,
        expected_amount_cents: int | None = None,
        idempotency_key: str | None = None,
    ) -> IntentProjection:
        payload: dict[str, Any] = {
            "payment_method": payment_method,
            "items": cart.as_request_items(),
        }
        if expected_amount_cents is not None:
            payload["expected_amount_cents"] = expected_amount_cents
        if idempotency_key:
            payload["idempotency_key"] = idempotency_key
        data = await self._request("POST", "/payments/intents", json=payload)
        intent = IntentProjection.model_validate(data)
        logger.debug("Intent {} created ({} {} cents)", intent.id, intent.payment_method, intent.amount_cents)
        return intent

    async def get_intent(self, intent_id: int) -> IntentProjection:
        data = await self._request("GET", f"/payments/intents/{intent_id}")
        return IntentProjection.model_validate(data)

    async def create_cash_sale(self, cart: Cart, cash_received: Decimal | None = None) -> CashSaleReceipt:
        payload: dict[str, Any] = {"items": cart.as_request_items()}
        if cash_received is not None:
            payload["cash_received"] = str(cash_received)
        data = await self._request("POST", "/sales/cash", json=payload)
        return CashSaleReceipt.model_validate(data)

    async def maintenance_status(self) -> dict[str, Any]:
        return await self._request("GET", "/system/maintenance")

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        response = await self._client.request(method, url, **kwargs)
        if response.status_code >= 400:
            raise PosApiError.from_response(response)
        return response.json()
