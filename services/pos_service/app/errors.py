from __future__ import annotations

from fastapi import HTTPException, status


class PosError(Exception):
    """Base class for payment-flow failures raised by the service layer."""


class IntentValidationError(PosError):
    pass


class ProductNotFoundError(PosError):
    def __init__(self, product_ids: list[int]) -> None:
        self.product_ids = product_ids
        super().__init__(f"Products not found for this merchant: {product_ids}")


class InsufficientStockError(PosError):
    def __init__(self, product_id: int, name: str, stock: int, needed: int) -> None:
        self.product_id = product_id
        self.name = name
        self.stock = stock
        self.needed = needed
        super().__init__(f'Insufficient stock for "{name}" (stock={stock}, needed={needed})')


class IntentNotFoundError(PosError):
    def __init__(self, intent_id: int) -> None:
        self.intent_id = intent_id
        super().__init__(f"PaymentIntent {intent_id} not found")


class FinalizeError(PosError):
    """Approval could not be applied; the intent is still pending and the result must be redelivered."""

    def __init__(self, intent_id: int, cause: Exception) -> None:
        self.intent_id = intent_id
        self.cause = cause
        super().__init__(f"Finalize of intent {intent_id} failed: {cause}")


def as_http_exception(exc: PosError) -> HTTPException:
    if isinstance(exc, (ProductNotFoundError, IntentNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InsufficientStockError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, FinalizeError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"retryable: {exc}",
            headers={"Retry-After": "2"},
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
