from fastapi import APIRouter, FastAPI

from .payment_intents import router as payment_intents_router
from .sales import router as sales_router
from . import system


def register_routes(app: FastAPI) -> None:
    router = APIRouter(prefix="/api/v1")
    router.include_router(payment_intents_router, tags=["payment-intents"])
    router.include_router(sales_router, tags=["sales"])
    router.include_router(system.router, tags=["system"])
    app.include_router(router)
