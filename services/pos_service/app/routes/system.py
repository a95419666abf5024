from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..schemas import MaintenanceStatus, PublicConfig
from ..settings import pos_settings

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/metrics")
async def metrics() -> Response:
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@router.get("/system/maintenance", response_model=MaintenanceStatus)
async def maintenance_status() -> MaintenanceStatus:
    settings = pos_settings()
    return MaintenanceStatus(
        enabled=settings.maintenance_enabled,
        message=settings.maintenance_message,
        starts_at=settings.maintenance_starts_at,
        ends_at=settings.maintenance_ends_at,
    )


@router.get("/config/public", response_model=PublicConfig)
async def public_config() -> PublicConfig:
    settings = pos_settings()
    return PublicConfig(
        environment=settings.environment,
        currency=settings.currency,
        google_client_id=settings.google_client_id,
    )
