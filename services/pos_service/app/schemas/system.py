from __future__ import annotations

from pydantic import BaseModel


class MaintenanceStatus(BaseModel):
    enabled: bool
    message: str | None = None
    starts_at: str | None = None
    ends_at: str | None = None


class PublicConfig(BaseModel):
    environment: str
    currency: str
    google_client_id: str | None = None
