from __future__ import annotations

from enum import Enum

from sqlalchemy import JSON, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ..db.base import BaseModel


class PrintJobStatus(str, Enum):
    pending = "pending"
    printing = "printing"
    printed = "printed"
    error = "error"


class PrintJob(BaseModel):
    __tablename__ = "print_jobs"

    merchant_id: Mapped[int] = mapped_column(index=True, nullable=False)
    sale_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    intent_id: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)
    status: Mapped[str] = mapped_column(String(12), nullable=False, default=PrintJobStatus.pending.value)
    copies: Mapped[int] = mapped_column(nullable=False, default=1)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
