from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from .db.session import async_session_factory
from .settings import pos_settings
from .terminal import ExternalTerminal, TerminalGateway

# Operator panels get "access" tokens, paired terminals get "terminal" tokens.
ACCEPTED_SCOPES = {"access", "terminal"}


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        yield session


def get_current_merchant_id(request: Request) -> int:
    settings = pos_settings()
    auth = request.headers.get("authorization")
    if not auth or not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    token = auth.split(" ", 1)[1].strip()
    try:
        decoded = jwt.decode(
            token,
            settings.secret_key,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    except JWTError as exc:
        logger.warning("pos.auth.jwt_decode_failed: {}", exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc
    if decoded.get("scope") not in ACCEPTED_SCOPES:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token scope")
    try:
        return int(decoded["merchant_id"])
    except (KeyError, TypeError, ValueError):  # noqa: PERF203
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token is not bound to a merchant")


def get_terminal(request: Request) -> TerminalGateway:
    return getattr(request.app.state, "terminal", None) or ExternalTerminal()


CurrentMerchantIdDep = Depends(get_current_merchant_id)
