from __future__ import annotations

import asyncio

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .services.intent_issuer import IntentIssuer


class ExpirySweeper:
    """Periodically expires abandoned pending intents, independent of any client."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], interval_seconds: float) -> None:
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        async with self.session_factory() as session:
            return await IntentIssuer(session).expire_sweep()

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Expiry sweep failed; retrying in {}s", self.interval_seconds)
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="pos-expiry-sweeper")
        logger.info("⏱️ Expiry sweeper started (interval={}s)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Expiry sweeper stopped")
