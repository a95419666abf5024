from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from loguru import logger

from .models import IntentProjection
from .settings import ClientSettings, client_settings

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]
IntentFetcher = Callable[[int], Awaitable[IntentProjection]]
UpdateCallback = Callable[[IntentProjection | None, float], None]


@dataclass(frozen=True)
class PollResult:
    intent_id: int
    projection: IntentProjection | None
    elapsed: float
    timed_out: bool = False
    stopped: bool = False

    @property
    def resolved(self) -> bool:
        return self.projection is not None and self.projection.is_terminal


class PollingTask:
    """Reconciliation loop for a single intent.

    Queries the server every ``interval`` seconds until the intent reaches a
    terminal status, the timeout elapses, or ``stop()`` is called. Failed
    queries are logged and retried on the next tick. Stopping or timing out
    only ends local observation; the server-side intent is left untouched.
    """

    def __init__(
        self,
        intent_id: int,
        fetch: IntentFetcher,
        *,
        interval: float = 2.0,
        timeout: float = 120.0,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        on_update: UpdateCallback | None = None,
        initial: IntentProjection | None = None,
    ) -> None:
        self.intent_id = intent_id
        self.interval = interval
        self.timeout = timeout
        self.last: IntentProjection | None = initial
        self.attempts = 0
        self.failures = 0
        self.started_at: float | None = None
        self.deadline: float | None = None
        self._fetch = fetch
        self._clock = clock
        self._sleep = sleep
        self._on_update = on_update
        self._task: asyncio.Task[PollResult] | None = None

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    @property
    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        return self._clock() - self.started_at

    def start(self) -> PollingTask:
        if self._task is None:
            self.started_at = self._clock()
            self.deadline = self.started_at + self.timeout
            self._task = asyncio.create_task(self._run(), name=f"pos-poll-{self.intent_id}")
        return self

    def add_done_callback(self, callback: Callable[[PollingTask], None]) -> None:
        if self._task is None:
            raise RuntimeError("polling task was never started")
        self._task.add_done_callback(lambda _task: callback(self))

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            logger.debug("Polling for intent {} stopped after {:.1f}s", self.intent_id, self.elapsed)
            self._task.cancel()

    async def wait(self) -> PollResult:
        if self._task is None:
            raise RuntimeError("polling task was never started")
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if self._task.cancelled():
                return PollResult(self.intent_id, self.last, self.elapsed, stopped=True)
            raise

    async def _run(self) -> PollResult:
        while True:
            elapsed = self.elapsed
            if elapsed >= self.timeout:
                logger.warning(
                    "Intent {} still unresolved after {:.0f}s; giving up locally", self.intent_id, elapsed
                )
                return PollResult(self.intent_id, self.last, elapsed, timed_out=True)

            self.attempts += 1
            try:
                projection = await self._fetch(self.intent_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.failures += 1
                logger.warning("Status query {} for intent {} failed: {}", self.attempts, self.intent_id, exc)
            else:
                self.last = projection
                elapsed = self.elapsed
                if self._on_update is not None:
                    self._on_update(projection, elapsed)
                if projection.is_terminal:
                    logger.info("Intent {} resolved as {} after {:.1f}s", self.intent_id, projection.status.value, elapsed)
                    return PollResult(self.intent_id, projection, elapsed)

            await self._sleep(self.interval)


class ReconciliationPoller:
    """Owns the polling loops of one client, at most one per intent."""

    def __init__(
        self,
        fetch: IntentFetcher,
        *,
        interval: float = 2.0,
        timeout: float = 120.0,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.fetch = fetch
        self.interval = interval
        self.timeout = timeout
        self.clock = clock
        self.sleep = sleep
        self._tasks: dict[int, PollingTask] = {}

    @classmethod
    def from_settings(cls, fetch: IntentFetcher, settings: ClientSettings | None = None, **kwargs) -> ReconciliationPoller:
        settings = settings or client_settings()
        return cls(
            fetch,
            interval=settings.poll_interval_seconds,
            timeout=settings.poll_timeout_seconds,
            **kwargs,
        )

    def track(
        self,
        intent_id: int,
        *,
        on_update: UpdateCallback | None = None,
        initial: IntentProjection | None = None,
    ) -> PollingTask:
        existing = self._tasks.get(intent_id)
        if existing is not None and not existing.done:
            return existing
        task = PollingTask(
            intent_id,
            self.fetch,
            interval=self.interval,
            timeout=self.timeout,
            clock=self.clock,
            sleep=self.sleep,
            on_update=on_update,
            initial=initial,
        )
        self._tasks[intent_id] = task
        task.start().add_done_callback(self._forget)
        return task

    def _forget(self, task: PollingTask) -> None:
        if self._tasks.get(task.intent_id) is task:
            del self._tasks[task.intent_id]

    def __len__(self) -> int:
        return len(self._tasks)

    def active(self) -> list[int]:
        return [intent_id for intent_id, task in self._tasks.items() if not task.done]

    def stop(self, intent_id: int) -> None:
        task = self._tasks.get(intent_id)
        if task is not None:
            task.stop()

    def stop_all(self) -> None:
        for task in self._tasks.values():
            task.stop()
