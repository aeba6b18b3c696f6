"""
Cancellable one-shot timers for grace periods and delayed session cleanup.

A SessionTimer owns a single asyncio task that sleeps and then awaits its
callback. Cancelling is idempotent, and a callback that cancels its own
timer while running is not interrupted.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from quartett.server.settings import QuartettServerSettings


class TimerConfig(BaseModel):
    """Durations for session-scoped timers."""

    grace_period_seconds: float = Field(default=30, gt=0)
    completed_retention_seconds: float = Field(default=60, ge=0)

    @classmethod
    def from_settings(cls, settings: QuartettServerSettings) -> TimerConfig:
        return cls(
            grace_period_seconds=settings.grace_period_seconds,
            completed_retention_seconds=settings.completed_retention_seconds,
        )


class SessionTimer:
    """One-shot cancellable timer."""

    def __init__(self, seconds: float, on_timeout: Callable[[], Awaitable[None]], *, name: str = "") -> None:
        self._seconds = seconds
        self._on_timeout = on_timeout
        self._name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def seconds(self) -> float:
        return self._seconds

    @property
    def is_pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the countdown, restarting it if already running."""
        self.cancel()
        self._task = asyncio.create_task(self._run(), name=self._name or None)

    def cancel(self) -> bool:
        """Cancel the pending countdown. Return True if one was cancelled.

        Called from inside the callback it is a no-op for the running task.
        """
        task = self._task
        self._task = None
        if task is None or task.done() or task is asyncio.current_task():
            return False
        task.cancel()
        return True

    async def _run(self) -> None:
        try:
            await asyncio.sleep(self._seconds)
            await self._on_timeout()
        except asyncio.CancelledError:
            pass
        except (RuntimeError, OSError, ConnectionError, ValueError):
            logger.exception("timer callback failed", timer=self._name)
