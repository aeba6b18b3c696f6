"""Grace-period and retention timers owned by session records."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import structlog

from quartett.logic.timer import SessionTimer, TimerConfig

if TYPE_CHECKING:
    from quartett.session.models import SessionRecord

logger = structlog.get_logger()

# (session_id, player_id) -> Awaitable[None]
GraceExpiredCallback = Callable[[str, str], Awaitable[None]]
# (session_id) -> Awaitable[None]
CleanupCallback = Callable[[str], Awaitable[None]]


class TimerManager:
    """Start and cancel the timers stored on SessionRecords.

    The timers only schedule callbacks. The callbacks (owned by
    SessionManager) take the session lock and re-validate before
    changing anything.
    """

    def __init__(
        self,
        *,
        on_grace_expired: GraceExpiredCallback,
        on_cleanup: CleanupCallback,
        config: TimerConfig | None = None,
    ) -> None:
        self._config = config or TimerConfig()
        self._on_grace_expired = on_grace_expired
        self._on_cleanup = on_cleanup

    @property
    def config(self) -> TimerConfig:
        return self._config

    def start_grace(self, record: SessionRecord, player_id: str) -> None:
        """Start the reconnection window for player_id."""
        self.cancel_grace(record)
        session_id = record.session_id
        timer = SessionTimer(
            self._config.grace_period_seconds,
            lambda sid=session_id, pid=player_id: self._on_grace_expired(sid, pid),
            name=f"grace:{session_id}",
        )
        record.grace_timer = timer
        record.grace_player_id = player_id
        timer.start()

    def cancel_grace(self, record: SessionRecord) -> bool:
        """Cancel the grace timer. Return True if a pending timer was stopped."""
        timer = record.grace_timer
        record.grace_timer = None
        record.grace_player_id = None
        if timer is None:
            return False
        return timer.cancel()

    def schedule_cleanup(self, record: SessionRecord) -> None:
        """Delete the session after the completed-retention window."""
        if record.cleanup_timer is not None:
            return
        session_id = record.session_id
        timer = SessionTimer(
            self._config.completed_retention_seconds,
            lambda sid=session_id: self._on_cleanup(sid),
            name=f"cleanup:{session_id}",
        )
        record.cleanup_timer = timer
        timer.start()
        logger.debug("session cleanup scheduled", seconds=self._config.completed_retention_seconds)

    def cancel_all(self, record: SessionRecord) -> None:
        self.cancel_grace(record)
        if record.cleanup_timer is not None:
            record.cleanup_timer.cancel()
            record.cleanup_timer = None
