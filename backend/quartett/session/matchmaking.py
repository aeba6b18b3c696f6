"""FIFO queue of players waiting for an anonymous quick match."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

logger = structlog.get_logger()


class MatchmakingQueue:
    """Ordered player ids waiting for an opponent.

    Callers hold `lock` across enqueue/remove and the whole match pass,
    so popping a pair, checking liveness and binding the pair to a session
    happen as one step with respect to other queue users.
    """

    def __init__(self) -> None:
        self._queue: deque[str] = deque()
        self._lock = asyncio.Lock()

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    def __len__(self) -> int:
        return len(self._queue)

    def __contains__(self, player_id: object) -> bool:
        return player_id in self._queue

    def snapshot(self) -> list[str]:
        return list(self._queue)

    def enqueue(self, player_id: str) -> None:
        """Append player_id, dropping any earlier entry for the same player."""
        self.remove(player_id)
        self._queue.append(player_id)

    def remove(self, player_id: str) -> bool:
        try:
            self._queue.remove(player_id)
        except ValueError:
            return False
        return True

    def push_front(self, player_id: str) -> None:
        self.remove(player_id)
        self._queue.appendleft(player_id)

    def pop_pair(self, is_live: Callable[[str], bool]) -> tuple[str, str] | None:
        """Pop the two oldest live entries.

        Stale entries are dropped. A live entry popped next to a stale one
        goes back to the front so it keeps its place in line.
        """
        while len(self._queue) >= 2:  # noqa: PLR2004
            first = self._queue.popleft()
            second = self._queue.popleft()
            first_live = is_live(first)
            second_live = is_live(second)
            if first_live and second_live:
                return first, second
            if first_live:
                self._queue.appendleft(first)
            elif second_live:
                self._queue.appendleft(second)
            logger.info(
                "dropped stale matchmaking entries",
                dropped=[pid for pid, live in ((first, first_live), (second, second_live)) if not live],
            )
        return None
