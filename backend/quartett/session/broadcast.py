"""Deferred delivery of outbound messages.

Messages produced while a session lock is held are queued on an Outbox and
sent by flush() once the lock is released, so no state transition ever
waits on network I/O.
"""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Any

import structlog

from quartett.messaging.types import ErrorMessage

if TYPE_CHECKING:
    from collections.abc import Iterable

    from pydantic import BaseModel

    from quartett.messaging.protocol import ConnectionProtocol
    from quartett.session.models import PlayerRecord

logger = structlog.get_logger()


class Outbox:
    def __init__(self) -> None:
        self._messages: list[tuple[ConnectionProtocol, dict[str, Any]]] = []
        self._closes: list[tuple[ConnectionProtocol, int, str]] = []

    def __len__(self) -> int:
        return len(self._messages)

    def send(self, connection: ConnectionProtocol | None, message: BaseModel) -> None:
        """Queue a message. The payload is serialized now, inside the lock."""
        if connection is not None:
            self._messages.append((connection, message.model_dump()))

    def send_to_player(self, player: PlayerRecord | None, message: BaseModel) -> None:
        if player is not None:
            self.send(player.connection, message)

    def broadcast(
        self,
        players: Iterable[PlayerRecord],
        message: BaseModel,
        exclude_player_id: str | None = None,
    ) -> None:
        for player in players:
            if player.player_id != exclude_player_id:
                self.send_to_player(player, message)

    def error(
        self,
        connection: ConnectionProtocol | None,
        code: str,
        message: str,
        *,
        critical: bool = False,
    ) -> None:
        logger.warning("session error sent to client", error_code=code, error_message=message, critical=critical)
        self.send(connection, ErrorMessage(code=code, message=message, critical=critical))

    def close(self, connection: ConnectionProtocol, code: int = 1000, reason: str = "") -> None:
        self._closes.append((connection, code, reason))

    async def flush(self) -> None:
        """Send queued messages in order, then close queued connections."""
        messages, self._messages = self._messages, []
        closes, self._closes = self._closes, []
        for connection, payload in messages:
            with contextlib.suppress(RuntimeError, OSError, ConnectionError):
                await connection.send_message(payload)
        for connection, code, reason in closes:
            with contextlib.suppress(RuntimeError, OSError, ConnectionError):
                await connection.close(code=code, reason=reason)
