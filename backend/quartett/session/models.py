from __future__ import annotations

import asyncio
import hmac
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from quartett.logic.state import GameSession
    from quartett.logic.timer import SessionTimer
    from quartett.messaging.protocol import ConnectionProtocol

LOBBY_MAX_PLAYERS = 2


@dataclass
class PlayerRecord:
    """A connected (or briefly disconnected) player identity.

    Lifecycle:
    - Created when a connection opens, with a fresh reconnect token
    - Bound to a session by a lobby, the matchmaking queue or join_game
    - On disconnect from an active session: connection is cleared and the
      record is kept until the grace window closes
    - Evicted from the registry otherwise
    """

    player_id: str
    username: str
    reconnect_token: str
    connection: ConnectionProtocol | None = None
    current_session_id: str | None = None
    in_lobby: bool = False
    last_disconnect_at: datetime | None = None
    last_session_id: str | None = None

    @property
    def connection_id(self) -> str | None:
        return self.connection.connection_id if self.connection is not None else None

    @property
    def is_connected(self) -> bool:
        return self.connection is not None

    @property
    def is_idle(self) -> bool:
        return self.current_session_id is None and not self.in_lobby


@dataclass
class SessionRecord:
    """Registry entry owning one GameSession, its lock and its timers.

    Every read-modify-write of `session` happens under `lock`. `deleted` is
    set once the record leaves the registry so waiters can re-validate
    after acquiring the lock.
    """

    session: GameSession
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    grace_timer: SessionTimer | None = None
    grace_player_id: str | None = None
    cleanup_timer: SessionTimer | None = None
    deleted: bool = False

    @property
    def session_id(self) -> str:
        return self.session.session_id


@dataclass
class Lobby:
    invite_code: str
    name: str
    creator_player_id: str
    session_id: str
    password: str | None = None
    max_players: int = LOBBY_MAX_PLAYERS
    players: list[str] = field(default_factory=list)

    @property
    def is_full(self) -> bool:
        return len(self.players) >= self.max_players

    @property
    def is_empty(self) -> bool:
        return not self.players

    @property
    def has_password(self) -> bool:
        return self.password is not None

    def check_password(self, password: str | None) -> bool:
        if self.password is None:
            return True
        if password is None:
            return False
        return hmac.compare_digest(self.password.encode(), password.encode())
