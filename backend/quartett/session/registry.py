"""In-memory registries for sessions and players.

Both registries are plain id-to-record maps. Session state itself is only
changed under the owning SessionRecord's lock; the maps are touched for
short insert/remove/lookup steps that never span an await.
"""

from __future__ import annotations

import secrets
from collections import Counter
from typing import TYPE_CHECKING
from uuid import uuid4

from quartett.logic.lifecycle import create_session
from quartett.session.models import PlayerRecord, SessionRecord

if TYPE_CHECKING:
    from collections.abc import Iterator

    from quartett.logic.enums import SessionState
    from quartett.messaging.protocol import ConnectionProtocol

_TOKEN_BYTES = 24


class SessionRegistry:
    def __init__(self) -> None:
        self._records: dict[str, SessionRecord] = {}  # session_id -> SessionRecord

    def create(self, creator_id: str, *, invite_code: str | None = None) -> SessionRecord:
        """Allocate a waiting session with creator_id in slot 0."""
        session_id = uuid4().hex
        while session_id in self._records:
            session_id = uuid4().hex
        record = SessionRecord(session=create_session(session_id, creator_id, invite_code=invite_code))
        self._records[session_id] = record
        return record

    def get(self, session_id: str) -> SessionRecord | None:
        return self._records.get(session_id)

    def delete(self, session_id: str) -> SessionRecord | None:
        """Remove a record and flag it deleted for any lock waiters."""
        record = self._records.pop(session_id, None)
        if record is not None:
            record.deleted = True
        return record

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._records

    def __iter__(self) -> Iterator[SessionRecord]:
        return iter(list(self._records.values()))

    def count_by_state(self) -> Counter[SessionState]:
        return Counter(record.session.state for record in self._records.values())


class PlayerRegistry:
    """Player identities, reachable by id, live connection or reconnect token."""

    def __init__(self) -> None:
        self._players: dict[str, PlayerRecord] = {}  # player_id -> PlayerRecord
        self._by_connection: dict[str, str] = {}  # connection_id -> player_id
        self._by_token: dict[str, str] = {}  # reconnect_token -> player_id

    def create(self, connection: ConnectionProtocol) -> PlayerRecord:
        player_id = str(uuid4())
        player = PlayerRecord(
            player_id=player_id,
            username=f"Player-{player_id[:4]}",
            reconnect_token=secrets.token_urlsafe(_TOKEN_BYTES),
            connection=connection,
        )
        self._players[player_id] = player
        self._by_connection[connection.connection_id] = player_id
        self._by_token[player.reconnect_token] = player_id
        return player

    def get(self, player_id: str | None) -> PlayerRecord | None:
        if player_id is None:
            return None
        return self._players.get(player_id)

    def get_by_connection(self, connection_id: str) -> PlayerRecord | None:
        return self.get(self._by_connection.get(connection_id))

    def get_by_token(self, token: str) -> PlayerRecord | None:
        return self.get(self._by_token.get(token))

    def bind_connection(self, player: PlayerRecord, connection: ConnectionProtocol) -> ConnectionProtocol | None:
        """Attach connection to player. Return the connection it replaced, if any."""
        previous = player.connection
        if previous is not None and previous.connection_id != connection.connection_id:
            self._by_connection.pop(previous.connection_id, None)
        else:
            previous = None
        player.connection = connection
        self._by_connection[connection.connection_id] = player.player_id
        return previous

    def unbind_connection(self, player: PlayerRecord) -> None:
        if player.connection is not None:
            self._by_connection.pop(player.connection.connection_id, None)
        player.connection = None

    def delete(self, player_id: str) -> PlayerRecord | None:
        player = self._players.pop(player_id, None)
        if player is None:
            return None
        if player.connection is not None:
            self._by_connection.pop(player.connection.connection_id, None)
        self._by_token.pop(player.reconnect_token, None)
        return player

    def connected(self) -> list[PlayerRecord]:
        return [p for p in self._players.values() if p.connection is not None]

    @property
    def connected_count(self) -> int:
        return len(self._by_connection)

    def __len__(self) -> int:
        return len(self._players)
