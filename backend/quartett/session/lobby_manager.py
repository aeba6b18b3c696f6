"""Lobby lifecycle: creation, invite codes, join/leave and manual start."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING

import structlog

from quartett.logic.enums import SessionState
from quartett.logic.exceptions import GameRuleError
from quartett.logic.lifecycle import seat_player, vacate_slot
from quartett.messaging.types import (
    JoinedLobbyMessage,
    LeftLobbyMessage,
    LobbyCreatedMessage,
    LobbySummary,
    PlayerJoinedLobbyMessage,
    PlayerLeftLobbyMessage,
    RosterEntry,
    SessionErrorCode,
)
from quartett.session.broadcast import Outbox
from quartett.session.models import Lobby

if TYPE_CHECKING:
    from collections.abc import Callable

    from quartett.session.models import PlayerRecord, SessionRecord
    from quartett.session.registry import PlayerRegistry, SessionRegistry

logger = structlog.get_logger()

# No 0/O, 1/I/L: codes are read aloud and typed by hand.
INVITE_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
DEFAULT_INVITE_CODE_LENGTH = 6
_MAX_CODE_ATTEMPTS = 100


class LobbyManager:
    """Own lobby records and the lobby side of session setup.

    Lobby records are only changed under the lock of the session they
    wrap. Game start and session teardown are delegated back to the
    coordinator through callbacks (like TimerManager's timeout callbacks),
    so dealing stays a single session-level operation.
    """

    def __init__(
        self,
        *,
        sessions: SessionRegistry,
        players: PlayerRegistry,
        activate: Callable[[SessionRecord, Outbox], None],
        delete_session: Callable[[SessionRecord], None],
        invite_code_length: int = DEFAULT_INVITE_CODE_LENGTH,
    ) -> None:
        self._sessions = sessions
        self._players = players
        self._activate = activate
        self._delete_session = delete_session
        self._invite_code_length = invite_code_length
        self._lobbies: dict[str, Lobby] = {}  # invite_code -> Lobby
        self._by_session: dict[str, str] = {}  # session_id -> invite_code

    # --- Lookup ---

    def get(self, invite_code: str) -> Lobby | None:
        return self._lobbies.get(invite_code)

    def get_by_session(self, session_id: str | None) -> Lobby | None:
        if session_id is None:
            return None
        code = self._by_session.get(session_id)
        return self._lobbies.get(code) if code is not None else None

    @property
    def lobby_count(self) -> int:
        return len(self._lobbies)

    def generate_invite_code(self) -> str:
        """Return a code not used by any current lobby."""
        for _ in range(_MAX_CODE_ATTEMPTS):
            code = "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(self._invite_code_length))
            if code not in self._lobbies:
                return code
        raise RuntimeError("could not allocate a unique invite code")

    def roster(self, lobby: Lobby) -> list[RosterEntry]:
        entries = []
        for player_id in lobby.players:
            player = self._players.get(player_id)
            if player is not None:
                entries.append(
                    RosterEntry(
                        player_id=player_id,
                        username=player.username,
                        is_creator=player_id == lobby.creator_player_id,
                    ),
                )
        return entries

    def list_open(self) -> list[LobbySummary]:
        """Summaries of lobbies that can still be joined."""
        summaries = []
        for lobby in self._lobbies.values():
            record = self._sessions.get(lobby.session_id)
            if record is None or record.session.state != SessionState.WAITING or lobby.is_full:
                continue
            summaries.append(
                LobbySummary(
                    invite_code=lobby.invite_code,
                    name=lobby.name,
                    player_count=len(lobby.players),
                    max_players=lobby.max_players,
                    has_password=lobby.has_password,
                ),
            )
        return summaries

    def discard(self, session_id: str) -> Lobby | None:
        """Drop the lobby wrapping session_id and release its members."""
        code = self._by_session.pop(session_id, None)
        if code is None:
            return None
        lobby = self._lobbies.pop(code, None)
        if lobby is not None:
            for player_id in lobby.players:
                player = self._players.get(player_id)
                if player is not None:
                    player.in_lobby = False
            logger.info("lobby closed", invite_code=code)
        return lobby

    # --- Operations ---

    def create_lobby(
        self,
        player: PlayerRecord,
        outbox: Outbox,
        *,
        name: str | None = None,
        password: str | None = None,
    ) -> Lobby:
        """Allocate a waiting session wrapped in a new lobby owned by player."""
        invite_code = self.generate_invite_code()
        record = self._sessions.create(player.player_id, invite_code=invite_code)
        lobby = Lobby(
            invite_code=invite_code,
            name=name or f"{player.username}'s Game",
            creator_player_id=player.player_id,
            session_id=record.session_id,
            password=password,
            players=[player.player_id],
        )
        self._lobbies[invite_code] = lobby
        self._by_session[record.session_id] = invite_code
        player.current_session_id = record.session_id
        player.in_lobby = True

        outbox.send_to_player(
            player,
            LobbyCreatedMessage(
                session_id=record.session_id,
                invite_code=invite_code,
                name=lobby.name,
                roster=self.roster(lobby),
            ),
        )
        logger.info("lobby created", invite_code=invite_code, session_id=record.session_id)
        return lobby

    async def join_by_code(
        self,
        player: PlayerRecord,
        invite_code: str,
        password: str | None,
    ) -> None:
        """Join a lobby; the second player's arrival starts the game."""
        outbox = Outbox()
        connection = player.connection
        lobby = self._lobbies.get(invite_code)
        record = self._sessions.get(lobby.session_id) if lobby is not None else None
        if lobby is None or record is None:
            if lobby is not None:
                self.discard(lobby.session_id)
            outbox.error(connection, SessionErrorCode.LOBBY_NOT_FOUND, "Lobby not found")
            await outbox.flush()
            return

        async with record.lock:
            self._join_locked(record, lobby, player, password, outbox)
        await outbox.flush()

    def _join_locked(
        self,
        record: SessionRecord,
        lobby: Lobby,
        player: PlayerRecord,
        password: str | None,
        outbox: Outbox,
    ) -> None:
        connection = player.connection
        if record.deleted or self._lobbies.get(lobby.invite_code) is not lobby:
            outbox.error(connection, SessionErrorCode.LOBBY_NOT_FOUND, "Lobby not found")
            return
        if not lobby.check_password(password):
            outbox.error(connection, SessionErrorCode.WRONG_PASSWORD, "Wrong password")
            return
        if lobby.is_full:
            outbox.error(connection, SessionErrorCode.LOBBY_FULL, "Lobby is full")
            return
        try:
            record.session, _slot = seat_player(record.session, player.player_id)
        except GameRuleError as e:
            outbox.error(connection, SessionErrorCode.SESSION_NOT_JOINABLE, str(e))
            return

        lobby.players.append(player.player_id)
        player.current_session_id = record.session_id
        player.in_lobby = True
        roster = self.roster(lobby)
        outbox.send_to_player(
            player,
            JoinedLobbyMessage(
                session_id=record.session_id,
                invite_code=lobby.invite_code,
                name=lobby.name,
                roster=roster,
            ),
        )
        outbox.broadcast(
            self._members(lobby),
            PlayerJoinedLobbyMessage(roster=roster),
            exclude_player_id=player.player_id,
        )
        logger.info("player joined lobby", invite_code=lobby.invite_code, player_count=len(lobby.players))

        if lobby.is_full:
            self._activate(record, outbox)

    async def leave_lobby(self, player: PlayerRecord, *, notify_player: bool = True) -> None:
        outbox = Outbox()
        lobby = self.get_by_session(player.current_session_id)
        if not player.in_lobby or lobby is None:
            if notify_player:
                outbox.error(player.connection, SessionErrorCode.NOT_IN_LOBBY, "You are not in a lobby")
            player.in_lobby = False
            await outbox.flush()
            return

        record = self._sessions.get(lobby.session_id)
        if record is None:
            self.discard(lobby.session_id)
            player.current_session_id = None
        else:
            async with record.lock:
                self.remove_player_locked(record, lobby, player, outbox)

        if notify_player:
            outbox.send_to_player(player, LeftLobbyMessage())
        await outbox.flush()

    def remove_player_locked(
        self,
        record: SessionRecord,
        lobby: Lobby,
        player: PlayerRecord,
        outbox: Outbox,
    ) -> None:
        """Remove player from lobby and session. Caller holds record.lock.

        The creator role passes to the next remaining player; an empty lobby
        is deleted together with its session.
        """
        if player.player_id in lobby.players:
            lobby.players.remove(player.player_id)
        if record.session.state == SessionState.WAITING and record.session.slot_of(player.player_id) is not None:
            record.session = vacate_slot(record.session, player.player_id)
        player.current_session_id = None
        player.in_lobby = False

        if lobby.creator_player_id == player.player_id and lobby.players:
            lobby.creator_player_id = lobby.players[0]

        if lobby.is_empty:
            self.discard(lobby.session_id)
            self._delete_session(record)
            logger.info("lobby emptied", invite_code=lobby.invite_code)
            return

        outbox.broadcast(self._members(lobby), PlayerLeftLobbyMessage(roster=self.roster(lobby)))
        logger.info("player left lobby", invite_code=lobby.invite_code, player_count=len(lobby.players))

    async def start_game(self, player: PlayerRecord, invite_code: str) -> None:
        """Creator-triggered start. Requires both slots to be filled."""
        outbox = Outbox()
        connection = player.connection
        lobby = self._lobbies.get(invite_code)
        record = self._sessions.get(lobby.session_id) if lobby is not None else None
        if lobby is None or record is None:
            outbox.error(connection, SessionErrorCode.LOBBY_NOT_FOUND, "Lobby not found")
            await outbox.flush()
            return

        async with record.lock:
            if record.deleted or self._lobbies.get(invite_code) is not lobby:
                outbox.error(connection, SessionErrorCode.LOBBY_NOT_FOUND, "Lobby not found")
            elif lobby.creator_player_id != player.player_id:
                outbox.error(connection, SessionErrorCode.NOT_LOBBY_CREATOR, "Only the lobby creator can start")
            elif len(lobby.players) < lobby.max_players:
                outbox.error(connection, SessionErrorCode.NOT_ENOUGH_PLAYERS, "Waiting for an opponent")
            elif record.session.state != SessionState.WAITING:
                outbox.error(connection, SessionErrorCode.SESSION_NOT_JOINABLE, "Game already started")
            else:
                self._activate(record, outbox)
        await outbox.flush()

    def _members(self, lobby: Lobby) -> list[PlayerRecord]:
        return [p for p in (self._players.get(pid) for pid in lobby.players) if p is not None]
