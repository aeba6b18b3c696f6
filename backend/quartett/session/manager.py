from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from quartett.logic.cards import DEFAULT_DECK
from quartett.logic.dealing import create_rng
from quartett.logic.enums import SessionState
from quartett.logic.events import (
    CategorySelectedEvent,
    GameEndedEvent,
    GameStartedEvent,
    RoundResolvedEvent,
    SlotTarget,
)
from quartett.logic.exceptions import GameRuleError
from quartett.logic.lifecycle import abandon, activate, mark_disconnected, mark_reconnected, seat_player
from quartett.logic.projection import project_round, project_session
from quartett.logic.round import play_category
from quartett.logic.state import DisconnectedSlot, opponent_of, utc_now
from quartett.logic.timer import TimerConfig
from quartett.messaging.types import (
    ConnectedMessage,
    GameCreatedMessage,
    GameLeftMessage,
    GameStartedMessage,
    GameStateMessage,
    LobbyListMessage,
    OpponentDisconnectedMessage,
    OpponentMoveMessage,
    OpponentReconnectedMessage,
    PlayersCountMessage,
    PongMessage,
    ReconnectStateMessage,
    RoundResultMessage,
    SessionErrorCode,
    UsernameSetMessage,
)
from quartett.server.settings import QuartettServerSettings
from quartett.session.broadcast import Outbox
from quartett.session.lobby_manager import LobbyManager
from quartett.session.matchmaking import MatchmakingQueue
from quartett.session.registry import PlayerRegistry, SessionRegistry
from quartett.session.timer_manager import TimerManager

if TYPE_CHECKING:
    import random
    from collections.abc import Callable, Sequence

    from quartett.logic.cards import Card
    from quartett.logic.events import ServiceEvent
    from quartett.logic.projection import SessionView
    from quartett.logic.state import GameSession
    from quartett.messaging.protocol import ConnectionProtocol
    from quartett.session.models import PlayerRecord, SessionRecord

logger = structlog.get_logger()


class SessionManager:
    """Coordinate players, lobbies, the matchmaking queue and game sessions.

    Each session record is its own lock domain. Handlers take the lock for
    one state transition, queue outbound messages on an Outbox, and flush
    the outbox only after the lock is released. When both are needed the
    matchmaking queue lock is always taken before a session lock.
    """

    def __init__(
        self,
        settings: QuartettServerSettings | None = None,
        *,
        deck: Sequence[Card] = DEFAULT_DECK,
        rng_factory: Callable[[], random.Random] = create_rng,
    ) -> None:
        self._settings = settings or QuartettServerSettings()
        self._deck = tuple(deck)
        self._rng_factory = rng_factory
        self._sessions = SessionRegistry()
        self._players = PlayerRegistry()
        self._queue = MatchmakingQueue()
        self._timer_manager = TimerManager(
            on_grace_expired=self._handle_grace_expired,
            on_cleanup=self._handle_cleanup,
            config=TimerConfig.from_settings(self._settings),
        )
        self._lobby_manager = LobbyManager(
            sessions=self._sessions,
            players=self._players,
            activate=self._activate_locked,
            delete_session=self._delete_session_locked,
            invite_code_length=self._settings.invite_code_length,
        )

    # --- Introspection ---

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def session_counts(self) -> dict[str, int]:
        counts = self._sessions.count_by_state()
        return {state.value: counts.get(state, 0) for state in SessionState}

    @property
    def lobby_count(self) -> int:
        return self._lobby_manager.lobby_count

    @property
    def player_count(self) -> int:
        return self._players.connected_count

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    def get_session(self, session_id: str) -> GameSession | None:
        record = self._sessions.get(session_id)
        return record.session if record is not None else None

    def get_player(self, connection_id: str) -> PlayerRecord | None:
        return self._players.get_by_connection(connection_id)

    def cancel_all_timers(self) -> None:
        for record in self._sessions:
            self._timer_manager.cancel_all(record)

    # --- Connection lifecycle ---

    async def register_connection(self, connection: ConnectionProtocol) -> None:
        player = self._players.create(connection)
        structlog.contextvars.bind_contextvars(player_id=player.player_id)
        logger.info("player connected", connected=self._players.connected_count)
        outbox = Outbox()
        outbox.send(
            connection,
            ConnectedMessage(
                player_id=player.player_id,
                username=player.username,
                reconnect_token=player.reconnect_token,
            ),
        )
        self._queue_players_count(outbox)
        await outbox.flush()

    async def handle_disconnect(self, connection: ConnectionProtocol) -> None:
        """Release everything a dropped connection held.

        Active sessions keep the player's slot for the grace period; any
        other state evicts the player immediately.
        """
        player = self._players.get_by_connection(connection.connection_id)
        if player is None:
            # connection was replaced by a rejoin, or never registered
            return

        async with self._queue.lock:
            self._queue.remove(player.player_id)

        if player.in_lobby:
            await self._lobby_manager.leave_lobby(player, notify_player=False)

        outbox = Outbox()
        record = self._sessions.get(player.current_session_id) if player.current_session_id else None
        if record is None:
            self._evict(player)
        else:
            async with record.lock:
                self._disconnect_locked(record, player, outbox)

        self._queue_players_count(outbox)
        await outbox.flush()

    def _disconnect_locked(self, record: SessionRecord, player: PlayerRecord, outbox: Outbox) -> None:
        session = record.session
        slot = session.slot_of(player.player_id)
        if record.deleted or slot is None or session.state == SessionState.COMPLETED:
            self._evict(player)
            return
        if session.state == SessionState.WAITING:
            self._delete_session_locked(record)
            self._evict(player)
            return

        other = opponent_of(slot)
        if isinstance(session.slots[other], DisconnectedSlot):
            logger.info("both players disconnected, tearing down session", session_id=record.session_id)
            opponent = self._players.get(session.occupant(other))
            self._delete_session_locked(record)
            self._evict(player)
            if opponent is not None:
                self._evict(opponent)
            return

        record.session = mark_disconnected(session, player.player_id)
        self._players.unbind_connection(player)
        player.last_disconnect_at = utc_now()
        player.last_session_id = record.session_id
        self._timer_manager.start_grace(record, player.player_id)
        outbox.send_to_player(
            self._slot_player(record.session, other),
            OpponentDisconnectedMessage(grace_seconds=self._timer_manager.config.grace_period_seconds),
        )
        logger.info("player disconnected, grace period started", session_id=record.session_id, slot=slot)

    def _evict(self, player: PlayerRecord) -> None:
        self._players.delete(player.player_id)
        logger.debug("player evicted", evicted_player_id=player.player_id)

    # --- Identity ---

    async def set_username(self, connection: ConnectionProtocol, username: str) -> None:
        player = self._players.get_by_connection(connection.connection_id)
        if player is None:
            return
        username = username.strip()
        if not username or len(username) > self._settings.max_username_length:
            await self._send_error(
                connection,
                SessionErrorCode.INVALID_USERNAME,
                f"Username must be 1-{self._settings.max_username_length} characters",
            )
            return
        player.username = username
        await connection.send_message(UsernameSetMessage(username=username).model_dump())

    async def handle_ping(self, connection: ConnectionProtocol) -> None:
        await connection.send_message(PongMessage().model_dump())

    # --- Lobbies ---

    async def create_lobby(
        self,
        connection: ConnectionProtocol,
        *,
        name: str | None = None,
        password: str | None = None,
    ) -> None:
        player = await self._require_idle_player(connection)
        if player is None or not await self._check_capacity(connection):
            return
        outbox = Outbox()
        self._lobby_manager.create_lobby(player, outbox, name=name, password=password)
        await outbox.flush()

    async def join_lobby_by_code(
        self,
        connection: ConnectionProtocol,
        invite_code: str,
        *,
        password: str | None = None,
    ) -> None:
        player = await self._require_idle_player(connection)
        if player is None:
            return
        await self._lobby_manager.join_by_code(player, invite_code, password)

    async def leave_lobby(self, connection: ConnectionProtocol) -> None:
        player = self._players.get_by_connection(connection.connection_id)
        if player is None:
            return
        await self._lobby_manager.leave_lobby(player)

    async def start_game_from_lobby(self, connection: ConnectionProtocol, invite_code: str) -> None:
        player = self._players.get_by_connection(connection.connection_id)
        if player is None:
            return
        await self._lobby_manager.start_game(player, invite_code)

    async def send_lobby_list(self, connection: ConnectionProtocol) -> None:
        await connection.send_message(LobbyListMessage(lobbies=self._lobby_manager.list_open()).model_dump())

    # --- Quick match ---

    async def create_game(self, connection: ConnectionProtocol) -> None:
        """Open a waiting session for the player and queue them for a match."""
        player = await self._require_idle_player(connection)
        if player is None or not await self._check_capacity(connection):
            return

        outbox = Outbox()
        async with self._queue.lock:
            if not player.is_idle:
                outbox.error(connection, SessionErrorCode.ALREADY_IN_GAME, "You are already in a game")
            else:
                record = self._sessions.create(player.player_id)
                player.current_session_id = record.session_id
                outbox.send_to_player(player, GameCreatedMessage(session_id=record.session_id))
                self._queue.enqueue(player.player_id)
                logger.info("player queued for quick match", session_id=record.session_id, queued=len(self._queue))
                await self._run_match_pass(outbox)
        await outbox.flush()

    def _is_matchable(self, player_id: str) -> bool:
        player = self._players.get(player_id)
        if player is None or not player.is_connected or player.in_lobby:
            return False
        record = self._sessions.get(player.current_session_id) if player.current_session_id else None
        return record is not None and record.session.state == SessionState.WAITING

    async def _run_match_pass(self, outbox: Outbox) -> None:
        """Pair queued players. Caller holds the queue lock."""
        while (pair := self._queue.pop_pair(self._is_matchable)) is not None:
            await self._bind_match(*pair, outbox)

    async def _bind_match(self, host_id: str, guest_id: str, outbox: Outbox) -> None:
        """Seat guest in host's pre-allocated session and start it."""
        host = self._players.get(host_id)
        guest = self._players.get(guest_id)
        if host is None or guest is None:
            return
        host_record = self._sessions.get(host.current_session_id) if host.current_session_id else None
        guest_record = self._sessions.get(guest.current_session_id) if guest.current_session_id else None
        if host_record is None:
            self._queue.push_front(guest_id)
            outbox.error(host.connection, SessionErrorCode.MATCH_FAILED, "Your game vanished", critical=True)
            return

        async with host_record.lock:
            if host_record.deleted or host_record.session.state != SessionState.WAITING:
                self._queue.push_front(guest_id)
                outbox.error(host.connection, SessionErrorCode.MATCH_FAILED, "Your game vanished", critical=True)
                return
            if guest_record is not None and guest_record is not host_record:
                async with guest_record.lock:
                    self._delete_session_locked(guest_record)
            host_record.session, _slot = seat_player(host_record.session, guest_id)
            guest.current_session_id = host_record.session_id
            self._activate_locked(host_record, outbox)
        logger.info("players matched", session_id=host_record.session_id)

    async def join_game(self, connection: ConnectionProtocol, session_id: str) -> None:
        """Join a waiting quick-match session directly by id."""
        player = await self._require_idle_player(connection)
        if player is None:
            return
        record = self._sessions.get(session_id)
        if record is None:
            await self._send_error(connection, SessionErrorCode.SESSION_NOT_FOUND, "Game not found")
            return
        if self._lobby_manager.get_by_session(session_id) is not None:
            await self._send_error(
                connection,
                SessionErrorCode.SESSION_NOT_JOINABLE,
                "Lobby games are joined with their invite code",
            )
            return

        outbox = Outbox()
        async with self._queue.lock, record.lock:
            if record.deleted:
                outbox.error(connection, SessionErrorCode.SESSION_NOT_FOUND, "Game not found")
            elif not player.is_idle:
                outbox.error(connection, SessionErrorCode.ALREADY_IN_GAME, "You are already in a game")
            else:
                try:
                    record.session, _slot = seat_player(record.session, player.player_id)
                except GameRuleError as e:
                    outbox.error(connection, SessionErrorCode.SESSION_NOT_JOINABLE, str(e))
                else:
                    player.current_session_id = session_id
                    for player_id in record.session.player_ids:
                        self._queue.remove(player_id)
                    if record.session.is_full:
                        self._activate_locked(record, outbox)
        await outbox.flush()

    # --- Gameplay ---

    async def select_category(self, connection: ConnectionProtocol, session_id: str, category: str) -> None:
        player = self._players.get_by_connection(connection.connection_id)
        if player is None:
            return
        record = self._sessions.get(session_id)
        if record is None:
            await self._send_error(connection, SessionErrorCode.SESSION_NOT_FOUND, "Game not found")
            return

        structlog.contextvars.bind_contextvars(session_id=session_id)
        outbox = Outbox()
        async with record.lock:
            if record.deleted:
                outbox.error(connection, SessionErrorCode.SESSION_NOT_FOUND, "Game not found")
            else:
                try:
                    record.session, events = play_category(record.session, player.player_id, category)
                except GameRuleError as e:
                    outbox.error(connection, e.code, str(e))
                else:
                    self._deliver_events(record, events, outbox)
        await outbox.flush()

    async def leave_game(self, connection: ConnectionProtocol, session_id: str) -> None:
        """Leave a session voluntarily. Leaving an active game forfeits it."""
        player = self._players.get_by_connection(connection.connection_id)
        if player is None:
            return
        if player.current_session_id != session_id:
            if player.last_session_id == session_id:
                player.last_session_id = None
                await connection.send_message(GameLeftMessage().model_dump())
                return
            await self._send_error(connection, SessionErrorCode.NOT_IN_GAME, "You are not in this game")
            return

        if player.in_lobby:
            await self._lobby_manager.leave_lobby(player, notify_player=False)
            await connection.send_message(GameLeftMessage().model_dump())
            return

        async with self._queue.lock:
            self._queue.remove(player.player_id)

        outbox = Outbox()
        record = self._sessions.get(session_id)
        if record is not None:
            async with record.lock:
                if not record.deleted and record.session.slot_of(player.player_id) is not None:
                    if record.session.state == SessionState.WAITING:
                        self._delete_session_locked(record)
                    elif record.session.state == SessionState.ACTIVE:
                        self._abandon_locked(record, player.player_id, outbox)
        player.current_session_id = None
        player.last_session_id = None
        outbox.send_to_player(player, GameLeftMessage())
        logger.info("player left game", session_id=session_id)
        await outbox.flush()

    # --- Reconnection ---

    async def rejoin_game(self, connection: ConnectionProtocol, session_id: str, reconnect_token: str) -> None:
        """Rebind connection to the identity owning reconnect_token.

        Safe to repeat: a rejoin from the connection already bound to an
        occupied slot only re-sends the snapshot.
        """
        current = self._players.get_by_connection(connection.connection_id)
        target = self._players.get_by_token(reconnect_token)
        if target is None:
            await self._send_error(
                connection,
                SessionErrorCode.RECONNECT_EXPIRED,
                "Reconnection window has expired",
                critical=True,
            )
            return
        if session_id not in (target.current_session_id, target.last_session_id):
            await self._send_error(
                connection,
                SessionErrorCode.RECONNECT_SESSION_MISMATCH,
                "That game is not the one you were playing",
                critical=True,
            )
            return
        if current is not None and current is not target and not current.is_idle:
            await self._send_error(connection, SessionErrorCode.ALREADY_IN_GAME, "Leave your current game first")
            return
        record = self._sessions.get(session_id)
        if record is None:
            await self._send_error(
                connection,
                SessionErrorCode.RECONNECT_EXPIRED,
                "Game no longer exists",
                critical=True,
            )
            return

        outbox = Outbox()
        async with record.lock:
            if record.deleted or record.session.slot_of(target.player_id) is None:
                outbox.error(
                    connection,
                    SessionErrorCode.RECONNECT_EXPIRED,
                    "Game no longer exists",
                    critical=True,
                )
            else:
                self._rejoin_locked(record, target, current, connection, outbox)
        await outbox.flush()

    def _rejoin_locked(
        self,
        record: SessionRecord,
        target: PlayerRecord,
        current: PlayerRecord | None,
        connection: ConnectionProtocol,
        outbox: Outbox,
    ) -> None:
        if current is not None and current is not target:
            # drop the placeholder identity created for this connection
            self._players.delete(current.player_id)
        stale = self._players.bind_connection(target, connection)
        if stale is not None:
            outbox.close(stale, code=4001, reason="replaced_by_rejoin")
        structlog.contextvars.bind_contextvars(player_id=target.player_id, session_id=record.session_id)

        slot = record.session.slot_of(target.player_id)
        if record.session.is_active and isinstance(record.session.slots[slot], DisconnectedSlot):
            record.session = mark_reconnected(record.session, target.player_id)
            self._timer_manager.cancel_grace(record)
            outbox.send_to_player(
                self._slot_player(record.session, opponent_of(slot)),
                OpponentReconnectedMessage(),
            )
            logger.info("player reconnected", slot=slot)
        target.last_disconnect_at = None

        outbox.send(
            connection,
            ConnectedMessage(
                player_id=target.player_id,
                username=target.username,
                reconnect_token=target.reconnect_token,
            ),
        )
        outbox.send(connection, ReconnectStateMessage.model_validate(self._project(record.session, slot).model_dump()))

    async def _handle_grace_expired(self, session_id: str, player_id: str) -> None:
        """Timer callback: the disconnected player did not come back in time."""
        record = self._sessions.get(session_id)
        if record is None:
            return
        structlog.contextvars.bind_contextvars(session_id=session_id)
        outbox = Outbox()
        async with record.lock:
            session = record.session
            slot = session.slot_of(player_id)
            still_waiting = (
                not record.deleted
                and record.grace_player_id == player_id
                and session.is_active
                and slot is not None
                and isinstance(session.slots[slot], DisconnectedSlot)
            )
            if still_waiting:
                # running inside the timer task: detach instead of cancelling
                record.grace_timer = None
                record.grace_player_id = None
                logger.info("grace period expired", slot=slot)
                self._abandon_locked(record, player_id, outbox)
                player = self._players.get(player_id)
                if player is not None:
                    self._evict(player)
        await outbox.flush()

    async def _handle_cleanup(self, session_id: str) -> None:
        """Timer callback: retention window for a completed session is over."""
        record = self._sessions.get(session_id)
        if record is None:
            return
        async with record.lock:
            if not record.deleted and record.session.is_completed:
                record.cleanup_timer = None
                self._delete_session_locked(record)

    # --- Session transitions (caller holds record.lock) ---

    def _activate_locked(self, record: SessionRecord, outbox: Outbox) -> None:
        record.session, events = activate(record.session, self._deck, self._rng_factory())
        self._lobby_manager.discard(record.session_id)
        logger.info(
            "session activated",
            session_id=record.session_id,
            dealt_total=record.session.dealt_total,
            current_turn=record.session.current_turn,
        )
        self._deliver_events(record, events, outbox)

    def _abandon_locked(self, record: SessionRecord, player_id: str, outbox: Outbox) -> None:
        """Forfeit player_id's slot. The opponent, if still around, wins."""
        record.session, _events = abandon(record.session, player_id)
        self._timer_manager.cancel_grace(record)
        session = record.session
        leaver = self._players.get(player_id)
        if leaver is not None:
            leaver.current_session_id = None

        if not session.has_connected_occupant:
            for remaining_id in session.player_ids:
                remaining = self._players.get(remaining_id)
                if remaining is not None and not remaining.is_connected:
                    self._evict(remaining)
            self._delete_session_locked(record)
            return

        winner = session.winner_slot
        opponent = self._slot_player(session, winner) if winner is not None else None
        if opponent is not None:
            outbox.error(
                opponent.connection,
                SessionErrorCode.OPPONENT_LEFT,
                "Opponent has left the game",
                critical=True,
            )
            outbox.send_to_player(opponent, self._game_state(session, winner))
        self._on_completed_locked(record)

    def _on_completed_locked(self, record: SessionRecord) -> None:
        session = record.session
        for player_id in session.player_ids:
            player = self._players.get(player_id)
            if player is not None:
                player.current_session_id = None
                player.last_session_id = session.session_id
        self._timer_manager.cancel_grace(record)
        self._timer_manager.schedule_cleanup(record)
        logger.info(
            "session completed",
            session_id=session.session_id,
            winner_slot=session.winner_slot,
            is_draw=session.is_draw,
            end_reason=session.end_reason,
        )

    def _delete_session_locked(self, record: SessionRecord) -> None:
        self._timer_manager.cancel_all(record)
        self._sessions.delete(record.session_id)
        self._lobby_manager.discard(record.session_id)
        for player_id in record.session.player_ids:
            player = self._players.get(player_id)
            if player is not None and player.current_session_id == record.session_id:
                player.current_session_id = None
        logger.info("session deleted", session_id=record.session_id)

    # --- Delivery ---

    def _deliver_events(self, record: SessionRecord, events: list[ServiceEvent], outbox: Outbox) -> None:
        """Turn domain events into per-slot projected messages."""
        session = record.session
        for service_event in events:
            event = service_event.event
            target = service_event.target
            slots = [target.slot] if isinstance(target, SlotTarget) else [0, 1]
            for slot in slots:
                player = self._slot_player(session, slot)
                if player is None:
                    continue
                if isinstance(event, GameStartedEvent):
                    outbox.send_to_player(player, GameStartedMessage(session_id=event.session_id))
                    outbox.send_to_player(player, self._game_state(session, slot))
                elif isinstance(event, CategorySelectedEvent):
                    outbox.send_to_player(player, OpponentMoveMessage(category=event.category))
                elif isinstance(event, RoundResolvedEvent):
                    result = project_round(event, session, slot)
                    outbox.send_to_player(player, RoundResultMessage.model_validate(result.model_dump()))
                    outbox.send_to_player(player, self._game_state(session, slot))
            if isinstance(event, GameEndedEvent):
                self._on_completed_locked(record)

    def _slot_player(self, session: GameSession, slot: int) -> PlayerRecord | None:
        return self._players.get(session.occupant(slot))

    def _project(self, session: GameSession, slot: int) -> SessionView:
        opponent = self._slot_player(session, opponent_of(slot))
        return project_session(
            session,
            slot,
            opponent_username=opponent.username if opponent is not None else None,
        )

    def _game_state(self, session: GameSession, slot: int) -> GameStateMessage:
        return GameStateMessage.model_validate(self._project(session, slot).model_dump())

    def _queue_players_count(self, outbox: Outbox) -> None:
        outbox.broadcast(self._players.connected(), PlayersCountMessage(count=self._players.connected_count))

    # --- Helpers ---

    async def _require_idle_player(self, connection: ConnectionProtocol) -> PlayerRecord | None:
        player = self._players.get_by_connection(connection.connection_id)
        if player is None:
            return None
        if player.in_lobby:
            await self._send_error(connection, SessionErrorCode.ALREADY_IN_LOBBY, "Leave your current lobby first")
            return None
        if player.current_session_id is not None:
            await self._send_error(connection, SessionErrorCode.ALREADY_IN_GAME, "Leave your current game first")
            return None
        return player

    async def _check_capacity(self, connection: ConnectionProtocol) -> bool:
        if len(self._sessions) >= self._settings.max_sessions:
            await self._send_error(connection, SessionErrorCode.SERVER_FULL, "Server is full, try again later")
            return False
        return True

    async def _send_error(
        self,
        connection: ConnectionProtocol,
        code: SessionErrorCode,
        message: str,
        *,
        critical: bool = False,
    ) -> None:
        outbox = Outbox()
        outbox.error(connection, code, message, critical=critical)
        await outbox.flush()
