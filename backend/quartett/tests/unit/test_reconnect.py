"""Disconnect, grace period and rejoin behaviour of SessionManager."""

import asyncio

from quartett.logic.enums import EndReason, SessionState
from quartett.logic.state import DisconnectedSlot, OccupiedSlot
from quartett.messaging.types import SessionErrorCode, ServerMessageType
from quartett.tests.conftest import GRACE_SECONDS, by_slot, connect, start_quick_match
from quartett.tests.mocks import MockConnection


async def _token_of(manager, connection) -> tuple[str, str]:
    player = manager.get_player(connection.connection_id)
    return player.player_id, player.reconnect_token


class TestDisconnect:
    async def test_disconnect_pauses_slot_and_notifies_opponent(self, session_manager):
        host, guest, session_id = await start_quick_match(session_manager)
        player_id, _token = await _token_of(session_manager, host)

        await session_manager.handle_disconnect(host)

        session = session_manager.get_session(session_id)
        slot = session.slot_of(player_id)
        assert isinstance(session.slots[slot], DisconnectedSlot)
        assert session.state == SessionState.ACTIVE
        notice = guest.last_of_type(ServerMessageType.OPPONENT_DISCONNECTED)
        assert notice["grace_seconds"] == GRACE_SECONDS

    async def test_moves_are_rejected_while_paused(self, session_manager):
        host, guest, session_id = await start_quick_match(session_manager)
        slot_0, slot_1 = by_slot(session_manager, session_id, host, guest)
        session = session_manager.get_session(session_id)
        actor, idle = (slot_0, slot_1) if session.current_turn == 0 else (slot_1, slot_0)

        await session_manager.handle_disconnect(idle)
        await session_manager.select_category(actor, session_id, "charisma")

        assert actor.last_of_type(ServerMessageType.ERROR)["code"] == "session_paused"

    async def test_both_players_gone_tears_session_down(self, session_manager):
        host, guest, session_id = await start_quick_match(session_manager)

        await session_manager.handle_disconnect(host)
        await session_manager.handle_disconnect(guest)

        assert session_manager.get_session(session_id) is None
        assert session_manager.player_count == 0

    async def test_unknown_connection_is_ignored(self, session_manager):
        await session_manager.handle_disconnect(MockConnection())
        assert session_manager.player_count == 0


class TestRejoinWithinGrace:
    async def test_rejoin_restores_slot_and_hand(self, session_manager):
        host, guest, session_id = await start_quick_match(session_manager)
        player_id, token = await _token_of(session_manager, host)
        hand_before = session_manager.get_session(session_id).hands
        await session_manager.handle_disconnect(host)

        replacement = await connect(session_manager)
        await session_manager.rejoin_game(replacement, session_id, token)

        session = session_manager.get_session(session_id)
        assert session.slots[session.slot_of(player_id)] == OccupiedSlot(player_id=player_id)
        assert session.hands == hand_before
        assert replacement.last_of_type(ServerMessageType.CONNECTED)["player_id"] == player_id
        snapshot = replacement.last_of_type(ServerMessageType.RECONNECT_STATE)
        assert [c["id"] for c in snapshot["own_hand"]] == [c.id for c in hand_before[session.slot_of(player_id)]]
        assert snapshot["opponent_connected"] is True
        assert guest.last_of_type(ServerMessageType.OPPONENT_RECONNECTED)

    async def test_rejoin_cancels_grace_timer(self, session_manager):
        host, guest, session_id = await start_quick_match(session_manager)
        _player_id, token = await _token_of(session_manager, host)
        await session_manager.handle_disconnect(host)
        replacement = await connect(session_manager)
        await session_manager.rejoin_game(replacement, session_id, token)

        await asyncio.sleep(GRACE_SECONDS * 3)

        assert session_manager.get_session(session_id).state == SessionState.ACTIVE
        assert guest.messages_of_type(ServerMessageType.ERROR) == []

    async def test_placeholder_identity_is_discarded(self, session_manager):
        host, _guest, session_id = await start_quick_match(session_manager)
        _player_id, token = await _token_of(session_manager, host)
        await session_manager.handle_disconnect(host)
        replacement = await connect(session_manager)
        placeholder_count = session_manager.player_count

        await session_manager.rejoin_game(replacement, session_id, token)

        assert session_manager.player_count == placeholder_count

    async def test_play_resumes_after_rejoin(self, session_manager):
        host, guest, session_id = await start_quick_match(session_manager)
        _player_id, token = await _token_of(session_manager, host)
        await session_manager.handle_disconnect(host)
        replacement = await connect(session_manager)
        await session_manager.rejoin_game(replacement, session_id, token)

        slot_0, slot_1 = by_slot(session_manager, session_id, replacement, guest)
        actor = (slot_0, slot_1)[session_manager.get_session(session_id).current_turn]
        await session_manager.select_category(actor, session_id, "charisma")

        assert actor.last_of_type(ServerMessageType.ROUND_RESULT)

    async def test_rejoin_is_idempotent(self, session_manager):
        host, _guest, session_id = await start_quick_match(session_manager)
        player_id, token = await _token_of(session_manager, host)

        await session_manager.rejoin_game(host, session_id, token)
        await session_manager.rejoin_game(host, session_id, token)

        assert len(host.messages_of_type(ServerMessageType.RECONNECT_STATE)) == 2
        assert host.is_closed is False
        session = session_manager.get_session(session_id)
        assert session.slots[session.slot_of(player_id)] == OccupiedSlot(player_id=player_id)

    async def test_rejoin_from_second_connection_closes_the_first(self, session_manager):
        host, _guest, session_id = await start_quick_match(session_manager)
        _player_id, token = await _token_of(session_manager, host)
        replacement = await connect(session_manager)

        await session_manager.rejoin_game(replacement, session_id, token)

        assert host.is_closed is True
        assert host.close_code == 4001
        # the old socket's own disconnect no longer affects the session
        await session_manager.handle_disconnect(host)
        session = session_manager.get_session(session_id)
        assert all(isinstance(slot, OccupiedSlot) for slot in session.slots)


class TestRejoinRejected:
    async def test_rejoin_after_grace_expiry(self, session_manager):
        host, guest, session_id = await start_quick_match(session_manager)
        _player_id, token = await _token_of(session_manager, host)
        await session_manager.handle_disconnect(host)

        await asyncio.sleep(GRACE_SECONDS * 3)

        session = session_manager.get_session(session_id)
        if session is not None:
            assert session.end_reason == EndReason.ABANDONED
        error = guest.last_of_type(ServerMessageType.ERROR)
        assert error["code"] == SessionErrorCode.OPPONENT_LEFT
        assert error["critical"] is True
        assert guest.last_of_type(ServerMessageType.GAME_STATE)["winner"] == "me"

        late = await connect(session_manager)
        await session_manager.rejoin_game(late, session_id, token)

        error = late.last_of_type(ServerMessageType.ERROR)
        assert error["code"] == SessionErrorCode.RECONNECT_EXPIRED
        assert error["critical"] is True

    async def test_rejoin_other_session_is_a_mismatch(self, session_manager):
        host, _guest, _session_id = await start_quick_match(session_manager)
        _other_host, _other_guest, other_session_id = await start_quick_match(session_manager)
        _player_id, token = await _token_of(session_manager, host)
        await session_manager.handle_disconnect(host)
        replacement = await connect(session_manager)

        await session_manager.rejoin_game(replacement, other_session_id, token)

        error = replacement.last_of_type(ServerMessageType.ERROR)
        assert error["code"] == SessionErrorCode.RECONNECT_SESSION_MISMATCH
        assert error["critical"] is True

    async def test_unknown_token_is_expired(self, session_manager):
        _host, _guest, session_id = await start_quick_match(session_manager)
        stranger = await connect(session_manager)

        await session_manager.rejoin_game(stranger, session_id, "not-a-token")

        assert stranger.last_of_type(ServerMessageType.ERROR)["code"] == SessionErrorCode.RECONNECT_EXPIRED

    async def test_busy_connection_cannot_take_over_identity(self, session_manager):
        host, _guest, session_id = await start_quick_match(session_manager)
        _player_id, token = await _token_of(session_manager, host)
        await session_manager.handle_disconnect(host)
        busy = await connect(session_manager)
        await session_manager.create_game(busy)

        await session_manager.rejoin_game(busy, session_id, token)

        assert busy.last_of_type(ServerMessageType.ERROR)["code"] == SessionErrorCode.ALREADY_IN_GAME
