import pytest

from quartett.logic.enums import SessionState
from quartett.messaging.types import SessionErrorCode, ServerMessageType
from quartett.session.broadcast import Outbox
from quartett.session.lobby_manager import INVITE_CODE_ALPHABET, LobbyManager
from quartett.session.registry import PlayerRegistry, SessionRegistry
from quartett.tests.conftest import connect
from quartett.tests.mocks import MockConnection


async def _lobby(manager, creator, **kwargs) -> dict:
    await manager.create_lobby(creator, **kwargs)
    return creator.last_of_type(ServerMessageType.LOBBY_CREATED)


class TestCreateLobby:
    async def test_create_lobby_allocates_code_and_waiting_session(self, session_manager):
        creator = await connect(session_manager)
        await session_manager.set_username(creator, "Alice")

        created = await _lobby(session_manager, creator)

        assert len(created["invite_code"]) == 6
        assert set(created["invite_code"]) <= set(INVITE_CODE_ALPHABET)
        assert created["name"] == "Alice's Game"
        assert created["roster"] == [
            {
                "player_id": session_manager.get_player(creator.connection_id).player_id,
                "username": "Alice",
                "is_creator": True,
            },
        ]
        assert session_manager.get_session(created["session_id"]).state == SessionState.WAITING
        assert session_manager.lobby_count == 1

    async def test_custom_name(self, session_manager):
        creator = await connect(session_manager)
        created = await _lobby(session_manager, creator, name="Friday night")
        assert created["name"] == "Friday night"

    async def test_cannot_create_while_queued(self, session_manager):
        connection = await connect(session_manager)
        await session_manager.create_game(connection)

        await session_manager.create_lobby(connection)

        assert connection.last_of_type(ServerMessageType.ERROR)["code"] == SessionErrorCode.ALREADY_IN_GAME

    async def test_cannot_create_second_lobby(self, session_manager):
        connection = await connect(session_manager)
        await _lobby(session_manager, connection)

        await session_manager.create_lobby(connection)

        assert connection.last_of_type(ServerMessageType.ERROR)["code"] == SessionErrorCode.ALREADY_IN_LOBBY


class TestJoinLobby:
    async def test_second_player_joins_and_game_starts(self, session_manager):
        creator = await connect(session_manager)
        joiner = await connect(session_manager)
        created = await _lobby(session_manager, creator)

        await session_manager.join_lobby_by_code(joiner, created["invite_code"])

        joined = joiner.last_of_type(ServerMessageType.JOINED_LOBBY)
        assert joined["session_id"] == created["session_id"]
        assert [entry["is_creator"] for entry in joined["roster"]] == [True, False]
        assert len(creator.last_of_type(ServerMessageType.PLAYER_JOINED_LOBBY)["roster"]) == 2
        session = session_manager.get_session(created["session_id"])
        assert session.state == SessionState.ACTIVE
        assert session.invite_code == created["invite_code"]
        for connection in (creator, joiner):
            assert connection.last_of_type(ServerMessageType.GAME_STARTED)["session_id"] == created["session_id"]
        # the lobby closes once its game is running
        assert session_manager.lobby_count == 0
        assert session_manager.get_player(joiner.connection_id).in_lobby is False

    async def test_password_protected_lobby(self, session_manager):
        creator = await connect(session_manager)
        joiner = await connect(session_manager)
        created = await _lobby(session_manager, creator, password="hunter2")

        await session_manager.join_lobby_by_code(joiner, created["invite_code"], password="wrong")
        assert joiner.last_of_type(ServerMessageType.ERROR)["code"] == SessionErrorCode.WRONG_PASSWORD

        await session_manager.join_lobby_by_code(joiner, created["invite_code"])
        assert joiner.last_of_type(ServerMessageType.ERROR)["code"] == SessionErrorCode.WRONG_PASSWORD

        await session_manager.join_lobby_by_code(joiner, created["invite_code"], password="hunter2")
        assert joiner.last_of_type(ServerMessageType.JOINED_LOBBY)

    async def test_unknown_code(self, session_manager):
        joiner = await connect(session_manager)

        await session_manager.join_lobby_by_code(joiner, "ZZZZZZ")

        assert joiner.last_of_type(ServerMessageType.ERROR)["code"] == SessionErrorCode.LOBBY_NOT_FOUND

    async def test_started_lobby_cannot_be_joined(self, session_manager):
        creator = await connect(session_manager)
        joiner = await connect(session_manager)
        late = await connect(session_manager)
        created = await _lobby(session_manager, creator)
        await session_manager.join_lobby_by_code(joiner, created["invite_code"])

        await session_manager.join_lobby_by_code(late, created["invite_code"])

        assert late.last_of_type(ServerMessageType.ERROR)["code"] == SessionErrorCode.LOBBY_NOT_FOUND


class TestLeaveLobby:
    async def test_last_player_leaving_deletes_lobby_and_session(self, session_manager):
        creator = await connect(session_manager)
        created = await _lobby(session_manager, creator)

        await session_manager.leave_lobby(creator)

        assert creator.last_of_type(ServerMessageType.LEFT_LOBBY)
        assert session_manager.lobby_count == 0
        assert session_manager.get_session(created["session_id"]) is None
        assert session_manager.get_player(creator.connection_id).is_idle

    async def test_leave_when_not_in_lobby(self, session_manager):
        connection = await connect(session_manager)

        await session_manager.leave_lobby(connection)

        assert connection.last_of_type(ServerMessageType.ERROR)["code"] == SessionErrorCode.NOT_IN_LOBBY

    async def test_creator_disconnect_closes_lobby(self, session_manager):
        creator = await connect(session_manager)
        created = await _lobby(session_manager, creator)

        await session_manager.handle_disconnect(creator)

        assert session_manager.lobby_count == 0
        assert session_manager.get_session(created["session_id"]) is None

    async def test_leave_game_in_lobby(self, session_manager):
        creator = await connect(session_manager)
        created = await _lobby(session_manager, creator)

        await session_manager.leave_game(creator, created["session_id"])

        assert creator.last_of_type(ServerMessageType.GAME_LEFT)
        assert session_manager.lobby_count == 0


class TestStartGameFromLobby:
    async def test_start_with_one_player_is_rejected(self, session_manager):
        creator = await connect(session_manager)
        created = await _lobby(session_manager, creator)

        await session_manager.start_game_from_lobby(creator, created["invite_code"])

        assert creator.last_of_type(ServerMessageType.ERROR)["code"] == SessionErrorCode.NOT_ENOUGH_PLAYERS
        assert session_manager.get_session(created["session_id"]).state == SessionState.WAITING

    async def test_only_creator_may_start(self, session_manager):
        creator = await connect(session_manager)
        other = await connect(session_manager)
        created = await _lobby(session_manager, creator)

        await session_manager.start_game_from_lobby(other, created["invite_code"])

        assert other.last_of_type(ServerMessageType.ERROR)["code"] == SessionErrorCode.NOT_LOBBY_CREATOR

    async def test_unknown_lobby(self, session_manager):
        creator = await connect(session_manager)

        await session_manager.start_game_from_lobby(creator, "NOPE22")

        assert creator.last_of_type(ServerMessageType.ERROR)["code"] == SessionErrorCode.LOBBY_NOT_FOUND


class TestLobbyList:
    async def test_lists_only_open_lobbies(self, session_manager):
        first = await connect(session_manager)
        second = await connect(session_manager)
        joiner = await connect(session_manager)
        viewer = await connect(session_manager)
        open_lobby = await _lobby(session_manager, first, password="pw")
        started = await _lobby(session_manager, second)
        await session_manager.join_lobby_by_code(joiner, started["invite_code"])

        await session_manager.send_lobby_list(viewer)

        lobbies = viewer.last_of_type(ServerMessageType.LOBBY_LIST)["lobbies"]
        assert lobbies == [
            {
                "invite_code": open_lobby["invite_code"],
                "name": open_lobby["name"],
                "player_count": 1,
                "max_players": 2,
                "has_password": True,
            },
        ]


class TestLobbyManager:
    """LobbyManager with stubbed activation, to observe a full but unstarted lobby."""

    @pytest.fixture
    def env(self):
        sessions = SessionRegistry()
        players = PlayerRegistry()
        activated: list[str] = []

        def delete_session(record):
            sessions.delete(record.session_id)

        lobby_manager = LobbyManager(
            sessions=sessions,
            players=players,
            activate=lambda record, _outbox: activated.append(record.session_id),
            delete_session=delete_session,
            invite_code_length=4,
        )
        return lobby_manager, sessions, players, activated

    async def test_full_lobby_triggers_activation(self, env):
        lobby_manager, _sessions, players, activated = env
        creator = players.create(MockConnection())
        joiner = players.create(MockConnection())
        lobby = lobby_manager.create_lobby(creator, Outbox())

        await lobby_manager.join_by_code(joiner, lobby.invite_code, None)

        assert activated == [lobby.session_id]
        assert len(lobby.invite_code) == 4
        assert lobby.players == [creator.player_id, joiner.player_id]

    async def test_creator_role_passes_on_when_creator_leaves(self, env):
        lobby_manager, sessions, players, _activated = env
        creator_conn = MockConnection()
        joiner_conn = MockConnection()
        creator = players.create(creator_conn)
        joiner = players.create(joiner_conn)
        lobby = lobby_manager.create_lobby(creator, Outbox())
        await lobby_manager.join_by_code(joiner, lobby.invite_code, None)

        await lobby_manager.leave_lobby(creator)

        assert lobby.creator_player_id == joiner.player_id
        roster = joiner_conn.last_of_type(ServerMessageType.PLAYER_LEFT_LOBBY)["roster"]
        assert roster == [{"player_id": joiner.player_id, "username": joiner.username, "is_creator": True}]
        session = sessions.get(lobby.session_id).session
        assert session.slot_of(creator.player_id) is None
        assert creator_conn.last_of_type(ServerMessageType.LEFT_LOBBY)

    async def test_full_lobby_rejects_third_player(self, env):
        lobby_manager, _sessions, players, _activated = env
        creator = players.create(MockConnection())
        lobby = lobby_manager.create_lobby(creator, Outbox())
        await lobby_manager.join_by_code(players.create(MockConnection()), lobby.invite_code, None)
        third_conn = MockConnection()

        await lobby_manager.join_by_code(players.create(third_conn), lobby.invite_code, None)

        assert third_conn.last_of_type(ServerMessageType.ERROR)["code"] == SessionErrorCode.LOBBY_FULL

    def test_invite_codes_are_unique(self, env):
        lobby_manager, _sessions, players, _activated = env
        codes = {lobby_manager.create_lobby(players.create(MockConnection()), Outbox()).invite_code for _ in range(50)}
        assert len(codes) == 50
