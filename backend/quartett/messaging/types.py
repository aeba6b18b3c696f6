from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from quartett.logic.projection import RoundResultView, SessionView

# ASCII control character boundaries for input validation
_SPACE_ORD = 0x20
_DEL_ORD = 0x7F

_ID_FIELD = Field(min_length=1, max_length=64, pattern=r"^[a-zA-Z0-9_-]+$")
_CATEGORY_FIELD = Field(min_length=1, max_length=64)
_PASSWORD_FIELD = Field(default=None, min_length=1, max_length=128)


def _reject_control_characters(value: str) -> str:
    if any(ord(c) < _SPACE_ORD or ord(c) == _DEL_ORD for c in value):
        raise ValueError("must not contain control characters")
    return value


class ClientMessageType(StrEnum):
    SET_USERNAME = "set_username"
    CREATE_LOBBY = "create_lobby"
    JOIN_LOBBY_BY_CODE = "join_lobby_by_code"
    LEAVE_LOBBY = "leave_lobby"
    START_GAME_FROM_LOBBY = "start_game_from_lobby"
    GET_LOBBY_LIST = "get_lobby_list"
    CREATE_GAME = "create_game"
    JOIN_GAME = "join_game"
    SELECT_CATEGORY = "select_category"
    REJOIN_GAME = "rejoin_game"
    LEAVE_GAME = "leave_game"
    PING = "ping"


class ServerMessageType(StrEnum):
    CONNECTED = "connected"
    USERNAME_SET = "username_set"
    LOBBY_CREATED = "lobby_created"
    JOINED_LOBBY = "joined_lobby"
    PLAYER_JOINED_LOBBY = "player_joined_lobby"
    PLAYER_LEFT_LOBBY = "player_left_lobby"
    LEFT_LOBBY = "left_lobby"
    LOBBY_LIST = "lobby_list"
    GAME_CREATED = "game_created"
    GAME_STARTED = "game_started"
    GAME_STATE = "game_state"
    OPPONENT_MOVE = "opponent_move"
    ROUND_RESULT = "round_result"
    OPPONENT_DISCONNECTED = "opponent_disconnected"
    OPPONENT_RECONNECTED = "opponent_reconnected"
    RECONNECT_STATE = "reconnect_state"
    GAME_LEFT = "game_left"
    PLAYERS_COUNT = "players_count"
    PONG = "pong"
    ERROR = "error"


class SessionErrorCode(StrEnum):
    INVALID_MESSAGE = "invalid_message"
    INVALID_USERNAME = "invalid_username"
    SERVER_FULL = "server_full"
    ALREADY_IN_GAME = "already_in_game"
    ALREADY_IN_LOBBY = "already_in_lobby"
    LOBBY_NOT_FOUND = "lobby_not_found"
    WRONG_PASSWORD = "wrong_password"  # noqa: S105
    LOBBY_FULL = "lobby_full"
    NOT_IN_LOBBY = "not_in_lobby"
    NOT_LOBBY_CREATOR = "not_lobby_creator"
    NOT_ENOUGH_PLAYERS = "not_enough_players"
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_NOT_JOINABLE = "session_not_joinable"
    NOT_IN_GAME = "not_in_game"
    MATCH_FAILED = "match_failed"
    OPPONENT_LEFT = "opponent_left"
    RECONNECT_EXPIRED = "reconnect_expired"
    RECONNECT_SESSION_MISMATCH = "reconnect_session_mismatch"


# ---------------------------------------------------------------------------
# Client -> server
# ---------------------------------------------------------------------------


class SetUsernameMessage(BaseModel):
    type: Literal[ClientMessageType.SET_USERNAME] = ClientMessageType.SET_USERNAME
    username: str = Field(min_length=1, max_length=64)

    @field_validator("username")
    @classmethod
    def _validate_username(cls, v: str) -> str:
        return _reject_control_characters(v).strip()


class CreateLobbyMessage(BaseModel):
    type: Literal[ClientMessageType.CREATE_LOBBY] = ClientMessageType.CREATE_LOBBY
    name: str | None = Field(default=None, max_length=64)
    password: str | None = _PASSWORD_FIELD

    @field_validator("name")
    @classmethod
    def _validate_name(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return _reject_control_characters(v).strip() or None


class JoinLobbyByCodeMessage(BaseModel):
    type: Literal[ClientMessageType.JOIN_LOBBY_BY_CODE] = ClientMessageType.JOIN_LOBBY_BY_CODE
    invite_code: str = Field(min_length=1, max_length=16)
    password: str | None = _PASSWORD_FIELD

    @field_validator("invite_code")
    @classmethod
    def _normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class LeaveLobbyMessage(BaseModel):
    type: Literal[ClientMessageType.LEAVE_LOBBY] = ClientMessageType.LEAVE_LOBBY


class StartGameFromLobbyMessage(BaseModel):
    type: Literal[ClientMessageType.START_GAME_FROM_LOBBY] = ClientMessageType.START_GAME_FROM_LOBBY
    invite_code: str = Field(min_length=1, max_length=16)

    @field_validator("invite_code")
    @classmethod
    def _normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class GetLobbyListMessage(BaseModel):
    type: Literal[ClientMessageType.GET_LOBBY_LIST] = ClientMessageType.GET_LOBBY_LIST


class CreateGameMessage(BaseModel):
    type: Literal[ClientMessageType.CREATE_GAME] = ClientMessageType.CREATE_GAME


class JoinGameMessage(BaseModel):
    type: Literal[ClientMessageType.JOIN_GAME] = ClientMessageType.JOIN_GAME
    session_id: str = _ID_FIELD


class SelectCategoryMessage(BaseModel):
    type: Literal[ClientMessageType.SELECT_CATEGORY] = ClientMessageType.SELECT_CATEGORY
    session_id: str = _ID_FIELD
    category: str = _CATEGORY_FIELD


class RejoinGameMessage(BaseModel):
    type: Literal[ClientMessageType.REJOIN_GAME] = ClientMessageType.REJOIN_GAME
    session_id: str = _ID_FIELD
    reconnect_token: str = Field(min_length=1, max_length=128)


class LeaveGameMessage(BaseModel):
    type: Literal[ClientMessageType.LEAVE_GAME] = ClientMessageType.LEAVE_GAME
    session_id: str = _ID_FIELD


class PingMessage(BaseModel):
    type: Literal[ClientMessageType.PING] = ClientMessageType.PING


ClientMessage = Annotated[
    SetUsernameMessage
    | CreateLobbyMessage
    | JoinLobbyByCodeMessage
    | LeaveLobbyMessage
    | StartGameFromLobbyMessage
    | GetLobbyListMessage
    | CreateGameMessage
    | JoinGameMessage
    | SelectCategoryMessage
    | RejoinGameMessage
    | LeaveGameMessage
    | PingMessage,
    Field(discriminator="type"),
]

_client_message_adapter = TypeAdapter(ClientMessage)


def parse_client_message(data: dict[str, Any]) -> ClientMessage:
    """Parse a raw dict into a typed client message."""
    return _client_message_adapter.validate_python(data)


# ---------------------------------------------------------------------------
# Server -> client
# ---------------------------------------------------------------------------


class RosterEntry(BaseModel):
    player_id: str
    username: str
    is_creator: bool


class LobbySummary(BaseModel):
    invite_code: str
    name: str
    player_count: int
    max_players: int
    has_password: bool


class ConnectedMessage(BaseModel):
    type: Literal[ServerMessageType.CONNECTED] = ServerMessageType.CONNECTED
    player_id: str
    username: str
    reconnect_token: str


class UsernameSetMessage(BaseModel):
    type: Literal[ServerMessageType.USERNAME_SET] = ServerMessageType.USERNAME_SET
    username: str


class LobbyCreatedMessage(BaseModel):
    type: Literal[ServerMessageType.LOBBY_CREATED] = ServerMessageType.LOBBY_CREATED
    session_id: str
    invite_code: str
    name: str
    roster: list[RosterEntry]


class JoinedLobbyMessage(BaseModel):
    type: Literal[ServerMessageType.JOINED_LOBBY] = ServerMessageType.JOINED_LOBBY
    session_id: str
    invite_code: str
    name: str
    roster: list[RosterEntry]


class PlayerJoinedLobbyMessage(BaseModel):
    type: Literal[ServerMessageType.PLAYER_JOINED_LOBBY] = ServerMessageType.PLAYER_JOINED_LOBBY
    roster: list[RosterEntry]


class PlayerLeftLobbyMessage(BaseModel):
    type: Literal[ServerMessageType.PLAYER_LEFT_LOBBY] = ServerMessageType.PLAYER_LEFT_LOBBY
    roster: list[RosterEntry]


class LeftLobbyMessage(BaseModel):
    type: Literal[ServerMessageType.LEFT_LOBBY] = ServerMessageType.LEFT_LOBBY


class LobbyListMessage(BaseModel):
    type: Literal[ServerMessageType.LOBBY_LIST] = ServerMessageType.LOBBY_LIST
    lobbies: list[LobbySummary]


class GameCreatedMessage(BaseModel):
    type: Literal[ServerMessageType.GAME_CREATED] = ServerMessageType.GAME_CREATED
    session_id: str


class GameStartedMessage(BaseModel):
    type: Literal[ServerMessageType.GAME_STARTED] = ServerMessageType.GAME_STARTED
    session_id: str


class GameStateMessage(SessionView):
    type: Literal[ServerMessageType.GAME_STATE] = ServerMessageType.GAME_STATE


class ReconnectStateMessage(SessionView):
    """Full perspective-relative snapshot sent to a reconnecting player."""

    type: Literal[ServerMessageType.RECONNECT_STATE] = ServerMessageType.RECONNECT_STATE


class OpponentMoveMessage(BaseModel):
    type: Literal[ServerMessageType.OPPONENT_MOVE] = ServerMessageType.OPPONENT_MOVE
    category: str


class RoundResultMessage(RoundResultView):
    type: Literal[ServerMessageType.ROUND_RESULT] = ServerMessageType.ROUND_RESULT


class OpponentDisconnectedMessage(BaseModel):
    type: Literal[ServerMessageType.OPPONENT_DISCONNECTED] = ServerMessageType.OPPONENT_DISCONNECTED
    grace_seconds: float


class OpponentReconnectedMessage(BaseModel):
    type: Literal[ServerMessageType.OPPONENT_RECONNECTED] = ServerMessageType.OPPONENT_RECONNECTED


class GameLeftMessage(BaseModel):
    type: Literal[ServerMessageType.GAME_LEFT] = ServerMessageType.GAME_LEFT


class PlayersCountMessage(BaseModel):
    type: Literal[ServerMessageType.PLAYERS_COUNT] = ServerMessageType.PLAYERS_COUNT
    count: int


class PongMessage(BaseModel):
    type: Literal[ServerMessageType.PONG] = ServerMessageType.PONG


class ErrorMessage(BaseModel):
    type: Literal[ServerMessageType.ERROR] = ServerMessageType.ERROR
    code: str
    message: str
    critical: bool = False
