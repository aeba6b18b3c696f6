from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from quartett.messaging.types import (
    CreateGameMessage,
    CreateLobbyMessage,
    ErrorMessage,
    GetLobbyListMessage,
    JoinGameMessage,
    JoinLobbyByCodeMessage,
    LeaveGameMessage,
    LeaveLobbyMessage,
    PingMessage,
    RejoinGameMessage,
    SelectCategoryMessage,
    SessionErrorCode,
    SetUsernameMessage,
    StartGameFromLobbyMessage,
    parse_client_message,
)

if TYPE_CHECKING:
    from quartett.messaging.protocol import ConnectionProtocol
    from quartett.session.manager import SessionManager

logger = logging.getLogger(__name__)


class MessageRouter:
    """
    Routes decoded client messages to the session manager.

    Holds no state of its own and can be tested without real
    websocket connections.
    """

    def __init__(self, session_manager: SessionManager) -> None:
        self._session_manager = session_manager

    async def handle_message(
        self,
        connection: ConnectionProtocol,
        raw_message: dict[str, Any],
    ) -> None:
        try:
            message = parse_client_message(raw_message)
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            logger.warning("invalid message from %s: %s", connection.connection_id, e)
            await connection.send_message(
                ErrorMessage(code=SessionErrorCode.INVALID_MESSAGE, message=str(e)).model_dump(),
            )
            return

        manager = self._session_manager
        if isinstance(message, SelectCategoryMessage):
            await manager.select_category(connection, message.session_id, message.category)
        elif isinstance(message, SetUsernameMessage):
            await manager.set_username(connection, message.username)
        elif isinstance(message, CreateLobbyMessage):
            await manager.create_lobby(connection, name=message.name, password=message.password)
        elif isinstance(message, JoinLobbyByCodeMessage):
            await manager.join_lobby_by_code(connection, message.invite_code, password=message.password)
        elif isinstance(message, LeaveLobbyMessage):
            await manager.leave_lobby(connection)
        elif isinstance(message, StartGameFromLobbyMessage):
            await manager.start_game_from_lobby(connection, message.invite_code)
        elif isinstance(message, GetLobbyListMessage):
            await manager.send_lobby_list(connection)
        elif isinstance(message, CreateGameMessage):
            await manager.create_game(connection)
        elif isinstance(message, JoinGameMessage):
            await manager.join_game(connection, message.session_id)
        elif isinstance(message, RejoinGameMessage):
            await manager.rejoin_game(connection, message.session_id, message.reconnect_token)
        elif isinstance(message, LeaveGameMessage):
            await manager.leave_game(connection, message.session_id)
        elif isinstance(message, PingMessage):
            await manager.handle_ping(connection)

    async def handle_connect(self, connection: ConnectionProtocol) -> None:
        await self._session_manager.register_connection(connection)

    async def handle_disconnect(self, connection: ConnectionProtocol) -> None:
        await self._session_manager.handle_disconnect(connection)
