"""Shared WebSocket test helpers for quartett integration tests."""

from quartett.messaging.encoder import decode, encode
from quartett.messaging.types import ServerMessageType


def send_ws(ws, data: dict) -> None:
    """Send a MessagePack-encoded message over a test WebSocket."""
    ws.send_bytes(encode(data))


def recv_ws(ws) -> dict:
    """Receive and decode a MessagePack message from a test WebSocket."""
    return decode(ws.receive_bytes())


def recv_until(ws, message_type: str, limit: int = 20) -> list[dict]:
    """Receive messages up to and including the first one of message_type."""
    messages = []
    for _ in range(limit):
        msg = recv_ws(ws)
        messages.append(msg)
        if msg.get("type") == message_type:
            return messages
    raise AssertionError(f"no {message_type!r} within {limit} messages: {[m.get('type') for m in messages]}")


def connect_player(ws) -> dict:
    """Drain the greeting of a fresh connection and return its `connected` message."""
    connected = recv_ws(ws)
    assert connected["type"] == ServerMessageType.CONNECTED
    recv_until(ws, ServerMessageType.PLAYERS_COUNT)
    return connected
