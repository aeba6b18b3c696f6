"""Abstract client connection used by the session layer."""

from abc import ABC, abstractmethod
from typing import Any

from quartett.messaging.encoder import decode, encode


class ConnectionProtocol(ABC):
    """
    One client connection carrying msgpack frames.

    The session layer only talks to this interface, so coordinator logic
    can be tested with an in-memory connection.
    """

    @property
    @abstractmethod
    def connection_id(self) -> str:
        """Unique identifier for this connection."""
        ...

    @abstractmethod
    async def send_bytes(self, data: bytes) -> None: ...

    @abstractmethod
    async def receive_bytes(self) -> bytes: ...

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None: ...

    async def send_message(self, data: dict[str, Any]) -> None:
        await self.send_bytes(encode(data))

    async def receive_message(self) -> dict[str, Any]:
        raw = await self.receive_bytes()
        return decode(raw)
