"""
MessagePack encoding for the websocket wire format.

Every frame is a single msgpack map. Decoding enforces size limits so a
client cannot make the server allocate unbounded buffers.
"""

from typing import Any

import msgpack


class DecodeError(Exception):
    """Raised when an inbound frame is not a valid msgpack map."""


MAX_BUFFER_LEN = 64 * 1024
MAX_STR_LEN = 4 * 1024
MAX_BIN_LEN = 4 * 1024
MAX_ARRAY_LEN = 256
MAX_MAP_LEN = 256
MAX_EXT_LEN = 0


def encode(data: dict[str, Any]) -> bytes:
    """Encode a message dict to msgpack bytes."""
    return msgpack.packb(data, use_bin_type=True)


def decode(data: bytes) -> dict[str, Any]:
    """
    Decode msgpack bytes into a message dict.

    Raises DecodeError if data is malformed, exceeds the size limits,
    or does not decode to a map.
    """
    if len(data) > MAX_BUFFER_LEN:
        raise DecodeError(f"payload too large: {len(data)} bytes (max {MAX_BUFFER_LEN})")
    try:
        result = msgpack.unpackb(
            data,
            raw=False,
            strict_map_key=True,
            max_str_len=MAX_STR_LEN,
            max_bin_len=MAX_BIN_LEN,
            max_array_len=MAX_ARRAY_LEN,
            max_map_len=MAX_MAP_LEN,
            max_ext_len=MAX_EXT_LEN,
        )
    except (msgpack.UnpackException, ValueError) as e:
        raise DecodeError(f"failed to decode MessagePack data: {e}") from e

    if not isinstance(result, dict):
        raise DecodeError(f"expected map, got {type(result).__name__}")

    return result
