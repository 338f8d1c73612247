"""Payload codec: msgpack first, structured JSON as the fallback.

``serialize`` never raises for an unpackable payload; it returns None and the
caller sends the dict itself, which the transport carries as JSON. Receivers
accept either form through ``decode``.
"""

from __future__ import annotations

import json
import logging

import msgpack

from partysync.errors import ProtocolError

logger = logging.getLogger(__name__)


class MessageCodec:
    """Encodes wire dicts to bytes and back."""

    def __init__(self, use_binary: bool = True) -> None:
        self.use_binary = use_binary

    def serialize(self, message: dict) -> bytes | None:
        """Pack a message, or return None if it cannot be packed."""
        if not self.use_binary:
            return None
        try:
            return msgpack.packb(message, use_bin_type=True)
        except (TypeError, ValueError, OverflowError) as e:
            logger.debug("Binary encode failed for %s, falling back to JSON: %s",
                         message.get("type"), e)
            return None

    def deserialize(self, data: bytes) -> dict:
        """Unpack bytes produced by serialize().

        Raises ProtocolError for anything that is not a tagged message.
        """
        try:
            obj = msgpack.unpackb(data, raw=False, strict_map_key=False)
        except (msgpack.exceptions.ExtraData, msgpack.exceptions.UnpackException,
                ValueError, TypeError) as e:
            raise ProtocolError(f"Undecodable payload ({len(data)} bytes): {e}") from e
        return _require_tagged(obj)

    def decode(self, payload: bytes | str | dict) -> dict:
        """Accept whatever a Connection delivered and return the message dict."""
        if isinstance(payload, dict):
            return _require_tagged(payload)
        if isinstance(payload, str):
            try:
                return _require_tagged(json.loads(payload))
            except ValueError as e:
                raise ProtocolError(f"Bad JSON payload: {e}") from e
        if isinstance(payload, (bytes, bytearray, memoryview)):
            return self.deserialize(bytes(payload))
        raise ProtocolError(f"Unsupported payload type {type(payload).__name__}")

    def encode(self, message: dict) -> bytes | dict:
        """What to hand to Connection.send(): packed bytes or the dict itself."""
        data = self.serialize(message)
        return data if data is not None else message


def _require_tagged(obj: object) -> dict:
    if not isinstance(obj, dict):
        raise ProtocolError(f"Message is not an object: {type(obj).__name__}")
    if not isinstance(obj.get("type"), str):
        raise ProtocolError("Message has no type tag")
    return obj
