"""Stream framing for transports that carry raw bytes (TCP).

Wire format of one frame, network byte order:
    [kind:u8][payload_len:u32][payload:bytes]

kind 1 carries a codec-encoded binary payload, kind 2 a UTF-8 JSON payload
(the fallback for structured sends), kind 3 the hello frame that opens a
stream and names the caller's endpoint id.
"""

from __future__ import annotations

import json
import struct
from enum import IntEnum

from partysync.errors import ProtocolError

FRAME_HEADER = struct.Struct("!BI")  # kind (u8), payload_len (u32)
MAX_FRAME_SIZE = 16 * 1024 * 1024


class FrameKind(IntEnum):
    BINARY = 1
    JSON = 2
    HELLO = 3


def encode_frame(kind: FrameKind, payload: bytes) -> bytes:
    """Wrap a payload in a frame."""
    if len(payload) > MAX_FRAME_SIZE:
        raise ValueError(f"Frame too large: {len(payload)} bytes")
    return FRAME_HEADER.pack(kind, len(payload)) + payload


def encode_payload(payload: bytes | dict) -> bytes:
    """Frame a Connection.send() payload: bytes as BINARY, dicts as JSON."""
    if isinstance(payload, dict):
        text = json.dumps(payload, separators=(",", ":"))
        return encode_frame(FrameKind.JSON, text.encode("utf-8"))
    return encode_frame(FrameKind.BINARY, bytes(payload))


def decode_payload(kind: FrameKind, payload: bytes) -> bytes | dict:
    """Inverse of encode_payload for one complete frame."""
    if kind == FrameKind.BINARY:
        return payload
    if kind == FrameKind.JSON:
        try:
            obj = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise ProtocolError(f"Bad JSON frame: {e}") from e
        if not isinstance(obj, dict):
            raise ProtocolError("JSON frame is not an object")
        return obj
    raise ProtocolError(f"Unexpected frame kind {kind}")


class FrameDecoder:
    """Incremental decoder: feed it whatever recv() returned.

    Usage:
        decoder = FrameDecoder()
        for kind, payload in decoder.feed(chunk):
            ...
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, data: bytes) -> list[tuple[FrameKind, bytes]]:
        """Append data and return every frame that is now complete.

        Raises ProtocolError on an unknown kind or an oversized length.
        """
        self._buffer.extend(data)
        frames: list[tuple[FrameKind, bytes]] = []
        while len(self._buffer) >= FRAME_HEADER.size:
            kind_raw, length = FRAME_HEADER.unpack_from(self._buffer)
            try:
                kind = FrameKind(kind_raw)
            except ValueError:
                raise ProtocolError(f"Unknown frame kind {kind_raw}") from None
            if length > MAX_FRAME_SIZE:
                raise ProtocolError(f"Frame too large: {length} bytes")
            end = FRAME_HEADER.size + length
            if len(self._buffer) < end:
                break
            frames.append((kind, bytes(self._buffer[FRAME_HEADER.size:end])))
            del self._buffer[:end]
        return frames

    @property
    def buffered(self) -> int:
        return len(self._buffer)
