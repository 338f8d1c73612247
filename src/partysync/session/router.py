"""Inbound message classification and dispatch.

On the host, a fresh connection is in the PROBING phase until its first
payload arrives. That payload decides what the connection is for:

    statusRequest  -> answer and close; the directory is never touched
    inviteRequest  -> surface the invite and close; directory untouched
    anything else  -> admit (directory commit), then dispatch the same
                      message as the first gameplay message

After that every message goes through the role's handler table. Bad
payloads are logged and dropped; messages the other role should have
received are dropped silently. Nothing here raises into the caller.
"""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import Callable, Protocol

from partysync.errors import AuthorityViolation, ProtocolError
from partysync.networking.codec import MessageCodec
from partysync.networking.protocol import (
    InviteRequest,
    Message,
    MessageType,
    StatusRequest,
    parse_message,
)

logger = logging.getLogger(__name__)

Handler = Callable[[str, Message], None]


class LinkPhase(Enum):
    PROBING = auto()
    JOINED = auto()


class Handshake(Protocol):
    """Host-side decisions for a connection's first payload."""

    def on_status_request(self, connection_id: str) -> None: ...

    def on_invite_request(self, connection_id: str) -> None: ...

    def on_admit(self, connection_id: str, first: Message) -> None: ...


class MessageRouter:
    """Decode, authorize and dispatch messages for one role.

    Args:
        codec: decodes whatever the transport delivered.
        accepts: the tags this role may receive.
        handlers: one handler per accepted tag; construction fails if any
            accepted tag has no handler or a handler has no accepted tag.
        handshake: host only. Enables the PROBING phase for tracked links.
        role: label for log lines.
    """

    def __init__(self, codec: MessageCodec, accepts: frozenset[MessageType],
                 handlers: dict[MessageType, Handler],
                 handshake: Handshake | None = None, role: str = "host") -> None:
        missing = accepts - handlers.keys()
        extra = handlers.keys() - accepts
        if missing or extra:
            raise ValueError(
                f"{role} handler table mismatch: missing={sorted(m.value for m in missing)} "
                f"extra={sorted(m.value for m in extra)}")
        self._codec = codec
        self._accepts = accepts
        self._handlers = handlers
        self._handshake = handshake
        self._role = role
        self._links: dict[str, LinkPhase] = {}

    # --- per-connection handshake state ---

    def track(self, connection_id: str) -> None:
        """Start a fresh connection in the PROBING phase."""
        self._links[connection_id] = LinkPhase.PROBING

    def forget(self, connection_id: str) -> LinkPhase | None:
        """Stop routing for a connection. Returns its last phase, or None
        if it was already forgotten."""
        return self._links.pop(connection_id, None)

    def phase(self, connection_id: str) -> LinkPhase | None:
        return self._links.get(connection_id)

    # --- routing ---

    def route(self, connection_id: str, raw: object) -> Message | None:
        """Handle one payload. Returns the dispatched message, or None if it
        was dropped or consumed by the handshake."""
        try:
            msg = parse_message(self._codec.decode(raw))
            if msg.TYPE not in self._accepts:
                raise AuthorityViolation(
                    f"{msg.TYPE.value} is not accepted by the {self._role}")
        except ProtocolError as e:
            logger.warning("Dropping message from %s: %s", connection_id, e)
            return None
        except AuthorityViolation as e:
            logger.debug("Dropping message from %s: %s", connection_id, e)
            return None

        if self._handshake is not None:
            phase = self._links.get(connection_id)
            if phase is None:
                logger.debug("Dropping %s from untracked connection %s",
                             msg.TYPE.value, connection_id)
                return None
            if phase is LinkPhase.PROBING and not self._peek(connection_id, msg):
                return None

        self._dispatch(connection_id, msg)
        return msg

    def _peek(self, connection_id: str, msg: Message) -> bool:
        """First payload on a host connection. True if it should be dispatched."""
        handshake = self._handshake
        try:
            if isinstance(msg, StatusRequest):
                self._links.pop(connection_id, None)
                handshake.on_status_request(connection_id)
                return False
            if isinstance(msg, InviteRequest):
                self._links.pop(connection_id, None)
                handshake.on_invite_request(connection_id)
                return False
            self._links[connection_id] = LinkPhase.JOINED
            handshake.on_admit(connection_id, msg)
        except Exception:
            logger.exception("Handshake failed for %s", connection_id)
            return False
        return True

    def _dispatch(self, connection_id: str, msg: Message) -> None:
        logger.debug("%s <- %s: %s", self._role, connection_id, msg.TYPE.value)
        try:
            self._handlers[msg.TYPE](connection_id, msg)
        except Exception:
            logger.exception("Handler for %s from %s failed", msg.TYPE.value, connection_id)
