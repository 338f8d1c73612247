"""Exception taxonomy for the session layer.

Transport and handshake failures are caught at the connection boundary and
turned into status changes; none of these should reach the game loop.
"""

from __future__ import annotations


class SessionError(Exception):
    """Base class for every error raised by partysync."""


class TransportError(SessionError):
    """A transport could not open an endpoint or reach a peer."""


class InitError(SessionError):
    """The local endpoint for a role could not be opened."""


class HostInitError(InitError):
    pass


class JoinInitError(InitError):
    pass


class HandshakeError(SessionError):
    """The remote side refused the join or never answered."""

    def __init__(self, room_id: str, reason: str) -> None:
        super().__init__(f"{room_id}: {reason}")
        self.room_id = room_id
        self.reason = reason


class JoinTimeout(HandshakeError):
    pass


class JoinFailed(HandshakeError):
    pass


class ProtocolError(SessionError):
    """Malformed payload or unknown message tag. Logged and dropped."""


class AuthorityViolation(SessionError):
    """A message arrived from the side that is not allowed to send it."""


class SessionSuperseded(SessionError):
    """A newer connection from the same device replaced this one."""

    def __init__(self, persistent_id: str, old_connection_id: str,
                 new_connection_id: str) -> None:
        super().__init__(
            f"{persistent_id}: {old_connection_id} -> {new_connection_id}")
        self.persistent_id = persistent_id
        self.old_connection_id = old_connection_id
        self.new_connection_id = new_connection_id


class InvalidTransition(SessionError):
    """A role/connection-state change that the state machine forbids."""
