"""Role and connection-state machine, and the manager that owns the endpoint.

A process is in exactly one ``Role`` at a time and the pair
``(Role, ConnectionState)`` is a single ``SessionStatus`` value. Transitions
are pure functions from one status to the next; combinations that make no
sense (a host that is reconnecting, a joiner that is hosting) cannot be
constructed.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable

from partysync.config import JOIN_TIMEOUT_MS
from partysync.errors import (
    HandshakeError,
    HostInitError,
    InvalidTransition,
    JoinFailed,
    JoinInitError,
    JoinTimeout,
    TransportError,
)
from partysync.networking.transport import Connection, Endpoint, Transport
from partysync.scheduler import Scheduler, Timer
from partysync.session.identity import IdentityStore

logger = logging.getLogger(__name__)


class Role(Enum):
    UNCONNECTED = auto()
    HOST = auto()
    JOINER = auto()


class ConnectionState(Enum):
    IDLE = auto()
    HOSTING = auto()
    JOINING = auto()
    JOINED = auto()
    RECONNECTING = auto()
    HOST_LEFT = auto()   # terminal: host said goodbye
    KICKED = auto()      # terminal: host removed us
    FAILED = auto()      # terminal: join or reconnect gave up


_VALID_STATES: dict[Role, frozenset[ConnectionState]] = {
    Role.UNCONNECTED: frozenset({
        ConnectionState.IDLE, ConnectionState.HOST_LEFT,
        ConnectionState.KICKED, ConnectionState.FAILED,
    }),
    Role.HOST: frozenset({ConnectionState.HOSTING}),
    Role.JOINER: frozenset({
        ConnectionState.JOINING, ConnectionState.JOINED, ConnectionState.RECONNECTING,
    }),
}


@dataclass(frozen=True, slots=True)
class SessionStatus:
    """Current role, connection state, and the room they refer to."""
    role: Role = Role.UNCONNECTED
    state: ConnectionState = ConnectionState.IDLE
    room_id: str | None = None
    reason: str | None = None

    def __post_init__(self) -> None:
        if self.state not in _VALID_STATES[self.role]:
            raise InvalidTransition(f"{self.state.name} is not a state of {self.role.name}")

    @property
    def is_host(self) -> bool:
        return self.role is Role.HOST

    @property
    def is_connected(self) -> bool:
        return self.state in (ConnectionState.HOSTING, ConnectionState.JOINED)

    @property
    def label(self) -> str:
        """Short text for status lines."""
        labels = {
            ConnectionState.IDLE: "offline",
            ConnectionState.HOSTING: "hosting",
            ConnectionState.JOINING: "connecting",
            ConnectionState.JOINED: "connected",
            ConnectionState.RECONNECTING: "reconnecting",
            ConnectionState.HOST_LEFT: "host left",
            ConnectionState.KICKED: "kicked",
            ConnectionState.FAILED: "connection error",
        }
        text = labels[self.state]
        return f"{text}: {self.reason}" if self.reason else text


# --- transitions ---

def _require(status: SessionStatus, *states: ConnectionState) -> None:
    if status.state not in states:
        raise InvalidTransition(
            f"Cannot leave {status.role.name}/{status.state.name} this way")


def go_idle(status: SessionStatus) -> SessionStatus:
    return SessionStatus()


def begin_hosting(status: SessionStatus, room_id: str) -> SessionStatus:
    _require(status, ConnectionState.IDLE, ConnectionState.HOST_LEFT,
             ConnectionState.KICKED, ConnectionState.FAILED)
    return SessionStatus(Role.HOST, ConnectionState.HOSTING, room_id)


def begin_joining(status: SessionStatus, room_id: str) -> SessionStatus:
    _require(status, ConnectionState.IDLE, ConnectionState.HOST_LEFT,
             ConnectionState.KICKED, ConnectionState.FAILED)
    return SessionStatus(Role.JOINER, ConnectionState.JOINING, room_id)


def join_succeeded(status: SessionStatus) -> SessionStatus:
    _require(status, ConnectionState.JOINING, ConnectionState.RECONNECTING)
    return SessionStatus(Role.JOINER, ConnectionState.JOINED, status.room_id)


def connection_lost(status: SessionStatus, reason: str | None = None) -> SessionStatus:
    """Unintentional loss (or a failed retry): keep trying the same room."""
    _require(status, ConnectionState.JOINED, ConnectionState.JOINING,
             ConnectionState.RECONNECTING)
    return SessionStatus(Role.JOINER, ConnectionState.RECONNECTING, status.room_id, reason)


def host_left(status: SessionStatus) -> SessionStatus:
    _require(status, ConnectionState.JOINED, ConnectionState.JOINING,
             ConnectionState.RECONNECTING)
    return SessionStatus(Role.UNCONNECTED, ConnectionState.HOST_LEFT, status.room_id)


def kicked(status: SessionStatus, message: str | None = None) -> SessionStatus:
    _require(status, ConnectionState.JOINED, ConnectionState.JOINING,
             ConnectionState.RECONNECTING)
    return SessionStatus(Role.UNCONNECTED, ConnectionState.KICKED, status.room_id, message)


def join_failed(status: SessionStatus, reason: str) -> SessionStatus:
    _require(status, ConnectionState.JOINING, ConnectionState.RECONNECTING)
    return SessionStatus(Role.UNCONNECTED, ConnectionState.FAILED, status.room_id, reason)


class JoinAttempt:
    """One-shot outcome of ``RoleManager.become_joiner``.

    Resolves exactly once: with no error when the channel opens, or with a
    HandshakeError (JoinTimeout / JoinFailed). Callbacks added after
    resolution run immediately.
    """

    def __init__(self, room_id: str, connection: Connection) -> None:
        self.room_id = room_id
        self.connection = connection
        self.error: HandshakeError | None = None
        self.done = False
        self._callbacks: list[Callable[[JoinAttempt], None]] = []
        self._timer: Timer | None = None

    def add_done_callback(self, callback: Callable[[JoinAttempt], None]) -> None:
        if self.done:
            callback(self)
        else:
            self._callbacks.append(callback)

    def cancel(self) -> None:
        """Resolve silently; callbacks are dropped."""
        self._callbacks.clear()
        self._resolve(JoinFailed(self.room_id, "cancelled"))

    def _resolve(self, error: HandshakeError | None = None) -> None:
        if self.done:
            return
        self.done = True
        self.error = error
        if self._timer is not None:
            self._timer.cancel()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(self)


class RoleManager:
    """Owns the local endpoint and the current SessionStatus.

    The host endpoint is bound to the persistent id, so the room id is the
    same across restarts. Joiner endpoints get a fresh id each time so a
    device that was hosting never collides with its own old address.
    """

    def __init__(self, transport: Transport, store: IdentityStore,
                 scheduler: Scheduler,
                 on_status: Callable[[SessionStatus], None] | None = None,
                 join_timeout_ms: int = JOIN_TIMEOUT_MS) -> None:
        self._transport = transport
        self._store = store
        self._scheduler = scheduler
        self._on_status = on_status
        self._join_timeout_ms = join_timeout_ms
        self._status = SessionStatus()
        self._endpoint: Endpoint | None = None
        self._attempt: JoinAttempt | None = None
        self._listener: Endpoint | None = None

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def endpoint(self) -> Endpoint | None:
        return self._endpoint

    @property
    def local_id(self) -> str | None:
        return self._endpoint.id if self._endpoint is not None else None

    def current_role(self) -> Role:
        return self._status.role

    def set_status(self, status: SessionStatus) -> None:
        if status == self._status:
            return
        logger.info("Session %s -> %s", self._status.label, status.label)
        self._status = status
        if self._on_status is not None:
            self._on_status(status)

    def become_host(self) -> str:
        """Open the room endpoint. Returns the room id.

        Raises HostInitError if the endpoint cannot be opened; the role is
        then UNCONNECTED.
        """
        self.teardown()
        room_id = self._store.persistent_id
        try:
            self._endpoint = self._transport.open(room_id)
        except TransportError as e:
            logger.error("Could not open host endpoint %s: %s", room_id, e)
            raise HostInitError(str(e)) from e
        self._store.set_last_host_room_id(room_id)
        self._store.set_last_role("host")
        self.set_status(begin_hosting(self._status, room_id))
        return room_id

    def become_joiner(self, room_id: str, reconnecting: bool = False) -> JoinAttempt:
        """Open a transient endpoint and start connecting to ``room_id``.

        Raises JoinInitError if the endpoint cannot be opened. Otherwise the
        returned JoinAttempt resolves within the join timeout.
        """
        previous = self._status
        self.teardown(previous if reconnecting else None)
        try:
            self._endpoint = self._transport.open(str(uuid.uuid4()))
            connection = self._endpoint.connect(room_id)
        except TransportError as e:
            logger.error("Could not open joiner endpoint: %s", e)
            self._close_endpoint()
            if reconnecting:
                self.set_status(join_failed(previous, str(e)))
            raise JoinInitError(str(e)) from e

        attempt = JoinAttempt(room_id, connection)
        self._attempt = attempt

        def on_open() -> None:
            connection.remove_all_listeners("error")
            connection.remove_all_listeners("close")
            attempt._resolve()

        def on_error(err: Exception) -> None:
            connection.remove_all_listeners()
            attempt._resolve(JoinFailed(room_id, str(err)))

        def on_close() -> None:
            connection.remove_all_listeners()
            attempt._resolve(JoinFailed(room_id, "host unavailable"))

        def on_timeout() -> None:
            if attempt.done:
                return
            connection.remove_all_listeners()
            connection.close()
            attempt._resolve(JoinTimeout(room_id, f"no answer in {self._join_timeout_ms} ms"))

        connection.once("open", on_open)
        connection.once("error", on_error)
        connection.once("close", on_close)
        attempt._timer = self._scheduler.call_later(self._join_timeout_ms, on_timeout)

        if not reconnecting:
            self.set_status(begin_joining(self._status, room_id))
        self._store.set_last_role("joiner")
        logger.info("Joining %s as %s", room_id, self._endpoint.id)
        return attempt

    def teardown(self, status: SessionStatus | None = None) -> None:
        """Close the endpoint and any pending join. Safe to call repeatedly.

        The status becomes ``status`` if given, else IDLE.
        """
        self.stop_invite_listener()
        if self._attempt is not None:
            self._attempt.cancel()
            self._attempt = None
        self._close_endpoint()
        self.set_status(status if status is not None else go_idle(self._status))

    # --- invite listener (idle devices) ---

    def start_invite_listener(self, on_connection: Callable[[Connection], None]) -> bool:
        """Listen on the persistent id so a host can push an invite.

        Only while unconnected. Returns False if the id is busy (e.g. this
        device is hosting in another process).
        """
        if self._listener is not None or self._status.role is not Role.UNCONNECTED:
            return False
        try:
            self._listener = self._transport.open(self._store.persistent_id)
        except TransportError as e:
            logger.debug("Invite listener not started: %s", e)
            return False
        self._listener.on("connection", on_connection)
        return True

    def stop_invite_listener(self) -> None:
        if self._listener is not None:
            self._listener.close()
            self._listener = None

    def _close_endpoint(self) -> None:
        if self._endpoint is not None:
            self._endpoint.close()
            self._endpoint = None
