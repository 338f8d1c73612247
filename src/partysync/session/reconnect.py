"""Joiner-side reaction to losing the host.

How the link ended decides what happens next:

    HOST_LEFT  host said goodbye first   -> terminal, play on locally
    KICKED     host removed us           -> terminal, no retry
    LOST       channel closed or errored -> RECONNECTING, retry the same
                                            room with exponential backoff

Retries re-run the normal join handshake, so the host sees a fresh
connection carrying the same persistent id and supersedes the old slot.
"""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import Callable

from partysync.config import (
    RECONNECT_BASE_DELAY_MS,
    RECONNECT_MAX_ATTEMPTS,
    RECONNECT_MAX_DELAY_MS,
)
from partysync.errors import HandshakeError, InitError
from partysync.scheduler import Scheduler, Timer
from partysync.session.identity import IdentityStore
from partysync.session.roles import (
    ConnectionState,
    RoleManager,
    connection_lost,
    host_left,
    join_failed,
    kicked,
)

logger = logging.getLogger(__name__)

HOST_GONE_REASON = "host no longer available"


class LossKind(Enum):
    LOST = auto()
    HOST_LEFT = auto()
    KICKED = auto()


def backoff_delay(attempt: int, base_ms: int = RECONNECT_BASE_DELAY_MS,
                  max_ms: int = RECONNECT_MAX_DELAY_MS) -> int:
    """Delay before retry number ``attempt`` (0-based): base doubling, capped."""
    return min(base_ms * (2 ** attempt), max_ms)


class ReconnectController:
    """Drives the RECONNECTING state for one joiner.

    Args:
        roles: owns the status and the endpoint.
        scheduler: retry timers.
        store: the last-joined room is cleared when retries run out.
        rejoin: starts one join attempt against a room. It reports back
            through ``on_joined`` / ``on_join_failed``.
    """

    def __init__(self, roles: RoleManager, scheduler: Scheduler, store: IdentityStore,
                 rejoin: Callable[[str], None],
                 max_attempts: int = RECONNECT_MAX_ATTEMPTS,
                 base_delay_ms: int = RECONNECT_BASE_DELAY_MS,
                 max_delay_ms: int = RECONNECT_MAX_DELAY_MS) -> None:
        self._roles = roles
        self._scheduler = scheduler
        self._store = store
        self._rejoin = rejoin
        self._max_attempts = max_attempts
        self._base_delay_ms = base_delay_ms
        self._max_delay_ms = max_delay_ms
        self._attempts = 0
        self._timer: Timer | None = None
        self._room_id: str | None = None

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def reconnecting(self) -> bool:
        return self._room_id is not None

    def delay_for(self, attempt: int) -> int:
        return backoff_delay(attempt, self._base_delay_ms, self._max_delay_ms)

    def on_joined(self) -> None:
        if self._room_id is not None:
            logger.info("Reconnected to %s after %d attempt(s)", self._room_id, self._attempts)
        self.cancel()

    def on_host_lost(self, kind: LossKind, reason: str | None = None) -> None:
        """The joiner session ended. Decide between terminal and retry."""
        status = self._roles.status
        if kind is LossKind.HOST_LEFT:
            self.cancel()
            self._roles.teardown(host_left(status))
        elif kind is LossKind.KICKED:
            self.cancel()
            self._roles.teardown(kicked(status, reason))
        else:
            self._room_id = status.room_id
            self._attempts = 0
            self._roles.teardown(connection_lost(status, reason or "connection lost"))
            self._schedule()

    def on_join_failed(self, error: HandshakeError) -> None:
        """A retry did not get through."""
        if self._room_id is None:
            return
        logger.info("Reconnect attempt %d to %s failed: %s",
                    self._attempts, self._room_id, error.reason)
        if self._attempts >= self._max_attempts:
            self._give_up()
            return
        self._roles.set_status(connection_lost(self._roles.status, error.reason))
        self._schedule()

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._room_id = None
        self._attempts = 0

    def _schedule(self) -> None:
        delay = self.delay_for(self._attempts)
        logger.info("Reconnecting to %s in %d ms (attempt %d/%d)",
                    self._room_id, delay, self._attempts + 1, self._max_attempts)
        self._timer = self._scheduler.call_later(delay, self._retry)

    def _retry(self) -> None:
        self._timer = None
        room_id = self._room_id
        if room_id is None or self._roles.status.state is not ConnectionState.RECONNECTING:
            return
        self._attempts += 1
        try:
            self._rejoin(room_id)
        except InitError as e:
            # The role manager has already moved to FAILED.
            logger.error("Reconnect to %s aborted: %s", room_id, e)
            self.cancel()

    def _give_up(self) -> None:
        room_id = self._room_id
        self.cancel()
        logger.warning("Giving up on %s", room_id)
        if self._store.last_joined_room_id == room_id:
            self._store.set_last_joined_room_id(None)
        self._roles.teardown(join_failed(self._roles.status, HOST_GONE_REASON))
