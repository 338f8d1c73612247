"""One-shot side channels: status probes, invite requests, invite listening.

None of these join a room. A probe opens its own short-lived endpoint, says
one thing, and closes; the host answers from its peek phase without
touching the session directory.
"""

from __future__ import annotations

import logging
from typing import Callable

from partysync.config import PROBE_TIMEOUT_MS
from partysync.errors import TransportError
from partysync.networking.codec import MessageCodec
from partysync.networking.protocol import (
    PROBE_BOUND,
    InviteFromHost,
    InviteRequest,
    Message,
    MessageType,
    Status,
    StatusRequest,
)
from partysync.networking.transport import Connection, Endpoint, Transport
from partysync.scheduler import Scheduler, Timer
from partysync.session.router import MessageRouter

logger = logging.getLogger(__name__)

OFFLINE = "offline"


class _Probe:
    """A single connection that sends one message and waits for at most one
    reply."""

    def __init__(self, endpoint: Endpoint, room_id: str, first: Message,
                 codec: MessageCodec, scheduler: Scheduler, timeout_ms: int,
                 on_done: Callable[[str], None], expect_reply: bool) -> None:
        self._endpoint = endpoint
        self._codec = codec
        self._on_done = on_done
        self._expect_reply = expect_reply
        self._result = OFFLINE
        self._done = False
        self._router = MessageRouter(codec, PROBE_BOUND, {
            MessageType.STATUS: self._on_status,
            MessageType.INVITE_FROM_HOST: self._on_unexpected,
        }, role="probe")
        self._conn = endpoint.connect(room_id)
        self._timer: Timer = scheduler.call_later(timeout_ms, self._finish)
        self._first = first
        self._conn.once("open", self._on_open)
        self._conn.on("data", lambda raw: self._router.route(room_id, raw))
        self._conn.once("close", self._finish)

    def _on_open(self) -> None:
        self._conn.send(self._codec.encode(self._first.to_wire()))
        if not self._expect_reply:
            self._result = "sent"
            self._finish()

    def _on_status(self, room_id: str, msg: Status) -> None:
        self._result = msg.status
        self._finish()

    def _on_unexpected(self, room_id: str, msg: Message) -> None:
        logger.debug("Probe to %s ignored %s", room_id, msg.TYPE.value)

    def _finish(self) -> None:
        if self._done:
            return
        self._done = True
        self._timer.cancel()
        self._conn.remove_all_listeners()
        self._conn.close()
        self._endpoint.close()
        self._on_done(self._result)


class Prober:
    """Client side of ``statusRequest`` and ``inviteRequest``."""

    def __init__(self, transport: Transport, scheduler: Scheduler,
                 codec: MessageCodec | None = None,
                 timeout_ms: int = PROBE_TIMEOUT_MS) -> None:
        self._transport = transport
        self._scheduler = scheduler
        self._codec = codec or MessageCodec()
        self._timeout_ms = timeout_ms

    def probe_status(self, room_id: str, callback: Callable[[str], None]) -> None:
        """Report "hosting", "ingame" or "offline" for a room via ``callback``."""
        self._start(room_id, StatusRequest(), callback, expect_reply=True)

    def send_invite_request(self, room_id: str,
                            callback: Callable[[str], None] | None = None) -> None:
        """Ask a host to invite us. ``callback`` gets "sent" or "offline"."""
        self._start(room_id, InviteRequest(), callback, expect_reply=False)

    def _start(self, room_id: str, first: Message,
               callback: Callable[[str], None] | None, expect_reply: bool) -> None:
        def done(result: str) -> None:
            logger.debug("%s to %s: %s", first.TYPE.value, room_id, result)
            if callback is not None:
                callback(result)

        try:
            endpoint = self._transport.open()
        except TransportError as e:
            logger.warning("Could not open probe endpoint: %s", e)
            done(OFFLINE)
            return
        _Probe(endpoint, room_id, first, self._codec, self._scheduler,
               self._timeout_ms, done, expect_reply)


def listen_for_invite(conn: Connection, codec: MessageCodec,
                      on_invite: Callable[[str], None]) -> None:
    """Handle one connection to an idle device's invite listener.

    The first message decides: ``inviteFromHost`` is surfaced, anything
    else is ignored. The connection is closed either way.
    """
    def on_invite_from_host(peer: str, msg: InviteFromHost) -> None:
        if msg.host_room_id:
            on_invite(msg.host_room_id)

    router = MessageRouter(codec, PROBE_BOUND, {
        MessageType.STATUS: lambda peer, msg: None,
        MessageType.INVITE_FROM_HOST: on_invite_from_host,
    }, role="invite listener")

    def on_data(raw: object) -> None:
        conn.remove_all_listeners()
        router.route(conn.peer, raw)
        conn.close()

    conn.once("data", on_data)
