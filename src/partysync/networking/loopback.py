"""In-process transport for tests and local play.

All endpoints opened on one ``LoopbackNetwork`` can reach each other by id.
Sends never deliver synchronously: every event is queued and handed out by
``poll()``, so callers see the same asynchronous ordering they would over a
real channel. Dict payloads are round-tripped through JSON on delivery, the
way a structured-clone channel would hand the receiver a fresh object.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections import deque
from typing import Callable

from partysync.errors import TransportError
from partysync.networking.transport import Connection, Endpoint, Payload, Transport

logger = logging.getLogger(__name__)


class LoopbackNetwork:
    """Shared registry and event queue for loopback endpoints."""

    def __init__(self) -> None:
        self._endpoints: dict[str, LoopbackEndpoint] = {}
        self._queue: deque[Callable[[], None]] = deque()

    def transport(self) -> LoopbackTransport:
        return LoopbackTransport(self)

    def endpoint(self, endpoint_id: str) -> LoopbackEndpoint | None:
        return self._endpoints.get(endpoint_id)

    def endpoint_ids(self) -> list[str]:
        return list(self._endpoints)

    def poll(self) -> int:
        """Deliver events queued before this call. Returns how many ran."""
        count = len(self._queue)
        for _ in range(count):
            self._queue.popleft()()
        return count

    def pump(self, max_rounds: int = 100) -> int:
        """Poll until the queue is quiet. Test helper."""
        total = 0
        for _ in range(max_rounds):
            delivered = self.poll()
            total += delivered
            if not delivered:
                break
        return total

    def _register(self, endpoint: LoopbackEndpoint) -> None:
        if endpoint.id in self._endpoints:
            raise TransportError(f"ID {endpoint.id} is taken")
        self._endpoints[endpoint.id] = endpoint

    def _unregister(self, endpoint: LoopbackEndpoint) -> None:
        if self._endpoints.get(endpoint.id) is endpoint:
            del self._endpoints[endpoint.id]

    def _defer(self, callback: Callable[[], None]) -> None:
        self._queue.append(callback)


class LoopbackConnection(Connection):
    def __init__(self, network: LoopbackNetwork, owner: LoopbackEndpoint,
                 peer: str) -> None:
        super().__init__(peer)
        self._network = network
        self._owner = owner
        self._remote: LoopbackConnection | None = None
        self._open = False
        self._closed = False

    @property
    def open(self) -> bool:
        return self._open and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, payload: Payload) -> None:
        if not self.open or self._remote is None:
            logger.warning("Send on closed connection to %s dropped", self.peer)
            return
        if isinstance(payload, dict):
            payload = json.loads(json.dumps(payload))
        else:
            payload = bytes(payload)
        remote = self._remote
        self._network._defer(lambda: remote._deliver(payload))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._owner._forget(self)
        self._network._defer(lambda: self._emit("close"))
        remote = self._remote
        if remote is not None:
            self._network._defer(remote._remote_closed)

    def fail(self, reason: str = "connection lost", notify_remote: bool = True) -> None:
        """Test helper: drop the channel as if the network broke.

        With ``notify_remote=False`` only this side learns about it (a
        half-open channel, as when a device loses its radio).
        """
        if self._closed:
            return
        self._closed = True
        self._owner._forget(self)
        error = TransportError(reason)
        self._network._defer(lambda: self._emit("error", error))
        self._network._defer(lambda: self._emit("close"))
        remote = self._remote
        if remote is not None and notify_remote:
            self._network._defer(lambda: remote._remote_failed(error))

    def _deliver(self, payload: Payload) -> None:
        if not self._closed:
            self._emit("data", payload)

    def _mark_open(self) -> None:
        if not self._closed:
            self._open = True
            self._emit("open")

    def _remote_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._owner._forget(self)
        self._emit("close")

    def _remote_failed(self, error: TransportError) -> None:
        if self._closed:
            return
        self._closed = True
        self._owner._forget(self)
        self._emit("error", error)
        self._emit("close")


class LoopbackEndpoint(Endpoint):
    def __init__(self, network: LoopbackNetwork, endpoint_id: str) -> None:
        super().__init__(endpoint_id)
        self._network = network
        self._connections: list[LoopbackConnection] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def connections(self) -> list[LoopbackConnection]:
        return list(self._connections)

    def connect(self, remote_id: str) -> LoopbackConnection:
        if self._closed:
            raise TransportError("Endpoint is closed")
        near = LoopbackConnection(self._network, self, remote_id)
        self._connections.append(near)
        self._network._defer(lambda: self._establish(near, remote_id))
        return near

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._network._unregister(self)
        for conn in list(self._connections):
            conn.close()
        self._network._defer(lambda: self._emit("close"))

    def _establish(self, near: LoopbackConnection, remote_id: str) -> None:
        if near.closed:
            return
        remote_ep = self._network.endpoint(remote_id)
        if remote_ep is None or remote_ep.closed:
            near._closed = True
            self._forget(near)
            near._emit("error", TransportError(f"Could not connect to peer {remote_id}"))
            near._emit("close")
            return
        far = LoopbackConnection(self._network, remote_ep, self.id)
        near._remote = far
        far._remote = near
        remote_ep._connections.append(far)
        remote_ep._emit("connection", far)
        self._network._defer(far._mark_open)
        self._network._defer(near._mark_open)

    def _forget(self, conn: LoopbackConnection) -> None:
        if conn in self._connections:
            self._connections.remove(conn)


class LoopbackTransport(Transport):
    def __init__(self, network: LoopbackNetwork | None = None) -> None:
        self.network = network or LoopbackNetwork()

    def open(self, local_id: str | None = None) -> LoopbackEndpoint:
        endpoint = LoopbackEndpoint(self.network, local_id or str(uuid.uuid4()))
        self.network._register(endpoint)
        logger.debug("Loopback endpoint %s open", endpoint.id)
        return endpoint

    def poll(self) -> int:
        return self.network.poll()
