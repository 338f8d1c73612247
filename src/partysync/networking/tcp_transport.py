"""TCP implementation of the transport interface.

Sockets are non-blocking and serviced by ``poll()`` once per frame, the same
way the game loop polls everything else. Endpoint ids are resolved to
``(host, port)`` through a PeerDirectory; when the directory is backed by a
file, several processes on one device can find each other by id.

Each stream starts with a HELLO frame naming the caller's endpoint id, which
becomes ``Connection.peer`` on the accepting side.
"""

from __future__ import annotations

import errno
import json
import logging
import selectors
import socket
import uuid
from pathlib import Path

from partysync.config import MAX_RECV_SIZE
from partysync.errors import ProtocolError, TransportError
from partysync.networking.framing import (
    FrameDecoder,
    FrameKind,
    decode_payload,
    encode_frame,
    encode_payload,
)
from partysync.networking.transport import Connection, Endpoint, Payload, Transport

logger = logging.getLogger(__name__)


class PeerDirectory:
    """Maps endpoint ids to socket addresses.

    With ``path`` set, registrations are mirrored to a JSON file and lookups
    re-read it, so a host started in another process is visible here.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._entries: dict[str, tuple[str, int]] = {}

    def register(self, endpoint_id: str, host: str, port: int) -> None:
        self._load()
        self._entries[endpoint_id] = (host, port)
        self._save()

    def unregister(self, endpoint_id: str) -> None:
        self._load()
        if self._entries.pop(endpoint_id, None) is not None:
            self._save()

    def resolve(self, endpoint_id: str) -> tuple[str, int] | None:
        self._load()
        return self._entries.get(endpoint_id)

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Could not read peer directory %s: %s", self._path, e)
            return
        self._entries = {k: (v[0], int(v[1])) for k, v in raw.items()}

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps({k: list(v) for k, v in self._entries.items()}),
                       encoding="utf-8")
        tmp.replace(self._path)


class TcpConnection(Connection):
    def __init__(self, transport: TcpTransport, owner: TcpEndpoint,
                 sock: socket.socket, peer: str, outgoing: bool) -> None:
        super().__init__(peer)
        self._transport = transport
        self._owner = owner
        self._sock = sock
        self._outgoing = outgoing
        self._decoder = FrameDecoder()
        self._write_buf = bytearray()
        self._connecting = outgoing
        self._open = False
        self._closed = False

    @property
    def open(self) -> bool:
        return self._open and not self._closed

    def send(self, payload: Payload) -> None:
        if not self.open:
            logger.warning("Send on closed connection to %s dropped", self.peer)
            return
        self._write_buf.extend(encode_payload(payload))
        self._flush()

    def close(self) -> None:
        if self._closed:
            return
        self._flush()
        self._teardown()
        self._transport._defer(self, "close")

    # --- driven by TcpTransport.poll ---

    def _on_writable(self) -> None:
        if self._connecting:
            err = self._sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
            if err:
                self._fail(TransportError(
                    f"Could not connect to peer {self.peer}: {errno.errorcode.get(err, err)}"))
                return
            self._connecting = False
            self._write_buf[:0] = encode_frame(FrameKind.HELLO, self._owner.id.encode("utf-8"))
            self._open = True
            self._emit("open")
        self._flush()

    def _on_readable(self) -> None:
        while not self._closed:
            try:
                chunk = self._sock.recv(MAX_RECV_SIZE)
            except BlockingIOError:
                return
            except OSError as e:
                self._fail(TransportError(str(e)))
                return
            if not chunk:
                self._teardown()
                self._emit("close")
                return
            try:
                frames = self._decoder.feed(chunk)
            except ProtocolError as e:
                self._fail(TransportError(f"Bad stream from {self.peer}: {e}"))
                return
            for kind, payload in frames:
                if self._closed:
                    return
                try:
                    self._emit("data", decode_payload(kind, payload))
                except ProtocolError as e:
                    logger.warning("Dropping frame from %s: %s", self.peer, e)

    def _flush(self) -> None:
        if self._closed or self._connecting or not self._write_buf:
            self._update_interest()
            return
        try:
            sent = self._sock.send(self._write_buf)
        except BlockingIOError:
            sent = 0
        except OSError as e:
            self._fail(TransportError(str(e)))
            return
        del self._write_buf[:sent]
        self._update_interest()

    def _update_interest(self) -> None:
        if self._closed:
            return
        events = selectors.EVENT_READ
        if self._connecting or self._write_buf:
            events |= selectors.EVENT_WRITE
        self._transport._modify(self._sock, events, self)

    def _fail(self, error: TransportError) -> None:
        if self._closed:
            return
        self._teardown()
        self._emit("error", error)
        self._emit("close")

    def _teardown(self) -> None:
        self._closed = True
        self._owner._forget(self)
        self._transport._unwatch(self._sock)
        try:
            self._sock.close()
        except OSError:
            pass


class _PendingAccept:
    """Accepted socket waiting for its HELLO frame."""

    def __init__(self, endpoint: TcpEndpoint, sock: socket.socket) -> None:
        self.endpoint = endpoint
        self.sock = sock
        self.decoder = FrameDecoder()

    def on_readable(self) -> None:
        transport = self.endpoint._transport
        try:
            chunk = self.sock.recv(MAX_RECV_SIZE)
        except BlockingIOError:
            return
        except OSError:
            chunk = b""
        try:
            frames = self.decoder.feed(chunk) if chunk else []
        except ProtocolError:
            frames = []
            chunk = b""
        if not chunk:
            transport._unwatch(self.sock)
            self.sock.close()
            return
        if not frames:
            return
        kind, payload = frames[0]
        if kind != FrameKind.HELLO:
            logger.warning("Stream did not start with HELLO; closing")
            transport._unwatch(self.sock)
            self.sock.close()
            return
        peer = payload.decode("utf-8", errors="replace")
        conn = TcpConnection(transport, self.endpoint, self.sock, peer, outgoing=False)
        conn._decoder = self.decoder
        conn._open = True
        self.endpoint._connections.append(conn)
        transport._modify(self.sock, selectors.EVENT_READ, conn)
        self.endpoint._emit("connection", conn)
        conn._emit("open")
        for kind, payload in frames[1:]:
            try:
                conn._emit("data", decode_payload(kind, payload))
            except ProtocolError as e:
                logger.warning("Dropping frame from %s: %s", peer, e)


class TcpEndpoint(Endpoint):
    def __init__(self, transport: TcpTransport, endpoint_id: str,
                 listener: socket.socket) -> None:
        super().__init__(endpoint_id)
        self._transport = transport
        self._listener = listener
        self._connections: list[TcpConnection] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def port(self) -> int:
        return self._listener.getsockname()[1]

    def connect(self, remote_id: str) -> TcpConnection:
        if self._closed:
            raise TransportError("Endpoint is closed")
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setblocking(False)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        conn = TcpConnection(self._transport, self, sock, remote_id, outgoing=True)
        self._connections.append(conn)
        addr = self._transport.directory.resolve(remote_id)
        if addr is None:
            self._transport._defer_failure(
                conn, TransportError(f"Could not connect to peer {remote_id}"))
            return conn
        err = sock.connect_ex(addr)
        if err not in (0, errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EALREADY):
            self._transport._defer_failure(
                conn, TransportError(f"Could not connect to peer {remote_id}: {err}"))
            return conn
        self._transport._watch(sock, selectors.EVENT_READ | selectors.EVENT_WRITE, conn)
        logger.debug("Connecting %s -> %s at %s:%d", self.id, remote_id, *addr)
        return conn

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for conn in list(self._connections):
            conn.close()
        self._transport._unwatch(self._listener)
        self._listener.close()
        self._transport.directory.unregister(self.id)
        self._transport._endpoints.discard(self)
        self._transport._defer(self, "close")

    def _on_accept(self) -> None:
        while True:
            try:
                sock, _ = self._listener.accept()
            except BlockingIOError:
                return
            except OSError as e:
                logger.warning("Accept failed on %s: %s", self.id, e)
                return
            sock.setblocking(False)
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            self._transport._watch(sock, selectors.EVENT_READ, _PendingAccept(self, sock))

    def _forget(self, conn: TcpConnection) -> None:
        if conn in self._connections:
            self._connections.remove(conn)


class TcpTransport(Transport):
    """Non-blocking TCP transport.

    Args:
        directory: id -> address resolution shared with other endpoints.
        bind_host: interface to listen on.
        advertise_host: address other peers should dial for our endpoints.
        port: listen port for endpoints opened with an explicit id (the
            host's room); endpoints with fresh ids always use an ephemeral port.
            Leave at 0 on devices that do not host.
    """

    def __init__(self, directory: PeerDirectory | None = None,
                 bind_host: str = "0.0.0.0", advertise_host: str = "127.0.0.1",
                 port: int = 0) -> None:
        self.directory = directory or PeerDirectory()
        self._bind_host = bind_host
        self._advertise_host = advertise_host
        self._port = port
        self._selector = selectors.DefaultSelector()
        self._endpoints: set[TcpEndpoint] = set()
        self._deferred: list[tuple[object, str, tuple]] = []

    def open(self, local_id: str | None = None) -> TcpEndpoint:
        endpoint_id = local_id or str(uuid.uuid4())
        if local_id is not None and any(ep.id == local_id for ep in self._endpoints):
            raise TransportError(f"ID {local_id} is taken")
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        port = self._port if local_id is not None else 0
        try:
            listener.bind((self._bind_host, port))
            listener.listen(16)
        except OSError as e:
            listener.close()
            raise TransportError(f"Could not bind {self._bind_host}:{port}: {e}") from e
        listener.setblocking(False)
        endpoint = TcpEndpoint(self, endpoint_id, listener)
        self._endpoints.add(endpoint)
        self._watch(listener, selectors.EVENT_READ, endpoint)
        self.directory.register(endpoint_id, self._advertise_host, endpoint.port)
        logger.info("Endpoint %s listening on %s:%d", endpoint_id,
                    self._bind_host, endpoint.port)
        return endpoint

    def poll(self) -> int:
        delivered = self._run_deferred()
        if not self._selector.get_map():
            return delivered
        for key, mask in self._selector.select(timeout=0):
            owner = key.data
            delivered += 1
            if isinstance(owner, TcpEndpoint):
                owner._on_accept()
            elif isinstance(owner, _PendingAccept):
                owner.on_readable()
            elif isinstance(owner, TcpConnection):
                if mask & selectors.EVENT_WRITE:
                    owner._on_writable()
                if mask & selectors.EVENT_READ:
                    owner._on_readable()
        return delivered + self._run_deferred()

    def close(self) -> None:
        for endpoint in list(self._endpoints):
            endpoint.close()
        self._run_deferred()
        self._selector.close()

    # --- internals ---

    def _defer(self, source: object, event: str, *args: object) -> None:
        self._deferred.append((source, event, args))

    def _defer_failure(self, conn: TcpConnection, error: TransportError) -> None:
        conn._teardown()
        self._defer(conn, "error", error)
        self._defer(conn, "close")

    def _run_deferred(self) -> int:
        pending, self._deferred = self._deferred, []
        for source, event, args in pending:
            source._emit(event, *args)
        return len(pending)

    def _watch(self, sock: socket.socket, events: int, data: object) -> None:
        self._selector.register(sock, events, data)

    def _modify(self, sock: socket.socket, events: int, data: object) -> None:
        try:
            self._selector.modify(sock, events, data)
        except KeyError:
            self._selector.register(sock, events, data)

    def _unwatch(self, sock: socket.socket) -> None:
        try:
            self._selector.unregister(sock)
        except (KeyError, ValueError):
            pass
