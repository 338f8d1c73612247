"""Transport interface.

Transport is the seam between the session layer and whatever actually moves
bytes between devices. The session codes against these classes only; the
loopback transport backs the tests and the local demo, the TCP transport backs
real games.

Every callback (``open``, ``data``, ``close``, ``error`` on a Connection;
``connection``, ``close``, ``error`` on an Endpoint) is delivered from
``Transport.poll()`` on the caller's thread. Nothing blocks.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable

logger = logging.getLogger(__name__)

Payload = bytes | dict


class EventSource:
    """Minimal listener registry with PeerJS-style ``on``/``once``."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[tuple[Callable[..., Any], bool]]] = {}

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        self._listeners.setdefault(event, []).append((callback, False))

    def once(self, event: str, callback: Callable[..., Any]) -> None:
        self._listeners.setdefault(event, []).append((callback, True))

    def off(self, event: str, callback: Callable[..., Any]) -> None:
        listeners = self._listeners.get(event, [])
        self._listeners[event] = [(cb, o) for cb, o in listeners if cb is not callback]

    def remove_all_listeners(self, event: str | None = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def _emit(self, event: str, *args: Any) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return
        self._listeners[event] = [(cb, o) for cb, o in listeners if not o]
        for callback, _ in listeners:
            callback(*args)


class Connection(EventSource, ABC):
    """One reliable, ordered duplex channel to a remote peer."""

    def __init__(self, peer: str) -> None:
        super().__init__()
        self.peer = peer

    @property
    @abstractmethod
    def open(self) -> bool:
        """Whether the channel is established and not yet closed."""
        ...

    @abstractmethod
    def send(self, payload: Payload) -> None:
        """Queue bytes or a JSON-able dict for delivery, in order."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close the channel. Both sides eventually see ``close``."""
        ...


class Endpoint(EventSource, ABC):
    """A local address that accepts and originates connections."""

    def __init__(self, endpoint_id: str) -> None:
        super().__init__()
        self.id = endpoint_id

    @abstractmethod
    def connect(self, remote_id: str) -> Connection:
        """Start connecting to ``remote_id``. Completion arrives as ``open``."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close the endpoint and every connection it owns."""
        ...

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...


class Transport(ABC):
    """Factory for endpoints plus the event pump."""

    @abstractmethod
    def open(self, local_id: str | None = None) -> Endpoint:
        """Open an endpoint bound to ``local_id`` (or a fresh id).

        Raises TransportError if the id is taken or the endpoint cannot bind.
        """
        ...

    @abstractmethod
    def poll(self) -> int:
        """Deliver pending events. Returns the number delivered."""
        ...
