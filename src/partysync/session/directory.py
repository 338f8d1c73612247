"""Host-side table of who is in the room.

Maps connection id <-> persistent id <-> color. At most one live entry per
persistent id: a second admit from the same device supersedes the first in
one step and inherits its color. Every change is written through to the
identity store so the next hosting session hands returning devices their
old colors.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass

from partysync.config import PLAYER_COLORS
from partysync.session.identity import IdentityStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SessionEntry:
    persistent_id: str | None
    connection_id: str
    color: str
    joined_at: float


@dataclass(frozen=True, slots=True)
class SlotAssignment:
    """Result of ``SessionDirectory.admit``.

    Attributes:
        entry: The new live entry.
        superseded: The entry this admit replaced (same device, older
            connection), or None. The caller must close that connection and
            tell the remaining peers it left.
        is_reconnect: The device was here before, live or remembered.
    """
    entry: SessionEntry
    superseded: SessionEntry | None = None
    is_reconnect: bool = False

    @property
    def color(self) -> str:
        return self.entry.color


class SessionDirectory:
    """Live joiner slots for one hosting session.

    Created fresh every time the process becomes host; never shared.
    """

    def __init__(self, room_id: str, store: IdentityStore,
                 palette: tuple[str, ...] = PLAYER_COLORS,
                 rng: random.Random | None = None) -> None:
        self.room_id = room_id
        self._store = store
        self._palette = palette
        self._rng = rng or random.Random()
        self.host_color = palette[0]
        self._by_connection: dict[str, SessionEntry] = {}
        self._by_persistent: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._by_connection)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._by_connection

    def admit(self, connection_id: str, persistent_id: str | None = None) -> SlotAssignment:
        superseded: SessionEntry | None = None
        color: str | None = None

        if connection_id in self._by_connection:
            # Same connection admitted twice: nothing changes.
            return SlotAssignment(self._by_connection[connection_id])

        if persistent_id is not None:
            old_connection_id = self._by_persistent.get(persistent_id)
            if old_connection_id is not None and old_connection_id != connection_id:
                superseded = self._by_connection.pop(old_connection_id)
                del self._by_persistent[persistent_id]
                color = superseded.color
                logger.info("Device %s reconnected: %s replaces %s",
                            persistent_id, connection_id, old_connection_id)

        is_reconnect = superseded is not None
        if color is None and persistent_id is not None:
            color = self._store.stored_color(self.room_id, persistent_id)
            is_reconnect = color is not None
        if color is None:
            color = self._pick_color()

        entry = SessionEntry(persistent_id, connection_id, color, time.time())
        self._by_connection[connection_id] = entry
        if persistent_id is not None:
            self._by_persistent[persistent_id] = connection_id
        self._persist()
        return SlotAssignment(entry, superseded, is_reconnect)

    def release(self, connection_id: str) -> SessionEntry | None:
        """Remove a slot. Returns the removed entry, or None if it was not live."""
        entry = self._by_connection.pop(connection_id, None)
        if entry is None:
            return None
        if entry.persistent_id is not None and \
                self._by_persistent.get(entry.persistent_id) == connection_id:
            del self._by_persistent[entry.persistent_id]
        self._persist()
        return entry

    def lookup_by_persistent(self, persistent_id: str) -> str | None:
        return self._by_persistent.get(persistent_id)

    def get(self, connection_id: str) -> SessionEntry | None:
        return self._by_connection.get(connection_id)

    def color_of(self, connection_id: str) -> str | None:
        if connection_id == self.room_id:
            return self.host_color
        entry = self._by_connection.get(connection_id)
        return entry.color if entry is not None else None

    def connection_ids(self) -> list[str]:
        return list(self._by_connection)

    def entries(self) -> list[SessionEntry]:
        return list(self._by_connection.values())

    def colors(self) -> dict[str, str]:
        """Host plus every joiner, as sent in ``playerColors``."""
        colors = {self.room_id: self.host_color}
        for connection_id, entry in self._by_connection.items():
            colors[connection_id] = entry.color
        return colors

    def _pick_color(self) -> str:
        used = {self.host_color} | {e.color for e in self._by_connection.values()}
        for color in self._palette:
            if color not in used:
                return color
        return self._rng.choice(self._palette)

    def _persist(self) -> None:
        # Merge with what is stored so devices that are offline right now
        # keep their remembered colors.
        live = {e.persistent_id: e.color for e in self._by_connection.values()
                if e.persistent_id is not None}
        joiners = [{"persistentId": pid, "color": color} for pid, color in live.items()]
        for stored in self._store.stored_joiners(self.room_id):
            if stored.get("persistentId") not in live:
                joiners.append(stored)
        self._store.set_stored_joiners(self.room_id, joiners)
