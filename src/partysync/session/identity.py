"""Per-install identity and the small amount of state that survives restarts.

Stored as one JSON document in the data directory:

    {
      "persistentId": "...",          # created once, never changed
      "lastRole": "host" | "joiner",
      "lastHostRoomId": "...",        # offered as "resume hosting"
      "lastJoinedRoomId": "...",      # offered as "rejoin host"
      "joinedHosts": ["...", ...],    # contact list
      "joiners": {roomId: [{"persistentId": ..., "color": ...}, ...]}
    }

With no data directory the store lives in memory only (tests, throwaway
sessions).
"""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path

from partysync.config import IDENTITY_FILE

logger = logging.getLogger(__name__)


class IdentityStore:
    def __init__(self, data_dir: Path | None = None) -> None:
        self._path = data_dir / IDENTITY_FILE if data_dir is not None else None
        self._data: dict = self._load()
        if not isinstance(self._data.get("persistentId"), str):
            self._data["persistentId"] = str(uuid.uuid4())
            self._save()
            logger.info("Created persistent id %s", self._data["persistentId"])

    @property
    def persistent_id(self) -> str:
        return self._data["persistentId"]

    # --- role memory ---

    @property
    def last_role(self) -> str | None:
        return self._data.get("lastRole")

    def set_last_role(self, role: str) -> None:
        self._set("lastRole", role)

    @property
    def last_host_room_id(self) -> str | None:
        return self._data.get("lastHostRoomId")

    def set_last_host_room_id(self, room_id: str | None) -> None:
        self._set("lastHostRoomId", room_id)

    @property
    def last_joined_room_id(self) -> str | None:
        return self._data.get("lastJoinedRoomId")

    def set_last_joined_room_id(self, room_id: str | None) -> None:
        self._set("lastJoinedRoomId", room_id)

    # --- contacts ---

    def joined_hosts(self) -> list[str]:
        return list(self._data.get("joinedHosts", []))

    def add_joined_host(self, room_id: str) -> None:
        hosts = self._data.setdefault("joinedHosts", [])
        if room_id not in hosts:
            hosts.append(room_id)
            self._save()

    def remove_joined_host(self, room_id: str) -> None:
        hosts = self._data.get("joinedHosts", [])
        if room_id in hosts:
            hosts.remove(room_id)
            self._save()

    # --- host-side joiner memory ---

    def stored_joiners(self, room_id: str) -> list[dict]:
        """Joiners last seen in ``room_id``: [{"persistentId", "color"}]."""
        return [dict(j) for j in self._data.get("joiners", {}).get(room_id, [])]

    def stored_color(self, room_id: str, persistent_id: str) -> str | None:
        for joiner in self._data.get("joiners", {}).get(room_id, []):
            if joiner.get("persistentId") == persistent_id:
                return joiner.get("color")
        return None

    def set_stored_joiners(self, room_id: str, joiners: list[dict]) -> None:
        self._data.setdefault("joiners", {})[room_id] = [dict(j) for j in joiners]
        self._save()

    # --- persistence ---

    def _set(self, key: str, value: object) -> None:
        if value is None:
            if self._data.pop(key, None) is not None:
                self._save()
        elif self._data.get(key) != value:
            self._data[key] = value
            self._save()

    def _load(self) -> dict:
        if self._path is None or not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable identity file %s: %s", self._path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self) -> None:
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(".tmp")
            tmp.write_text(json.dumps(self._data, indent=2), encoding="utf-8")
            tmp.replace(self._path)
        except OSError as e:
            logger.warning("Could not write identity file %s: %s", self._path, e)
