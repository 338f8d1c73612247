"""Host-side snapshot construction.

Each broadcast tick the host builds one GameStateSnapshot: every player's
latest transform plus the entity block. The entity block is a delta by
default (only entities whose serializable state changed since they were last
sent) and a full sync every FULL_SYNC_INTERVAL ticks, which bounds how stale
any joiner can get and gives late joiners a complete baseline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from partysync.config import DEFAULT_ANIMATION, DEFAULT_MODEL_ID, FULL_SYNC_INTERVAL
from partysync.networking.protocol import GameState
from partysync.sync.lod import FullDetail, LodPolicy, nearest_distance

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PlayerState:
    """One player's transform as broadcast by the host."""
    position: tuple[float, float, float]
    rotation_y: float = 0.0
    animation: str = DEFAULT_ANIMATION
    model_id: str = DEFAULT_MODEL_ID
    color: str | None = None

    def to_wire(self) -> dict:
        return {
            "position": list(self.position),
            "rotation": self.rotation_y,
            "animation": self.animation,
            "modelId": self.model_id,
            "playerColor": self.color,
        }

    @classmethod
    def from_wire(cls, data: dict) -> PlayerState | None:
        """Parse a ``gameState`` player entry; None if it has no usable transform."""
        position = data.get("position")
        rotation = data.get("rotation")
        if isinstance(position, dict):
            position = [position.get("x"), position.get("y", 0.0), position.get("z")]
        if isinstance(rotation, dict):
            rotation = rotation.get("y")
        if not isinstance(position, (list, tuple)) or len(position) != 3:
            return None
        if not all(isinstance(v, (int, float)) and v == v for v in position):
            return None
        if not isinstance(rotation, (int, float)) or rotation != rotation:
            return None
        return cls(
            position=(float(position[0]), float(position[1]), float(position[2])),
            rotation_y=float(rotation),
            animation=data.get("animation") or DEFAULT_ANIMATION,
            model_id=data.get("modelId") or DEFAULT_MODEL_ID,
            color=data.get("playerColor"),
        )

    @property
    def ground(self) -> tuple[float, float]:
        return self.position[0], self.position[2]


@dataclass(frozen=True, slots=True)
class GameStateSnapshot:
    tick: int
    players: dict[str, PlayerState]
    entities: dict[str, dict]
    removed_entity_ids: tuple[str, ...] = ()
    is_full_sync: bool = False

    def to_message(self) -> GameState:
        return GameState(
            players={pid: p.to_wire() for pid, p in self.players.items()},
            entities=self.entities,
            removed_ids=list(self.removed_entity_ids) or None,
            full_sync=self.is_full_sync,
        )

    def to_wire(self) -> dict:
        return self.to_message().to_wire()


class EntityTracker:
    """Remembers what each entity looked like when it was last broadcast."""

    def __init__(self) -> None:
        self._last_sent: dict[str, dict] = {}

    def changed(self, entity_id: str, state: dict) -> bool:
        return self._last_sent.get(entity_id) != state

    def mark_sent(self, entity_id: str, state: dict) -> None:
        self._last_sent[entity_id] = dict(state)

    def forget(self, entity_ids: Iterable[str]) -> None:
        for entity_id in entity_ids:
            self._last_sent.pop(entity_id, None)

    def prune(self, live_ids: Iterable[str]) -> list[str]:
        """Drop bookkeeping for entities that vanished without being reported
        removed. Returns their ids so they can be reported now."""
        live = set(live_ids)
        gone = [eid for eid in self._last_sent if eid not in live]
        self.forget(gone)
        return gone

    def __len__(self) -> int:
        return len(self._last_sent)


class SnapshotBuilder:
    """Builds one snapshot per broadcast tick.

    Usage:
        builder = SnapshotBuilder()
        snapshot = builder.build(players, world.entity_states(), removed_ids)
        broadcast(snapshot.to_wire())
    """

    def __init__(self, lod: LodPolicy | None = None,
                 full_sync_interval: int = FULL_SYNC_INTERVAL) -> None:
        if full_sync_interval < 1:
            raise ValueError("full_sync_interval must be >= 1")
        self._lod = lod or FullDetail()
        self._interval = full_sync_interval
        self._tracker = EntityTracker()
        self._tick = 0
        self._force_full = False

    @property
    def tick(self) -> int:
        return self._tick

    def request_full_sync(self) -> None:
        """Make the next tick a full sync (a joiner was just admitted).

        Does not move the periodic cadence.
        """
        self._force_full = True

    def build(self, players: dict[str, PlayerState], entities: dict[str, dict],
              removed_ids: Iterable[str] = ()) -> GameStateSnapshot:
        self._tick += 1
        full_sync = self._force_full or self._tick % self._interval == 0
        self._force_full = False

        removed = list(dict.fromkeys(removed_ids))
        self._tracker.forget(removed)
        for entity_id in self._tracker.prune(entities):
            if entity_id not in removed:
                removed.append(entity_id)

        anchors = [p.ground for p in players.values()]
        block: dict[str, dict] = {}
        for entity_id, state in entities.items():
            if not full_sync and not self._tracker.changed(entity_id, state):
                continue
            encoded = self._lod.encode(state, nearest_distance(state, anchors), full_sync)
            if encoded is None:
                if full_sync:
                    encoded = state
                else:
                    # Left out; stays "changed" so it goes once it is near again.
                    continue
            block[entity_id] = encoded
            self._tracker.mark_sent(entity_id, state)

        if full_sync:
            logger.debug("Full sync at tick %d: %d entities", self._tick, len(block))
        return GameStateSnapshot(
            tick=self._tick,
            players=dict(players),
            entities=block,
            removed_entity_ids=tuple(removed),
            is_full_sync=full_sync,
        )
