"""Joiner-side state consumption and uplink.

The joiner never simulates other players or entities. It merges whatever the
host broadcasts into a PresentationState for rendering, corrects its own
player toward the host's view of it, and sends back only throttled input
plus one position message per (re)connection or resume.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable

from partysync.config import (
    INPUT_SEND_INTERVAL_MS,
    RECONCILE_BLEND,
    RECONCILE_SNAP_DISTANCE,
    SLOW_GAP_MS,
)
from partysync.networking.protocol import GameState, PlayerInput, PlayerPosition
from partysync.sync.snapshot import PlayerState

logger = logging.getLogger(__name__)

Vec3 = tuple[float, float, float]


@dataclass
class PresentationState:
    """What a joiner renders: other players, entities, and the color table."""
    players: dict[str, PlayerState] = field(default_factory=dict)
    entities: dict[str, dict] = field(default_factory=dict)
    colors: dict[str, str] = field(default_factory=dict)
    snapshots: int = 0
    full_syncs: int = 0

    def clear(self) -> None:
        self.players.clear()
        self.entities.clear()
        self.colors.clear()

    def color_of(self, player_id: str) -> str | None:
        color = self.colors.get(player_id)
        if color is None and player_id in self.players:
            color = self.players[player_id].color
        return color


def reconcile(local: Vec3, authoritative: Vec3, full_sync: bool,
              snap_distance: float = RECONCILE_SNAP_DISTANCE,
              blend: float = RECONCILE_BLEND) -> Vec3:
    """Move a locally predicted position toward the host's.

    Snaps on full syncs and on large errors; otherwise closes ``blend`` of
    the gap so small corrections are not visible as jumps.
    """
    dx = authoritative[0] - local[0]
    dy = authoritative[1] - local[1]
    dz = authoritative[2] - local[2]
    if full_sync or math.sqrt(dx * dx + dy * dy + dz * dz) > snap_distance:
        return authoritative
    return (local[0] + dx * blend, local[1] + dy * blend, local[2] + dz * blend)


class SnapshotConsumer:
    """Applies host broadcasts to a PresentationState.

    Args:
        local_id: this joiner's connection id (its key in ``players``).
        now_ms: clock for gap detection.
        on_local_correction: called with (position, rotation_y) when the host's
            view of our own player should be applied locally.
    """

    def __init__(self, local_id: str, now_ms: Callable[[], int],
                 on_local_correction: Callable[[Vec3, float], None] | None = None,
                 local_position: Callable[[], Vec3 | None] | None = None,
                 slow_gap_ms: int = SLOW_GAP_MS) -> None:
        self.local_id = local_id
        self.state = PresentationState()
        self._now_ms = now_ms
        self._on_local_correction = on_local_correction
        self._local_position = local_position
        self._slow_gap_ms = slow_gap_ms
        self._last_snapshot_ms = 0
        self._slow_notified = False

    def apply(self, msg: GameState) -> None:
        self._last_snapshot_ms = self._now_ms()
        self._slow_notified = False
        state = self.state
        state.snapshots += 1

        if msg.removed_ids:
            self.remove_entities(msg.removed_ids)

        for player_id, raw in msg.players.items():
            if not isinstance(raw, dict):
                continue
            player = PlayerState.from_wire(raw)
            if player is None:
                continue
            if player.color:
                state.colors[player_id] = player.color
            if player_id == self.local_id:
                self._correct_local(player, msg.full_sync)
                continue
            state.players[player_id] = player

        if msg.full_sync:
            state.full_syncs += 1
            state.entities = {eid: dict(s) for eid, s in msg.entities.items()
                              if isinstance(s, dict)}
        else:
            for entity_id, entity in msg.entities.items():
                if isinstance(entity, dict):
                    state.entities[entity_id] = {**state.entities.get(entity_id, {}), **entity}

    def remove_entities(self, entity_ids: list) -> None:
        for entity_id in entity_ids:
            self.state.entities.pop(entity_id, None)

    # Color bookkeeping is set-only per player, so playerJoined and
    # playerColors converge to the same table in either arrival order.

    def player_joined(self, player_id: str, color: str | None) -> None:
        if color:
            self.state.colors[player_id] = color

    def player_left(self, player_id: str) -> None:
        self.state.players.pop(player_id, None)
        self.state.colors.pop(player_id, None)

    def set_colors(self, colors: dict) -> None:
        for player_id, color in colors.items():
            if isinstance(color, str):
                self.state.colors[player_id] = color

    def check_gap(self) -> bool:
        """True exactly once per gap longer than the slow threshold."""
        if self._last_snapshot_ms == 0 or self._slow_notified:
            return False
        if self._now_ms() - self._last_snapshot_ms > self._slow_gap_ms:
            self._slow_notified = True
            return True
        return False

    def _correct_local(self, player: PlayerState, full_sync: bool) -> None:
        if self._on_local_correction is None:
            return
        local = self._local_position() if self._local_position is not None else None
        target = player.position if local is None else reconcile(local, player.position, full_sync)
        self._on_local_correction(target, player.rotation_y)


class InputUplink:
    """Coalesces local input and sends it at a fixed rate.

    The latest axes win; a jump pressed at any point since the last send is
    latched until it goes out.
    """

    def __init__(self, send: Callable[[object], None], now_ms: Callable[[], int],
                 interval_ms: int = INPUT_SEND_INTERVAL_MS) -> None:
        self._send = send
        self._now_ms = now_ms
        self._interval_ms = interval_ms
        self._move_x = 0.0
        self._move_z = 0.0
        self._jump = False
        self._last_send_ms: int | None = None
        self._position_sent = False

    @property
    def position_sent(self) -> bool:
        return self._position_sent

    def set_input(self, move_x: float, move_z: float, jump: bool = False) -> None:
        self._move_x = move_x if math.isfinite(move_x) else 0.0
        self._move_z = move_z if math.isfinite(move_z) else 0.0
        self._jump = self._jump or jump

    def flush(self) -> bool:
        """Send the coalesced input if the interval has elapsed."""
        now = self._now_ms()
        if self._last_send_ms is not None and now - self._last_send_ms < self._interval_ms:
            return False
        self._last_send_ms = now
        jump, self._jump = self._jump, False
        self._send(PlayerInput(move_x=self._move_x, move_z=self._move_z, jump_pressed=jump))
        return True

    def send_position(self, position: Vec3, rotation_y: float,
                      animation: str, model_id: str) -> bool:
        """Send the reconciliation position once until ``reset_position``."""
        if self._position_sent:
            return False
        self._send(PlayerPosition(position=position, rotation=rotation_y,
                                  animation=animation, model_id=model_id))
        self._position_sent = True
        logger.debug("Sent initial position %s", position)
        return True

    def reset_position(self) -> None:
        self._position_sent = False
