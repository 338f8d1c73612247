"""Level-of-detail policies for entity broadcast.

A policy sees one entity's serializable state and its horizontal distance to
the nearest tracked player, and returns the state to send (possibly coarser)
or None to leave it out of this tick. Full syncs never drop an entity; the
builder ignores a None there and sends the raw state.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Iterable

from partysync.config import LOD_CULL_DISTANCE, LOD_FAR_PRECISION, LOD_NEAR_DISTANCE


def nearest_distance(state: dict, anchors: Iterable[tuple[float, float]]) -> float:
    """Horizontal (x, z) distance from an entity to the closest anchor.

    Entities without a position, or a room with no anchors, count as near.
    """
    position = state.get("position")
    if not isinstance(position, (list, tuple)) or len(position) != 3:
        return 0.0
    x, z = position[0], position[2]
    best = math.inf
    for ax, az in anchors:
        best = min(best, math.hypot(x - ax, z - az))
    return 0.0 if best == math.inf else best


class LodPolicy(ABC):
    @abstractmethod
    def encode(self, state: dict, distance: float, full_sync: bool) -> dict | None:
        ...


class FullDetail(LodPolicy):
    """Send everything exactly as the world reports it."""

    def encode(self, state: dict, distance: float, full_sync: bool) -> dict | None:
        return state


class DistanceLod(LodPolicy):
    """Near: exact. Far: rounded position. Beyond the cull radius: skipped on
    delta ticks."""

    def __init__(self, near: float = LOD_NEAR_DISTANCE, cull: float = LOD_CULL_DISTANCE,
                 precision: int = LOD_FAR_PRECISION) -> None:
        self.near = near
        self.cull = cull
        self.precision = precision

    def encode(self, state: dict, distance: float, full_sync: bool) -> dict | None:
        if distance <= self.near:
            return state
        if distance > self.cull and not full_sync:
            return None
        position = state.get("position")
        if not isinstance(position, (list, tuple)):
            return state
        coarse = dict(state)
        coarse["position"] = [round(v, self.precision) for v in position]
        return coarse
