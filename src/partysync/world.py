"""The simulation the session layer drives.

``GameWorld`` is the narrow interface the host and joiner sessions call into.
The session layer never reaches past it: it asks the world for transforms and
entity states, and tells it about remote input, kills, damage and skill casts.

``ArenaWorld`` is a small reference world (players on a flat disc, enemies
that wander and bite) used by the demo app and the scenario tests. It is
not deterministic across peers and does not need to be: only the host runs
its enemies.
"""

from __future__ import annotations

import logging
import math
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass

from partysync.config import (
    ARENA_RADIUS,
    DEFAULT_ANIMATION,
    DEFAULT_MODEL_ID,
    ENEMY_ATTACK_COOLDOWN_MS,
    ENEMY_ATTACK_RANGE,
    ENEMY_COUNT,
    ENEMY_DAMAGE,
    ENEMY_EXPERIENCE,
    ENEMY_HP,
    ENEMY_RESPAWN_MS,
    ENEMY_SPEED,
    GRAVITY,
    JUMP_VELOCITY,
    PLAYER_MAX_HP,
    PLAYER_SPEED,
)
from partysync.sync.snapshot import PlayerState

logger = logging.getLogger(__name__)

Vec3 = tuple[float, float, float]


class GameWorld(ABC):
    """What the session layer needs from the game simulation."""

    # --- match lifecycle ---

    @abstractmethod
    def has_started(self) -> bool:
        ...

    @abstractmethod
    def start_game(self) -> None:
        ...

    def set_local_authority(self, authoritative: bool) -> None:
        """True while this process owns the enemies (host, or playing alone).

        A joiner's world stops spawning and drops its own enemies; the host's
        broadcasts are the only source of entities until authority returns.
        """

    # --- players ---

    @abstractmethod
    def local_player_state(self) -> PlayerState:
        ...

    @abstractmethod
    def remote_player_state(self, player_id: str) -> PlayerState | None:
        ...

    @abstractmethod
    def add_remote_player(self, player_id: str, color: str | None = None) -> None:
        ...

    @abstractmethod
    def remove_remote_player(self, player_id: str) -> None:
        ...

    @abstractmethod
    def set_local_input(self, move_x: float, move_z: float, jump: bool = False) -> None:
        ...

    @abstractmethod
    def apply_player_input(self, player_id: str, move_x: float, move_z: float,
                           jump: bool) -> None:
        ...

    @abstractmethod
    def place_remote_player(self, player_id: str, position: Vec3, rotation_y: float,
                            animation: str, model_id: str | None) -> None:
        """Re-seed a remote player from its own report and clear its input."""
        ...

    @abstractmethod
    def set_local_transform(self, position: Vec3, rotation_y: float) -> None:
        ...

    def apply_player_damage(self, player_id: str, amount: float,
                            enemy_id: str | None) -> None:
        """A remote player reported being hit."""

    def apply_local_damage(self, amount: float, enemy_id: str | None) -> None:
        """The host says our own player was hit."""

    def add_experience(self, amount: int) -> None:
        ...

    def handle_skill_cast(self, player_id: str, skill_name: str,
                          variant: str | None = None,
                          target_enemy_id: str | None = None) -> None:
        ...

    # --- entities (host side) ---

    @abstractmethod
    def entity_states(self) -> dict[str, dict]:
        """Serializable state of every live entity, keyed by id."""
        ...

    @abstractmethod
    def kill_enemy(self, enemy_id: str) -> int | None:
        """Remove an enemy. Returns its experience reward, or None if it was
        already gone."""
        ...

    @abstractmethod
    def take_removed_entity_ids(self) -> list[str]:
        """Ids removed since the last call; the list is cleared."""
        ...

    def take_enemy_hits(self) -> list[tuple[str, float, str]]:
        """Hits on remote players since the last call: (player_id, amount,
        enemy_id). The host forwards each one to that player."""
        return []


@dataclass(slots=True)
class Body:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    rotation_y: float = 0.0
    vy: float = 0.0
    move_x: float = 0.0
    move_z: float = 0.0
    jump: bool = False
    hp: float = PLAYER_MAX_HP
    animation: str = DEFAULT_ANIMATION
    model_id: str = DEFAULT_MODEL_ID
    color: str | None = None

    @property
    def position(self) -> Vec3:
        return (self.x, self.y, self.z)

    def to_state(self) -> PlayerState:
        return PlayerState((round(self.x, 3), round(self.y, 3), round(self.z, 3)),
                           round(self.rotation_y, 3), self.animation, self.model_id,
                           self.color)


@dataclass(slots=True)
class Enemy:
    enemy_id: str
    x: float
    z: float
    target_x: float
    target_z: float
    hp: int = ENEMY_HP
    experience: int = ENEMY_EXPERIENCE
    cooldown_ms: int = 0

    def to_state(self) -> dict:
        return {"position": [round(self.x, 2), 0.0, round(self.z, 2)], "hp": self.hp}


class ArenaWorld(GameWorld):
    """Players on a disc, wandering enemies that bite whoever is close.

    Args:
        seed: seeds the enemy RNG so tests see the same arena every time.
        enemy_count: enemies kept alive while authoritative.
    """

    def __init__(self, seed: int = 0, enemy_count: int = ENEMY_COUNT,
                 model_id: str = DEFAULT_MODEL_ID) -> None:
        self._rng = random.Random(seed)
        self._enemy_count = enemy_count
        self._started = False
        self._authoritative = True
        self.local = Body(model_id=model_id)
        self.remotes: dict[str, Body] = {}
        self.enemies: dict[str, Enemy] = {}
        self.experience = 0
        self.last_skill: tuple[str, str] | None = None
        self._next_enemy = 0
        self._respawn_ms = 0
        self._removed: list[str] = []
        self._hits: list[tuple[str, float, str]] = []
        self._spawn_enemies()

    # --- lifecycle ---

    def has_started(self) -> bool:
        return self._started

    def start_game(self) -> None:
        if not self._started:
            logger.info("Match started")
        self._started = True

    def set_local_authority(self, authoritative: bool) -> None:
        if authoritative == self._authoritative:
            return
        self._authoritative = authoritative
        self.enemies.clear()
        self._removed.clear()
        self._hits.clear()
        if authoritative:
            self.remotes.clear()
            self._spawn_enemies()

    # --- players ---

    def local_player_state(self) -> PlayerState:
        return self.local.to_state()

    def remote_player_state(self, player_id: str) -> PlayerState | None:
        body = self.remotes.get(player_id)
        return body.to_state() if body is not None else None

    def add_remote_player(self, player_id: str, color: str | None = None) -> None:
        body = self.remotes.setdefault(player_id, Body())
        body.color = color

    def remove_remote_player(self, player_id: str) -> None:
        self.remotes.pop(player_id, None)

    def set_local_input(self, move_x: float, move_z: float, jump: bool = False) -> None:
        _set_input(self.local, move_x, move_z, jump)

    def apply_player_input(self, player_id: str, move_x: float, move_z: float,
                           jump: bool) -> None:
        body = self.remotes.get(player_id)
        if body is not None:
            _set_input(body, move_x, move_z, jump)

    def place_remote_player(self, player_id: str, position: Vec3, rotation_y: float,
                            animation: str, model_id: str | None) -> None:
        body = self.remotes.setdefault(player_id, Body())
        body.x, body.y, body.z = position
        body.rotation_y = rotation_y
        body.animation = animation or DEFAULT_ANIMATION
        if model_id:
            body.model_id = model_id
        body.move_x = body.move_z = 0.0

    def set_local_transform(self, position: Vec3, rotation_y: float) -> None:
        self.local.x, self.local.y, self.local.z = position
        self.local.rotation_y = rotation_y

    def apply_player_damage(self, player_id: str, amount: float,
                            enemy_id: str | None) -> None:
        body = self.remotes.get(player_id)
        if body is not None:
            body.hp = max(0.0, body.hp - amount)

    def apply_local_damage(self, amount: float, enemy_id: str | None) -> None:
        self.local.hp = max(0.0, self.local.hp - amount)

    def add_experience(self, amount: int) -> None:
        self.experience += amount

    def handle_skill_cast(self, player_id: str, skill_name: str,
                          variant: str | None = None,
                          target_enemy_id: str | None = None) -> None:
        self.last_skill = (player_id, skill_name)

    # --- entities ---

    def entity_states(self) -> dict[str, dict]:
        return {eid: e.to_state() for eid, e in self.enemies.items()}

    def kill_enemy(self, enemy_id: str) -> int | None:
        enemy = self.enemies.pop(enemy_id, None)
        if enemy is None:
            return None
        self._removed.append(enemy_id)
        return enemy.experience

    def take_removed_entity_ids(self) -> list[str]:
        removed, self._removed = self._removed, []
        return removed

    def take_enemy_hits(self) -> list[tuple[str, float, str]]:
        hits, self._hits = self._hits, []
        return hits

    def nearest_enemy(self, position: Vec3, reach: float) -> str | None:
        best_id, best = None, reach
        for enemy in self.enemies.values():
            d = math.hypot(enemy.x - position[0], enemy.z - position[2])
            if d <= best:
                best_id, best = enemy.enemy_id, d
        return best_id

    # --- simulation ---

    def step(self, dt_ms: int) -> None:
        """Advance players (always) and enemies (only while authoritative)."""
        dt = dt_ms / 1000.0
        _move(self.local, dt)
        if self._authoritative:
            for body in self.remotes.values():
                _move(body, dt)
            self._step_enemies(dt_ms)

    def _step_enemies(self, dt_ms: int) -> None:
        dt = dt_ms / 1000.0
        players = [(None, self.local)] + list(self.remotes.items())
        for enemy in self.enemies.values():
            dx, dz = enemy.target_x - enemy.x, enemy.target_z - enemy.z
            dist = math.hypot(dx, dz)
            if dist < 0.1:
                enemy.target_x, enemy.target_z = self._random_point()
            else:
                step = min(dist, ENEMY_SPEED * dt)
                enemy.x += dx / dist * step
                enemy.z += dz / dist * step

            enemy.cooldown_ms = max(0, enemy.cooldown_ms - dt_ms)
            if enemy.cooldown_ms:
                continue
            for player_id, body in players:
                if math.hypot(body.x - enemy.x, body.z - enemy.z) > ENEMY_ATTACK_RANGE:
                    continue
                enemy.cooldown_ms = ENEMY_ATTACK_COOLDOWN_MS
                if player_id is None:
                    self.apply_local_damage(ENEMY_DAMAGE, enemy.enemy_id)
                else:
                    body.hp = max(0.0, body.hp - ENEMY_DAMAGE)
                    self._hits.append((player_id, ENEMY_DAMAGE, enemy.enemy_id))
                break

        if len(self.enemies) < self._enemy_count:
            self._respawn_ms += dt_ms
            if self._respawn_ms >= ENEMY_RESPAWN_MS:
                self._respawn_ms = 0
                self._spawn_enemy()

    def _spawn_enemies(self) -> None:
        while len(self.enemies) < self._enemy_count:
            self._spawn_enemy()

    def _spawn_enemy(self) -> None:
        x, z = self._random_point()
        tx, tz = self._random_point()
        enemy_id = f"enemy-{self._next_enemy}"
        self._next_enemy += 1
        self.enemies[enemy_id] = Enemy(enemy_id, x, z, tx, tz)

    def _random_point(self) -> tuple[float, float]:
        angle = self._rng.uniform(0.0, math.tau)
        r = ARENA_RADIUS * math.sqrt(self._rng.random())
        return r * math.cos(angle), r * math.sin(angle)


def _set_input(body: Body, move_x: float, move_z: float, jump: bool) -> None:
    body.move_x = max(-1.0, min(1.0, move_x))
    body.move_z = max(-1.0, min(1.0, move_z))
    body.jump = body.jump or jump


def _move(body: Body, dt: float) -> None:
    length = math.hypot(body.move_x, body.move_z)
    if length > 0:
        scale = PLAYER_SPEED * dt / max(1.0, length)
        body.x += body.move_x * scale
        body.z += body.move_z * scale
        body.rotation_y = math.atan2(body.move_x, body.move_z)
        r = math.hypot(body.x, body.z)
        if r > ARENA_RADIUS:
            body.x *= ARENA_RADIUS / r
            body.z *= ARENA_RADIUS / r
    if body.jump and body.y == 0.0:
        body.vy = JUMP_VELOCITY
    body.jump = False
    if body.y > 0.0 or body.vy > 0.0:
        body.vy -= GRAVITY * dt
        body.y = max(0.0, body.y + body.vy * dt)
        if body.y == 0.0:
            body.vy = 0.0
    body.animation = "run" if length > 0 else DEFAULT_ANIMATION
