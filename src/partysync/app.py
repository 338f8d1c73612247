"""Demo window: a top-down arena that exercises the session layer.

Draws every player as a colored disc and every enemy as a red square, with a
status line and the latest notification. The core never imports this module.

Controls: WASD move, Space jump, F attack the nearest enemy, Q cast a skill,
Enter start the match (host), K kick the newest joiner (host), Esc quit.
"""

from __future__ import annotations

import logging
import random

import pygame

from partysync.config import (
    ARENA_RADIUS,
    COLOR_BG,
    COLOR_ENEMY,
    COLOR_TEXT,
    FPS,
    KILL_RANGE,
    WORLD_RENDER_SCALE,
)
from partysync.session.manager import MultiplayerSession
from partysync.session.observer import SessionObserver
from partysync.session.roles import SessionStatus
from partysync.world import ArenaWorld

logger = logging.getLogger(__name__)

_FALLBACK_PLAYER_COLOR = (200, 200, 200)
_ARENA_EDGE = (60, 56, 70)


class HudObserver(SessionObserver):
    """Keeps the latest status and notification for the status line."""

    def __init__(self) -> None:
        self.status_text = "offline"
        self.notification = ""
        self.newest_joiner: str | None = None

    def on_status(self, status: SessionStatus) -> None:
        self.status_text = status.label

    def on_notification(self, text: str, level: str = "info") -> None:
        self.notification = text

    def on_player_joined(self, player_id: str, color: str | None) -> None:
        self.newest_joiner = player_id

    def on_player_left(self, player_id: str) -> None:
        if self.newest_joiner == player_id:
            self.newest_joiner = None

    def on_invite_request(self, connection_id: str) -> None:
        self.notification = f"{connection_id[:8]} wants an invite"

    def on_invite_from_host(self, host_room_id: str) -> None:
        self.notification = f"Invited to {host_room_id}"

    def on_connection_slow(self) -> None:
        self.notification = "Connection to host is slow"


class BotPlayer:
    """A second in-process session that wanders around (``--local``)."""

    def __init__(self, session: MultiplayerSession, seed: int = 7) -> None:
        self.session = session
        self._rng = random.Random(seed)
        self._turn_ms = 0

    def update(self, dt_ms: int) -> None:
        self._turn_ms -= dt_ms
        if self._turn_ms <= 0:
            self._turn_ms = self._rng.randint(500, 2000)
            self.session.set_local_input(self._rng.uniform(-1, 1), self._rng.uniform(-1, 1),
                                         self._rng.random() < 0.2)
        self.session.world.step(dt_ms)
        self.session.poll()


class DemoApp:
    """Main loop for the demo. Owns the window, the clock, and the session."""

    def __init__(self, screen: pygame.Surface, session: MultiplayerSession,
                 world: ArenaWorld, hud: HudObserver,
                 bot: BotPlayer | None = None) -> None:
        self._screen = screen
        self._session = session
        self._world = world
        self._hud = hud
        self._bot = bot
        self._clock = pygame.time.Clock()
        self._font = pygame.font.SysFont("monospace", 16)
        self._origin = (screen.get_width() // 2, screen.get_height() // 2)

    def run(self) -> None:
        """Run until the window closes or Esc is pressed."""
        running = True
        while running:
            dt_ms = self._clock.tick(FPS)
            for event in pygame.event.get():
                if event.type == pygame.QUIT:
                    running = False
                elif event.type == pygame.KEYDOWN:
                    running = self._on_key(event.key)

            self._update_input()
            self._world.step(dt_ms)
            self._session.poll()
            if self._bot is not None:
                self._bot.update(dt_ms)
            self._draw()

        self._session.leave_game()
        if self._bot is not None:
            self._bot.session.leave_game()

    def _on_key(self, key: int) -> bool:
        if key == pygame.K_ESCAPE:
            return False
        if key == pygame.K_f:
            enemy_id = self._world.nearest_enemy(self._world.local.position, KILL_RANGE) \
                if self._session.joiner is None else self._nearest_presented_enemy()
            if enemy_id is not None:
                self._session.report_enemy_killed(enemy_id)
        elif key == pygame.K_q:
            self._session.cast_skill("whirlwind")
        elif key == pygame.K_RETURN and self._session.is_host:
            self._session.start_multiplayer_game()
        elif key == pygame.K_k and self._hud.newest_joiner is not None:
            self._session.kick_player(self._hud.newest_joiner)
        return True

    def _nearest_presented_enemy(self) -> str | None:
        x, _, z = self._world.local.position
        best_id, best = None, KILL_RANGE
        for entity_id, state in self._session.visible_entities().items():
            position = state.get("position")
            if not isinstance(position, list):
                continue
            d = ((position[0] - x) ** 2 + (position[2] - z) ** 2) ** 0.5
            if d <= best:
                best_id, best = entity_id, d
        return best_id

    def _update_input(self) -> None:
        keys = pygame.key.get_pressed()
        move_x = float(keys[pygame.K_d]) - float(keys[pygame.K_a])
        move_z = float(keys[pygame.K_s]) - float(keys[pygame.K_w])
        self._session.set_local_input(move_x, move_z, bool(keys[pygame.K_SPACE]))

    # --- drawing ---

    def _to_screen(self, x: float, z: float) -> tuple[int, int]:
        ox, oy = self._origin
        return int(ox + x * WORLD_RENDER_SCALE), int(oy + z * WORLD_RENDER_SCALE)

    def _draw(self) -> None:
        screen = self._screen
        screen.fill(COLOR_BG)
        pygame.draw.circle(screen, _ARENA_EDGE, self._origin,
                           int(ARENA_RADIUS * WORLD_RENDER_SCALE), 1)

        for state in self._session.visible_entities().values():
            position = state.get("position")
            if isinstance(position, list) and len(position) == 3:
                px, py = self._to_screen(position[0], position[2])
                pygame.draw.rect(screen, COLOR_ENEMY, (px - 5, py - 5, 10, 10))

        for player in self._session.visible_players().values():
            self._draw_player(player.position, player.color)
        self._draw_player(self._world.local.position, self._session.local_color(), outline=True)

        lines = [
            self._session.describe(),
            f"HP {self._world.local.hp:.0f}  EXP {self._world.experience}",
            self._hud.notification,
        ]
        for i, line in enumerate(lines):
            if line:
                surf = self._font.render(line, True, COLOR_TEXT)
                screen.blit(surf, (10, 10 + i * 20))
        pygame.display.flip()

    def _draw_player(self, position: tuple[float, float, float], color: str | None,
                     outline: bool = False) -> None:
        px, py = self._to_screen(position[0], position[2])
        radius = 8 + int(position[1] * 2)  # airborne players look bigger
        fill = pygame.Color(color) if color else _FALLBACK_PLAYER_COLOR
        pygame.draw.circle(self._screen, fill, (px, py), radius)
        if outline:
            pygame.draw.circle(self._screen, COLOR_TEXT, (px, py), radius, 2)
