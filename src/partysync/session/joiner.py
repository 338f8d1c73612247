"""Joiner side of a room: one connection to the host, presentation only.

The joiner never decides anything about shared state. It renders what the
host broadcasts, predicts its own movement locally, and sends input and
events upstream.
"""

from __future__ import annotations

import logging
from typing import Callable

from partysync.networking.codec import MessageCodec
from partysync.networking.protocol import (
    JOINER_BOUND,
    EnemiesRemoved,
    EnemyKilled,
    GameState,
    HostLeft,
    Kicked,
    Message,
    MessageType,
    PartyBonusUpdate,
    PlayerColors,
    PlayerDamage,
    PlayerJoined,
    PlayerLeft,
    RequestStartGame,
    ShareExperience,
    SkillCast,
    StartGame,
    Welcome,
)
from partysync.networking.transport import Connection
from partysync.scheduler import Scheduler
from partysync.session.identity import IdentityStore
from partysync.session.observer import SessionObserver
from partysync.session.reconnect import LossKind
from partysync.session.router import MessageRouter
from partysync.sync.consumer import InputUplink, PresentationState, SnapshotConsumer
from partysync.world import GameWorld

logger = logging.getLogger(__name__)


class JoinerSession:
    """Lives from channel open until the link to the host ends.

    Args:
        connection: the open channel to the host.
        local_id: this endpoint's id; the host keys our player by it.
        on_end: called once with how the link ended (and a reason).
    """

    def __init__(self, connection: Connection, room_id: str, local_id: str,
                 world: GameWorld, store: IdentityStore, scheduler: Scheduler,
                 codec: MessageCodec | None = None,
                 observer: SessionObserver | None = None,
                 on_end: Callable[[LossKind, str | None], None] | None = None) -> None:
        self.room_id = room_id
        self.local_id = local_id
        self.welcomed = False
        self._conn = connection
        self._world = world
        self._store = store
        self._codec = codec or MessageCodec()
        self._observer = observer or SessionObserver()
        self._on_end = on_end
        self._ended = False
        self.consumer = SnapshotConsumer(
            local_id, scheduler.now_ms,
            on_local_correction=world.set_local_transform,
            local_position=lambda: world.local_player_state().position,
        )
        self.uplink = InputUplink(self.send, scheduler.now_ms)
        self._router = MessageRouter(self._codec, JOINER_BOUND, {
            MessageType.WELCOME: self._on_welcome,
            MessageType.GAME_STATE: self._on_game_state,
            MessageType.START_GAME: self._on_start_game,
            MessageType.PLAYER_JOINED: self._on_player_joined,
            MessageType.PLAYER_LEFT: self._on_player_left,
            MessageType.PLAYER_COLORS: self._on_player_colors,
            MessageType.SKILL_CAST: self._on_skill_cast,
            MessageType.PLAYER_DAMAGE: self._on_player_damage,
            MessageType.SHARE_EXPERIENCE: self._on_share_experience,
            MessageType.PARTY_BONUS_UPDATE: self._on_party_bonus,
            MessageType.ENEMIES_REMOVED: self._on_enemies_removed,
            MessageType.HOST_LEFT: self._on_host_left,
            MessageType.KICKED: self._on_kicked,
        }, role="joiner")

        world.set_local_authority(False)
        connection.on("data", lambda raw: self._router.route(room_id, raw))
        connection.on("close", self._on_close)
        connection.on("error", lambda err: logger.warning("Link to host %s: %s", room_id, err))
        # First message: admits us and carries the device id for dedup.
        self.send(RequestStartGame(persistent_id=store.persistent_id))

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def presentation(self) -> PresentationState:
        return self.consumer.state

    def send(self, msg: Message) -> bool:
        if self._ended or not self._conn.open:
            return False
        self._conn.send(self._codec.encode(msg.to_wire()))
        return True

    def update(self) -> None:
        """Once per frame: uplink and connection-health checks."""
        if self._ended:
            return
        if self.welcomed and not self.uplink.position_sent:
            local = self._world.local_player_state()
            self.uplink.send_position(local.position, local.rotation_y,
                                      local.animation, local.model_id)
        self.uplink.flush()
        if self.consumer.check_gap():
            logger.warning("No game state from %s for a while", self.room_id)
            self._observer.on_connection_slow()
            self._observer.on_notification("Connection to host is slow", "warning")

    # --- joiner actions ---

    def set_input(self, move_x: float, move_z: float, jump: bool = False) -> None:
        self.uplink.set_input(move_x, move_z, jump)

    def report_enemy_killed(self, enemy_id: str) -> None:
        self.send(EnemyKilled(enemy_id=enemy_id))

    def report_player_damage(self, amount: float, enemy_id: str) -> None:
        self.send(PlayerDamage(amount=amount, enemy_id=enemy_id))

    def cast_skill(self, skill_name: str, variant: str | None = None,
                   target_enemy_id: str | None = None) -> None:
        local = self._world.local_player_state()
        self.send(SkillCast(skill_name=skill_name, variant=variant,
                            target_enemy_id=target_enemy_id,
                            position=local.position, rotation=local.rotation_y))

    def leave(self) -> None:
        """Close the link on purpose. ``on_end`` is not called."""
        self._finish()

    # --- handlers ---

    def _on_welcome(self, host_id: str, msg: Welcome) -> None:
        self.welcomed = True
        self._store.add_joined_host(self.room_id)
        self._store.set_last_joined_room_id(self.room_id)
        logger.info("Host %s: %s", self.room_id, msg.message)
        self._observer.on_notification(msg.message or "Connected to host", "info")

    def _on_game_state(self, host_id: str, msg: GameState) -> None:
        self.consumer.apply(msg)

    def _on_start_game(self, host_id: str, msg: StartGame) -> None:
        self._world.start_game()
        self._observer.on_start_game()

    def _on_player_joined(self, host_id: str, msg: PlayerJoined) -> None:
        self.consumer.player_joined(msg.player_id, msg.player_color)
        self._observer.on_player_joined(msg.player_id, msg.player_color)

    def _on_player_left(self, host_id: str, msg: PlayerLeft) -> None:
        self.consumer.player_left(msg.player_id)
        self._observer.on_player_left(msg.player_id)

    def _on_player_colors(self, host_id: str, msg: PlayerColors) -> None:
        self.consumer.set_colors(msg.colors)

    def _on_skill_cast(self, host_id: str, msg: SkillCast) -> None:
        caster = msg.player_id or self.room_id
        self._world.handle_skill_cast(caster, msg.skill_name, msg.variant, msg.target_enemy_id)
        self._observer.on_skill_cast(caster, msg.skill_name)

    def _on_player_damage(self, host_id: str, msg: PlayerDamage) -> None:
        if not msg.amount:
            return
        if msg.player_id is None or msg.player_id == self.local_id:
            self._world.apply_local_damage(msg.amount, msg.enemy_id)
        else:
            self._observer.on_damage(msg.player_id, msg.amount, msg.enemy_id)

    def _on_share_experience(self, host_id: str, msg: ShareExperience) -> None:
        if msg.amount > 0:
            self._world.add_experience(msg.amount)
            self._observer.on_experience(msg.amount)

    def _on_party_bonus(self, host_id: str, msg: PartyBonusUpdate) -> None:
        n = msg.player_count
        self._observer.on_notification(
            f"Extra experience with {n} players!" if n >= 2 else "Extra EXP active.", "info")

    def _on_enemies_removed(self, host_id: str, msg: EnemiesRemoved) -> None:
        self.consumer.remove_entities(msg.ids)

    def _on_host_left(self, host_id: str, msg: HostLeft) -> None:
        self._observer.on_notification("The host has left the game", "error")
        self._end(LossKind.HOST_LEFT, None)

    def _on_kicked(self, host_id: str, msg: Kicked) -> None:
        self._observer.on_notification(msg.message, "error")
        self._end(LossKind.KICKED, msg.message)

    def _on_close(self) -> None:
        self._end(LossKind.LOST, "connection closed")

    # --- teardown ---

    def _end(self, kind: LossKind, reason: str | None) -> None:
        if self._ended:
            return
        logger.info("Link to %s ended: %s", self.room_id, kind.name)
        self._finish()
        if self._on_end is not None:
            self._on_end(kind, reason)

    def _finish(self) -> None:
        if self._ended:
            return
        self._ended = True
        self._conn.remove_all_listeners()
        self._conn.close()
        self.consumer.state.clear()
        self.uplink.reset_position()
        self._world.set_local_authority(True)
