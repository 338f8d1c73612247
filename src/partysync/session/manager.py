"""The one object the application talks to.

``MultiplayerSession`` wires the role manager, the host or joiner session,
reconnection and probing together, and exposes the game-facing API. The
application calls ``poll()`` once per frame; everything else happens inside
that call.

Usage:
    session = MultiplayerSession(transport, world, IdentityStore(data_dir))
    room_id = session.host_game()          # or session.join_game(room_id)
    while running:
        session.poll()
        session.set_local_input(mx, mz, jump)
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Callable

from partysync.config import JOIN_TIMEOUT_MS
from partysync.networking.codec import MessageCodec
from partysync.networking.transport import Connection, Transport
from partysync.scheduler import Scheduler
from partysync.session.host import HostSession
from partysync.session.identity import IdentityStore
from partysync.session.joiner import JoinerSession
from partysync.session.observer import SessionObserver
from partysync.session.probe import Prober, listen_for_invite
from partysync.session.reconnect import LossKind, ReconnectController
from partysync.session.roles import (
    ConnectionState,
    JoinAttempt,
    Role,
    RoleManager,
    SessionStatus,
    join_failed,
    join_succeeded,
)
from partysync.sync.consumer import PresentationState
from partysync.sync.snapshot import PlayerState
from partysync.world import GameWorld

logger = logging.getLogger(__name__)


class MultiplayerSession:
    def __init__(self, transport: Transport, world: GameWorld,
                 store: IdentityStore | None = None,
                 observer: SessionObserver | None = None,
                 scheduler: Scheduler | None = None,
                 codec: MessageCodec | None = None,
                 join_timeout_ms: int = JOIN_TIMEOUT_MS) -> None:
        self.transport = transport
        self.world = world
        self.store = store or IdentityStore()
        self.observer = observer or SessionObserver()
        self.scheduler = scheduler or Scheduler()
        self.codec = codec or MessageCodec()
        self.roles = RoleManager(transport, self.store, self.scheduler,
                                 on_status=self._on_status,
                                 join_timeout_ms=join_timeout_ms)
        self.reconnect = ReconnectController(self.roles, self.scheduler, self.store,
                                             self._rejoin)
        self.prober = Prober(transport, self.scheduler, self.codec)
        self.host: HostSession | None = None
        self.joiner: JoinerSession | None = None

    # --- state ---

    @property
    def status(self) -> SessionStatus:
        return self.roles.status

    @property
    def is_host(self) -> bool:
        return self.roles.status.is_host

    @property
    def room_id(self) -> str | None:
        return self.roles.status.room_id

    @property
    def local_id(self) -> str | None:
        return self.roles.local_id

    @property
    def presentation(self) -> PresentationState | None:
        return self.joiner.presentation if self.joiner is not None else None

    def poll(self) -> int:
        """Pump the transport, fire due timers, run per-frame joiner work."""
        events = self.transport.poll()
        events += self.scheduler.run_due()
        if self.joiner is not None:
            self.joiner.update()
        return events

    # --- roles ---

    def host_game(self) -> str:
        """Start hosting. Returns the room id (stable across restarts).

        Raises HostInitError if the endpoint cannot be opened.
        """
        self._leave_current()
        room_id = self.roles.become_host()
        self.host = HostSession(self.roles.endpoint, room_id, self.world, self.store,
                                self.scheduler, self.codec, self.observer)
        return room_id

    def join_game(self, room_id: str) -> JoinAttempt:
        """Start joining a room. The result arrives through the status.

        Raises JoinInitError if the local endpoint cannot be opened.
        """
        self._leave_current()
        attempt = self.roles.become_joiner(room_id)
        attempt.add_done_callback(self._on_join_done)
        return attempt

    def leave_game(self) -> None:
        """Stop hosting or joining on purpose; no reconnection follows."""
        if self.host is not None:
            self.store.set_last_host_room_id(None)
        self._leave_current()
        self.roles.teardown()

    def _leave_current(self) -> None:
        self.reconnect.cancel()
        if self.host is not None:
            self.host.leave()
            self.host = None
        if self.joiner is not None:
            self.joiner.leave()
            self.joiner = None
        self.world.set_local_authority(True)

    def _rejoin(self, room_id: str) -> None:
        attempt = self.roles.become_joiner(room_id, reconnecting=True)
        attempt.add_done_callback(self._on_join_done)

    def _on_join_done(self, attempt: JoinAttempt) -> None:
        if attempt.error is not None:
            logger.warning("Join %s failed: %s", attempt.room_id, attempt.error.reason)
            if self.reconnect.reconnecting:
                self.reconnect.on_join_failed(attempt.error)
            else:
                self.roles.teardown(join_failed(self.roles.status, attempt.error.reason))
                self.observer.on_notification(
                    f"Could not join: {attempt.error.reason}", "error")
            return

        self.roles.set_status(join_succeeded(self.roles.status))
        self.reconnect.on_joined()
        self.joiner = JoinerSession(attempt.connection, attempt.room_id, self.roles.local_id,
                                    self.world, self.store, self.scheduler, self.codec,
                                    self.observer, on_end=self._on_joiner_end)

    def _on_joiner_end(self, kind: LossKind, reason: str | None) -> None:
        self.joiner = None
        self.reconnect.on_host_lost(kind, reason)

    def _on_status(self, status: SessionStatus) -> None:
        self.observer.on_status(status)

    # --- host actions ---

    def start_multiplayer_game(self) -> None:
        """Start the match; joiners get ``startGame``. Offline it just starts."""
        if self.host is not None:
            self.host.start_game()
        else:
            self.world.start_game()
            self.observer.on_start_game()

    def kick_player(self, connection_id: str) -> bool:
        if self.host is None:
            return False
        return self.host.kick(connection_id)

    def invite_player(self, persistent_id: str) -> bool:
        """Host: push an invite to an idle device's listener."""
        if self.host is None:
            return False
        self.host.invite(persistent_id)
        return True

    # --- probes and invites ---

    def probe_status(self, room_id: str, callback: Callable[[str], None]) -> None:
        self.prober.probe_status(room_id, callback)

    def send_invite_request(self, room_id: str,
                            callback: Callable[[str], None] | None = None) -> None:
        self.prober.send_invite_request(room_id, callback)

    def start_invite_listener(self) -> bool:
        return self.roles.start_invite_listener(self._on_invite_connection)

    def stop_invite_listener(self) -> None:
        self.roles.stop_invite_listener()

    def _on_invite_connection(self, conn: Connection) -> None:
        listen_for_invite(conn, self.codec, self.observer.on_invite_from_host)

    # --- gameplay bridge ---

    def set_local_input(self, move_x: float, move_z: float, jump: bool = False) -> None:
        self.world.set_local_input(move_x, move_z, jump)
        if self.joiner is not None:
            self.joiner.set_input(move_x, move_z, jump)

    def report_enemy_killed(self, enemy_id: str) -> None:
        """The local player killed an enemy. Only the host decides the outcome."""
        if self.joiner is not None:
            self.joiner.report_enemy_killed(enemy_id)
            return
        if self.host is not None:
            experience = self.host.kill_enemy(enemy_id)
        else:
            experience = self.world.kill_enemy(enemy_id)
        if experience:
            self.world.add_experience(experience)
            self.observer.on_experience(experience)

    def report_player_damage(self, amount: float, enemy_id: str) -> None:
        if self.joiner is not None:
            self.joiner.report_player_damage(amount, enemy_id)

    def cast_skill(self, skill_name: str, variant: str | None = None,
                   target_enemy_id: str | None = None) -> None:
        if self.joiner is not None:
            self.joiner.cast_skill(skill_name, variant, target_enemy_id)
        elif self.host is not None:
            self.host.cast_skill(skill_name, variant, target_enemy_id)

    def reset_position_sync_for_resume(self) -> None:
        """After a pause: send our position once more so the host re-seeds it."""
        if self.joiner is not None:
            self.joiner.uplink.reset_position()

    # --- rendering helpers ---

    def visible_players(self) -> dict[str, PlayerState]:
        """Every player except the local one, with colors."""
        if self.host is not None:
            return {pid: p for pid, p in self.host.collect_players().items()
                    if pid != self.host.room_id}
        if self.joiner is not None:
            state = self.joiner.presentation
            return {pid: p if p.color else _with_color(p, state.color_of(pid))
                    for pid, p in state.players.items()}
        return {}

    def visible_entities(self) -> dict[str, dict]:
        if self.joiner is not None:
            return self.joiner.presentation.entities
        return self.world.entity_states()

    def local_color(self) -> str | None:
        if self.host is not None:
            return self.host.directory.host_color
        if self.joiner is not None and self.local_id is not None:
            return self.joiner.presentation.color_of(self.local_id)
        return None

    def describe(self) -> str:
        status = self.status
        if status.role is Role.HOST:
            return f"Hosting {status.room_id} ({self.host.player_count} players)"
        if status.state is ConnectionState.JOINED:
            return f"Joined {status.room_id}"
        return status.label.capitalize()


def _with_color(player: PlayerState, color: str | None) -> PlayerState:
    if color is None:
        return player
    return dataclasses.replace(player, color=color)
