"""Host side of a room: admission, authority, and the broadcast loop.

The host owns the only authoritative copy of the world. Joiners send input
and events; the host applies them, then broadcasts the result every
BROADCAST_INTERVAL_MS while at least one joiner is connected.
"""

from __future__ import annotations

import dataclasses
import logging

from partysync.config import BROADCAST_INTERVAL_MS, PROBE_TIMEOUT_MS
from partysync.errors import SessionSuperseded
from partysync.networking.codec import MessageCodec
from partysync.networking.protocol import (
    HOST_BOUND,
    EnemiesRemoved,
    EnemyKilled,
    HostLeft,
    InviteFromHost,
    InviteRequest,
    Kicked,
    Message,
    MessageType,
    PartyBonusUpdate,
    PlayerColors,
    PlayerDamage,
    PlayerInput,
    PlayerJoined,
    PlayerLeft,
    PlayerPosition,
    RequestStartGame,
    ShareExperience,
    SkillCast,
    StartGame,
    Status,
    StatusRequest,
    Welcome,
)
from partysync.networking.transport import Connection, Endpoint
from partysync.scheduler import Scheduler, Timer
from partysync.session.directory import SessionDirectory, SessionEntry
from partysync.session.identity import IdentityStore
from partysync.session.observer import SessionObserver
from partysync.session.router import MessageRouter
from partysync.sync.lod import DistanceLod, LodPolicy
from partysync.sync.snapshot import GameStateSnapshot, PlayerState, SnapshotBuilder
from partysync.world import GameWorld

logger = logging.getLogger(__name__)


class HostSession:
    """One hosting session, from ``become_host`` until leave.

    Created fresh every time the process starts hosting; its directory and
    tracker die with it.
    """

    def __init__(self, endpoint: Endpoint, room_id: str, world: GameWorld,
                 store: IdentityStore, scheduler: Scheduler,
                 codec: MessageCodec | None = None,
                 observer: SessionObserver | None = None,
                 lod: LodPolicy | None = None,
                 broadcast_interval_ms: int = BROADCAST_INTERVAL_MS) -> None:
        self.room_id = room_id
        self.directory = SessionDirectory(room_id, store)
        self._endpoint = endpoint
        self._world = world
        self._scheduler = scheduler
        self._codec = codec or MessageCodec()
        self._observer = observer or SessionObserver()
        self._builder = SnapshotBuilder(lod or DistanceLod())
        self._broadcast_interval_ms = broadcast_interval_ms
        self._broadcast_timer: Timer | None = None
        self._connections: dict[str, Connection] = {}
        self._closed = False
        self._router = MessageRouter(self._codec, HOST_BOUND, {
            MessageType.PLAYER_INPUT: self._on_player_input,
            MessageType.PLAYER_POSITION: self._on_player_position,
            MessageType.SKILL_CAST: self._on_skill_cast,
            MessageType.PLAYER_DAMAGE: self._on_player_damage,
            MessageType.ENEMY_KILLED: self._on_enemy_killed,
            MessageType.REQUEST_START_GAME: self._on_request_start_game,
            MessageType.STATUS_REQUEST: self._on_status_request,
            MessageType.INVITE_REQUEST: self._on_invite_request,
        }, handshake=self, role="host")

        world.set_local_authority(True)
        endpoint.on("connection", self._on_connection)
        endpoint.on("error", lambda err: logger.error("Host endpoint error: %s", err))
        logger.info("Hosting room %s", room_id)

    @property
    def player_count(self) -> int:
        """Host plus admitted joiners."""
        return 1 + len(self.directory)

    @property
    def broadcasting(self) -> bool:
        return self._broadcast_timer is not None

    @property
    def last_snapshot_tick(self) -> int:
        return self._builder.tick

    def host_status(self) -> str:
        return "ingame" if self._world.has_started() else "hosting"

    # --- connection lifecycle ---

    def _on_connection(self, conn: Connection) -> None:
        connection_id = conn.peer
        stale = self._connections.get(connection_id)
        if stale is not None and stale is not conn:
            # Same endpoint id dialing again before we saw the old link close.
            self._drop(connection_id)
        self._connections[connection_id] = conn
        self._router.track(connection_id)
        conn.on("data", lambda raw: self._router.route(connection_id, raw))
        conn.on("close", lambda: self._on_close(connection_id, conn))
        conn.on("error", lambda err: logger.warning("Connection %s error: %s",
                                                    connection_id, err))
        logger.debug("Incoming connection from %s", connection_id)

    def _on_close(self, connection_id: str, conn: Connection) -> None:
        if self._connections.get(connection_id) is not conn:
            return
        logger.info("Connection to %s closed", connection_id)
        self._drop(connection_id)

    def _detach(self, connection_id: str) -> Connection | None:
        """Stop listening to a connection and close it. Routing state goes too."""
        conn = self._connections.pop(connection_id, None)
        self._router.forget(connection_id)
        if conn is not None:
            conn.remove_all_listeners()
            conn.close()
        return conn

    def _drop(self, connection_id: str) -> SessionEntry | None:
        """Detach and release a slot. Safe to call more than once."""
        self._detach(connection_id)
        entry = self.directory.release(connection_id)
        if entry is None:
            return None
        self._world.remove_remote_player(connection_id)
        self.broadcast(PlayerLeft(player_id=connection_id))
        self.broadcast(PartyBonusUpdate(player_count=self.player_count))
        self._observer.on_player_left(connection_id)
        self._observer.on_notification("Player left the game", "info")
        if not self.directory:
            self._stop_broadcast()
        return entry

    # --- handshake (first payload on a fresh connection) ---

    def on_status_request(self, connection_id: str) -> None:
        conn = self._connections.get(connection_id)
        if conn is not None:
            conn.send(self._codec.encode(Status(status=self.host_status()).to_wire()))
        self._detach(connection_id)

    def on_invite_request(self, connection_id: str) -> None:
        self._detach(connection_id)
        logger.info("Invite requested by %s", connection_id)
        self._observer.on_invite_request(connection_id)

    def on_admit(self, connection_id: str, first: Message) -> None:
        persistent_id = first.persistent_id if isinstance(first, RequestStartGame) else None
        assignment = self.directory.admit(connection_id, persistent_id)
        if assignment.superseded is not None:
            self._supersede(assignment.superseded, connection_id)

        color = assignment.color
        self._world.add_remote_player(connection_id, color)
        welcome = "Reconnected to host" if assignment.is_reconnect else "Connected to host"
        self.send_to(connection_id, Welcome(message=welcome))
        self.send_to(connection_id, PlayerColors(colors=self.directory.colors()))
        self.broadcast(PlayerJoined(player_id=connection_id, player_color=color),
                       exclude=connection_id)
        self.broadcast(PartyBonusUpdate(player_count=self.player_count))
        # requestStartGame is answered by its own handler right after this.
        if self._world.has_started() and not isinstance(first, RequestStartGame):
            self.send_to(connection_id, StartGame())

        self._builder.request_full_sync()
        self._start_broadcast()
        logger.info("Admitted %s (device %s, color %s, %s)", connection_id,
                    persistent_id, color, "reconnect" if assignment.is_reconnect else "new")
        self._observer.on_player_joined(connection_id, color)
        self._observer.on_notification(
            "Player reconnected!" if assignment.is_reconnect
            else f"Player joined! Extra EXP active ({self.player_count} players).", "info")

    def _supersede(self, old: SessionEntry, new_connection_id: str) -> None:
        old_id = old.connection_id
        self._detach(old_id)
        self._world.remove_remote_player(old_id)
        self.broadcast(PlayerLeft(player_id=old_id), exclude=new_connection_id)
        self._observer.on_player_left(old_id)
        self._observer.on_player_superseded(
            SessionSuperseded(old.persistent_id, old_id, new_connection_id))

    # --- handlers ---

    def _on_player_input(self, connection_id: str, msg: PlayerInput) -> None:
        self._world.apply_player_input(connection_id, msg.move_x, msg.move_z, msg.jump_pressed)

    def _on_player_position(self, connection_id: str, msg: PlayerPosition) -> None:
        self._world.place_remote_player(connection_id, msg.position, msg.rotation,
                                        msg.animation, msg.model_id)

    def _on_skill_cast(self, connection_id: str, msg: SkillCast) -> None:
        self._world.handle_skill_cast(connection_id, msg.skill_name, msg.variant,
                                      msg.target_enemy_id)
        self.broadcast(msg.stripped(connection_id), exclude=connection_id)
        self._observer.on_skill_cast(connection_id, msg.skill_name)

    def _on_player_damage(self, connection_id: str, msg: PlayerDamage) -> None:
        if not msg.amount or msg.enemy_id is None:
            return
        self._world.apply_player_damage(connection_id, msg.amount, msg.enemy_id)
        self.broadcast(PlayerDamage(amount=msg.amount, enemy_id=msg.enemy_id,
                                    player_id=connection_id), exclude=connection_id)
        self._observer.on_damage(connection_id, msg.amount, msg.enemy_id)

    def _on_enemy_killed(self, connection_id: str, msg: EnemyKilled) -> None:
        experience = self.kill_enemy(msg.enemy_id)
        if experience:
            self.send_to(connection_id, ShareExperience(amount=experience))

    def _on_request_start_game(self, connection_id: str, msg: RequestStartGame) -> None:
        if self._world.has_started():
            self.send_to(connection_id, StartGame())

    def _on_status_request(self, connection_id: str, msg: StatusRequest) -> None:
        self.send_to(connection_id, Status(status=self.host_status()))

    def _on_invite_request(self, connection_id: str, msg: InviteRequest) -> None:
        # An admitted link that turns out to be an invite probe.
        self._drop(connection_id)
        self._observer.on_invite_request(connection_id)

    # --- host actions ---

    def kill_enemy(self, enemy_id: str) -> int | None:
        """Authoritative removal. Joiners hear about it right away rather than
        waiting for the next snapshot. Returns the experience reward."""
        experience = self._world.kill_enemy(enemy_id)
        if experience is None:
            logger.debug("Enemy %s already gone", enemy_id)
            return None
        self.broadcast(EnemiesRemoved(ids=[enemy_id]))
        return experience

    def cast_skill(self, skill_name: str, variant: str | None = None,
                   target_enemy_id: str | None = None) -> None:
        local = self._world.local_player_state()
        self.broadcast(SkillCast(skill_name=skill_name, variant=variant,
                                 target_enemy_id=target_enemy_id,
                                 position=local.position, rotation=local.rotation_y))

    def start_game(self) -> None:
        self._world.start_game()
        self.broadcast(StartGame())
        self._observer.on_start_game()

    def kick(self, connection_id: str, message: str | None = None) -> bool:
        if connection_id not in self.directory:
            return False
        self.send_to(connection_id, Kicked() if message is None else Kicked(message=message))
        logger.info("Kicking %s", connection_id)
        self._drop(connection_id)
        return True

    def invite(self, persistent_id: str) -> None:
        """Push an invite to an idle device listening on its persistent id."""
        conn = self._endpoint.connect(persistent_id)
        timer = self._scheduler.call_later(PROBE_TIMEOUT_MS, conn.close)

        def on_open() -> None:
            conn.send(self._codec.encode(InviteFromHost(host_room_id=self.room_id).to_wire()))
            timer.cancel()
            conn.remove_all_listeners()
            conn.close()

        def on_close() -> None:
            timer.cancel()
            conn.remove_all_listeners()
            logger.info("Invite to %s not delivered", persistent_id)

        conn.once("open", on_open)
        conn.once("close", on_close)

    def leave(self) -> None:
        """Say goodbye to everyone and close every link."""
        if self._closed:
            return
        self._closed = True
        self.broadcast(HostLeft())
        self._stop_broadcast()
        for connection_id in list(self._connections):
            self._detach(connection_id)
        self._endpoint.remove_all_listeners("connection")
        logger.info("Closed room %s", self.room_id)

    # --- outbound ---

    def send_to(self, connection_id: str, msg: Message) -> bool:
        conn = self._connections.get(connection_id)
        if conn is None or not conn.open:
            logger.warning("Cannot send %s to %s: not connected", msg.TYPE.value, connection_id)
            return False
        conn.send(self._codec.encode(msg.to_wire()))
        return True

    def broadcast(self, msg: Message, exclude: str | None = None) -> int:
        """Encode once, send the same payload to every admitted joiner."""
        payload = self._codec.encode(msg.to_wire())
        sent = 0
        for connection_id in self.directory.connection_ids():
            if connection_id == exclude:
                continue
            conn = self._connections.get(connection_id)
            if conn is not None and conn.open:
                conn.send(payload)
                sent += 1
        return sent

    # --- state broadcast ---

    def _start_broadcast(self) -> None:
        if self._broadcast_timer is None:
            self._broadcast_timer = self._scheduler.call_every(
                self._broadcast_interval_ms, self.broadcast_game_state)

    def _stop_broadcast(self) -> None:
        if self._broadcast_timer is not None:
            self._broadcast_timer.cancel()
            self._broadcast_timer = None

    def collect_players(self) -> dict[str, PlayerState]:
        players = {self.room_id: dataclasses.replace(
            self._world.local_player_state(), color=self.directory.host_color)}
        for entry in self.directory.entries():
            state = self._world.remote_player_state(entry.connection_id)
            if state is not None:
                players[entry.connection_id] = dataclasses.replace(state, color=entry.color)
        return players

    def broadcast_game_state(self) -> GameStateSnapshot:
        snapshot = self._builder.build(self.collect_players(),
                                       self._world.entity_states(),
                                       self._world.take_removed_entity_ids())
        self.broadcast(snapshot.to_message())
        for player_id, amount, enemy_id in self._world.take_enemy_hits():
            if player_id in self.directory:
                self.send_to(player_id, PlayerDamage(amount=amount, enemy_id=enemy_id))
        return snapshot
