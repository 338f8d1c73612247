"""Scenario harness for session-level tests.

Wires a host and any number of joiners over one loopback network, all
driven by a manual clock, so a test reads as a script of what happens and
when:

Usage:
    room = Room()
    alice = room.add_joiner("alice")
    room.settle()
    room.assert_joined(alice)
    alice.drop()                      # network failure
    room.advance(1000)                # first retry fires
    room.settle()
"""

from __future__ import annotations

from partysync.networking.codec import MessageCodec
from partysync.networking.loopback import LoopbackConnection, LoopbackNetwork
from partysync.scheduler import Scheduler
from partysync.session.identity import IdentityStore
from partysync.session.manager import MultiplayerSession
from partysync.session.observer import SessionObserver
from partysync.session.roles import ConnectionState, SessionStatus
from partysync.world import ArenaWorld


class ManualClock:
    def __init__(self, start_ms: int = 1_000) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class RecordingObserver(SessionObserver):
    """Remembers every hook call as (name, args)."""

    def __init__(self) -> None:
        self.events: list[tuple[str, tuple]] = []
        self.statuses: list[SessionStatus] = []

    def _record(self, name: str, *args: object) -> None:
        self.events.append((name, args))

    def on_status(self, status: SessionStatus) -> None:
        self.statuses.append(status)
        self._record("status", status)

    def on_notification(self, text: str, level: str = "info") -> None:
        self._record("notification", text, level)

    def on_player_joined(self, player_id: str, color: str | None) -> None:
        self._record("player_joined", player_id, color)

    def on_player_left(self, player_id: str) -> None:
        self._record("player_left", player_id)

    def on_player_superseded(self, error: Exception) -> None:
        self._record("superseded", error)

    def on_invite_request(self, connection_id: str) -> None:
        self._record("invite_request", connection_id)

    def on_invite_from_host(self, host_room_id: str) -> None:
        self._record("invite_from_host", host_room_id)

    def on_start_game(self) -> None:
        self._record("start_game")

    def on_experience(self, amount: int) -> None:
        self._record("experience", amount)

    def on_damage(self, player_id: str, amount: float, enemy_id: str | None) -> None:
        self._record("damage", player_id, amount, enemy_id)

    def on_skill_cast(self, player_id: str, skill_name: str) -> None:
        self._record("skill_cast", player_id, skill_name)

    def on_connection_slow(self) -> None:
        self._record("connection_slow")

    def named(self, name: str) -> list[tuple]:
        return [args for event, args in self.events if event == name]


class Tap:
    """Records every decoded message a connection receives."""

    def __init__(self, conn: LoopbackConnection, codec: MessageCodec) -> None:
        self.messages: list[dict] = []
        conn.on("data", lambda raw: self.messages.append(codec.decode(raw)))

    def types(self) -> list[str]:
        return [m["type"] for m in self.messages]

    def of_type(self, tag: str) -> list[dict]:
        return [m for m in self.messages if m["type"] == tag]

    def clear(self) -> None:
        self.messages.clear()


class Player:
    """One device in the room: its own world, store, observer and session."""

    def __init__(self, name: str, room: Room, store: IdentityStore | None = None) -> None:
        self.name = name
        self.room = room
        self.world = ArenaWorld(seed=len(room.players) + 1, enemy_count=0)
        self.store = store or IdentityStore()
        self.observer = RecordingObserver()
        self.session = MultiplayerSession(
            room.network.transport(), self.world, self.store, self.observer,
            room.scheduler, room.codec)
        self.tap: Tap | None = None

    @property
    def connection_id(self) -> str | None:
        return self.session.local_id

    @property
    def status(self) -> SessionStatus:
        return self.session.status

    def join(self, room_id: str | None = None) -> None:
        self.session.join_game(room_id or self.room.room_id)

    def host_connection(self) -> LoopbackConnection:
        """This joiner's live connection to the host."""
        endpoint = self.session.roles.endpoint
        return endpoint.connections()[0]

    def tap_host(self) -> Tap:
        self.tap = Tap(self.host_connection(), self.room.codec)
        return self.tap

    def drop(self, notify_host: bool = True) -> None:
        """Break the link as a network failure would."""
        self.host_connection().fail("radio lost", notify_remote=notify_host)


class Room:
    def __init__(self, enemy_count: int = 3, seed: int = 42) -> None:
        self.clock = ManualClock()
        self.scheduler = Scheduler(self.clock)
        self.network = LoopbackNetwork()
        self.codec = MessageCodec()
        self.players: list[Player] = []
        self.host_world = ArenaWorld(seed=seed, enemy_count=enemy_count)
        self.host_store = IdentityStore()
        self.host_observer = RecordingObserver()
        self.host = MultiplayerSession(
            self.network.transport(), self.host_world, self.host_store,
            self.host_observer, self.scheduler, self.codec)
        self.room_id = self.host.host_game()

    @property
    def host_session(self):
        return self.host.host

    def add_joiner(self, name: str, store: IdentityStore | None = None,
                   join: bool = True) -> Player:
        player = Player(name, self, store)
        self.players.append(player)
        if join:
            player.join()
        return player

    def settle(self) -> int:
        """Deliver everything in flight and run per-frame work."""
        total = 0
        for _ in range(50):
            delivered = self.network.pump()
            for player in self.players:
                if player.session.joiner is not None:
                    player.session.joiner.update()
            total += delivered
            if not delivered:
                break
        return total

    def advance(self, ms: int, step_ms: int | None = None) -> None:
        """Move the clock forward, firing timers (in steps if given)."""
        step = step_ms or ms
        elapsed = 0
        while elapsed < ms:
            delta = min(step, ms - elapsed)
            self.clock.advance(delta)
            elapsed += delta
            self.scheduler.run_due()
            self.settle()

    def assert_joined(self, player: Player) -> None:
        status = player.status
        assert status.state is ConnectionState.JOINED, \
            f"{player.name} is {status.role.name}/{status.state.name} ({status.reason})"
        assert player.connection_id in self.host_session.directory, \
            f"{player.name} ({player.connection_id}) not in host directory " \
            f"{self.host_session.directory.connection_ids()}"
