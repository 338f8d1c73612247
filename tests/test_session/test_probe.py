"""Tests for status probes, invite requests and the invite listener."""

from partysync.session.probe import OFFLINE


def probe(room, player, room_id=None):
    results = []
    player.session.probe_status(room_id or room.room_id, results.append)
    room.settle()
    return results


class TestStatusProbe:
    def test_hosting(self, room):
        idle = room.add_joiner("idle", join=False)
        assert probe(room, idle) == ["hosting"]

    def test_ingame(self, room):
        room.host.start_multiplayer_game()
        idle = room.add_joiner("idle", join=False)
        assert probe(room, idle) == ["ingame"]

    def test_offline(self, room):
        idle = room.add_joiner("idle", join=False)
        assert probe(room, idle, "no-such-room") == [OFFLINE]

    def test_timeout_reads_offline(self, room):
        idle = room.add_joiner("idle", join=False)
        room.host.host._endpoint.remove_all_listeners("connection")
        results = []
        idle.session.probe_status(room.room_id, results.append)
        room.settle()
        assert results == []
        room.advance(5000)
        assert results == [OFFLINE]

    def test_probe_never_admits(self, room):
        alice = room.add_joiner("alice")
        room.settle()
        idle = room.add_joiner("idle", join=False)
        tap = alice.tap_host()
        probe(room, idle)
        assert room.host_session.directory.connection_ids() == [alice.connection_id]
        assert room.host_observer.named("player_joined") == [(alice.connection_id, "#33FF57")]
        assert tap.of_type("playerJoined") == []
        assert tap.of_type("playerLeft") == []

    def test_probe_leaves_no_endpoint_behind(self, room):
        idle = room.add_joiner("idle", join=False)
        before = set(room.network.endpoint_ids())
        probe(room, idle)
        assert set(room.network.endpoint_ids()) == before


class TestInvites:
    def test_invite_request_reaches_host(self, room):
        idle = room.add_joiner("idle", join=False)
        results = []
        idle.session.send_invite_request(room.room_id, results.append)
        room.settle()
        assert results == ["sent"]
        assert len(room.host_observer.named("invite_request")) == 1
        assert len(room.host_session.directory) == 0

    def test_invite_request_to_missing_host(self, room):
        idle = room.add_joiner("idle", join=False)
        results = []
        idle.session.send_invite_request("no-such-room", results.append)
        room.settle()
        assert results == [OFFLINE]

    def test_host_invite_reaches_listener(self, room):
        idle = room.add_joiner("idle", join=False)
        assert idle.session.start_invite_listener()
        assert room.host.invite_player(idle.store.persistent_id)
        room.settle()
        assert idle.observer.named("invite_from_host") == [(room.room_id,)]

    def test_invite_to_absent_device(self, room):
        assert room.host.invite_player("nobody-listening")
        room.settle()
        room.advance(5000)
        assert room.host_observer.named("invite_request") == []

    def test_listener_stops_when_joining(self, room):
        idle = room.add_joiner("idle", join=False)
        idle.session.start_invite_listener()
        idle.join()
        room.settle()
        assert idle.store.persistent_id not in room.network.endpoint_ids()
        room.assert_joined(idle)
