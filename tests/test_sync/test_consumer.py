"""Tests for joiner-side snapshot consumption and the input uplink."""

import pytest

from partysync.networking.protocol import GameState, PlayerInput, PlayerPosition
from partysync.sync.consumer import InputUplink, SnapshotConsumer, reconcile


def player(x, z=0.0, color=None, rotation=0.0):
    entry = {"position": [x, 0.0, z], "rotation": rotation}
    if color:
        entry["playerColor"] = color
    return entry


@pytest.fixture
def corrections():
    return []


@pytest.fixture
def consumer(clock, corrections):
    local = {"position": (0.0, 0.0, 0.0)}
    return SnapshotConsumer("me", clock, on_local_correction=lambda p, r: corrections.append(p),
                            local_position=lambda: local["position"], slow_gap_ms=4000)


class TestApply:
    def test_own_entry_is_not_rendered(self, consumer, corrections):
        consumer.apply(GameState(players={"me": player(1.0), "host": player(5.0)}))
        assert set(consumer.state.players) == {"host"}
        assert len(corrections) == 1

    def test_delta_merges_entities(self, consumer):
        consumer.apply(GameState(entities={"e1": {"position": [0, 0, 0], "hp": 30},
                                           "e2": {"hp": 10}}))
        consumer.apply(GameState(entities={"e1": {"hp": 20}}))
        assert consumer.state.entities == {"e1": {"position": [0, 0, 0], "hp": 20},
                                           "e2": {"hp": 10}}

    def test_full_sync_replaces_entities(self, consumer):
        consumer.apply(GameState(entities={"e1": {"hp": 1}, "stale": {"hp": 1}}))
        consumer.apply(GameState(entities={"e1": {"hp": 2}}, full_sync=True))
        assert consumer.state.entities == {"e1": {"hp": 2}}
        assert consumer.state.full_syncs == 1

    def test_removed_ids_applied_first(self, consumer):
        consumer.apply(GameState(entities={"e1": {"hp": 1}}))
        consumer.apply(GameState(entities={"e1": {"hp": 5}}, removed_ids=["e1"]))
        assert consumer.state.entities == {"e1": {"hp": 5}}

    def test_bad_player_entries_skipped(self, consumer):
        consumer.apply(GameState(players={"a": {"position": "?"}, "b": 3,
                                          "c": player(2.0)}))
        assert set(consumer.state.players) == {"c"}

    def test_unknown_removal_is_harmless(self, consumer):
        consumer.remove_entities(["never-seen"])
        assert consumer.state.entities == {}


class TestColors:
    def test_joined_then_colors(self, consumer):
        consumer.player_joined("p2", "#33FF57")
        consumer.set_colors({"host": "#FF5733", "p2": "#33FF57"})
        assert consumer.state.colors == {"host": "#FF5733", "p2": "#33FF57"}

    def test_colors_then_joined(self, consumer):
        consumer.set_colors({"host": "#FF5733"})
        consumer.player_joined("p2", "#33FF57")
        assert consumer.state.colors == {"host": "#FF5733", "p2": "#33FF57"}

    def test_player_left_removes_everything(self, consumer):
        consumer.apply(GameState(players={"p2": player(1.0, color="#33FF57")}))
        consumer.player_left("p2")
        assert "p2" not in consumer.state.players
        assert consumer.state.color_of("p2") is None

    def test_snapshot_colors_recorded(self, consumer):
        consumer.apply(GameState(players={"p2": player(1.0, color="#3357FF")}))
        assert consumer.state.color_of("p2") == "#3357FF"


class TestReconcile:
    def test_small_error_blends(self):
        assert reconcile((0.0, 0.0, 0.0), (1.0, 0.0, 0.0), False, blend=0.25) == \
            (0.25, 0.0, 0.0)

    def test_large_error_snaps(self):
        assert reconcile((0.0, 0.0, 0.0), (10.0, 0.0, 0.0), False) == (10.0, 0.0, 0.0)

    def test_full_sync_snaps(self):
        assert reconcile((0.0, 0.0, 0.0), (0.5, 0.0, 0.0), True) == (0.5, 0.0, 0.0)

    def test_consumer_blends_own_player(self, consumer, corrections):
        consumer.apply(GameState(players={"me": player(1.0)}))
        assert corrections[-1] == pytest.approx((0.2, 0.0, 0.0))
        consumer.apply(GameState(players={"me": player(1.0)}, full_sync=True))
        assert corrections[-1] == (1.0, 0.0, 0.0)


class TestGap:
    def test_no_gap_before_first_snapshot(self, clock, consumer):
        clock.advance(60000)
        assert not consumer.check_gap()

    def test_gap_reported_once(self, clock, consumer):
        consumer.apply(GameState())
        clock.advance(4000)
        assert not consumer.check_gap()
        clock.advance(1)
        assert consumer.check_gap()
        assert not consumer.check_gap()

    def test_new_snapshot_rearms(self, clock, consumer):
        consumer.apply(GameState())
        clock.advance(5000)
        assert consumer.check_gap()
        consumer.apply(GameState())
        clock.advance(5000)
        assert consumer.check_gap()


@pytest.fixture
def sent():
    return []


@pytest.fixture
def uplink(clock, sent):
    return InputUplink(sent.append, clock, interval_ms=33)


class TestUplink:
    def test_first_flush_sends_immediately(self, uplink, sent):
        assert uplink.flush()
        assert sent == [PlayerInput()]

    def test_throttled(self, clock, uplink, sent):
        uplink.flush()
        uplink.set_input(1.0, 0.0)
        clock.advance(20)
        assert not uplink.flush()
        clock.advance(13)
        assert uplink.flush()
        assert sent[-1] == PlayerInput(move_x=1.0, move_z=0.0)

    def test_latest_axes_win(self, clock, uplink, sent):
        uplink.flush()
        uplink.set_input(1.0, 0.0)
        uplink.set_input(0.0, -1.0)
        clock.advance(33)
        uplink.flush()
        assert sent[-1] == PlayerInput(move_x=0.0, move_z=-1.0)

    def test_jump_latched_until_sent(self, clock, uplink, sent):
        uplink.flush()
        uplink.set_input(0.0, 0.0, jump=True)
        uplink.set_input(0.0, 0.0, jump=False)
        clock.advance(33)
        uplink.flush()
        assert sent[-1].jump_pressed
        clock.advance(33)
        uplink.flush()
        assert not sent[-1].jump_pressed

    def test_non_finite_axes_zeroed(self, uplink, sent):
        uplink.set_input(float("nan"), float("inf"))
        uplink.flush()
        assert sent[-1] == PlayerInput()

    def test_position_sent_once_until_reset(self, uplink, sent):
        assert uplink.send_position((1.0, 0.0, 2.0), 0.5, "idle", "monk")
        assert not uplink.send_position((9.0, 0.0, 9.0), 0.0, "idle", "monk")
        assert isinstance(sent[0], PlayerPosition)
        assert sent[0].position == (1.0, 0.0, 2.0)
        uplink.reset_position()
        assert uplink.send_position((9.0, 0.0, 9.0), 0.0, "idle", "monk")
        assert len(sent) == 2
