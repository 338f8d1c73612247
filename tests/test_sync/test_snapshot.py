"""Tests for host-side snapshot construction."""

import pytest

from partysync.config import FULL_SYNC_INTERVAL
from partysync.sync.lod import DistanceLod
from partysync.sync.snapshot import PlayerState, SnapshotBuilder

HOST = {"host": PlayerState((0.0, 0.0, 0.0))}


def enemy(x, z, hp=30):
    return {"position": [x, 0.0, z], "hp": hp}


class TestDelta:
    def test_first_tick_sends_everything(self):
        builder = SnapshotBuilder()
        snap = builder.build(HOST, {"e1": enemy(1, 1), "e2": enemy(2, 2)})
        assert set(snap.entities) == {"e1", "e2"}
        assert not snap.is_full_sync

    def test_unchanged_entities_omitted(self):
        builder = SnapshotBuilder()
        entities = {"e1": enemy(1, 1), "e2": enemy(2, 2)}
        builder.build(HOST, entities)
        entities["e2"] = enemy(2, 3)
        snap = builder.build(HOST, entities)
        assert snap.entities == {"e2": enemy(2, 3)}

    def test_players_always_present(self):
        builder = SnapshotBuilder()
        builder.build(HOST, {})
        snap = builder.build(HOST, {})
        assert set(snap.players) == {"host"}
        assert snap.to_wire()["players"]["host"]["position"] == [0.0, 0.0, 0.0]


class TestFullSync:
    def test_periodic_full_sync_includes_unchanged(self):
        builder = SnapshotBuilder()
        entities = {"e1": enemy(1, 1)}
        snaps = [builder.build(HOST, entities) for _ in range(FULL_SYNC_INTERVAL)]
        assert [s.tick for s in snaps if s.is_full_sync] == [FULL_SYNC_INTERVAL]
        assert snaps[-1].entities == entities
        assert snaps[-2].entities == {}

    def test_requested_full_sync_keeps_cadence(self):
        builder = SnapshotBuilder(full_sync_interval=5)
        builder.build(HOST, {})
        builder.request_full_sync()
        fulls = [builder.build(HOST, {}).is_full_sync for _ in range(4)]
        assert fulls == [True, False, False, True]

    def test_bad_interval(self):
        with pytest.raises(ValueError):
            SnapshotBuilder(full_sync_interval=0)

    def test_wire_flag(self):
        builder = SnapshotBuilder(full_sync_interval=1)
        assert builder.build(HOST, {}).to_wire()["fullSync"] is True


class TestRemoval:
    def test_removed_ids_reported_once(self):
        builder = SnapshotBuilder()
        builder.build(HOST, {"e1": enemy(1, 1)})
        snap = builder.build(HOST, {}, ["e1"])
        assert snap.removed_entity_ids == ("e1",)
        assert builder.build(HOST, {}).removed_entity_ids == ()

    def test_vanished_entity_reported(self):
        builder = SnapshotBuilder()
        builder.build(HOST, {"e1": enemy(1, 1), "e2": enemy(2, 2)})
        snap = builder.build(HOST, {"e2": enemy(2, 2)})
        assert snap.removed_entity_ids == ("e1",)

    def test_respawned_id_is_resent(self):
        builder = SnapshotBuilder()
        builder.build(HOST, {"e1": enemy(1, 1)})
        builder.build(HOST, {}, ["e1"])
        snap = builder.build(HOST, {"e1": enemy(1, 1)})
        assert "e1" in snap.entities

    def test_duplicate_removals_collapse(self):
        builder = SnapshotBuilder()
        snap = builder.build(HOST, {}, ["e1", "e1"])
        assert snap.removed_entity_ids == ("e1",)


class TestLodIntegration:
    def test_far_entity_culled_on_delta_only(self):
        builder = SnapshotBuilder(DistanceLod(near=10, cull=50), full_sync_interval=3)
        entities = {"near": enemy(1, 1), "far": enemy(100, 0)}
        first = builder.build(HOST, entities)
        assert set(first.entities) == {"near"}
        second = builder.build(HOST, entities)
        assert second.entities == {}
        third = builder.build(HOST, entities)
        assert third.is_full_sync
        assert set(third.entities) == {"near", "far"}

    def test_culled_entity_sent_when_player_approaches(self):
        builder = SnapshotBuilder(DistanceLod(near=10, cull=50))
        entities = {"far": enemy(100, 0)}
        builder.build(HOST, entities)
        players = dict(HOST, joiner=PlayerState((95.0, 0.0, 0.0)))
        snap = builder.build(players, entities)
        assert snap.entities == {"far": enemy(100, 0)}


class TestPlayerState:
    def test_wire_round_trip(self):
        state = PlayerState((1.0, 2.0, 3.0), 0.5, "run", "monk", "#fff")
        assert PlayerState.from_wire(state.to_wire()) == state

    def test_object_vectors(self):
        state = PlayerState.from_wire({"position": {"x": 1, "y": 0, "z": 2},
                                       "rotation": {"y": 1.5}})
        assert state.position == (1.0, 0.0, 2.0)
        assert state.rotation_y == 1.5

    @pytest.mark.parametrize("raw", [
        {"position": [1, 2], "rotation": 0},
        {"position": [1, "x", 2], "rotation": 0},
        {"position": [0, 0, 0]},
        {"position": [0, 0, 0], "rotation": float("nan")},
    ])
    def test_unusable_entries(self, raw):
        assert PlayerState.from_wire(raw) is None
