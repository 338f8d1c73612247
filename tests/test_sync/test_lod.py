"""Tests for level-of-detail policies."""

import math

from partysync.sync.lod import DistanceLod, FullDetail, nearest_distance


class TestNearestDistance:
    def test_closest_anchor_wins(self):
        state = {"position": [3.0, 5.0, 4.0]}
        assert nearest_distance(state, [(0.0, 0.0), (3.0, 5.0)]) == 1.0

    def test_height_is_ignored(self):
        assert nearest_distance({"position": [3, 100, 4]}, [(0, 0)]) == 5.0

    def test_no_position_counts_as_near(self):
        assert nearest_distance({"hp": 3}, [(50.0, 50.0)]) == 0.0

    def test_no_anchors_counts_as_near(self):
        assert nearest_distance({"position": [9, 0, 9]}, []) == 0.0


class TestDistanceLod:
    def test_near_is_exact(self):
        state = {"position": [1.234, 0.0, 5.678], "hp": 3}
        assert DistanceLod(near=10).encode(state, 5.0, False) is state

    def test_far_is_rounded(self):
        lod = DistanceLod(near=10, cull=100, precision=1)
        state = {"position": [1.234, 0.0, 5.678], "hp": 3}
        coarse = lod.encode(state, 50.0, False)
        assert coarse == {"position": [1.2, 0.0, 5.7], "hp": 3}
        assert state["position"] == [1.234, 0.0, 5.678]

    def test_beyond_cull_dropped_on_delta(self):
        lod = DistanceLod(near=10, cull=100)
        assert lod.encode({"position": [0, 0, 0]}, 150.0, False) is None

    def test_beyond_cull_kept_on_full_sync(self):
        lod = DistanceLod(near=10, cull=100, precision=0)
        assert lod.encode({"position": [0.4, 0, 0.6]}, math.inf, True) == \
            {"position": [0.0, 0, 1.0]}


def test_full_detail_passthrough():
    state = {"position": [1, 2, 3]}
    assert FullDetail().encode(state, 1e9, False) is state
