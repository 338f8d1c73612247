"""Tests for the host-side session directory."""

import pytest

from partysync.config import PLAYER_COLORS
from partysync.session.directory import SessionDirectory
from partysync.session.identity import IdentityStore


@pytest.fixture
def directory(store):
    return SessionDirectory("room-1", store)


class TestAdmit:
    def test_host_keeps_first_color(self, directory):
        assert directory.host_color == PLAYER_COLORS[0]
        assert directory.color_of("room-1") == PLAYER_COLORS[0]

    def test_colors_assigned_in_palette_order(self, directory):
        a = directory.admit("c1", "dev-a")
        b = directory.admit("c2", "dev-b")
        assert a.color == PLAYER_COLORS[1]
        assert b.color == PLAYER_COLORS[2]
        assert not a.is_reconnect and a.superseded is None

    def test_anonymous_joiner(self, directory):
        slot = directory.admit("c1")
        assert slot.entry.persistent_id is None
        assert "c1" in directory

    def test_same_connection_is_idempotent(self, directory):
        first = directory.admit("c1", "dev-a")
        again = directory.admit("c1", "dev-a")
        assert again.entry == first.entry
        assert again.superseded is None
        assert len(directory) == 1

    def test_palette_exhaustion_reuses(self, store):
        directory = SessionDirectory("room-1", store, palette=("#000", "#111"))
        directory.admit("c1")
        slot = directory.admit("c2")
        assert slot.color in ("#000", "#111")


class TestSupersede:
    def test_second_connection_replaces_first(self, directory):
        first = directory.admit("c1", "dev-a")
        second = directory.admit("c2", "dev-a")
        assert second.superseded == first.entry
        assert second.is_reconnect
        assert second.color == first.color
        assert directory.connection_ids() == ["c2"]
        assert directory.lookup_by_persistent("dev-a") == "c2"

    def test_release_of_superseded_is_a_no_op(self, directory):
        directory.admit("c1", "dev-a")
        directory.admit("c2", "dev-a")
        assert directory.release("c1") is None
        assert directory.lookup_by_persistent("dev-a") == "c2"

    def test_release_twice(self, directory):
        directory.admit("c1", "dev-a")
        assert directory.release("c1") is not None
        assert directory.release("c1") is None
        assert len(directory) == 0


class TestPersistence:
    def test_returning_device_gets_old_color(self, store):
        first = SessionDirectory("room-1", store)
        first.admit("c1", "dev-a")
        color = first.admit("c2", "dev-b").color
        first.release("c2")

        second = SessionDirectory("room-1", store)
        slot = second.admit("c9", "dev-b")
        assert slot.color == color
        assert slot.is_reconnect
        assert slot.superseded is None

    def test_offline_joiners_stay_remembered(self, store):
        directory = SessionDirectory("room-1", store)
        directory.admit("c1", "dev-a")
        directory.release("c1")
        directory.admit("c2", "dev-b")
        remembered = {j["persistentId"] for j in store.stored_joiners("room-1")}
        assert remembered == {"dev-a", "dev-b"}

    def test_colors_are_per_room(self, store):
        SessionDirectory("room-1", store).admit("c1", "dev-a")
        assert store.stored_color("room-2", "dev-a") is None

    def test_colors_map(self, directory):
        directory.admit("c1", "dev-a")
        assert directory.colors() == {"room-1": PLAYER_COLORS[0], "c1": PLAYER_COLORS[1]}


def test_store_survives_restart(tmp_path):
    SessionDirectory("room-1", IdentityStore(tmp_path)).admit("c1", "dev-a")
    assert IdentityStore(tmp_path).stored_color("room-1", "dev-a") == PLAYER_COLORS[1]
