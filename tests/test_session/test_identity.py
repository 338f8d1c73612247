"""Tests for the per-install identity store."""

import json

from partysync.config import IDENTITY_FILE
from partysync.session.identity import IdentityStore


class TestPersistentId:
    def test_stable_across_restarts(self, tmp_path):
        first = IdentityStore(tmp_path).persistent_id
        assert IdentityStore(tmp_path).persistent_id == first

    def test_in_memory_stores_differ(self):
        assert IdentityStore().persistent_id != IdentityStore().persistent_id

    def test_unreadable_file_starts_fresh(self, tmp_path):
        (tmp_path / IDENTITY_FILE).write_text("not json")
        store = IdentityStore(tmp_path)
        assert store.persistent_id
        assert json.loads((tmp_path / IDENTITY_FILE).read_text())["persistentId"] == \
            store.persistent_id


class TestRoleMemory:
    def test_last_rooms(self, tmp_path):
        store = IdentityStore(tmp_path)
        store.set_last_role("joiner")
        store.set_last_joined_room_id("room-9")
        reloaded = IdentityStore(tmp_path)
        assert reloaded.last_role == "joiner"
        assert reloaded.last_joined_room_id == "room-9"

    def test_clearing(self):
        store = IdentityStore()
        store.set_last_host_room_id("room-1")
        store.set_last_host_room_id(None)
        assert store.last_host_room_id is None


class TestContacts:
    def test_joined_hosts_dedup(self):
        store = IdentityStore()
        store.add_joined_host("room-1")
        store.add_joined_host("room-1")
        store.add_joined_host("room-2")
        assert store.joined_hosts() == ["room-1", "room-2"]
        store.remove_joined_host("room-1")
        assert store.joined_hosts() == ["room-2"]

    def test_stored_joiners_are_copies(self):
        store = IdentityStore()
        store.set_stored_joiners("room-1", [{"persistentId": "a", "color": "#fff"}])
        store.stored_joiners("room-1")[0]["color"] = "#000"
        assert store.stored_color("room-1", "a") == "#fff"
