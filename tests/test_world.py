"""Tests for the reference arena world."""

import pytest

from partysync.config import (
    ARENA_RADIUS,
    ENEMY_DAMAGE,
    ENEMY_EXPERIENCE,
    ENEMY_RESPAWN_MS,
    PLAYER_SPEED,
)
from partysync.world import ArenaWorld


@pytest.fixture
def world():
    return ArenaWorld(seed=7, enemy_count=3)


class TestEnemies:
    def test_spawn_ids(self, world):
        assert sorted(world.enemies) == ["enemy-0", "enemy-1", "enemy-2"]
        for state in world.entity_states().values():
            assert set(state) == {"position", "hp"}

    def test_same_seed_same_arena(self):
        assert ArenaWorld(seed=3).entity_states() == ArenaWorld(seed=3).entity_states()

    def test_kill_once(self, world):
        assert world.kill_enemy("enemy-1") == ENEMY_EXPERIENCE
        assert world.kill_enemy("enemy-1") is None
        assert world.take_removed_entity_ids() == ["enemy-1"]
        assert world.take_removed_entity_ids() == []

    def test_respawn_with_fresh_id(self, world):
        world.kill_enemy("enemy-0")
        world.local.x = world.local.z = 1000.0
        world.step(ENEMY_RESPAWN_MS)
        assert len(world.enemies) == 3
        assert "enemy-3" in world.enemies

    def test_bite_local_player(self, world):
        enemy = world.enemies["enemy-0"]
        world.local.x, world.local.z = enemy.x, enemy.z
        enemy.target_x, enemy.target_z = enemy.x, enemy.z
        world.step(16)
        assert world.local.hp == 100 - ENEMY_DAMAGE

    def test_bite_remote_player_is_queued(self, world):
        world.local.x = world.local.z = 1000.0
        world.add_remote_player("p2")
        enemy = world.enemies["enemy-0"]
        body = world.remotes["p2"]
        body.x, body.z = enemy.x, enemy.z
        enemy.target_x, enemy.target_z = enemy.x, enemy.z
        world.step(16)
        assert world.take_enemy_hits() == [("p2", ENEMY_DAMAGE, "enemy-0")]
        assert world.take_enemy_hits() == []


class TestAuthority:
    def test_losing_authority_drops_enemies(self, world):
        world.set_local_authority(False)
        assert world.entity_states() == {}
        world.step(ENEMY_RESPAWN_MS * 2)
        assert world.entity_states() == {}

    def test_regaining_authority_respawns(self, world):
        world.add_remote_player("p2")
        world.set_local_authority(False)
        world.set_local_authority(True)
        assert len(world.enemies) == 3
        assert world.remotes == {}

    def test_same_value_is_a_no_op(self, world):
        before = dict(world.enemies)
        world.set_local_authority(True)
        assert world.enemies == before


class TestMovement:
    def test_move_and_face(self, world):
        world.set_local_input(1.0, 0.0)
        world.step(500)
        assert world.local.x == pytest.approx(PLAYER_SPEED * 0.5)
        assert world.local_player_state().animation == "run"

    def test_input_is_clamped(self, world):
        world.set_local_input(5.0, 0.0)
        assert world.local.move_x == 1.0

    def test_stays_in_arena(self, world):
        world.set_local_input(1.0, 0.0)
        for _ in range(20):
            world.step(1000)
        assert world.local.x == pytest.approx(ARENA_RADIUS)

    def test_jump_and_land(self, world):
        world.set_local_input(0.0, 0.0, jump=True)
        world.step(100)
        assert world.local.y > 0
        for _ in range(20):
            world.step(100)
        assert world.local.y == 0.0

    def test_remote_moves_only_with_authority(self, world):
        world.add_remote_player("p2", "#33FF57")
        world.apply_player_input("p2", 0.0, 1.0, False)
        world.step(1000)
        assert world.remotes["p2"].z == pytest.approx(PLAYER_SPEED)
        assert world.remote_player_state("p2").color == "#33FF57"

    def test_place_remote_clears_input(self, world):
        world.add_remote_player("p2")
        world.apply_player_input("p2", 1.0, 0.0, False)
        world.place_remote_player("p2", (3.0, 0.0, 4.0), 1.0, "run", "knight")
        body = world.remotes["p2"]
        assert (body.x, body.z, body.move_x) == (3.0, 4.0, 0.0)
        assert body.model_id == "knight"


def test_nearest_enemy(world):
    enemy = world.enemies["enemy-2"]
    assert world.nearest_enemy((enemy.x + 0.5, 0.0, enemy.z), 1.0) == "enemy-2"
    assert world.nearest_enemy((1000.0, 0.0, 1000.0), 1.0) is None
