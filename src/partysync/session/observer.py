"""Hooks the session layer calls to tell the application what happened.

Subclass and override what you need; every hook is a no-op here. Hooks run
on the poll loop and must not block.
"""

from __future__ import annotations

from partysync.session.roles import SessionStatus


class SessionObserver:
    def on_status(self, status: SessionStatus) -> None:
        """Role or connection state changed."""

    def on_notification(self, text: str, level: str = "info") -> None:
        """Short user-facing message ("Player joined!", "The host has left")."""

    def on_player_joined(self, player_id: str, color: str | None) -> None:
        pass

    def on_player_left(self, player_id: str) -> None:
        pass

    def on_player_superseded(self, error: Exception) -> None:
        """Host: a device reconnected and its old connection was dropped.

        ``error`` is the SessionSuperseded describing both connection ids.
        """

    def on_invite_request(self, connection_id: str) -> None:
        """Host: a device asked to be invited."""

    def on_invite_from_host(self, host_room_id: str) -> None:
        """Idle device: a host pushed an invite to our persistent id."""

    def on_start_game(self) -> None:
        pass

    def on_experience(self, amount: int) -> None:
        pass

    def on_damage(self, player_id: str, amount: float, enemy_id: str | None) -> None:
        """Another player was hit (for effects only)."""

    def on_skill_cast(self, player_id: str, skill_name: str) -> None:
        pass

    def on_connection_slow(self) -> None:
        """Joiner: no game state from the host for a while."""
