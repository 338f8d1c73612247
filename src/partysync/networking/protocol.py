"""Network protocol definitions.

Every message exchanged between host and joiners is one of the frozen
dataclasses below, tagged on the wire by its ``type`` string. The set is
closed: ``parse_message`` rejects anything else, and the routers check at
construction that every tag they may receive has a handler.

Field names are snake_case here and camelCase on the wire; the mapping is
carried in each field's metadata.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from partysync.errors import ProtocolError


class MessageType(str, Enum):
    """Wire tags."""
    WELCOME = "welcome"                        # Host -> Joiner: admitted
    START_GAME = "startGame"                   # Host -> Joiner: match running
    PLAYER_JOINED = "playerJoined"             # Host -> Joiners: new slot
    PLAYER_LEFT = "playerLeft"                 # Host -> Joiners: slot gone
    PLAYER_COLORS = "playerColors"             # Host -> Joiner: full color table
    PLAYER_INPUT = "playerInput"               # Joiner -> Host: movement input
    PLAYER_POSITION = "playerPosition"         # Joiner -> Host: re-seed position
    SKILL_CAST = "skillCast"                   # both directions
    PLAYER_DAMAGE = "playerDamage"             # both directions
    ENEMY_KILLED = "enemyKilled"               # Joiner -> Host
    SHARE_EXPERIENCE = "shareExperience"       # Host -> Joiner
    PARTY_BONUS_UPDATE = "partyBonusUpdate"    # Host -> Joiners
    GAME_STATE = "gameState"                   # Host -> Joiners, every tick
    ENEMIES_REMOVED = "enemiesRemoved"         # Host -> Joiners, immediate
    REQUEST_START_GAME = "requestStartGame"    # Joiner -> Host, carries persistentId
    STATUS_REQUEST = "statusRequest"           # Prober -> Host (peek only)
    STATUS = "status"                          # Host -> Prober
    INVITE_REQUEST = "inviteRequest"           # Prober -> Host (peek only)
    INVITE_FROM_HOST = "inviteFromHost"        # Host -> idle device listener
    KICKED = "kicked"                          # Host -> Joiner, then close
    HOST_LEFT = "hostLeft"                     # Host -> Joiners, then close


def wire(name: str, default: Any = dataclasses.MISSING, **kwargs: Any) -> Any:
    """Dataclass field with its camelCase wire name."""
    return field(default=default, metadata={"wire": name}, **kwargs)


@dataclass(frozen=True, slots=True)
class Message:
    TYPE: ClassVar[MessageType]

    def to_wire(self) -> dict:
        out: dict[str, Any] = {"type": self.TYPE.value}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            out[f.metadata.get("wire", f.name)] = _to_plain(value)
        return out

    @classmethod
    def from_wire(cls, data: dict) -> Message:
        kwargs: dict[str, Any] = {}
        for f in dataclasses.fields(cls):
            key = f.metadata.get("wire", f.name)
            if key in data:
                kwargs[f.name] = data[key]
            elif f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
                raise ProtocolError(f"{cls.TYPE.value}: missing field {key!r}")
        try:
            return cls(**kwargs)
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"{cls.TYPE.value}: {e}") from e


def _to_plain(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_to_plain(v) for v in value]
    if isinstance(value, list):
        return [_to_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    return value


def _vector(value: Any, name: str) -> tuple[float, float, float]:
    """Accept [x, y, z] or {x, y, z}; reject anything non-numeric."""
    if isinstance(value, dict):
        value = [value.get("x"), value.get("y", 0.0), value.get("z")]
    if not isinstance(value, (list, tuple)) or len(value) != 3:
        raise ValueError(f"{name} must be a 3-vector")
    out = []
    for v in value:
        if isinstance(v, bool) or not isinstance(v, (int, float)) or v != v:
            raise ValueError(f"{name} has a non-numeric component")
        out.append(float(v))
    return out[0], out[1], out[2]


def _angle(value: Any, name: str) -> float:
    if isinstance(value, dict):
        value = value.get("y")
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value != value:
        raise ValueError(f"{name} must be a number")
    return float(value)


# --- Host -> Joiner ---

@dataclass(frozen=True, slots=True)
class Welcome(Message):
    TYPE: ClassVar[MessageType] = MessageType.WELCOME
    message: str = ""


@dataclass(frozen=True, slots=True)
class StartGame(Message):
    TYPE: ClassVar[MessageType] = MessageType.START_GAME


@dataclass(frozen=True, slots=True)
class PlayerJoined(Message):
    TYPE: ClassVar[MessageType] = MessageType.PLAYER_JOINED
    player_id: str = wire("playerId")
    player_color: str | None = wire("playerColor", None)


@dataclass(frozen=True, slots=True)
class PlayerLeft(Message):
    TYPE: ClassVar[MessageType] = MessageType.PLAYER_LEFT
    player_id: str = wire("playerId")


@dataclass(frozen=True, slots=True)
class PlayerColors(Message):
    TYPE: ClassVar[MessageType] = MessageType.PLAYER_COLORS
    colors: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.colors, dict):
            raise ValueError("colors must be an object")


@dataclass(frozen=True, slots=True)
class ShareExperience(Message):
    TYPE: ClassVar[MessageType] = MessageType.SHARE_EXPERIENCE
    amount: int = 0


@dataclass(frozen=True, slots=True)
class PartyBonusUpdate(Message):
    TYPE: ClassVar[MessageType] = MessageType.PARTY_BONUS_UPDATE
    player_count: int = wire("playerCount", 1)


@dataclass(frozen=True, slots=True)
class GameState(Message):
    TYPE: ClassVar[MessageType] = MessageType.GAME_STATE
    players: dict = field(default_factory=dict)
    entities: dict = field(default_factory=dict)
    removed_ids: list | None = wire("removedIds", None)
    full_sync: bool = wire("fullSync", False)

    def __post_init__(self) -> None:
        if not isinstance(self.players, dict) or not isinstance(self.entities, dict):
            raise ValueError("players and entities must be objects")

    def to_wire(self) -> dict:
        out = {"type": self.TYPE.value, "players": self.players, "entities": self.entities}
        if self.removed_ids:
            out["removedIds"] = list(self.removed_ids)
        if self.full_sync:
            out["fullSync"] = True
        return out


@dataclass(frozen=True, slots=True)
class EnemiesRemoved(Message):
    TYPE: ClassVar[MessageType] = MessageType.ENEMIES_REMOVED
    ids: list = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class Status(Message):
    TYPE: ClassVar[MessageType] = MessageType.STATUS
    status: str = "hosting"


@dataclass(frozen=True, slots=True)
class InviteFromHost(Message):
    TYPE: ClassVar[MessageType] = MessageType.INVITE_FROM_HOST
    host_room_id: str = wire("hostRoomId")


@dataclass(frozen=True, slots=True)
class Kicked(Message):
    TYPE: ClassVar[MessageType] = MessageType.KICKED
    message: str = "You have been removed from the game by the host"


@dataclass(frozen=True, slots=True)
class HostLeft(Message):
    TYPE: ClassVar[MessageType] = MessageType.HOST_LEFT


# --- Joiner -> Host ---

@dataclass(frozen=True, slots=True)
class PlayerInput(Message):
    TYPE: ClassVar[MessageType] = MessageType.PLAYER_INPUT
    move_x: float = wire("moveX", 0.0)
    move_z: float = wire("moveZ", 0.0)
    jump_pressed: bool = wire("jumpPressed", False)

    def __post_init__(self) -> None:
        # Non-numeric axes read as "no input" rather than failing the message.
        for name in ("move_x", "move_z"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value != value:
                object.__setattr__(self, name, 0.0)
        object.__setattr__(self, "jump_pressed", bool(self.jump_pressed))


@dataclass(frozen=True, slots=True)
class PlayerPosition(Message):
    TYPE: ClassVar[MessageType] = MessageType.PLAYER_POSITION
    position: tuple = wire("position")
    rotation: float = wire("rotation")
    animation: str = "idle"
    model_id: str | None = wire("modelId", None)

    def __post_init__(self) -> None:
        object.__setattr__(self, "position", _vector(self.position, "position"))
        object.__setattr__(self, "rotation", _angle(self.rotation, "rotation"))


@dataclass(frozen=True, slots=True)
class EnemyKilled(Message):
    TYPE: ClassVar[MessageType] = MessageType.ENEMY_KILLED
    enemy_id: str = wire("enemyId")


@dataclass(frozen=True, slots=True)
class RequestStartGame(Message):
    TYPE: ClassVar[MessageType] = MessageType.REQUEST_START_GAME
    persistent_id: str | None = wire("persistentId", None)


@dataclass(frozen=True, slots=True)
class StatusRequest(Message):
    TYPE: ClassVar[MessageType] = MessageType.STATUS_REQUEST


@dataclass(frozen=True, slots=True)
class InviteRequest(Message):
    TYPE: ClassVar[MessageType] = MessageType.INVITE_REQUEST


# --- Both directions ---

@dataclass(frozen=True, slots=True)
class SkillCast(Message):
    TYPE: ClassVar[MessageType] = MessageType.SKILL_CAST
    skill_name: str = wire("skillName")
    player_id: str | None = wire("playerId", None)
    variant: str | None = None
    target_enemy_id: str | None = wire("targetEnemyId", None)
    position: tuple | None = None
    rotation: float | None = None

    def __post_init__(self) -> None:
        if not self.skill_name:
            raise ValueError("skillName is required")
        if self.position is not None:
            object.__setattr__(self, "position", _vector(self.position, "position"))
        if self.rotation is not None:
            object.__setattr__(self, "rotation", _angle(self.rotation, "rotation"))

    def stripped(self, player_id: str) -> SkillCast:
        """Copy for re-broadcast: caster attached, transform removed."""
        return dataclasses.replace(self, player_id=player_id, position=None, rotation=None)


@dataclass(frozen=True, slots=True)
class PlayerDamage(Message):
    TYPE: ClassVar[MessageType] = MessageType.PLAYER_DAMAGE
    amount: float = 0
    enemy_id: str | None = wire("enemyId", None)
    player_id: str | None = wire("playerId", None)


MESSAGE_CLASSES: dict[MessageType, type[Message]] = {
    cls.TYPE: cls for cls in (
        Welcome, StartGame, PlayerJoined, PlayerLeft, PlayerColors, PlayerInput,
        PlayerPosition, SkillCast, PlayerDamage, EnemyKilled, ShareExperience,
        PartyBonusUpdate, GameState, EnemiesRemoved, RequestStartGame,
        StatusRequest, Status, InviteRequest, InviteFromHost, Kicked, HostLeft,
    )
}

# Which side may receive which tag. Anything outside a side's set is an
# authority violation when it arrives there.
HOST_BOUND: frozenset[MessageType] = frozenset({
    MessageType.PLAYER_INPUT,
    MessageType.PLAYER_POSITION,
    MessageType.SKILL_CAST,
    MessageType.PLAYER_DAMAGE,
    MessageType.ENEMY_KILLED,
    MessageType.REQUEST_START_GAME,
    MessageType.STATUS_REQUEST,
    MessageType.INVITE_REQUEST,
})

JOINER_BOUND: frozenset[MessageType] = frozenset({
    MessageType.WELCOME,
    MessageType.GAME_STATE,
    MessageType.START_GAME,
    MessageType.PLAYER_JOINED,
    MessageType.PLAYER_LEFT,
    MessageType.PLAYER_COLORS,
    MessageType.SKILL_CAST,
    MessageType.PLAYER_DAMAGE,
    MessageType.SHARE_EXPERIENCE,
    MessageType.PARTY_BONUS_UPDATE,
    MessageType.ENEMIES_REMOVED,
    MessageType.HOST_LEFT,
    MessageType.KICKED,
})

# Replies consumed by one-shot probe and invite-listener connections.
PROBE_BOUND: frozenset[MessageType] = frozenset({
    MessageType.STATUS,
    MessageType.INVITE_FROM_HOST,
})


def parse_message(data: dict) -> Message:
    """Turn a decoded wire dict into its Message.

    Raises ProtocolError for an unknown tag or a malformed payload.
    """
    tag = data.get("type")
    try:
        msg_type = MessageType(tag)
    except ValueError:
        raise ProtocolError(f"Unknown message type {tag!r}") from None
    return MESSAGE_CLASSES[msg_type].from_wire(data)
