"""Tests for the msgpack/JSON payload codec."""

import pytest

from partysync.errors import ProtocolError
from partysync.networking.codec import MessageCodec


class TestSerialize:
    def test_packs_to_bytes(self):
        codec = MessageCodec()
        data = codec.serialize({"type": "welcome", "message": "hi"})
        assert isinstance(data, bytes)
        assert codec.deserialize(data) == {"type": "welcome", "message": "hi"}

    def test_unpackable_returns_none(self):
        codec = MessageCodec()
        assert codec.serialize({"type": "gameState", "bad": object()}) is None

    def test_binary_disabled(self):
        codec = MessageCodec(use_binary=False)
        assert codec.serialize({"type": "welcome"}) is None

    def test_encode_falls_back_to_dict(self):
        codec = MessageCodec()
        message = {"type": "welcome", "bad": {1, 2}}
        assert codec.encode(message) is message

    def test_nested_game_state_survives(self):
        codec = MessageCodec()
        message = {
            "type": "gameState",
            "players": {"p1": {"position": [1.5, 0.0, -2.25], "rotation": 0.5}},
            "entities": {"enemy-1": {"position": [3.0, 0.0, 4.0], "hp": 30}},
            "removedIds": ["enemy-0"],
            "fullSync": True,
        }
        assert codec.deserialize(codec.serialize(message)) == message


class TestDeserialize:
    def test_garbage_raises(self):
        with pytest.raises(ProtocolError):
            MessageCodec().deserialize(b"\xc1\xc1\xc1")

    def test_trailing_bytes_raise(self):
        codec = MessageCodec()
        data = codec.serialize({"type": "welcome"}) + b"\x01"
        with pytest.raises(ProtocolError):
            codec.deserialize(data)

    def test_untagged_rejected(self):
        codec = MessageCodec()
        with pytest.raises(ProtocolError, match="no type"):
            codec.deserialize(codec.serialize({"message": "hi"}))

    def test_non_object_rejected(self):
        codec = MessageCodec()
        with pytest.raises(ProtocolError, match="not an object"):
            codec.deserialize(codec.serialize([1, 2, 3]))


class TestDecode:
    def test_accepts_dict(self):
        assert MessageCodec().decode({"type": "startGame"}) == {"type": "startGame"}

    def test_accepts_json_text(self):
        assert MessageCodec().decode('{"type": "hostLeft"}') == {"type": "hostLeft"}

    def test_bad_json_text(self):
        with pytest.raises(ProtocolError):
            MessageCodec().decode("{not json")

    def test_unsupported_type(self):
        with pytest.raises(ProtocolError, match="Unsupported"):
            MessageCodec().decode(42)
