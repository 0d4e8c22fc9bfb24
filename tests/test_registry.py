import re

import pytest

from backend import RoomRegistry, generate_room_code
from constants import ROOM_CODE_ATTEMPTS, ROOM_CODE_LENGTH
from errors import RoomNotFound, StorageFailure


def test_generated_codes_are_short_and_uppercase():
    code = generate_room_code()
    assert re.fullmatch(rf"[0-9A-F]{{{ROOM_CODE_LENGTH}}}", code)


def test_create_and_get(registry, clock):
    room = registry.create("Alice")
    assert room.host_name == "Alice"
    assert room.created_at == clock.now
    assert registry.get(room.id) is room
    assert len(registry) == 1


def test_lookup_is_case_insensitive(registry):
    room = registry.create("Alice")
    assert registry.get(room.id.lower()) is room
    assert f" {room.id.lower()} " in registry


def test_get_missing_room_raises(registry):
    with pytest.raises(RoomNotFound):
        registry.get("NOPE0000")
    assert registry.find("NOPE0000") is None


def test_rooms_get_distinct_ids_and_tokens(registry):
    rooms = [registry.create(f"host{i}") for i in range(50)]
    assert len({r.id for r in rooms}) == 50
    assert len({r.host_token for r in rooms}) == 50


def test_create_retries_on_code_collision(clock):
    codes = iter(["SAMECODE", "SAMECODE", "SAMECODE", "OTHER001"])
    registry = RoomRegistry(clock=clock, code_factory=lambda: next(codes))
    first = registry.create("Alice")
    second = registry.create("Bob")
    assert first.id == "SAMECODE"
    assert second.id == "OTHER001"


def test_create_gives_up_when_codes_are_exhausted(clock):
    registry = RoomRegistry(clock=clock, code_factory=lambda: "SAMECODE")
    registry.create("Alice")
    with pytest.raises(StorageFailure):
        registry.create("Bob")
    assert len(registry) == 1
    assert ROOM_CODE_ATTEMPTS > 1


def test_delete_reports_whether_room_existed(registry):
    room = registry.create("Alice")
    assert registry.delete(room.id.lower()) is True
    assert registry.delete(room.id) is False
    assert registry.find(room.id) is None


def test_close_drops_all_rooms(registry):
    registry.create("Alice")
    registry.create("Bob")
    registry.close()
    assert registry.rooms() == []
