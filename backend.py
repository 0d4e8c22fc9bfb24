import time
import uuid
from typing import Dict, List, Optional

from constants import ROOM_CODE_ATTEMPTS, ROOM_CODE_LENGTH
from errors import RoomNotFound, StorageFailure
from logging_config import get_logger
from room import Clock, Room

logger = get_logger(__name__)


def generate_room_code(length: int = ROOM_CODE_LENGTH) -> str:
    return uuid.uuid4().hex[:length].upper()


def normalize_room_id(room_id: str) -> str:
    return (room_id or "").strip().upper()


class RoomRegistry:
    """Process-wide keyed store of rooms.

    Built once by the application lifespan and handed to everything that needs
    it; nothing here is module state. Room codes are case-insensitive, keys are
    stored upper-case.
    """

    def __init__(self, clock: Clock = time.time, code_factory=generate_room_code):
        self.clock = clock
        self.code_factory = code_factory
        self._rooms: Dict[str, Room] = {}
        logger.info("Initializing RoomRegistry")

    def __len__(self):
        return len(self._rooms)

    def __contains__(self, room_id: str):
        return normalize_room_id(room_id) in self._rooms

    def create(self, host_name: str) -> Room:
        # no await between the membership check and the insert, so this is atomic on the event loop
        for attempt in range(ROOM_CODE_ATTEMPTS):
            room_id = normalize_room_id(self.code_factory())
            if room_id and room_id not in self._rooms:
                break
            logger.warning(f"Room code collision on {room_id!r} (attempt {attempt + 1})")
        else:
            logger.error(f"Could not allocate a room code after {ROOM_CODE_ATTEMPTS} attempts")
            raise StorageFailure("Could not allocate a room code")

        issued = {r.host_token for r in self._rooms.values()}
        room = Room(room_id, host_name, clock=self.clock)
        while room.host_token in issued:
            room.host_token = str(uuid.uuid4())

        self._rooms[room_id] = room
        logger.info(f"Room {room_id} created for host {host_name!r}")
        return room

    def find(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(normalize_room_id(room_id))

    def get(self, room_id: str) -> Room:
        room = self.find(room_id)
        if room is None:
            logger.debug(f"Room {room_id} not found")
            raise RoomNotFound()
        return room

    def delete(self, room_id: str) -> bool:
        """Drop the room. Deleting the room's video blob is the caller's job."""
        room = self._rooms.pop(normalize_room_id(room_id), None)
        if room is None:
            logger.debug(f"Room {room_id} already deleted")
            return False
        logger.info(f"Room {room.id} deleted")
        return True

    def rooms(self) -> List[Room]:
        return list(self._rooms.values())

    def close(self):
        logger.info(f"Closing RoomRegistry with {len(self._rooms)} rooms")
        self._rooms.clear()
