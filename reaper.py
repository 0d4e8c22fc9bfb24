import asyncio
import time
from typing import Optional

from backend import RoomRegistry
from logging_config import get_logger
from room import Clock, Room
from video_store import VideoStore

logger = get_logger(__name__)


class LifecycleReaper:
    """Deletes rooms and their video blobs.

    Rooms normally go away the moment their last participant leaves
    (``destroy_room`` from the disconnect path). The periodic ``sweep`` is the
    backstop for empty rooms whose departure was never seen, e.g. a room that
    was created but nobody ever joined.
    """

    def __init__(self, registry: RoomRegistry, store: VideoStore, max_age: float, interval: float,
                 clock: Clock = time.time):
        self.registry = registry
        self.store = store
        self.max_age = max_age
        self.interval = interval
        self.clock = clock
        self._task: Optional[asyncio.Task] = None

    async def destroy_room(self, room: Room):
        """Delete the room's blob, then the room. The caller must hold ``room.lock``."""
        if room.video_id:
            await self.store.delete(room.video_id)
            room.video_id = None
        self.registry.delete(room.id)

    async def sweep(self, now: Optional[float] = None) -> int:
        now = self.clock() if now is None else now
        removed = 0
        for room in self.registry.rooms():
            if now - room.created_at <= self.max_age:
                continue
            async with room.lock:
                if not room.is_empty or self.registry.find(room.id) is not room:
                    continue
                await self.destroy_room(room)
                removed += 1
                logger.info(f"Room {room.id} cleaned up (expired)")
        logger.debug(f"Sweep removed {removed} rooms, {len(self.registry)} remain")
        return removed

    async def run(self):
        logger.info(f"Starting room reaper: every {self.interval}s, max age {self.max_age}s")
        while True:
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Error in room reaper sweep: {e}", exc_info=True)
            await asyncio.sleep(self.interval)

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
            logger.info("Room reaper stopped")
