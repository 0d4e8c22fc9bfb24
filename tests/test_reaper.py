import asyncio
import os

from constants import ROOM_MAX_AGE_SECONDS
from reaper import LifecycleReaper

DAY = 24 * 60 * 60


async def test_sweep_removes_old_empty_rooms_with_their_blob(registry, store, reaper, clock, make_upload):
    room = registry.create("Alice")
    asset = await store.store(make_upload())
    room.video_id = asset.id

    clock.advance(DAY + 1)
    assert await reaper.sweep() == 1
    assert registry.find(room.id) is None
    assert not os.path.exists(asset.path)
    assert len(store) == 0


async def test_sweep_keeps_young_or_occupied_rooms(registry, reaper, clock):
    old_busy = registry.create("Alice")
    old_busy.add_participant("c1", "Alice", old_busy.host_token)
    clock.advance(DAY - 10)
    young = registry.create("Bob")

    clock.advance(20)
    assert await reaper.sweep() == 0
    assert registry.find(old_busy.id) is old_busy
    assert registry.find(young.id) is young

    clock.advance(DAY)
    assert await reaper.sweep() == 1
    assert registry.find(young.id) is None
    assert registry.find(old_busy.id) is old_busy


async def test_sweep_uses_explicit_now(registry, reaper, clock):
    room = registry.create("Alice")
    assert await reaper.sweep(now=clock.now + DAY) == 0
    assert await reaper.sweep(now=clock.now + DAY + 0.5) == 1
    assert registry.find(room.id) is None


async def test_destroy_room_deletes_blob_before_room(registry, store, reaper, make_upload):
    room = registry.create("Alice")
    asset = await store.store(make_upload())
    room.video_id = asset.id
    seen = []

    real_delete = registry.delete

    def recording_delete(room_id):
        seen.append(os.path.exists(asset.path))
        return real_delete(room_id)

    registry.delete = recording_delete
    async with room.lock:
        await reaper.destroy_room(room)
    assert seen == [False]
    assert room.video_id is None


async def test_background_loop_sweeps_and_stops(registry, store, clock):
    reaper = LifecycleReaper(registry, store, max_age=ROOM_MAX_AGE_SECONDS, interval=0.01, clock=clock)
    room = registry.create("Alice")
    clock.advance(ROOM_MAX_AGE_SECONDS + 1)

    reaper.start()
    for _ in range(100):
        if registry.find(room.id) is None:
            break
        await asyncio.sleep(0.01)
    await reaper.stop()

    assert registry.find(room.id) is None


async def test_loop_survives_a_failing_sweep(registry, store, clock):
    reaper = LifecycleReaper(registry, store, max_age=ROOM_MAX_AGE_SECONDS, interval=0.01, clock=clock)
    calls = []

    async def flaky_sweep(now=None):
        calls.append(now)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return 0

    reaper.sweep = flaky_sweep
    reaper.start()
    for _ in range(100):
        if len(calls) >= 2:
            break
        await asyncio.sleep(0.01)
    await reaper.stop()
    assert len(calls) >= 2
