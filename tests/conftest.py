import asyncio
import io
import json

import pytest
from fastapi import UploadFile
from fastapi.testclient import TestClient
from starlette.datastructures import Headers

from app import create_app
from backend import RoomRegistry
from reaper import LifecycleReaper
from sync import Connection, SyncHub
from video_store import VideoStore

MAX_TEST_UPLOAD = 64 * 1024


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeWebSocket:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail
        # set to make sends hang, like a peer that stopped reading
        self.stalled = False
        self.close_code = None
        self.closed = asyncio.Event()

    async def send_text(self, data: str):
        if self.fail:
            raise RuntimeError("socket is gone")
        if self.stalled:
            await asyncio.Event().wait()
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000):
        self.close_code = code
        self.closed.set()

    def of_type(self, event_type: str):
        return [e for e in self.sent if e["type"] == event_type]

    def clear(self):
        self.sent.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def upload_dir(tmp_path):
    return str(tmp_path / "uploads")


@pytest.fixture
def registry(clock):
    return RoomRegistry(clock=clock)


@pytest.fixture
def store(upload_dir):
    return VideoStore(upload_dir, max_bytes=MAX_TEST_UPLOAD)


@pytest.fixture
def reaper(registry, store, clock):
    return LifecycleReaper(registry, store, max_age=24 * 60 * 60, interval=60 * 60, clock=clock)


@pytest.fixture
def hub(registry, store, reaper):
    return SyncHub(registry, store, reaper)


@pytest.fixture
def make_upload():
    def _make_upload(data: bytes = b"\x00\x01" * 500, filename: str = "movie.mp4", content_type: str = "video/mp4",
                     size=True):
        return UploadFile(
            file=io.BytesIO(data),
            filename=filename,
            size=len(data) if size else None,
            headers=Headers({"content-type": content_type}),
        )
    return _make_upload


@pytest.fixture
async def join(hub):
    """Open a fake connection on a room and send its join command."""
    opened = []

    async def _join(room, nickname: str = "viewer", host_token=None, websocket=None):
        connection = Connection(websocket or FakeWebSocket(), room.id)
        connection.start()
        opened.append(connection)
        await hub.handle(connection, json.dumps({"type": "join", "nickname": nickname, "hostToken": host_token}))
        await connection.flush()
        return connection

    yield _join

    for connection in opened:
        await connection.close()


async def send(hub, connection, payload: dict, *others):
    """Send a frame and wait until every listed connection has drained its outbox."""
    await hub.handle(connection, json.dumps(payload))
    for c in (connection,) + others:
        await c.flush()


@pytest.fixture
def client(upload_dir, clock):
    app = create_app(upload_dir=upload_dir, max_upload_bytes=MAX_TEST_UPLOAD, clock=clock, start_reaper=False)
    with TestClient(app) as client:
        yield client
