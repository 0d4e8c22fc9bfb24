import asyncio
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware

from backend import RoomRegistry
from constants import (
    CORS_ORIGINS,
    LOG_FILE,
    LOG_LEVEL,
    MAX_UPLOAD_BYTES,
    REAPER_INTERVAL_SECONDS,
    ROOM_MAX_AGE_SECONDS,
    UPLOAD_DIR,
)
from logging_config import get_logger, setup_logging
from reaper import LifecycleReaper
from room import Clock
from routers.rooms import rooms_router
from routers.videos import videos_router
from schemas.rooms import HealthResponse
from sync import Connection, SyncHub
from video_store import VideoStore

setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def create_app(
    upload_dir: str = UPLOAD_DIR,
    max_upload_bytes: int = MAX_UPLOAD_BYTES,
    room_max_age: float = ROOM_MAX_AGE_SECONDS,
    reaper_interval: float = REAPER_INTERVAL_SECONDS,
    clock: Clock = time.time,
    start_reaper: bool = True,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        registry = RoomRegistry(clock=clock)
        store = VideoStore(upload_dir, max_upload_bytes)
        await store.purge_orphans()
        reaper = LifecycleReaper(registry, store, max_age=room_max_age, interval=reaper_interval, clock=clock)
        hub = SyncHub(registry, store, reaper)

        app.state.registry = registry
        app.state.store = store
        app.state.reaper = reaper
        app.state.hub = hub
        if start_reaper:
            reaper.start()
        logger.info("SyncWatch started")
        try:
            yield
        finally:
            await reaper.stop()
            await hub.close()
            registry.close()
            await store.close()
            logger.info("SyncWatch stopped")

    app = FastAPI(title="SyncWatch", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Range", "Accept-Ranges", "Content-Length"],
    )

    app.include_router(rooms_router)
    app.include_router(videos_router)

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(status="ok", rooms=len(app.state.registry))

    @app.websocket("/rooms/{room_id}/ws")
    async def websocket_endpoint(room_id: str, websocket: WebSocket):
        """Real-time channel for one room.

        The first frame must be ``{"type": "join", "nickname": ..., "hostToken": ...}``;
        see ``sync.SyncHub.handlers`` for the other commands.
        """
        hub: SyncHub = websocket.app.state.hub
        if hub.registry.find(room_id) is None:
            logger.info(f"WebSocket connection rejected: Room {room_id} not found")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Room not found")
            return

        await websocket.accept()
        connection = Connection(websocket, room_id)
        connection.start()
        logger.info(f"WebSocket connection {connection.id} accepted for room {connection.room_id}")

        message_count = 0
        try:
            while True:
                try:
                    data = await websocket.receive_text()
                except WebSocketDisconnect:
                    logger.info(f"WebSocket disconnected normally for connection {connection.id} in room {connection.room_id}")
                    break
                message_count += 1
                logger.debug(f"Received message #{message_count} from connection {connection.id} in room {connection.room_id}")
                await hub.handle(connection, data)
        except Exception as e:
            logger.error(f"WebSocket error for connection {connection.id} in room {connection.room_id}: {e}", exc_info=True)
        finally:
            # finish the cleanup even if this handler is being cancelled
            await asyncio.shield(hub.disconnect(connection))

    logger.info("FastAPI application initialized")
    return app


app = create_app()
