from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status

from backend import RoomRegistry
from dependencies import get_hub, get_registry, get_store
from errors import SyncWatchError, Unauthorized
from logging_config import get_logger
from room import to_millis
from schemas.rooms import CreateRoomRequest, CreateRoomResponse, RoomDetailsResponse, VideoUploadResponse
from sync import SyncHub
from video_store import VideoStore

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


def client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@rooms_router.post("", response_model=CreateRoomResponse, status_code=status.HTTP_201_CREATED)
async def create_room(body: CreateRoomRequest, request: Request, registry: RoomRegistry = Depends(get_registry)):
    host_name = body.host_name.strip()
    if not host_name:
        raise HTTPException(status_code=422, detail="Host name is required")
    logger.info(f"Room creation request from {client_host(request)}, host_name: {host_name}")
    try:
        room = registry.create(host_name)
    except SyncWatchError as e:
        raise e.to_http()
    return CreateRoomResponse(room_id=room.id, host_token=room.host_token)


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str, registry: RoomRegistry = Depends(get_registry)):
    room = registry.find(room_id)
    if room is None:
        logger.warning(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")

    return RoomDetailsResponse(
        room_id=room.id,
        host_name=room.host_name,
        participant_count=len(room.participants),
        has_video=room.video_id is not None,
        created_at=to_millis(room.created_at),
    )


@rooms_router.post("/{room_id}/video", response_model=VideoUploadResponse)
async def upload_video(
    room_id: str,
    request: Request,
    video: Optional[UploadFile] = File(None),
    host_token: Optional[str] = Form(None, alias="hostToken"),
    registry: RoomRegistry = Depends(get_registry),
    store: VideoStore = Depends(get_store),
    hub: SyncHub = Depends(get_hub),
):
    logger.info(f"Video upload request for room {room_id} from {client_host(request)}")
    try:
        room = registry.get(room_id)
        if not room.check_host_token(host_token):
            logger.warning(f"Upload rejected: {client_host(request)} is not the host of room {room.id}")
            raise Unauthorized()

        asset = await store.store(video)
        await hub.replace_video(room.id, asset)
    except SyncWatchError as e:
        logger.warning(f"Video upload for room {room_id} failed: {e.detail}")
        raise e.to_http()
    finally:
        if video is not None:
            await video.close()

    return VideoUploadResponse(video_id=asset.id, filename=asset.filename, size=asset.size)
