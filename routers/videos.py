from fastapi import APIRouter, Depends, HTTPException, Request, status

from dependencies import get_store
from logging_config import get_logger
from streaming import range_response
from video_store import VideoStore

logger = get_logger(__name__)

videos_router = APIRouter(prefix="/video", tags=["video"])


@videos_router.get("/{video_id}")
async def stream_video(video_id: str, request: Request, store: VideoStore = Depends(get_store)):
    asset = await store.get(video_id)
    if asset is None:
        logger.debug(f"Video {video_id} not found")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Video not found")
    return range_response(asset, request.headers.get("range"))
