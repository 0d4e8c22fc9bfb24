from fastapi import Request

from backend import RoomRegistry
from sync import SyncHub
from video_store import VideoStore


def get_registry(request: Request) -> RoomRegistry:
    return request.app.state.registry


def get_store(request: Request) -> VideoStore:
    return request.app.state.store


def get_hub(request: Request) -> SyncHub:
    return request.app.state.hub
