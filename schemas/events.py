"""
Wire models for the room WebSocket.

Inbound frames are validated into the command models below; outbound events
are built from the event models and sent as camelCase JSON.
"""

from typing import List, Literal, Optional

from pydantic import Field

from schemas.rooms import CamelModel


class JoinCommand(CamelModel):
    nickname: str = ""
    host_token: Optional[str] = None


class ControlCommand(CamelModel):
    time: float = Field(..., ge=0, allow_inf_nan=False)


class ChatCommand(CamelModel):
    message: str


class ReactionCommand(CamelModel):
    emoji: str


class ParticipantOut(CamelModel):
    id: str
    nickname: str
    is_host: bool
    joined_at: int


class MessageOut(CamelModel):
    id: str
    sender_id: str
    sender_name: str
    message: str
    timestamp: int


class ReactionOut(CamelModel):
    id: str
    sender_id: str
    sender_name: str
    emoji: str
    timestamp: int


class VideoStateOut(CamelModel):
    is_playing: bool
    current_time: float
    last_updated: int


class RoomJoinedEvent(CamelModel):
    type: Literal["room-joined"] = "room-joined"
    room_id: str
    participant_id: str
    is_host: bool
    host_name: str
    video_id: Optional[str] = None
    video_state: VideoStateOut
    participants: List[ParticipantOut]
    chat: List[MessageOut]


class ParticipantJoinedEvent(CamelModel):
    type: Literal["participant-joined"] = "participant-joined"
    participant: ParticipantOut
    participants: List[ParticipantOut]


class ParticipantLeftEvent(CamelModel):
    type: Literal["participant-left"] = "participant-left"
    participant_id: str
    nickname: str
    was_host: bool
    participants: List[ParticipantOut]


class SyncEvent(CamelModel):
    type: Literal["sync"] = "sync"
    action: Literal["play", "pause", "seek"]
    time: float
    server_timestamp: int


class NewMessageEvent(MessageOut):
    type: Literal["new-message"] = "new-message"


class NewReactionEvent(ReactionOut):
    type: Literal["new-reaction"] = "new-reaction"


class VideoUploadedEvent(CamelModel):
    type: Literal["video-uploaded"] = "video-uploaded"
    video_id: str
    filename: str
    size: int


class ErrorEvent(CamelModel):
    type: Literal["error"] = "error"
    message: str
