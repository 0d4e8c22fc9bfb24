from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateRoomRequest(CamelModel):
    host_name: str = Field(..., min_length=1, max_length=20)


class CreateRoomResponse(CamelModel):
    room_id: str
    host_token: str


class RoomDetailsResponse(CamelModel):
    room_id: str
    host_name: str
    participant_count: int
    has_video: bool
    created_at: int


class VideoUploadResponse(CamelModel):
    video_id: str
    filename: str
    size: int


class HealthResponse(CamelModel):
    status: str
    rooms: int
