from fastapi import HTTPException, status


class SyncWatchError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "Unexpected server error"

    def __init__(self, detail: str = None):
        if detail:
            self.detail = detail
        super().__init__(self.detail)

    def to_http(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.detail)


class RoomNotFound(SyncWatchError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Room not found"


class Unauthorized(SyncWatchError):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "Only the host can upload videos"


class InvalidAsset(SyncWatchError):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Invalid video file"


class AssetTooLarge(InvalidAsset):
    # plain codes: the Starlette names for 413, 416 and 422 differ between releases
    status_code = 413
    detail = "Video file too large"


class StorageFailure(SyncWatchError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "Failed to store video"


class MalformedRange(SyncWatchError):
    status_code = 416
    detail = "Requested Range Not Satisfiable"
