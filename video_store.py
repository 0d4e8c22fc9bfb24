"""
Disk-backed store of uploaded videos.

Blobs live under the upload directory as ``<video_id><ext>``; metadata is kept
in memory only, so anything left on disk by a previous process is garbage and
is purged at startup.
"""

import os
import re
import uuid
from dataclasses import dataclass
from typing import Dict, Optional

import aiofiles
import aiofiles.os
from fastapi import UploadFile

from constants import ALLOWED_VIDEO_TYPES, UPLOAD_CHUNK_SIZE
from errors import AssetTooLarge, InvalidAsset, StorageFailure
from logging_config import get_logger

logger = get_logger(__name__)

BLOB_NAME = re.compile(r"^[0-9a-f]{32}\.[a-z0-9]+$")


@dataclass(frozen=True)
class VideoAsset:
    id: str
    path: str
    mime_type: str
    filename: str
    size: int


class VideoStore:
    def __init__(self, upload_dir: str, max_bytes: int):
        self.upload_dir = upload_dir
        self.max_bytes = max_bytes
        self._assets: Dict[str, VideoAsset] = {}
        os.makedirs(self.upload_dir, exist_ok=True)
        logger.info(f"Initializing VideoStore in {self.upload_dir} (max {max_bytes} bytes)")

    def __len__(self):
        return len(self._assets)

    def __contains__(self, video_id: str):
        return video_id in self._assets

    def validate(self, upload: UploadFile):
        if upload is None or not upload.filename:
            raise InvalidAsset("No video file provided")
        if upload.content_type not in ALLOWED_VIDEO_TYPES:
            raise InvalidAsset("Invalid file type. Only video files are allowed (MP4, WebM, OGG, MOV, AVI, MKV).")
        if upload.size is not None and upload.size > self.max_bytes:
            raise AssetTooLarge()

    async def store(self, upload: UploadFile) -> VideoAsset:
        """Stream an upload to a new blob and register it.

        A failure at any point removes whatever part of the blob was written.
        """
        self.validate(upload)
        video_id = uuid.uuid4().hex
        ext = os.path.splitext(upload.filename)[1].lower() or ALLOWED_VIDEO_TYPES[upload.content_type]
        path = os.path.join(self.upload_dir, f"{video_id}{ext}")

        size = 0
        try:
            async with aiofiles.open(path, "wb") as f:
                while True:
                    chunk = await upload.read(UPLOAD_CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self.max_bytes:
                        raise AssetTooLarge()
                    await f.write(chunk)
        except InvalidAsset:
            await self._remove_file(path)
            raise
        except OSError as e:
            logger.error(f"Error writing video {video_id} to {path}: {e}", exc_info=True)
            await self._remove_file(path)
            raise StorageFailure()
        except BaseException:
            # client went away mid-upload
            await self._remove_file(path)
            raise

        if size == 0:
            await self._remove_file(path)
            raise InvalidAsset("Uploaded video is empty")

        asset = VideoAsset(id=video_id, path=path, mime_type=upload.content_type, filename=upload.filename, size=size)
        self._assets[video_id] = asset
        logger.info(f"Video stored: {asset.filename} as {video_id} ({size / 1024 / 1024:.2f} MB)")
        return asset

    async def get(self, video_id: str) -> Optional[VideoAsset]:
        asset = self._assets.get(video_id)
        if asset is None:
            return None
        if not await aiofiles.os.path.exists(asset.path):
            logger.warning(f"Blob for video {video_id} is missing from {asset.path}")
            return None
        return asset

    async def delete(self, video_id: Optional[str]) -> bool:
        if not video_id:
            return False
        asset = self._assets.pop(video_id, None)
        if asset is None:
            return False
        await self._remove_file(asset.path)
        logger.info(f"Deleted video file: {asset.path}")
        return True

    async def _remove_file(self, path: str):
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Could not remove {path}: {e}", exc_info=True)

    async def purge_orphans(self) -> int:
        """Remove blobs on disk that no registered asset points at."""
        known = {os.path.basename(a.path) for a in self._assets.values()}
        removed = 0
        for name in await aiofiles.os.listdir(self.upload_dir):
            if BLOB_NAME.match(name) and name not in known:
                await self._remove_file(os.path.join(self.upload_dir, name))
                removed += 1
        if removed:
            logger.info(f"Purged {removed} orphaned video files from {self.upload_dir}")
        return removed

    async def close(self):
        for video_id in list(self._assets):
            await self.delete(video_id)
