"""
Byte-range responses over stored video blobs.

Every response opens its own read-only handle on the blob, so any number of
range requests (scrubbing, prefetch) can run against the same file at once.
"""

import re
from typing import AsyncIterator, Optional, Tuple

import aiofiles
from fastapi import Response, status
from fastapi.responses import StreamingResponse

from constants import STREAM_CHUNK_SIZE
from errors import MalformedRange
from logging_config import get_logger
from video_store import VideoAsset

logger = get_logger(__name__)

RANGE_PATTERN = re.compile(r"^bytes=(\d*)-(\d*)$")


def parse_range(range_header: str, size: int) -> Tuple[int, int]:
    """Resolve a ``Range`` header against a blob of ``size`` bytes.

    Returns the inclusive (start, end) span. Raises MalformedRange for headers
    that cannot be parsed or cannot be satisfied.
    """
    m = RANGE_PATTERN.match(range_header.strip().replace(" ", ""))
    if not m:
        raise MalformedRange("Invalid Range header")

    start_str, end_str = m.groups()
    if start_str == "":
        # suffix range: bytes=-N
        if end_str == "":
            raise MalformedRange("Invalid Range header")
        length = int(end_str)
        if length <= 0 or size == 0:
            raise MalformedRange()
        return max(size - length, 0), size - 1

    start = int(start_str)
    end = int(end_str) if end_str else size - 1
    if start >= size or start > end:
        raise MalformedRange()
    return start, min(end, size - 1)


async def iter_file(path: str, start: int, end: int, chunk_size: int = STREAM_CHUNK_SIZE) -> AsyncIterator[bytes]:
    async with aiofiles.open(path, "rb") as f:
        await f.seek(start)
        remaining = end - start + 1
        while remaining > 0:
            chunk = await f.read(min(chunk_size, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk


def range_response(asset: VideoAsset, range_header: Optional[str]) -> Response:
    size = asset.size

    # If no Range header -> return whole file (200)
    if not range_header:
        headers = {
            "Content-Length": str(size),
            "Accept-Ranges": "bytes",
        }
        return StreamingResponse(iter_file(asset.path, 0, size - 1), headers=headers, media_type=asset.mime_type)

    try:
        start, end = parse_range(range_header, size)
    except MalformedRange as e:
        logger.warning(f"Unsatisfiable range {range_header!r} for video {asset.id} of {size} bytes")
        return Response(
            content=e.detail,
            status_code=416,
            headers={"Content-Range": f"bytes */{size}", "Accept-Ranges": "bytes"},
        )

    headers = {
        "Content-Range": f"bytes {start}-{end}/{size}",
        "Accept-Ranges": "bytes",
        "Content-Length": str(end - start + 1),
    }
    logger.debug(f"Serving bytes {start}-{end}/{size} of video {asset.id}")
    return StreamingResponse(
        iter_file(asset.path, start, end),
        status_code=status.HTTP_206_PARTIAL_CONTENT,
        headers=headers,
        media_type=asset.mime_type,
    )
