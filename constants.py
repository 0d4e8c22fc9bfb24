import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(os.path.dirname(os.path.abspath(__file__)), "uploads"))
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", 10 * 1024 * 1024 * 1024))  # 10GB

ROOM_MAX_AGE_SECONDS = int(os.getenv("ROOM_MAX_AGE_SECONDS", 24 * 60 * 60))
REAPER_INTERVAL_SECONDS = int(os.getenv("REAPER_INTERVAL_SECONDS", 60 * 60))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

ROOM_CODE_LENGTH = 8
ROOM_CODE_ATTEMPTS = 16

CHAT_CAPACITY = 100
REACTION_CAPACITY = 50
JOIN_CHAT_SNAPSHOT = 50

MAX_NICKNAME_LENGTH = 20
MAX_MESSAGE_LENGTH = 500
MAX_EMOJI_LENGTH = 16

# receivers only hard-seek when they drift further than this (seconds)
SYNC_TOLERANCE_SECONDS = 0.5

STREAM_CHUNK_SIZE = 1024 * 1024
UPLOAD_CHUNK_SIZE = 1024 * 1024

# events queued for one socket before it is considered stalled and dropped
OUTBOX_SIZE = 256

ALLOWED_VIDEO_TYPES = {
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/ogg": ".ogv",
    "video/quicktime": ".mov",
    "video/x-msvideo": ".avi",
    "video/x-matroska": ".mkv",
}
