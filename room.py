"""
Room aggregate: participants, the playback state machine and the bounded
chat and reaction logs of one watch session.

All mutation happens while the caller holds ``room.lock``; the methods here
are plain synchronous state changes so that a mutation and the broadcast it
triggers can be grouped under a single lock acquisition.
"""

import asyncio
import secrets
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional, Tuple

from constants import (
    CHAT_CAPACITY,
    MAX_EMOJI_LENGTH,
    MAX_MESSAGE_LENGTH,
    MAX_NICKNAME_LENGTH,
    REACTION_CAPACITY,
)
from logging_config import get_logger

logger = get_logger(__name__)

Clock = Callable[[], float]


def to_millis(instant: float) -> int:
    return int(instant * 1000)


@dataclass
class Participant:
    id: str
    nickname: str
    is_host: bool
    joined_at: float


@dataclass(frozen=True)
class Message:
    id: str
    sender_id: str
    sender_name: str
    message: str
    timestamp: float


@dataclass(frozen=True)
class Reaction:
    id: str
    sender_id: str
    sender_name: str
    emoji: str
    timestamp: float


@dataclass
class PlaybackState:
    """Playback as of ``last_updated``. Never read ``reference_time`` as the live position."""

    is_playing: bool = False
    reference_time: float = 0.0
    last_updated: float = 0.0

    def position_at(self, now: float) -> float:
        if self.is_playing:
            return self.reference_time + max(0.0, now - self.last_updated)
        return self.reference_time


def clean_nickname(nickname: Optional[str], fallback: str) -> str:
    nickname = (nickname or "").strip()[:MAX_NICKNAME_LENGTH]
    return nickname or fallback


class Room:
    def __init__(self, room_id: str, host_name: str, clock: Clock = time.time):
        self.id = room_id
        self.host_name = host_name
        self.host_token = str(uuid.uuid4())
        self.host_connection_id: Optional[str] = None
        self.participants: Dict[str, Participant] = {}
        self.video_id: Optional[str] = None
        self.clock = clock
        self.created_at = clock()
        self.playback = PlaybackState(last_updated=self.created_at)
        self.chat_log: Deque[Message] = deque(maxlen=CHAT_CAPACITY)
        self.reaction_log: Deque[Reaction] = deque(maxlen=REACTION_CAPACITY)
        self.lock = asyncio.Lock()

    def __repr__(self):
        return f"<Room {self.id} participants={len(self.participants)} video={self.video_id}>"

    # participants

    def check_host_token(self, token: Optional[str]) -> bool:
        if not token:
            return False
        return secrets.compare_digest(str(token), self.host_token)

    def add_participant(self, connection_id: str, nickname: str, host_token: Optional[str] = None) -> Participant:
        is_host = self.check_host_token(host_token)
        if is_host:
            previous = self.participants.get(self.host_connection_id) if self.host_connection_id else None
            if previous is not None:
                previous.is_host = False
            self.host_connection_id = connection_id

        participant = Participant(
            id=connection_id,
            nickname=clean_nickname(nickname, f"Guest-{connection_id[:4]}"),
            is_host=is_host,
            joined_at=self.clock(),
        )
        self.participants[connection_id] = participant
        logger.debug(f"Participant {connection_id} ({participant.nickname}) added to room {self.id}, host={is_host}")
        return participant

    def remove_participant(self, connection_id: str) -> Tuple[Optional[Participant], bool]:
        """Remove a participant. Returns the removed participant (or None) and whether it held host control."""
        participant = self.participants.pop(connection_id, None)
        was_host = connection_id == self.host_connection_id
        if was_host:
            self.host_connection_id = None
        return participant, was_host

    def participant_list(self) -> List[Participant]:
        return sorted(self.participants.values(), key=lambda p: (not p.is_host, p.joined_at))

    def is_host(self, connection_id: str) -> bool:
        return self.host_connection_id is not None and connection_id == self.host_connection_id

    @property
    def is_empty(self) -> bool:
        return not self.participants

    # playback state machine

    def play(self, connection_id: str, at: float) -> bool:
        if not self.is_host(connection_id):
            return False
        self._set_playback(True, at)
        return True

    def pause(self, connection_id: str, at: float) -> bool:
        if not self.is_host(connection_id):
            return False
        self._set_playback(False, at)
        return True

    def seek(self, connection_id: str, at: float) -> bool:
        if not self.is_host(connection_id):
            return False
        self._set_playback(self.playback.is_playing, at)
        return True

    def reset_playback(self):
        self._set_playback(False, 0.0)

    def _set_playback(self, is_playing: bool, at: float):
        self.playback = PlaybackState(is_playing=is_playing, reference_time=float(at), last_updated=self.clock())

    def current_position(self, now: Optional[float] = None) -> float:
        return self.playback.position_at(self.clock() if now is None else now)

    # chat and reactions

    def add_message(self, connection_id: str, text: str) -> Optional[Message]:
        participant = self.participants.get(connection_id)
        text = (text or "").strip()[:MAX_MESSAGE_LENGTH]
        if participant is None or not text:
            return None
        message = Message(
            id=str(uuid.uuid4()),
            sender_id=connection_id,
            sender_name=participant.nickname,
            message=text,
            timestamp=self.clock(),
        )
        self.chat_log.append(message)
        return message

    def add_reaction(self, connection_id: str, emoji: str) -> Optional[Reaction]:
        participant = self.participants.get(connection_id)
        emoji = (emoji or "").strip()[:MAX_EMOJI_LENGTH]
        if participant is None or not emoji:
            return None
        reaction = Reaction(
            id=str(uuid.uuid4()),
            sender_id=connection_id,
            sender_name=participant.nickname,
            emoji=emoji,
            timestamp=self.clock(),
        )
        self.reaction_log.append(reaction)
        return reaction
