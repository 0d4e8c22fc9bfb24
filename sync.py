"""
Room synchronization protocol.

Viewers talk to the hub over one WebSocket each. Every inbound frame is a JSON
object ``{"type": <command>, ...}`` that is routed through ``SyncHub.handlers``
to a handler receiving the room and the sending connection as parameters.

Handlers mutate the room and enqueue the resulting broadcasts while holding
``room.lock``. Each connection drains its own outbox in a writer task, so
events reach every viewer in the order the room produced them and a slow
socket never holds up the room.
"""

import asyncio
import json
import uuid
from typing import Awaitable, Callable, Dict, Iterable, Optional

from fastapi import WebSocket, status
from pydantic import ValidationError

from backend import RoomRegistry, normalize_room_id
from constants import JOIN_CHAT_SNAPSHOT, OUTBOX_SIZE
from errors import RoomNotFound
from logging_config import get_logger
from reaper import LifecycleReaper
from room import Message, Participant, Reaction, Room, to_millis
from schemas.events import (
    CamelModel,
    ChatCommand,
    ControlCommand,
    ErrorEvent,
    JoinCommand,
    MessageOut,
    NewMessageEvent,
    NewReactionEvent,
    ParticipantJoinedEvent,
    ParticipantLeftEvent,
    ParticipantOut,
    ReactionCommand,
    RoomJoinedEvent,
    SyncEvent,
    VideoStateOut,
    VideoUploadedEvent,
)
from video_store import VideoAsset, VideoStore

logger = get_logger(__name__)


class Connection:
    """One viewer's WebSocket plus its outbound queue."""

    def __init__(self, websocket: WebSocket, room_id: str, connection_id: Optional[str] = None,
                 max_pending: int = OUTBOX_SIZE):
        self.id = connection_id or str(uuid.uuid4())
        self.websocket = websocket
        self.room_id = normalize_room_id(room_id)
        self.joined = False
        self.closed = False
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._writer: Optional[asyncio.Task] = None
        self._aborting: Optional[asyncio.Task] = None

    def __repr__(self):
        return f"<Connection {self.id} room={self.room_id}>"

    def start(self):
        if self._writer is None:
            self._writer = asyncio.create_task(self._drain())

    def enqueue(self, event: CamelModel):
        if self.closed:
            return
        try:
            self._outbox.put_nowait(event.model_dump(by_alias=True, mode="json"))
        except asyncio.QueueFull:
            logger.warning(f"Connection {self.id} in room {self.room_id} stopped reading "
                           f"({self._outbox.maxsize} events pending), dropping it")
            self.closed = True
            self._aborting = asyncio.get_running_loop().create_task(self._abort())

    @property
    def pending(self) -> int:
        return self._outbox.qsize()

    async def flush(self):
        """Wait until everything enqueued so far has been written (or dropped)."""
        await self._outbox.join()

    async def _drain(self):
        while True:
            payload = await self._outbox.get()
            try:
                if not self.closed:
                    await self.websocket.send_text(json.dumps(payload))
            except Exception as e:
                # the receive loop notices the dead socket and runs the disconnect path
                logger.warning(f"Error sending to connection {self.id} in room {self.room_id}: {e}")
                self.closed = True
            finally:
                self._outbox.task_done()

    async def close(self):
        self.closed = True
        if self._writer is not None:
            self._writer.cancel()
            await asyncio.gather(self._writer, return_exceptions=True)
            self._writer = None
        while not self._outbox.empty():
            self._outbox.get_nowait()
            self._outbox.task_done()

    async def _abort(self):
        # the receive loop sees the close and runs the disconnect path
        await self.close()
        try:
            await self.websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        except Exception as e:
            logger.debug(f"Closing stalled connection {self.id} failed: {e}")


Handler = Callable[[Room, Connection, dict], Awaitable[None]]


def participant_out(participant: Participant) -> ParticipantOut:
    return ParticipantOut(
        id=participant.id,
        nickname=participant.nickname,
        is_host=participant.is_host,
        joined_at=to_millis(participant.joined_at),
    )


def message_out(message: Message, model=MessageOut):
    return model(
        id=message.id,
        sender_id=message.sender_id,
        sender_name=message.sender_name,
        message=message.message,
        timestamp=to_millis(message.timestamp),
    )


def reaction_event(reaction: Reaction) -> NewReactionEvent:
    return NewReactionEvent(
        id=reaction.id,
        sender_id=reaction.sender_id,
        sender_name=reaction.sender_name,
        emoji=reaction.emoji,
        timestamp=to_millis(reaction.timestamp),
    )


class SyncHub:
    def __init__(self, registry: RoomRegistry, store: VideoStore, reaper: LifecycleReaper):
        self.registry = registry
        self.store = store
        self.reaper = reaper
        # room id -> connection id -> connection, only for connections that joined
        self.groups: Dict[str, Dict[str, Connection]] = {}
        self.handlers: Dict[str, Handler] = {
            "join": self.handle_join,
            "control-play": self.handle_play,
            "control-pause": self.handle_pause,
            "control-seek": self.handle_seek,
            "request-sync": self.handle_request_sync,
            "send-message": self.handle_message,
            "send-reaction": self.handle_reaction,
        }
        logger.info("SyncHub initialized")

    # fan-out

    def members(self, room_id: str) -> Iterable[Connection]:
        return list(self.groups.get(room_id, {}).values())

    def broadcast(self, room: Room, event: CamelModel, exclude: Optional[Connection] = None):
        recipients = 0
        for connection in self.members(room.id):
            if connection is exclude:
                continue
            connection.enqueue(event)
            recipients += 1
        logger.debug(f"Broadcast {event.type} to {recipients} connections in room {room.id}")

    # inbound frames

    async def handle(self, connection: Connection, data: str):
        try:
            frame = json.loads(data)
        except json.JSONDecodeError:
            connection.enqueue(ErrorEvent(message="Malformed message"))
            return
        if not isinstance(frame, dict):
            connection.enqueue(ErrorEvent(message="Malformed message"))
            return

        command = frame.get("type")
        handler = self.handlers.get(command)
        if handler is None:
            logger.debug(f"Unknown command {command!r} from connection {connection.id}")
            connection.enqueue(ErrorEvent(message=f"Unknown command: {command}"))
            return

        room = self.registry.find(connection.room_id)
        if room is None:
            connection.enqueue(ErrorEvent(message=RoomNotFound.detail))
            return
        if command != "join" and not connection.joined:
            connection.enqueue(ErrorEvent(message="Join the room first"))
            return

        try:
            await handler(room, connection, frame)
        except ValidationError as e:
            logger.debug(f"Invalid {command} payload from connection {connection.id}: {e}")
            connection.enqueue(ErrorEvent(message=f"Invalid {command} payload"))

    async def handle_join(self, room: Room, connection: Connection, payload: dict):
        command = JoinCommand.model_validate(payload)
        if connection.joined:
            logger.debug(f"Connection {connection.id} already joined room {room.id}")
            return

        async with room.lock:
            if self.registry.find(room.id) is not room:
                connection.enqueue(ErrorEvent(message=RoomNotFound.detail))
                return
            participant = room.add_participant(connection.id, command.nickname, command.host_token)
            self.groups.setdefault(room.id, {})[connection.id] = connection
            connection.joined = True

            participants = [participant_out(p) for p in room.participant_list()]
            now = room.clock()
            connection.enqueue(RoomJoinedEvent(
                room_id=room.id,
                participant_id=connection.id,
                is_host=participant.is_host,
                host_name=room.host_name,
                video_id=room.video_id,
                video_state=VideoStateOut(
                    is_playing=room.playback.is_playing,
                    current_time=room.current_position(now),
                    last_updated=to_millis(room.playback.last_updated),
                ),
                participants=participants,
                chat=[message_out(m) for m in list(room.chat_log)[-JOIN_CHAT_SNAPSHOT:]],
            ))
            self.broadcast(
                room,
                ParticipantJoinedEvent(participant=participant_out(participant), participants=participants),
                exclude=connection,
            )
        logger.info(f"{participant.nickname} ({connection.id}) joined room {room.id}, host={participant.is_host}")

    async def _control(self, room: Room, connection: Connection, payload: dict, action: str):
        # non-hosts are never answered, not even about a bad payload
        if not room.is_host(connection.id):
            logger.debug(f"Ignored {action} from non-host connection {connection.id} in room {room.id}")
            return
        command = ControlCommand.model_validate(payload)
        async with room.lock:
            transition = {"play": room.play, "pause": room.pause, "seek": room.seek}[action]
            if not transition(connection.id, command.time):
                # host control moved while we waited for the lock
                logger.debug(f"Ignored {action} from connection {connection.id}, no longer host of room {room.id}")
                return
            self.broadcast(
                room,
                SyncEvent(action=action, time=command.time, server_timestamp=to_millis(room.clock())),
                exclude=connection,
            )
        logger.debug(f"Room {room.id}: host {action} at {command.time:.2f}s")

    async def handle_play(self, room: Room, connection: Connection, payload: dict):
        await self._control(room, connection, payload, "play")

    async def handle_pause(self, room: Room, connection: Connection, payload: dict):
        await self._control(room, connection, payload, "pause")

    async def handle_seek(self, room: Room, connection: Connection, payload: dict):
        await self._control(room, connection, payload, "seek")

    async def handle_request_sync(self, room: Room, connection: Connection, payload: dict):
        async with room.lock:
            now = room.clock()
            connection.enqueue(SyncEvent(
                action="play" if room.playback.is_playing else "pause",
                time=room.current_position(now),
                server_timestamp=to_millis(now),
            ))

    async def handle_message(self, room: Room, connection: Connection, payload: dict):
        command = ChatCommand.model_validate(payload)
        async with room.lock:
            message = room.add_message(connection.id, command.message)
            if message is not None:
                self.broadcast(room, message_out(message, NewMessageEvent))

    async def handle_reaction(self, room: Room, connection: Connection, payload: dict):
        command = ReactionCommand.model_validate(payload)
        async with room.lock:
            reaction = room.add_reaction(connection.id, command.emoji)
            if reaction is not None:
                self.broadcast(room, reaction_event(reaction))

    # internal events

    async def replace_video(self, room_id: str, asset: VideoAsset) -> Room:
        """Make ``asset`` the room's active video and drop the one it displaces.

        The room is repointed before the old blob is deleted, so it never
        references a missing file. Swaps for one room are serialized by its
        lock; the last upload to get here wins. Blob deletion happens after the
        lock is released.
        """
        room = self.registry.find(room_id)
        vanished = room is None
        if not vanished:
            async with room.lock:
                vanished = self.registry.find(room.id) is not room
                if not vanished:
                    previous = room.video_id
                    room.video_id = asset.id
                    room.reset_playback()
                    self.broadcast(
                        room, VideoUploadedEvent(video_id=asset.id, filename=asset.filename, size=asset.size)
                    )
        if vanished:
            await self.store.delete(asset.id)
            raise RoomNotFound()

        if previous and previous != asset.id:
            await self.store.delete(previous)

        logger.info(f"Room {room.id} now playing {asset.filename} ({asset.id}), replaced {previous}")
        return room

    async def disconnect(self, connection: Connection):
        """Tear a connection down. Safe to call more than once."""
        await connection.close()
        if not connection.joined:
            return
        connection.joined = False

        group = self.groups.get(connection.room_id)
        if group is not None:
            group.pop(connection.id, None)
            if not group:
                self.groups.pop(connection.room_id, None)

        room = self.registry.find(connection.room_id)
        if room is None:
            return

        async with room.lock:
            participant, was_host = room.remove_participant(connection.id)
            if participant is None:
                return
            logger.info(f"{participant.nickname} ({connection.id}) left room {room.id}, was_host={was_host}")
            if room.is_empty:
                await self.reaper.destroy_room(room)
                return
            self.broadcast(room, ParticipantLeftEvent(
                participant_id=connection.id,
                nickname=participant.nickname,
                was_host=was_host,
                participants=[participant_out(p) for p in room.participant_list()],
            ))

    async def close(self):
        for group in list(self.groups.values()):
            for connection in list(group.values()):
                await connection.close()
        self.groups.clear()
