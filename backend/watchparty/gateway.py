import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

import socketio

from watchparty import config
from watchparty.errors import WatchPartyError, UnknownParticipant, Unauthorized, InvalidPayload, RoomNotFound
from watchparty.models.intents import (
    INTENTS, Intent, parse_intent,
    CreateRoom, JoinRoom, LeaveRoom,
    LoadVideo, PlayVideo, PauseVideo, SeekVideo, SetRate, VideoEnded,
    AddToQueue, RemoveFromQueue, ReorderQueue, PlayFromQueue, PlayNext,
    SendChat,
)
from watchparty.models.room import Room, QueueItem
from watchparty.services import queue as queue_service
from watchparty.services import room as room_service
from watchparty.services.media import fetch_title
from watchparty.services.registry import RoomRegistry

logger = logging.getLogger(__name__)

# Intents answered through the Socket.IO acknowledgement instead of an "error" event
ACK_INTENTS = (CreateRoom, JoinRoom, AddToQueue)
# Intents that do not need the sender to be in a room yet
ROOMLESS_INTENTS = (CreateRoom, JoinRoom)

CONTROL_POLICIES = ("host", "open")


class SessionGateway:
    """Turns client intents into room mutations and fans the results out."""

    def __init__(self, sio: socketio.AsyncServer, registry: RoomRegistry,
                 control_policy: str = config.CONTROL_POLICY,
                 title_lookup: Callable[[str], Awaitable[str]] = fetch_title):
        if control_policy not in CONTROL_POLICIES:
            raise ValueError(f"Unknown control policy: {control_policy}")

        self.sio = sio
        self.registry = registry
        self.control_policy = control_policy
        self.title_lookup = title_lookup
        self._background: Set[asyncio.Task] = set()

        self._handlers = {
            CreateRoom: self.create_room,
            JoinRoom: self.join_room,
            LeaveRoom: self.leave_room,
            LoadVideo: self.load_video,
            PlayVideo: self.play,
            PauseVideo: self.pause,
            SeekVideo: self.seek,
            SetRate: self.set_rate,
            VideoEnded: self.video_ended,
            AddToQueue: self.queue_add,
            RemoveFromQueue: self.queue_remove,
            ReorderQueue: self.queue_reorder,
            PlayFromQueue: self.queue_play,
            PlayNext: self.queue_play_next,
            SendChat: self.chat_message,
        }
        missing = [cls.__name__ for cls in INTENTS.values() if cls not in self._handlers]
        if missing:
            raise RuntimeError(f"No handler for intents: {', '.join(missing)}")

    # ============== Transport wiring ==============

    def register(self):
        for event in INTENTS:
            self.sio.on(event, handler=self._socket_handler(event))
        self.sio.on("connect", handler=self.connect)
        self.sio.on("disconnect", handler=self.disconnect)

    def _socket_handler(self, event: str):
        async def handler(sid, data=None):
            return await self.handle(sid, event, data)
        return handler

    async def connect(self, sid, environ, auth=None):
        logger.info(f"Client {sid} connected")

    async def disconnect(self, sid, reason=None):
        logger.info(f"Client {sid} disconnected")
        try:
            await self._leave(sid)
        except Exception as e:
            logger.error(f"Error in disconnect: {e}", exc_info=True)

    async def handle(self, sid: str, event: str, data=None):
        """Parse a raw socket event and dispatch it. Returns the ack payload, if any."""
        try:
            intent = parse_intent(event, data)
        except InvalidPayload as e:
            logger.warning(f"Rejected {event} from {sid}: {e.message}")
            intent_cls = INTENTS.get(event)
            if intent_cls and issubclass(intent_cls, ACK_INTENTS):
                return {"success": False, "error": e.message}
            await self.send_error(sid, e.message)
            return None
        return await self.dispatch(sid, intent)

    async def dispatch(self, sid: str, intent: Intent):
        handler = self._handlers[type(intent)]
        try:
            if isinstance(intent, ROOMLESS_INTENTS):
                return await handler(sid, intent)

            room = self.registry.get_room_by_participant(sid)
            if not room:
                raise UnknownParticipant()
            return await handler(sid, intent, room)
        except UnknownParticipant:
            logger.debug(f"Ignoring {intent.event} from {sid}: not in a room")
            return None
        except WatchPartyError as e:
            logger.warning(f"Rejected {intent.event} from {sid}: {e.message}")
            return await self._fail(sid, intent, e.message)
        except Exception as e:
            logger.error(f"Error in {intent.event}: {e}", exc_info=True)
            return await self._fail(sid, intent, "Internal server error")

    async def _fail(self, sid: str, intent: Intent, message: str):
        if isinstance(intent, ACK_INTENTS):
            return {"success": False, "error": message}
        await self.send_error(sid, message)
        return None

    async def send_error(self, sid: str, message: str):
        await self.sio.emit("error", {"message": message}, to=sid)

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error(f"Background task error: {exc}")

    # ============== Room ==============

    async def _send_state(self, sid: str, room: Room):
        await self.sio.emit("room:state", room_service.room_snapshot(room), to=sid)

    async def create_room(self, sid: str, intent: CreateRoom):
        await self._leave(sid)

        room, participant = self.registry.create_room(sid, intent.user_name)
        await self.sio.enter_room(sid, room.code)
        await self._send_state(sid, room)
        return {"roomId": room.code, "userId": participant.id}

    async def join_room(self, sid: str, intent: JoinRoom):
        target = self.registry.get_room(intent.room_id)
        if not target:
            raise RoomNotFound()

        current = self.registry.get_room_by_participant(sid)
        if current is target:
            await self._send_state(sid, current)
            return {"success": True, "userId": sid}
        await self._leave(sid)

        room, participant = self.registry.join_room(intent.room_id, sid, intent.user_name)
        await self.sio.enter_room(sid, room.code)
        await self._send_state(sid, room)
        await self.sio.emit("room:user-joined", {"user": participant.to_wire()}, room=room.code, skip_sid=sid)
        await self.sio.emit("chat:message", room.chat_log[-1].to_wire(), room=room.code)
        return {"success": True, "userId": participant.id}

    async def leave_room(self, sid: str, intent: LeaveRoom, room: Room):
        await self._leave(sid)

    async def _leave(self, sid: str):
        if not self.registry.get_room_by_participant(sid):
            return

        result = self.registry.leave_room(sid)
        room, participant = result.room, result.participant
        logger.info(f"{participant.name} ({sid}) left room {room.code}")
        await self.sio.leave_room(sid, room.code)

        if result.destroyed:
            return

        await self.sio.emit("room:user-left", {"userId": participant.id, "userName": participant.name}, room=room.code, skip_sid=sid)
        await self.sio.emit("chat:message", room.chat_log[-1].to_wire(), room=room.code)
        if result.new_host_id:
            await self.sio.emit("room:host-changed", {"hostId": result.new_host_id}, room=room.code)

    # ============== Video ==============

    def _require_host(self, sid: str, room: Room, message: str):
        if self.control_policy == "host" and not room.is_host(sid):
            raise Unauthorized(message)

    async def _broadcast_state(self, room: Room, skip_sid: Optional[str] = None):
        await self.sio.emit("video:state-update", room_service.compute_video_state(room).to_wire(), room=room.code, skip_sid=skip_sid)

    async def load_video(self, sid: str, intent: LoadVideo, room: Room):
        self._require_host(sid, room, "Only the host can change the video")

        video_id = room_service.load_video(room, intent.url, room.participants[sid].name)
        await self.sio.emit("video:load", {"videoId": video_id, "videoUrl": room.playback.source_url}, room=room.code)
        await self._broadcast_state(room)
        await self.sio.emit("chat:message", room.chat_log[-1].to_wire(), room=room.code)

    async def play(self, sid: str, intent: PlayVideo, room: Room):
        room_service.apply_play(room, intent.current_time)
        await self._broadcast_state(room, skip_sid=sid)

    async def pause(self, sid: str, intent: PauseVideo, room: Room):
        room_service.apply_pause(room, intent.current_time)
        await self._broadcast_state(room, skip_sid=sid)

    async def seek(self, sid: str, intent: SeekVideo, room: Room):
        room_service.apply_seek(room, intent.current_time)
        await self._broadcast_state(room, skip_sid=sid)

    async def set_rate(self, sid: str, intent: SetRate, room: Room):
        self._require_host(sid, room, "Only the host can change the playback rate")

        room_service.set_playback_rate(room, intent.rate)
        await self._broadcast_state(room, skip_sid=sid)

    async def video_ended(self, sid: str, intent: VideoEnded, room: Room):
        item = queue_service.advance(room, debounce=True)
        if item:
            await self._announce_track(room, item)

    # ============== Queue ==============

    async def _broadcast_queue(self, room: Room):
        await self.sio.emit("queue:update", {"queue": [item.to_wire() for item in room.queue]}, room=room.code)

    async def _announce_track(self, room: Room, item: QueueItem):
        await self.sio.emit("video:load", {"videoId": item.video_id, "videoUrl": item.source_url}, room=room.code)
        await self._broadcast_state(room)
        await self._broadcast_queue(room)
        await self.sio.emit("chat:message", room.chat_log[-1].to_wire(), room=room.code)

    async def queue_add(self, sid: str, intent: AddToQueue, room: Room):
        item = queue_service.enqueue(room, intent.url, room.participants[sid].name)
        await self._broadcast_queue(room)
        self._spawn(self._resolve_title(room, item.id))
        return {"success": True}

    async def _resolve_title(self, room: Room, item_id: str):
        changed = await queue_service.backfill_title(room, item_id, self.title_lookup)
        # Skip if the room died while the lookup was running
        if changed and self.registry.get_room(room.code) is room:
            await self._broadcast_queue(room)

    async def queue_remove(self, sid: str, intent: RemoveFromQueue, room: Room):
        if queue_service.remove(room, intent.item_id):
            await self._broadcast_queue(room)

    async def queue_reorder(self, sid: str, intent: ReorderQueue, room: Room):
        if queue_service.reorder(room, intent.item_id, intent.new_index):
            await self._broadcast_queue(room)

    async def queue_play(self, sid: str, intent: PlayFromQueue, room: Room):
        item = queue_service.play_now(room, intent.item_id)
        if item:
            await self._announce_track(room, item)

    async def queue_play_next(self, sid: str, intent: PlayNext, room: Room):
        item = queue_service.advance(room)
        if item:
            await self._announce_track(room, item)

    # ============== Chat ==============

    async def chat_message(self, sid: str, intent: SendChat, room: Room):
        message = room_service.append_chat_message(room, sid, intent.text)
        if message:
            await self.sio.emit("chat:message", message.to_wire(), room=room.code)
