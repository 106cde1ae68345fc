"""Python participant for a watch party room.

Wraps a Socket.IO client around ``PlaybackReconciler`` so a headless player
(a bot, a kiosk, an integration test) can join a room and stay in sync.
"""
import asyncio
import logging
from typing import Dict, List, Optional

import socketio

from watchparty.errors import RoomNotFound
from watchparty.models.room import VideoState, QueueItem, ChatMessage
from watchparty.sync.reconciler import PlaybackReconciler, Player
from watchparty.sync.scheduler import AsyncioScheduler, Scheduler

logger = logging.getLogger(__name__)


class SyncClient:
    def __init__(self, player: Optional[Player] = None, scheduler: Scheduler = None,
                 sio: socketio.AsyncClient = None):
        self.sio = sio or socketio.AsyncClient(reconnection=False)
        self.reconciler = PlaybackReconciler(scheduler or AsyncioScheduler(), self._send)
        self.player = player

        self.room_id: Optional[str] = None
        self.user_id: Optional[str] = None
        self.host_id: Optional[str] = None
        self.users: Dict[str, dict] = {}
        self.queue: List[QueueItem] = []
        self.messages: List[ChatMessage] = []
        self.video_state: Optional[VideoState] = None
        self.errors: List[str] = []
        self.loaded_video_id: Optional[str] = None
        self._pending: set = set()

        self.sio.on("room:state", self.on_room_state)
        self.sio.on("room:user-joined", self.on_user_joined)
        self.sio.on("room:user-left", self.on_user_left)
        self.sio.on("room:host-changed", self.on_host_changed)
        self.sio.on("video:state-update", self.on_state_update)
        self.sio.on("video:load", self.on_video_load)
        self.sio.on("queue:update", self.on_queue_update)
        self.sio.on("chat:message", self.on_chat_message)
        self.sio.on("error", self.on_error)

    @property
    def is_host(self) -> bool:
        return self.user_id is not None and self.user_id == self.host_id

    def _send(self, event: str, data: dict):
        # Reconciler timers fire outside of a coroutine
        task = asyncio.ensure_future(self.sio.emit(event, data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    # ============== Lifecycle ==============

    async def connect(self, url: str):
        await self.sio.connect(url, transports=["websocket"])
        if self.player is not None:
            if self.video_state is not None:
                self._ensure_loaded(self.video_state)
            self.reconciler.attach(self.player)
        self.reconciler.start()

    async def create(self, user_name: str) -> str:
        response = await self.sio.call("room:create", {"userName": user_name})
        if not response or "roomId" not in response:
            raise RuntimeError(f"Room creation failed: {response}")
        self.room_id = response["roomId"]
        self.user_id = response["userId"]
        return self.room_id

    async def join(self, room_id: str, user_name: str) -> str:
        response = await self.sio.call("room:join", {"roomId": room_id, "userName": user_name})
        if not response.get("success"):
            raise RoomNotFound(response.get("error"))
        self.room_id = room_id.upper()
        self.user_id = response["userId"]
        return self.room_id

    async def leave(self):
        self.reconciler.stop()
        await self.sio.emit("room:leave")
        await self.sio.disconnect()

    # ============== Intents ==============

    async def load(self, url: str):
        await self.sio.emit("video:load", {"url": url})

    async def set_rate(self, rate: float):
        await self.sio.emit("video:rate", {"rate": rate})

    async def add_to_queue(self, url: str) -> dict:
        return await self.sio.call("queue:add", {"url": url})

    async def remove_from_queue(self, item_id: str):
        await self.sio.emit("queue:remove", {"itemId": item_id})

    async def reorder_queue(self, item_id: str, new_index: int):
        await self.sio.emit("queue:reorder", {"itemId": item_id, "newIndex": new_index})

    async def play_from_queue(self, item_id: str):
        await self.sio.emit("queue:play", {"itemId": item_id})

    async def play_next(self):
        await self.sio.emit("queue:play-next")

    async def say(self, text: str):
        await self.sio.emit("chat:message", {"text": text})

    def player_event(self, state: str):
        """Forward a local player state change ("playing", "paused", "ended")."""
        self.reconciler.on_player_state(state)

    # ============== Server pushes ==============

    async def on_room_state(self, data):
        self.room_id = data["roomId"]
        self.host_id = data["hostId"]
        self.users = {u["id"]: u for u in data["users"]}
        self.queue = [QueueItem.model_validate(item) for item in data["queue"]]
        self.messages = [ChatMessage.model_validate(m) for m in data["messages"]]
        await self.on_state_update(data["videoState"])

    async def on_user_joined(self, data):
        user = data["user"]
        self.users[user["id"]] = user

    async def on_user_left(self, data):
        self.users.pop(data["userId"], None)

    async def on_host_changed(self, data):
        self.host_id = data["hostId"]

    async def on_state_update(self, data):
        state = VideoState.model_validate(data)
        self._ensure_loaded(state)
        if self.reconciler.apply_state(state) or self.video_state is None or state.seq > self.video_state.seq:
            self.video_state = state

    def _ensure_loaded(self, state: VideoState):
        # Late joiners never see video:load, only the state carrying the id
        if not state.video_id or state.video_id == self.loaded_video_id:
            return
        if state.seq <= self.reconciler.last_applied_seq or self.player is None:
            return
        self._load(state.video_id)

    def _load(self, video_id: str):
        logger.info(f"Loading video {video_id}")
        self.reconciler.reset()
        if self.player is not None:
            self.player.load_video(video_id)
            self.loaded_video_id = video_id

    async def on_video_load(self, data):
        self._load(data["videoId"])

    async def on_queue_update(self, data):
        self.queue = [QueueItem.model_validate(item) for item in data["queue"]]

    async def on_chat_message(self, data):
        self.messages.append(ChatMessage.model_validate(data))

    async def on_error(self, data):
        logger.warning(f"Server error: {data.get('message')}")
        self.errors.append(data.get("message", ""))
