import asyncio
import time

import pytest

from watchparty.client import SyncClient
from watchparty.errors import RoomNotFound
from watchparty.services import room as room_service

VIDEO = "https://youtu.be/dQw4w9WgXcQ"


class RecordingSocket:
    """Stands in for socketio.AsyncClient, keeping what would go over the wire."""

    def __init__(self, replies=None):
        self.handlers = {}
        self.sent = []
        self.replies = replies or {}
        self.connected_to = None

    def on(self, event, handler=None):
        self.handlers[event] = handler

    async def connect(self, url, transports=None):
        self.connected_to = url

    async def disconnect(self):
        self.connected_to = None

    async def emit(self, event, data=None):
        self.sent.append((event, data))

    async def call(self, event, data=None):
        self.sent.append((event, data))
        return self.replies.get(event)


def make_client(scheduler, player):
    client = SyncClient(player=player, scheduler=scheduler, sio=RecordingSocket())
    client.reconciler.attach(player)
    return client


async def test_room_state_syncs_player(registry, scheduler, player):
    room, _ = registry.create_room("host", "Hana")
    now = int(scheduler.now() * 1000)
    room_service.load_video(room, "dQw4w9WgXcQ", "Hana", now=now - 10_000)
    room_service.apply_play(room, 30, now=now - 4_000)

    client = make_client(scheduler, player)
    await client.on_room_state(room_service.room_snapshot(room))

    assert client.room_id == room.code
    assert client.host_id == "host"
    assert player.position == 34
    assert player.playing is True
    assert client.video_state.seq == room.playback.seq


async def test_late_joiner_loads_current_video(registry, scheduler, player):
    room, _ = registry.create_room("host", "Hana")
    now = int(scheduler.now() * 1000)
    room_service.load_video(room, VIDEO, "Hana", now=now - 10_000)
    room_service.apply_play(room, 30, now=now - 4_000)

    client = make_client(scheduler, player)
    await client.on_room_state(room_service.room_snapshot(room))

    assert player.calls[0] == ("load", "dQw4w9WgXcQ")
    assert player.video_id == client.loaded_video_id == "dQw4w9WgXcQ"
    assert player.position == 34

    room_service.apply_pause(room, 36, now=now)
    await client.on_state_update(room_service.compute_video_state(room).to_wire())

    assert [c for c in player.calls if c[0] == "load"] == [("load", "dQw4w9WgXcQ")]
    assert player.playing is False


async def test_video_load_then_state_loads_once(registry, scheduler, player):
    room, _ = registry.create_room("host", "Hana")
    room_service.load_video(room, VIDEO, "Hana", now=int(scheduler.now() * 1000))

    client = make_client(scheduler, player)
    await client.on_video_load({"videoId": "dQw4w9WgXcQ", "videoUrl": VIDEO})
    await client.on_state_update(room_service.compute_video_state(room).to_wire())

    assert [c for c in player.calls if c[0] == "load"] == [("load", "dQw4w9WgXcQ")]


async def test_stale_update_ignored(scheduler, player, registry):
    room, _ = registry.create_room("host", "Hana")
    room_service.apply_pause(room, 50, now=int(scheduler.now() * 1000))
    fresh = room_service.compute_video_state(room).to_wire()
    stale = dict(fresh, seq=fresh["seq"] - 1, currentTime=5)

    client = make_client(scheduler, player)
    await client.on_state_update(fresh)
    await client.on_state_update(stale)

    assert player.position == 50
    assert client.video_state.current_time == 50


async def test_video_load_and_membership_events(scheduler, player):
    client = make_client(scheduler, player)
    client.user_id = "me"

    await client.on_video_load({"videoId": "dQw4w9WgXcQ", "videoUrl": "dQw4w9WgXcQ"})
    await client.on_user_joined({"user": {"id": "g", "name": "Gus", "roomId": "ABCDEF", "avatar": "🎬"}})
    await client.on_host_changed({"hostId": "me"})
    await client.on_user_left({"userId": "g", "userName": "Gus"})
    await client.on_error({"message": "Queue is full"})

    assert player.video_id == "dQw4w9WgXcQ"
    assert client.is_host
    assert client.users == {}
    assert client.errors == ["Queue is full"]


async def test_queue_and_chat_updates(scheduler, player):
    client = make_client(scheduler, player)
    await client.on_queue_update({"queue": [{
        "id": "q1", "videoId": "dQw4w9WgXcQ", "videoUrl": "https://youtu.be/dQw4w9WgXcQ",
        "title": "dQw4w9WgXcQ", "addedBy": "Gus", "addedAt": 1,
    }]})
    await client.on_chat_message({
        "id": "m1", "type": "system", "userId": "system", "userName": "System",
        "avatar": "🤖", "text": "Gus joined the room", "timestamp": 1,
    })

    assert client.queue[0].added_by == "Gus"
    assert client.messages[0].kind == "system"


async def test_push_handlers_registered(scheduler, player):
    client = make_client(scheduler, player)
    assert set(client.sio.handlers) == {
        "room:state", "room:user-joined", "room:user-left", "room:host-changed",
        "video:state-update", "video:load", "queue:update", "chat:message", "error",
    }


async def test_intents_go_out_with_wire_payloads(scheduler, player):
    sio = RecordingSocket(replies={
        "room:create": {"roomId": "ABCDEF", "userId": "me"},
        "queue:add": {"success": True},
    })
    client = SyncClient(player=player, scheduler=scheduler, sio=sio)

    await client.connect("http://localhost:3001")
    assert sio.connected_to == "http://localhost:3001"
    assert client.reconciler.player is player
    assert scheduler.pending == 1

    assert await client.create("Hana") == "ABCDEF"
    await client.load(VIDEO)
    await client.set_rate(1.5)
    assert await client.add_to_queue(VIDEO) == {"success": True}
    await client.remove_from_queue("q1")
    await client.reorder_queue("q2", 0)
    await client.play_from_queue("q2")
    await client.play_next()
    await client.say("hello")
    await client.leave()

    assert sio.sent == [
        ("room:create", {"userName": "Hana"}),
        ("video:load", {"url": VIDEO}),
        ("video:rate", {"rate": 1.5}),
        ("queue:add", {"url": VIDEO}),
        ("queue:remove", {"itemId": "q1"}),
        ("queue:reorder", {"itemId": "q2", "newIndex": 0}),
        ("queue:play", {"itemId": "q2"}),
        ("queue:play-next", None),
        ("chat:message", {"text": "hello"}),
        ("room:leave", None),
    ]
    assert client.room_id == "ABCDEF"
    assert client.user_id == "me"
    assert sio.connected_to is None
    assert scheduler.pending == 0


async def test_join_success_and_failure(scheduler, player):
    sio = RecordingSocket(replies={"room:join": {"success": True, "userId": "me"}})
    client = SyncClient(player=player, scheduler=scheduler, sio=sio)
    assert await client.join("abcdef", "Gus") == "ABCDEF"
    assert sio.sent == [("room:join", {"roomId": "abcdef", "userName": "Gus"})]

    sio.replies["room:join"] = {"success": False, "error": "Room not found. Check the code and try again."}
    with pytest.raises(RoomNotFound):
        await client.join("ZZZZZZ", "Gus")


async def test_realtime_guard_and_debounce(player):
    sio = RecordingSocket()
    client = SyncClient(player=player, sio=sio)
    client.reconciler.guard_window = 0.05
    client.reconciler.debounce = 0.02
    client.reconciler.attach(player)

    await client.on_state_update({
        "videoId": "dQw4w9WgXcQ", "videoUrl": VIDEO, "isPlaying": True,
        "currentTime": 10, "playbackRate": 1, "timestamp": int(time.time() * 1000), "seq": 1,
    })
    assert player.video_id == "dQw4w9WgXcQ"
    assert player.playing is True
    assert client.reconciler.remote_update is True

    # The player echoing the remote play must not go back upstream
    client.player_event("playing")
    await asyncio.sleep(0.1)
    assert client.reconciler.remote_update is False
    assert sio.sent == []

    player.position = 12
    client.player_event("paused")
    await asyncio.sleep(0.1)
    assert sio.sent == [("video:pause", {"currentTime": 12})]
