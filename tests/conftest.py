import random
from typing import List, NamedTuple, Optional

import pytest

from watchparty.gateway import SessionGateway
from watchparty.services.registry import RoomRegistry
from watchparty.sync.scheduler import ManualScheduler


class Emit(NamedTuple):
    event: str
    data: object
    recipients: frozenset


class FakeServer:
    """Records what an AsyncServer would have sent, resolving rooms at emit time."""

    def __init__(self):
        self.handlers = {}
        self.rooms = {}
        self.emitted: List[Emit] = []

    def on(self, event, handler=None):
        self.handlers[event] = handler

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None):
        if to is not None:
            recipients = {to}
        else:
            recipients = set(self.rooms.get(room, set()))
        recipients.discard(skip_sid)
        self.emitted.append(Emit(event, data, frozenset(recipients)))

    async def enter_room(self, sid, room):
        self.rooms.setdefault(room, set()).add(sid)

    async def leave_room(self, sid, room):
        self.rooms.get(room, set()).discard(sid)

    def received(self, sid, event: Optional[str] = None):
        return [e.data for e in self.emitted if sid in e.recipients and (event is None or e.event == event)]

    def events(self, event: str):
        return [e for e in self.emitted if e.event == event]

    def clear(self):
        self.emitted.clear()


class FakePlayer:
    def __init__(self, position=0.0, playing=False, rate=1.0):
        self.position = position
        self.playing = playing
        self.rate = rate
        self.video_id = None
        self.calls = []

    def get_current_time(self):
        return self.position

    def is_playing(self):
        return self.playing

    def play(self):
        self.calls.append("play")
        self.playing = True

    def pause(self):
        self.calls.append("pause")
        self.playing = False

    def seek_to(self, seconds):
        self.calls.append(("seek", seconds))
        self.position = seconds

    def get_playback_rate(self):
        return self.rate

    def set_playback_rate(self, rate):
        self.calls.append(("rate", rate))
        self.rate = rate

    def load_video(self, video_id):
        self.calls.append(("load", video_id))
        self.video_id = video_id
        self.position = 0.0
        self.playing = False


async def fake_title(video_id):
    return f"Title of {video_id}"


@pytest.fixture
def registry():
    return RoomRegistry(rng=random.Random(1234))


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def gateway(server, registry):
    gw = SessionGateway(server, registry, control_policy="host", title_lookup=fake_title)
    gw.register()
    return gw


@pytest.fixture
def open_gateway(server, registry):
    gw = SessionGateway(server, registry, control_policy="open", title_lookup=fake_title)
    gw.register()
    return gw


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def player():
    return FakePlayer()
