import re
import time
import uuid
import logging
from typing import Optional

from watchparty.errors import InvalidVideoUrl, InvalidPlaybackRate
from watchparty.models.room import (
    Room, ChatMessage, VideoState, MAX_CHAT_LOG,
    SYSTEM_SENDER_ID, SYSTEM_SENDER_NAME, SYSTEM_AVATAR,
)

logger = logging.getLogger(__name__)

VIDEO_ID_PATTERNS = [
    re.compile(r"(?:youtube\.com/watch\?(?:.*&)?v=|youtu\.be/|youtube\.com/embed/)([a-zA-Z0-9_-]{11})"),
    re.compile(r"^([a-zA-Z0-9_-]{11})$"),
]

MIN_PLAYBACK_RATE = 0.25
MAX_PLAYBACK_RATE = 2.0


def now_ms() -> int:
    return int(time.time() * 1000)


def extract_video_id(url: str) -> Optional[str]:
    url = (url or "").strip()
    for pattern in VIDEO_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def _touch(room: Room, now: Optional[int]):
    room.playback.last_sync_timestamp = now if now is not None else now_ms()
    room.playback.seq += 1


def append_system_message(room: Room, text: str, now: Optional[int] = None) -> ChatMessage:
    message = ChatMessage(
        id=new_id(),
        kind="system",
        sender_id=SYSTEM_SENDER_ID,
        sender_name=SYSTEM_SENDER_NAME,
        sender_avatar=SYSTEM_AVATAR,
        text=text,
        timestamp=now if now is not None else now_ms(),
    )
    _append(room, message)
    return message


def _append(room: Room, message: ChatMessage):
    room.chat_log.append(message)
    if len(room.chat_log) > MAX_CHAT_LOG:
        room.chat_log = room.chat_log[-MAX_CHAT_LOG:]


def append_chat_message(room: Room, participant_id: str, text: str, now: Optional[int] = None) -> Optional[ChatMessage]:
    participant = room.participants.get(participant_id)
    if not participant:
        # Raced with a disconnect
        return None

    text = (text or "").strip()
    if not text:
        return None

    message = ChatMessage(
        id=new_id(),
        kind="message",
        sender_id=participant.id,
        sender_name=participant.name,
        sender_avatar=participant.avatar,
        text=text,
        timestamp=now if now is not None else now_ms(),
    )
    _append(room, message)
    return message


def reset_clock(room: Room, video_id: str, source_url: str, now: Optional[int] = None):
    """Point the clock at a new video, paused at 0."""
    clock = room.playback
    clock.video_id = video_id
    clock.source_url = source_url
    clock.is_playing = False
    clock.position_seconds = 0.0
    _touch(room, now)


def load_video(room: Room, raw_url: str, requested_by: str, now: Optional[int] = None) -> str:
    video_id = extract_video_id(raw_url)
    if not video_id:
        raise InvalidVideoUrl()

    reset_clock(room, video_id, raw_url.strip(), now)
    append_system_message(room, f"{requested_by} loaded a new video", now)
    logger.info(f"Room {room.code}: {requested_by} loaded {video_id} (seq={room.playback.seq})")
    return video_id


def apply_play(room: Room, position_seconds: float, now: Optional[int] = None):
    room.playback.is_playing = True
    room.playback.position_seconds = position_seconds
    _touch(room, now)


def apply_pause(room: Room, position_seconds: float, now: Optional[int] = None):
    room.playback.is_playing = False
    room.playback.position_seconds = position_seconds
    _touch(room, now)


def apply_seek(room: Room, position_seconds: float, now: Optional[int] = None):
    # Seeking keeps the current play state
    room.playback.position_seconds = position_seconds
    _touch(room, now)


def current_position(room: Room, now: Optional[int] = None) -> float:
    """Authoritative position extrapolated to ``now``."""
    clock = room.playback
    if not clock.is_playing:
        return clock.position_seconds
    now = now if now is not None else now_ms()
    elapsed = max(0, now - clock.last_sync_timestamp) / 1000
    return clock.position_seconds + elapsed * clock.playback_rate


def set_playback_rate(room: Room, rate: float, now: Optional[int] = None):
    if not MIN_PLAYBACK_RATE <= rate <= MAX_PLAYBACK_RATE:
        raise InvalidPlaybackRate()

    now = now if now is not None else now_ms()
    # Rebase so time played at the old rate is not re-extrapolated at the new one
    room.playback.position_seconds = current_position(room, now)
    room.playback.playback_rate = rate
    _touch(room, now)


def compute_video_state(room: Room) -> VideoState:
    clock = room.playback
    return VideoState(
        video_id=clock.video_id,
        video_url=clock.source_url,
        is_playing=clock.is_playing,
        current_time=clock.position_seconds,
        playback_rate=clock.playback_rate,
        timestamp=clock.last_sync_timestamp,
        seq=clock.seq,
    )


def room_snapshot(room: Room) -> dict:
    return {
        "roomId": room.code,
        "users": [p.to_wire() for p in room.participants.values()],
        "hostId": room.host_id,
        "videoState": compute_video_state(room).to_wire(),
        "messages": [m.to_wire() for m in room.chat_log],
        "queue": [item.to_wire() for item in room.queue],
    }
