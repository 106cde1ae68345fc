import logging
from typing import Awaitable, Callable, Optional

from watchparty.errors import InvalidVideoUrl, QueueFull
from watchparty.models.room import Room, QueueItem, MAX_QUEUE_LENGTH
from watchparty.services.room import (
    extract_video_id, new_id, now_ms, reset_clock, append_system_message,
)

logger = logging.getLogger(__name__)

ADVANCE_LOCK_MS = 2000 # Duplicate "video ended" triggers inside this window are dropped


def enqueue(room: Room, raw_url: str, requested_by: str, now: int = None) -> QueueItem:
    if len(room.queue) >= MAX_QUEUE_LENGTH:
        raise QueueFull(f"Queue is full (max {MAX_QUEUE_LENGTH} videos)")

    video_id = extract_video_id(raw_url)
    if not video_id:
        raise InvalidVideoUrl()

    item = QueueItem(
        id=new_id(),
        video_id=video_id,
        source_url=raw_url.strip(),
        title=video_id, # Placeholder until the real title is resolved
        added_by=requested_by,
        added_at=now if now is not None else now_ms(),
    )
    room.queue.append(item)
    return item


async def backfill_title(room: Room, item_id: str, lookup: Callable[[str], Awaitable[Optional[str]]]) -> bool:
    """Resolve the real title of a queued item. Returns True if the queue changed."""
    item = _find(room, item_id)
    if not item:
        return False

    try:
        title = await lookup(item.video_id)
    except Exception as e:
        logger.error(f"Title lookup failed for {item.video_id}: {e}")
        return False

    # The item may have been removed or played while we were waiting
    item = _find(room, item_id)
    if not item or not title or title == item.title:
        return False

    item.title = title
    return True


def _find(room: Room, item_id: str) -> Optional[QueueItem]:
    return next((item for item in room.queue if item.id == item_id), None)


def remove(room: Room, item_id: str) -> bool:
    before = len(room.queue)
    room.queue = [item for item in room.queue if item.id != item_id]
    return len(room.queue) != before


def reorder(room: Room, item_id: str, new_index: int) -> bool:
    item = _find(room, item_id)
    if not item:
        return False

    room.queue.remove(item)
    new_index = max(0, min(new_index, len(room.queue)))
    room.queue.insert(new_index, item)
    return True


def _play(room: Room, item: QueueItem, now: int):
    reset_clock(room, item.video_id, item.source_url, now)
    append_system_message(room, f"Now playing: {item.title}", now)
    logger.info(f"Room {room.code}: now playing {item.video_id} (seq={room.playback.seq})")


def advance(room: Room, debounce: bool = False, now: int = None) -> Optional[QueueItem]:
    """Pop the front item into the playback clock.

    With ``debounce`` set, only the first trigger inside ADVANCE_LOCK_MS does
    anything; every participant reports "ended" for the same video.
    """
    now = now if now is not None else now_ms()

    if debounce:
        if now < room.advance_locked_until:
            logger.info(f"Room {room.code}: duplicate advance dropped")
            return None
        room.advance_locked_until = now + ADVANCE_LOCK_MS

    if not room.queue:
        return None

    item = room.queue.pop(0)
    _play(room, item, now)
    return item


def play_now(room: Room, item_id: str, now: int = None) -> Optional[QueueItem]:
    item = _find(room, item_id)
    if not item:
        return None

    room.queue.remove(item)
    _play(room, item, now if now is not None else now_ms())
    return item
