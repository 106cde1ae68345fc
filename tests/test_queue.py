import pytest

from watchparty.errors import InvalidVideoUrl, QueueFull
from watchparty.models.room import MAX_QUEUE_LENGTH
from watchparty.services import queue as queue_service

IDS = ["aaaaaaaaaaa", "bbbbbbbbbbb", "ccccccccccc", "ddddddddddd"]


@pytest.fixture
def room(registry):
    room, _ = registry.create_room("h", "Hana")
    return room


def fill(room, ids=IDS):
    return [queue_service.enqueue(room, f"https://youtu.be/{vid}", "Hana") for vid in ids]


def test_enqueue_uses_id_as_placeholder_title(room):
    item = queue_service.enqueue(room, "https://youtube.com/watch?v=dQw4w9WgXcQ", "Hana", now=77)

    assert item.video_id == "dQw4w9WgXcQ"
    assert item.title == "dQw4w9WgXcQ"
    assert item.added_by == "Hana"
    assert item.added_at == 77
    assert room.queue == [item]


def test_enqueue_invalid_url(room):
    with pytest.raises(InvalidVideoUrl):
        queue_service.enqueue(room, "https://example.com/video", "Hana")
    assert room.queue == []


def test_enqueue_beyond_capacity(room):
    for i in range(MAX_QUEUE_LENGTH):
        queue_service.enqueue(room, f"{i:011d}", "Hana")
    order = [item.id for item in room.queue]

    with pytest.raises(QueueFull):
        queue_service.enqueue(room, "dQw4w9WgXcQ", "Hana")

    assert len(room.queue) == MAX_QUEUE_LENGTH
    assert [item.id for item in room.queue] == order


def test_remove_is_idempotent(room):
    items = fill(room)
    assert queue_service.remove(room, items[1].id) is True
    assert queue_service.remove(room, items[1].id) is False
    assert [i.video_id for i in room.queue] == [IDS[0], IDS[2], IDS[3]]


@pytest.mark.parametrize("index, expected", [
    (0, [IDS[2], IDS[0], IDS[1], IDS[3]]),
    (3, [IDS[0], IDS[1], IDS[3], IDS[2]]),
    (99, [IDS[0], IDS[1], IDS[3], IDS[2]]),
    (-5, [IDS[2], IDS[0], IDS[1], IDS[3]]),
])
def test_reorder_clamps_index(room, index, expected):
    items = fill(room)
    assert queue_service.reorder(room, items[2].id, index) is True
    assert [i.video_id for i in room.queue] == expected


def test_reorder_missing_item_is_noop(room):
    fill(room)
    assert queue_service.reorder(room, "missing", 0) is False
    assert [i.video_id for i in room.queue] == IDS


def test_advance_pops_front_and_resets_clock(room):
    fill(room, IDS[:2])
    room.playback.is_playing = True
    room.playback.position_seconds = 99
    seq = room.playback.seq

    item = queue_service.advance(room, now=5_000)

    assert item.video_id == IDS[0]
    assert room.playback.video_id == IDS[0]
    assert room.playback.is_playing is False
    assert room.playback.position_seconds == 0
    assert room.playback.last_sync_timestamp == 5_000
    assert room.playback.seq == seq + 1
    assert [i.video_id for i in room.queue] == [IDS[1]]
    assert room.chat_log[-1].text == f"Now playing: {IDS[0]}"


def test_advance_empty_queue(room):
    seq = room.playback.seq
    assert queue_service.advance(room) is None
    assert room.playback.seq == seq


def test_duplicate_ended_triggers_advance_once(room):
    fill(room, IDS[:2])

    first = queue_service.advance(room, debounce=True, now=10_000)
    second = queue_service.advance(room, debounce=True, now=10_050)

    assert first.video_id == IDS[0]
    assert second is None
    assert [i.video_id for i in room.queue] == [IDS[1]]


def test_advance_lock_expires(room):
    fill(room, IDS[:2])
    queue_service.advance(room, debounce=True, now=10_000)

    later = queue_service.advance(room, debounce=True, now=10_000 + queue_service.ADVANCE_LOCK_MS)
    assert later.video_id == IDS[1]
    assert room.queue == []


def test_manual_advance_ignores_lock(room):
    fill(room, IDS[:2])
    queue_service.advance(room, debounce=True, now=10_000)
    assert queue_service.advance(room, now=10_001).video_id == IDS[1]


def test_play_now_keeps_rest_of_queue(room):
    items = fill(room)
    item = queue_service.play_now(room, items[2].id, now=3_000)

    assert item.video_id == IDS[2]
    assert room.playback.video_id == IDS[2]
    assert [i.video_id for i in room.queue] == [IDS[0], IDS[1], IDS[3]]
    assert queue_service.play_now(room, "missing") is None


async def test_backfill_title(room):
    item = fill(room, IDS[:1])[0]

    async def lookup(video_id):
        return "Never Gonna Give You Up"

    assert await queue_service.backfill_title(room, item.id, lookup) is True
    assert room.queue[0].title == "Never Gonna Give You Up"


async def test_backfill_title_failure_keeps_placeholder(room):
    item = fill(room, IDS[:1])[0]

    async def lookup(video_id):
        raise TimeoutError("slow")

    assert await queue_service.backfill_title(room, item.id, lookup) is False
    assert room.queue[0].title == IDS[0]


async def test_backfill_title_item_removed_meanwhile(room):
    item = fill(room, IDS[:1])[0]

    async def lookup(video_id):
        queue_service.remove(room, item.id)
        return "Too late"

    assert await queue_service.backfill_title(room, item.id, lookup) is False
    assert room.queue == []
