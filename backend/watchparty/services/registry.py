import random
import logging
from typing import Dict, Optional, Tuple, NamedTuple

from watchparty.errors import RoomNotFound, UnknownParticipant
from watchparty.models.room import Room, Participant
from watchparty.services.room import append_system_message, now_ms

logger = logging.getLogger(__name__)

ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789" # No 0/O, 1/I
ROOM_CODE_LENGTH = 6

AVATARS = [
    "🎬", "🍿", "🎮", "🎵", "🎨", "🚀", "⚡", "🔥",
    "💎", "🌟", "🎯", "🎪", "🎭", "🎸", "🎺", "🎻",
]


class LeaveResult(NamedTuple):
    room: Room
    participant: Participant
    new_host_id: Optional[str] = None
    destroyed: bool = False


def generate_room_code(rng: random.Random = random) -> str:
    return "".join(rng.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def random_avatar(rng: random.Random = random) -> str:
    # Not unique within a room, it is only cosmetic
    return rng.choice(AVATARS)


class RoomRegistry:
    """In-memory store of live rooms, keyed by code, with a participant reverse index."""

    def __init__(self, rng: random.Random = None):
        self.rooms: Dict[str, Room] = {}
        self._participant_rooms: Dict[str, str] = {}
        self._rng = rng or random.Random()

    def _new_code(self) -> str:
        code = generate_room_code(self._rng)
        while code in self.rooms:
            code = generate_room_code(self._rng)
        return code

    def _new_participant(self, participant_id: str, name: str, code: str) -> Participant:
        return Participant(id=participant_id, name=name, avatar=random_avatar(self._rng), room_code=code)

    def create_room(self, participant_id: str, host_name: str, now: int = None) -> Tuple[Room, Participant]:
        if participant_id in self._participant_rooms:
            self.leave_room(participant_id, now)

        code = self._new_code()
        participant = self._new_participant(participant_id, host_name, code)
        now = now if now is not None else now_ms()

        room = Room(
            code=code,
            host_id=participant_id,
            participants={participant_id: participant},
            created_at=now,
        )
        room.playback.last_sync_timestamp = now

        self.rooms[code] = room
        self._participant_rooms[participant_id] = code
        logger.info(f"Room {code} created by {host_name} ({participant_id})")
        return room, participant

    def join_room(self, code: str, participant_id: str, name: str, now: int = None) -> Tuple[Room, Participant]:
        room = self.get_room(code)
        if not room:
            raise RoomNotFound()

        current = self._participant_rooms.get(participant_id)
        if current == room.code:
            return room, room.participants[participant_id]
        if current is not None:
            self.leave_room(participant_id, now)

        participant = self._new_participant(participant_id, name, room.code)
        room.participants[participant_id] = participant
        self._participant_rooms[participant_id] = room.code
        append_system_message(room, f"{name} joined the room", now)
        logger.info(f"{name} ({participant_id}) joined room {room.code}")
        return room, participant

    def leave_room(self, participant_id: str, now: int = None) -> LeaveResult:
        room = self.get_room_by_participant(participant_id)
        if not room:
            raise UnknownParticipant()

        participant = room.participants.pop(participant_id)
        del self._participant_rooms[participant_id]

        if not room.participants:
            del self.rooms[room.code]
            logger.info(f"Room {room.code} destroyed, last participant {participant.name} left")
            return LeaveResult(room, participant, destroyed=True)

        append_system_message(room, f"{participant.name} left the room", now)

        new_host_id = None
        if room.host_id == participant_id:
            new_host_id = next(iter(room.participants))
            room.host_id = new_host_id
            logger.info(f"Room {room.code}: host moved to {new_host_id}")

        return LeaveResult(room, participant, new_host_id)

    def get_room(self, code: str) -> Optional[Room]:
        return self.rooms.get((code or "").strip().upper())

    def get_room_by_participant(self, participant_id: str) -> Optional[Room]:
        code = self._participant_rooms.get(participant_id)
        return self.rooms.get(code) if code else None

    def room_count(self) -> int:
        return len(self.rooms)

    def participant_count(self) -> int:
        return len(self._participant_rooms)
