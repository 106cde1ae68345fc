from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Literal, Optional

MAX_QUEUE_LENGTH = 50
MAX_CHAT_LOG = 200
MAX_NAME_LENGTH = 20

SYSTEM_SENDER_ID = "system"
SYSTEM_SENDER_NAME = "System"
SYSTEM_AVATAR = "🤖"


class WireModel(BaseModel):
    # Internal names are snake_case, the socket payloads use the aliases.
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


class Participant(WireModel):
    id: str  # Socket ID
    name: str
    avatar: str
    room_code: str = Field(alias="roomId")


class PlaybackClock(BaseModel):
    video_id: str = ""
    source_url: str = ""
    is_playing: bool = False
    position_seconds: float = 0.0 # Last known authoritative position
    last_sync_timestamp: int = 0 # Epoch millis when position_seconds was accurate
    playback_rate: float = 1.0
    seq: int = 0


class VideoState(WireModel):
    video_id: str = Field(alias="videoId")
    video_url: str = Field(alias="videoUrl")
    is_playing: bool = Field(alias="isPlaying")
    current_time: float = Field(alias="currentTime")
    playback_rate: float = Field(alias="playbackRate")
    timestamp: int
    seq: int


class QueueItem(WireModel):
    id: str
    video_id: str = Field(alias="videoId")
    source_url: str = Field(alias="videoUrl")
    title: str
    added_by: str = Field(alias="addedBy") # Nickname
    added_at: int = Field(alias="addedAt")


class ChatMessage(WireModel):
    id: str
    kind: Literal["message", "system"] = Field(default="message", alias="type")
    sender_id: str = Field(alias="userId")
    sender_name: str = Field(alias="userName")
    sender_avatar: str = Field(alias="avatar")
    text: str
    timestamp: int


class Room(BaseModel):
    code: str
    host_id: Optional[str] = None
    participants: Dict[str, Participant] = Field(default_factory=dict)
    playback: PlaybackClock = Field(default_factory=PlaybackClock)
    queue: List[QueueItem] = Field(default_factory=list)
    chat_log: List[ChatMessage] = Field(default_factory=list)
    created_at: int
    # Runtime only: duplicate "video ended" triggers are dropped until this instant
    advance_locked_until: int = Field(default=0, exclude=True)

    def is_host(self, participant_id: str) -> bool:
        return self.host_id == participant_id
