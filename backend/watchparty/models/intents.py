"""Typed client intents.

Every Socket.IO event a client may send is declared here as a model. The set is
closed: the gateway registers exactly these event names and must provide a
handler for each class listed in ``INTENTS``.
"""
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from typing import ClassVar, Dict, Type

from watchparty.errors import InvalidPayload
from watchparty.models.room import MAX_NAME_LENGTH


class Intent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event: ClassVar[str]


class NamedIntent(Intent):
    user_name: str = Field(default="Guest", alias="userName")

    @field_validator("user_name", mode="before")
    @classmethod
    def display_name(cls, value) -> str:
        name = str(value or "").strip()[:MAX_NAME_LENGTH]
        return name or "Guest"


class CreateRoom(NamedIntent):
    event = "room:create"


class JoinRoom(NamedIntent):
    event = "room:join"
    room_id: str = Field(alias="roomId", min_length=1)


class LeaveRoom(Intent):
    event = "room:leave"


class LoadVideo(Intent):
    event = "video:load"
    url: str


class PlayVideo(Intent):
    event = "video:play"
    current_time: float = Field(default=0.0, alias="currentTime", ge=0)


class PauseVideo(Intent):
    event = "video:pause"
    current_time: float = Field(default=0.0, alias="currentTime", ge=0)


class SeekVideo(Intent):
    event = "video:seek"
    current_time: float = Field(alias="currentTime", ge=0)


class SetRate(Intent):
    event = "video:rate"
    rate: float


class VideoEnded(Intent):
    event = "video:ended"


class AddToQueue(Intent):
    event = "queue:add"
    url: str


class RemoveFromQueue(Intent):
    event = "queue:remove"
    item_id: str = Field(alias="itemId")


class ReorderQueue(Intent):
    event = "queue:reorder"
    item_id: str = Field(alias="itemId")
    new_index: int = Field(alias="newIndex")


class PlayFromQueue(Intent):
    event = "queue:play"
    item_id: str = Field(alias="itemId")


class PlayNext(Intent):
    event = "queue:play-next"


class SendChat(Intent):
    event = "chat:message"
    text: str


INTENTS: Dict[str, Type[Intent]] = {
    cls.event: cls
    for cls in (
        CreateRoom, JoinRoom, LeaveRoom,
        LoadVideo, PlayVideo, PauseVideo, SeekVideo, SetRate, VideoEnded,
        AddToQueue, RemoveFromQueue, ReorderQueue, PlayFromQueue, PlayNext,
        SendChat,
    )
}


def parse_intent(event: str, data) -> Intent:
    """Build the intent for ``event`` out of a raw socket payload."""
    cls = INTENTS.get(event)
    if cls is None:
        raise InvalidPayload(f"Unknown event: {event}")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidPayload()
    try:
        return cls.model_validate(data)
    except ValidationError as e:
        raise InvalidPayload(f"Malformed {event} request") from e
