class WatchPartyError(Exception):
    """Base for every failure that is reported back to the acting client."""

    message = "Something went wrong"

    def __init__(self, message: str = None):
        super().__init__(message or self.message)
        if message:
            self.message = message


class RoomNotFound(WatchPartyError):
    message = "Room not found. Check the code and try again."


class InvalidVideoUrl(WatchPartyError):
    message = "Invalid YouTube URL"


class QueueFull(WatchPartyError):
    message = "Queue is full"


class Unauthorized(WatchPartyError):
    message = "Only the host can do that"


class UnknownParticipant(WatchPartyError):
    # Never shown to anyone; the gateway drops intents raising this.
    message = "You are not in a room"


class InvalidPlaybackRate(WatchPartyError):
    message = "Unsupported playback rate"


class InvalidPayload(WatchPartyError):
    message = "Malformed request"
