import logging
from typing import Any, Callable, Optional, Protocol

from watchparty.models.room import VideoState
from watchparty.sync.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

# ============== Timing Constants (seconds) ==============
DRIFT_TOLERANCE = 1.5        # Local vs target disagreement before a forced seek
REMOTE_GUARD_WINDOW = 0.8    # Swallows the player's own callbacks after a remote update
SEEK_POLL_INTERVAL = 1.0
SEEK_DETECT_THRESHOLD = 2.0  # Unexplained jump between polls treated as a user seek
STATE_DEBOUNCE = 0.15        # Play/pause churn from rapid toggling


class Player(Protocol):
    def get_current_time(self) -> float: ...
    def is_playing(self) -> bool: ...
    def play(self) -> None: ...
    def pause(self) -> None: ...
    def seek_to(self, seconds: float) -> None: ...
    def get_playback_rate(self) -> float: ...
    def set_playback_rate(self, rate: float) -> None: ...
    def load_video(self, video_id: str) -> None: ...


Send = Callable[[str, dict], Any]


def target_position(state: VideoState, now: float) -> float:
    """Extrapolate the broadcast clock to ``now`` (epoch seconds)."""
    if not state.is_playing:
        return state.current_time
    elapsed = max(0.0, now - state.timestamp / 1000)
    return state.current_time + elapsed * state.playback_rate


class PlaybackReconciler:
    """Keeps one local player in line with the room's broadcast clock.

    Incoming states are applied only if their seq is newer than the last one
    applied. Local player events are turned into upstream intents through
    ``send``, except while a remote update is being applied.
    """

    def __init__(self, scheduler: Scheduler, send: Send,
                 drift_tolerance: float = DRIFT_TOLERANCE,
                 guard_window: float = REMOTE_GUARD_WINDOW,
                 poll_interval: float = SEEK_POLL_INTERVAL,
                 seek_threshold: float = SEEK_DETECT_THRESHOLD,
                 debounce: float = STATE_DEBOUNCE):
        self.scheduler = scheduler
        self.send = send
        self.drift_tolerance = drift_tolerance
        self.guard_window = guard_window
        self.poll_interval = poll_interval
        self.seek_threshold = seek_threshold
        self.debounce = debounce

        self.player: Optional[Player] = None
        self.last_applied_seq = 0
        self.remote_update = False
        self._pending: Optional[VideoState] = None
        self._last_sample = 0.0
        self._guard_timer: Optional[TimerHandle] = None
        self._play_timer: Optional[TimerHandle] = None
        self._pause_timer: Optional[TimerHandle] = None
        self._poll_timer: Optional[TimerHandle] = None

    # ============== Remote -> local ==============

    def attach(self, player: Player):
        """Player became ready; apply whatever arrived before it was."""
        self.player = player
        pending, self._pending = self._pending, None
        if pending is not None:
            self.apply_state(pending)

    def reset(self):
        """New video loaded: the next broadcast starts a fresh timeline."""
        self._last_sample = 0.0
        self._cancel_debounce()

    def apply_state(self, state: VideoState) -> bool:
        if state.seq <= self.last_applied_seq:
            logger.debug(f"Dropping stale state seq={state.seq} (applied {self.last_applied_seq})")
            return False

        if self.player is None:
            if self._pending is None or state.seq > self._pending.seq:
                self._pending = state
            return False

        self.last_applied_seq = state.seq
        self._enter_guard()

        target = target_position(state, self.scheduler.now())
        player = self.player

        if abs(player.get_current_time() - target) > self.drift_tolerance:
            player.seek_to(target)
            # Our own correction is not a user seek
            self._last_sample = target

        if state.is_playing and not player.is_playing():
            player.play()
        elif not state.is_playing and player.is_playing():
            player.pause()

        if player.get_playback_rate() != state.playback_rate:
            player.set_playback_rate(state.playback_rate)

        return True

    def _enter_guard(self):
        if self._guard_timer:
            self._guard_timer.cancel()
        self.remote_update = True
        self._guard_timer = self.scheduler.call_later(self.guard_window, self._exit_guard)

    def _exit_guard(self):
        self.remote_update = False
        self._guard_timer = None

    # ============== Local -> remote ==============

    def on_player_state(self, state: str):
        """Feed a local player state change: "playing", "paused" or "ended"."""
        if self.remote_update or self.player is None:
            return

        position = self.player.get_current_time()

        if state == "playing":
            self._cancel_debounce()
            self._play_timer = self.scheduler.call_later(
                self.debounce, lambda: self._flush("video:play", position))
        elif state == "paused":
            self._cancel_debounce()
            self._pause_timer = self.scheduler.call_later(
                self.debounce, lambda: self._flush("video:pause", position))
        elif state == "ended":
            self.send("video:ended", {})

    def _flush(self, event: str, position: float):
        if event == "video:play":
            self._play_timer = None
        else:
            self._pause_timer = None
        self.send(event, {"currentTime": position})

    def _cancel_debounce(self):
        for timer in (self._play_timer, self._pause_timer):
            if timer:
                timer.cancel()
        self._play_timer = None
        self._pause_timer = None

    # ============== Seek detector ==============

    def poll(self):
        """One seek-detector tick.

        The player has no manual-seek event, so a position jump between polls
        that normal playback cannot explain is reported as a seek.
        """
        if self.player is None:
            return

        current = self.player.get_current_time()
        previous = self._last_sample
        self._last_sample = current

        if self.remote_update:
            return

        expected = self.poll_interval * self.player.get_playback_rate() if self.player.is_playing() else 0.0
        if previous > 0 and abs(current - previous - expected) > self.seek_threshold:
            logger.debug(f"Seek detected {previous:.1f} -> {current:.1f}")
            self.send("video:seek", {"currentTime": current})

    def start(self):
        self.stop()
        self._poll_timer = self.scheduler.call_later(self.poll_interval, self._tick)

    def _tick(self):
        self.poll()
        self._poll_timer = self.scheduler.call_later(self.poll_interval, self._tick)

    def stop(self):
        if self._poll_timer:
            self._poll_timer.cancel()
            self._poll_timer = None
        self._cancel_debounce()
