import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from config import PRELOAD_MAX_RETRIES, PRELOAD_RETRY_DELAY
from data_models import Track
from player_engine import PlayerEngine, start_daemon

logger = logging.getLogger(__name__)

EVENT_TYPES = ("ready", "playing", "paused", "ended", "error", "progress")


class MediaDriver:
    """Whatever actually renders the video. The engine only sends it commands."""

    def load(self, video_id: str) -> None:
        raise NotImplementedError

    def play(self) -> None:
        raise NotImplementedError

    def pause(self) -> None:
        raise NotImplementedError

    def seek_to(self, seconds: float) -> None:
        raise NotImplementedError

    def set_volume(self, volume: float) -> None:
        raise NotImplementedError

    def get_current_time(self) -> float:
        raise NotImplementedError

    def get_duration(self) -> float:
        raise NotImplementedError


class BrowserMediaDriver(MediaDriver):
    """Driver for the YouTube widget on the /player page.

    Commands are queued here and collected by the page when it polls
    `/api/player/commands`; the page reports back through `/api/player/event`.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._commands: List[Dict[str, Any]] = []
        self._seq = 0
        self.video_id: Optional[str] = None
        self.current_time = 0.0
        self.duration = 0.0

    def _push(self, command: str, **payload) -> None:
        with self._lock:
            self._seq += 1
            self._commands.append(dict(payload, command=command, seq=self._seq))

    def load(self, video_id: str) -> None:
        with self._lock:
            # anything queued for the previous video is moot now
            self._commands = [c for c in self._commands if c["command"] == "setVolume"]
            self.video_id = video_id
            self.current_time = 0.0
            self.duration = 0.0
        self._push("load", videoId=video_id)

    def play(self) -> None:
        self._push("play")

    def pause(self) -> None:
        self._push("pause")

    def seek_to(self, seconds: float) -> None:
        self.current_time = float(seconds)
        self._push("seekTo", seconds=float(seconds))

    def set_volume(self, volume: float) -> None:
        # the widget takes 0..100
        self._push("setVolume", volume=round(float(volume) * 100))

    def get_current_time(self) -> float:
        return self.current_time

    def get_duration(self) -> float:
        return self.duration

    def update_position(self, current_time=None, duration=None) -> None:
        if current_time is not None:
            self.current_time = float(current_time)
        if duration is not None:
            self.duration = float(duration)

    def drain(self) -> List[Dict[str, Any]]:
        with self._lock:
            commands, self._commands = self._commands, []
        return commands


class PlayerBridge:
    """Connects a media driver to the engine in both directions.

    Track changes in the engine become `load` commands; driver events become
    engine state. It also preloads recommendations for every new track,
    retrying a failed load a couple of times.
    """

    def __init__(self, engine: PlayerEngine, driver: MediaDriver,
                 spawn: Callable = start_daemon,
                 timer_factory: Callable = threading.Timer,
                 max_retries: int = PRELOAD_MAX_RETRIES,
                 retry_delay: float = PRELOAD_RETRY_DELAY):
        self.engine = engine
        self.driver = driver
        self._spawn = spawn
        self._timer_factory = timer_factory
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        self._end_lock = threading.Lock()
        self._ended_generation: Optional[int] = None
        self._retry_timer = None
        self._retries = 0
        self._preloaded_generation: Optional[int] = None

        engine.attach_driver(driver)
        engine.add_track_listener(self._on_track_change)

    # --- engine -> driver ---
    def _on_track_change(self, track: Optional[Track]) -> None:
        if track is None:
            self.driver.pause()
            return
        self.driver.load(track.id)
        self.driver.set_volume(self.engine.volume)
        self._schedule_preload(self.engine.generation)

    # --- proactive preload ---
    def _schedule_preload(self, generation: int) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None
        self._retries = 0
        self._preloaded_generation = None
        self._spawn(self._preload, generation)

    def _preload(self, generation: int) -> None:
        engine = self.engine
        if generation != engine.generation or self._preloaded_generation == generation:
            return
        if engine.current_track is None or not engine.is_autoplay_enabled:
            return

        if not engine.load_recommendations():
            # another fetch already owns the slot; its outcome is not ours to retry
            return
        if engine.recommendations_error is None:
            self._preloaded_generation = generation
            self._retries = 0
            return

        if self._retries < self.max_retries:
            self._retries += 1
            logger.warning(
                f"Failed to load recommendations, retry {self._retries}/{self.max_retries} "
                f"in {self.retry_delay}s"
            )
            self._retry_timer = self._timer_factory(self.retry_delay, self._preload, args=(generation,))
            self._retry_timer.daemon = True
            self._retry_timer.start()
        else:
            logger.info("Max retries reached for recommendations")

    # --- driver -> engine ---
    def handle_event(self, event: Dict[str, Any]) -> bool:
        kind = event.get("type")
        video_id = event.get("videoId")
        current_time = event.get("time")
        duration = event.get("duration")

        if kind not in EVENT_TYPES:
            logger.warning(f"Unknown player event: {kind!r}")
            return False
        if kind != "ended" and not self._is_current(video_id):
            logger.debug(f"Ignoring {kind} event for stale video {video_id}")
            return False

        if isinstance(self.driver, BrowserMediaDriver):
            self.driver.update_position(current_time, duration)
        if duration is not None:
            self.engine.set_duration(duration)

        if kind == "ready":
            self.driver.set_volume(self.engine.volume)
        elif kind == "playing":
            # a repeated track may end again
            self._ended_generation = None
            self.engine.set_is_seeking(False)
            self.engine.set_is_playing(True)
        elif kind == "paused":
            self.engine.set_is_playing(False)
        elif kind == "progress":
            if current_time is not None:
                self.engine.report_progress(current_time)
        elif kind == "error":
            logger.error(f"Player error on {video_id}: {event.get('message', 'unknown')}")
            self.engine.set_is_playing(False)
        elif kind == "ended":
            return self.on_ended(video_id)
        return True

    def _is_current(self, video_id: Optional[str]) -> bool:
        current = self.engine.current_track
        return video_id is None or (current is not None and current.id == video_id)

    def on_ended(self, video_id: Optional[str] = None) -> bool:
        """Advance after a track finished. Duplicate or stale end events are dropped."""
        if not self._end_lock.acquire(blocking=False):
            logger.debug("Already handling the end of a track")
            return False
        try:
            engine = self.engine
            if not self._is_current(video_id) or engine.current_track is None:
                return False
            if self._ended_generation == engine.generation:
                return False
            self._ended_generation = engine.generation

            if engine.is_repeating:
                engine.seek_to(0)
                engine.play()
                return True
            engine.play_next()
            return True
        finally:
            self._end_lock.release()

    def skip(self) -> None:
        """Manual skip; shares the end-of-track critical section."""
        with self._end_lock:
            self._ended_generation = self.engine.generation
            self.engine.play_next()
