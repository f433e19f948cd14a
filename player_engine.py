"""Queue and playback state for the player.

`PlayerEngine` owns the current track, the upcoming queue, the recently
played history and the shuffle/repeat/autoplay flags. When the queue runs
low it asks the recommendation client for more tracks on a background
worker and merges whatever survives the de-duplication filters.

Invalid queue operations never raise to the caller. Internally they are
`QueueError`s so the reason can be logged and tested; the public methods
turn them into a False return value.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from data_models import (
    MAX_QUEUE_SIZE,
    MAX_RECENTLY_PLAYED,
    MIN_QUEUE_SIZE,
    Track,
)

logger = logging.getLogger(__name__)

RESTART_THRESHOLD_SECONDS = 3
SEEK_TOLERANCE_SECONDS = 2
RECOMMENDATIONS_ERROR = "Failed to load recommendations"


class QueueError(Exception):
    pass


class QueueIndexError(QueueError):
    pass


class TrackNotFoundError(QueueError):
    pass


class QueueFullError(QueueError):
    pass


class DuplicateTrackError(QueueError):
    pass


@dataclass
class RecommendationRequest:
    token: int
    generation: int
    current_track: Optional[Track]
    recent_tracks: List[Track]
    limit: int


def start_daemon(fn: Callable, *args) -> None:
    threading.Thread(target=fn, args=args, daemon=True).start()


class PlayerEngine:
    def __init__(self, recommender, local_state=None, spawn: Callable = start_daemon,
                 discard_stale: bool = False):
        self.recommender = recommender
        self.local_state = local_state
        self.discard_stale = discard_stale
        self.driver = None
        self._spawn = spawn
        self._lock = threading.RLock()
        self._listeners: List[Callable[[Optional[Track]], None]] = []

        self.current_track: Optional[Track] = None
        self.current_track_index = 0
        self.queue: List[Track] = []
        self.recently_played: List[Track] = (
            local_state.load_recently_played() if local_state is not None else []
        )
        self.is_playing = False
        self.volume = 1.0
        self.progress = 0.0
        self.duration = 0.0
        self.is_seeking = False
        self._seek_target: Optional[float] = None
        self.is_shuffling = False
        self.is_repeating = False
        self.is_autoplay_enabled = True
        self.recommendations_error: Optional[str] = None

        # bumped whenever the current track is (re)set
        self.generation = 0
        self._request_counter = 0
        self._inflight: Optional[int] = None

    # --- plumbing ---
    def attach_driver(self, driver) -> None:
        self.driver = driver

    def add_track_listener(self, listener: Callable[[Optional[Track]], None]) -> None:
        """Call `listener(track)` after every change of the current track."""
        self._listeners.append(listener)

    @property
    def is_loading_recommendations(self) -> bool:
        return self._inflight is not None

    @contextmanager
    def _mutation(self):
        with self._lock:
            before = self.generation
            yield
            changed = self.generation != before
            track = self.current_track
        if changed:
            for listener in list(self._listeners):
                listener(track)

    def _replenish(self, request: Optional[RecommendationRequest]) -> None:
        if request is not None:
            self._spawn(self._run_recommendations, request)

    def _needs_replenishment(self) -> bool:
        return self.is_autoplay_enabled and len(self.queue) < MIN_QUEUE_SIZE

    def _index_of(self, track_id: str) -> int:
        for i, t in enumerate(self.queue):
            if t.id == track_id:
                return i
        return -1

    def _set_current(self, track: Optional[Track], playing: bool) -> None:
        self.current_track = track
        self.is_playing = playing and track is not None
        self.progress = 0.0
        self.duration = 0.0
        self.is_seeking = False
        self._seek_target = None
        self.generation += 1

    def _push_history(self, track: Optional[Track]) -> None:
        if track is None:
            return
        if self.recently_played and self.recently_played[0].id == track.id:
            return
        history = [track] + [t for t in self.recently_played if t.id != track.id]
        self.recently_played = history[:MAX_RECENTLY_PLAYED]
        if self.local_state is not None:
            self.local_state.save_recently_played(self.recently_played)

    # --- checked operations ---
    def _checked_index(self, index: int) -> Track:
        if not 0 <= index < len(self.queue):
            raise QueueIndexError(f"index {index} outside queue of {len(self.queue)}")
        return self.queue[index]

    def _checked_append(self, track: Track) -> None:
        if self._index_of(track.id) >= 0:
            raise DuplicateTrackError(track.id)
        if len(self.queue) >= MAX_QUEUE_SIZE:
            raise QueueFullError(track.id)
        self.queue.append(track)

    def _checked_remove(self, track_id: str) -> None:
        remaining = [t for t in self.queue if t.id != track_id]
        if len(remaining) == len(self.queue):
            raise TrackNotFoundError(track_id)
        self.queue = remaining
        if self.current_track_index >= len(self.queue):
            self.current_track_index = max(0, len(self.queue) - 1)

    def _checked_move(self, from_index: int, to_index: int) -> None:
        if from_index == to_index:
            raise QueueIndexError("source and destination are the same")
        self._checked_index(from_index)
        self._checked_index(to_index)

        moved = self.queue.pop(from_index)
        self.queue.insert(to_index, moved)

        cursor = self.current_track_index
        if from_index == cursor:
            cursor = to_index
        elif from_index < cursor <= to_index:
            cursor -= 1
        elif to_index <= cursor < from_index:
            cursor += 1
        self.current_track_index = cursor

    # --- track control ---
    def set_current_track(self, track: Optional[Track], enqueue: bool = False) -> None:
        request = None
        with self._mutation():
            if track is None:
                self._set_current(None, playing=False)
                return

            self._push_history(self.current_track)

            if enqueue and self._index_of(track.id) < 0:
                try:
                    self._checked_append(track)
                except QueueFullError:
                    logger.debug(f"Queue full, playing {track.id} without queueing it")
                else:
                    self.current_track_index = len(self.queue) - 1
                    self._set_current(track, playing=True)
                    return

            self._set_current(track, playing=True)
            if self._needs_replenishment():
                request = self._begin_recommendations()
        self._replenish(request)

    def set_current_track_index(self, index: int) -> bool:
        with self._mutation():
            try:
                track = self._checked_index(index)
            except QueueError as e:
                logger.debug(f"Ignoring set_current_track_index: {e}")
                return False
            self._push_history(self.current_track)
            self.current_track_index = index
            self._set_current(track, playing=True)
            self._push_history(track)
        return True

    def play_next(self) -> None:
        request = None
        with self._mutation():
            if self.queue:
                next_track = self.queue.pop(0)
                self._push_history(self.current_track)
                self._set_current(next_track, playing=True)
                self._push_history(next_track)
                if self._needs_replenishment():
                    request = self._begin_recommendations()
            elif self.is_repeating:
                if self.current_track is not None:
                    track = self.current_track
                    self._push_history(track)
                    self._set_current(track, playing=True)
                    if self._needs_replenishment():
                        request = self._begin_recommendations()
            else:
                self._set_current(None, playing=False)
                if self.is_autoplay_enabled:
                    request = self._begin_recommendations()
        self._replenish(request)

    def play_previous(self) -> None:
        with self._lock:
            if not self.queue:
                return
            if self.progress > RESTART_THRESHOLD_SECONDS:
                self._restart()
                return
            prev_index = self.current_track_index - 1
            if prev_index < 0:
                if not self.is_repeating:
                    self._restart()
                    return
                prev_index = len(self.queue) - 1
        self.set_current_track_index(prev_index)

    def _restart(self) -> None:
        self.progress = 0.0
        if self.driver is not None:
            self.driver.seek_to(0)

    # --- queue management ---
    def add_to_queue(self, track: Track) -> bool:
        with self._lock:
            try:
                self._checked_append(track)
            except QueueError as e:
                logger.debug(f"Not queueing {track.id}: {type(e).__name__}")
                return False
        return True

    def remove_from_queue(self, track_id: str) -> bool:
        with self._lock:
            try:
                self._checked_remove(track_id)
            except QueueError as e:
                logger.debug(f"Ignoring remove_from_queue: {type(e).__name__} {e}")
                return False
        return True

    def move_queue_item(self, from_index: int, to_index: int) -> bool:
        with self._lock:
            try:
                self._checked_move(from_index, to_index)
            except QueueError as e:
                logger.debug(f"Ignoring move_queue_item: {e}")
                return False
        return True

    def set_queue(self, tracks: List[Track]) -> None:
        with self._lock:
            self.queue = []
            for track in tracks:
                try:
                    self._checked_append(track)
                except QueueError:
                    continue
            if self.current_track_index >= len(self.queue):
                self.current_track_index = max(0, len(self.queue) - 1)

    def clear_queue(self) -> None:
        with self._mutation():
            self.queue = []
            self.current_track_index = 0
            self._set_current(None, playing=False)

    # --- history ---
    def add_to_recently_played(self, track: Track) -> None:
        with self._lock:
            self._push_history(track)

    def clear_recently_played(self) -> None:
        with self._lock:
            self.recently_played = []
            if self.local_state is not None:
                self.local_state.save_recently_played([])

    # --- transport ---
    def set_is_playing(self, is_playing: bool) -> None:
        with self._lock:
            self.is_playing = bool(is_playing) and self.current_track is not None

    def play(self) -> None:
        self.set_is_playing(True)
        if self.driver is not None and self.is_playing:
            self.driver.play()

    def pause(self) -> None:
        self.set_is_playing(False)
        if self.driver is not None:
            self.driver.pause()

    def set_volume(self, volume: float) -> None:
        with self._lock:
            self.volume = min(1.0, max(0.0, float(volume)))
        if self.driver is not None:
            self.driver.set_volume(self.volume)

    def set_duration(self, duration: float) -> None:
        with self._lock:
            self.duration = max(0.0, float(duration))
            self.progress = self._clamp_progress(self.progress)

    def set_progress(self, progress: float) -> None:
        with self._lock:
            self.progress = self._clamp_progress(progress)

    def report_progress(self, progress: float) -> bool:
        """Progress tick from the media driver; dropped while a seek is in flight.

        A tick landing near the seek target means the driver caught up, which
        ends the seek.
        """
        with self._lock:
            if self.is_seeking:
                target = self._seek_target
                if target is None or abs(float(progress) - target) > SEEK_TOLERANCE_SECONDS:
                    return False
                self.is_seeking = False
                self._seek_target = None
            self.progress = self._clamp_progress(progress)
        return True

    def _clamp_progress(self, progress: float) -> float:
        progress = max(0.0, float(progress))
        if self.duration > 0:
            progress = min(progress, self.duration)
        return progress

    def set_is_seeking(self, is_seeking: bool) -> None:
        with self._lock:
            self.is_seeking = bool(is_seeking)
            if not self.is_seeking:
                self._seek_target = None

    def seek_to(self, time: float) -> None:
        with self._lock:
            self.progress = self._clamp_progress(time)
            target = self.progress
            # ticks from before the seek must not overwrite the new position
            self.is_seeking = True
            self._seek_target = target
        if self.driver is not None:
            self.driver.seek_to(target)

    # --- modes ---
    def toggle_shuffle(self) -> bool:
        # Advisory only; the queue order is never rearranged.
        with self._lock:
            self.is_shuffling = not self.is_shuffling
            return self.is_shuffling

    def toggle_repeat(self) -> bool:
        with self._lock:
            self.is_repeating = not self.is_repeating
            return self.is_repeating

    def set_autoplay_enabled(self, enabled: bool) -> None:
        with self._lock:
            self.is_autoplay_enabled = bool(enabled)

    # --- recommendations ---
    def _begin_recommendations(self) -> Optional[RecommendationRequest]:
        """Claim the single in-flight slot. Must be called with the lock held."""
        if self._inflight is not None or not self.is_autoplay_enabled:
            return None
        self._request_counter += 1
        self._inflight = self._request_counter
        self.recommendations_error = None
        return RecommendationRequest(
            token=self._request_counter,
            generation=self.generation,
            current_track=self.current_track,
            recent_tracks=list(self.recently_played),
            limit=MAX_QUEUE_SIZE - len(self.queue),
        )

    def load_recommendations(self) -> bool:
        """Fetch recommendations and wait for them. False when nothing was started."""
        with self._lock:
            request = self._begin_recommendations()
        if request is None:
            return False
        self._run_recommendations(request)
        return True

    def _run_recommendations(self, request: RecommendationRequest) -> None:
        tracks: List[Track] = []
        failed = False
        try:
            tracks = self.recommender.get_recommendations(
                request.current_track, request.recent_tracks, limit=request.limit
            )
        except Exception:
            logger.exception("Error loading recommendations")
            failed = True
        finally:
            with self._lock:
                if self._inflight == request.token:
                    self._inflight = None
                if failed:
                    self.recommendations_error = RECOMMENDATIONS_ERROR

        if not failed:
            self._merge_recommendations(request, tracks)

    def _merge_recommendations(self, request: RecommendationRequest, tracks: List[Track]) -> int:
        with self._lock:
            if request.generation != self.generation and self.discard_stale:
                logger.info("Discarding recommendations fetched for a previous track")
                return 0
            # filters use the state as it is now, not when the request started
            excluded = {t.id for t in self.queue}
            excluded.update(t.id for t in self.recently_played)
            if self.current_track is not None:
                excluded.add(self.current_track.id)

            added = 0
            for track in tracks:
                if len(self.queue) >= MAX_QUEUE_SIZE:
                    break
                if track.id in excluded:
                    continue
                excluded.add(track.id)
                self.queue.append(track)
                added += 1
        if added:
            logger.info(f"Added {added} recommended tracks to the queue")
        return added

    # --- views ---
    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "currentTrack": self.current_track.to_dict() if self.current_track else None,
                "currentTrackIndex": self.current_track_index,
                "queue": [t.to_dict() for t in self.queue],
                "recentlyPlayed": [t.to_dict() for t in self.recently_played],
                "isPlaying": self.is_playing,
                "volume": self.volume,
                "progress": self.progress,
                "duration": self.duration,
                "isSeeking": self.is_seeking,
                "isShuffling": self.is_shuffling,
                "isRepeating": self.is_repeating,
                "isAutoPlayEnabled": self.is_autoplay_enabled,
                "isLoadingRecommendations": self.is_loading_recommendations,
                "recommendationsError": self.recommendations_error,
                "generation": self.generation,
            }
