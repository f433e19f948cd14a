"""Tests for media_driver: browser command queue and PlayerBridge event handling."""

from conftest import DeferredSpawner, StubRecommender, make_track, run_now
from media_driver import BrowserMediaDriver, PlayerBridge
from player_engine import RECOMMENDATIONS_ERROR, PlayerEngine


class FakeTimer:
    created = []

    def __init__(self, interval, function, args=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.started = False
        self.cancelled = False
        self.daemon = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function(*self.args)


def build(recommender=None, engine_spawn=None, bridge_spawn=None):
    FakeTimer.created = []
    engine = PlayerEngine(recommender or StubRecommender(), spawn=engine_spawn or DeferredSpawner())
    driver = BrowserMediaDriver()
    bridge = PlayerBridge(engine, driver, spawn=bridge_spawn or DeferredSpawner(), timer_factory=FakeTimer)
    return engine, driver, bridge


class TestBrowserMediaDriver:
    def test_commands_are_drained_in_order(self):
        driver = BrowserMediaDriver()
        driver.load("abc")
        driver.play()
        driver.seek_to(12)
        driver.set_volume(0.5)
        commands = driver.drain()
        assert [c["command"] for c in commands] == ["load", "play", "seekTo", "setVolume"]
        assert commands[2]["seconds"] == 12.0
        assert commands[3]["volume"] == 50
        assert driver.drain() == []

    def test_load_drops_commands_for_previous_video(self):
        driver = BrowserMediaDriver()
        driver.load("old")
        driver.seek_to(30)
        driver.set_volume(1)
        driver.load("new")
        assert [c["command"] for c in driver.drain()] == ["setVolume", "load"]
        assert driver.video_id == "new"
        assert driver.get_current_time() == 0.0


class TestTrackChanges:
    def test_track_change_loads_video(self):
        engine, driver, _ = build()
        engine.set_current_track(make_track("a"))
        commands = driver.drain()
        assert commands[0] == {"command": "load", "videoId": "a", "seq": commands[0]["seq"]}
        assert commands[1]["command"] == "setVolume"

    def test_clearing_playback_pauses(self):
        engine, driver, _ = build()
        engine.set_current_track(make_track("a"))
        driver.drain()
        engine.clear_queue()
        assert [c["command"] for c in driver.drain()] == ["pause"]


class TestEvents:
    def test_progress_and_duration(self):
        engine, driver, bridge = build()
        engine.set_current_track(make_track("a"))
        assert bridge.handle_event({"type": "playing", "videoId": "a", "duration": 200, "time": 0})
        assert bridge.handle_event({"type": "progress", "videoId": "a", "time": 42.5, "duration": 200})
        assert engine.duration == 200
        assert engine.progress == 42.5
        assert driver.get_current_time() == 42.5
        assert engine.is_playing

    def test_ticks_from_before_a_seek_do_not_revert_progress(self):
        engine, driver, bridge = build()
        engine.set_current_track(make_track("a"))
        bridge.handle_event({"type": "playing", "videoId": "a", "time": 5, "duration": 300})
        engine.seek_to(120)
        assert driver.drain()[-1] == {"command": "seekTo", "seconds": 120.0, "seq": driver._seq}
        bridge.handle_event({"type": "progress", "videoId": "a", "time": 6, "duration": 300})
        assert engine.progress == 120
        assert engine.is_seeking
        bridge.handle_event({"type": "progress", "videoId": "a", "time": 121, "duration": 300})
        assert engine.progress == 121
        assert not engine.is_seeking

    def test_playing_event_ends_a_seek(self):
        engine, _, bridge = build()
        engine.set_current_track(make_track("a"))
        engine.seek_to(0)
        bridge.handle_event({"type": "playing", "videoId": "a"})
        assert not engine.is_seeking

    def test_events_for_stale_video_are_ignored(self):
        engine, _, bridge = build()
        engine.set_current_track(make_track("a"))
        assert not bridge.handle_event({"type": "progress", "videoId": "old", "time": 99})
        assert engine.progress == 0

    def test_unknown_event(self):
        _, _, bridge = build()
        assert not bridge.handle_event({"type": "exploded"})

    def test_error_stops_playback(self):
        engine, _, bridge = build()
        engine.set_current_track(make_track("a"))
        bridge.handle_event({"type": "error", "videoId": "a", "message": "150"})
        assert not engine.is_playing
        assert engine.current_track.id == "a"

    def test_paused(self):
        engine, _, bridge = build()
        engine.set_current_track(make_track("a"))
        bridge.handle_event({"type": "paused", "videoId": "a"})
        assert not engine.is_playing


class TestEnded:
    def test_ended_advances_once(self):
        engine, _, bridge = build()
        engine.set_queue([make_track("b"), make_track("c"), make_track("d"), make_track("e")])
        engine.set_current_track(make_track("a"))
        assert bridge.handle_event({"type": "ended", "videoId": "a"})
        assert engine.current_track.id == "b"
        # a second "ended" for the old video arrives late
        assert not bridge.handle_event({"type": "ended", "videoId": "a"})
        assert engine.current_track.id == "b"
        assert [t.id for t in engine.queue] == ["c", "d", "e"]

    def test_ended_after_manual_skip_is_dropped(self):
        engine, _, bridge = build()
        engine.set_queue([make_track("b"), make_track("c"), make_track("d"), make_track("e")])
        engine.set_current_track(make_track("a"))
        bridge.skip()
        assert engine.current_track.id == "b"
        assert not bridge.on_ended("a")
        assert engine.current_track.id == "b"

    def test_ended_while_handling_is_dropped(self):
        engine, _, bridge = build()
        engine.set_current_track(make_track("a"))
        bridge._end_lock.acquire()
        try:
            assert not bridge.on_ended("a")
        finally:
            bridge._end_lock.release()

    def test_repeat_restarts_track(self):
        engine, driver, bridge = build()
        engine.set_queue([make_track("b"), make_track("c"), make_track("d")])
        engine.set_current_track(make_track("a"))
        engine.toggle_repeat()
        driver.drain()
        assert bridge.on_ended("a")
        assert engine.current_track.id == "a"
        assert [c["command"] for c in driver.drain()] == ["seekTo", "play"]
        # the restarted track plays and can end again
        bridge.handle_event({"type": "playing", "videoId": "a"})
        assert bridge.on_ended("a")

    def test_end_of_queue_stops(self):
        engine, _, bridge = build()
        engine.set_autoplay_enabled(False)
        engine.set_current_track(make_track("a"))
        bridge.on_ended("a")
        assert engine.current_track is None
        assert not engine.is_playing


class TestPreload:
    def test_preload_runs_once_per_track(self):
        recommender = StubRecommender(results=[make_track("r1")])
        engine, _, bridge = build(recommender, engine_spawn=DeferredSpawner(), bridge_spawn=run_now)
        engine.set_queue([make_track(c) for c in "xyz"])
        engine.set_current_track(make_track("a"))
        assert len(recommender.calls) == 1
        assert [t.id for t in engine.queue][-1] == "r1"

    def test_failed_preload_retries_twice(self):
        recommender = StubRecommender(error=RuntimeError("offline"))
        engine, _, bridge = build(recommender, engine_spawn=DeferredSpawner(), bridge_spawn=run_now)
        engine.set_queue([make_track(c) for c in "xyz"])
        engine.set_current_track(make_track("a"))
        assert len(FakeTimer.created) == 1
        assert FakeTimer.created[0].interval == 5.0
        FakeTimer.created[0].fire()
        FakeTimer.created[1].fire()
        assert len(FakeTimer.created) == 2
        assert len(recommender.calls) == 3

    def test_no_retry_while_another_fetch_is_in_flight(self):
        recommender = StubRecommender(error=RuntimeError("offline"))
        engine, _, bridge = build(recommender)
        engine.set_queue([make_track(c) for c in "xyz"])
        engine.set_current_track(make_track("a"))
        engine._inflight = 99
        engine.recommendations_error = RECOMMENDATIONS_ERROR
        bridge._preload(engine.generation)
        assert FakeTimer.created == []
        assert recommender.calls == []

    def test_retry_for_old_track_is_skipped(self):
        recommender = StubRecommender(error=RuntimeError("offline"))
        engine, _, bridge = build(recommender, engine_spawn=DeferredSpawner(), bridge_spawn=run_now)
        engine.set_queue([make_track(c) for c in "xyz"])
        engine.set_current_track(make_track("a"))
        first_timer = FakeTimer.created[0]
        engine.set_current_track(make_track("b"))
        assert first_timer.cancelled
        calls = len(recommender.calls)
        first_timer.fire()
        assert len(recommender.calls) == calls
