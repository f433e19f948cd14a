"""Test configuration and fixtures."""

import sys
from pathlib import Path

import pytest
import requests

# Add repo root to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from data_models import Track  # noqa: E402


def make_track(track_id, artist="Artist", title=None):
    return Track(id=track_id, title=title or f"Song {track_id}", artist=artist,
                 thumbnail=f"https://i.ytimg.com/vi/{track_id}/mqdefault.jpg")


def search_item(video_id, title=None, channel="Channel"):
    return {
        "id": {"videoId": video_id},
        "snippet": {
            "title": title or f"Video {video_id}",
            "channelTitle": channel,
            "thumbnails": {"medium": {"url": f"https://i.ytimg.com/vi/{video_id}/mqdefault.jpg"}},
        },
    }


class FakeResponse:
    def __init__(self, payload=None, status_code=200, text=""):
        self._payload = payload
        self.status_code = status_code
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    """Routes GET/request calls to handlers keyed by URL substring."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def request(self, method, url, params=None, **kwargs):
        self.calls.append((method, url, params, kwargs.get("json")))
        for fragment, handler in self.routes.items():
            if fragment in url:
                result = handler(method, url, params, kwargs.get("json")) if callable(handler) else handler
                if isinstance(result, Exception):
                    raise result
                return result
        raise requests.ConnectionError(f"no route for {url}")

    def get(self, url, params=None, **kwargs):
        return self.request("GET", url, params=params, **kwargs)

    def urls(self):
        return [c[1] for c in self.calls]


class StubRecommender:
    def __init__(self, results=None, error=None):
        self.results = list(results or [])
        self.error = error
        self.calls = []

    def get_recommendations(self, current_track=None, recent_tracks=None, limit=10):
        self.calls.append((current_track, list(recent_tracks or []), limit))
        if self.error is not None:
            raise self.error
        return list(self.results)


class DeferredSpawner:
    """Collects background work instead of starting threads."""

    def __init__(self):
        self.pending = []

    def __call__(self, fn, *args):
        self.pending.append((fn, args))

    def run_all(self):
        while self.pending:
            fn, args = self.pending.pop(0)
            fn(*args)


def run_now(fn, *args):
    fn(*args)


@pytest.fixture()
def spawner():
    return DeferredSpawner()


@pytest.fixture()
def tracks():
    return [make_track(c) for c in "ABCDEFGH"]
