"""Tests for recommendations.RecommendationClient tier fallback."""

import random

import requests

from conftest import FakeResponse, FakeSession, make_track, search_item
from recommendations import RecommendationClient, dedupe_tracks

BASE = "http://player.test"


def related(*ids):
    return [{"videoId": i, "title": f"Related {i}", "artist": "Someone",
             "thumbnail": "", "addedAt": "2024-01-01T00:00:00+00:00"} for i in ids]


def client(routes, seed=7):
    session = FakeSession(routes)
    return RecommendationClient(BASE, session=session, rng=random.Random(seed)), session


def tier_order(session):
    order = []
    for url in session.urls():
        for name in ("/api/recommendations", "/api/search", "/api/trending"):
            if url.endswith(name):
                order.append(name)
    return order


def test_current_track_tier_wins():
    c, session = client({
        "/api/recommendations": FakeResponse(related("r1", "r2")),
        "/api/search": FakeResponse([search_item("s1")]),
    })
    result = c.get_recommendations(make_track("seed"), [make_track("old")], limit=10)
    assert [t.id for t in result] == ["r1", "r2"]
    assert tier_order(session) == ["/api/recommendations"]
    _, _, params, _ = session.calls[0]
    assert params["videoId"] == "seed"
    assert params["title"] == "Song seed"
    assert params["artist"] == "Artist"


def test_falls_back_to_recent_artist_then_trending():
    c, session = client({
        "/api/recommendations": FakeResponse([]),
        "/api/search": FakeResponse([]),
        "/api/trending": FakeResponse([search_item("t1"), search_item("t2")]),
    })
    result = c.get_recommendations(make_track("seed"), [make_track("old")], limit=10)
    assert [t.id for t in result] == ["t1", "t2"]
    assert tier_order(session) == ["/api/recommendations", "/api/search", "/api/trending"]


def test_trending_skipped_when_artist_search_succeeds():
    c, session = client({
        "/api/recommendations": FakeResponse([]),
        "/api/search": FakeResponse([search_item("s1", channel="Band")]),
        "/api/trending": FakeResponse([search_item("t1")]),
    })
    result = c.get_recommendations(make_track("seed"), [make_track("old", artist="Band")])
    assert [t.id for t in result] == ["s1"]
    assert result[0].artist == "Band"
    assert tier_order(session) == ["/api/recommendations", "/api/search"]


def test_artist_query_uses_history_artist():
    c, session = client({
        "/api/search": FakeResponse([search_item("s1")]),
    })
    c.get_recommendations(None, [make_track("a", artist="Daft Punk"), make_track("b", artist="Daft Punk")])
    _, _, params, _ = session.calls[0]
    assert params == {"q": "Daft Punk music", "type": "video"}


def test_artist_choice_is_seedable():
    recent = [make_track(str(i), artist=f"Artist {i}") for i in range(6)]
    picks = []
    for _ in range(2):
        c, session = client({"/api/search": FakeResponse([])}, seed=3)
        c.from_recent_artist(recent, 5)
        picks.append(session.calls[0][2]["q"])
    assert picks[0] == picks[1]


def test_network_errors_move_to_next_tier():
    c, session = client({
        "/api/recommendations": requests.ConnectionError("down"),
        "/api/search": FakeResponse(None, text="<html>"),
        "/api/trending": FakeResponse([search_item("t1")]),
    })
    result = c.get_recommendations(make_track("seed"), [make_track("old")])
    assert [t.id for t in result] == ["t1"]
    assert tier_order(session) == ["/api/recommendations", "/api/search", "/api/trending"]


def test_everything_failing_returns_empty_list():
    c, _ = client({"/api/": FakeResponse({"error": "x"}, status_code=500)})
    assert c.get_recommendations(make_track("seed"), [make_track("old")]) == []


def test_no_seed_and_no_history_goes_straight_to_trending():
    c, session = client({"/api/trending": FakeResponse([search_item("t1")])})
    assert [t.id for t in c.get_recommendations()] == ["t1"]
    assert tier_order(session) == ["/api/trending"]


def test_results_are_deduped_and_truncated():
    c, _ = client({"/api/recommendations": FakeResponse(related("a", "b", "a", "c", "d"))})
    result = c.get_recommendations(make_track("seed"), limit=3)
    assert [t.id for t in result] == ["a", "b", "c"]


def test_non_video_search_items_are_skipped():
    channel = {"id": {"channelId": "UC1"}, "snippet": {"title": "chan"}}
    c, _ = client({"/api/trending": FakeResponse([channel, search_item("v1")])})
    assert [t.id for t in c.get_recommendations()] == ["v1"]


def test_dedupe_keeps_first_occurrence():
    first = make_track("x", title="first")
    second = make_track("x", title="second")
    assert dedupe_tracks([first, make_track("y"), second])[0].title == "first"
