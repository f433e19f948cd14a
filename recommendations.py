import logging
import random
from typing import Any, Dict, Iterable, List, Optional

import requests

from config import HTTP_TIMEOUT
from data_models import Track

logger = logging.getLogger(__name__)

TIER_ERRORS = (requests.exceptions.RequestException, ValueError, KeyError, TypeError, AttributeError)


class RecommendationClient:
    """Fetches tracks to refill the queue, falling back through three tiers.

    1. videos related to the current track
    2. a search for one of the recently played artists
    3. trending music

    A tier runs only when the previous one came back empty. Errors inside a
    tier count as an empty result, so `get_recommendations` never raises.
    """

    def __init__(self, base_url: str, session=None, rng: Optional[random.Random] = None,
                 timeout: float = HTTP_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.rng = rng or random.Random()
        self.timeout = timeout

    def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        response = self.session.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def from_current_track(self, track: Track, limit: int) -> List[Track]:
        data = self._get_json("/api/recommendations", {
            "videoId": track.id,
            "title": track.title,
            "artist": track.artist,
            "limit": limit,
        })
        if isinstance(data, dict):
            data = data.get("items", [])
        return [Track.from_dict(item) for item in data if item.get("videoId")]

    def from_recent_artist(self, recent_tracks: List[Track], limit: int) -> List[Track]:
        artists = list(dict.fromkeys(t.artist for t in recent_tracks if t.artist))
        if not artists:
            return []
        artist = self.rng.choice(artists)
        logger.info(f"Looking for recommendations by recent artist {artist}")
        data = self._get_json("/api/search", {"q": f"{artist} music", "type": "video"})
        return _search_items_to_tracks(data)

    def trending(self, limit: int) -> List[Track]:
        return _search_items_to_tracks(self._get_json("/api/trending", {"limit": limit}))

    def get_recommendations(self, current_track: Optional[Track] = None,
                            recent_tracks: Optional[List[Track]] = None,
                            limit: int = 10) -> List[Track]:
        recent_tracks = list(recent_tracks or [])
        tiers = []
        if current_track is not None:
            tiers.append(("current track", lambda: self.from_current_track(current_track, limit)))
        if recent_tracks:
            tiers.append(("recent artist", lambda: self.from_recent_artist(recent_tracks, limit)))
        tiers.append(("trending", lambda: self.trending(limit)))

        recommendations: List[Track] = []
        for name, fetch in tiers:
            try:
                recommendations = fetch()
            except TIER_ERRORS as e:
                logger.error(f"Error getting recommendations from {name}: {e}")
                recommendations = []
            if recommendations:
                logger.info(f"Got {len(recommendations)} recommendations from {name}")
                break

        return dedupe_tracks(recommendations)[:max(limit, 0)]


def _search_items_to_tracks(items: Iterable[Dict[str, Any]]) -> List[Track]:
    tracks = []
    for item in items:
        try:
            tracks.append(Track.from_search_item(item))
        except ValueError:
            # playlists and channels have no video id
            continue
    return tracks


def dedupe_tracks(tracks: Iterable[Track]) -> List[Track]:
    seen = set()
    unique = []
    for track in tracks:
        if track.id in seen:
            continue
        seen.add(track.id)
        unique.append(track)
    return unique
