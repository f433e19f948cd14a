"""Server-side YouTube lookups: search, related videos and trending music.

The Data API is preferred when a key is configured. Every call site falls
back to keyless sources (the results page, or yt-dlp for related videos) so
an exhausted quota degrades the results instead of failing the request.
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
import yt_dlp

from config import (
    HTTP_TIMEOUT,
    SEARCH_CACHE_SECONDS,
    SEARCH_MAX_RESULTS,
    SEARCH_MIN_INTERVAL_SECONDS,
    YOUTUBE_API_URL,
)
from data_models import utcnow
from utils import perform_youtube_search, thumbnail_url

logger = logging.getLogger(__name__)

MUSIC_CATEGORY_ID = "10"
AUTH_FAILURE_CODES = (400, 401, 403)
ID_FIELDS = {"video": "videoId", "playlist": "playlistId", "channel": "channelId"}


class SearchError(Exception):
    status_code = 500


class SearchNotFound(SearchError):
    status_code = 404


class UpstreamAuthError(SearchError):
    """The Data API rejected the key or the quota is spent."""

    def __init__(self, status: int, message: str = ""):
        super().__init__(message or f"YouTube API returned {status}")
        self.status = status


CacheKey = Tuple[Any, ...]


class SearchService:
    def __init__(
        self,
        api_key: str = "",
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        cache_seconds: float = SEARCH_CACHE_SECONDS,
        min_interval: float = SEARCH_MIN_INTERVAL_SECONDS,
    ):
        self.api_key = api_key
        self.session = session or requests.Session()
        self._clock = clock
        self._sleep = sleep
        self.cache_seconds = cache_seconds
        self.min_interval = min_interval
        self._cache: Dict[CacheKey, Tuple[float, List[Dict[str, Any]]]] = {}
        self._cache_lock = threading.Lock()
        self._rate_lock = threading.Lock()
        self._last_request = None

    # --- cache ---
    def _cache_get(self, key: CacheKey) -> Optional[Tuple[float, List[Dict[str, Any]]]]:
        with self._cache_lock:
            return self._cache.get(key)

    def _cache_put(self, key: CacheKey, data: List[Dict[str, Any]]) -> None:
        with self._cache_lock:
            self._cache[key] = (self._clock(), data)

    def _is_fresh(self, entry) -> bool:
        return entry is not None and self._clock() - entry[0] < self.cache_seconds

    # --- upstream ---
    def _wait_for_slot(self) -> None:
        with self._rate_lock:
            now = self._clock()
            if self._last_request is not None:
                wait = self.min_interval - (now - self._last_request)
                if wait > 0:
                    self._sleep(wait)
            self._last_request = self._clock()

    def _api_get(self, resource: str, params: Dict[str, Any]) -> Dict[str, Any]:
        self._wait_for_slot()
        params = dict(params, key=self.api_key)
        response = self.session.get(f"{YOUTUBE_API_URL}/{resource}", params=params, timeout=HTTP_TIMEOUT)
        if response.status_code in AUTH_FAILURE_CODES:
            raise UpstreamAuthError(response.status_code)
        response.raise_for_status()
        return response.json()

    def _scrape(self, query: str, limit: int = SEARCH_MAX_RESULTS) -> List[Dict[str, Any]]:
        return perform_youtube_search(query, session=self.session, limit=limit)

    def _api_search(self, query, type, duration, sort_by, limit=SEARCH_MAX_RESULTS):
        params = {
            "part": "snippet",
            "q": query,
            "maxResults": limit,
            "type": type,
            "regionCode": "US",
            "safeSearch": "none",
        }
        if type == "video":
            params.update({
                "videoEmbeddable": "true",
                "videoSyndicated": "true",
                "videoCategoryId": MUSIC_CATEGORY_ID,
                "videoType": "any",
            })
            if duration and duration != "any":
                params["videoDuration"] = duration
            if sort_by and sort_by != "relevance":
                params["order"] = sort_by

        data = self._api_get("search", params)
        id_field = ID_FIELDS.get(type, "videoId")
        items = []
        for item in data.get("items") or []:
            snippet = item.get("snippet") or {}
            thumb = snippet.get("thumbnails", {}).get("medium", {}).get("url")
            title = snippet.get("title")
            if not (item.get("id") or {}).get(id_field) or not thumb:
                continue
            if not title or "\\" in title:
                continue
            items.append({
                "id": item["id"],
                "snippet": {
                    "title": title,
                    "channelTitle": snippet.get("channelTitle", ""),
                    "thumbnails": {"medium": {"url": thumb}},
                },
            })
        return items

    # --- public ---
    def search(self, query: str, type: str = "video", duration=None, sort_by=None) -> List[Dict[str, Any]]:
        query = (query or "").strip()
        if not query:
            raise SearchError("Query parameter is required")

        key = (query, type, duration, sort_by)
        cached = self._cache_get(key)
        if self._is_fresh(cached):
            logger.info(f"Returning cached result for: {query}")
            return cached[1]

        if not self.api_key:
            logger.info("No API key configured, using YouTube scraping")
            return self._store_or_fail(key, self._scrape(query))

        try:
            logger.info(f'Searching YouTube for: "{query}" (type: {type})')
            items = self._api_search(query, type, duration, sort_by)
            if not items:
                raise SearchNotFound("No results found")
            self._cache_put(key, items)
            return items
        except UpstreamAuthError as e:
            logger.warning(f"YouTube API error {e.status}, falling back to scraping")
            scraped = self._scrape(query)
            if scraped:
                self._cache_put(key, scraped)
                return scraped
        except (requests.RequestException, ValueError, SearchNotFound) as e:
            logger.error(f"YouTube API error: {e}")

        if cached is not None:
            logger.info("Returning stale cached results")
            return cached[1]

        logger.info("Trying scraping as a last resort")
        return self._store_or_fail(key, self._scrape(query))

    def _store_or_fail(self, key: CacheKey, results: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not results:
            raise SearchNotFound("No results found")
        self._cache_put(key, results)
        return results

    def related(self, video_id: str, title: str, artist: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Tracks related to a seed video, the seed itself excluded."""
        query = f"{title} {artist}".strip()
        tracks: List[Dict[str, Any]] = []
        if self.api_key:
            try:
                data = self._api_get("search", {
                    "part": "snippet",
                    "maxResults": limit,
                    "type": "video",
                    "q": query,
                    "videoCategoryId": MUSIC_CATEGORY_ID,
                })
                for item in data.get("items") or []:
                    vid = (item.get("id") or {}).get("videoId")
                    snippet = item.get("snippet") or {}
                    if not vid or vid == video_id:
                        continue
                    tracks.append(_track_dict(
                        vid,
                        snippet.get("title", ""),
                        snippet.get("channelTitle", ""),
                        snippet.get("thumbnails", {}).get("default", {}).get("url") or thumbnail_url(vid),
                    ))
                return tracks[:limit]
            except (SearchError, requests.RequestException, ValueError) as e:
                logger.warning(f"Related search through the API failed: {e}")

        return [t for t in self._ytdlp_search(query, limit + 1) if t["videoId"] != video_id][:limit]

    def _ytdlp_search(self, query: str, limit: int) -> List[Dict[str, Any]]:
        ydl_opts = {
            "quiet": True,
            "skip_download": True,
            "extract_flat": "in_playlist",
            "noplaylist": True,
        }
        try:
            with yt_dlp.YoutubeDL(ydl_opts) as ydl:
                info = ydl.extract_info(f"ytsearch{limit}:{query}", download=False)
        except yt_dlp.utils.DownloadError as e:
            logger.error(f"yt-dlp search failed: {e}")
            return []
        tracks = []
        for entry in (info or {}).get("entries") or []:
            vid = entry.get("id")
            if not vid:
                continue
            tracks.append(_track_dict(
                vid,
                entry.get("title") or "",
                entry.get("channel") or entry.get("uploader") or "",
                thumbnail_url(vid),
            ))
        return tracks

    def trending(self, limit: int = SEARCH_MAX_RESULTS) -> List[Dict[str, Any]]:
        key = ("__trending__", limit)
        cached = self._cache_get(key)
        if self._is_fresh(cached):
            return cached[1]

        items: List[Dict[str, Any]] = []
        if self.api_key:
            try:
                data = self._api_get("videos", {
                    "part": "snippet",
                    "chart": "mostPopular",
                    "videoCategoryId": MUSIC_CATEGORY_ID,
                    "regionCode": "US",
                    "maxResults": limit,
                })
                for item in data.get("items") or []:
                    snippet = item.get("snippet") or {}
                    vid = item.get("id")
                    if not vid:
                        continue
                    items.append({
                        "id": {"videoId": vid},
                        "snippet": {
                            "title": snippet.get("title", ""),
                            "channelTitle": snippet.get("channelTitle", ""),
                            "thumbnails": {"medium": {"url": thumbnail_url(vid)}},
                        },
                    })
            except (SearchError, requests.RequestException, ValueError) as e:
                logger.warning(f"Trending through the API failed: {e}")

        if not items:
            items = self._scrape("trending music", limit)
        if items:
            self._cache_put(key, items)
        elif cached is not None:
            return cached[1]
        return items


def _track_dict(video_id: str, title: str, artist: str, thumbnail: str) -> Dict[str, Any]:
    return {
        "videoId": video_id,
        "title": title,
        "artist": artist,
        "thumbnail": thumbnail,
        "addedAt": utcnow().isoformat(),
    }
