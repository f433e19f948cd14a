import datetime
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List

MIN_QUEUE_SIZE = 3
MAX_QUEUE_SIZE = 50
MAX_RECENTLY_PLAYED = 20
MAX_SEARCH_HISTORY = 10

DEFAULT_SEARCH_FILTERS = {"type": "video", "duration": "any", "sortBy": "relevance"}


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _parse_datetime(value: Any) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        return value
    if isinstance(value, (int, float)):
        # epoch milliseconds, as browsers store them
        return datetime.datetime.fromtimestamp(value / 1000, tz=datetime.timezone.utc)
    if isinstance(value, str) and value:
        try:
            return datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return utcnow()


# --- Data Structure ---
@dataclass(frozen=True)
class Track:
    """A playable YouTube video. Two tracks are equal when their ids are."""

    id: str
    title: str = field(default="", compare=False)
    artist: str = field(default="", compare=False)
    thumbnail: str = field(default="", compare=False)
    added_at: datetime.datetime = field(default_factory=utcnow, compare=False)

    @property
    def video_id(self) -> str:
        return self.id

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Track":
        track_id = data.get("videoId") or data.get("id")
        if not track_id:
            raise ValueError("track has no video id")
        return cls(
            id=str(track_id),
            title=data.get("title") or "",
            artist=data.get("artist") or "",
            thumbnail=data.get("thumbnail") or "",
            added_at=_parse_datetime(data.get("addedAt")),
        )

    @classmethod
    def from_search_item(cls, item: Dict[str, Any]) -> "Track":
        """Map a `{id: {videoId}, snippet: {...}}` search item."""
        video_id = (item.get("id") or {}).get("videoId")
        if not video_id:
            raise ValueError("search item is not a video")
        snippet = item.get("snippet") or {}
        thumbnail = snippet.get("thumbnails", {}).get("medium", {}).get("url", "")
        return cls(
            id=video_id,
            title=snippet.get("title", ""),
            artist=snippet.get("channelTitle", ""),
            thumbnail=thumbnail,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "videoId": self.id,
            "title": self.title,
            "artist": self.artist,
            "thumbnail": self.thumbnail,
            "addedAt": self.added_at.isoformat(),
        }


@dataclass
class Playlist:
    name: str
    tracks: List[Dict[str, Any]] = field(default_factory=list)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: str = field(default_factory=lambda: utcnow().isoformat())
    updated_at: str = field(default_factory=lambda: utcnow().isoformat())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Playlist":
        return cls(
            id=data["_id"],
            name=data["name"],
            tracks=list(data.get("tracks") or []),
            created_at=data.get("createdAt") or utcnow().isoformat(),
            updated_at=data.get("updatedAt") or utcnow().isoformat(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "name": self.name,
            "tracks": list(self.tracks),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class SearchHistoryItem:
    query: str
    filters: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SEARCH_FILTERS))
    timestamp: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchHistoryItem":
        filters = dict(DEFAULT_SEARCH_FILTERS)
        filters.update(data.get("filters") or {})
        return cls(query=data["query"], filters=filters, timestamp=int(data.get("timestamp") or 0))

    def to_dict(self) -> Dict[str, Any]:
        return {"query": self.query, "filters": self.filters, "timestamp": self.timestamp}


def playlist_track_entry(track: Track) -> Dict[str, Any]:
    """Embedded track shape stored inside a playlist document."""
    return {
        "videoId": track.id,
        "title": track.title,
        "artist": track.artist,
        "thumbnail": track.thumbnail,
        "addedAt": track.added_at.isoformat(),
    }
