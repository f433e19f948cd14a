import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from data_models import Playlist, Track, playlist_track_entry, utcnow
from storage import load_json, save_json

logger = logging.getLogger(__name__)


class PlaylistNotFound(KeyError):
    pass


class PlaylistStore:
    """Playlist documents kept in a single JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.RLock()
        self._playlists: Dict[str, Playlist] = {}
        self.load()

    def load(self) -> None:
        raw = load_json(self.path, [])
        playlists = {}
        for doc in raw if isinstance(raw, list) else []:
            try:
                playlist = Playlist.from_dict(doc)
            except (KeyError, TypeError, AttributeError):
                logger.warning(f"Skipping malformed playlist document: {doc!r}")
                continue
            playlists[playlist.id] = playlist
        with self._lock:
            self._playlists = playlists

    def _save(self) -> None:
        save_json(self.path, [p.to_dict() for p in self._playlists.values()])

    def list(self) -> List[Playlist]:
        with self._lock:
            return sorted(self._playlists.values(), key=lambda p: p.created_at, reverse=True)

    def get(self, playlist_id: str) -> Playlist:
        with self._lock:
            try:
                return self._playlists[playlist_id]
            except KeyError:
                raise PlaylistNotFound(playlist_id) from None

    def create(self, name: str) -> Playlist:
        name = (name or "").strip()
        if not name:
            raise ValueError("Playlist name is required")
        playlist = Playlist(name=name)
        with self._lock:
            self._playlists[playlist.id] = playlist
            self._save()
        logger.info(f"Created playlist {playlist.name!r} ({playlist.id})")
        return playlist

    def get_or_create(self, name: str) -> Playlist:
        with self._lock:
            for playlist in self._playlists.values():
                if playlist.name == name.strip():
                    return playlist
            return self.create(name)

    def update(self, playlist_id: str, name: Optional[str] = None,
               tracks: Optional[List[Dict[str, Any]]] = None) -> Playlist:
        with self._lock:
            playlist = self.get(playlist_id)
            if name is not None and name.strip():
                playlist.name = name.strip()
            if tracks is not None:
                playlist.tracks = [_normalize_entry(t) for t in tracks]
            playlist.updated_at = utcnow().isoformat()
            self._save()
            return playlist

    def delete(self, playlist_id: str) -> bool:
        with self._lock:
            removed = self._playlists.pop(playlist_id, None)
            if removed is not None:
                self._save()
        return removed is not None

    def add_track(self, playlist_id: str, track: Track) -> Playlist:
        with self._lock:
            playlist = self.get(playlist_id)
            if any(t.get("videoId") == track.id for t in playlist.tracks):
                return playlist
            return self.update(playlist_id, tracks=playlist.tracks + [playlist_track_entry(track)])


def _normalize_entry(entry: Dict[str, Any]) -> Dict[str, Any]:
    return playlist_track_entry(Track.from_dict(entry))
