import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from data_models import (
    MAX_RECENTLY_PLAYED,
    MAX_SEARCH_HISTORY,
    DEFAULT_SEARCH_FILTERS,
    SearchHistoryItem,
    Track,
)

logger = logging.getLogger(__name__)

RECENTLY_PLAYED_KEY = "recentlyPlayed"
SEARCH_HISTORY_KEY = "searchHistory"


def load_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read {path}: {e}")
        return default


def save_json(path: Path, data: Any) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        tmp.replace(path)
    except OSError as e:
        logger.error(f"Could not write {path}: {e}")


class LocalState:
    """Durable client-side state, one JSON file per key.

    Read failures are logged and produce empty lists, so a corrupt file
    never keeps the player from starting.
    """

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        return self.state_dir / f"{key}.json"

    # --- recently played ---
    def load_recently_played(self) -> List[Track]:
        raw = load_json(self._path(RECENTLY_PLAYED_KEY), [])
        if not isinstance(raw, list):
            logger.warning("Ignoring malformed recently played list")
            return []
        tracks: List[Track] = []
        seen = set()
        for entry in raw:
            try:
                track = Track.from_dict(entry)
            except (ValueError, TypeError, AttributeError):
                continue
            if track.id in seen:
                continue
            seen.add(track.id)
            tracks.append(track)
        return tracks[:MAX_RECENTLY_PLAYED]

    def save_recently_played(self, tracks: List[Track]) -> None:
        with self._lock:
            save_json(self._path(RECENTLY_PLAYED_KEY), [t.to_dict() for t in tracks])

    # --- search history ---
    def load_search_history(self) -> List[SearchHistoryItem]:
        raw = load_json(self._path(SEARCH_HISTORY_KEY), [])
        if not isinstance(raw, list):
            logger.warning("Ignoring malformed search history")
            return []
        items = []
        for entry in raw:
            try:
                items.append(SearchHistoryItem.from_dict(entry))
            except (KeyError, TypeError, ValueError, AttributeError):
                continue
        return items[:MAX_SEARCH_HISTORY]

    def record_search(
        self, query: str, filters: Optional[Dict[str, str]] = None
    ) -> List[SearchHistoryItem]:
        """Put `query` at the front of the search history, dropping older duplicates."""
        query = query.strip()
        merged = dict(DEFAULT_SEARCH_FILTERS)
        merged.update({k: v for k, v in (filters or {}).items() if v})
        item = SearchHistoryItem(query=query, filters=merged, timestamp=int(time.time() * 1000))
        with self._lock:
            history = [h for h in self.load_search_history() if h.query != query]
            history = [item] + history
            history = history[:MAX_SEARCH_HISTORY]
            save_json(self._path(SEARCH_HISTORY_KEY), [h.to_dict() for h in history])
        return history

    def clear_search_history(self) -> None:
        with self._lock:
            self._path(SEARCH_HISTORY_KEY).unlink(missing_ok=True)
