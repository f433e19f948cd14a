from typing import List, Dict, Any

from textual.app import App, ComposeResult
from textual.widgets import (
    Header,
    Footer,
    DataTable,
    Label,
    Button,
    Input,
    TabbedContent,
    TabPane,
)
from textual.containers import Horizontal, Vertical, Container
from textual import work

from data_models import Track
from utils import extract_video_id, get_youtube_title, is_valid_youtube_url
from youtube_search import SearchError

FAVORITES_PLAYLIST = "Favorites"


def format_time(seconds: float) -> str:
    seconds = int(seconds or 0)
    return f"{seconds // 60}:{seconds % 60:02d}"


def now_playing_text(state: Dict[str, Any]) -> str:
    track = state["currentTrack"]
    if not track:
        return "Nothing playing"
    flags = []
    if state["isShuffling"]:
        flags.append("shuffle")
    if state["isRepeating"]:
        flags.append("repeat")
    if state["isAutoPlayEnabled"]:
        flags.append("autoplay")
    if state["isLoadingRecommendations"]:
        flags.append("loading...")
    status = "Playing" if state["isPlaying"] else "Paused"
    line = (
        f"{status}: {track['title']} - {track['artist']} "
        f"[{format_time(state['progress'])}/{format_time(state['duration'])}]"
    )
    if flags:
        line += f"  ({', '.join(flags)})"
    if state["recommendationsError"]:
        line += f"  ! {state['recommendationsError']}"
    return line


# --- Textual TUI App ---
class MusicQueueApp(App):
    CSS = """
    Screen {
        layout: vertical;
    }
    Header {
        dock: top;
    }
    Footer {
        dock: bottom;
    }
    DataTable {
        height: 1fr;
        border: solid green;
    }
    #now-playing {
        padding: 0 1;
        color: $accent;
    }
    #input-container {
        height: auto;
        dock: bottom;
        padding: 1;
        border-top: solid blue;
    }
    TabbedContent {
        height: 1fr;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("space", "play_item", "Play Selected"),
        ("n", "next_track", "Next"),
        ("p", "previous_track", "Previous"),
        ("s", "toggle_shuffle", "Shuffle"),
        ("r", "toggle_repeat", "Repeat"),
        ("o", "toggle_autoplay", "Autoplay"),
        ("d", "delete_item", "Remove Selected"),
        ("c", "clear_queue", "Clear Queue"),
        ("a", "add_from_search", "Queue Search Result"),
        ("f", "save_to_playlist", "Save to Favorites"),
    ]

    def __init__(self, engine, bridge, search_service, playlist_store=None, **kwargs):
        super().__init__(**kwargs)
        self.engine = engine
        self.bridge = bridge
        self.search_service = search_service
        self.playlist_store = playlist_store
        self._search_results: List[Track] = []

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Label("Nothing playing", id="now-playing")

        with TabbedContent(initial="tab-queue"):
            with TabPane("Queue", id="tab-queue"):
                yield DataTable(id="queue-table")
            with TabPane("Recently Played", id="tab-played"):
                yield DataTable(id="played-table")
            with TabPane("YouTube Search", id="tab-search"):
                with Vertical():
                    with Horizontal(id="search-input-container"):
                        yield Input(placeholder="Search YouTube...", id="search-query-input")
                        yield Button("Search", id="search-btn", variant="primary")
                    yield DataTable(id="search-results-table")

        with Container(id="input-container"):
            yield Label("Play URL now:")
            yield Input(placeholder="Paste YouTube URL here...", id="url-input")
            yield Button("Play", id="add-btn", variant="primary")

        yield Footer()

    def on_mount(self) -> None:
        self.title = "Moojik Player"

        q_table = self.query_one("#queue-table", DataTable)
        q_table.cursor_type = "row"
        q_table.add_columns("Idx", "Title", "Artist", "Video")

        p_table = self.query_one("#played-table", DataTable)
        p_table.cursor_type = "row"
        p_table.add_columns("Title", "Artist", "Video")

        s_table = self.query_one("#search-results-table", DataTable)
        s_table.cursor_type = "row"
        s_table.add_columns("Title", "Channel", "Video")

        self.set_interval(1.0, self.refresh_tables)
        self.refresh_tables()

    def refresh_tables(self) -> None:
        state = self.engine.snapshot()
        self.query_one("#now-playing", Label).update(now_playing_text(state))

        q_table = self.query_one("#queue-table", DataTable)
        self._update_table(q_table, state["queue"], numbered=True)

        p_table = self.query_one("#played-table", DataTable)
        self._update_table(p_table, state["recentlyPlayed"])

    def _update_table(self, table: DataTable, data: List[Dict[str, Any]], numbered: bool = False):
        # Textual is fast enough to redraw small lists every tick.
        cursor_coord = table.cursor_coordinate
        table.clear()

        for idx, item in enumerate(data):
            row = [item["title"], item["artist"], item["videoId"]]
            if numbered:
                row.insert(0, str(idx + 1))
            table.add_row(*row, key=str(idx))

        # Restore cursor if valid
        if cursor_coord.row < len(data):
            table.move_cursor(row=cursor_coord.row, column=cursor_coord.column)

    def _selected_queue_row(self):
        tabbed = self.query_one(TabbedContent)
        if tabbed.active != "tab-queue":
            return None
        table = self.query_one("#queue-table", DataTable)
        if table.row_count == 0:
            return None
        return table.cursor_coordinate.row

    def action_play_item(self) -> None:
        row = self._selected_queue_row()
        if row is not None and self.engine.set_current_track_index(row):
            self.notify(f"Now Playing: {self.engine.current_track.title}")
        self.refresh_tables()

    def action_delete_item(self) -> None:
        row = self._selected_queue_row()
        if row is None:
            return
        queue = self.engine.snapshot()["queue"]
        if row < len(queue):
            self.engine.remove_from_queue(queue[row]["videoId"])
            self.notify(f"Removed: {queue[row]['title']}")
        self.refresh_tables()

    def action_next_track(self) -> None:
        self.bridge.skip()
        self.refresh_tables()

    def action_previous_track(self) -> None:
        self.engine.play_previous()
        self.refresh_tables()

    def action_toggle_shuffle(self) -> None:
        state = "on" if self.engine.toggle_shuffle() else "off"
        self.notify(f"Shuffle {state}")

    def action_toggle_repeat(self) -> None:
        state = "on" if self.engine.toggle_repeat() else "off"
        self.notify(f"Repeat {state}")

    def action_toggle_autoplay(self) -> None:
        enabled = not self.engine.is_autoplay_enabled
        self.engine.set_autoplay_enabled(enabled)
        self.notify(f"Autoplay {'enabled' if enabled else 'disabled'}")

    def action_save_to_playlist(self) -> None:
        track = self.engine.current_track
        if self.playlist_store is None or track is None:
            self.notify("Nothing to save", severity="warning")
            return
        playlist = self.playlist_store.get_or_create(FAVORITES_PLAYLIST)
        self.playlist_store.add_track(playlist.id, track)
        self.notify(f"Saved '{track.title}' to {playlist.name}")

    def action_clear_queue(self) -> None:
        self.engine.clear_queue()
        self.notify("Queue cleared", severity="warning")
        self.refresh_tables()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "add-btn":
            self.play_local_url()
        elif event.button.id == "search-btn":
            self.action_search_youtube()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id == "url-input":
            self.play_local_url()
        elif event.input.id == "search-query-input":
            self.action_search_youtube()

    def play_local_url(self) -> None:
        input_widget = self.query_one("#url-input", Input)
        url = input_widget.value.strip()
        if not url:
            return
        if is_valid_youtube_url(url):
            self.notify("Fetching title...", severity="information")
            input_widget.value = ""  # Clear immediately
            self.play_url_worker(url)
        else:
            self.notify("Invalid YouTube URL", severity="error")

    @work(thread=True)
    def play_url_worker(self, url: str) -> None:
        title = get_youtube_title(url)
        self.call_from_thread(self._finish_play_url, url, title)

    def _finish_play_url(self, url: str, title: str) -> None:
        video_id = extract_video_id(url)
        if not video_id:
            self.notify(f"Could not extract ID for: {title}", severity="error")
            return
        self.engine.set_current_track(Track(id=video_id, title=title), enqueue=True)
        self.notify(f"Now Playing: {title}")
        self.refresh_tables()

    def action_search_youtube(self) -> None:
        tabbed = self.query_one(TabbedContent)
        if tabbed.active != "tab-search":
            self.notify("Please switch to the 'YouTube Search' tab to search.", severity="warning")
            return

        search_input = self.query_one("#search-query-input", Input)
        query = search_input.value.strip()
        if not query:
            self.notify("Please enter a search query.", severity="warning")
            return

        self.notify(f"Searching YouTube for '{query}'...", severity="information")
        search_input.value = ""
        self.query_one("#search-results-table", DataTable).clear()
        self.search_youtube_worker(query)

    @work(thread=True)
    def search_youtube_worker(self, query: str) -> None:
        try:
            results = self.search_service.search(query)
        except SearchError as e:
            self.call_from_thread(self.notify, f"YouTube search failed: {e}", severity="error")
            results = []
        tracks = []
        for item in results:
            try:
                tracks.append(Track.from_search_item(item))
            except ValueError:
                continue
        self.call_from_thread(self._display_search_results, tracks)

    def _display_search_results(self, tracks: List[Track]) -> None:
        self._search_results = tracks
        s_table = self.query_one("#search-results-table", DataTable)
        s_table.clear()
        if not tracks:
            self.notify("No YouTube results found.", severity="information")
            return

        for idx, track in enumerate(tracks):
            s_table.add_row(track.title, track.artist, track.id, key=f"search_result_{idx}")
        self.notify(f"Found {len(tracks)} YouTube results.", severity="information")

    def action_add_from_search(self) -> None:
        tabbed = self.query_one(TabbedContent)
        if tabbed.active != "tab-search":
            return

        s_table = self.query_one("#search-results-table", DataTable)
        row = s_table.cursor_coordinate.row
        if not 0 <= row < len(self._search_results):
            return
        track = self._search_results[row]
        if self.engine.current_track is None:
            self.engine.set_current_track(track)
            self.notify(f"Now Playing: {track.title}")
        elif self.engine.add_to_queue(track):
            self.notify(f"Added '{track.title}' from search to queue!")
        else:
            self.notify(f"'{track.title}' is already queued", severity="warning")
        self.refresh_tables()
