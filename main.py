import argparse
import logging
import threading

import config
from flask_app import create_app, run_flask
from media_driver import BrowserMediaDriver, PlayerBridge
from player_engine import PlayerEngine
from playlist_store import PlaylistStore
from recommendations import RecommendationClient
from storage import LocalState
from youtube_search import SearchService


def build_services(base_url=config.PUBLIC_BASE_URL):
    local_state = LocalState(config.STATE_DIR)
    recommender = RecommendationClient(base_url)
    engine = PlayerEngine(recommender, local_state)
    bridge = PlayerBridge(engine, BrowserMediaDriver())
    search_service = SearchService(config.YOUTUBE_API_KEY)
    playlist_store = PlaylistStore(config.PLAYLISTS_FILE)
    flask_app = create_app(engine, bridge, search_service, playlist_store, local_state)
    return engine, bridge, search_service, playlist_store, flask_app


def main(argv=None):
    parser = argparse.ArgumentParser(description="YouTube music player with an auto-filling queue")
    parser.add_argument("--port", type=int, default=config.PORT)
    parser.add_argument("--headless", action="store_true", help="run only the web server")
    parser.add_argument("--no-mdns", action="store_true", help="do not advertise over mDNS")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    base_url = config.PUBLIC_BASE_URL
    if args.port != config.PORT:
        base_url = f"http://127.0.0.1:{args.port}"
    engine, bridge, search_service, playlist_store, flask_app = build_services(base_url)
    enable_mdns = config.ENABLE_MDNS and not args.no_mdns

    if args.headless:
        run_flask(flask_app, port=args.port, enable_mdns=enable_mdns)
        return

    # The TUI owns the terminal, so send log output to a file instead.
    root = logging.getLogger()
    formatter = root.handlers[0].formatter if root.handlers else None
    root.handlers.clear()
    config.STATE_DIR.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(config.STATE_DIR / "moojik.log", encoding="utf-8")
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    flask_thread = threading.Thread(
        target=run_flask,
        args=(flask_app,),
        kwargs={"port": args.port, "enable_mdns": enable_mdns},
        daemon=True,
    )
    flask_thread.start()

    from tui_app import MusicQueueApp
    tui_app = MusicQueueApp(engine, bridge, search_service, playlist_store)
    tui_app.run()


if __name__ == "__main__":
    main()
