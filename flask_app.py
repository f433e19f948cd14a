import socket
import logging
from flask import (
    Flask,
    request,
    render_template_string,
    jsonify,
)

from config import HOST, PORT, SECRET_KEY
from data_models import DEFAULT_SEARCH_FILTERS, Track
from playlist_store import PlaylistNotFound
from youtube_search import SearchError, SearchNotFound

logger = logging.getLogger(__name__)

PLAYER_TEMPLATE = """
<!doctype html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Moojik Player</title>
    <style>
        body { background: #000; color: #fff; display: flex; flex-direction: column; align-items: center; justify-content: center; height: 100vh; margin: 0; font-family: sans-serif; }
        #current-song { margin-top: 1rem; font-size: 1.2rem; }
    </style>
</head>
<body>
    <div id="player"></div>
    <div id="current-song">Waiting for music...</div>
    <script src="https://www.youtube.com/iframe_api"></script>
    <script>
        let player = null;
        let videoId = null;

        function post(event) {
            event.videoId = videoId;
            if (player && player.getDuration) {
                event.duration = player.getDuration();
                event.time = player.getCurrentTime();
            }
            return fetch('/api/player/event', {
                method: 'POST',
                headers: {'Content-Type': 'application/json'},
                body: JSON.stringify(event),
            });
        }

        function onYouTubeIframeAPIReady() {
            player = new YT.Player('player', {
                height: '360', width: '640',
                playerVars: { autoplay: 1, controls: 0, disablekb: 1, fs: 0, modestbranding: 1 },
                events: {
                    onReady: () => post({type: 'ready'}),
                    onStateChange: (e) => {
                        if (e.data === YT.PlayerState.PLAYING) post({type: 'playing'});
                        else if (e.data === YT.PlayerState.PAUSED) post({type: 'paused'});
                        else if (e.data === YT.PlayerState.ENDED) post({type: 'ended'});
                    },
                    onError: (e) => post({type: 'error', message: String(e.data)}),
                },
            });
        }

        function run(cmd) {
            if (!player || !player.loadVideoById) return;
            switch (cmd.command) {
                case 'load': videoId = cmd.videoId; player.loadVideoById(cmd.videoId); break;
                case 'play': player.playVideo(); break;
                case 'pause': player.pauseVideo(); break;
                case 'seekTo': player.seekTo(cmd.seconds, true); break;
                case 'setVolume': player.setVolume(cmd.volume); break;
            }
        }

        function poll() {
            fetch('/api/player/commands')
                .then(r => r.json())
                .then(data => data.commands.forEach(run))
                .catch(err => console.error('Error polling commands:', err));
            fetch('/api/player/state')
                .then(r => r.json())
                .then(state => {
                    const t = state.currentTrack;
                    document.getElementById('current-song').textContent =
                        t ? `${t.title} - ${t.artist}` : 'Waiting for music...';
                });
        }

        setInterval(poll, 500);
        setInterval(() => {
            if (player && player.getPlayerState && player.getPlayerState() === YT.PlayerState.PLAYING) {
                post({type: 'progress'});
            }
        }, 1000);
    </script>
</body>
</html>
"""


def _json_body():
    return request.get_json(silent=True) or {}


def _track_from_body(body):
    raw = body.get("track") if isinstance(body.get("track"), dict) else body
    return Track.from_dict(raw)


def _error(message, status):
    return jsonify({"error": message}), status


def create_app(engine, bridge, search_service, playlist_store, local_state):
    flask_app = Flask(__name__)
    flask_app.secret_key = SECRET_KEY

    @flask_app.errorhandler(PlaylistNotFound)
    def playlist_not_found(e):
        return _error("Playlist not found", 404)

    # --- search ---
    @flask_app.route("/api/search")
    def search_youtube_api():
        query = request.args.get("q", "").strip()
        if not query:
            return _error("Query parameter is required", 400)
        filters = {
            "type": request.args.get("type") or DEFAULT_SEARCH_FILTERS["type"],
            "duration": request.args.get("duration"),
            "sortBy": request.args.get("sortBy"),
        }
        try:
            results = search_service.search(query, filters["type"], filters["duration"], filters["sortBy"])
        except SearchNotFound as e:
            return jsonify({"error": "Search failed", "details": str(e)}), 404
        except SearchError as e:
            logger.error(f"Search error: {e}")
            return jsonify({"error": "Search failed", "details": str(e)}), 500
        local_state.record_search(query, filters)
        return jsonify(results)

    @flask_app.route("/api/search/history", methods=["GET"])
    def search_history_api():
        return jsonify([item.to_dict() for item in local_state.load_search_history()])

    @flask_app.route("/api/search/history", methods=["DELETE"])
    def clear_search_history_api():
        local_state.clear_search_history()
        return jsonify({"success": True})

    @flask_app.route("/api/recommendations")
    def recommendations_api():
        video_id = request.args.get("videoId")
        title = request.args.get("title")
        artist = request.args.get("artist")
        limit = request.args.get("limit", 10, type=int) or 10
        if not video_id or not title or not artist:
            return _error("Missing required parameters", 400)
        return jsonify(search_service.related(video_id, title, artist, limit))

    @flask_app.route("/api/trending")
    def trending_api():
        limit = request.args.get("limit", 25, type=int) or 25
        return jsonify(search_service.trending(limit))

    # --- playlists ---
    @flask_app.route("/api/playlists", methods=["GET"])
    def list_playlists():
        return jsonify([p.to_dict() for p in playlist_store.list()])

    @flask_app.route("/api/playlists", methods=["POST"])
    def create_playlist():
        try:
            playlist = playlist_store.create(_json_body().get("name"))
        except ValueError as e:
            return _error(str(e), 400)
        return jsonify(playlist.to_dict()), 201

    @flask_app.route("/api/playlists/<playlist_id>", methods=["GET"])
    def get_playlist(playlist_id):
        return jsonify(playlist_store.get(playlist_id).to_dict())

    @flask_app.route("/api/playlists/<playlist_id>", methods=["PUT"])
    def update_playlist(playlist_id):
        body = _json_body()
        try:
            playlist = playlist_store.update(playlist_id, body.get("name"), body.get("tracks"))
        except (ValueError, TypeError, AttributeError) as e:
            return _error(f"Invalid playlist: {e}", 400)
        return jsonify(playlist.to_dict())

    @flask_app.route("/api/playlists/<playlist_id>", methods=["DELETE"])
    def delete_playlist(playlist_id):
        playlist_store.delete(playlist_id)
        return jsonify({"success": True})

    # --- player ---
    @flask_app.route("/player")
    def player():
        return render_template_string(PLAYER_TEMPLATE)

    @flask_app.route("/api/player/state")
    def player_state():
        return jsonify(engine.snapshot())

    @flask_app.route("/api/player/play", methods=["POST"])
    def play_api():
        body = _json_body()
        if "track" not in body and "videoId" not in body:
            engine.play()
            return jsonify(engine.snapshot())
        try:
            track = _track_from_body(body)
        except (ValueError, TypeError, AttributeError) as e:
            return _error(str(e), 400)
        engine.set_current_track(track, enqueue=bool(body.get("enqueue")))
        return jsonify(engine.snapshot())

    @flask_app.route("/api/player/pause", methods=["POST"])
    def pause_api():
        engine.pause()
        return jsonify(engine.snapshot())

    @flask_app.route("/api/player/next", methods=["POST"])
    def next_api():
        bridge.skip()
        return jsonify(engine.snapshot())

    @flask_app.route("/api/player/previous", methods=["POST"])
    def previous_api():
        engine.play_previous()
        return jsonify(engine.snapshot())

    @flask_app.route("/api/player/shuffle", methods=["POST"])
    def shuffle_api():
        engine.toggle_shuffle()
        return jsonify(engine.snapshot())

    @flask_app.route("/api/player/repeat", methods=["POST"])
    def repeat_api():
        engine.toggle_repeat()
        return jsonify(engine.snapshot())

    @flask_app.route("/api/player/autoplay", methods=["POST"])
    def autoplay_api():
        body = _json_body()
        enabled = body.get("enabled", not engine.is_autoplay_enabled)
        engine.set_autoplay_enabled(bool(enabled))
        return jsonify(engine.snapshot())

    @flask_app.route("/api/player/seek", methods=["POST"])
    def seek_api():
        try:
            engine.seek_to(float(_json_body()["time"]))
        except (KeyError, TypeError, ValueError):
            return _error("time is required", 400)
        return jsonify(engine.snapshot())

    @flask_app.route("/api/player/volume", methods=["POST"])
    def volume_api():
        try:
            engine.set_volume(float(_json_body()["volume"]))
        except (KeyError, TypeError, ValueError):
            return _error("volume is required", 400)
        return jsonify(engine.snapshot())

    @flask_app.route("/api/player/index", methods=["POST"])
    def index_api():
        try:
            index = int(_json_body()["index"])
        except (KeyError, TypeError, ValueError):
            return _error("index is required", 400)
        engine.set_current_track_index(index)
        return jsonify(engine.snapshot())

    @flask_app.route("/api/player/commands")
    def player_commands():
        return jsonify({"commands": bridge.driver.drain()})

    @flask_app.route("/api/player/event", methods=["POST"])
    def player_event():
        event = _json_body()
        handled = bridge.handle_event(event)
        return jsonify({"handled": handled})

    # --- queue ---
    @flask_app.route("/api/queue", methods=["GET"])
    def queue_api():
        return jsonify(engine.snapshot()["queue"])

    @flask_app.route("/api/queue", methods=["POST"])
    def add_to_queue_api():
        try:
            track = _track_from_body(_json_body())
        except (ValueError, TypeError, AttributeError) as e:
            return _error(str(e), 400)
        added = engine.add_to_queue(track)
        return jsonify({"added": added, "queue": engine.snapshot()["queue"]})

    @flask_app.route("/api/queue", methods=["DELETE"])
    def clear_queue_api():
        engine.clear_queue()
        return jsonify(engine.snapshot())

    @flask_app.route("/api/queue/<track_id>", methods=["DELETE"])
    def remove_from_queue_api(track_id):
        engine.remove_from_queue(track_id)
        return jsonify(engine.snapshot())

    @flask_app.route("/api/queue/move", methods=["POST"])
    def move_queue_item_api():
        body = _json_body()
        try:
            from_index, to_index = int(body["from"]), int(body["to"])
        except (KeyError, TypeError, ValueError):
            return _error("from and to are required", 400)
        engine.move_queue_item(from_index, to_index)
        return jsonify(engine.snapshot())

    @flask_app.route("/api/queue/recommendations", methods=["POST"])
    def load_recommendations_api():
        started = engine.load_recommendations()
        return jsonify(dict(engine.snapshot(), started=started))

    return flask_app


def local_ip_address():
    # Connect to an external host to learn which interface is used
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(("8.8.8.8", 80))
        return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        s.close()


def run_flask(flask_app, host=HOST, port=PORT, enable_mdns=True):
    from zeroconf import ServiceInfo, Zeroconf

    zeroconf = None
    info = None
    try:
        if enable_mdns:
            ip_address = local_ip_address()
            info = ServiceInfo(
                "_http._tcp.local.",
                "Moojik Player._http._tcp.local.",
                addresses=[socket.inet_aton(ip_address)],
                port=port,
                properties={"path": "/player"},
                server="moojik.local.",
            )
            zeroconf = Zeroconf()
            zeroconf.register_service(info)
            logger.info(f"mDNS service registered: http://moojik.local:{port} (or http://{ip_address}:{port})")

        flask_app.run(host=host, port=port, debug=False, use_reloader=False)
    finally:
        if zeroconf:
            logger.info("Unregistering mDNS service...")
            zeroconf.unregister_service(info)
            zeroconf.close()
