import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).parent
STATE_DIR = Path(os.getenv("MOOJIK_STATE_DIR", BASE_DIR / "state"))
PLAYLISTS_FILE = Path(os.getenv("MOOJIK_PLAYLISTS_FILE", STATE_DIR / "playlists.json"))

YOUTUBE_API_KEY = os.getenv("YOUTUBE_API_KEY", "")
YOUTUBE_API_URL = "https://www.googleapis.com/youtube/v3"

HOST = os.getenv("MOOJIK_HOST", "0.0.0.0")
PORT = int(os.getenv("MOOJIK_PORT", 5000))
PUBLIC_BASE_URL = os.getenv("MOOJIK_PUBLIC_URL", f"http://127.0.0.1:{PORT}")
ENABLE_MDNS = os.getenv("MOOJIK_MDNS", "1") not in ("0", "false", "no")
SECRET_KEY = os.getenv("MOOJIK_SECRET_KEY", "supersecretkey")

LOG_LEVEL = os.getenv("MOOJIK_LOG_LEVEL", "INFO")

SEARCH_CACHE_SECONDS = 30 * 60
SEARCH_MIN_INTERVAL_SECONDS = 1.0
SEARCH_MAX_RESULTS = 25
HTTP_TIMEOUT = 10

PRELOAD_MAX_RETRIES = 2
PRELOAD_RETRY_DELAY = 5.0

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)
