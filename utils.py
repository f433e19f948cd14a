import re
import json
import logging
import requests
from bs4 import BeautifulSoup
from typing import Any, List, Dict, Optional

from config import USER_AGENT, HTTP_TIMEOUT, SEARCH_MAX_RESULTS

logger = logging.getLogger(__name__)

YOUTUBE_REGEX = (
    r"(https?://)?(www\.)?"
    r"(youtube|youtu|youtube-nocookie)\.(com|be)/"
    r"(watch\?v=|embed/|v/|.+\?v=)?([^&=%\?]{11})"
)
# "Videos only" search filter
VIDEO_ONLY_FILTER = "EgIQAQ%3D%3D"


def is_valid_youtube_url(url):
    return re.match(YOUTUBE_REGEX, url) is not None


def extract_video_id(url):
    """Extracts the video ID from a YouTube URL."""
    match = re.match(YOUTUBE_REGEX, url)
    if match:
        return match.group(6)
    return None


def thumbnail_url(video_id: str) -> str:
    return f"https://i.ytimg.com/vi/{video_id}/mqdefault.jpg"


def get_youtube_title(url):
    try:
        headers = {"User-Agent": USER_AGENT}
        response = requests.get(url, headers=headers, timeout=5)
        if response.status_code == 200:
            soup = BeautifulSoup(response.text, "html.parser")
            meta_title = soup.find("meta", property="og:title")
            if meta_title:
                return str(meta_title["content"])
            if soup.title and soup.title.string:
                return str(soup.title.string).replace(" - YouTube", "")
    except requests.exceptions.RequestException as e:
        logger.warning(f"Error fetching title: {e}")
    return "Unknown Title"


def extract_initial_data(html: str) -> Optional[Dict[str, Any]]:
    """Pull the `ytInitialData` JSON blob out of a YouTube page."""
    soup = BeautifulSoup(html, "html.parser")
    for script in soup.find_all("script"):
        text = script.string or script.get_text() or ""
        if "ytInitialData" not in text:
            continue
        match = re.search(r"ytInitialData\s*=\s*({.+?});\s*$", text, re.DOTALL)
        if not match:
            match = re.search(r"ytInitialData\s*=\s*({.+?});", text, re.DOTALL)
        if match:
            try:
                return json.loads(match.group(1))
            except ValueError as e:
                logger.error(f"Error parsing YouTube data: {e}")
                return None
    return None


def parse_search_results(data: Dict[str, Any], limit: int = SEARCH_MAX_RESULTS) -> List[Dict[str, Any]]:
    """Turn `ytInitialData` into `{id: {videoId}, snippet: {...}}` items."""
    # This path is highly dependent on YouTube's internal layout and can break.
    contents = (
        data.get("contents", {})
        .get("twoColumnSearchResultsRenderer", {})
        .get("primaryContents", {})
        .get("sectionListRenderer", {})
        .get("contents", [])
    )
    results = []
    for section in contents:
        for item in section.get("itemSectionRenderer", {}).get("contents", []):
            video = item.get("videoRenderer")
            if not video:
                continue
            video_id = video.get("videoId")
            title = (video.get("title", {}).get("runs") or [{}])[0].get("text")
            channel = (video.get("ownerText", {}).get("runs") or [{}])[0].get("text", "")
            if not video_id or not title:
                continue
            results.append({
                "id": {"videoId": video_id},
                "snippet": {
                    "title": title,
                    "channelTitle": channel,
                    "thumbnails": {"medium": {"url": thumbnail_url(video_id)}},
                },
            })
            if len(results) >= limit:
                return results
    return results


def perform_youtube_search(query: str, session=None, limit: int = SEARCH_MAX_RESULTS) -> List[Dict[str, Any]]:
    """Scrapes the YouTube results page for videos. Never raises; returns [] on failure."""
    search_url = (
        f"https://www.youtube.com/results?search_query={requests.utils.quote(query)}"
        f"&sp={VIDEO_ONLY_FILTER}"
    )
    headers = {"User-Agent": USER_AGENT}
    http = session or requests
    try:
        response = http.get(search_url, headers=headers, timeout=HTTP_TIMEOUT)
        response.raise_for_status()  # Raise an exception for HTTP errors
    except requests.exceptions.RequestException as e:
        logger.error(f"Network error during YouTube search: {e}")
        return []

    data = extract_initial_data(response.text)
    if not data:
        return []
    return parse_search_results(data, limit)
