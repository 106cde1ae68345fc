import time
import asyncio
import logging
from typing import Optional, Dict, Any, List, Tuple

import httpx
import requests
from bs4 import BeautifulSoup

from watchparty import config

logger = logging.getLogger(__name__)

OEMBED_URL = "https://www.youtube.com/oembed"
WATCH_URL = "https://www.youtube.com/watch?v={video_id}"
HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36'
}


class CommentsUnavailable(Exception):
    pass


def _oembed_title(video_id: str) -> Optional[str]:
    try:
        response = requests.get(
            OEMBED_URL,
            params={"url": WATCH_URL.format(video_id=video_id), "format": "json"},
            headers=HEADERS,
            timeout=config.HTTP_TIMEOUT,
        )
        response.raise_for_status()
        return response.json().get("title") or None
    except Exception as e:
        logger.error(f"oEmbed lookup error for {video_id}: {e}")
        return None


def _scrape_title(video_id: str) -> Optional[str]:
    try:
        response = requests.get(WATCH_URL.format(video_id=video_id), headers=HEADERS, timeout=config.HTTP_TIMEOUT)
        response.raise_for_status()

        soup = BeautifulSoup(response.text, 'html.parser')

        og_title = soup.find('meta', property='og:title')
        if og_title and og_title.get('content'):
            return og_title['content']

        if soup.title and soup.title.string:
            title = soup.title.string.replace(' - YouTube', '').strip()
            # Unavailable videos still get a page titled just "YouTube"
            if title and title != 'YouTube':
                return title
        return None
    except Exception as e:
        logger.error(f"Title scraping error for {video_id}: {e}")
        return None


def _lookup_title(video_id: str) -> str:
    return _oembed_title(video_id) or _scrape_title(video_id) or video_id


async def fetch_title(video_id: str) -> str:
    """
    Resolves a display title for a video id in a thread pool to avoid blocking.
    The whole chain shares one deadline; falls back to the id itself.
    """
    loop = asyncio.get_running_loop()
    try:
        return await asyncio.wait_for(
            loop.run_in_executor(None, _lookup_title, video_id),
            timeout=config.HTTP_TIMEOUT,
        )
    except asyncio.TimeoutError:
        logger.warning(f"Title lookup for {video_id} timed out after {config.HTTP_TIMEOUT}s")
        return video_id


class CommentsCache:
    """Short-lived cache of comment pages keyed by (video, sort, continuation)."""

    def __init__(self, ttl_seconds: int = 300, max_entries: int = 500):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        # {key: (payload, created_at)}
        self._cache: Dict[Tuple[str, str, str], Tuple[Dict[str, Any], float]] = {}

    def get(self, key: Tuple[str, str, str]) -> Optional[Dict[str, Any]]:
        entry = self._cache.get(key)
        if not entry:
            return None

        payload, created_at = entry
        if time.time() - created_at > self.ttl_seconds:
            del self._cache[key]
            return None
        return payload

    def set(self, key: Tuple[str, str, str], payload: Dict[str, Any]):
        if len(self._cache) >= self.max_entries:
            now = time.time()
            self._cache = {k: v for k, v in self._cache.items() if now - v[1] <= self.ttl_seconds}
            if len(self._cache) >= self.max_entries:
                oldest = min(self._cache, key=lambda k: self._cache[k][1])
                del self._cache[oldest]
        self._cache[key] = (payload, time.time())


class CommentsProxy:
    """Fetches comment pages from a list of mirror instances, first success wins."""

    def __init__(self, instances: List[str] = None, cache: CommentsCache = None, transport: httpx.AsyncBaseTransport = None):
        self.instances = instances if instances is not None else config.COMMENTS_INSTANCES
        self.cache = cache or CommentsCache(ttl_seconds=config.COMMENTS_CACHE_TTL)
        self._transport = transport

    async def fetch(self, video_id: str, sort_by: str = "top", continuation: str = None) -> Dict[str, Any]:
        key = (video_id, sort_by, continuation or "")
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        params = {"sort_by": sort_by}
        if continuation:
            params["continuation"] = continuation

        async with httpx.AsyncClient(timeout=config.HTTP_TIMEOUT, transport=self._transport, headers=HEADERS) as client:
            for instance in self.instances:
                try:
                    response = await client.get(f"{instance}/api/v1/comments/{video_id}", params=params, follow_redirects=True)
                    response.raise_for_status()
                    data = response.json()
                except Exception as e:
                    logger.warning(f"Comments instance {instance} failed for {video_id}: {e}")
                    continue

                payload = {"comments": data.get("comments") or []}
                if data.get("continuation"):
                    payload["continuation"] = data["continuation"]
                if data.get("commentCount") is not None:
                    payload["commentCount"] = data["commentCount"]

                self.cache.set(key, payload)
                return payload

        raise CommentsUnavailable(f"No comments instance answered for {video_id}")
