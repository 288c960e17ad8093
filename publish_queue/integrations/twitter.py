"""Twitter/X media fetcher."""

import asyncio
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

import aiohttp

from publish_queue.errors import MediaDownloadError
from publish_queue.models import (
    Downloaded,
    DownloadOutcome,
    FetchedPost,
    FetchFailed,
    FetchOutcome,
    MediaItem,
    MediaKind,
    RateLimited,
    utc_now,
)
from publish_queue.collaborators import MediaFetcher

logger = logging.getLogger(__name__)

TWEET_ID_RE = re.compile(r"(?:twitter|x)\.com/[^/]+/status/(\d+)", re.IGNORECASE)

TWEET_QUERY = {
    "expansions": "attachments.media_keys",
    "media.fields": "type,url,variants,alt_text",
    "tweet.fields": "text,note_tweet",
}


def extract_tweet_id(post_url: str) -> Optional[str]:
    match = TWEET_ID_RE.search(post_url or "")
    return match.group(1) if match else None


def best_video_url(media: Mapping[str, Any]) -> str:
    """Highest-bitrate MP4 variant of a video or animated GIF."""
    variants = media.get("variants") or []
    if not variants:
        raise MediaDownloadError("Video has no downloadable variants")
    mp4 = [v for v in variants if v.get("content_type") == "video/mp4" and v.get("url")]
    if not mp4:
        raise MediaDownloadError("Video has no MP4 variants")
    return max(mp4, key=lambda v: v.get("bitrate") or 0)["url"]


def collect_media(payload: Mapping[str, Any]) -> List[MediaItem]:
    """
    Media attachments of a tweet lookup response, in attachment order.

    Raises:
        MediaDownloadError: If an attachment has no usable URL or an unknown type
    """
    tweet = payload.get("data") or {}
    keys = (tweet.get("attachments") or {}).get("media_keys") or []
    included = (payload.get("includes") or {}).get("media") or []
    by_key = {m["media_key"]: m for m in included if m.get("media_key")}

    items = []
    for key in keys:
        media = by_key.get(key)
        if media is None:
            continue
        media_type = media.get("type")
        if media_type == "photo" and media.get("url"):
            items.append(
                MediaItem(kind=MediaKind.PHOTO, source_url=media["url"], alt_text=media.get("alt_text"))
            )
        elif media_type in ("video", "animated_gif"):
            items.append(
                MediaItem(kind=MediaKind.VIDEO, source_url=best_video_url(media), alt_text=media.get("alt_text"))
            )
        else:
            raise MediaDownloadError(f"Unknown media type {media_type}")
    return items


def source_text(payload: Mapping[str, Any]) -> str:
    tweet = payload.get("data") or {}
    note = tweet.get("note_tweet") or {}
    return note.get("text") or tweet.get("text") or ""


def rate_limit_retry_at(headers: Mapping[str, str], now: datetime, grace_seconds: int) -> datetime:
    """Time after which a rate-limited request may be repeated."""
    reset = headers.get("x-rate-limit-reset")
    try:
        reset_at = datetime.fromtimestamp(int(reset), tz=timezone.utc)
    except (TypeError, ValueError):
        reset_at = now
    return reset_at + timedelta(seconds=grace_seconds)


def rate_limit_message(retry_at: datetime, now: datetime) -> str:
    wait_seconds = (retry_at - now).total_seconds()
    if wait_seconds > 0:
        return f"Twitter/X rate limit exceeded. Retrying in {max(1, int(wait_seconds + 0.999))} seconds."
    return "Twitter/X rate limit exceeded. Retrying shortly."


class TwitterMediaFetcher(MediaFetcher):
    """Reads tweets through the Twitter API v2 and downloads their media."""

    def __init__(
        self,
        bearer_token: str,
        proxy_url: Optional[str] = None,
        timeout: float = 30.0,
        rate_limit_grace_seconds: int = 3,
        api_base: str = "https://api.twitter.com/2",
        clock: Callable[[], datetime] = utc_now,
    ):
        self.bearer_token = bearer_token
        self.proxy_url = proxy_url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.rate_limit_grace_seconds = rate_limit_grace_seconds
        self.api_base = api_base.rstrip("/")
        self.clock = clock

    async def fetch_media(self, post_url: str) -> FetchOutcome:
        tweet_id = extract_tweet_id(post_url)
        if tweet_id is None:
            return FetchFailed(reason=f"No tweet id in {post_url}")

        url = f"{self.api_base}/tweets/{tweet_id}"
        headers = {"Authorization": f"Bearer {self.bearer_token}"}
        logger.debug(f"Requesting media for tweet {tweet_id}")

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            try:
                async with session.get(
                    url, params=TWEET_QUERY, headers=headers, proxy=self.proxy_url
                ) as resp:
                    if resp.status == 429:
                        now = self.clock()
                        retry_at = rate_limit_retry_at(resp.headers, now, self.rate_limit_grace_seconds)
                        logger.error(f"Twitter/X rate limit hit, retry at {retry_at.isoformat()}")
                        return RateLimited(retry_at=retry_at, message=rate_limit_message(retry_at, now))

                    if resp.status >= 400:
                        body = await resp.text()
                        logger.error(f"Tweet lookup failed with HTTP {resp.status}: {body[:500]}")
                        return FetchFailed(reason=f"Tweet lookup failed: HTTP {resp.status}")

                    payload: Dict[str, Any] = await resp.json()

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error(f"Tweet lookup failed: {e}")
                return FetchFailed(reason=f"Network error: {e}")

        if payload.get("errors") and not payload.get("data"):
            return FetchFailed(reason=f"Tweet lookup failed: {payload['errors'][0].get('detail', 'unknown')}")

        try:
            items = collect_media(payload)
        except MediaDownloadError as e:
            return FetchFailed(reason=str(e))

        return FetchedPost(items=items, source_text=source_text(payload))

    async def download(self, item: MediaItem, destination: str) -> DownloadOutcome:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            try:
                async with session.get(item.source_url, proxy=self.proxy_url) as resp:
                    if resp.status >= 400:
                        logger.error(f"Media download {item.source_url} failed with HTTP {resp.status}")
                        return FetchFailed(reason=f"Media download failed: HTTP {resp.status}")
                    content = await resp.read()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error(f"Media download {item.source_url} failed: {e}")
                return FetchFailed(reason=f"Media download failed: {e}")

        await asyncio.to_thread(_write_file, destination, content)
        return Downloaded(local_path=destination)


def _write_file(path: str, content: bytes) -> None:
    with open(path, "wb") as fh:
        fh.write(content)
