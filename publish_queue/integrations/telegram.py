"""Telegram Bot API client, channel publisher and user notifier."""

import asyncio
import json
import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import aiohttp

from publish_queue.collaborators import ChannelPublisher, UserNotifier
from publish_queue.errors import RemoteHttpError
from publish_queue.models import (
    LocalMedia,
    MediaKind,
    Published,
    PublishFailed,
    PublishOutcome,
    QueueStatusEntry,
)

logger = logging.getLogger(__name__)

MEDIA_GROUP_LIMIT = 10


def chunk(items: List[Any], size: int = MEDIA_GROUP_LIMIT) -> List[List[Any]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class TelegramBotApi:
    """Minimal async client for the Telegram Bot API."""

    def __init__(
        self,
        token: str,
        timeout: float = 30.0,
        api_base: str = "https://api.telegram.org",
    ):
        self.token = token
        self.timeout = timeout
        self.base_url = f"{api_base.rstrip('/')}/bot{token}"

    async def call(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        form: Optional[aiohttp.FormData] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Invoke a Bot API method and return its ``result``.

        Raises:
            RemoteHttpError: On network errors or a non-ok API response
        """
        url = f"{self.base_url}/{method}"
        client_timeout = aiohttp.ClientTimeout(total=timeout or self.timeout)

        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            try:
                if form is not None:
                    request = session.post(url, data=form)
                else:
                    request = session.post(url, json=params or {})
                async with request as resp:
                    response_body = await resp.text()
                    try:
                        data = json.loads(response_body)
                    except ValueError:
                        data = {}

                    if resp.status >= 400 or not data.get("ok"):
                        raise RemoteHttpError(
                            status_code=resp.status,
                            message=f"{method} failed: {data.get('description', response_body[:200])}",
                            response_body=response_body,
                        )
                    return data.get("result")

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise RemoteHttpError(
                    status_code=0,
                    message=f"Network error: {str(e)}",
                ) from e

    async def get_me(self) -> Dict[str, Any]:
        return await self.call("getMe")

    async def get_updates(self, offset: Optional[int] = None, poll_timeout: int = 25) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"timeout": poll_timeout, "allowed_updates": ["message"]}
        if offset is not None:
            params["offset"] = offset
        return await self.call("getUpdates", params, timeout=poll_timeout + self.timeout)

    async def send_message(
        self,
        chat_id: str,
        text: str,
        parse_mode: Optional[str] = None,
        reply_to_message_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            params["parse_mode"] = parse_mode
        if reply_to_message_id:
            params["reply_to_message_id"] = reply_to_message_id
        return await self.call("sendMessage", params)

    async def send_media_group(
        self,
        chat_id: str,
        media: List[LocalMedia],
        caption: Optional[str] = None,
        parse_mode: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Upload local files as one album; the caption goes on the first item."""
        form = aiohttp.FormData()
        form.add_field("chat_id", str(chat_id))

        descriptors = []
        for index, item in enumerate(media):
            attach_name = f"file{index}"
            descriptor: Dict[str, Any] = {"type": item.kind.value, "media": f"attach://{attach_name}"}
            if item.kind == MediaKind.VIDEO:
                descriptor["supports_streaming"] = True
            if index == 0 and caption:
                descriptor["caption"] = caption
                if parse_mode:
                    descriptor["parse_mode"] = parse_mode
            descriptors.append(descriptor)

            content = await asyncio.to_thread(_read_file, item.local_path)
            form.add_field(attach_name, content, filename=os.path.basename(item.local_path))

        form.add_field("media", json.dumps(descriptors))
        return await self.call("sendMediaGroup", form=form)


def _read_file(path: str) -> bytes:
    with open(path, "rb") as fh:
        return fh.read()


class TelegramChannelPublisher(ChannelPublisher):
    """Publishes albums to a Telegram channel in groups of ten."""

    def __init__(self, api: TelegramBotApi, channel_id: str, parse_mode: str = "HTML"):
        self.api = api
        self.channel_id = channel_id
        self.parse_mode = parse_mode

    async def publish(self, media: List[LocalMedia], caption: str) -> PublishOutcome:
        try:
            if not media:
                await self.api.send_message(self.channel_id, caption, parse_mode=self.parse_mode)
                return Published(message_count=1)

            sent = 0
            for index, group in enumerate(chunk(media, MEDIA_GROUP_LIMIT)):
                logger.debug(f"Sending album {index} ({len(group)} items) to channel")
                await self.api.send_media_group(
                    self.channel_id,
                    group,
                    caption=caption if index == 0 else None,
                    parse_mode=self.parse_mode,
                )
                sent += 1
            return Published(message_count=sent)

        except Exception as e:
            logger.error(f"Publishing to channel {self.channel_id} failed: {e}")
            return PublishFailed(reason=str(e))


class TelegramUserNotifier(UserNotifier):
    """Sends queue notifications to the requester's private chat."""

    def __init__(self, api: TelegramBotApi, timezone_name: str = "Europe/Moscow"):
        self.api = api
        self.tz = ZoneInfo(timezone_name)

    def format_time(self, value: datetime) -> str:
        return value.astimezone(self.tz).strftime("%d.%m.%Y %H:%M:%S %Z")

    async def notify_rate_limit(self, requester_id: str, retry_at: datetime, message: str) -> None:
        lines = ["⚠️ Your request was postponed because of the Twitter/X rate limit."]
        if message:
            lines.append(message)
        lines.append(f"Next attempt after {self.format_time(retry_at)}.")
        await self.api.send_message(requester_id, "\n".join(lines))

    async def notify_retry_scheduled(
        self, requester_id: str, attempt: int, max_attempts: int, retry_at: datetime
    ) -> None:
        text = (
            f"🔄 Attempt {attempt}/{max_attempts} failed.\n"
            f"Next attempt after {self.format_time(retry_at)}."
        )
        await self.api.send_message(requester_id, text)

    async def notify_failed(self, requester_id: str, post_url: str, reason: str) -> None:
        await self.api.send_message(requester_id, f"❌ Could not publish {post_url}\n{reason}")

    async def notify_queue_cleared(self, requester_id: str, count: int) -> None:
        await self.api.send_message(requester_id, f"🗑️ Queue cleared. Jobs removed: {count}")

    async def notify_queue_status(self, requester_id: str, summary: List[QueueStatusEntry]) -> None:
        await self.api.send_message(requester_id, format_queue_status(summary, self.format_time))


def format_queue_status(summary: List[QueueStatusEntry], format_time) -> str:
    if not summary:
        return "📊 Queue is empty"

    lines = ["📊 Queue status:"]
    for entry in summary:
        lines.append(f"{entry.status}: {entry.count} jobs (max retries: {entry.max_retry_count})")
        if entry.earliest_available_at:
            lines.append(f"  next: {format_time(entry.earliest_available_at)}")
    return "\n".join(lines)
