"""Interfaces of the external collaborators the queue core depends on."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List

from publish_queue.models import (
    DownloadOutcome,
    FetchOutcome,
    LocalMedia,
    MediaItem,
    PublishOutcome,
    QueueStatusEntry,
)


class MediaFetcher(ABC):
    """Source platform access: post metadata and media bytes."""

    @abstractmethod
    async def fetch_media(self, post_url: str) -> FetchOutcome:
        """Return the post's media items and text, a rate limit, or a failure."""

    @abstractmethod
    async def download(self, item: MediaItem, destination: str) -> DownloadOutcome:
        """Download one media item into ``destination``."""


class ChannelPublisher(ABC):
    """Destination channel access."""

    @abstractmethod
    async def publish(self, media: List[LocalMedia], caption: str) -> PublishOutcome:
        """Deliver media with a caption, or a text-only message when empty."""


class UserNotifier(ABC):
    """Out-of-band messages back to the requester.

    Implementations may raise; callers treat every method as best-effort.
    """

    @abstractmethod
    async def notify_rate_limit(self, requester_id: str, retry_at: datetime, message: str) -> None:
        ...

    @abstractmethod
    async def notify_retry_scheduled(
        self, requester_id: str, attempt: int, max_attempts: int, retry_at: datetime
    ) -> None:
        ...

    @abstractmethod
    async def notify_failed(self, requester_id: str, post_url: str, reason: str) -> None:
        ...

    @abstractmethod
    async def notify_queue_cleared(self, requester_id: str, count: int) -> None:
        ...

    @abstractmethod
    async def notify_queue_status(self, requester_id: str, summary: List[QueueStatusEntry]) -> None:
        ...
