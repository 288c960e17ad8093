"""Runs a single publish job and classifies its outcome."""

import logging
from datetime import datetime, timedelta
from typing import Callable, List

from publish_queue.caption import compose_caption
from publish_queue.collaborators import ChannelPublisher, MediaFetcher
from publish_queue.errors import NoMediaError, RetriesExhaustedError
from publish_queue.models import (
    Disposition,
    FetchedPost,
    FetchFailed,
    Job,
    LocalMedia,
    PublishFailed,
    RateLimited,
    utc_now,
)
from publish_queue.temp_files import TempFileManager

logger = logging.getLogger(__name__)

DEFAULT_RETRY_INCREMENT_MS = 10_000


def next_retry_delay_ms(last_delay_ms: int, increment_ms: int = DEFAULT_RETRY_INCREMENT_MS) -> int:
    """
    Linear backoff: each retry waits one increment longer than the last.

    Args:
        last_delay_ms: Delay applied on the job's previous reschedule
        increment_ms: Fixed step added per retry

    Returns:
        Delay in milliseconds before the next attempt
    """
    return max(0, last_delay_ms) + increment_ms


def _millis(delta: timedelta) -> int:
    return int(delta.total_seconds() * 1000)


class JobExecutor:
    """
    Executes one job against the media fetcher and channel publisher.

    The executor never touches the job store; it returns a ``Disposition``
    and leaves settlement to the scheduler.
    """

    def __init__(
        self,
        fetcher: MediaFetcher,
        publisher: ChannelPublisher,
        temp_files: TempFileManager,
        max_retries: int = 3,
        retry_increment_ms: int = DEFAULT_RETRY_INCREMENT_MS,
        require_media: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.fetcher = fetcher
        self.publisher = publisher
        self.temp_files = temp_files
        self.max_retries = max_retries
        self.retry_increment_ms = retry_increment_ms
        self.require_media = require_media
        self.clock = clock

    async def execute(self, job: Job) -> Disposition:
        """Run ``job`` to completion and classify the result."""
        scratch: List[str] = []
        try:
            return await self._run(job, scratch)
        except Exception as e:
            logger.error(f"Job {job.id} raised unexpectedly: {e}", exc_info=True)
            return self._transient_failure(job, f"{type(e).__name__}: {e}")
        finally:
            try:
                await self.temp_files.release(scratch)
            except Exception as e:
                logger.warning(f"Scratch cleanup for job {job.id} failed: {e}")

    async def _run(self, job: Job, scratch: List[str]) -> Disposition:
        logger.info(f"Executing job {job.id} ({job.post_url}, retry_count={job.retry_count})")

        fetched = await self.fetcher.fetch_media(job.post_url)

        if isinstance(fetched, RateLimited):
            delay_ms = max(0, _millis(fetched.retry_at - self.clock()))
            logger.warning(f"Job {job.id} rate limited until {fetched.retry_at.isoformat()}")
            return Disposition.rate_limited(fetched.retry_at, delay_ms, fetched.message)

        if isinstance(fetched, FetchFailed):
            return self._transient_failure(job, fetched.reason)

        if not isinstance(fetched, FetchedPost):
            raise TypeError(f"Unexpected fetch outcome {fetched!r}")

        if not fetched.items and self.require_media:
            return Disposition.fail(NoMediaError(job.post_url))

        media: List[LocalMedia] = []
        for item in fetched.items:
            path = self.temp_files.allocate(item.extension)
            scratch.append(path)
            downloaded = await self.fetcher.download(item, path)
            if isinstance(downloaded, FetchFailed):
                return self._transient_failure(job, downloaded.reason)
            media.append(LocalMedia(kind=item.kind, local_path=path))

        caption = compose_caption(job.user_text, job.post_url, fetched.source_text)
        published = await self.publisher.publish(media, caption)
        if isinstance(published, PublishFailed):
            return self._transient_failure(job, published.reason)

        logger.info(f"Job {job.id} published {len(media)} media items")
        return Disposition.complete()

    def _transient_failure(self, job: Job, reason: str) -> Disposition:
        attempt = job.retry_count + 1
        if attempt < self.max_retries:
            delay_ms = next_retry_delay_ms(job.last_delay_ms, self.retry_increment_ms)
            retry_at = self.clock() + timedelta(milliseconds=delay_ms)
            logger.info(
                f"Job {job.id} will retry (attempt {attempt}/{self.max_retries}) "
                f"after {delay_ms}ms: {reason}"
            )
            return Disposition.retry(retry_at, delay_ms, attempt, reason)

        logger.error(f"Job {job.id} failed after {attempt} attempts: {reason}")
        return Disposition.fail(RetriesExhaustedError(job.id, attempt, reason))
