"""High-level service layer for publish submissions and queue operations."""

import asyncio
import logging
import re
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from publish_queue.errors import InvalidPostUrlError, QueueClearedError, SchedulerStoppedError
from publish_queue.models import QueueStatusEntry, utc_now
from publish_queue.router import ResultRouter
from publish_queue.scheduler import PublishScheduler
from publish_queue.store import JobStore

logger = logging.getLogger(__name__)

POST_URL_RE = re.compile(
    r"(https?://(?:www\.|mobile\.)?(?:twitter|x)\.com/[^/\s]+/status/\d+[^\s]*)",
    re.IGNORECASE,
)


def parse_post_request(text: str) -> Tuple[str, str]:
    """
    Split free text into the post link and the caption around it.

    Raises:
        InvalidPostUrlError: If the text carries no Twitter/X status link
    """
    payload = (text or "").strip()
    match = POST_URL_RE.search(payload)
    if not match:
        raise InvalidPostUrlError(payload[:200] or None)

    post_url = match.group(1)
    user_text = (payload[: match.start()] + payload[match.end():]).strip()
    return post_url, user_text


class Submission:
    """A persisted job plus the in-memory handle resolved when it settles."""

    def __init__(self, job_id: int, result: asyncio.Future):
        self.job_id = job_id
        self.result = result

    def __await__(self):
        return self.result.__await__()

    def __repr__(self) -> str:
        return f"Submission(job_id={self.job_id}, done={self.result.done()})"


class PublishService:
    """Submission, clear and status operations over the queue."""

    def __init__(
        self,
        store: JobStore,
        scheduler: PublishScheduler,
        router: ResultRouter,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.router = router
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)

    async def submit(
        self,
        *,
        requester_id: str,
        post_url: str,
        user_text: str = "",
        available_at: Optional[datetime] = None,
    ) -> Submission:
        """
        Validate and enqueue a publish request.

        Args:
            requester_id: Opaque identity used for notifications only
            post_url: Twitter/X status link
            user_text: Caption text supplied by the requester
            available_at: Earliest execution time (defaults to now)

        Returns:
            Submission: job id and an awaitable resolved on completion

        Raises:
            InvalidPostUrlError: If ``post_url`` is not a Twitter/X status link
            SchedulerStoppedError: If the scheduler stopped on a store failure
        """
        match = POST_URL_RE.fullmatch((post_url or "").strip())
        if not match:
            raise InvalidPostUrlError(post_url)

        if not (user_text or "").strip():
            self.logger.warning(f"Empty caption text from requester {requester_id}")

        async with self.router.lock:
            if self.scheduler.failure is not None:
                raise SchedulerStoppedError(f"Scheduler stopped: {self.scheduler.failure}")
            job_id = await self.store.enqueue(
                requester_id=str(requester_id),
                post_url=match.group(1),
                user_text=user_text or "",
                available_at=available_at or self.clock(),
            )
            result = self.router.register(job_id)
        self.scheduler.kick()

        self.logger.info(f"Enqueued job {job_id} for requester {requester_id}")
        return Submission(job_id, result)

    async def submit_text(self, *, requester_id: str, text: str) -> Submission:
        """Submit free text holding a post link and an optional caption."""
        post_url, user_text = parse_post_request(text)
        return await self.submit(requester_id=requester_id, post_url=post_url, user_text=user_text)

    async def clear_queue(self, requester_id: str) -> int:
        """Remove every queued job; outstanding caller handles are rejected."""
        async with self.router.lock:
            count = await self.store.clear_all()
            rejected = self.router.reject_all(QueueClearedError)
        self.logger.info(
            f"Queue cleared by requester {requester_id}: {count} jobs removed, "
            f"{rejected} waiting callers released"
        )
        await self.router.notify_queue_cleared(requester_id, count)
        return count

    async def queue_status(self, requester_id: str) -> List[QueueStatusEntry]:
        """Aggregate queue view; also sent to the requester."""
        summary = await self.store.status_summary()
        await self.router.notify_queue_status(requester_id, summary)
        return summary
