"""Routes job outcomes back to in-process callers and the requesting user."""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

from publish_queue.collaborators import UserNotifier
from publish_queue.models import QueueStatusEntry

logger = logging.getLogger(__name__)


class ResultRouter:
    """
    Bridge between persisted jobs and callers awaiting them.

    Handles live only in memory: after a restart the jobs still run, but
    nobody is waiting on them anymore. Every ``notify_*`` call is best-effort;
    notifier errors are logged and discarded.
    """

    def __init__(self, notifier: Optional[UserNotifier] = None):
        self.notifier = notifier
        self._pending: Dict[int, asyncio.Future] = {}
        # Held across enqueue+register so a fast settlement cannot miss its handle
        self.lock = asyncio.Lock()

    def register(self, job_id: int) -> asyncio.Future:
        """Create the caller handle for a freshly enqueued job."""
        future = asyncio.get_running_loop().create_future()
        self._pending[job_id] = future
        return future

    def is_waiting(self, job_id: int) -> bool:
        return job_id in self._pending

    @property
    def waiting_count(self) -> int:
        return len(self._pending)

    def resolve(self, job_id: int) -> bool:
        """Resolve the handle of a completed job. Returns False when nobody waits."""
        future = self._pending.pop(job_id, None)
        if future is None or future.done():
            return False
        future.set_result(None)
        return True

    def reject(self, job_id: int, error: Exception) -> bool:
        """Reject the handle of a permanently failed job."""
        future = self._pending.pop(job_id, None)
        if future is None or future.done():
            return False
        future.set_exception(error)
        # Callers that went away must not trigger "exception was never retrieved"
        future.add_done_callback(_consume_exception)
        return True

    def reject_all(self, error_factory) -> int:
        """Reject every outstanding handle with ``error_factory(job_id)``."""
        job_ids = list(self._pending)
        return sum(1 for job_id in job_ids if self.reject(job_id, error_factory(job_id)))

    async def notify_rate_limit(self, requester_id: str, retry_at: datetime, message: str) -> None:
        await self._notify("notify_rate_limit", requester_id, retry_at, message)

    async def notify_retry_scheduled(
        self, requester_id: str, attempt: int, max_attempts: int, retry_at: datetime
    ) -> None:
        await self._notify("notify_retry_scheduled", requester_id, attempt, max_attempts, retry_at)

    async def notify_failed(self, requester_id: str, post_url: str, reason: str) -> None:
        await self._notify("notify_failed", requester_id, post_url, reason)

    async def notify_queue_cleared(self, requester_id: str, count: int) -> None:
        await self._notify("notify_queue_cleared", requester_id, count)

    async def notify_queue_status(self, requester_id: str, summary: List[QueueStatusEntry]) -> None:
        await self._notify("notify_queue_status", requester_id, summary)

    async def _notify(self, method: str, requester_id: str, *args) -> None:
        if self.notifier is None or not requester_id:
            return
        try:
            await getattr(self.notifier, method)(requester_id, *args)
        except Exception as e:
            logger.warning(f"{method} to requester {requester_id} failed: {e}")


def _consume_exception(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()
