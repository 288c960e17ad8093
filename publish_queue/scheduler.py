"""Single-flight scheduler loop for publish jobs."""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from publish_queue.errors import SchedulerStoppedError
from publish_queue.executor import JobExecutor
from publish_queue.models import Disposition, DispositionKind, Job, utc_now
from publish_queue.router import ResultRouter
from publish_queue.store import JobStore

logger = logging.getLogger(__name__)


class DelayedKick:
    """
    One-shot, cancellable wake timer.

    At most one timer is outstanding. Re-arming only ever moves the wake
    earlier; a later deadline than the armed one is ignored.
    """

    def __init__(self, callback: Callable[[], None], clock: Callable[[], datetime] = utc_now):
        self._callback = callback
        self._clock = clock
        self._handle: Optional[asyncio.TimerHandle] = None
        self.deadline: Optional[datetime] = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self, deadline: datetime) -> bool:
        """Arm the timer for ``deadline``. Returns True if the wake moved."""
        if self._handle is not None and self.deadline is not None and deadline >= self.deadline:
            return False

        self.cancel()
        delay = max(0.0, (deadline - self._clock()).total_seconds())
        self._handle = asyncio.get_running_loop().call_later(delay, self._fire)
        self.deadline = deadline
        logger.debug(f"Wake armed for {deadline.isoformat()} (in {delay:.3f}s)")
        return True

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self.deadline = None

    def _fire(self) -> None:
        # Clear first so a kick that re-arms does not see a stale handle
        self._handle = None
        self.deadline = None
        self._callback()


class PublishScheduler:
    """
    Drives the job store forward, one job at a time.

    The loop is quiescent when no job is eligible: it arms a single wake
    timer for the earliest pending ``available_at`` instead of polling.
    Each job is fully executed and settled before the next reservation, so
    at most one job is ever in flight.

    Example:
        ```python
        scheduler = PublishScheduler(store, executor, router)
        await scheduler.start()
        ...
        scheduler.kick()  # after enqueueing
        ...
        await scheduler.stop()
        ```
    """

    def __init__(
        self,
        store: JobStore,
        executor: JobExecutor,
        router: ResultRouter,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.executor = executor
        self.router = router
        self.clock = clock
        self._wake = DelayedKick(self.kick, clock)
        self._drain_task: Optional[asyncio.Task] = None
        self._rerun = False
        self._running = False
        self._stopping = False
        self._failure: Optional[BaseException] = None
        self._closed = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def busy(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    @property
    def failure(self) -> Optional[BaseException]:
        return self._failure

    @property
    def wake_deadline(self) -> Optional[datetime]:
        return self._wake.deadline

    async def start(self) -> None:
        """Recover interrupted jobs and begin draining."""
        if self._running:
            logger.warning("Scheduler is already running")
            return

        await self.store.initialize(self.clock())
        self._running = True
        self._stopping = False
        self._closed.clear()
        logger.info("Scheduler started")
        self.kick()

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop after the job in flight, if any, is settled.

        With ``timeout`` the in-flight job is abandoned once it expires; its
        row stays ``processing`` and is recovered on the next start.
        """
        if not self._running:
            logger.warning("Scheduler is not running")
            return

        self._stopping = True
        self._wake.cancel()

        task = self._drain_task
        if task is not None and not task.done():
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout)
            except asyncio.TimeoutError:
                logger.warning("In-flight job did not finish before shutdown, cancelling")
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._running = False
        self._drain_task = None
        self._closed.set()
        logger.info("Scheduler stopped")

    async def wait_closed(self) -> None:
        """Wait until the scheduler stops; re-raise the error that stopped it."""
        await self._closed.wait()
        if self._failure is not None:
            raise self._failure

    async def join(self) -> None:
        """Wait until the loop is idle (no drain pass in progress)."""
        while self._drain_task is not None and not self._drain_task.done():
            await asyncio.shield(self._drain_task)

    def kick(self) -> None:
        """Signal that new eligible work may exist."""
        if not self._running or self._stopping:
            return

        self._rerun = True
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.get_running_loop().create_task(self._run_drain())

    async def drain(self) -> None:
        """
        Execute every eligible job, then arm the wake for the next one.

        Loops again if a kick arrived while draining, so work enqueued between
        the last empty reservation and going idle is not stranded.
        """
        while True:
            self._rerun = False

            while not self._stopping:
                job = await self.store.reserve_next(self.clock())
                if job is None:
                    break
                await self._process(job)

            if self._stopping:
                return

            next_available_at = await self.store.peek_next_available_at()
            if next_available_at is not None:
                self._wake.arm(next_available_at)

            if not self._rerun:
                return

    async def _run_drain(self) -> None:
        try:
            await self.drain()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Scheduler stopped on store failure: {e}", exc_info=True)
            self._failure = e
            self._running = False
            self._wake.cancel()
            async with self.router.lock:
                released = self.router.reject_all(
                    lambda job_id: SchedulerStoppedError(f"Scheduler stopped before job {job_id} settled: {e}")
                )
            if released:
                logger.warning(f"Released {released} waiting callers after scheduler failure")
            self._closed.set()

    async def _process(self, job: Job) -> None:
        disposition = await self.executor.execute(job)
        await self._settle(job, disposition)

    async def _settle(self, job: Job, disposition: Disposition) -> None:
        """Apply the store action, wake and caller effect of a disposition."""
        kind = disposition.kind

        if kind == DispositionKind.COMPLETE:
            await self.store.complete(job.id)
            async with self.router.lock:
                self.router.resolve(job.id)
            logger.info(f"Job {job.id} completed")

        elif kind == DispositionKind.RATE_LIMITED:
            moved = await self.store.reschedule(
                job.id, disposition.retry_at, disposition.delay_ms, count_retry=False
            )
            if not moved:
                logger.debug(f"Job {job.id} was removed while rate limited, nothing to reschedule")
                return
            self._wake.arm(disposition.retry_at)
            await self.router.notify_rate_limit(
                job.requester_id, disposition.retry_at, disposition.message
            )

        elif kind == DispositionKind.RETRY:
            moved = await self.store.reschedule(job.id, disposition.retry_at, disposition.delay_ms)
            if not moved:
                logger.debug(f"Job {job.id} was removed while running, dropping its retry")
                return
            self._wake.arm(disposition.retry_at)
            await self.router.notify_retry_scheduled(
                job.requester_id,
                disposition.attempt,
                self.executor.max_retries,
                disposition.retry_at,
            )

        elif kind == DispositionKind.FAIL:
            removed = await self.store.fail(job.id)
            async with self.router.lock:
                self.router.reject(job.id, disposition.error)
            if not removed:
                logger.debug(f"Job {job.id} was removed while running, not reporting its failure")
                return
            await self.router.notify_failed(job.requester_id, job.post_url, disposition.message)
            logger.error(f"Job {job.id} permanently failed: {disposition.message}")

        else:
            raise ValueError(f"Unknown disposition {kind!r}")
