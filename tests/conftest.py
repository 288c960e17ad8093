"""Pytest configuration and fixtures."""

import os
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from publish_queue.collaborators import ChannelPublisher, MediaFetcher, UserNotifier
from publish_queue.errors import JobNotFoundError
from publish_queue.executor import JobExecutor
from publish_queue.models import (
    Downloaded,
    FetchedPost,
    FetchFailed,
    Job,
    JobStatus,
    MediaItem,
    MediaKind,
    Published,
    QueueStatusEntry,
)
from publish_queue.router import ResultRouter
from publish_queue.scheduler import PublishScheduler
from publish_queue.service import PublishService
from publish_queue.temp_files import TempFileManager

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, ms: int) -> datetime:
        self.now = self.now + timedelta(milliseconds=ms)
        return self.now


class InMemoryJobStore:
    """Job store double with the same ordering and update rules as JobStore."""

    def __init__(self):
        self.rows: Dict[int, Job] = {}
        self.next_id = 1
        self.error: Optional[Exception] = None
        self.initialize_calls = 0

    def _check(self):
        if self.error is not None:
            raise self.error

    async def initialize(self, now=None) -> int:
        self._check()
        self.initialize_calls += 1
        recovered = 0
        for job in self.rows.values():
            if job.status == JobStatus.PROCESSING:
                job.status = JobStatus.PENDING
                job.available_at = now
                recovered += 1
        return recovered

    async def enqueue(self, requester_id, post_url, user_text="", available_at=None, retry_count=0, last_delay_ms=0) -> int:
        self._check()
        job_id = self.next_id
        self.next_id += 1
        self.rows[job_id] = Job(
            id=job_id,
            requester_id=str(requester_id),
            post_url=post_url,
            user_text=user_text,
            status=JobStatus.PENDING,
            available_at=available_at or T0,
            retry_count=retry_count,
            last_delay_ms=last_delay_ms,
        )
        return job_id

    async def get_job(self, job_id) -> Job:
        if job_id not in self.rows:
            raise JobNotFoundError(job_id)
        return self._snapshot(self.rows[job_id])

    async def reserve_next(self, now) -> Optional[Job]:
        self._check()
        eligible = [
            job for job in self.rows.values()
            if job.status == JobStatus.PENDING and job.available_at <= now
        ]
        if not eligible:
            return None
        job = min(eligible, key=lambda j: (j.available_at, j.id))
        job.status = JobStatus.PROCESSING
        return self._snapshot(job)

    async def peek_next_available_at(self):
        self._check()
        pending = [j.available_at for j in self.rows.values() if j.status == JobStatus.PENDING]
        return min(pending) if pending else None

    async def reschedule(self, job_id, new_available_at, delay_ms, count_retry=True) -> bool:
        self._check()
        job = self.rows.get(job_id)
        if job is None or job.status != JobStatus.PROCESSING:
            return False
        job.status = JobStatus.PENDING
        job.available_at = max(job.available_at, new_available_at)
        job.last_delay_ms = delay_ms
        if count_retry:
            job.retry_count += 1
        return True

    async def complete(self, job_id) -> bool:
        self._check()
        return self.rows.pop(job_id, None) is not None

    async def fail(self, job_id) -> bool:
        self._check()
        return self.rows.pop(job_id, None) is not None

    async def clear_all(self) -> int:
        self._check()
        count = len(self.rows)
        self.rows.clear()
        return count

    async def status_summary(self) -> List[QueueStatusEntry]:
        self._check()
        summary = []
        for status in (JobStatus.PENDING, JobStatus.PROCESSING):
            jobs = [j for j in self.rows.values() if j.status == status]
            if jobs:
                summary.append(
                    QueueStatusEntry(
                        status=status,
                        count=len(jobs),
                        earliest_available_at=min(j.available_at for j in jobs),
                        max_retry_count=max(j.retry_count for j in jobs),
                    )
                )
        return summary

    def processing_count(self) -> int:
        return sum(1 for j in self.rows.values() if j.status == JobStatus.PROCESSING)

    @staticmethod
    def _snapshot(job: Job) -> Job:
        return Job(**{k: v for k, v in vars(job).items()})


class FakeFetcher(MediaFetcher):
    """Returns queued outcomes; defaults to a post with one photo."""

    def __init__(self):
        self.fetch_outcomes: List = []
        self.download_outcomes: List = []
        self.fetched: List[str] = []
        self.downloaded: List[str] = []

    async def fetch_media(self, post_url):
        self.fetched.append(post_url)
        if self.fetch_outcomes:
            outcome = self.fetch_outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return FetchedPost(
            items=[MediaItem(kind=MediaKind.PHOTO, source_url="https://pbs.twimg.com/media/a.jpg")],
            source_text="source text",
        )

    async def download(self, item, destination):
        self.downloaded.append(destination)
        if self.download_outcomes:
            outcome = self.download_outcomes.pop(0)
            if isinstance(outcome, FetchFailed):
                return outcome
        with open(destination, "wb") as fh:
            fh.write(b"media")
        return Downloaded(local_path=destination)


class FakePublisher(ChannelPublisher):
    """Records publish calls and tracks how many run at once."""

    def __init__(self):
        self.calls: List = []
        self.outcomes: List = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.hook = None

    async def publish(self, media, caption):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.hook is not None:
                await self.hook(media, caption)
            self.calls.append((list(media), caption))
            if self.outcomes:
                return self.outcomes.pop(0)
            return Published(message_count=1)
        finally:
            self.in_flight -= 1


class FakeNotifier(UserNotifier):
    """Records notifications; can be told to fail every call."""

    def __init__(self):
        self.calls: List = []
        self.error: Optional[Exception] = None

    async def _record(self, *call):
        self.calls.append(call)
        if self.error is not None:
            raise self.error

    async def notify_rate_limit(self, requester_id, retry_at, message):
        await self._record("rate_limit", requester_id, retry_at, message)

    async def notify_retry_scheduled(self, requester_id, attempt, max_attempts, retry_at):
        await self._record("retry", requester_id, attempt, max_attempts, retry_at)

    async def notify_failed(self, requester_id, post_url, reason):
        await self._record("failed", requester_id, post_url, reason)

    async def notify_queue_cleared(self, requester_id, count):
        await self._record("cleared", requester_id, count)

    async def notify_queue_status(self, requester_id, summary):
        await self._record("status", requester_id, summary)

    def kinds(self) -> List[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def temp_files(tmp_path):
    return TempFileManager(str(tmp_path / "scratch"))


@pytest.fixture
def executor(fetcher, publisher, temp_files, clock):
    return JobExecutor(fetcher, publisher, temp_files, max_retries=3, clock=clock)


@pytest.fixture
def router(notifier):
    return ResultRouter(notifier)


@pytest.fixture
def scheduler(store, executor, router, clock):
    scheduler = PublishScheduler(store, executor, router, clock=clock)
    yield scheduler
    scheduler._wake.cancel()


@pytest.fixture
def service(store, scheduler, router, clock):
    return PublishService(store, scheduler, router, clock=clock)


@pytest.fixture
def post_url():
    return "https://x.com/someone/status/1234567890"


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("PUBLISH_QUEUE_") or name.startswith("TELEGRAM_") or name.startswith("TWITTER_"):
            monkeypatch.delenv(name, raising=False)
