"""Durable, single-flight publish queue for Twitter/X to Telegram reposting."""

from publish_queue.config import PublishQueueConfig
from publish_queue.ddl import PUBLISH_JOBS_TABLE_DDL
from publish_queue.errors import (
    InvalidPostUrlError,
    JobNotFoundError,
    MediaDownloadError,
    NoMediaError,
    PublishQueueError,
    QueueClearedError,
    RemoteHttpError,
    RetriesExhaustedError,
    SchedulerStoppedError,
)
from publish_queue.executor import JobExecutor, next_retry_delay_ms
from publish_queue.fastapi_router import create_publish_router
from publish_queue.models import Disposition, DispositionKind, Job, JobStatus, QueueStatusEntry
from publish_queue.router import ResultRouter
from publish_queue.scheduler import DelayedKick, PublishScheduler
from publish_queue.service import PublishService, Submission
from publish_queue.store import JobStore

__version__ = "0.1.0"

__all__ = [
    "PublishQueueConfig",
    "PUBLISH_JOBS_TABLE_DDL",
    "InvalidPostUrlError",
    "JobNotFoundError",
    "MediaDownloadError",
    "NoMediaError",
    "PublishQueueError",
    "QueueClearedError",
    "RemoteHttpError",
    "RetriesExhaustedError",
    "SchedulerStoppedError",
    "JobExecutor",
    "next_retry_delay_ms",
    "create_publish_router",
    "Disposition",
    "DispositionKind",
    "Job",
    "JobStatus",
    "QueueStatusEntry",
    "ResultRouter",
    "DelayedKick",
    "PublishScheduler",
    "PublishService",
    "Submission",
    "JobStore",
]
