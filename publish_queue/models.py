"""Data models for publish jobs and collaborator outcomes."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Job status values.

    Completed and failed jobs are deleted, so only live states exist.
    """

    PENDING = "pending"
    PROCESSING = "processing"


class Job:
    """Represents a publish job record."""

    def __init__(
        self,
        id: int,
        requester_id: str,
        post_url: str,
        user_text: str,
        status: JobStatus,
        available_at: datetime,
        retry_count: int = 0,
        last_delay_ms: int = 0,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.id = id
        self.requester_id = requester_id
        self.post_url = post_url
        self.user_text = user_text
        self.status = JobStatus(status) if isinstance(status, str) else status
        self.available_at = available_at
        self.retry_count = retry_count
        self.last_delay_ms = last_delay_ms
        self.created_at = created_at
        self.updated_at = updated_at

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, status={self.status.value}, "
            f"available_at={self.available_at}, retry_count={self.retry_count})"
        )


class QueueStatusEntry(BaseModel):
    """Aggregate queue view for one status."""

    status: JobStatus
    count: int
    earliest_available_at: Optional[datetime] = None
    max_retry_count: int = 0

    model_config = {
        "use_enum_values": True,
    }


class MediaKind(str, Enum):
    """Media kinds the destination channel accepts."""

    PHOTO = "photo"
    VIDEO = "video"


class MediaItem(BaseModel):
    """A remote media attachment of a source post."""

    kind: MediaKind
    source_url: str
    alt_text: Optional[str] = None

    @property
    def extension(self) -> str:
        return ".jpg" if self.kind == MediaKind.PHOTO else ".mp4"


class LocalMedia(BaseModel):
    """A downloaded media attachment ready to publish."""

    kind: MediaKind
    local_path: str


# Fetch outcomes


class FetchedPost(BaseModel):
    outcome: Literal["fetched"] = "fetched"
    items: List[MediaItem] = Field(default_factory=list)
    source_text: str = ""


class RateLimited(BaseModel):
    outcome: Literal["rate_limited"] = "rate_limited"
    retry_at: datetime
    message: str = ""


class FetchFailed(BaseModel):
    outcome: Literal["fetch_failed"] = "fetch_failed"
    reason: str


class Downloaded(BaseModel):
    outcome: Literal["downloaded"] = "downloaded"
    local_path: str


FetchOutcome = Union[FetchedPost, RateLimited, FetchFailed]
DownloadOutcome = Union[Downloaded, FetchFailed]


# Publish outcomes


class Published(BaseModel):
    outcome: Literal["published"] = "published"
    message_count: int = 0


class PublishFailed(BaseModel):
    outcome: Literal["publish_failed"] = "publish_failed"
    reason: str


PublishOutcome = Union[Published, PublishFailed]


class DispositionKind(str, Enum):
    """How a finished execution is settled."""

    COMPLETE = "complete"
    RATE_LIMITED = "rate_limited"
    RETRY = "retry"
    FAIL = "fail"


class Disposition:
    """Outcome classification of one job execution."""

    def __init__(
        self,
        kind: DispositionKind,
        retry_at: Optional[datetime] = None,
        delay_ms: int = 0,
        attempt: int = 0,
        message: str = "",
        error: Optional[Exception] = None,
    ):
        self.kind = kind
        self.retry_at = retry_at
        self.delay_ms = delay_ms
        self.attempt = attempt
        self.message = message
        self.error = error

    @classmethod
    def complete(cls) -> "Disposition":
        return cls(DispositionKind.COMPLETE)

    @classmethod
    def rate_limited(cls, retry_at: datetime, delay_ms: int, message: str = "") -> "Disposition":
        return cls(DispositionKind.RATE_LIMITED, retry_at=retry_at, delay_ms=delay_ms, message=message)

    @classmethod
    def retry(cls, retry_at: datetime, delay_ms: int, attempt: int, message: str) -> "Disposition":
        return cls(
            DispositionKind.RETRY,
            retry_at=retry_at,
            delay_ms=delay_ms,
            attempt=attempt,
            message=message,
        )

    @classmethod
    def fail(cls, error: Exception) -> "Disposition":
        return cls(DispositionKind.FAIL, error=error, message=str(error))

    def __repr__(self) -> str:
        return f"Disposition(kind={self.kind.value}, retry_at={self.retry_at}, delay_ms={self.delay_ms})"
