"""Unit tests for the exception hierarchy."""

from publish_queue.errors import (
    InvalidPostUrlError,
    JobNotFoundError,
    NoMediaError,
    PublishQueueError,
    QueueClearedError,
    RemoteHttpError,
    RetriesExhaustedError,
    SchedulerStoppedError,
)


def test_all_errors_share_base():
    for error in (
        InvalidPostUrlError(),
        NoMediaError("u"),
        RetriesExhaustedError(1, 3, "boom"),
        JobNotFoundError(1),
        QueueClearedError(1),
        SchedulerStoppedError("stopped"),
        RemoteHttpError(500, "oops"),
    ):
        assert isinstance(error, PublishQueueError)


def test_messages():
    assert str(InvalidPostUrlError("abc")) == "Invalid Twitter/X post link: abc"
    assert str(InvalidPostUrlError()) == "Invalid Twitter/X post link"
    assert str(RetriesExhaustedError(7, 3, "boom")) == "Job 7 failed after 3 attempts: boom"
    assert str(RemoteHttpError(429, "Too Many Requests")) == "HTTP 429: Too Many Requests"


def test_attributes():
    error = RemoteHttpError(400, "Bad Request", response_body="{}")
    assert error.status_code == 400
    assert error.response_body == "{}"
    assert QueueClearedError(9).job_id == 9
