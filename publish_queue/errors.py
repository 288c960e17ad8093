"""Exception types for the publish queue."""


class PublishQueueError(Exception):
    """Base exception for all publish queue errors."""

    pass


class InvalidPostUrlError(PublishQueueError):
    """Raised when a submission does not carry a usable Twitter/X post link."""

    def __init__(self, post_url: str = None, message: str = None):
        self.post_url = post_url
        if message is None:
            message = "Invalid Twitter/X post link"
            if post_url:
                message = f"{message}: {post_url}"
        super().__init__(message)


class NoMediaError(PublishQueueError):
    """Raised when a fetched post has no attachments to publish."""

    def __init__(self, post_url: str, message: str = None):
        self.post_url = post_url
        if message is None:
            message = f"Post {post_url} has no media attachments"
        super().__init__(message)


class MediaDownloadError(PublishQueueError):
    """Raised when post data or media could not be fetched."""

    pass


class RetriesExhaustedError(PublishQueueError):
    """Raised when a job failed on every attempt it was allowed."""

    def __init__(self, job_id: int, attempts: int, reason: str):
        self.job_id = job_id
        self.attempts = attempts
        self.reason = reason
        super().__init__(f"Job {job_id} failed after {attempts} attempts: {reason}")


class JobNotFoundError(PublishQueueError):
    """Raised when a job is not found."""

    def __init__(self, job_id: int, message: str = None):
        self.job_id = job_id
        if message is None:
            message = f"Job {job_id} not found"
        super().__init__(message)


class QueueClearedError(PublishQueueError):
    """Raised on a pending caller handle whose job was removed by a queue clear."""

    def __init__(self, job_id: int):
        self.job_id = job_id
        super().__init__(f"Job {job_id} was removed by a queue clear")


class SchedulerStoppedError(PublishQueueError):
    """Raised when work is submitted to a scheduler that is not running."""

    pass


class RemoteHttpError(PublishQueueError):
    """Raised when an HTTP request to a remote API fails."""

    def __init__(self, status_code: int, message: str, response_body: str = None):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(f"HTTP {status_code}: {message}")
