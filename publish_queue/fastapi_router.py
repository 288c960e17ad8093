"""FastAPI router exposing the operator surface of the publish queue."""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel

from publish_queue.errors import (
    InvalidPostUrlError,
    PublishQueueError,
    QueueClearedError,
    SchedulerStoppedError,
)
from publish_queue.service import PublishService


logger = logging.getLogger(__name__)


class SubmitJobRequest(BaseModel):
    """Request model for submitting a publish job."""

    requester_id: str
    post_url: str
    user_text: str = ""
    available_at: Optional[str] = None  # ISO8601 datetime string
    wait: bool = False


class SubmitJobResponse(BaseModel):
    """Response model for a submitted job."""

    job_id: int
    status: str


class ClearQueueRequest(BaseModel):
    requester_id: str


class ClearQueueResponse(BaseModel):
    cleared: int


class QueueStatusResponse(BaseModel):
    status: str
    count: int
    earliest_available_at: Optional[str] = None
    max_retry_count: int


def create_publish_router(
    service_factory: Callable[[], PublishService],
    auth_token: Optional[str] = None,
) -> APIRouter:
    """
    Create FastAPI router for the publish queue.

    Args:
        service_factory: Callable that returns the PublishService instance
        auth_token: Optional token required in the X-Publish-Queue-Token header

    Returns:
        APIRouter instance
    """
    router = APIRouter()

    async def get_service() -> PublishService:
        """Dependency to get PublishService instance."""
        return service_factory()

    async def verify_auth_token(
        x_publish_queue_token: Optional[str] = Header(None, alias="X-Publish-Queue-Token")
    ) -> None:
        """Verify auth token if configured."""
        if auth_token:
            if not x_publish_queue_token or x_publish_queue_token != auth_token:
                raise HTTPException(status_code=401, detail="Invalid or missing auth token")

    @router.post("/jobs/submit", response_model=SubmitJobResponse)
    async def submit_job(
        request: SubmitJobRequest,
        service: PublishService = Depends(get_service),
        _: None = Depends(verify_auth_token),
    ):
        """Submit a post for publishing; optionally wait for the outcome."""
        available_at = None
        if request.available_at:
            try:
                available_at = datetime.fromisoformat(request.available_at.replace("Z", "+00:00"))
            except ValueError as e:
                raise HTTPException(status_code=400, detail=f"Invalid available_at format: {e}") from e
            if available_at.tzinfo is None:
                raise HTTPException(status_code=400, detail="available_at must include a timezone")

        try:
            submission = await service.submit(
                requester_id=request.requester_id,
                post_url=request.post_url,
                user_text=request.user_text,
                available_at=available_at,
            )
        except InvalidPostUrlError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except SchedulerStoppedError as e:
            raise HTTPException(status_code=503, detail=str(e)) from e
        except Exception as e:
            logger.exception("Error submitting job")
            raise HTTPException(status_code=500, detail="Internal server error") from e

        if not request.wait:
            return SubmitJobResponse(job_id=submission.job_id, status="queued")

        try:
            await submission
        except QueueClearedError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        except PublishQueueError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e

        return SubmitJobResponse(job_id=submission.job_id, status="completed")

    @router.post("/jobs/clear", response_model=ClearQueueResponse)
    async def clear_queue(
        request: ClearQueueRequest,
        service: PublishService = Depends(get_service),
        _: None = Depends(verify_auth_token),
    ):
        """Remove every queued job."""
        try:
            cleared = await service.clear_queue(request.requester_id)
        except Exception as e:
            logger.exception("Error clearing queue")
            raise HTTPException(status_code=500, detail="Internal server error") from e
        return ClearQueueResponse(cleared=cleared)

    @router.get("/jobs/status", response_model=List[QueueStatusResponse])
    async def queue_status(
        requester_id: str = Query(""),
        service: PublishService = Depends(get_service),
        _: None = Depends(verify_auth_token),
    ):
        """Aggregate queue status grouped by job status."""
        try:
            summary = await service.queue_status(requester_id)
        except Exception as e:
            logger.exception("Error reading queue status")
            raise HTTPException(status_code=500, detail="Internal server error") from e

        return [
            QueueStatusResponse(
                status=entry.status,
                count=entry.count,
                earliest_available_at=(
                    entry.earliest_available_at.isoformat() if entry.earliest_available_at else None
                ),
                max_retry_count=entry.max_retry_count,
            )
            for entry in summary
        ]

    return router
