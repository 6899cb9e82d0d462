"""
app/api/routers/crawl_router.py

Crawl task ingress and queue control endpoints.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.dependencies import get_crawling_manager
from app.crawling.errors import ValidationError
from app.crawling.manager import CrawlingManager
from app.schemas.crawl import (
    CrawlTaskRequest,
    CrawlTaskResponse,
    CrawlTaskStatusResponse,
    QueueClearedResponse,
)

router = APIRouter(prefix="/crawl", tags=["crawl"])


@router.post("/tasks", response_model=CrawlTaskResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_task(
    request: CrawlTaskRequest,
    manager: CrawlingManager = Depends(get_crawling_manager),
) -> CrawlTaskResponse:
    """
    Queue one crawl task; it runs on the scheduler's dispatch loop.
    """

    try:
        task_id = manager.submit_task(request.kind, request.payload, request.options, request.priority)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return CrawlTaskResponse(task_id=task_id, kind=request.kind, status="pending")


@router.get("/tasks/{task_id}", response_model=CrawlTaskStatusResponse)
async def get_task(
    task_id: str,
    manager: CrawlingManager = Depends(get_crawling_manager),
) -> CrawlTaskStatusResponse:
    task = manager.scheduler.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found.")
    return CrawlTaskStatusResponse(
        id=task.id,
        kind=task.kind.value,
        status=task.status.value,
        priority=task.priority,
        retries=task.retries,
        last_error=task.last_error,
    )


@router.get("/stats")
async def get_stats(manager: CrawlingManager = Depends(get_crawling_manager)) -> dict[str, Any]:
    return manager.get_stats()


@router.post("/queue/pause", status_code=status.HTTP_204_NO_CONTENT)
async def pause_queue(manager: CrawlingManager = Depends(get_crawling_manager)) -> None:
    manager.pause_queue()


@router.post("/queue/resume", status_code=status.HTTP_204_NO_CONTENT)
async def resume_queue(manager: CrawlingManager = Depends(get_crawling_manager)) -> None:
    manager.resume_queue()


@router.post("/queue/clear", response_model=QueueClearedResponse)
async def clear_queue(manager: CrawlingManager = Depends(get_crawling_manager)) -> QueueClearedResponse:
    return QueueClearedResponse(cleared=manager.clear_queue())
