"""
HTTP API routes for podcast tasks.

Provides endpoints for:
- Submitting a source for processing
- Listing and reading tasks
- Polling progress
- Deleting a task
- Previewing a video URL before submission
"""

import logging

from fastapi import APIRouter, Depends, Query, Response

from castforge.api.dependencies import (
    Container,
    get_container,
    get_owner_id,
    get_repository,
    get_tracker,
)
from castforge.models.schemas import (
    InputDescriptor,
    ProgressResponse,
    SubmitTaskRequest,
    SubmitTaskResponse,
    Task,
    TaskStatus,
    VideoInfo,
)
from castforge.services.errors import InvalidTransition, NotFound
from castforge.services.progress_tracker import ProgressTracker
from castforge.services.repository import Repository
from castforge.services.source_ingestion import validate_input

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["tasks"])


def task_job_key(task_id: str) -> str:
    return f"task:{task_id}"


@router.post("/tasks", response_model=SubmitTaskResponse, status_code=202)
async def submit_task(
    request: SubmitTaskRequest,
    owner_id: str = Depends(get_owner_id),
    container: Container = Depends(get_container),
) -> SubmitTaskResponse:
    """
    Submit a source for processing.

    The Task is stored as pending and queued; the response returns at
    once. Follow progress with GET /api/tasks/{id}/progress or the
    WebSocket /ws/tasks/{id}.

    Raises:
        400: Payload does not fit its kind
    """
    payload = validate_input(request.kind, request.payload)

    task = Task(
        owner_id=owner_id,
        input=InputDescriptor(kind=request.kind, payload=payload),
        options=request.to_options(),
    )
    await container.repository.create_task(task)

    if task.options.has_voice_override:
        await container.repository.save_voice_preference(
            owner_id, task.options.voice_id_1, task.options.voice_id_2,
        )

    container.worker.submit(
        task_job_key(task.id),
        lambda: container.orchestrator.run(task.id, source_payload=payload),
    )

    logger.info(f"Submitted task {task.id} ({request.kind.value}) for owner {owner_id}")
    return SubmitTaskResponse(task_id=task.id)


@router.get("/videos/info", response_model=VideoInfo)
async def get_video_info(
    url: str = Query(..., min_length=1),
    owner_id: str = Depends(get_owner_id),
    container: Container = Depends(get_container),
) -> VideoInfo:
    """
    Preview a YouTube URL: title, duration and thumbnail.

    Raises:
        400: Not a YouTube URL, or the video is unavailable or too long
        502: Metadata lookup failed
    """
    return await container.ingestion.video_info(url)


@router.get("/tasks", response_model=list[Task])
async def list_tasks(
    owner_id: str = Depends(get_owner_id),
    repository: Repository = Depends(get_repository),
) -> list[Task]:
    """List the caller's tasks, newest first."""
    return await repository.list_tasks(owner_id)


@router.get("/tasks/{task_id}", response_model=Task)
async def get_task(
    task_id: str,
    owner_id: str = Depends(get_owner_id),
    repository: Repository = Depends(get_repository),
) -> Task:
    """
    Raises:
        404: Task not found
    """
    task = await repository.get_task(task_id, owner_id)
    if task is None:
        raise NotFound(f"Task not found: {task_id}")
    return task


@router.get("/tasks/{task_id}/progress", response_model=ProgressResponse)
async def get_progress(
    task_id: str,
    owner_id: str = Depends(get_owner_id),
    tracker: ProgressTracker = Depends(get_tracker),
) -> ProgressResponse:
    """
    Read the stored progress snapshot.

    Raises:
        404: Task not found
    """
    return await tracker.get_progress(task_id, owner_id)


@router.delete("/tasks/{task_id}", status_code=204)
async def delete_task(
    task_id: str,
    owner_id: str = Depends(get_owner_id),
    repository: Repository = Depends(get_repository),
) -> Response:
    """
    Delete a task with its highlights and avatar videos.

    Raises:
        404: Task not found
        409: Task is still processing
    """
    task = await repository.get_task(task_id, owner_id)
    if task is None:
        raise NotFound(f"Task not found: {task_id}")
    if task.status is TaskStatus.PROCESSING:
        raise InvalidTransition(f"Task {task_id} is still processing")

    await repository.delete_task(task_id, owner_id)
    return Response(status_code=204)
