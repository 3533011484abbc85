"""
HTTP API routes for highlights and avatar videos.
"""

import logging

from fastapi import APIRouter, Depends, Response

from castforge.api.dependencies import Container, get_container, get_owner_id, get_repository
from castforge.models.schemas import AvatarVideoRequest, AvatarVideoTask, Highlight, HighlightRequest
from castforge.services.errors import NotFound
from castforge.services.repository import Repository

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["highlights"])


def avatar_job_key(video_id: str) -> str:
    return f"avatar:{video_id}"


# ═══════════════════════════════════════════════════════════════════════════════
# Highlights
# ═══════════════════════════════════════════════════════════════════════════════


@router.post("/tasks/{task_id}/highlights", response_model=list[Highlight])
async def generate_highlights(
    task_id: str,
    request: HighlightRequest | None = None,
    owner_id: str = Depends(get_owner_id),
    container: Container = Depends(get_container),
) -> list[Highlight]:
    """
    Derive highlights from a completed task.

    Runs synchronously: segmentation is one model call and clipping
    stream-copies short windows.

    Raises:
        400: Task has no narration audio or script
        404: Task not found
        409: Task is not completed
    """
    target = request.target_duration if request else 60
    return await container.highlights.generate(task_id, owner_id, target_duration=target)


@router.get("/tasks/{task_id}/highlights", response_model=list[Highlight])
async def list_highlights(
    task_id: str,
    owner_id: str = Depends(get_owner_id),
    container: Container = Depends(get_container),
) -> list[Highlight]:
    return await container.highlights.list_for_task(task_id, owner_id)


@router.delete("/highlights/{highlight_id}", status_code=204)
async def delete_highlight(
    highlight_id: str,
    owner_id: str = Depends(get_owner_id),
    container: Container = Depends(get_container),
) -> Response:
    await container.highlights.delete(highlight_id, owner_id)
    return Response(status_code=204)


# ═══════════════════════════════════════════════════════════════════════════════
# Avatar videos
# ═══════════════════════════════════════════════════════════════════════════════


@router.post(
    "/highlights/{highlight_id}/avatar-videos",
    response_model=AvatarVideoTask,
    status_code=202,
)
async def create_avatar_video(
    highlight_id: str,
    request: AvatarVideoRequest | None = None,
    owner_id: str = Depends(get_owner_id),
    container: Container = Depends(get_container),
) -> AvatarVideoTask:
    """
    Queue an avatar video for a highlight.

    The duration is checked before anything is stored; the engine
    submission and polling happen in the background.

    Raises:
        400: Highlight duration outside 2-60 seconds
        404: Highlight not found
    """
    highlight = await container.repository.get_highlight(highlight_id, owner_id)
    if highlight is None:
        raise NotFound(f"Highlight not found: {highlight_id}")

    record = await container.avatar.submit(
        highlight,
        owner_id,
        mode=request.mode if request else None,
        prompt=request.prompt if request else None,
    )
    container.worker.submit(avatar_job_key(record.id), lambda: container.avatar.run(record.id))
    return record


@router.get("/highlights/{highlight_id}/avatar-videos", response_model=list[AvatarVideoTask])
async def list_avatar_videos(
    highlight_id: str,
    owner_id: str = Depends(get_owner_id),
    repository: Repository = Depends(get_repository),
) -> list[AvatarVideoTask]:
    if await repository.get_highlight(highlight_id, owner_id) is None:
        raise NotFound(f"Highlight not found: {highlight_id}")
    return await repository.list_avatar_videos(highlight_id, owner_id)


@router.get("/avatar-videos/{video_id}", response_model=AvatarVideoTask)
async def get_avatar_video(
    video_id: str,
    owner_id: str = Depends(get_owner_id),
    repository: Repository = Depends(get_repository),
) -> AvatarVideoTask:
    record = await repository.get_avatar_video(video_id, owner_id)
    if record is None:
        raise NotFound(f"Avatar video not found: {video_id}")
    return record
