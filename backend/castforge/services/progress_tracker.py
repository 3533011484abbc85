"""
Durable progress tracking for Tasks.

Every status change and stage snapshot is written to the repository
before the stage does its work, then broadcast to live subscribers
(WebSocket clients). Progress queries read only the repository, so they
are served independently of whichever worker runs the pipeline.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any

from castforge.models.schemas import (
    PipelineStage,
    ProgressResponse,
    ProgressSnapshot,
    Task,
    TaskStatus,
)
from castforge.services.errors import InvalidTransition, NotFound
from castforge.services.pipeline.progress_manager import ProgressManager
from castforge.services.repository import Repository

logger = logging.getLogger(__name__)


class ProgressTracker:
    """
    Status transitions, progress snapshots and subscriber broadcast.

    Status only moves forward: pending -> processing -> completed | failed.
    Any other change raises InvalidTransition and leaves the record as is.

    Example:
        tracker = ProgressTracker(repository, ProgressManager())
        await tracker.begin(task_id)
        await tracker.advance(task_id, PipelineStage.SCRIPTING, "Writing script")
        await tracker.complete(task_id)

        queue = tracker.subscribe(task_id)
        message = await queue.get()
        # {"task_id": ..., "status": "processing", "stage": "scripting", ...}
    """

    def __init__(self, repository: Repository, progress_manager: ProgressManager):
        self.repository = repository
        self.progress_manager = progress_manager
        self._subscribers: dict[str, list[asyncio.Queue]] = {}

    # ═══════════════════════════════════════════════════════════════════════════
    # Status transitions
    # ═══════════════════════════════════════════════════════════════════════════

    async def begin(self, task_id: str) -> Task:
        """
        Move a pending Task to processing.

        Raises:
            InvalidTransition: If the Task is not pending
            NotFound: If the Task does not exist
        """
        def mutate(task: Task) -> None:
            _check_transition(task, TaskStatus.PROCESSING)
            task.status = TaskStatus.PROCESSING
            task.error_message = None
            task.progress = ProgressSnapshot(
                stage=PipelineStage.QUEUED,
                percent=0,
                message="Starting",
                estimated_time_remaining=self._estimate(task, PipelineStage.QUEUED, 0),
            )

        task = await self.repository.update_task(task_id, mutate)
        await self._broadcast_task(task)
        return task

    async def advance(
        self,
        task_id: str,
        stage: PipelineStage,
        message: str,
        stage_progress: float = 0,
    ) -> Task:
        """
        Persist a new progress snapshot for a processing Task.

        Args:
            task_id: Task identifier
            stage: Stage about to run (or running)
            message: Human-readable status message
            stage_progress: Progress within the stage (0-100)

        Raises:
            InvalidTransition: If the Task is not processing
        """
        percent = self.progress_manager.calculate_overall_progress(stage, stage_progress)

        def mutate(task: Task) -> None:
            if task.status is not TaskStatus.PROCESSING:
                raise InvalidTransition(
                    f"Task {task.id} is {task.status.value}, cannot report stage {stage.value}"
                )
            task.progress = ProgressSnapshot(
                stage=stage,
                percent=max(percent, task.progress.percent),
                message=message,
                estimated_time_remaining=self._estimate(task, stage, stage_progress),
            )

        task = await self.repository.update_task(task_id, mutate)
        logger.debug(f"Task {task_id}: {stage.value} {task.progress.percent:.0f}% - {message}")
        await self._broadcast_task(task)
        return task

    async def complete(self, task_id: str, message: str = "Completed") -> Task:
        """
        Move a processing Task to completed.

        Raises:
            InvalidTransition: If the Task is not processing
        """
        def mutate(task: Task) -> None:
            _check_transition(task, TaskStatus.COMPLETED)
            task.status = TaskStatus.COMPLETED
            task.completed_at = datetime.now()
            task.progress = ProgressSnapshot(
                stage=PipelineStage.COMPLETED,
                percent=100,
                message=message,
                estimated_time_remaining=0,
            )

        task = await self.repository.update_task(task_id, mutate)
        logger.info(f"Task {task_id} completed")
        await self._broadcast_task(task)
        return task

    async def fail(self, task_id: str, error_message: str) -> Task:
        """
        Move a processing Task to failed with a user-safe message.

        Args:
            task_id: Task identifier
            error_message: Message already normalized for users

        Raises:
            InvalidTransition: If the Task is not processing
        """
        def mutate(task: Task) -> None:
            _check_transition(task, TaskStatus.FAILED)
            task.status = TaskStatus.FAILED
            task.error_message = error_message
            task.completed_at = datetime.now()
            task.progress = ProgressSnapshot(
                stage=PipelineStage.FAILED,
                percent=task.progress.percent,
                message=error_message,
                estimated_time_remaining=None,
            )

        task = await self.repository.update_task(task_id, mutate)
        await self._broadcast_task(task)
        return task

    # ═══════════════════════════════════════════════════════════════════════════
    # Queries
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_progress(self, task_id: str, owner_id: str) -> ProgressResponse:
        """
        Read the stored progress snapshot of a Task.

        Raises:
            NotFound: If the Task does not exist or belongs to someone else
        """
        task = await self.repository.get_task(task_id, owner_id)
        if task is None:
            raise NotFound(f"Task not found: {task_id}")
        return to_progress_response(task)

    # ═══════════════════════════════════════════════════════════════════════════
    # Subscribers
    # ═══════════════════════════════════════════════════════════════════════════

    def subscribe(self, task_id: str) -> asyncio.Queue:
        """
        Subscribe to progress updates of a Task.

        Returns:
            Queue that will receive progress messages
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(task_id, []).append(queue)
        logger.debug(f"Client subscribed to task {task_id}")
        return queue

    def unsubscribe(self, task_id: str, queue: asyncio.Queue) -> None:
        subscribers = self._subscribers.get(task_id, [])
        if queue in subscribers:
            subscribers.remove(queue)
            logger.debug(f"Client unsubscribed from task {task_id}")
        if not subscribers:
            self._subscribers.pop(task_id, None)

    async def _broadcast_task(self, task: Task) -> None:
        await self._broadcast(task.id, progress_message(task))

    async def _broadcast(self, task_id: str, message: dict[str, Any]) -> None:
        for queue in self._subscribers.get(task_id, []):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull as e:
                logger.warning(f"Failed to broadcast to subscriber of {task_id}: {e}")

    def _estimate(self, task: Task, stage: PipelineStage, stage_progress: float) -> float | None:
        plan = self.progress_manager.plan_stages(
            task.input.kind,
            bool(task.options.intro_template or task.options.outro_template),
        )
        return self.progress_manager.estimate_remaining(stage, stage_progress, plan)


def _check_transition(task: Task, target: TaskStatus) -> None:
    if not task.status.can_transition_to(target):
        raise InvalidTransition(
            f"Task {task.id} cannot move from {task.status.value} to {target.value}"
        )


def to_progress_response(task: Task) -> ProgressResponse:
    """Build the read-only progress view of a Task."""
    return ProgressResponse(
        task_id=task.id,
        status=task.status,
        stage=task.progress.stage,
        percent=task.progress.percent,
        message=task.progress.message,
        estimated_time_remaining=task.progress.estimated_time_remaining,
        error_message=task.error_message,
    )


def progress_message(task: Task) -> dict[str, Any]:
    """Progress message as sent to WebSocket subscribers."""
    message = to_progress_response(task).model_dump(mode="json")
    message["timestamp"] = task.progress.updated_at.isoformat()
    return message
