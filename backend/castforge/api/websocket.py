"""
WebSocket handler for real-time task progress.

Snapshots are pushed as the ProgressTracker persists them.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from castforge.api.dependencies import Container, get_container
from castforge.models.schemas import TaskStatus
from castforge.services.progress_tracker import progress_message

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])

TERMINAL = (TaskStatus.COMPLETED.value, TaskStatus.FAILED.value)


@router.websocket("/ws/tasks/{task_id}")
async def task_progress_websocket(
    websocket: WebSocket,
    task_id: str,
    owner_id: str | None = None,
    container: Container = Depends(get_container),
) -> None:
    """
    WebSocket endpoint for real-time progress of one task.

    Browsers cannot set headers on WebSocket requests, so the owner is
    passed as the owner_id query parameter. Messages are progress
    snapshots (task_id, status, stage, percent, message,
    estimated_time_remaining, error_message, timestamp); a heartbeat is
    sent after 30s of silence. The connection closes once the task
    completes or fails.

    Example client (Python):
        url = f"ws://localhost:8801/ws/tasks/{task_id}?owner_id={owner}"
        async with websockets.connect(url) as ws:
            async for message in ws:
                data = json.loads(message)
                print(f"{data['stage']}: {data['percent']}% - {data['message']}")
    """
    task = await container.repository.get_task(task_id, owner_id) if owner_id else None
    if task is None:
        await websocket.close(code=4004, reason=f"Task not found: {task_id}")
        return

    await websocket.accept()
    logger.info(f"WebSocket connected for task {task_id}")

    # Subscribe before sending the snapshot so no update falls in between
    tracker = container.tracker
    queue = tracker.subscribe(task_id)

    try:
        await websocket.send_json(progress_message(task))
        if task.status.value in TERMINAL:
            await websocket.close()
            return

        while True:
            try:
                message = await asyncio.wait_for(queue.get(), timeout=30.0)
                await websocket.send_json(message)

                if message.get("status") in TERMINAL:
                    await websocket.close()
                    break

            except asyncio.TimeoutError:
                # Heartbeat
                try:
                    await websocket.send_json({"type": "heartbeat"})
                except (WebSocketDisconnect, RuntimeError):
                    break

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for task {task_id}")
    except Exception as e:
        logger.error(f"WebSocket error for task {task_id}: {e}")
    finally:
        tracker.unsubscribe(task_id, queue)
        logger.info(f"WebSocket closed for task {task_id}")
