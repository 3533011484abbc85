"""
Durable record store.

Stores Task, Highlight, AvatarVideoTask and VoicePreference records as
JSON documents, one file per record:

    store_root/
    ├── tasks/{task_id}.json
    ├── highlights/{highlight_id}.json
    ├── avatar_videos/{video_id}.json
    └── voice_preferences/{owner_hash}.json

Writes are atomic (temp file + os.replace). Updates run read-then-write
under a per-record asyncio.Lock, so each transition is scoped to one id.
Reads are owner-scoped where an owner id is given: a record owned by
someone else behaves exactly like a missing one.
"""

import asyncio
import hashlib
import json
import logging
import os
import uuid
import weakref
from datetime import datetime
from pathlib import Path
from typing import Callable, TypeVar

from pydantic import BaseModel

from castforge.config import Settings
from castforge.models.schemas import (
    AvatarVideoTask,
    Highlight,
    Task,
    VoicePreference,
)
from castforge.services.errors import NotFound

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

TASKS = "tasks"
HIGHLIGHTS = "highlights"
AVATAR_VIDEOS = "avatar_videos"
VOICE_PREFERENCES = "voice_preferences"


class Repository:
    """
    JSON-file repository for pipeline records.

    Example:
        repo = Repository(Path("/data/store"))
        task = await repo.create_task(Task(owner_id="u1", input=descriptor))
        task = await repo.update_task(task.id, lambda t: setattr(t, "error_message", None))
    """

    def __init__(self, root: Path):
        """
        Initialize repository.

        Args:
            root: Directory holding one sub-directory per record type
        """
        self.root = Path(root)
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Repository":
        """Create repository from application settings."""
        return cls(settings.store_root)

    # ═══════════════════════════════════════════════════════════════════════════
    # Low-level document access
    # ═══════════════════════════════════════════════════════════════════════════

    def _path(self, collection: str, record_id: str) -> Path:
        return self.root / collection / f"{record_id}.json"

    def _lock(self, collection: str, record_id: str) -> asyncio.Lock:
        # Entries vanish once no update holds or waits on the lock
        key = (collection, record_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _read(self, collection: str, record_id: str, model: type[M]) -> M | None:
        path = self._path(collection, record_id)
        if not path.exists():
            return None
        data = await asyncio.to_thread(_read_json, path)
        return model.model_validate(data)

    async def _write(self, collection: str, record_id: str, record: BaseModel) -> None:
        path = self._path(collection, record_id)
        await asyncio.to_thread(_write_json, path, record.model_dump(mode="json"))

    async def _delete(self, collection: str, record_id: str) -> None:
        path = self._path(collection, record_id)
        if path.exists():
            await asyncio.to_thread(path.unlink)
        self._locks.pop((collection, record_id), None)

    async def _list(self, collection: str, model: type[M]) -> list[M]:
        directory = self.root / collection
        if not directory.exists():
            return []
        records = []
        for path in sorted(directory.glob("*.json")):
            try:
                records.append(model.model_validate(await asyncio.to_thread(_read_json, path)))
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable record {path.name}: {e}")
        return records

    async def _update(
        self,
        collection: str,
        record_id: str,
        model: type[M],
        mutate: Callable[[M], None],
    ) -> M:
        async with self._lock(collection, record_id):
            record = await self._read(collection, record_id, model)
            if record is None:
                raise NotFound(f"{collection} record not found: {record_id}")
            mutate(record)
            if hasattr(record, "updated_at"):
                record.updated_at = datetime.now()
            await self._write(collection, record_id, record)
            return record

    # ═══════════════════════════════════════════════════════════════════════════
    # Tasks
    # ═══════════════════════════════════════════════════════════════════════════

    async def create_task(self, task: Task) -> Task:
        await self._write(TASKS, task.id, task)
        logger.info(f"Created task {task.id} ({task.input.kind.value}) for owner {task.owner_id}")
        return task

    async def get_task(self, task_id: str, owner_id: str | None = None) -> Task | None:
        task = await self._read(TASKS, task_id, Task)
        if task is None or (owner_id is not None and task.owner_id != owner_id):
            return None
        return task

    async def list_tasks(self, owner_id: str) -> list[Task]:
        tasks = [t for t in await self._list(TASKS, Task) if t.owner_id == owner_id]
        return sorted(tasks, key=lambda t: t.created_at, reverse=True)

    async def update_task(self, task_id: str, mutate: Callable[[Task], None]) -> Task:
        """
        Read-modify-write one Task under its lock.

        Args:
            task_id: Task identifier
            mutate: Function changing the Task in place (may raise to abort)

        Returns:
            The stored Task

        Raises:
            NotFound: If the task does not exist
        """
        return await self._update(TASKS, task_id, Task, mutate)

    async def delete_task(self, task_id: str, owner_id: str) -> bool:
        """
        Delete a Task with its highlights and their avatar video records.

        Returns:
            True if the task existed and was deleted
        """
        task = await self.get_task(task_id, owner_id)
        if task is None:
            return False

        for highlight in await self.list_highlights(task_id, owner_id):
            await self.delete_highlight(highlight.id, owner_id)

        await self._delete(TASKS, task_id)
        logger.info(f"Deleted task {task_id}")
        return True

    # ═══════════════════════════════════════════════════════════════════════════
    # Highlights
    # ═══════════════════════════════════════════════════════════════════════════

    async def save_highlight(self, highlight: Highlight) -> Highlight:
        await self._write(HIGHLIGHTS, highlight.id, highlight)
        logger.info(f"Saved highlight {highlight.id} for task {highlight.task_id}")
        return highlight

    async def get_highlight(self, highlight_id: str, owner_id: str | None = None) -> Highlight | None:
        highlight = await self._read(HIGHLIGHTS, highlight_id, Highlight)
        if highlight is None or (owner_id is not None and highlight.owner_id != owner_id):
            return None
        return highlight

    async def list_highlights(self, task_id: str, owner_id: str) -> list[Highlight]:
        highlights = [
            h for h in await self._list(HIGHLIGHTS, Highlight)
            if h.task_id == task_id and h.owner_id == owner_id
        ]
        return sorted(highlights, key=lambda h: h.start_time)

    async def delete_highlight(self, highlight_id: str, owner_id: str) -> bool:
        highlight = await self.get_highlight(highlight_id, owner_id)
        if highlight is None:
            return False

        for video in await self.list_avatar_videos(highlight_id, owner_id):
            await self._delete(AVATAR_VIDEOS, video.id)

        await self._delete(HIGHLIGHTS, highlight_id)
        return True

    # ═══════════════════════════════════════════════════════════════════════════
    # Avatar videos
    # ═══════════════════════════════════════════════════════════════════════════

    async def create_avatar_video(self, video: AvatarVideoTask) -> AvatarVideoTask:
        await self._write(AVATAR_VIDEOS, video.id, video)
        return video

    async def get_avatar_video(self, video_id: str, owner_id: str | None = None) -> AvatarVideoTask | None:
        video = await self._read(AVATAR_VIDEOS, video_id, AvatarVideoTask)
        if video is None or (owner_id is not None and video.owner_id != owner_id):
            return None
        return video

    async def list_avatar_videos(self, highlight_id: str, owner_id: str) -> list[AvatarVideoTask]:
        videos = [
            v for v in await self._list(AVATAR_VIDEOS, AvatarVideoTask)
            if v.highlight_id == highlight_id and v.owner_id == owner_id
        ]
        return sorted(videos, key=lambda v: v.created_at, reverse=True)

    async def update_avatar_video(
        self,
        video_id: str,
        mutate: Callable[[AvatarVideoTask], None],
    ) -> AvatarVideoTask:
        return await self._update(AVATAR_VIDEOS, video_id, AvatarVideoTask, mutate)

    # ═══════════════════════════════════════════════════════════════════════════
    # Voice preferences
    # ═══════════════════════════════════════════════════════════════════════════

    async def save_voice_preference(
        self,
        owner_id: str,
        host1_voice_id: str,
        host2_voice_id: str,
    ) -> VoicePreference:
        preference = VoicePreference(
            owner_id=owner_id,
            host1_voice_id=host1_voice_id,
            host2_voice_id=host2_voice_id,
        )
        await self._write(VOICE_PREFERENCES, _owner_key(owner_id), preference)
        logger.info(f"Saved voice preference for owner {owner_id}")
        return preference

    async def get_voice_preference(self, owner_id: str) -> VoicePreference | None:
        return await self._read(VOICE_PREFERENCES, _owner_key(owner_id), VoicePreference)


def _owner_key(owner_id: str) -> str:
    """Filesystem-safe key for arbitrary owner ids."""
    return hashlib.sha256(owner_id.encode("utf-8")).hexdigest()[:32]


def _read_json(path: Path) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _write_json(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2, default=str)
    os.replace(tmp_path, path)
