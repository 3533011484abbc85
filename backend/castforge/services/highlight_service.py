"""
Highlight batch service.

Derives highlights from a completed Task: segment the dialogue, clip
each window out of the primary narration audio and persist it. A
failure on one highlight is logged and skipped; only successes are
stored.
"""

import logging

from castforge.models.schemas import DialogueTurn, Highlight, Task, TaskStatus
from castforge.services.audio_assembler import AudioAssembler
from castforge.services.errors import InvalidInput, InvalidTransition, NotFound
from castforge.services.highlight_segmenter import HighlightSegmenter
from castforge.services.repository import Repository

logger = logging.getLogger(__name__)


def turns_for_task(task: Task) -> list[DialogueTurn]:
    """
    Dialogue turns describing the primary narration.

    Falls back to one turn built from the transcript, then the summary.
    """
    if task.artifacts.dialogue_turns:
        return list(task.artifacts.dialogue_turns)

    text = task.artifacts.transcript or task.artifacts.summary
    if not text:
        return []
    return [DialogueTurn(speaker_id="host1", speaker_name="Host", text=text)]


class HighlightService:
    """
    Generate, list and delete highlights of a Task.

    Example:
        service = HighlightService(repository, segmenter, assembler)
        highlights = await service.generate(task_id, owner_id, target_duration=60)
    """

    def __init__(
        self,
        repository: Repository,
        segmenter: HighlightSegmenter,
        assembler: AudioAssembler,
    ):
        self.repository = repository
        self.segmenter = segmenter
        self.assembler = assembler

    async def generate(
        self,
        task_id: str,
        owner_id: str,
        target_duration: int = 60,
    ) -> list[Highlight]:
        """
        Segment, clip and persist highlights.

        Args:
            task_id: Completed Task
            owner_id: Requesting owner
            target_duration: Target total highlight length in seconds

        Returns:
            Persisted highlights (successes only)

        Raises:
            NotFound: Task missing or not owned by the caller
            InvalidTransition: Task is not completed
            InvalidInput: Task has no narration audio or no text
        """
        task = await self.repository.get_task(task_id, owner_id)
        if task is None:
            raise NotFound(f"Task not found: {task_id}")
        if task.status is not TaskStatus.COMPLETED:
            raise InvalidTransition(f"Task {task_id} is {task.status.value}, highlights need a completed task")

        audio_url = task.artifacts.primary_audio_url
        if not audio_url:
            raise InvalidInput("This task has no narration audio to cut highlights from")

        turns = turns_for_task(task)
        if not turns:
            raise InvalidInput("This task has no script to find highlights in")

        candidates = await self.segmenter.propose(turns, target_duration, task_id=task_id)

        highlights: list[Highlight] = []
        for index, candidate in enumerate(candidates, start=1):
            try:
                highlight = Highlight(
                    task_id=task_id,
                    owner_id=owner_id,
                    title=candidate.title,
                    description=candidate.description,
                    start_time=candidate.start_time,
                    end_time=candidate.end_time,
                    duration=candidate.duration,
                    transcript=candidate.transcript,
                    audio_url="",
                    audio_key="",
                )
                url, key = await self.assembler.clip(
                    audio_url,
                    offset=candidate.start_time,
                    duration=candidate.duration,
                    key_prefix=f"highlights/{task_id}/{highlight.id}",
                )
                highlight.audio_url = url
                highlight.audio_key = key
                await self.repository.save_highlight(highlight)
                highlights.append(highlight)

            except Exception as e:
                logger.error(
                    f"Highlight {index}/{len(candidates)} of task {task_id} "
                    f"[{candidate.start_time}-{candidate.end_time}s] failed: {type(e).__name__}: {e}"
                )

        logger.info(f"Task {task_id}: {len(highlights)}/{len(candidates)} highlights stored")
        return highlights

    async def list_for_task(self, task_id: str, owner_id: str) -> list[Highlight]:
        """
        Raises:
            NotFound: Task missing or not owned by the caller
        """
        if await self.repository.get_task(task_id, owner_id) is None:
            raise NotFound(f"Task not found: {task_id}")
        return await self.repository.list_highlights(task_id, owner_id)

    async def delete(self, highlight_id: str, owner_id: str) -> None:
        """
        Delete a highlight, its stored clip and its avatar video records.

        Raises:
            NotFound: Highlight missing or not owned by the caller
        """
        highlight = await self.repository.get_highlight(highlight_id, owner_id)
        if highlight is None:
            raise NotFound(f"Highlight not found: {highlight_id}")

        await self.repository.delete_highlight(highlight_id, owner_id)
        try:
            await self.assembler.storage.delete(highlight.audio_key)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not delete clip {highlight.audio_key}: {e}")
