"""
Avatar video subpipeline.

Renders one Highlight as a talking-head video:

    pending -> submitted -> processing -> succeeded | failed

Submission validates the highlight duration locally (2-60s) and
stores a pending record; run() then submits to the engine, records the
engine task id and polls on a fixed interval within an attempt budget.
Running out of attempts fails the record as a timeout, distinct from
an engine-reported failure. A retry is a new record, never a revived one.
"""

import logging
from typing import Any, Awaitable, Callable

from castforge.config import Settings
from castforge.models.schemas import (
    MAX_HIGHLIGHT_DURATION,
    MIN_HIGHLIGHT_DURATION,
    AvatarFailureKind,
    AvatarVideoStatus,
    AvatarVideoTask,
    Highlight,
)
from castforge.services.ai_clients import (
    AvatarJobStatus,
    KlingAvatarClient,
    QuotaExceeded,
    TransientProviderError,
)
from castforge.services.errors import (
    DurationConstraintViolation,
    InvalidTransition,
    NotFound,
    PollingTimeout,
    user_safe_message,
)
from castforge.services.pipeline.service_adapter import Candidate, ExternalServiceAdapter
from castforge.services.polling import fixed_schedule, poll_until
from castforge.services.repository import Repository

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]

TIMEOUT_MESSAGE = "Video generation took too long and was stopped. Please try again."
PROVIDER_FAILURE_MESSAGE = "The video engine could not render this highlight."


def validate_duration(duration: float) -> None:
    """
    Check the avatar engine's audio window before any remote call.

    Raises:
        DurationConstraintViolation: If duration is outside 2-60 seconds
    """
    if not MIN_HIGHLIGHT_DURATION <= duration <= MAX_HIGHLIGHT_DURATION:
        raise DurationConstraintViolation(duration, MIN_HIGHLIGHT_DURATION, MAX_HIGHLIGHT_DURATION)


class AvatarVideoService:
    """
    Submit highlights to the avatar engine and poll them to completion.

    Example:
        service = AvatarVideoService.from_settings(settings, repository)
        record = await service.submit(highlight, owner_id)       # pending
        record = await service.run(record.id)                    # succeeded | failed
    """

    def __init__(
        self,
        client: KlingAvatarClient,
        adapter: ExternalServiceAdapter,
        repository: Repository,
        settings: Settings,
        sleep: SleepFunc | None = None,
    ):
        """
        Initialize service.

        Args:
            client: Avatar engine client
            adapter: Adapter over avatar engine candidates
            repository: Record store
            settings: Application settings (image, mode, polling budget)
            sleep: Async sleep function (injectable for tests)
        """
        self.client = client
        self.adapter = adapter
        self.repository = repository
        self.settings = settings
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, repository: Repository) -> "AvatarVideoService":
        return cls(
            KlingAvatarClient.from_settings(settings),
            ExternalServiceAdapter.from_settings("avatar_video", settings),
            repository,
            settings,
        )

    async def close(self) -> None:
        await self.client.close()

    async def submit(
        self,
        highlight: Highlight,
        owner_id: str,
        mode: str | None = None,
        prompt: str | None = None,
        image_url: str | None = None,
    ) -> AvatarVideoTask:
        """
        Validate a highlight and store a pending avatar video record.

        Args:
            highlight: Highlight to render (must carry audio)
            owner_id: Requesting owner
            mode: "std" or "pro" (default from settings)
            prompt: Engine prompt (default names the highlight title)
            image_url: Presenter image (default from settings)

        Returns:
            Pending AvatarVideoTask

        Raises:
            DurationConstraintViolation: Highlight outside 2-60 seconds
        """
        validate_duration(highlight.duration)

        record = AvatarVideoTask(
            highlight_id=highlight.id,
            task_id=highlight.task_id,
            owner_id=owner_id,
            image_url=image_url or self.settings.avatar_image_url,
            audio_url=highlight.audio_url,
            mode=mode or self.settings.avatar_default_mode,
            prompt=prompt or f"Professional podcast host presenting: {highlight.title}",
            external_task_id="",
        )
        record.external_task_id = f"castforge-{record.id}"
        await self.repository.create_avatar_video(record)
        logger.info(
            f"Avatar video {record.id} queued for highlight {highlight.id} "
            f"({highlight.duration}s, mode={record.mode})"
        )
        return record

    async def run(self, video_id: str) -> AvatarVideoTask:
        """
        Drive a pending record to succeeded or failed.

        Never raises for engine problems; the outcome is stored on the record.

        Raises:
            NotFound: If the record does not exist
        """
        record = await self.repository.get_avatar_video(video_id)
        if record is None:
            raise NotFound(f"Avatar video not found: {video_id}")
        if record.status is not AvatarVideoStatus.PENDING:
            logger.warning(f"Avatar video {video_id} is {record.status.value}, not running again")
            return record

        record = await self._transition(video_id, AvatarVideoStatus.SUBMITTED)

        try:
            engine_task_id = await self.adapter.call(
                lambda candidate: self._create(record, candidate),
                context={"avatar_video_id": video_id, "stage": "submit"},
            )
        except Exception as e:
            logger.error(f"Avatar video {video_id} submission failed: {type(e).__name__}: {e}")
            return await self._fail(video_id, AvatarFailureKind.ERROR, user_safe_message(e))

        await self._transition(video_id, AvatarVideoStatus.PROCESSING, engine_task_id=engine_task_id)

        try:
            status = await poll_until(
                lambda: self.client.get_task(engine_task_id),
                is_terminal=lambda s: s.succeeded or s.failed,
                schedule=fixed_schedule(self.settings.avatar_poll_interval),
                operation=f"avatar video {video_id} ({engine_task_id})",
                max_attempts=self.settings.avatar_max_attempts,
                tolerate=(TransientProviderError, QuotaExceeded),
                sleep=self._sleep,
            )
        except PollingTimeout as e:
            logger.error(f"Avatar video {video_id} timed out: {e}")
            return await self._fail(video_id, AvatarFailureKind.TIMEOUT, TIMEOUT_MESSAGE)
        except Exception as e:
            logger.error(f"Avatar video {video_id} polling failed: {type(e).__name__}: {e}")
            return await self._fail(video_id, AvatarFailureKind.ERROR, user_safe_message(e))

        return await self._finish(video_id, status)

    async def _create(self, record: AvatarVideoTask, candidate: Candidate) -> str:
        return await self.client.create_task(
            image_url=record.image_url,
            audio_url=record.audio_url,
            mode=candidate.params.get("mode", record.mode),
            prompt=record.prompt,
            external_task_id=record.external_task_id,
        )

    async def _finish(self, video_id: str, status: AvatarJobStatus) -> AvatarVideoTask:
        if status.failed:
            logger.error(f"Avatar video {video_id} failed at engine: {status.status_message}")
            message = (status.status_message or PROVIDER_FAILURE_MESSAGE)[:500]
            return await self._fail(video_id, AvatarFailureKind.PROVIDER, message)

        if not status.video_url:
            logger.error(f"Avatar video {video_id} succeeded without a video URL")
            return await self._fail(video_id, AvatarFailureKind.PROVIDER, PROVIDER_FAILURE_MESSAGE)

        record = await self._transition(
            video_id,
            AvatarVideoStatus.SUCCEEDED,
            video_url=status.video_url,
            thumbnail_url=status.thumbnail_url,
            duration=status.duration,
        )
        logger.info(f"Avatar video {video_id} succeeded: {status.video_url}")
        return record

    async def _fail(self, video_id: str, kind: AvatarFailureKind, message: str) -> AvatarVideoTask:
        return await self._transition(
            video_id, AvatarVideoStatus.FAILED, failure_kind=kind, error_message=message,
        )

    async def _transition(
        self,
        video_id: str,
        target: AvatarVideoStatus,
        **fields: Any,
    ) -> AvatarVideoTask:
        """Forward-only status change with extra field updates."""

        def mutate(record: AvatarVideoTask) -> None:
            if not record.status.can_transition_to(target):
                raise InvalidTransition(
                    f"Avatar video {record.id} cannot move from {record.status.value} to {target.value}"
                )
            record.status = target
            for name, value in fields.items():
                setattr(record, name, value)

        return await self.repository.update_avatar_video(video_id, mutate)
