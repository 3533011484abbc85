"""
Pipeline orchestrator for narrated episodes.

Drives one Task through its stages:

    queued -> transcribing | analyzing -> scripting -> synthesizing
           -> [intro_outro -> assembling] -> completed

Each stage persists its progress snapshot before doing any work, so a
crash mid-stage leaves an inspectable record. Any stage failure moves
the Task to failed with a user-safe message; the raw error is logged
with task id, stage and attempted candidates.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Callable

from castforge.models.schemas import (
    InputDescriptor,
    InputKind,
    PipelineStage,
    Task,
    TaskStatus,
)
from castforge.services.audio_assembler import AudioAssembler
from castforge.services.content_analyzer import ContentAnalysis, ContentAnalyzer
from castforge.services.errors import (
    CandidatesExhausted,
    InvalidTransition,
    NotFound,
    user_safe_message,
)
from castforge.services.narration import NarrationResult, NarrationService
from castforge.services.progress_tracker import ProgressTracker
from castforge.services.repository import Repository
from castforge.services.source_ingestion import SourceContent, SourceIngestion, extract_video_id
from castforge.services.templates import format_date, format_duration, render_template
from castforge.utils.media_utils import estimate_speech_seconds

logger = logging.getLogger(__name__)
perf_logger = logging.getLogger("castforge.perf")


class PipelineError(Exception):
    """
    Pipeline stage error with context.

    Attributes:
        stage: Pipeline stage where error occurred
        message: Error description
        cause: Original exception (if any)
    """

    def __init__(
        self,
        stage: PipelineStage,
        message: str,
        cause: Exception | None = None,
    ):
        self.stage = stage
        self.message = message
        self.cause = cause
        super().__init__(f"[{stage.value}] {message}")


class PipelineOrchestrator:
    """
    Runs the episode pipeline for one Task at a time per call.

    The instance is shared by all workers and keeps no per-task state;
    the repository is the only coordination point.

    Example:
        orchestrator = PipelineOrchestrator(
            repository, tracker, ingestion, analyzer, narration, assembler
        )
        task = await orchestrator.run(task_id, source_payload=request.payload)
        print(task.status, task.artifacts.final_audio_url)
    """

    def __init__(
        self,
        repository: Repository,
        tracker: ProgressTracker,
        ingestion: SourceIngestion,
        analyzer: ContentAnalyzer,
        narration: NarrationService,
        assembler: AudioAssembler,
        today: Callable[[], datetime] = datetime.now,
    ):
        self.repository = repository
        self.tracker = tracker
        self.ingestion = ingestion
        self.analyzer = analyzer
        self.narration = narration
        self.assembler = assembler
        self._today = today

    # ═══════════════════════════════════════════════════════════════════════════
    # Full Pipeline
    # ═══════════════════════════════════════════════════════════════════════════

    async def run(self, task_id: str, source_payload: str | None = None) -> Task | None:
        """
        Process a pending Task to completed or failed.

        Args:
            task_id: Task identifier
            source_payload: Source as known to the submitting caller;
                reconciled against the persisted one, which wins

        Returns:
            The Task as stored after the run, or None if it does not exist.
            Tasks that are not pending are returned untouched.
        """
        task = await self.repository.get_task(task_id)
        if task is None:
            logger.warning(f"Task {task_id} not found, nothing to run")
            return None
        if task.status is not TaskStatus.PENDING:
            logger.warning(f"Task {task_id} is {task.status.value}, not running again")
            return task

        source = self.reconcile_source(task, source_payload)

        try:
            task = await self.tracker.begin(task_id)
        except InvalidTransition as e:
            logger.warning(f"Task {task_id} could not start: {e}")
            return await self.repository.get_task(task_id)

        started = time.time()
        try:
            await self._process(task, source)
        except Exception as e:
            await self._handle_failure(task_id, e)
        else:
            await self.tracker.complete(task_id, "Podcast ready")
            perf_logger.info(f"PERF | pipeline | task={task_id} | time={time.time() - started:.1f}s")

        return await self.repository.get_task(task_id)

    @staticmethod
    def reconcile_source(task: Task, supplied: str | None) -> InputDescriptor:
        """
        Choose the source to process.

        The persisted descriptor always wins; a differing caller-supplied
        payload only produces a log line. Video URLs are compared by
        video id, since the same video has many URL forms.
        """
        persisted = task.input
        if supplied is None or supplied.strip() == persisted.payload:
            return persisted

        if persisted.kind is InputKind.VIDEO_URL:
            supplied_id = extract_video_id(supplied)
            persisted_id = extract_video_id(persisted.payload)
            if supplied_id == persisted_id:
                return persisted
            logger.error(
                f"Task {task.id}: source mismatch (supplied video {supplied_id}, "
                f"stored video {persisted_id}), using stored URL {persisted.payload}"
            )
        else:
            logger.warning(f"Task {task.id}: supplied source differs from stored one, using stored")

        return persisted

    async def _process(self, task: Task, source: InputDescriptor) -> None:
        content = await self._ingest(task, source)
        analysis = await self._script(task, content)
        primary = await self._synthesize(task, analysis)

        if task.options.intro_template or task.options.outro_template:
            intro_url, outro_url = await self._intro_outro(task, analysis, primary)
            if intro_url or outro_url:
                await self._assemble(task, intro_url, primary.audio_url, outro_url)

    # ═══════════════════════════════════════════════════════════════════════════
    # Stages
    # ═══════════════════════════════════════════════════════════════════════════

    async def _ingest(self, task: Task, source: InputDescriptor) -> SourceContent:
        if source.kind is InputKind.VIDEO_URL:
            stage, message = PipelineStage.TRANSCRIBING, "Downloading and transcribing the video"
        elif source.kind is InputKind.ARTICLE_URL:
            stage, message = PipelineStage.ANALYZING, "Fetching the article"
        else:
            stage, message = PipelineStage.ANALYZING, "Reading the text"

        await self.tracker.advance(task.id, stage, message)
        try:
            content = await self.ingestion.ingest(task.id, source)
        except Exception as e:
            raise PipelineError(stage, "Source ingestion failed", e) from e

        await self._save_artifacts(
            task.id,
            title=content.title,
            transcript=content.transcript,
            language=content.language,
            source_duration=content.duration,
            source_audio_url=content.audio_url,
            source_audio_key=content.audio_key,
        )
        return content

    async def _script(self, task: Task, content: SourceContent) -> ContentAnalysis:
        stage = PipelineStage.SCRIPTING
        await self.tracker.advance(task.id, stage, "Writing summary and podcast script")
        try:
            analysis = await self.analyzer.analyze(
                content.transcript,
                style=task.options.style,
                source_title=content.title,
                task_id=task.id,
            )
        except Exception as e:
            raise PipelineError(stage, "Script generation failed", e) from e

        await self._save_artifacts(
            task.id,
            title=analysis.title,
            summary=analysis.summary,
            podcast_script=analysis.podcast_script,
        )
        return analysis

    async def _synthesize(self, task: Task, analysis: ContentAnalysis) -> NarrationResult:
        stage = PipelineStage.SYNTHESIZING
        await self.tracker.advance(task.id, stage, "Generating the podcast audio")
        try:
            host1, host2 = await self.narration.resolve_voices(task.owner_id, task.options)
            result = await self.narration.create_dialogue(
                analysis.summary,
                [host1, host2],
                mode=task.options.mode,
                task_id=task.id,
            )
        except Exception as e:
            raise PipelineError(stage, "Narration failed", e) from e

        await self._save_artifacts(
            task.id,
            episode_id=result.episode_id,
            episode_title=result.title,
            primary_audio_url=result.audio_url,
            dialogue_turns=result.turns,
        )
        return result

    async def _intro_outro(
        self,
        task: Task,
        analysis: ContentAnalysis,
        primary: NarrationResult,
    ) -> tuple[str | None, str | None]:
        """
        Synthesize intro and outro concurrently.

        Direct narration is best-effort: a part that fails is logged and
        left out of the assembly.
        """
        stage = PipelineStage.INTRO_OUTRO
        await self.tracker.advance(task.id, stage, "Recording intro and outro")

        spoken = "".join(turn.text for turn in primary.turns) or analysis.summary
        variables = {
            "date": format_date(self._today()),
            "topic": analysis.title,
            "duration": format_duration(estimate_speech_seconds(spoken)),
            "title": primary.title or analysis.title,
        }
        try:
            host1, _ = await self.narration.resolve_voices(task.owner_id, task.options)
        except Exception as e:
            raise PipelineError(stage, "Voice selection failed", e) from e

        async def narrate(template: str | None, label: str) -> str | None:
            if not template:
                return None
            text = render_template(template, **variables)
            result = await self.narration.narrate_direct(text, host1, task_id=task.id, label=label)
            return result.audio_url

        intro, outro = await asyncio.gather(
            narrate(task.options.intro_template, "intro"),
            narrate(task.options.outro_template, "outro"),
            return_exceptions=True,
        )

        urls = []
        for label, outcome in (("intro", intro), ("outro", outro)):
            if isinstance(outcome, Exception):
                logger.error(
                    f"Task {task.id}: {label} narration failed, continuing without it: "
                    f"{type(outcome).__name__}: {outcome}"
                )
                urls.append(None)
            else:
                urls.append(outcome)
        return urls[0], urls[1]

    async def _assemble(
        self,
        task: Task,
        intro_url: str | None,
        main_url: str,
        outro_url: str | None,
    ) -> None:
        stage = PipelineStage.ASSEMBLING
        await self.tracker.advance(task.id, stage, "Assembling the final episode")
        try:
            url, key = await self.assembler.merge(
                intro_url, main_url, outro_url, key_prefix=f"episodes/{task.id}/full",
            )
        except Exception as e:
            raise PipelineError(stage, "Audio assembly failed", e) from e

        await self._save_artifacts(task.id, assembled_audio_url=url, assembled_audio_key=key)

    # ═══════════════════════════════════════════════════════════════════════════
    # Helpers
    # ═══════════════════════════════════════════════════════════════════════════

    async def _save_artifacts(self, task_id: str, **fields) -> None:
        """Store produced artifacts; None values never overwrite earlier ones."""

        def mutate(task: Task) -> None:
            for name, value in fields.items():
                if value is not None:
                    setattr(task.artifacts, name, value)

        await self.repository.update_task(task_id, mutate)

    async def _handle_failure(self, task_id: str, error: Exception) -> None:
        stage = error.stage if isinstance(error, PipelineError) else PipelineStage.FAILED
        cause = error.cause if isinstance(error, PipelineError) and error.cause else error
        attempted = cause.attempted if isinstance(cause, CandidatesExhausted) else []

        logger.error(
            f"Task {task_id} failed at {stage.value}: {type(cause).__name__}: {cause} "
            f"(attempted candidates: {attempted or 'n/a'})",
            exc_info=cause,
        )

        try:
            await self.tracker.fail(task_id, user_safe_message(error))
        except (InvalidTransition, NotFound) as e:
            logger.error(f"Task {task_id} could not be marked failed: {e}")
