"""
Shared service instances for the HTTP layer.

All services are wired once per process into a Container. Routes get
what they need through FastAPI dependencies; tests replace the whole
graph with app.dependency_overrides[get_container].
"""

import logging
from dataclasses import dataclass
from functools import lru_cache

from fastapi import Depends, Header, HTTPException

from castforge.config import Settings, get_settings
from castforge.services.ai_clients import ClaudeClient
from castforge.services.audio_assembler import AudioAssembler
from castforge.services.avatar_video import AvatarVideoService
from castforge.services.content_analyzer import ContentAnalyzer
from castforge.services.highlight_segmenter import HighlightSegmenter
from castforge.services.highlight_service import HighlightService
from castforge.services.narration import NarrationService
from castforge.services.pipeline import ExternalServiceAdapter, ProgressManager
from castforge.services.pipeline.orchestrator import PipelineOrchestrator
from castforge.services.progress_tracker import ProgressTracker
from castforge.services.repository import Repository
from castforge.services.source_ingestion import SourceIngestion
from castforge.services.storage import LocalObjectStorage
from castforge.services.worker import PipelineWorker

logger = logging.getLogger(__name__)


@dataclass
class Container:
    """Wired service graph."""

    settings: Settings
    repository: Repository
    tracker: ProgressTracker
    worker: PipelineWorker
    orchestrator: PipelineOrchestrator
    narration: NarrationService
    highlights: HighlightService
    avatar: AvatarVideoService
    ingestion: SourceIngestion

    async def close(self) -> None:
        """Release HTTP clients held by the services."""
        await self.ingestion.close()
        await self.orchestrator.assembler.close()
        await self.narration.close()
        await self.avatar.close()
        await self.orchestrator.analyzer.client.close()


def build_container(settings: Settings) -> Container:
    """
    Wire every service from settings.

    Raises:
        ValueError: If ANTHROPIC_API_KEY is not set
    """
    repository = Repository.from_settings(settings)
    storage = LocalObjectStorage.from_settings(settings)
    tracker = ProgressTracker(repository, ProgressManager(settings))

    claude = ClaudeClient.from_settings(settings)
    text_adapter = ExternalServiceAdapter.from_settings("text_generation", settings)
    assembler = AudioAssembler.from_settings(settings, storage)
    narration = NarrationService.from_settings(settings, repository)

    ingestion = SourceIngestion.from_settings(settings, storage)
    orchestrator = PipelineOrchestrator(
        repository,
        tracker,
        ingestion,
        ContentAnalyzer(claude, text_adapter, settings),
        narration,
        assembler,
    )
    highlights = HighlightService(
        repository,
        HighlightSegmenter(claude, text_adapter, settings),
        assembler,
    )

    logger.info("Service container created")
    return Container(
        settings=settings,
        repository=repository,
        tracker=tracker,
        worker=PipelineWorker(settings.worker_concurrency),
        orchestrator=orchestrator,
        narration=narration,
        highlights=highlights,
        avatar=AvatarVideoService.from_settings(settings, repository),
        ingestion=ingestion,
    )


@lru_cache
def get_container() -> Container:
    """Get the process-wide service container."""
    return build_container(get_settings())


def get_owner_id(x_owner_id: str | None = Header(default=None)) -> str:
    """
    Caller identity from the X-Owner-Id header.

    Session handling happens upstream; the header is trusted as is.
    """
    if not x_owner_id or not x_owner_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-Owner-Id header")
    return x_owner_id.strip()


def get_repository(container: Container = Depends(get_container)) -> Repository:
    return container.repository


def get_tracker(container: Container = Depends(get_container)) -> ProgressTracker:
    return container.tracker
