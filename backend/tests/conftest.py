from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import pytest

from castforge.config import Settings
from castforge.models.schemas import (
    DialogueTurn,
    InputDescriptor,
    InputKind,
    Task,
    TaskOptions,
)
from castforge.services.pipeline.progress_manager import ProgressManager
from castforge.services.progress_tracker import ProgressTracker
from castforge.services.repository import Repository
from castforge.services.storage import LocalObjectStorage

PUBLIC_BASE = "http://testserver/files"


@dataclass
class RecordingSleep:
    """Async sleep replacement that records delays and returns at once."""

    delays: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        anthropic_api_key="test-key",
        listenhub_api_key="test-key",
        kling_access_key="ak",
        kling_secret_key="sk",
        data_root=tmp_path,
        temp_dir=tmp_path / "temp",
        storage_root=tmp_path / "storage",
        store_root=tmp_path / "store",
        public_base_url=PUBLIC_BASE,
        avatar_image_url="http://testserver/files/static/avatar.png",
        _env_file=None,
    )


@pytest.fixture
def repository(settings: Settings) -> Repository:
    return Repository.from_settings(settings)


@pytest.fixture
def storage(settings: Settings) -> LocalObjectStorage:
    return LocalObjectStorage.from_settings(settings)


@pytest.fixture
def tracker(repository: Repository, settings: Settings) -> ProgressTracker:
    return ProgressTracker(repository, ProgressManager(settings, performance={}))


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


def make_task(
    owner_id: str = "owner-1",
    kind: InputKind = InputKind.RAW_TEXT,
    payload: str = "今天我們談談城市裡的咖啡文化。",
    **options,
) -> Task:
    return Task(
        owner_id=owner_id,
        input=InputDescriptor(kind=kind, payload=payload),
        options=TaskOptions(**options),
    )


def make_turns(*lengths: int) -> list[DialogueTurn]:
    """Dialogue turns whose texts have the given character counts."""
    speakers = [("host1", "小明"), ("host2", "小美")]
    turns = []
    for index, length in enumerate(lengths):
        speaker_id, name = speakers[index % 2]
        turns.append(DialogueTurn(speaker_id=speaker_id, speaker_name=name, text="字" * length))
    return turns
