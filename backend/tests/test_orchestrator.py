from datetime import datetime

import pytest

from conftest import make_task
from castforge.models.schemas import (
    DialogueTurn,
    InputKind,
    PipelineStage,
    TaskStatus,
)
from castforge.services.ai_clients.base import EpisodeFailed, QuotaExceeded
from castforge.services.content_analyzer import ContentAnalysis
from castforge.services.errors import CandidatesExhausted, SourceUnavailable
from castforge.services.narration import NarrationResult
from castforge.services.pipeline.orchestrator import PipelineError, PipelineOrchestrator
from castforge.services.source_ingestion import SourceContent

VIDEO_URL = "https://www.youtube.com/watch?v=AAAAAAAAAAA"


class FakeIngestion:
    def __init__(self, error=None):
        self.error = error
        self.sources = []

    async def ingest(self, task_id, source):
        self.sources.append(source)
        if self.error:
            raise self.error
        if source.kind is InputKind.VIDEO_URL:
            return SourceContent(
                transcript="影片逐字稿" * 20,
                title="咖啡的歷史",
                language="zh",
                duration=600.0,
                audio_url="http://testserver/files/sources/t/a.m4a",
                audio_key="sources/t/a.m4a",
            )
        return SourceContent(transcript=source.payload)


class FakeAnalyzer:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def analyze(self, transcript, style=None, source_title=None, task_id=None):
        self.calls.append((transcript, style, source_title))
        if self.error:
            raise self.error
        return ContentAnalysis(title="城市咖啡", summary="一段摘要", podcast_script="腳本")


class FakeNarration:
    def __init__(self, dialogue_error=None, direct_errors=None):
        self.dialogue_error = dialogue_error
        self.direct_errors = direct_errors or {}
        self.dialogues = []
        self.direct = []

    async def resolve_voices(self, owner_id, options):
        return "voice-a", "voice-b"

    async def create_dialogue(self, query, speaker_ids, mode=None, task_id=None):
        self.dialogues.append((query, speaker_ids, mode))
        if self.dialogue_error:
            raise self.dialogue_error
        return NarrationResult(
            episode_id="ep-1",
            audio_url="http://engine/ep-1.mp3",
            title="城市咖啡漫談",
            turns=[
                DialogueTurn(speaker_id="voice-a", speaker_name="小明", text="字" * 100),
                DialogueTurn(speaker_id="voice-b", speaker_name="小美", text="字" * 100),
            ],
        )

    async def narrate_direct(self, text, speaker_id, task_id=None, label="narration"):
        self.direct.append((label, text, speaker_id))
        if label in self.direct_errors:
            raise self.direct_errors[label]
        return NarrationResult(episode_id=f"{label}-1", audio_url=f"http://engine/{label}.mp3")


class FakeAssembler:
    def __init__(self):
        self.merges = []

    async def merge(self, intro_url, main_url, outro_url, key_prefix):
        self.merges.append((intro_url, main_url, outro_url, key_prefix))
        return f"http://testserver/files/{key_prefix}.mp3", f"{key_prefix}.mp3"


@pytest.fixture
def parts():
    return {
        "ingestion": FakeIngestion(),
        "analyzer": FakeAnalyzer(),
        "narration": FakeNarration(),
        "assembler": FakeAssembler(),
    }


def make_orchestrator(repository, tracker, parts) -> PipelineOrchestrator:
    return PipelineOrchestrator(
        repository,
        tracker,
        parts["ingestion"],
        parts["analyzer"],
        parts["narration"],
        parts["assembler"],
        today=lambda: datetime(2026, 10, 18),
    )


def drain(queue) -> list[dict]:
    messages = []
    while not queue.empty():
        messages.append(queue.get_nowait())
    return messages


async def test_raw_text_runs_to_completion(repository, tracker, parts):
    task = await repository.create_task(make_task())
    queue = tracker.subscribe(task.id)

    result = await make_orchestrator(repository, tracker, parts).run(task.id)

    messages = drain(queue)
    assert [m["stage"] for m in messages] == [
        "queued", "analyzing", "scripting", "synthesizing", "completed",
    ]
    percents = [m["percent"] for m in messages]
    assert percents == sorted(percents)
    assert percents[-1] == 100

    assert result.status is TaskStatus.COMPLETED
    assert result.completed_at is not None
    assert result.artifacts.summary == "一段摘要"
    assert result.artifacts.episode_id == "ep-1"
    assert len(result.artifacts.dialogue_turns) == 2
    assert result.artifacts.final_audio_url == "http://engine/ep-1.mp3"
    assert parts["narration"].dialogues[0][0] == "一段摘要"
    assert parts["assembler"].merges == []


async def test_video_with_intro_and_outro(repository, tracker, parts):
    task = await repository.create_task(make_task(
        kind=InputKind.VIDEO_URL,
        payload=VIDEO_URL,
        intro_template="今天是{date}，主題是{topic}，全長約{duration}。",
        outro_template="感謝收聽《{title}》{unknown}",
    ))
    queue = tracker.subscribe(task.id)

    result = await make_orchestrator(repository, tracker, parts).run(task.id)

    stages = [m["stage"] for m in drain(queue)]
    assert stages == [
        "queued", "transcribing", "scripting", "synthesizing",
        "intro_outro", "assembling", "completed",
    ]

    direct = {label: text for label, text, _ in parts["narration"].direct}
    # 200 characters at 0.3 s each -> 60 s
    assert direct["intro"] == "今天是2026年10月18日，主題是城市咖啡，全長約1分鐘。"
    assert direct["outro"] == "感謝收聽《城市咖啡漫談》{unknown}"
    assert all(speaker == "voice-a" for _, _, speaker in parts["narration"].direct)

    assert parts["assembler"].merges == [(
        "http://engine/intro.mp3",
        "http://engine/ep-1.mp3",
        "http://engine/outro.mp3",
        f"episodes/{task.id}/full",
    )]
    assert result.status is TaskStatus.COMPLETED
    assert result.artifacts.source_audio_key == "sources/t/a.m4a"
    assert result.artifacts.final_audio_url.endswith(f"episodes/{task.id}/full.mp3")


async def test_failed_intro_is_left_out(repository, tracker, parts):
    parts["narration"] = FakeNarration(direct_errors={"intro": EpisodeFailed("no")})
    task = await repository.create_task(make_task(intro_template="開場", outro_template="結尾"))

    result = await make_orchestrator(repository, tracker, parts).run(task.id)

    assert result.status is TaskStatus.COMPLETED
    assert parts["assembler"].merges[0][:3] == (None, "http://engine/ep-1.mp3", "http://engine/outro.mp3")


async def test_stage_failure_marks_task_failed_with_safe_message(repository, tracker, parts):
    parts["analyzer"] = FakeAnalyzer(error=CandidatesExhausted(
        "text_generation",
        ["claude-sonnet-4-5", "claude-haiku-4-5"],
        QuotaExceeded("429 raw provider payload {secret}", status_code=429),
    ))
    task = await repository.create_task(make_task())

    result = await make_orchestrator(repository, tracker, parts).run(task.id)

    assert result.status is TaskStatus.FAILED
    assert result.progress.stage is PipelineStage.FAILED
    assert result.progress.percent == 40
    assert result.error_message == "Generation services are busy or out of quota. Please try again later."
    assert "secret" not in result.error_message
    assert parts["narration"].dialogues == []


async def test_unavailable_source_message_is_shown(repository, tracker, parts):
    parts["ingestion"] = FakeIngestion(error=SourceUnavailable("This video is private"))
    task = await repository.create_task(make_task(kind=InputKind.VIDEO_URL, payload=VIDEO_URL))

    result = await make_orchestrator(repository, tracker, parts).run(task.id)

    assert result.status is TaskStatus.FAILED
    assert result.error_message == "This video is private"


async def test_persisted_source_wins_over_supplied_url(repository, tracker, parts):
    task = await repository.create_task(make_task(kind=InputKind.VIDEO_URL, payload=VIDEO_URL))

    await make_orchestrator(repository, tracker, parts).run(
        task.id, source_payload="https://youtu.be/BBBBBBBBBBB",
    )

    assert parts["ingestion"].sources[0].payload == VIDEO_URL


def test_reconcile_same_video_different_form():
    task = make_task(kind=InputKind.VIDEO_URL, payload=VIDEO_URL)

    source = PipelineOrchestrator.reconcile_source(task, "https://youtu.be/AAAAAAAAAAA")

    assert source is task.input


async def test_non_pending_task_is_not_rerun(repository, tracker, parts):
    task = await repository.create_task(make_task())
    orchestrator = make_orchestrator(repository, tracker, parts)
    await orchestrator.run(task.id)

    again = await orchestrator.run(task.id)

    assert again.status is TaskStatus.COMPLETED
    assert len(parts["ingestion"].sources) == 1


async def test_missing_task(repository, tracker, parts):
    assert await make_orchestrator(repository, tracker, parts).run("missing") is None


def test_pipeline_error_format():
    cause = RuntimeError("boom")
    error = PipelineError(PipelineStage.ASSEMBLING, "Audio assembly failed", cause)
    assert str(error) == "[assembling] Audio assembly failed"
    assert error.cause is cause
