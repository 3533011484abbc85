from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import make_task, make_turns
from castforge.api.dependencies import Container, build_container, get_container
from castforge.main import app
from castforge.models.schemas import HighlightCandidate, TaskStatus, VideoInfo, Voice
from castforge.services.ai_clients.base import QuotaExceeded
from castforge.services.avatar_video import AvatarVideoService
from castforge.services.highlight_service import HighlightService
from castforge.services.pipeline.service_adapter import Candidate, ExternalServiceAdapter
from castforge.services.source_ingestion import SourceIngestion
from castforge.services.worker import PipelineWorker

OWNER = {"X-Owner-Id": "alice"}


@dataclass
class _StubNarration:
    voices: list[Voice] = field(default_factory=list)
    error: Exception | None = None

    async def list_voices(self) -> list[Voice]:
        if self.error:
            raise self.error
        return self.voices


@dataclass
class _StubSegmenter:
    candidates: list[HighlightCandidate]

    async def propose(self, turns, target_duration=60, task_id=None):
        return self.candidates


@dataclass
class _StubAssembler:
    storage: object

    async def clip(self, source_url, offset, duration, key_prefix):
        url = await self.storage.put(f"{key_prefix}.mp3", b"clip", "audio/mpeg")
        return url, f"{key_prefix}.mp3"


class _UnusedKlingClient:
    async def create_task(self, *args, **kwargs):  # pragma: no cover - jobs are not run
        raise AssertionError("avatar jobs must not run in API tests")

    async def close(self):
        pass


@dataclass
class _RecordingOrchestrator:
    runs: list[tuple[str, str | None]] = field(default_factory=list)

    async def run(self, task_id, source_payload=None):
        self.runs.append((task_id, source_payload))


def _fake_video_info(url: str, max_duration: int) -> VideoInfo:
    return VideoInfo(video_id="dQw4w9WgXcQ", title="城市咖啡", duration=212)


class _TestContainer(Container):
    async def close(self) -> None:
        pass


@pytest.fixture
def container(settings, repository, storage, tracker, recording_sleep):
    highlight = HighlightCandidate(
        start_turn_index=0,
        end_turn_index=1,
        title="開場",
        description="d",
        start_time=0,
        end_time=15,
        duration=15,
        transcript="小明: 字",
    )
    avatar_adapter = ExternalServiceAdapter("avatar_video", [Candidate("kling-avatar")], sleep=recording_sleep)
    return _TestContainer(
        settings=settings,
        repository=repository,
        tracker=tracker,
        worker=PipelineWorker(concurrency=1),
        orchestrator=_RecordingOrchestrator(),
        narration=_StubNarration(voices=[Voice(speaker_id="m1", name="小明", gender="male")]),
        highlights=HighlightService(repository, _StubSegmenter([highlight]), _StubAssembler(storage)),
        avatar=AvatarVideoService(_UnusedKlingClient(), avatar_adapter, repository, settings, sleep=recording_sleep),
        ingestion=SourceIngestion(settings, storage, info_fetcher=_fake_video_info),
    )


@pytest.fixture
def client(container):
    app.dependency_overrides[get_container] = lambda: container
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def seed_completed_task(container, owner_id: str = "alice"):
    task = make_task(owner_id=owner_id)
    task.status = TaskStatus.COMPLETED
    task.artifacts.primary_audio_url = "http://engine/ep.mp3"
    task.artifacts.dialogue_turns = make_turns(20, 25)
    return asyncio.run(container.repository.create_task(task))


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_owner_header_is_required(client):
    response = client.get("/api/tasks")
    assert response.status_code == 401


def test_video_info_preview(client):
    response = client.get("/api/videos/info", params={"url": "https://youtu.be/dQw4w9WgXcQ"}, headers=OWNER)

    assert response.status_code == 200
    assert response.json()["title"] == "城市咖啡"
    assert client.get("/api/videos/info", params={"url": "https://vimeo.com/1"}, headers=OWNER).status_code == 400
    assert client.get("/api/videos/info", params={"url": "https://youtu.be/dQw4w9WgXcQ"}).status_code == 401


def test_submit_returns_at_once_and_queues(client, container):
    response = client.post(
        "/api/tasks",
        json={"kind": "video-url", "payload": " https://youtu.be/dQw4w9WgXcQ ", "mode": "deep"},
        headers=OWNER,
    )

    assert response.status_code == 202
    task_id = response.json()["task_id"]
    assert container.worker.is_active(f"task:{task_id}")

    task = client.get(f"/api/tasks/{task_id}", headers=OWNER).json()
    assert task["status"] == "pending"
    assert task["input"]["payload"] == "https://youtu.be/dQw4w9WgXcQ"
    assert task["options"]["mode"] == "deep"

    progress = client.get(f"/api/tasks/{task_id}/progress", headers=OWNER).json()
    assert progress["status"] == "pending"
    assert progress["stage"] == "queued"


def test_submit_with_voices_saves_preference(client):
    response = client.post(
        "/api/tasks",
        json={"kind": "raw-text", "payload": "文字", "voice_id_1": "v1", "voice_id_2": "v2"},
        headers=OWNER,
    )
    assert response.status_code == 202

    preference = client.get("/api/voices/preference", headers=OWNER).json()
    assert (preference["host1_voice_id"], preference["host2_voice_id"]) == ("v1", "v2")


@pytest.mark.parametrize("body, status", [
    ({"kind": "video-url", "payload": "https://vimeo.com/1"}, 400),
    ({"kind": "article-url", "payload": "not a url"}, 400),
    ({"kind": "raw-text", "payload": ""}, 422),
    ({"kind": "podcast", "payload": "x"}, 422),
])
def test_submit_rejects_bad_input(client, container, body, status):
    response = client.post("/api/tasks", json=body, headers=OWNER)

    assert response.status_code == status
    assert asyncio.run(container.repository.list_tasks("alice")) == []


def test_tasks_are_owner_scoped(client):
    task_id = client.post(
        "/api/tasks", json={"kind": "raw-text", "payload": "文字"}, headers=OWNER,
    ).json()["task_id"]

    other = {"X-Owner-Id": "bob"}
    assert client.get(f"/api/tasks/{task_id}", headers=other).status_code == 404
    assert client.get(f"/api/tasks/{task_id}/progress", headers=other).status_code == 404
    assert client.get("/api/tasks", headers=other).json() == []
    assert [t["id"] for t in client.get("/api/tasks", headers=OWNER).json()] == [task_id]


def test_delete_task(client, container):
    task = seed_completed_task(container)

    assert client.delete(f"/api/tasks/{task.id}", headers=OWNER).status_code == 204
    assert client.get(f"/api/tasks/{task.id}", headers=OWNER).status_code == 404


def test_delete_processing_task_conflicts(client, container):
    task = make_task(owner_id="alice")
    task.status = TaskStatus.PROCESSING
    asyncio.run(container.repository.create_task(task))

    assert client.delete(f"/api/tasks/{task.id}", headers=OWNER).status_code == 409


def test_highlights_and_avatar_video_flow(client, container):
    task = seed_completed_task(container)

    response = client.post(f"/api/tasks/{task.id}/highlights", json={"target_duration": 30}, headers=OWNER)
    assert response.status_code == 200
    [highlight] = response.json()
    assert (highlight["start_time"], highlight["duration"]) == (0, 15)

    listed = client.get(f"/api/tasks/{task.id}/highlights", headers=OWNER).json()
    assert [h["id"] for h in listed] == [highlight["id"]]

    response = client.post(
        f"/api/highlights/{highlight['id']}/avatar-videos", json={"mode": "pro"}, headers=OWNER,
    )
    assert response.status_code == 202
    video = response.json()
    assert video["status"] == "pending"
    assert video["mode"] == "pro"
    assert container.worker.is_active(f"avatar:{video['id']}")

    fetched = client.get(f"/api/avatar-videos/{video['id']}", headers=OWNER).json()
    assert fetched["external_task_id"] == f"castforge-{video['id']}"
    videos = client.get(f"/api/highlights/{highlight['id']}/avatar-videos", headers=OWNER).json()
    assert [v["id"] for v in videos] == [video["id"]]

    assert client.delete(f"/api/highlights/{highlight['id']}", headers=OWNER).status_code == 204
    assert client.get(f"/api/avatar-videos/{video['id']}", headers=OWNER).status_code == 404


def test_highlights_need_completed_task(client):
    task_id = client.post(
        "/api/tasks", json={"kind": "raw-text", "payload": "文字"}, headers=OWNER,
    ).json()["task_id"]

    assert client.post(f"/api/tasks/{task_id}/highlights", headers=OWNER).status_code == 409
    assert client.post("/api/tasks/missing/highlights", headers=OWNER).status_code == 404


def test_highlight_target_duration_bounds(client, container):
    task = seed_completed_task(container)
    response = client.post(f"/api/tasks/{task.id}/highlights", json={"target_duration": 5}, headers=OWNER)
    assert response.status_code == 422


def test_avatar_video_for_unknown_highlight(client):
    assert client.post("/api/highlights/missing/avatar-videos", headers=OWNER).status_code == 404


def test_voices(client):
    response = client.get("/api/voices")
    assert response.json()[0]["speaker_id"] == "m1"

    assert client.get("/api/voices/preference", headers=OWNER).status_code == 404
    saved = client.put(
        "/api/voices/preference", json={"host1_voice_id": "a", "host2_voice_id": "b"}, headers=OWNER,
    )
    assert saved.status_code == 200
    assert client.get("/api/voices/preference", headers=OWNER).json()["host2_voice_id"] == "b"


def test_provider_errors_map_to_bad_gateway(client, container):
    container.narration.error = QuotaExceeded("429 raw body", status_code=429)

    response = client.get("/api/voices")

    assert response.status_code == 502
    assert "raw body" not in response.json()["detail"]


def test_websocket_sends_snapshot_and_closes_when_finished(client, container):
    task = seed_completed_task(container)

    with client.websocket_connect(f"/ws/tasks/{task.id}?owner_id=alice") as websocket:
        message = websocket.receive_json()

    assert message["task_id"] == task.id
    assert message["status"] == "completed"
    assert "timestamp" in message


def test_websocket_rejects_unknown_task(client, container):
    task = seed_completed_task(container)

    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect(f"/ws/tasks/{task.id}?owner_id=bob") as websocket:
            websocket.receive_json()

    assert exc_info.value.code == 4004


def test_container_requires_anthropic_key(settings):
    with pytest.raises(ValueError):
        build_container(settings.model_copy(update={"anthropic_api_key": None}))
