import pytest

from castforge.models.schemas import AvatarFailureKind, AvatarVideoStatus, Highlight
from castforge.services.ai_clients import AvatarJobStatus
from castforge.services.ai_clients.base import AIClientConnectionError, ProviderRejected, QuotaExceeded
from castforge.services.avatar_video import TIMEOUT_MESSAGE, AvatarVideoService, validate_duration
from castforge.services.errors import DurationConstraintViolation, NotFound
from castforge.services.pipeline.service_adapter import Candidate, ExternalServiceAdapter


class FakeKlingClient:
    def __init__(self, statuses=None, create_error=None):
        self.statuses = list(statuses or [])
        self.create_error = create_error
        self.created: list[dict] = []
        self.polls = 0

    async def create_task(self, image_url, audio_url, mode="std", prompt=None, external_task_id=None):
        if self.create_error:
            raise self.create_error
        self.created.append({
            "audio_url": audio_url,
            "mode": mode,
            "prompt": prompt,
            "external_task_id": external_task_id,
        })
        return "engine-1"

    async def get_task(self, task_id):
        self.polls += 1
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        return status

    async def close(self):
        pass


def make_highlight(duration: int = 19, start: int = 0) -> Highlight:
    # Model validation would reject out-of-range durations, so tests of
    # the service's own check build the record without validation.
    fields = dict(
        task_id="task-1",
        owner_id="owner-1",
        title="開場",
        description="d",
        start_time=start,
        end_time=start + duration,
        duration=duration,
        transcript="小明: ...",
        audio_url="http://testserver/files/highlights/task-1/h.mp3",
        audio_key="highlights/task-1/h.mp3",
    )
    if 2 <= duration <= 60:
        return Highlight(**fields)
    return Highlight.model_construct(id="h-out", **fields)


def make_service(repository, settings, client, recording_sleep) -> AvatarVideoService:
    adapter = ExternalServiceAdapter("avatar_video", [Candidate("kling-avatar")], sleep=recording_sleep)
    return AvatarVideoService(client, adapter, repository, settings, sleep=recording_sleep)


@pytest.mark.parametrize("duration", [1, 61, 0, 120])
def test_durations_outside_window_rejected(duration):
    with pytest.raises(DurationConstraintViolation):
        validate_duration(duration)


@pytest.mark.parametrize("duration", [2, 60, 19])
def test_durations_inside_window_accepted(duration):
    validate_duration(duration)


async def test_submit_rejects_before_any_remote_call(repository, settings, recording_sleep):
    client = FakeKlingClient()
    service = make_service(repository, settings, client, recording_sleep)

    with pytest.raises(DurationConstraintViolation):
        await service.submit(make_highlight(duration=61), "owner-1")

    assert client.created == []
    assert await repository.list_avatar_videos("h-out", "owner-1") == []


async def test_run_succeeds(repository, settings, recording_sleep):
    client = FakeKlingClient([
        AvatarJobStatus("engine-1", "processing"),
        AvatarJobStatus("engine-1", "succeed", video_url="http://cdn/v.mp4", duration=19.0),
    ])
    service = make_service(repository, settings, client, recording_sleep)
    highlight = make_highlight()
    record = await service.submit(highlight, "owner-1", mode="pro")

    assert record.status is AvatarVideoStatus.PENDING
    assert record.external_task_id == f"castforge-{record.id}"

    result = await service.run(record.id)

    assert result.status is AvatarVideoStatus.SUCCEEDED
    assert result.video_url == "http://cdn/v.mp4"
    assert result.engine_task_id == "engine-1"
    assert client.created[0]["mode"] == "pro"
    assert client.created[0]["audio_url"] == highlight.audio_url
    assert recording_sleep.delays == [settings.avatar_poll_interval]


async def test_scenario_b_polling_timeout(repository, settings, recording_sleep):
    client = FakeKlingClient([AvatarJobStatus("engine-1", "processing")])
    service = make_service(repository, settings, client, recording_sleep)
    record = await service.submit(make_highlight(), "owner-1")

    result = await service.run(record.id)

    assert result.status is AvatarVideoStatus.FAILED
    assert result.failure_kind is AvatarFailureKind.TIMEOUT
    assert result.error_message == TIMEOUT_MESSAGE
    assert result.video_url is None
    assert client.polls == 60
    assert set(recording_sleep.delays) == {10.0}


async def test_engine_failure_is_provider_failure(repository, settings, recording_sleep):
    client = FakeKlingClient([AvatarJobStatus("engine-1", "failed", status_message="x" * 800)])
    service = make_service(repository, settings, client, recording_sleep)
    record = await service.submit(make_highlight(), "owner-1")

    result = await service.run(record.id)

    assert result.failure_kind is AvatarFailureKind.PROVIDER
    assert len(result.error_message) == 500


async def test_transient_poll_errors_are_tolerated(repository, settings, recording_sleep):
    client = FakeKlingClient([
        AIClientConnectionError("reset"),
        AvatarJobStatus("engine-1", "succeed", video_url="http://cdn/v.mp4"),
    ])
    service = make_service(repository, settings, client, recording_sleep)
    record = await service.submit(make_highlight(), "owner-1")

    result = await service.run(record.id)

    assert result.status is AvatarVideoStatus.SUCCEEDED


async def test_rate_limited_poll_keeps_waiting(repository, settings, recording_sleep):
    client = FakeKlingClient([
        QuotaExceeded("429 slow down", status_code=429, provider="kling"),
        AvatarJobStatus("engine-1", "succeed", video_url="http://cdn/v.mp4"),
    ])
    service = make_service(repository, settings, client, recording_sleep)
    record = await service.submit(make_highlight(), "owner-1")

    result = await service.run(record.id)

    assert result.status is AvatarVideoStatus.SUCCEEDED
    assert result.failure_kind is None
    assert client.polls == 2
    assert len(client.created) == 1


async def test_prompt_defaults_to_highlight_title(repository, settings, recording_sleep):
    client = FakeKlingClient([AvatarJobStatus("engine-1", "succeed", video_url="http://cdn/v.mp4")])
    service = make_service(repository, settings, client, recording_sleep)

    default = await service.submit(make_highlight(), "owner-1")
    explicit = await service.submit(make_highlight(), "owner-1", prompt="笑著說話")
    await service.run(default.id)

    assert default.prompt == "Professional podcast host presenting: 開場"
    assert explicit.prompt == "笑著說話"
    assert client.created[0]["prompt"] == default.prompt


async def test_submission_error_fails_record(repository, settings, recording_sleep):
    client = FakeKlingClient(create_error=ProviderRejected("bad image", status_code=400, provider="kling"))
    service = make_service(repository, settings, client, recording_sleep)
    record = await service.submit(make_highlight(), "owner-1")

    result = await service.run(record.id)

    assert result.status is AvatarVideoStatus.FAILED
    assert result.failure_kind is AvatarFailureKind.ERROR
    assert "bad image" not in result.error_message


async def test_finished_record_is_not_run_again(repository, settings, recording_sleep):
    client = FakeKlingClient([AvatarJobStatus("engine-1", "succeed", video_url="http://cdn/v.mp4")])
    service = make_service(repository, settings, client, recording_sleep)
    record = await service.submit(make_highlight(), "owner-1")
    await service.run(record.id)

    again = await service.run(record.id)

    assert again.status is AvatarVideoStatus.SUCCEEDED
    assert len(client.created) == 1


async def test_run_unknown_record(repository, settings, recording_sleep):
    service = make_service(repository, settings, FakeKlingClient(), recording_sleep)
    with pytest.raises(NotFound):
        await service.run("missing")
