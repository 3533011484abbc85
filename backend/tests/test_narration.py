import httpx
import pytest

from castforge.models.schemas import NarrationMode, TaskOptions, Voice
from castforge.services.ai_clients import ListenHubClient, NarrationEpisode
from castforge.services.ai_clients.base import (
    AIClientConfig,
    AuthenticationRejected,
    EpisodeFailed,
    ProviderRejected,
    QuotaExceeded,
)
from castforge.services.errors import CandidatesExhausted
from castforge.services.narration import NarrationService, engine_mode, parse_turns
from castforge.services.pipeline.service_adapter import Candidate, ExternalServiceAdapter

SCRIPTS = [
    {"speakerId": "voice-a", "speakerName": "小明", "content": "大家好"},
    {"speakerId": "voice-b", "speakerName": "小美", "content": "  "},
    {"speakerId": "voice-b", "speakerName": "小美", "content": "今天聊咖啡"},
]


class FakeListenHub:
    def __init__(self, outcomes=None, voices=None):
        # Terminal episode per created episode, in creation order
        self.outcomes = list(outcomes or [])
        self.voices = voices or []
        self.created: list[dict] = []
        self.episodes: dict[str, NarrationEpisode] = {}

    async def list_speakers(self, language="zh"):
        return self.voices

    async def create_episode(self, query, speaker_ids, language="zh", mode="quick",
                             episode_type=None, episode_format=None):
        episode_id = f"ep-{len(self.created) + 1}"
        self.created.append({
            "query": query,
            "speaker_ids": speaker_ids,
            "mode": mode,
            "type": episode_type,
            "format": episode_format,
        })
        outcome = self.outcomes.pop(0)
        outcome.episode_id = episode_id
        self.episodes[episode_id] = outcome
        return episode_id

    async def get_episode(self, episode_id):
        return self.episodes[episode_id]

    async def close(self):
        pass


def success(audio_url="http://engine/a.mp3", scripts=None):
    return NarrationEpisode("", "success", title="咖啡漫談", audio_url=audio_url, scripts=scripts or [])


def failed(code=500):
    return NarrationEpisode("", "failed", fail_code=code)


def make_service(repository, settings, client, recording_sleep, direct_candidates=None):
    dialogue = ExternalServiceAdapter(
        "narration_dialogue",
        [Candidate("listenhub", {"mode": "requested"}), Candidate("listenhub", {"mode": "quick"})],
        sleep=recording_sleep,
    )
    direct = ExternalServiceAdapter(
        "narration_direct",
        direct_candidates or [
            Candidate("listenhub", {"query": "請逐字朗讀：{text}", "speakers": 1}),
            Candidate("listenhub", {"query": "{text}", "speakers": 2, "type": "flowspeech", "format": "narration"}),
        ],
        sleep=recording_sleep,
    )
    return NarrationService(
        client, dialogue, direct, repository, settings, sleep=recording_sleep, clock=lambda: 0.0,
    )


def test_engine_mode_mapping():
    assert engine_mode(NarrationMode.DEEP) == "deep"
    assert engine_mode(NarrationMode.MEDIUM) == "quick"
    assert engine_mode(NarrationMode.QUICK) == "quick"


def test_parse_turns_skips_empty_items():
    turns = parse_turns(SCRIPTS)
    assert [(t.speaker_name, t.text) for t in turns] == [("小明", "大家好"), ("小美", "今天聊咖啡")]


async def test_resolve_voices_order(repository, settings, recording_sleep):
    voices = [
        Voice(speaker_id="f1", name="小美", gender="female"),
        Voice(speaker_id="m1", name="小明", gender="male"),
    ]
    service = make_service(repository, settings, FakeListenHub(voices=voices), recording_sleep)

    assert await service.resolve_voices("alice", TaskOptions()) == ("m1", "f1")

    await repository.save_voice_preference("alice", "p1", "p2")
    assert await service.resolve_voices("alice", TaskOptions()) == ("p1", "p2")

    explicit = TaskOptions(voice_id_1="x1", voice_id_2="x2")
    assert await service.resolve_voices("alice", explicit) == ("x1", "x2")

    # A single explicit voice is not an override
    assert await service.resolve_voices("alice", TaskOptions(voice_id_1="x1")) == ("p1", "p2")


async def test_dialogue_uses_requested_mode(repository, settings, recording_sleep):
    client = FakeListenHub([success(scripts=SCRIPTS)])
    service = make_service(repository, settings, client, recording_sleep)

    result = await service.create_dialogue("摘要", ["voice-a", "voice-b"], NarrationMode.DEEP, task_id="t1")

    assert client.created[0]["mode"] == "deep"
    assert client.created[0]["query"] == "摘要"
    assert result.episode_id == "ep-1"
    assert result.audio_url == "http://engine/a.mp3"
    assert len(result.turns) == 2
    assert recording_sleep.delays[0] == settings.narration_initial_wait


async def test_failed_episode_falls_back_to_next_mode(repository, settings, recording_sleep):
    client = FakeListenHub([failed(), success()])
    service = make_service(repository, settings, client, recording_sleep)

    result = await service.create_dialogue("摘要", ["voice-a", "voice-b"], NarrationMode.DEEP)

    assert [c["mode"] for c in client.created] == ["deep", "quick"]
    assert result.episode_id == "ep-2"


async def test_all_modes_failing(repository, settings, recording_sleep):
    client = FakeListenHub([failed(), failed()])
    service = make_service(repository, settings, client, recording_sleep)

    with pytest.raises(CandidatesExhausted) as exc_info:
        await service.create_dialogue("摘要", ["voice-a", "voice-b"])

    assert isinstance(exc_info.value.last_error, EpisodeFailed)


class RateLimitedListenHub(FakeListenHub):
    def __init__(self, outcomes, limited_polls=1):
        super().__init__(outcomes)
        self.limited_polls = limited_polls

    async def get_episode(self, episode_id):
        if self.limited_polls:
            self.limited_polls -= 1
            raise QuotaExceeded("429 too many requests", status_code=429, provider="listenhub")
        return await super().get_episode(episode_id)


async def test_rate_limited_poll_does_not_create_another_episode(repository, settings, recording_sleep):
    client = RateLimitedListenHub([success(), success()])
    service = make_service(repository, settings, client, recording_sleep)

    result = await service.create_dialogue("摘要", ["voice-a", "voice-b"], NarrationMode.DEEP)

    assert result.episode_id == "ep-1"
    assert [c["mode"] for c in client.created] == ["deep"]


async def test_direct_narration_walks_strategies(repository, settings, recording_sleep):
    client = FakeListenHub([success(audio_url=None), success(audio_url="http://engine/intro.mp3")])
    service = make_service(repository, settings, client, recording_sleep)

    result = await service.narrate_direct("歡迎收聽", "voice-a", label="intro")

    assert result.audio_url == "http://engine/intro.mp3"
    first, second = client.created
    assert first["query"] == "請逐字朗讀：歡迎收聽"
    assert first["speaker_ids"] == ["voice-a"]
    assert second["speaker_ids"] == ["voice-a", "voice-a"]
    assert (second["type"], second["format"]) == ("flowspeech", "narration")


def make_listenhub(handler) -> ListenHubClient:
    client = ListenHubClient(AIClientConfig(base_url="http://listenhub", api_key="k"))
    client.http_client = httpx.AsyncClient(
        base_url="http://listenhub", transport=httpx.MockTransport(handler),
    )
    return client


async def test_listenhub_unwraps_envelope():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"code": 0, "data": {"episodeId": "e1"}})
        return httpx.Response(200, json={"code": 0, "data": {
            "episodeId": "e1",
            "processStatus": "success",
            "audioUrl": "http://cdn/e1.mp3",
            "scripts": SCRIPTS,
        }})

    client = make_listenhub(handler)
    assert await client.create_episode("q", ["voice-a"]) == "e1"
    episode = await client.get_episode("e1")
    await client.close()

    assert episode.is_terminal
    assert episode.audio_url == "http://cdn/e1.mp3"
    assert len(episode.scripts) == 3


async def test_listenhub_error_codes():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/list"):
            return httpx.Response(401, json={"message": "bad key"})
        return httpx.Response(200, json={"code": 1001, "message": "invalid speaker"})

    client = make_listenhub(handler)
    with pytest.raises(AuthenticationRejected):
        await client.list_speakers()
    with pytest.raises(ProviderRejected):
        await client.create_episode("q", ["voice-a"])
    await client.close()


def test_listenhub_requires_key():
    with pytest.raises(ValueError):
        ListenHubClient(AIClientConfig(base_url="http://listenhub"))
