"""
Narration service: dialogue episodes, direct narration and voices.

Both kinds of narration create one asynchronous engine episode and
poll it to completion inside a single adapter candidate call, so a
failed or stuck episode advances to the next candidate (engine mode
for dialogues, literal-reading strategy for direct narration).
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from castforge.config import Settings
from castforge.models.schemas import DialogueTurn, NarrationMode, TaskOptions, Voice
from castforge.services.ai_clients import (
    EpisodeFailed,
    ListenHubClient,
    MalformedResponse,
    NarrationEpisode,
    QuotaExceeded,
    TransientProviderError,
)
from castforge.services.pipeline.service_adapter import Candidate, ExternalServiceAdapter
from castforge.services.polling import narration_schedule, poll_until
from castforge.services.repository import Repository

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class NarrationResult:
    """Finished narration episode."""

    episode_id: str
    audio_url: str
    title: str | None = None
    turns: list[DialogueTurn] = field(default_factory=list)


def engine_mode(mode: NarrationMode) -> str:
    """The engine knows quick and deep only; medium runs as quick."""
    return "deep" if mode is NarrationMode.DEEP else "quick"


def parse_turns(scripts: list[dict]) -> list[DialogueTurn]:
    """Convert engine script items into dialogue turns, skipping empty ones."""
    turns = []
    for item in scripts:
        text = (item.get("content") or item.get("text") or "").strip()
        if not text:
            continue
        speaker_id = str(item.get("speakerId") or item.get("speaker_id") or "")
        turns.append(
            DialogueTurn(
                speaker_id=speaker_id,
                speaker_name=str(item.get("speakerName") or item.get("speaker_name") or speaker_id),
                text=text,
            )
        )
    return turns


class NarrationService:
    """
    Dialogue and direct narration over the narration engine.

    Example:
        narration = NarrationService.from_settings(settings, repository)
        host1, host2 = await narration.resolve_voices(owner_id, task.options)
        result = await narration.create_dialogue(summary, [host1, host2], NarrationMode.DEEP)
        intro = await narration.narrate_direct("歡迎收聽", host1)
    """

    def __init__(
        self,
        client: ListenHubClient,
        dialogue_adapter: ExternalServiceAdapter,
        direct_adapter: ExternalServiceAdapter,
        repository: Repository,
        settings: Settings,
        sleep: SleepFunc | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.dialogue_adapter = dialogue_adapter
        self.direct_adapter = direct_adapter
        self.repository = repository
        self.settings = settings
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, repository: Repository) -> "NarrationService":
        return cls(
            ListenHubClient.from_settings(settings),
            ExternalServiceAdapter.from_settings("narration_dialogue", settings),
            ExternalServiceAdapter.from_settings("narration_direct", settings),
            repository,
            settings,
        )

    async def close(self) -> None:
        await self.client.close()

    # ═══════════════════════════════════════════════════════════════════════════
    # Voices
    # ═══════════════════════════════════════════════════════════════════════════

    async def list_voices(self) -> list[Voice]:
        return await self.client.list_speakers(self.settings.narration_language)

    async def default_speakers(self) -> tuple[str, str]:
        """
        Engine default pair: first male and first female voice.

        Raises:
            MalformedResponse: Engine offers no male/female pair
        """
        voices = await self.list_voices()
        males = [v for v in voices if (v.gender or "").lower() == "male"]
        females = [v for v in voices if (v.gender or "").lower() == "female"]
        if not males or not females:
            raise MalformedResponse("No male or female speakers available", provider="listenhub")

        logger.info(f"Default speakers: {males[0].name} (male), {females[0].name} (female)")
        return males[0].speaker_id, females[0].speaker_id

    async def resolve_voices(self, owner_id: str, options: TaskOptions) -> tuple[str, str]:
        """
        Pick the two hosts for a dialogue.

        Order: explicit per-call pair, saved preference, engine default.
        """
        if options.has_voice_override:
            return options.voice_id_1, options.voice_id_2

        preference = await self.repository.get_voice_preference(owner_id)
        if preference is not None:
            return preference.host1_voice_id, preference.host2_voice_id

        return await self.default_speakers()

    # ═══════════════════════════════════════════════════════════════════════════
    # Episodes
    # ═══════════════════════════════════════════════════════════════════════════

    async def create_dialogue(
        self,
        query: str,
        speaker_ids: list[str],
        mode: NarrationMode = NarrationMode.MEDIUM,
        task_id: str | None = None,
    ) -> NarrationResult:
        """
        Generate a two-host dialogue episode.

        Args:
            query: Source text for the dialogue (the summary)
            speaker_ids: Host voice ids
            mode: Requested quality mode
            task_id: Task id for logs

        Returns:
            NarrationResult with audio URL and dialogue turns

        Raises:
            CandidatesExhausted: Every engine mode failed
            AuthenticationRejected: API key refused
        """
        requested = engine_mode(mode)

        async def generate(candidate: Candidate) -> NarrationResult:
            candidate_mode = candidate.params.get("mode", "requested")
            api_mode = requested if candidate_mode == "requested" else candidate_mode
            episode_id = await self.client.create_episode(
                query=query,
                speaker_ids=speaker_ids,
                language=self.settings.narration_language,
                mode=api_mode,
            )
            episode = await self.wait_for_episode(episode_id)
            return _to_result(episode)

        result = await self.dialogue_adapter.call(
            generate, context={"task_id": task_id, "stage": "synthesizing"}
        )
        logger.info(f"Dialogue episode {result.episode_id} ready: {len(result.turns)} turns")
        return result

    async def narrate_direct(
        self,
        text: str,
        speaker_id: str,
        task_id: str | None = None,
        label: str = "narration",
    ) -> NarrationResult:
        """
        Generate audio that reads text literally with one voice.

        Tries the configured literal-reading strategies in order. The engine
        is built for dialogues, so literal reading is best-effort.

        Args:
            text: Text to read
            speaker_id: Voice id
            task_id: Task id for logs
            label: "intro" or "outro" for logs

        Returns:
            NarrationResult of the first strategy that produced audio
        """

        async def generate(candidate: Candidate) -> NarrationResult:
            template = candidate.params.get("query", "{text}")
            speakers = int(candidate.params.get("speakers", 1))
            episode_id = await self.client.create_episode(
                query=template.replace("{text}", text),
                speaker_ids=[speaker_id] * max(1, speakers),
                language=self.settings.narration_language,
                mode="quick",
                episode_type=candidate.params.get("type"),
                episode_format=candidate.params.get("format"),
            )
            episode = await self.wait_for_episode(episode_id)
            return _to_result(episode)

        result = await self.direct_adapter.call(
            generate, context={"task_id": task_id, "stage": "intro_outro", "part": label}
        )
        logger.info(f"Direct narration ({label}) ready: {result.episode_id}")
        return result

    async def wait_for_episode(self, episode_id: str) -> NarrationEpisode:
        """
        Poll an episode until it succeeds or fails.

        Raises:
            EpisodeFailed: Engine reported failure
            MalformedResponse: Success without an audio URL
            PollingTimeout: Budget exhausted while still processing
        """
        episode = await poll_until(
            lambda: self.client.get_episode(episode_id),
            is_terminal=lambda e: e.is_terminal,
            schedule=narration_schedule,
            operation=f"narration episode {episode_id}",
            max_wait=self.settings.narration_max_wait,
            initial_delay=self.settings.narration_initial_wait,
            tolerate=(TransientProviderError, QuotaExceeded),
            sleep=self._sleep,
            clock=self._clock,
        )

        if episode.status == "failed":
            raise EpisodeFailed(
                f"Episode {episode_id} failed (code {episode.fail_code})",
                provider="listenhub",
            )
        if not episode.audio_url:
            raise MalformedResponse(f"Episode {episode_id} finished without audio", provider="listenhub")
        return episode


def _to_result(episode: NarrationEpisode) -> NarrationResult:
    return NarrationResult(
        episode_id=episode.episode_id,
        audio_url=episode.audio_url,
        title=episode.title,
        turns=parse_turns(episode.scripts),
    )
