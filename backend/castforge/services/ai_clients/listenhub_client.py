"""
ListenHub narration engine client.

Creates dialogue (two hosts) or single-voice episodes from text and
reports their asynchronous processing status.
"""

import logging
from dataclasses import dataclass, field

import httpx

from castforge.config import Settings
from castforge.models.schemas import Voice
from castforge.services.ai_clients.base import (
    AIClientConfig,
    BaseAIClientImpl,
    MalformedResponse,
    ProviderRejected,
)
from castforge.services.ai_clients.http_utils import send_request

logger = logging.getLogger(__name__)

PROVIDER = "listenhub"


@dataclass
class NarrationEpisode:
    """
    Status of one narration episode.

    Attributes:
        episode_id: Engine-side opaque id
        status: "pending", "success" or "failed"
        title: Episode title chosen by the engine
        audio_url: Finished audio (success only)
        scripts: Dialogue turns as returned by the engine
        fail_code: Engine failure code (failed only)
    """

    episode_id: str
    status: str
    title: str | None = None
    audio_url: str | None = None
    scripts: list[dict] = field(default_factory=list)
    fail_code: int | None = None

    @property
    def is_terminal(self) -> bool:
        """True once the engine stopped processing."""
        return self.status in ("success", "failed")


class ListenHubClient(BaseAIClientImpl):
    """
    Async client for the ListenHub OpenAPI.

    Example:
        async with ListenHubClient.from_settings(settings) as client:
            episode_id = await client.create_episode(
                query=summary, speaker_ids=["voice-a", "voice-b"], mode="quick"
            )
            episode = await client.get_episode(episode_id)
    """

    def __init__(self, config: AIClientConfig):
        """
        Initialize ListenHub client.

        Args:
            config: Base URL, API key and timeout

        Raises:
            ValueError: If API key is not provided
        """
        super().__init__(config)

        if not config.api_key:
            raise ValueError(
                "ListenHubClient requires API key. "
                "Set LISTENHUB_API_KEY environment variable."
            )

        self.http_client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout,
            headers={"Authorization": f"Bearer {config.api_key}"},
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ListenHubClient":
        """
        Create ListenHubClient from application settings.

        Args:
            settings: Application settings

        Returns:
            Configured ListenHubClient instance
        """
        config = AIClientConfig(
            base_url=settings.listenhub_url,
            api_key=settings.listenhub_api_key,
            timeout=settings.http_timeout,
        )
        return cls(config)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.http_client.aclose()

    @staticmethod
    def _unwrap(response: httpx.Response, model: str | None = None) -> dict:
        """
        Unwrap the {code, message, data} envelope.

        Raises:
            ProviderRejected: Envelope carries a non-zero code
            MalformedResponse: Body is not the expected envelope
        """
        try:
            body = response.json()
        except ValueError as e:
            raise MalformedResponse(
                "ListenHub returned non-JSON body",
                provider=PROVIDER,
                model=model,
                original_error=e,
            ) from e

        if not isinstance(body, dict):
            raise MalformedResponse("Unexpected ListenHub envelope", provider=PROVIDER, model=model)

        if body.get("code") != 0:
            raise ProviderRejected(
                f"ListenHub API error: {body.get('message')}",
                provider=PROVIDER,
                model=model,
                response_body=str(body)[:500],
            )

        return body.get("data") or {}

    async def list_speakers(self, language: str = "zh") -> list[Voice]:
        """
        List available voices, including cloned ones.

        Args:
            language: Voice language filter

        Returns:
            List of Voice
        """
        response = await send_request(
            self.http_client, "GET", "/speakers/list",
            provider=PROVIDER, params={"language": language},
        )
        items = self._unwrap(response).get("items") or []
        return [
            Voice(
                speaker_id=item["speakerId"],
                name=item.get("name", item["speakerId"]),
                gender=item.get("gender"),
                language=item.get("language"),
                demo_audio_url=item.get("demoAudioUrl"),
            )
            for item in items
            if item.get("speakerId")
        ]

    async def create_episode(
        self,
        query: str,
        speaker_ids: list[str],
        language: str = "zh",
        mode: str = "quick",
        episode_type: str | None = None,
        episode_format: str | None = None,
    ) -> str:
        """
        Start generating one episode.

        Args:
            query: Source text (summary, script or literal narration)
            speaker_ids: One or two voice ids
            language: Episode language
            mode: "quick" or "deep"
            episode_type: Optional "type" request hint
            episode_format: Optional "format" request hint

        Returns:
            Engine episode id

        Raises:
            AIClientError: On transport, status or envelope errors
        """
        payload: dict = {
            "query": query,
            "speakers": [{"speakerId": speaker_id} for speaker_id in speaker_ids],
            "language": language,
            "mode": mode,
        }
        if episode_type:
            payload["type"] = episode_type
        if episode_format:
            payload["format"] = episode_format

        response = await send_request(
            self.http_client, "POST", "/podcast/episodes",
            provider=PROVIDER, model=mode, json=payload,
        )
        data = self._unwrap(response, model=mode)
        episode_id = data.get("episodeId")
        if not episode_id:
            raise MalformedResponse("ListenHub returned no episodeId", provider=PROVIDER, model=mode)

        logger.info(f"ListenHub episode created: {episode_id} (mode={mode}, speakers={len(speaker_ids)})")
        return episode_id

    async def get_episode(self, episode_id: str) -> NarrationEpisode:
        """
        Query one episode's processing status.

        Args:
            episode_id: Engine episode id

        Returns:
            NarrationEpisode snapshot
        """
        response = await send_request(
            self.http_client, "GET", f"/podcast/episodes/{episode_id}", provider=PROVIDER,
        )
        data = self._unwrap(response)
        return NarrationEpisode(
            episode_id=data.get("episodeId", episode_id),
            status=data.get("processStatus", "pending"),
            title=data.get("title"),
            audio_url=data.get("audioUrl"),
            scripts=data.get("scripts") or [],
            fail_code=data.get("failCode"),
        )
