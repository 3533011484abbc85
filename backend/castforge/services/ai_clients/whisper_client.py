"""
Whisper transcription client implementation.

Talks to a self-hosted, OpenAI-compatible Whisper ASR server. Model
choice is per call, so the transcription adapter can fall back from a
large model to a smaller one.
"""

import asyncio
import logging
import time
from pathlib import Path

import httpx

from castforge.config import Settings
from castforge.services.ai_clients.base import MalformedResponse
from castforge.services.ai_clients.http_utils import send_request

logger = logging.getLogger(__name__)

PROVIDER = "whisper"
TRANSCRIPTIONS_PATH = "/v1/audio/transcriptions"


class WhisperClient:
    """
    Async HTTP client for the Whisper transcription API.

    Example:
        async with WhisperClient.from_settings(settings) as client:
            result = await client.transcribe(audio_path, model="large-v3")
            print(result["language"], result["text"][:100])
    """

    def __init__(self, whisper_url: str, timeout: float = 7200.0):
        """
        Initialize Whisper client.

        Args:
            whisper_url: Base URL of the Whisper server
            timeout: Upload and transcription timeout in seconds
        """
        self.whisper_url = whisper_url.rstrip("/")
        self.timeout = timeout
        self.http_client = httpx.AsyncClient(base_url=self.whisper_url, timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "WhisperClient":
        return cls(whisper_url=settings.whisper_url, timeout=settings.whisper_timeout)

    async def __aenter__(self) -> "WhisperClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.http_client.aclose()

    async def transcribe(
        self,
        file_path: Path,
        language: str | None = None,
        model: str | None = None,
    ) -> dict:
        """
        Transcribe an audio file.

        Args:
            file_path: Path to audio file
            language: Language code (None = auto-detect)
            model: Whisper model name

        Returns:
            verbose_json result: "text", "language", "duration", "segments"

        Raises:
            FileNotFoundError: If file doesn't exist
            AIClientError: Transport, status or body errors
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        audio = await asyncio.to_thread(file_path.read_bytes)
        logger.info(
            f"Transcribing: {file_path.name} ({len(audio) / 1024 / 1024:.1f} MB), model={model}"
        )

        form = {"response_format": "verbose_json"}
        if language:
            form["language"] = language
        if model:
            form["model"] = model

        start_time = time.time()
        response = await send_request(
            self.http_client,
            "POST",
            TRANSCRIPTIONS_PATH,
            provider=PROVIDER,
            model=model,
            files={"file": (file_path.name, audio, "application/octet-stream")},
            data=form,
        )

        try:
            result = response.json()
        except ValueError as e:
            raise MalformedResponse(
                "Whisper returned non-JSON body", provider=PROVIDER, model=model, original_error=e,
            ) from e
        if not isinstance(result, dict):
            raise MalformedResponse("Unexpected Whisper result", provider=PROVIDER, model=model)

        elapsed = time.time() - start_time
        logger.info(
            f"Transcription complete: {len(result.get('segments') or [])} segments, "
            f"duration: {result.get('duration') or 0:.0f}s, elapsed: {elapsed:.1f}s"
        )
        return result
