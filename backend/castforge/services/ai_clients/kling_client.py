"""
Kling AI avatar video engine client.

Turns a reference image plus an audio URL into a talking-head video.
Requests are authenticated with a short-lived HS256 JWT.
"""

import logging
import time
from dataclasses import dataclass

import httpx
import jwt

from castforge.config import Settings
from castforge.services.ai_clients.base import (
    AIClientConfig,
    BaseAIClientImpl,
    MalformedResponse,
    ProviderRejected,
)
from castforge.services.ai_clients.http_utils import send_request

logger = logging.getLogger(__name__)

PROVIDER = "kling"
AVATAR_ENDPOINT = "/v1/videos/avatar/image2video"
TOKEN_TTL_SECONDS = 30 * 60


@dataclass
class AvatarJobStatus:
    """
    Engine-side state of one avatar video job.

    Attributes:
        task_id: Engine task id
        status: "submitted", "processing", "succeed" or "failed"
        status_message: Engine failure text (failed only)
        video_url: Rendered video (succeed only)
        thumbnail_url: Cover image when the engine provides one
        duration: Video length in seconds
    """

    task_id: str
    status: str
    status_message: str | None = None
    video_url: str | None = None
    thumbnail_url: str | None = None
    duration: float | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeed"

    @property
    def failed(self) -> bool:
        return self.status == "failed"


class KlingAvatarClient(BaseAIClientImpl):
    """
    Async client for the Kling avatar image2video API.

    Example:
        async with KlingAvatarClient.from_settings(settings) as client:
            task_id = await client.create_task(image_url, audio_url, mode="std")
            status = await client.get_task(task_id)
    """

    def __init__(self, config: AIClientConfig, secret_key: str | None):
        """
        Initialize Kling client.

        Args:
            config: Base URL, access key (api_key) and timeout
            secret_key: Secret used to sign request tokens

        Raises:
            ValueError: If credentials are missing
        """
        super().__init__(config)

        if not config.api_key or not secret_key:
            raise ValueError(
                "KlingAvatarClient requires credentials. "
                "Set KLING_ACCESS_KEY and KLING_SECRET_KEY environment variables."
            )

        self.access_key = config.api_key
        self.secret_key = secret_key
        self.http_client = httpx.AsyncClient(base_url=config.base_url, timeout=config.timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "KlingAvatarClient":
        """
        Create KlingAvatarClient from application settings.

        Args:
            settings: Application settings

        Returns:
            Configured KlingAvatarClient instance
        """
        config = AIClientConfig(
            base_url=settings.kling_url,
            api_key=settings.kling_access_key,
            timeout=settings.http_timeout,
        )
        return cls(config, secret_key=settings.kling_secret_key)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.http_client.aclose()

    def _auth_headers(self) -> dict[str, str]:
        """Sign a fresh bearer token.

        nbf is set a few seconds in the past to tolerate clock skew.
        """
        now = int(time.time())
        token = jwt.encode(
            {"iss": self.access_key, "exp": now + TOKEN_TTL_SECONDS, "nbf": now - 5},
            self.secret_key,
            algorithm="HS256",
        )
        return {"Authorization": f"Bearer {token}"}

    def _unwrap(self, response: httpx.Response, mode: str | None = None) -> dict:
        try:
            body = response.json()
        except ValueError as e:
            raise MalformedResponse(
                "Kling returned non-JSON body", provider=PROVIDER, model=mode, original_error=e,
            ) from e

        if not isinstance(body, dict):
            raise MalformedResponse("Unexpected Kling envelope", provider=PROVIDER, model=mode)

        if body.get("code") != 0:
            raise ProviderRejected(
                f"Kling API error: {body.get('message')}",
                provider=PROVIDER,
                model=mode,
                response_body=str(body)[:500],
            )
        data = body.get("data")
        if not isinstance(data, dict) or not data.get("task_id"):
            raise MalformedResponse("Kling response has no task data", provider=PROVIDER, model=mode)
        return data

    async def create_task(
        self,
        image_url: str,
        audio_url: str,
        mode: str = "std",
        prompt: str | None = None,
        external_task_id: str | None = None,
    ) -> str:
        """
        Submit one avatar video job.

        Args:
            image_url: Reference image of the presenter
            audio_url: Publicly reachable narration audio (2-60s)
            mode: "std" or "pro"
            prompt: Optional positive prompt
            external_task_id: Caller-side id echoed back by the engine

        Returns:
            Engine task id
        """
        payload = {"image": image_url, "sound_file": audio_url, "mode": mode}
        if prompt:
            payload["prompt"] = prompt
        if external_task_id:
            payload["external_task_id"] = external_task_id

        response = await send_request(
            self.http_client, "POST", AVATAR_ENDPOINT,
            provider=PROVIDER, model=mode, json=payload, headers=self._auth_headers(),
        )
        task_id = self._unwrap(response, mode)["task_id"]
        logger.info(f"Kling avatar task created: {task_id} (mode={mode})")
        return task_id

    async def get_task(self, task_id: str) -> AvatarJobStatus:
        """
        Query one avatar job.

        Args:
            task_id: Engine task id

        Returns:
            AvatarJobStatus snapshot
        """
        response = await send_request(
            self.http_client, "GET", f"{AVATAR_ENDPOINT}/{task_id}",
            provider=PROVIDER, headers=self._auth_headers(),
        )
        data = self._unwrap(response)

        videos = (data.get("task_result") or {}).get("videos") or []
        video = videos[0] if videos else {}
        duration = video.get("duration")

        return AvatarJobStatus(
            task_id=data["task_id"],
            status=data.get("task_status", "processing"),
            status_message=data.get("task_status_msg"),
            video_url=video.get("url"),
            thumbnail_url=video.get("cover_url"),
            duration=float(duration) if duration else None,
        )
