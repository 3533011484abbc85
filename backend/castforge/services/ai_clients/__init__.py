"""
Provider clients for external generation services.

This package provides one client per engine, all raising the shared
error taxonomy from base.py:
- ClaudeClient: text generation (Anthropic)
- WhisperClient: speech-to-text (self-hosted Whisper ASR)
- ListenHubClient: dialogue and single-voice narration episodes
- KlingAvatarClient: talking-head avatar videos

Usage:
    from castforge.services.ai_clients import ClaudeClient

    async with ClaudeClient.from_settings(settings) as client:
        content, usage = await client.generate("Hello")
"""

from castforge.services.ai_clients.base import (
    AIClientConfig,
    AIClientConnectionError,
    AIClientError,
    AIClientResponseError,
    AIClientTimeoutError,
    AuthenticationRejected,
    ChatUsage,
    EpisodeFailed,
    MalformedResponse,
    ProviderRejected,
    ProviderServerError,
    QuotaExceeded,
    TextGenerationClient,
    TransientProviderError,
    error_from_status,
)
from castforge.services.ai_clients.claude_client import ClaudeClient
from castforge.services.ai_clients.kling_client import AvatarJobStatus, KlingAvatarClient
from castforge.services.ai_clients.listenhub_client import ListenHubClient, NarrationEpisode
from castforge.services.ai_clients.whisper_client import WhisperClient

__all__ = [
    # Shared types
    "AIClientConfig",
    "ChatUsage",
    "TextGenerationClient",
    "error_from_status",
    # Errors
    "AIClientError",
    "TransientProviderError",
    "AIClientTimeoutError",
    "AIClientConnectionError",
    "AIClientResponseError",
    "ProviderServerError",
    "ProviderRejected",
    "AuthenticationRejected",
    "QuotaExceeded",
    "MalformedResponse",
    "EpisodeFailed",
    # Implementations
    "ClaudeClient",
    "WhisperClient",
    "ListenHubClient",
    "NarrationEpisode",
    "KlingAvatarClient",
    "AvatarJobStatus",
]
