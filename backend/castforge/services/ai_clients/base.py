"""
Shared types and error taxonomy for external generation services.

Every provider client (text generation, speech-to-text, narration,
avatar video) raises errors from this module, so that the
ExternalServiceAdapter can decide between retrying, falling back to the
next candidate, or aborting without knowing which provider it talks to.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass
class AIClientConfig:
    """
    Configuration for provider client instances.

    Attributes:
        base_url: API endpoint URL
        timeout: Request timeout in seconds
        api_key: Optional API key for authenticated services
    """

    base_url: str
    timeout: float = 300.0
    api_key: str | None = None


@dataclass
class ChatUsage:
    """
    Token usage statistics from an LLM response.

    Attributes:
        input_tokens: Tokens in the input prompt
        output_tokens: Tokens generated in response
    """

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        """Total tokens used."""
        return self.input_tokens + self.output_tokens


@runtime_checkable
class TextGenerationClient(Protocol):
    """
    Interface of a text generation engine as seen by the pipeline.

    Example:
        async def summarize(client: TextGenerationClient, text: str) -> str:
            content, _ = await client.generate(text, model="claude-sonnet-4-5")
            return content
    """

    async def generate(
        self,
        prompt: str,
        model: str | None = None,
        system: str | None = None,
        max_tokens: int | None = None,
    ) -> tuple[str, ChatUsage]:
        """Generate text from a prompt, returning (content, usage)."""
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════


class AIClientError(Exception):
    """
    Base exception for provider client errors.

    Attributes:
        message: Error description
        provider: Provider name (claude, whisper, listenhub, kling)
        model: Model or endpoint that caused the error
        original_error: Underlying exception if available
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        model: str | None = None,
        original_error: Exception | None = None,
    ):
        self.message = message
        self.provider = provider
        self.model = model
        self.original_error = original_error
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.provider:
            parts.append(f"provider={self.provider}")
        if self.model:
            parts.append(f"model={self.model}")
        return " | ".join(parts)


class TransientProviderError(AIClientError):
    """Failure worth retrying against the same candidate."""

    pass


class AIClientTimeoutError(TransientProviderError):
    """Raised when a request times out."""

    pass


class AIClientConnectionError(TransientProviderError):
    """Raised when the connection fails (reset, refused, DNS)."""

    pass


class AIClientResponseError(AIClientError):
    """
    Raised when a provider returns an error response.

    Attributes:
        status_code: HTTP status code if available
        response_body: Response body if available
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.response_body = response_body


class ProviderServerError(AIClientResponseError, TransientProviderError):
    """Raised on 5xx responses."""

    pass


class ProviderRejected(AIClientResponseError):
    """Provider refused the request; retrying the same candidate is pointless."""

    pass


class AuthenticationRejected(ProviderRejected):
    """Bad or missing credentials (401/403). No fallback is attempted."""

    pass


class QuotaExceeded(ProviderRejected):
    """Rate limit or quota hit (429). Another candidate may still succeed."""

    pass


class MalformedResponse(ProviderRejected):
    """Response arrived but could not be used (bad JSON, missing fields)."""

    pass


class EpisodeFailed(ProviderRejected):
    """Asynchronous generation finished with a provider-reported failure."""

    pass


def error_from_status(
    status_code: int,
    message: str,
    provider: str | None = None,
    model: str | None = None,
    response_body: str | None = None,
    original_error: Exception | None = None,
) -> AIClientResponseError:
    """
    Build the taxonomy error matching an HTTP status code.

    Args:
        status_code: HTTP status returned by the provider
        message: Error description
        provider: Provider name
        model: Model or endpoint name
        response_body: Truncated response body for operators
        original_error: Underlying exception

    Returns:
        AuthenticationRejected (401/403), QuotaExceeded (429),
        ProviderServerError (5xx) or ProviderRejected (other statuses)

    Example:
        >>> type(error_from_status(503, "down")).__name__
        'ProviderServerError'
    """
    if status_code in (401, 403):
        error_cls = AuthenticationRejected
    elif status_code == 429:
        error_cls = QuotaExceeded
    elif status_code >= 500:
        error_cls = ProviderServerError
    else:
        error_cls = ProviderRejected

    return error_cls(
        message,
        status_code=status_code,
        response_body=response_body,
        provider=provider,
        model=model,
        original_error=original_error,
    )


class BaseAIClientImpl(ABC):
    """
    Abstract base class for provider client implementations.

    Provides the async context manager protocol; subclasses release
    their HTTP resources in close().
    """

    def __init__(self, config: AIClientConfig):
        """
        Initialize client with configuration.

        Args:
            config: Client configuration with URL, timeout, etc.
        """
        self.config = config

    @abstractmethod
    async def close(self) -> None:
        """Close the client and release resources."""
        pass

    async def __aenter__(self) -> "BaseAIClientImpl":
        """Context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        await self.close()
