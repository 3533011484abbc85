"""
Claude API client implementation.

Provides async client for Anthropic's Claude API.
Implements TextGenerationClient for summaries, scripts and highlight picks.
"""

import logging

from anthropic import AsyncAnthropic, APIConnectionError, APIStatusError, APITimeoutError

from castforge.config import Settings
from castforge.services.ai_clients.base import (
    AIClientConfig,
    AIClientConnectionError,
    AIClientTimeoutError,
    BaseAIClientImpl,
    ChatUsage,
    MalformedResponse,
    error_from_status,
)

logger = logging.getLogger(__name__)

# Default Claude model (using alias for auto-updates)
DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-5"


class ClaudeClient(BaseAIClientImpl):
    """
    Async client for Anthropic's Claude API.

    Retries are disabled in the SDK; the ExternalServiceAdapter owns
    retry and model fallback.

    Example:
        async with ClaudeClient.from_settings(settings) as client:
            content, usage = await client.generate(
                "Summarize this transcript...",
                model="claude-sonnet-4-5",
            )
    """

    def __init__(
        self,
        config: AIClientConfig,
        default_model: str = DEFAULT_CLAUDE_MODEL,
    ):
        """
        Initialize Claude client.

        Args:
            config: AI client configuration with API key
            default_model: Default Claude model to use

        Raises:
            ValueError: If API key is not provided
        """
        super().__init__(config)
        self.default_model = default_model

        if not config.api_key:
            raise ValueError(
                "ClaudeClient requires API key. "
                "Set ANTHROPIC_API_KEY environment variable."
            )

        self.client = AsyncAnthropic(
            api_key=config.api_key,
            timeout=config.timeout,
            max_retries=0,
        )

        logger.info(f"ClaudeClient initialized, model: {default_model}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClaudeClient":
        """
        Create ClaudeClient from application settings.

        Args:
            settings: Application settings

        Returns:
            Configured ClaudeClient instance

        Raises:
            ValueError: If ANTHROPIC_API_KEY not set
        """
        config = AIClientConfig(
            base_url="https://api.anthropic.com",
            api_key=settings.anthropic_api_key,
            timeout=settings.llm_timeout,
        )
        return cls(config=config)

    async def close(self) -> None:
        """Close the client and release resources."""
        await self.client.close()
        logger.debug("ClaudeClient closed")

    async def generate(
        self,
        prompt: str,
        model: str | None = None,
        system: str | None = None,
        max_tokens: int | None = None,
        temperature: float = 0.7,
    ) -> tuple[str, ChatUsage]:
        """
        Generate text using the Messages API with a single user message.

        Args:
            prompt: User prompt
            model: Model name (default: claude-sonnet)
            system: Optional system prompt
            max_tokens: Max tokens to generate (default: 4096)
            temperature: Sampling temperature

        Returns:
            Tuple of (generated_text, ChatUsage)

        Raises:
            AIClientTimeoutError: Request timed out
            AIClientConnectionError: API unreachable
            AIClientResponseError: API returned an error status
            MalformedResponse: Response carried no text block
        """
        if model is None:
            model = self.default_model

        if max_tokens is None:
            max_tokens = 4096

        logger.debug(
            f"Claude generate: model={model}, prompt={len(prompt)} chars, "
            f"system={'yes' if system else 'no'}, max_tokens={max_tokens}"
        )

        kwargs = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        try:
            response = await self.client.messages.create(**kwargs)

        except APITimeoutError as e:
            raise AIClientTimeoutError(
                "Claude request timeout",
                provider="claude",
                model=model,
                original_error=e,
            ) from e

        except APIConnectionError as e:
            raise AIClientConnectionError(
                f"Cannot connect to Claude API: {e}",
                provider="claude",
                model=model,
                original_error=e,
            ) from e

        except APIStatusError as e:
            logger.error(f"Claude API error: {e.status_code} - {e.message}")
            raise error_from_status(
                e.status_code,
                f"Claude API error: {e.message}",
                provider="claude",
                model=model,
                response_body=str(e.body)[:500] if e.body else None,
                original_error=e,
            ) from e

        text_blocks = [block.text for block in response.content if getattr(block, "text", None)]
        if not text_blocks:
            raise MalformedResponse(
                "Claude response contained no text",
                provider="claude",
                model=model,
            )

        content = "".join(text_blocks)
        usage = ChatUsage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

        logger.info(
            f"Claude response: {len(content)} chars, "
            f"tokens: {usage.input_tokens} in / {usage.output_tokens} out"
        )

        return content, usage
