"""
Retry and fallback wrapper for calls to external generation services.

Every call to a speech-to-text, text-generation, narration or avatar
engine goes through ExternalServiceAdapter.call(). The adapter walks an
ordered list of candidates (model or endpoint plus parameters) and, per
candidate, retries transient failures with exponential backoff and jitter.

Failure handling per candidate:
- transient (timeout, connection reset, DNS, 5xx): retried up to
  max_attempts, then the next candidate is tried
- quota / rate limit (429) and other rejections: next candidate at once
- authentication (401/403): abort, no fallback

Example:
    adapter = ExternalServiceAdapter.from_settings("text_generation", settings)

    async def call(candidate: Candidate) -> str:
        content, _ = await claude.generate(prompt, model=candidate.name)
        return content

    content = await adapter.call(call, context={"task_id": task.id, "stage": "scripting"})
"""

import asyncio
import logging
import socket
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from castforge.config import Settings, load_candidates
from castforge.services.ai_clients.base import (
    AuthenticationRejected,
    QuotaExceeded,
    TransientProviderError,
    error_from_status,
)
from castforge.services.errors import CandidatesExhausted

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


class FailureKind(str, Enum):
    """How the adapter reacts to one failed attempt."""
    TRANSIENT = "transient"  # retry same candidate
    QUOTA = "quota"          # next candidate, no retries
    REJECTED = "rejected"    # next candidate, no retries
    AUTH = "auth"            # abort the whole call


def classify_failure(exc: BaseException) -> FailureKind:
    """
    Decide how to react to an exception raised by a candidate call.

    Provider clients raise the shared taxonomy; raw httpx and socket
    errors are classified too so that thin call sites stay correct.

    Args:
        exc: Exception raised by the call

    Returns:
        FailureKind for this exception
    """
    if isinstance(exc, httpx.HTTPStatusError):
        exc = error_from_status(exc.response.status_code, str(exc))

    if isinstance(exc, AuthenticationRejected):
        return FailureKind.AUTH
    if isinstance(exc, QuotaExceeded):
        return FailureKind.QUOTA
    if isinstance(exc, TransientProviderError):
        return FailureKind.TRANSIENT
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return FailureKind.TRANSIENT
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, ConnectionError, socket.gaierror)):
        return FailureKind.TRANSIENT
    return FailureKind.REJECTED


def is_retryable(exc: BaseException) -> bool:
    """True when the same candidate should be tried again."""
    return classify_failure(exc) is FailureKind.TRANSIENT


@dataclass
class Candidate:
    """
    One option for a logical operation.

    Attributes:
        name: Model or endpoint identifier
        params: Extra call parameters for this candidate
        tag: Optional label for logs (e.g. "primary", "fallback")
    """

    name: str
    params: dict[str, Any] = field(default_factory=dict)
    tag: str | None = None

    @classmethod
    def from_config(cls, raw: dict | str) -> "Candidate":
        """
        Build a candidate from a services.yaml entry.

        Accepts a bare string ("claude-sonnet-4-5") or a mapping with
        name, optional params and optional tag.
        """
        if isinstance(raw, str):
            return cls(name=raw)
        return cls(
            name=str(raw["name"]),
            params=dict(raw.get("params") or {}),
            tag=raw.get("tag"),
        )

    def __str__(self) -> str:
        return f"{self.name}[{self.tag}]" if self.tag else self.name


class ExternalServiceAdapter:
    """
    Generic retry/fallback executor for one logical external operation.

    Attributes:
        operation: Logical operation name (for logs and errors)
        candidates: Ordered candidates, tried first to last
        max_attempts: Attempts per candidate for transient failures
    """

    def __init__(
        self,
        operation: str,
        candidates: list[Candidate],
        max_attempts: int = 3,
        initial_wait: float = 2.0,
        max_wait: float = 15.0,
        sleep: SleepFunc | None = None,
    ):
        """
        Initialize adapter.

        Args:
            operation: Logical operation name
            candidates: Ordered candidate list (must not be empty)
            max_attempts: Attempts per candidate for transient failures
            initial_wait: First backoff delay in seconds
            max_wait: Backoff cap in seconds
            sleep: Async sleep function (injectable for tests)

        Raises:
            ValueError: If no candidates are given
        """
        if not candidates:
            raise ValueError(f"No candidates given for {operation}")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        self.operation = operation
        self.candidates = list(candidates)
        self.max_attempts = max_attempts
        self.initial_wait = initial_wait
        self.max_wait = max_wait
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_settings(
        cls,
        operation: str,
        settings: Settings,
        sleep: SleepFunc | None = None,
    ) -> "ExternalServiceAdapter":
        """
        Create adapter with candidates from config/services.yaml.

        Args:
            operation: Operation key in services.yaml
            settings: Application settings
            sleep: Optional sleep override

        Returns:
            Configured ExternalServiceAdapter
        """
        candidates = [Candidate.from_config(raw) for raw in load_candidates(operation, settings)]
        return cls(
            operation,
            candidates,
            max_attempts=settings.adapter_max_attempts,
            initial_wait=settings.adapter_initial_wait,
            max_wait=settings.adapter_max_wait,
            sleep=sleep,
        )

    async def call(
        self,
        fn: Callable[[Candidate], Awaitable[T]],
        context: dict[str, Any] | None = None,
    ) -> T:
        """
        Run fn against candidates until one succeeds.

        Args:
            fn: Async callable receiving the current Candidate
            context: Extra fields for log lines (task_id, stage, ...)

        Returns:
            Result of the first successful candidate

        Raises:
            AuthenticationRejected: Credentials refused (no fallback)
            CandidatesExhausted: Every candidate failed; carries the last cause
        """
        ctx = _format_context(context)
        attempted: list[str] = []
        last_error: Exception | None = None

        for candidate in self.candidates:
            attempted.append(str(candidate))
            try:
                result = await self._call_candidate(candidate, fn, ctx)
                if len(attempted) > 1:
                    logger.info(f"{self.operation}{ctx}: succeeded with fallback candidate {candidate}")
                return result

            except Exception as e:
                last_error = e
                kind = classify_failure(e)

                if kind is FailureKind.AUTH:
                    logger.error(
                        f"{self.operation}{ctx}: candidate {candidate} rejected credentials, "
                        f"aborting without fallback: {e}"
                    )
                    raise

                logger.warning(
                    f"{self.operation}{ctx}: candidate {candidate} failed "
                    f"({kind.value}: {type(e).__name__}: {e})"
                )

        logger.error(
            f"{self.operation}{ctx}: all candidates exhausted, "
            f"attempted={attempted}, last_error={type(last_error).__name__}: {last_error}"
        )
        raise CandidatesExhausted(self.operation, attempted, last_error) from last_error

    async def _call_candidate(
        self,
        candidate: Candidate,
        fn: Callable[[Candidate], Awaitable[T]],
        ctx: str,
    ) -> T:
        """Call one candidate, retrying transient failures only."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential_jitter(initial=self.initial_wait, max=self.max_wait),
            retry=retry_if_exception(is_retryable),
            sleep=self._sleep,
            before_sleep=self._log_retry(candidate, ctx),
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                result = await fn(candidate)
        return result

    def _log_retry(self, candidate: Candidate, ctx: str) -> Callable[[RetryCallState], None]:
        def log(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0
            logger.info(
                f"{self.operation}{ctx}: {candidate} attempt "
                f"{retry_state.attempt_number}/{self.max_attempts} failed "
                f"({type(error).__name__}), retrying in {delay:.1f}s"
            )

        return log


def _format_context(context: dict[str, Any] | None) -> str:
    if not context:
        return ""
    return " [" + ", ".join(f"{k}={v}" for k, v in context.items()) + "]"
