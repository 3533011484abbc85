"""
Pipeline-level errors and user-facing message normalization.

Provider errors (ai_clients.base) describe what an engine did; the errors
here describe what the pipeline decided. user_safe_message() is the only
place that turns any exception into text stored on a record.
"""

from castforge.services.ai_clients.base import (
    AIClientError,
    AuthenticationRejected,
    EpisodeFailed,
    QuotaExceeded,
    TransientProviderError,
)


class InvalidInput(Exception):
    """Malformed URL, missing field or unusable request. Rejected synchronously."""

    pass


class SourceUnavailable(InvalidInput):
    """Source exists in form but cannot be used (private, removed, region-locked, too long)."""

    pass


class DurationConstraintViolation(InvalidInput):
    """
    Highlight duration outside the avatar engine's accepted window.

    Attributes:
        duration: Offending duration in seconds
    """

    def __init__(self, duration: float, minimum: float, maximum: float):
        self.duration = duration
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(
            f"Audio duration must be between {minimum:g} and {maximum:g} seconds, got {duration:g}"
        )


class PollingTimeout(Exception):
    """
    Attempt or time budget exhausted without a terminal state.

    Attributes:
        operation: What was being polled
        attempts: Number of status queries made
        elapsed: Seconds spent polling
    """

    def __init__(self, operation: str, attempts: int, elapsed: float):
        self.operation = operation
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(
            f"{operation} did not finish after {attempts} checks ({elapsed:.0f}s)"
        )


class CandidatesExhausted(Exception):
    """
    Every candidate for one logical operation failed.

    Attributes:
        operation: Logical operation name
        attempted: Candidate names in the order they were tried
        last_error: Underlying cause of the final failure
    """

    def __init__(self, operation: str, attempted: list[str], last_error: Exception | None):
        self.operation = operation
        self.attempted = attempted
        self.last_error = last_error
        super().__init__(
            f"All candidates failed for {operation} (tried: {', '.join(attempted) or 'none'}); "
            f"last error: {last_error}"
        )


class InvalidTransition(Exception):
    """Requested status change is not a forward step, or the record is not in the required state."""

    pass


class NotFound(Exception):
    """Record does not exist or is not owned by the caller."""

    pass


def user_safe_message(exc: BaseException) -> str:
    """
    Normalize any failure to a message safe to persist and show to users.

    Raw provider payloads never pass through; only InvalidInput messages,
    which the pipeline itself wrote, are shown verbatim.

    Args:
        exc: Any exception raised while processing

    Returns:
        Short, user-facing message
    """
    if isinstance(exc, CandidatesExhausted) and exc.last_error is not None:
        return user_safe_message(exc.last_error)

    cause = getattr(exc, "cause", None)
    if isinstance(cause, BaseException):
        return user_safe_message(cause)

    if isinstance(exc, InvalidInput):
        return str(exc)
    if isinstance(exc, PollingTimeout):
        return "Generation took too long and was stopped. Please try again later."
    if isinstance(exc, AuthenticationRejected):
        return "A generation service rejected our credentials. Please contact support."
    if isinstance(exc, QuotaExceeded):
        return "Generation services are busy or out of quota. Please try again later."
    if isinstance(exc, EpisodeFailed):
        return "The audio generation service could not produce this episode. Please try different content."
    if isinstance(exc, TransientProviderError):
        return "A generation service is temporarily unavailable. Please try again later."
    if isinstance(exc, AIClientError):
        return "A generation service returned an unexpected response. Please try again."
    return "Processing failed due to an internal error. Please try again."
