"""
httpx request helper shared by the HTTP provider clients.

Maps transport failures and error statuses onto the provider error
taxonomy in ai_clients.base.
"""

import logging

import httpx

from castforge.services.ai_clients.base import (
    AIClientConnectionError,
    AIClientTimeoutError,
    error_from_status,
)

logger = logging.getLogger(__name__)


async def send_request(
    http_client: httpx.AsyncClient,
    method: str,
    url: str,
    provider: str,
    model: str | None = None,
    **kwargs,
) -> httpx.Response:
    """
    Send one HTTP request and translate failures.

    Args:
        http_client: Shared AsyncClient owned by the provider client
        method: HTTP method
        url: Absolute or base-relative URL
        provider: Provider name for error context
        model: Model/endpoint name for error context
        **kwargs: Passed to httpx (json, params, headers, files, ...)

    Returns:
        Successful httpx.Response (2xx)

    Raises:
        AIClientTimeoutError: Request timed out
        AIClientConnectionError: Connection reset, refused or DNS failure
        AIClientResponseError: Non-2xx status (subclass chosen by status)
    """
    try:
        response = await http_client.request(method, url, **kwargs)
        response.raise_for_status()
        return response

    except httpx.TimeoutException as e:
        logger.warning(f"{provider} timeout: {method} {url}")
        raise AIClientTimeoutError(
            f"{provider} request timeout",
            provider=provider,
            model=model,
            original_error=e,
        ) from e

    except httpx.HTTPStatusError as e:
        body = e.response.text[:500]
        logger.warning(
            f"{provider} HTTP error: {e.response.status_code} - {body[:200]}"
        )
        raise error_from_status(
            e.response.status_code,
            f"{provider} API error: HTTP {e.response.status_code}",
            provider=provider,
            model=model,
            response_body=body,
            original_error=e,
        ) from e

    except httpx.TransportError as e:
        logger.warning(f"{provider} connection error: {type(e).__name__}: {e}")
        raise AIClientConnectionError(
            f"Cannot connect to {provider}: {e}",
            provider=provider,
            model=model,
            original_error=e,
        ) from e
