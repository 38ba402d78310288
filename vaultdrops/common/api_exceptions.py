"""Shared API error classification helpers.

Classifies httpx failures from the remote submission service into
semantic exception categories.
"""

from typing import NoReturn

import httpx


def raise_for_httpx_status_error(
    exc: httpx.HTTPStatusError,
    error_map: dict[str, type[Exception]],
    base_error: type[Exception],
    context: str = "",
) -> NoReturn:
    """Classify an httpx HTTPStatusError and raise the appropriate exception.

    Args:
        exc: The httpx HTTPStatusError to classify
        error_map: Mapping of category names to exception types.
            Supported keys: "rate_limit", "transient", "auth", "not_found", "conflict"
        base_error: Fallback exception type for unclassified errors
        context: Optional resource name for richer error messages
    """
    status_code = exc.response.status_code
    error_text = exc.response.text.lower() if exc.response.text else ""
    where = f" ({context})" if context else ""

    if status_code == 429 and "rate_limit" in error_map:
        raise error_map["rate_limit"](f"Rate limit exceeded{where}: {exc}") from exc

    if status_code in (500, 502, 503, 504) and "transient" in error_map:
        raise error_map["transient"](f"Transient error ({status_code}){where}: {exc}") from exc

    if "auth" in error_map and (
        status_code in (401, 403) or "jwt" in error_text or "invalid api key" in error_text
    ):
        raise error_map["auth"](f"Authentication failed{where}: {exc}") from exc

    if status_code == 404 and "not_found" in error_map:
        raise error_map["not_found"](f"Not found{where}: {exc}") from exc

    if status_code == 409 and "conflict" in error_map:
        raise error_map["conflict"](f"Conflict{where}: {exc}") from exc

    raise base_error(f"API error{where}: {exc}") from exc


def raise_for_transport_error(
    exc: httpx.RequestError,
    unavailable_error: type[Exception],
    context: str = "",
) -> NoReturn:
    """Raise unavailable_error for connection failures and timeouts."""
    where = f" ({context})" if context else ""
    raise unavailable_error(f"Remote unreachable{where}: {type(exc).__name__}: {exc}") from exc
