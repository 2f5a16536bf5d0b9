"""Retry and error-mapping policy for provisioning API calls.

Everything here is a pure function of its inputs so the backoff schedule and
the error taxonomy can be tested without a clock or a network.
"""

import json
import math
import random
import time
from typing import Callable, Mapping, Optional

from .models import (
    RETRYABLE_STATUS_CODES,
    AuthError,
    BadRequestError,
    KeyManagerError,
    NotFoundError,
    RateLimitError,
    RetryConfig,
    ServerError,
    UnknownError,
)
from .transport import RawResponse


def is_retryable_status(status_code: int) -> bool:
    """Check if a response status should be retried."""
    return status_code in RETRYABLE_STATUS_CODES


def exponential_delay(
    attempt: int,
    config: RetryConfig,
    jitter: Callable[[float, float], float] = random.uniform,
) -> float:
    """Bounded exponential backoff plus jitter for retry number ``attempt``.

    delay = min(initial * 2^(attempt-1), cap) + uniform(0, initial)
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")

    base = min(
        config.initial_delay_seconds * 2 ** (attempt - 1), config.max_delay_seconds
    )
    return base + jitter(0.0, config.initial_delay_seconds)


def _parse_seconds(value: Optional[str]) -> Optional[float]:
    """Parse a numeric header, None when missing, malformed or not finite."""
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if math.isfinite(seconds) else None


def rate_limit_delay(
    headers: Mapping[str, str],
    config: RetryConfig,
    now: Optional[float] = None,
) -> Optional[float]:
    """Wait derived from rate-limit headers, None when they give no answer.

    Retry-After (seconds) wins over X-RateLimit-Reset (epoch seconds). A reset
    time that already elapsed still waits the configured floor.
    """
    retry_after = _parse_seconds(headers.get("retry-after"))
    if retry_after is not None:
        return max(retry_after, 0.0)

    reset_at = _parse_seconds(headers.get("x-ratelimit-reset"))
    if reset_at is not None:
        current = time.time() if now is None else now
        return max(reset_at - current, config.min_rate_limit_wait_seconds)

    return None


def compute_retry_delay(
    attempt: int,
    status_code: Optional[int],
    headers: Mapping[str, str],
    config: RetryConfig,
    now: Optional[float] = None,
    jitter: Callable[[float, float], float] = random.uniform,
) -> float:
    """Delay before retry number ``attempt``.

    Args:
        attempt: 1 for the first retry, 2 for the second, ...
        status_code: Status of the failed response, None for a timeout
        headers: Lower-cased response headers
        config: Retry configuration
        now: Current epoch seconds (defaults to time.time())
        jitter: Random source returning a float in [a, b]

    Returns:
        Seconds to wait
    """
    if status_code == 429:
        header_delay = rate_limit_delay(headers, config, now=now)
        if header_delay is not None:
            return header_delay

    return exponential_delay(attempt, config, jitter)


def extract_error_message(body: str) -> str:
    """Pull a human message out of an error body.

    Tries ``error.message``, then a top-level ``message``, then the raw text.
    """
    try:
        payload = json.loads(body)
    except (TypeError, ValueError):
        return body

    if isinstance(payload, dict):
        nested = payload.get("error")
        if isinstance(nested, dict):
            message = nested.get("message")
            if isinstance(message, str) and message:
                return message

        message = payload.get("message")
        if isinstance(message, str) and message:
            return message

    return body


def map_error_response(response: RawResponse, attempts: int = 1) -> KeyManagerError:
    """Translate a non-2xx response into the error taxonomy."""
    message = extract_error_message(response.text)
    status = response.status_code

    if status == 400:
        return BadRequestError(message)
    if status == 401:
        return AuthError(message)
    if status == 404:
        return NotFoundError(f"Not found: {message}")
    if status == 429:
        return RateLimitError(message, attempts=attempts)
    if 500 <= status < 600:
        return ServerError(message, status_code=status, attempts=attempts)

    return UnknownError(f"API request failed ({status}): {message}", status_code=status)
