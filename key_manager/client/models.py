"""Data models for the provisioning API client.

This module defines the credential record returned by the remote service,
the retry configuration and per-call retry state, and the error taxonomy
every client operation maps its failures into.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class CredentialRecord(BaseModel):
    """A key as reported by the provisioning API."""

    model_config = ConfigDict(extra="ignore")

    hash: str = Field(..., description="Opaque unique key identifier")
    name: str = Field(..., description="Name given to the key at creation")
    label: Optional[str] = Field(None, description="Display label set by the remote")
    disabled: bool = Field(False, description="Whether the key is disabled")

    # Spending
    limit: Optional[float] = Field(None, description="Spending ceiling in USD")
    limit_remaining: Optional[float] = Field(
        None, description="Remaining spend before the limit is reached"
    )

    # Usage counters
    usage: float = Field(0.0, ge=0, description="Total usage in USD")
    usage_daily: float = Field(0.0, ge=0, description="Usage today")
    usage_weekly: float = Field(0.0, ge=0, description="Usage this week")
    usage_monthly: float = Field(0.0, ge=0, description="Usage this month")

    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")

    def __str__(self) -> str:
        """String representation of the key."""
        return f"{self.name} ({self.hash})"


class CreatedKey(BaseModel):
    """Result of issuing a new key. The secret is only ever returned once."""

    secret: str = Field(..., repr=False, description="Bearer secret of the new key")
    hash: str = Field(..., description="Identifier of the new key")


class RetryConfig(BaseModel):
    """Retry policy shared by every call made through one client."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(3, ge=0, description="Extra attempts beyond the first")
    initial_delay_seconds: float = Field(
        1.0, ge=0, description="Base delay and jitter ceiling"
    )
    max_delay_seconds: float = Field(
        30.0, ge=0, description="Cap on the exponential part of the delay"
    )
    min_rate_limit_wait_seconds: float = Field(
        1.0, ge=0, description="Floor when a rate-limit reset time already passed"
    )
    timeout_seconds: float = Field(30.0, gt=0, description="Per-request timeout")


class RetryState(BaseModel):
    """Transient state of one outbound call while it is being retried."""

    method: str
    path: str
    attempt: int = Field(0, description="Retries performed so far")
    last_status: Optional[int] = Field(None, description="Status of the last response")
    last_delay_seconds: Optional[float] = Field(None, description="Last backoff wait")
    retryable: bool = Field(False, description="Whether the last failure was retryable")

    def budget_left(self, config: RetryConfig) -> bool:
        """Check if another attempt is allowed."""
        return self.attempt < config.max_retries


class KeyManagerError(Exception):
    """Base exception for key management errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "KEY_MANAGER_ERROR",
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}


class AuthError(KeyManagerError):
    """Raised when the provisioning key is rejected (401)."""

    def __init__(self, message: str, status_code: int = 401):
        super().__init__(
            f"Unauthorized: Invalid API key - {message}", "AUTH_ERROR", status_code
        )


class NotFoundError(KeyManagerError):
    """Raised when a key does not exist (404 or no local match)."""

    def __init__(self, message: str, status_code: Optional[int] = 404):
        super().__init__(message, "NOT_FOUND", status_code)


class BadRequestError(KeyManagerError):
    """Raised when the remote rejects the request payload (400)."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(f"Bad request: {message}", "BAD_REQUEST", status_code)


class RateLimitError(KeyManagerError):
    """Raised when rate limiting persists through the whole retry budget."""

    def __init__(self, message: str, attempts: int, status_code: int = 429):
        super().__init__(
            f"Rate limit exceeded: {message}",
            "RATE_LIMITED",
            status_code,
            {"attempts": attempts},
        )


class ServerError(KeyManagerError):
    """Raised when 5xx responses persist through the whole retry budget."""

    def __init__(self, message: str, status_code: int, attempts: int):
        super().__init__(
            f"Server error: {message}",
            "SERVER_ERROR",
            status_code,
            {"attempts": attempts},
        )


class RequestTimeoutError(KeyManagerError):
    """Raised when every attempt of a request timed out."""

    def __init__(self, message: str, timeout_seconds: float, attempts: int):
        super().__init__(
            message,
            "REQUEST_TIMEOUT",
            None,
            {"timeout_seconds": timeout_seconds, "attempts": attempts},
        )


class UnknownError(KeyManagerError):
    """Raised for any failure outside the other categories."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, "UNKNOWN_ERROR", status_code)


class ConfigurationError(KeyManagerError):
    """Raised for invalid local configuration, before any network call."""

    def __init__(self, message: str):
        super().__init__(message, "CONFIGURATION_ERROR")
