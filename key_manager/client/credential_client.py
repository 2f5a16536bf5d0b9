"""Provisioning API client for key lifecycle operations.

This module wraps the provisioning API with retry/backoff, rate-limit
recovery and error classification. Every outbound call goes through
``_request``, so the retry policy is uniform across operations.
"""

import asyncio
import random
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from pydantic import ValidationError

from .models import (
    CreatedKey,
    CredentialRecord,
    NotFoundError,
    RequestTimeoutError,
    RetryConfig,
    RetryState,
    UnknownError,
)
from .retry_policy import compute_retry_delay, is_retryable_status, map_error_response
from .transport import (
    DEFAULT_BASE_URL,
    HttpxTransport,
    Transport,
    TransportFailure,
    TransportTimeout,
)

logger = structlog.get_logger(__name__)


class CredentialClient:
    """Async client for the provisioning keys endpoint."""

    def __init__(
        self,
        transport: Transport,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        jitter: Callable[[float, float], float] = random.uniform,
    ):
        """Initialize the client.

        Args:
            transport: Layer that actually sends requests
            retry_config: Retry budget, backoff and timeout settings
            sleep: Awaitable used for backoff waits
            clock: Epoch-seconds source for rate-limit reset headers
            jitter: Random source for backoff jitter
        """
        self.transport = transport
        self.retry_config = retry_config or RetryConfig()
        self._sleep = sleep
        self._clock = clock
        self._jitter = jitter

        self.logger = structlog.get_logger(self.__class__.__name__)

    @classmethod
    def from_provisioning_key(
        cls,
        provisioning_key: str,
        base_url: str = DEFAULT_BASE_URL,
        retry_config: Optional[RetryConfig] = None,
    ) -> "CredentialClient":
        """Build a client over the default httpx transport."""
        config = retry_config or RetryConfig()
        transport = HttpxTransport(
            provisioning_key,
            base_url=base_url,
            timeout_seconds=config.timeout_seconds,
        )
        return cls(transport, retry_config=config)

    async def close(self) -> None:
        """Release the underlying connection pool."""
        await self.transport.aclose()

    async def __aenter__(self) -> "CredentialClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Send a request, retrying transient failures.

        Returns:
            Decoded JSON body, None for an empty body

        Raises:
            KeyManagerError: Terminal failure or exhausted retry budget
        """
        state = RetryState(method=method, path=path)
        config = self.retry_config

        while True:
            try:
                response = await self.transport.send(
                    method, path, params=params, json_body=json_body
                )
            except TransportTimeout as e:
                state.last_status = None
                state.retryable = True
                if not state.budget_left(config):
                    self.logger.error(
                        "Request timed out, retries exhausted",
                        method=method,
                        path=path,
                        attempts=state.attempt + 1,
                    )
                    raise RequestTimeoutError(
                        "Request timeout",
                        timeout_seconds=config.timeout_seconds,
                        attempts=state.attempt + 1,
                    ) from e
                await self._backoff(state, {})
                continue
            except TransportFailure as e:
                self.logger.error(
                    "Request failed without response",
                    method=method,
                    path=path,
                    error=str(e),
                )
                raise UnknownError(f"Unexpected error: {e}") from e

            state.last_status = response.status_code

            if response.is_success:
                try:
                    return response.json_body()
                except ValueError as e:
                    raise UnknownError(
                        f"Invalid JSON in response to {method} {path}",
                        status_code=response.status_code,
                    ) from e

            state.retryable = is_retryable_status(response.status_code)
            if state.retryable and state.budget_left(config):
                await self._backoff(state, response.headers)
                continue

            error = map_error_response(response, attempts=state.attempt + 1)
            self.logger.warning(
                "Request failed",
                method=method,
                path=path,
                status=response.status_code,
                error_code=error.error_code,
                attempts=state.attempt + 1,
            )
            raise error

    async def _backoff(self, state: RetryState, headers: Dict[str, str]) -> None:
        """Advance the retry state and wait before the next attempt."""
        state.attempt += 1
        delay = compute_retry_delay(
            state.attempt,
            state.last_status,
            headers,
            self.retry_config,
            now=self._clock(),
            jitter=self._jitter,
        )
        state.last_delay_seconds = delay

        self.logger.warning(
            "Retrying request",
            method=state.method,
            path=state.path,
            status=state.last_status,
            attempt=state.attempt,
            max_retries=self.retry_config.max_retries,
            delay_seconds=round(delay, 3),
        )
        await self._sleep(delay)

    async def create(self, name: str, limit: Optional[float] = None) -> CreatedKey:
        """Issue a new key.

        Args:
            name: Name for the new key
            limit: Spending limit in USD, None for no limit

        Returns:
            CreatedKey holding the secret and hash
        """
        body: Dict[str, Any] = {"name": name}
        if limit is not None:
            body["limit"] = limit

        payload = await self._request("POST", "keys", json_body=body)
        try:
            created = CreatedKey(secret=payload["key"], hash=payload["data"]["hash"])
        except (KeyError, TypeError) as e:
            raise UnknownError(f"Unexpected create response: missing {e}") from e

        self.logger.info("Key created", name=name, hash=created.hash, limit=limit)
        return created

    async def list(self, include_disabled: bool = False) -> List[CredentialRecord]:
        """Fetch every key in a single response.

        Args:
            include_disabled: Whether disabled keys are included

        Returns:
            Keys in the order the remote returned them
        """
        payload = await self._request(
            "GET",
            "keys",
            params={"include_disabled": "true" if include_disabled else "false"},
        )
        if payload is None:
            payload = {}
        items = payload.get("data", []) if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise UnknownError('Unexpected list response: "data" is not an array')
        try:
            records = [CredentialRecord.model_validate(item) for item in items]
        except ValidationError as e:
            raise UnknownError(f"Unexpected key record in list response: {e}") from e

        self.logger.debug(
            "Listed keys", count=len(records), include_disabled=include_disabled
        )
        return records

    async def get(self, key_hash: str) -> CredentialRecord:
        """Fetch one key by hash."""
        payload = await self._request("GET", f"keys/{key_hash}")
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
            raise UnknownError(f"Unexpected response for key {key_hash}")
        try:
            return CredentialRecord.model_validate(payload["data"])
        except ValidationError as e:
            raise UnknownError(f"Unexpected key record for {key_hash}: {e}") from e

    async def set_limit(self, key_hash: str, limit: Optional[float]) -> None:
        """Change the spending limit of a key."""
        await self._request("PATCH", f"keys/{key_hash}", json_body={"limit": limit})
        self.logger.info("Key limit updated", hash=key_hash, limit=limit)

    async def set_disabled(self, key_hash: str, disabled: bool) -> None:
        """Disable or re-enable a key. Repeating the same value is not an error."""
        await self._request(
            "PATCH", f"keys/{key_hash}", json_body={"disabled": disabled}
        )
        self.logger.info("Key disabled flag updated", hash=key_hash, disabled=disabled)

    async def enable(self, key_hash: str) -> None:
        await self.set_disabled(key_hash, False)

    async def disable(self, key_hash: str) -> None:
        await self.set_disabled(key_hash, True)

    async def delete(self, key_hash: str) -> None:
        """Delete a key by hash. Deleting twice fails with NotFoundError."""
        await self._request("DELETE", f"keys/{key_hash}")
        self.logger.info("Key deleted", hash=key_hash)

    async def delete_by_name(self, name: str) -> str:
        """Delete the key whose name matches exactly.

        Returns:
            Hash of the deleted key

        Raises:
            NotFoundError: If no key has this exact name
        """
        records = await self.list(include_disabled=True)
        target = next((r for r in records if r.name == name), None)
        if target is None:
            raise NotFoundError(f"Key not found: {name}", status_code=None)

        await self.delete(target.hash)
        return target.hash
