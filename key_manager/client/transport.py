"""HTTP transport for the provisioning API.

The transport only sends a request and hands back the raw response. It knows
nothing about retries or error classification, which live in the client on top
of it, so the client can be exercised against an in-memory transport.
"""

import json
from typing import Any, Dict, Optional, Protocol

import httpx
import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


class RawResponse(BaseModel):
    """Status, headers and body text of one HTTP exchange."""

    status_code: int = Field(..., description="HTTP status code")
    headers: Dict[str, str] = Field(
        default_factory=dict, description="Response headers, lower-cased names"
    )
    text: str = Field(default="", description="Raw response body")

    @property
    def is_success(self) -> bool:
        """Check if the status is 2xx."""
        return 200 <= self.status_code < 300

    def header(self, name: str) -> Optional[str]:
        """Look up a header case-insensitively."""
        return self.headers.get(name.lower())

    def json_body(self) -> Any:
        """Decode the body as JSON, None for an empty body."""
        if not self.text.strip():
            return None
        return json.loads(self.text)


class TransportTimeout(Exception):
    """Raised by a transport when a request exceeds its timeout."""


class TransportFailure(Exception):
    """Raised by a transport when no response could be obtained."""


class Transport(Protocol):
    """Anything able to send one request to the provisioning API."""

    async def send(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> RawResponse: ...

    async def aclose(self) -> None: ...


class HttpxTransport:
    """Transport backed by httpx.AsyncClient with bearer authentication."""

    def __init__(
        self,
        provisioning_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the transport.

        Args:
            provisioning_key: Bearer token sent on every request
            base_url: Provisioning API root
            timeout_seconds: Per-request timeout
            client: Preconfigured httpx client (tests pass a MockTransport one)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._headers = {
            "Authorization": f"Bearer {provisioning_key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self.logger = structlog.get_logger(self.__class__.__name__)

    async def send(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> RawResponse:
        url = f"{self.base_url}/{path.lstrip('/')}"
        self.logger.debug("Sending request", method=method, path=path)

        try:
            response = await self._client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._headers,
                timeout=self.timeout_seconds,
            )
        except httpx.TimeoutException as e:
            raise TransportTimeout(
                f"{method} {path} timed out after {self.timeout_seconds}s"
            ) from e
        except httpx.HTTPError as e:
            raise TransportFailure(f"{method} {path} failed: {e}") from e

        return RawResponse(
            status_code=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            text=response.text,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
