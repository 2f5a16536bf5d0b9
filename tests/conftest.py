"""Pytest configuration and shared fixtures for key manager tests."""

import json
from typing import Any, Dict, List, Optional, Tuple

import pytest

from key_manager.client.credential_client import CredentialClient
from key_manager.client.models import RetryConfig
from key_manager.client.transport import RawResponse, TransportTimeout


def json_response(
    status_code: int, body: Any = None, headers: Optional[Dict[str, str]] = None
) -> RawResponse:
    """Build a RawResponse with a JSON body."""
    return RawResponse(
        status_code=status_code,
        headers={k.lower(): v for k, v in (headers or {}).items()},
        text="" if body is None else json.dumps(body),
    )


def error_response(
    status_code: int, message: str = "boom", headers: Optional[Dict[str, str]] = None
) -> RawResponse:
    return json_response(status_code, {"error": {"message": message}}, headers)


def key_payload(
    key_hash: str,
    name: str,
    disabled: bool = False,
    limit: Optional[float] = 10.0,
) -> Dict[str, Any]:
    """Key record in the shape the provisioning API returns."""
    return {
        "hash": key_hash,
        "name": name,
        "label": f"sk-or-v1-{key_hash[:3]}...",
        "disabled": disabled,
        "limit": limit,
        "limit_remaining": limit,
        "usage": 0.0,
        "usage_daily": 0.0,
        "usage_weekly": 0.0,
        "usage_monthly": 0.0,
        "created_at": "2025-01-15T10:00:00Z",
        "updated_at": None,
    }


class ScriptedTransport:
    """Returns pre-scripted responses in order and records every request."""

    def __init__(self, responses: List[Any]):
        self.responses = list(responses)
        self.requests: List[Tuple[str, str, Optional[Dict], Optional[Dict]]] = []
        self.closed = False

    async def send(self, method, path, *, params=None, json_body=None) -> RawResponse:
        self.requests.append((method, path, params, json_body))
        if not self.responses:
            raise AssertionError(f"Unexpected request {method} {path}")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def aclose(self) -> None:
        self.closed = True


class FakeKeyService:
    """In-memory provisioning API speaking the same wire format.

    ``fail(method, path, status)`` queues a one-shot failure for the next
    matching request, so retries and per-key failures can be injected.
    """

    def __init__(self, keys: Optional[List[Dict[str, Any]]] = None):
        self.keys: Dict[str, Dict[str, Any]] = {k["hash"]: dict(k) for k in keys or []}
        self.requests: List[Tuple[str, str, Optional[Dict], Optional[Dict]]] = []
        self.failures: List[Tuple[str, str, Any]] = []
        self.closed = False
        self._counter = 0

    def fail(self, method: str, path: str, status_or_exc: Any, times: int = 1) -> None:
        for _ in range(times):
            self.failures.append((method, path, status_or_exc))

    @property
    def request_count(self) -> int:
        return len(self.requests)

    async def send(self, method, path, *, params=None, json_body=None) -> RawResponse:
        self.requests.append((method, path, params, json_body))

        for index, (f_method, f_path, outcome) in enumerate(self.failures):
            if f_method == method and f_path == path:
                del self.failures[index]
                if isinstance(outcome, Exception):
                    raise outcome
                return error_response(outcome, f"injected {outcome}")

        if path == "keys" and method == "GET":
            include_disabled = (params or {}).get("include_disabled") == "true"
            data = [k for k in self.keys.values() if include_disabled or not k["disabled"]]
            return json_response(200, {"data": data})

        if path == "keys" and method == "POST":
            self._counter += 1
            key_hash = f"new{self._counter:03d}"
            record = {
                "hash": key_hash,
                "name": json_body["name"],
                "disabled": False,
                "limit": json_body.get("limit"),
            }
            self.keys[key_hash] = record
            return json_response(200, {"key": f"sk-secret-{key_hash}", "data": record})

        key_hash = path.split("/", 1)[1]
        if key_hash not in self.keys:
            return error_response(404, "Key not found")

        if method == "GET":
            return json_response(200, {"data": self.keys[key_hash]})
        if method == "PATCH":
            self.keys[key_hash].update(json_body)
            return json_response(200, {"data": self.keys[key_hash]})
        if method == "DELETE":
            del self.keys[key_hash]
            return json_response(200, {"deleted": True})

        return error_response(405, "Method not allowed")

    async def aclose(self) -> None:
        self.closed = True


class RecordingSleep:
    """Stands in for asyncio.sleep and remembers requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def fixed_jitter(value: float = 0.5):
    def jitter(low: float, high: float) -> float:
        return min(max(value, low), high)

    return jitter


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(max_retries=3, initial_delay_seconds=1.0, max_delay_seconds=30.0)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def sample_keys() -> List[Dict[str, Any]]:
    return [
        key_payload("aaa111", "alice@x.com CCP555 2025-01-15", limit=10.0),
        key_payload("bbb222", "bob@x.com CCP555 2025-01-15", limit=20.0),
        key_payload("ccc333", "carol@x.com OTHER 2025-02-01", disabled=True, limit=None),
    ]


@pytest.fixture
def key_service(sample_keys) -> FakeKeyService:
    return FakeKeyService(sample_keys)


@pytest.fixture
def make_client(retry_config, recording_sleep):
    """Build a CredentialClient over any fake transport with instant backoff."""

    def build(transport, now: float = 1_700_000_000.0, jitter_value: float = 0.5):
        return CredentialClient(
            transport,
            retry_config=retry_config,
            sleep=recording_sleep,
            clock=lambda: now,
            jitter=fixed_jitter(jitter_value),
        )

    return build


@pytest.fixture
def service_client(make_client, key_service) -> CredentialClient:
    return make_client(key_service)


@pytest.fixture
def timeout_error() -> TransportTimeout:
    return TransportTimeout("GET keys timed out after 30.0s")
