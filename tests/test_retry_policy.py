"""Tests for the retry delay and error mapping functions."""

import pytest

from conftest import error_response, fixed_jitter, json_response
from key_manager.client.models import (
    AuthError,
    BadRequestError,
    NotFoundError,
    RateLimitError,
    RetryConfig,
    ServerError,
    UnknownError,
)
from key_manager.client.retry_policy import (
    compute_retry_delay,
    exponential_delay,
    extract_error_message,
    is_retryable_status,
    map_error_response,
    rate_limit_delay,
)
from key_manager.client.transport import RawResponse


@pytest.fixture
def config() -> RetryConfig:
    return RetryConfig(max_retries=3, initial_delay_seconds=1.0, max_delay_seconds=30.0)


class TestRetryableStatus:
    """Test retryable status classification."""

    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    def test_retryable(self, status):
        assert is_retryable_status(status) is True

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 409, 422, 501])
    def test_terminal(self, status):
        assert is_retryable_status(status) is False


class TestExponentialDelay:
    """Test bounded exponential backoff with jitter."""

    def test_grows_exponentially_without_jitter(self, config):
        no_jitter = fixed_jitter(0.0)
        delays = [exponential_delay(k, config, no_jitter) for k in range(1, 5)]
        assert delays == [1.0, 2.0, 4.0, 8.0]

    def test_capped_at_max_delay(self, config):
        delay = exponential_delay(10, config, fixed_jitter(0.0))
        assert delay == 30.0

    def test_jitter_added_on_top_of_cap(self, config):
        delay = exponential_delay(10, config, fixed_jitter(0.75))
        assert delay == 30.75

    def test_jitter_range_is_zero_to_initial(self, config):
        calls = []

        def jitter(low, high):
            calls.append((low, high))
            return low

        exponential_delay(1, config, jitter)
        assert calls == [(0.0, 1.0)]

    def test_real_jitter_stays_in_bounds(self, config):
        for attempt in range(1, 6):
            base = min(2 ** (attempt - 1), 30.0)
            delay = exponential_delay(attempt, config)
            assert base <= delay <= base + 1.0

    def test_rejects_attempt_zero(self, config):
        with pytest.raises(ValueError):
            exponential_delay(0, config)


class TestRateLimitDelay:
    """Test rate-limit header handling."""

    def test_retry_after_seconds(self, config):
        assert rate_limit_delay({"retry-after": "2"}, config) == 2.0

    def test_retry_after_wins_over_reset(self, config):
        headers = {"retry-after": "3", "x-ratelimit-reset": "2000000000"}
        assert rate_limit_delay(headers, config, now=1_000_000_000) == 3.0

    def test_reset_in_future(self, config):
        delay = rate_limit_delay({"x-ratelimit-reset": "1010"}, config, now=1000.0)
        assert delay == 10.0

    def test_reset_already_elapsed_waits_at_least_one_second(self, config):
        delay = rate_limit_delay({"x-ratelimit-reset": "900"}, config, now=1000.0)
        assert delay == 1.0

    def test_no_headers(self, config):
        assert rate_limit_delay({}, config) is None

    def test_unparseable_headers(self, config):
        assert rate_limit_delay({"x-ratelimit-reset": "soon"}, config) is None


class TestComputeRetryDelay:
    """Test the combined delay decision."""

    def test_429_with_retry_after_ignores_formula(self, config):
        delay = compute_retry_delay(
            3, 429, {"retry-after": "2"}, config, jitter=fixed_jitter(0.9)
        )
        assert delay == 2.0

    def test_429_without_headers_uses_formula(self, config):
        delay = compute_retry_delay(2, 429, {}, config, jitter=fixed_jitter(0.5))
        assert delay == 2.5

    def test_5xx_ignores_retry_after(self, config):
        delay = compute_retry_delay(
            1, 503, {"retry-after": "20"}, config, jitter=fixed_jitter(0.0)
        )
        assert delay == 1.0

    @pytest.mark.parametrize("value", ["nan", "inf", "-inf", "Infinity"])
    def test_non_finite_retry_after_uses_formula(self, config, value):
        delay = compute_retry_delay(
            1, 429, {"retry-after": value}, config, now=0.0, jitter=fixed_jitter(0.5)
        )
        assert delay == 1.5

    @pytest.mark.parametrize("value", ["nan", "inf", "-inf"])
    def test_non_finite_reset_uses_formula(self, config, value):
        delay = compute_retry_delay(
            2, 429, {"x-ratelimit-reset": value}, config, now=0.0, jitter=fixed_jitter(0.0)
        )
        assert delay == 2.0

    def test_non_finite_retry_after_falls_back_to_reset(self, config):
        headers = {"retry-after": "inf", "x-ratelimit-reset": "1004"}
        assert rate_limit_delay(headers, config, now=1000.0) == 4.0

    def test_timeout_uses_formula(self, config):
        delay = compute_retry_delay(2, None, {}, config, jitter=fixed_jitter(0.0))
        assert delay == 2.0


class TestExtractErrorMessage:
    """Test error body parsing priority."""

    def test_nested_error_message(self):
        body = '{"error": {"message": "nested"}, "message": "flat"}'
        assert extract_error_message(body) == "nested"

    def test_top_level_message(self):
        assert extract_error_message('{"message": "flat"}') == "flat"

    def test_nested_error_without_message_falls_back_to_flat(self):
        body = '{"error": {"code": 7}, "message": "flat"}'
        assert extract_error_message(body) == "flat"

    def test_json_without_message_returns_raw(self):
        assert extract_error_message('{"detail": "x"}') == '{"detail": "x"}'

    def test_plain_text(self):
        assert extract_error_message("Bad Gateway") == "Bad Gateway"

    def test_json_array_returns_raw(self):
        assert extract_error_message("[1, 2]") == "[1, 2]"


class TestMapErrorResponse:
    """Test status to error taxonomy mapping."""

    def test_400(self):
        error = map_error_response(error_response(400, "invalid limit"))
        assert isinstance(error, BadRequestError)
        assert error.status_code == 400
        assert error.message == "Bad request: invalid limit"

    def test_401(self):
        error = map_error_response(error_response(401, "bad key"))
        assert isinstance(error, AuthError)
        assert error.status_code == 401
        assert "bad key" in error.message

    def test_404(self):
        error = map_error_response(error_response(404, "gone"))
        assert isinstance(error, NotFoundError)
        assert error.message == "Not found: gone"

    def test_429(self):
        error = map_error_response(error_response(429, "slow down"), attempts=4)
        assert isinstance(error, RateLimitError)
        assert error.details["attempts"] == 4

    @pytest.mark.parametrize("status", [500, 502, 503, 504])
    def test_5xx(self, status):
        error = map_error_response(error_response(status, "down"))
        assert isinstance(error, ServerError)
        assert error.status_code == status

    def test_other_status(self):
        response = RawResponse(status_code=418, text="teapot")
        error = map_error_response(response)
        assert isinstance(error, UnknownError)
        assert error.status_code == 418
        assert error.message == "API request failed (418): teapot"

    def test_flat_message_body(self):
        error = map_error_response(json_response(400, {"message": "flat"}))
        assert error.message == "Bad request: flat"
