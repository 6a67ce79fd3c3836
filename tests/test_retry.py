"""
Tests for the retry layer.

Covers:
- non-retryable client errors fail after one attempt
- 429 / 5xx / transport errors are retried up to max_attempts
- linear backoff delays
- cancellation is never retried
- structured log record on exhaustion
"""

import asyncio
import logging
from unittest.mock import AsyncMock, patch

import pytest

from noder.providers.errors import (
    AuthenticationError,
    NodeValidationError,
    PredictionFailedError,
    ProviderHTTPError,
    ProviderRequestError,
)
from noder.providers.retry import is_retryable, with_retry


class FlakyOperation:
    """Raises the given errors in order, then returns ``result``."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.fixture
def no_sleep():
    with patch("noder.providers.retry.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


class TestIsRetryable:
    @pytest.mark.parametrize("status_code", [400, 401, 403, 404, 409, 422])
    def test_client_errors_not_retryable(self, status_code):
        assert not is_retryable(ProviderHTTPError("nope", status_code=status_code))

    @pytest.mark.parametrize("status_code", [429, 500, 502, 503])
    def test_transient_statuses_retryable(self, status_code):
        assert is_retryable(ProviderHTTPError("busy", status_code=status_code))

    def test_engine_errors(self):
        assert is_retryable(ProviderRequestError("connection reset"))
        assert not is_retryable(NodeValidationError("No prompt provided"))
        assert not is_retryable(AuthenticationError("missing key"))
        assert not is_retryable(PredictionFailedError("Prediction failed"))

    def test_cancellation_not_retryable(self):
        assert not is_retryable(asyncio.CancelledError())

    def test_unknown_errors_retryable(self):
        assert is_retryable(RuntimeError("socket closed"))


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_success_first_try(self, no_sleep):
        op = FlakyOperation([])

        assert await with_retry(op, max_attempts=3, base_delay=1.0) == "ok"
        assert op.calls == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [400, 401, 403, 404])
    async def test_client_error_single_attempt(self, no_sleep, status_code):
        op = FlakyOperation([ProviderHTTPError("bad", status_code=status_code)])

        with pytest.raises(ProviderHTTPError) as exc_info:
            await with_retry(op, max_attempts=3, base_delay=1.0)

        assert exc_info.value.status_code == status_code
        assert op.calls == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limit_retried_until_exhausted(self, no_sleep):
        op = FlakyOperation([ProviderHTTPError("slow down", status_code=429)] * 3)

        with pytest.raises(ProviderHTTPError):
            await with_retry(op, max_attempts=3, base_delay=1.0)

        assert op.calls == 3

    @pytest.mark.asyncio
    async def test_server_error_then_success(self, no_sleep):
        op = FlakyOperation(
            [ProviderHTTPError("boom", status_code=500), ProviderRequestError("reset")]
        )

        assert await with_retry(op, max_attempts=3, base_delay=1.0) == "ok"
        assert op.calls == 3

    @pytest.mark.asyncio
    async def test_linear_backoff(self, no_sleep):
        op = FlakyOperation([ProviderHTTPError("boom", status_code=503)] * 2)

        await with_retry(op, max_attempts=3, base_delay=0.5)

        assert [call.args[0] for call in no_sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_cancellation_propagates_immediately(self, no_sleep):
        op = FlakyOperation([asyncio.CancelledError()])

        with pytest.raises(asyncio.CancelledError):
            await with_retry(op, max_attempts=3, base_delay=1.0)

        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_logs_structured_record_on_exhaustion(self, no_sleep, caplog):
        op = FlakyOperation([ProviderHTTPError("gone", status_code=404)])

        with caplog.at_level(logging.ERROR, logger="noder.providers.retry"):
            with pytest.raises(ProviderHTTPError):
                await with_retry(
                    op,
                    max_attempts=3,
                    operation_name="replicate.get_prediction",
                    metadata={"prediction_id": "p1"},
                )

        record = next(r for r in caplog.records if getattr(r, "event", None) == "retry_exhausted")
        assert record.operation == "replicate.get_prediction"
        assert record.attempts == 1
        assert record.status_code == 404
        assert record.metadata == {"prediction_id": "p1"}
