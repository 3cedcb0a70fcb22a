"""
Tests for error classification, retry and concurrency control
"""
import asyncio
import time
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from pulse_agent.integrations.error_handler import (
    IntegrationError,
    IntegrationErrorHandler,
    IntegrationErrorType,
    classify_error,
    extract_retry_after,
)
from pulse_agent.integrations.linear import LinearService
from pulse_agent.integrations.linear.client import LinearAPIException


class HTTPError(Exception):
    def __init__(self, message, status_code=None, headers=None):
        super().__init__(message)
        self.status_code = status_code
        self.headers = headers or {}


@pytest.fixture
def handler(progress_config):
    return IntegrationErrorHandler(progress_config)


@pytest.fixture
def no_sleep():
    with patch("pulse_agent.integrations.error_handler.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


class TestClassification:
    """Mapping failures onto the error taxonomy"""

    def test_rate_limit(self):
        error = classify_error(HTTPError("slow down", status_code=429), "get_issue")
        assert error.error_type == IntegrationErrorType.RATE_LIMIT
        assert error.retry_after == 60000

    def test_retry_after_header(self):
        assert extract_retry_after(HTTPError("x", 429, {"Retry-After": "7"})) == 7000

    def test_network_and_timeout(self):
        assert classify_error(ConnectionError("refused"), "c").error_type == IntegrationErrorType.NETWORK
        assert classify_error(asyncio.TimeoutError(), "c").error_type == IntegrationErrorType.TIMEOUT

    def test_status_codes(self):
        assert classify_error(HTTPError("no", 403), "c").error_type == IntegrationErrorType.UNAUTHORIZED
        assert classify_error(HTTPError("bad", 422), "c").error_type == IntegrationErrorType.INVALID_REQUEST
        assert classify_error(HTTPError("oops", 502), "c").error_type == IntegrationErrorType.SERVER_ERROR

    def test_unknown_keeps_original(self):
        original = ValueError("weird")
        error = classify_error(original, "c")
        assert error.error_type == IntegrationErrorType.UNKNOWN
        assert error.original_error is original

    def test_classified_error_passes_through(self):
        error = IntegrationError("x", IntegrationErrorType.NETWORK, "c")
        assert classify_error(error, "other") is error


class TestRetry:
    """execute_with_retry policy"""

    @pytest.mark.asyncio
    async def test_rate_limit_uses_server_delay(self, handler, no_sleep):
        operation = AsyncMock(side_effect=LinearAPIException("limited", status_code=429, retry_after=2))

        result = await handler.execute_with_retry(operation, "get_issues", max_attempts=3)

        assert not result.success
        assert result.attempts == 3
        assert result.total_delay == 4000
        assert operation.await_count == 3
        assert [c.args[0] for c in no_sleep.await_args_list] == [2.0, 2.0]
        assert "after 3 attempts" in result.error.message

    @pytest.mark.asyncio
    async def test_non_retryable_stops_immediately(self, handler, no_sleep):
        operation = AsyncMock(side_effect=HTTPError("denied", 401))

        result = await handler.execute_with_retry(operation, "get_issue")

        assert not result.success
        assert result.attempts == 1
        assert result.error.error_type == IntegrationErrorType.UNAUTHORIZED
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, handler, no_sleep):
        operation = AsyncMock(side_effect=[ConnectionError("reset"), {"id": "issue-1"}])
        retries = []

        result = await handler.execute_with_retry(operation, "get_issue", on_retry=lambda a, d: retries.append(a))

        assert result.success
        assert result.result == {"id": "issue-1"}
        assert result.attempts == 2
        assert 1000 <= result.total_delay <= 1100
        assert retries == [1]

    def test_delay_is_capped(self, handler):
        error = IntegrationError("x", IntegrationErrorType.RATE_LIMIT, "c", retry_after=600000)
        assert handler.calculate_delay(error, SimpleNamespace(attempt_number=1), 1000, 300000) == 300000

        network = IntegrationError("x", IntegrationErrorType.NETWORK, "c")
        assert 4000 <= handler.calculate_delay(network, SimpleNamespace(attempt_number=3), 1000, 300000) <= 4400
        assert handler.calculate_delay(network, SimpleNamespace(attempt_number=20), 1000, 300000) == 300000

    @pytest.mark.asyncio
    async def test_explicit_zero_delay_is_respected(self, handler, no_sleep):
        operation = AsyncMock(side_effect=[ConnectionError("reset"), ConnectionError("reset"), "ok"])

        result = await handler.execute_with_retry(operation, "get_issue", max_attempts=3, initial_delay=0)

        assert result.success
        assert result.attempts == 3
        assert result.total_delay == 0
        assert [c.args[0] for c in no_sleep.await_args_list] == [0, 0]

    @pytest.mark.asyncio
    async def test_retry_count_follows_live_config(self, handler, progress_config, no_sleep):
        progress_config.update({"integration": {"linear_api_retry_attempts": 2}})
        operation = AsyncMock(side_effect=ConnectionError("reset"))

        result = await handler.execute_with_retry(operation, "get_issue")

        assert result.attempts == 2
        assert operation.await_count == 2

    def test_rate_limit_bookkeeping(self, handler):
        info = handler.update_rate_limit_info("get_issues", {"X-RateLimit-Remaining": "5", "X-RateLimit-Limit": "100"})
        assert info.remaining == 5
        assert handler.get_rate_limit_status("get_issues") is info

        handler.clear_rate_limit_info("get_issues")
        assert handler.get_rate_limit_status("get_issues") is None

    def test_linear_header_names_and_ms_reset(self, handler):
        info = handler.update_rate_limit_info("get_issue", {
            "X-RateLimit-Requests-Remaining": "1",
            "X-RateLimit-Requests-Limit": "1500",
            "X-RateLimit-Requests-Reset": "1792324800000",
        })
        assert (info.remaining, info.limit) == (1, 1500)
        assert info.reset.timestamp() == 1792324800

    @pytest.mark.asyncio
    async def test_failed_call_headers_gate_next_attempt(self, handler, no_sleep):
        reset = int(time.time()) + 30
        client = SimpleNamespace(is_available=True, get_issue=AsyncMock(side_effect=[
            LinearAPIException(
                "limited",
                status_code=429,
                retry_after=1,
                headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Limit": "1500", "X-RateLimit-Reset": str(reset)},
            ),
            {"id": "issue-1"},
        ]))
        service = LinearService(client, handler)

        assert await service.get_issue("issue-1") == {"id": "issue-1"}

        info = handler.get_rate_limit_status("get_issue")
        assert info is not None
        assert (info.remaining, info.limit) == (0, 1500)
        waits = [c.args[0] for c in no_sleep.await_args_list]
        assert waits[0] == 1.0
        assert len(waits) == 2 and 0 < waits[1] <= 30


class TestConcurrencyControl:
    """Per-key serialization strategies"""

    @pytest.mark.asyncio
    async def test_conflict_rejects_second_operation(self, handler, progress_config):
        progress_config.update({"integration": {"concurrent_update_strategy": "conflict"}})
        release = asyncio.Event()

        async def slow():
            await release.wait()
            return "first"

        first = asyncio.create_task(handler.execute_with_concurrency_control("issue:1", slow, "update"))
        await asyncio.sleep(0)

        with pytest.raises(IntegrationError) as exc_info:
            await handler.execute_with_concurrency_control("issue:1", AsyncMock(), "update")
        assert exc_info.value.message == "Concurrent operation detected"

        release.set()
        assert await first == "first"

    @pytest.mark.asyncio
    async def test_merge_waits_for_in_flight(self, handler):
        release = asyncio.Event()
        order = []

        async def slow():
            await release.wait()
            order.append("first")

        async def fast():
            order.append("second")

        first = asyncio.create_task(handler.execute_with_concurrency_control("issue:1", slow, "update"))
        await asyncio.sleep(0)
        second = asyncio.create_task(handler.execute_with_concurrency_control("issue:1", fast, "update"))
        await asyncio.sleep(0)
        assert order == []

        release.set()
        await asyncio.gather(first, second)
        assert order == ["first", "second"]

    @pytest.mark.asyncio
    async def test_latest_supersedes_in_flight(self, handler, progress_config):
        progress_config.update({"integration": {"concurrent_update_strategy": "latest"}})
        release_first = asyncio.Event()
        release_second = asyncio.Event()

        async def first_update():
            await release_first.wait()
            return "first"

        async def second_update():
            await release_second.wait()
            return "second"

        first = asyncio.create_task(handler.execute_with_concurrency_control("issue:1", first_update, "update"))
        await asyncio.sleep(0)
        first_task = handler._in_flight["issue:1"]

        second = asyncio.create_task(handler.execute_with_concurrency_control("issue:1", second_update, "update"))
        await asyncio.sleep(0)
        second_task = handler._in_flight["issue:1"]
        assert second_task is not first_task
        assert not first.done()

        release_first.set()
        assert await first == "first"
        assert handler._in_flight["issue:1"] is second_task

        release_second.set()
        assert await second == "second"
        assert "issue:1" not in handler._in_flight
