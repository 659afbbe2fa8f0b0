"""Tests for email_tracker.retry."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from email_tracker.config import RetryConfig
from email_tracker.exceptions import PersistenceError
from email_tracker.retry import with_retry


@pytest.fixture
def fast_config() -> RetryConfig:
    return RetryConfig(max_attempts=3, initial_wait_seconds=0.01, max_wait_seconds=0.1)


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_succeeds_first_try(self, fast_config: RetryConfig):
        call_count = 0

        @with_retry(fast_config)
        async def fn():
            nonlocal call_count
            call_count += 1
            return "ok"

        assert await fn() == "ok"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, fast_config: RetryConfig):
        call_count = 0

        @with_retry(fast_config, retryable_exceptions=(PersistenceError,))
        async def fn():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise PersistenceError("database is locked")
            return "recovered"

        assert await fn() == "recovered"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_exhausts_retries_and_reraises(self, fast_config: RetryConfig):
        call_count = 0

        @with_retry(fast_config)
        async def fn():
            nonlocal call_count
            call_count += 1
            raise PersistenceError("permanent")

        with pytest.raises(PersistenceError, match="permanent"):
            await fn()
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_fails_immediately(self, fast_config: RetryConfig):
        call_count = 0

        @with_retry(fast_config, retryable_exceptions=(PersistenceError,))
        async def fn():
            nonlocal call_count
            call_count += 1
            raise TypeError("not retryable")

        with pytest.raises(TypeError):
            await fn()
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_single_attempt(self):
        config = RetryConfig(max_attempts=1, initial_wait_seconds=0.01, max_wait_seconds=0.1)
        call_count = 0

        @with_retry(config)
        async def fn():
            nonlocal call_count
            call_count += 1
            raise RuntimeError("fail")

        with pytest.raises(RuntimeError):
            await fn()
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_logs_operation_and_backoff(self, fast_config: RetryConfig):
        call_count = 0

        @with_retry(fast_config, operation="store_insert", retryable_exceptions=(PersistenceError,))
        async def fn():
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise PersistenceError("database is locked")
            return "ok"

        with patch("email_tracker.retry.logger") as log:
            assert await fn() == "ok"

        log.warning.assert_called_once()
        args, kwargs = log.warning.call_args
        assert args == ("retry_scheduled",)
        assert kwargs["operation"] == "store_insert"
        assert kwargs["attempt"] == 1
        assert kwargs["error_type"] == "PersistenceError"
        assert kwargs["error"] == "database is locked"
        assert 0 < kwargs["wait"] <= fast_config.max_wait_seconds
