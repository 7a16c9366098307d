"""Tests for the retry coordinator."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from loopmix.errors import AudioError, AudioErrorKind
from loopmix.retry import is_retryable, retry_delay_ms, with_retry


def _flaky(failures, error_factory, result="ok"):
    calls = []

    async def operation():
        calls.append(len(calls) + 1)
        if len(calls) <= failures:
            raise error_factory()
        return result

    return operation, calls


class TestRetryDelay:
    def test_backoff(self):
        assert retry_delay_ms(1, 1000, True) == 1000
        assert retry_delay_ms(2, 1000, True) == 2000
        assert retry_delay_ms(3, 1000, True) == 4000

    def test_flat(self):
        assert retry_delay_ms(1, 500, False) == 500
        assert retry_delay_ms(3, 500, False) == 500


class TestIsRetryable:
    def test_audio_error_uses_recoverable(self):
        assert is_retryable(AudioError(AudioErrorKind.MIXING_FAILED, "x"))
        assert not is_retryable(AudioError(AudioErrorKind.INVALID_FORMAT, "x"))

    def test_other_errors_are_retryable(self):
        assert is_retryable(RuntimeError("x"))


class TestWithRetry:
    def test_success_first_try(self):
        operation, calls = _flaky(0, RuntimeError)
        with patch("loopmix.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert asyncio.run(with_retry(operation)) == "ok"
        assert calls == [1]
        sleep.assert_not_awaited()

    def test_fails_twice_then_succeeds(self):
        operation, calls = _flaky(
            2, lambda: AudioError(AudioErrorKind.RECORDING_FAILED, "busy")
        )
        retries = []
        with patch("loopmix.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = asyncio.run(with_retry(
                operation,
                max_attempts=3,
                on_retry=lambda attempt, error: retries.append((attempt, error)),
            ))
        assert result == "ok"
        assert calls == [1, 2, 3]
        assert [attempt for attempt, _ in retries] == [1, 2]
        assert all(isinstance(error, AudioError) for _, error in retries)
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    def test_flat_delay_without_backoff(self):
        operation, _ = _flaky(2, RuntimeError)
        with patch("loopmix.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            asyncio.run(with_retry(operation, delay_ms=250, backoff=False))
        assert [c.args[0] for c in sleep.await_args_list] == [0.25, 0.25]

    def test_non_recoverable_fails_immediately(self):
        operation, calls = _flaky(
            5, lambda: AudioError(AudioErrorKind.PERMISSION_DENIED, "denied")
        )
        retries = []
        with patch("loopmix.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(AudioError) as exc_info:
                asyncio.run(with_retry(operation, on_retry=lambda *a: retries.append(a)))
        assert exc_info.value.kind is AudioErrorKind.PERMISSION_DENIED
        assert calls == [1]
        assert retries == []
        sleep.assert_not_awaited()

    def test_exhausted_attempts_raise_last_error(self):
        errors = []

        async def operation():
            errors.append(AudioError(AudioErrorKind.MIXING_FAILED, f"fail {len(errors)}"))
            raise errors[-1]

        retries = []
        with patch("loopmix.retry.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(AudioError) as exc_info:
                asyncio.run(with_retry(
                    operation, max_attempts=3, on_retry=lambda *a: retries.append(a)
                ))
        assert exc_info.value is errors[-1]
        assert len(errors) == 3
        assert len(retries) == 2

    def test_single_attempt_never_sleeps(self):
        operation, calls = _flaky(1, RuntimeError)
        with patch("loopmix.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(RuntimeError):
                asyncio.run(with_retry(operation, max_attempts=1))
        assert calls == [1]
        sleep.assert_not_awaited()

    def test_invalid_max_attempts(self):
        operation, _ = _flaky(0, RuntimeError)
        with pytest.raises(ValueError, match="max_attempts"):
            asyncio.run(with_retry(operation, max_attempts=0))
