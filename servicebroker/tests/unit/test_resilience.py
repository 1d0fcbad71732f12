from __future__ import annotations

import pytest

from servicebroker.core.errors import ProviderError, ServiceUnavailableError
from servicebroker.services.accounts.local import BackendConflictError
from servicebroker.services.resilience import RetryPolicy, is_conflict, is_transient, retry_async


class _Coded(Exception):
    def __init__(self, code) -> None:
        super().__init__("coded")
        self.code = code


@pytest.mark.asyncio
async def test_retry_async_retries_transient() -> None:
    calls = {"count": 0}

    async def flaky() -> str:
        calls["count"] += 1
        if calls["count"] < 2:
            raise TimeoutError("timeout")
        return "ok"

    result = await retry_async(
        flaky,
        policy=RetryPolicy(timeout_ms=100, max_attempts=2, backoff_ms=1),
    )
    assert result == "ok"
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_retry_async_does_not_retry_other_failures() -> None:
    calls = {"count": 0}

    async def broken() -> None:
        calls["count"] += 1
        raise ProviderError("bad input")

    with pytest.raises(ProviderError):
        await retry_async(broken, policy=RetryPolicy(timeout_ms=100, max_attempts=3, backoff_ms=1))
    assert calls["count"] == 1


def test_status_classification() -> None:
    assert is_transient(ServiceUnavailableError("busy")) is True
    assert is_transient(_Coded(503)) is True
    assert is_transient(_Coded("503")) is False
    assert is_transient(ProviderError("plain")) is False
    assert is_conflict(BackendConflictError("stale")) is True
    assert is_conflict(_Coded(409)) is True
