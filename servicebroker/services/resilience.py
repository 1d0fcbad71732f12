from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from servicebroker.core.config import get_settings


logger = logging.getLogger(__name__)


TransientException = (TimeoutError, OSError)


def _status_of(exc: Exception) -> int | None:
    # Backend clients expose the HTTP status as either status_code or code.
    for attr in ("status_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_transient(exc: Exception) -> bool:
    """Return True when the backend asked the caller to try again later."""
    return _status_of(exc) == 503


def is_conflict(exc: Exception) -> bool:
    return _status_of(exc) == 409


def _default_retryable(exc: Exception) -> bool:
    # Retry only transient network/timeout failures by default.
    if isinstance(exc, TransientException):
        return True
    status = _status_of(exc)
    if isinstance(status, int) and status >= 500:
        return True
    return False


@dataclass(frozen=True)
class RetryPolicy:
    timeout_ms: int
    max_attempts: int
    backoff_ms: int


def default_retry_policy() -> RetryPolicy:
    settings = get_settings()
    return RetryPolicy(
        timeout_ms=settings.provider_call_timeout_ms,
        max_attempts=settings.iam_conflict_max_attempts,
        backoff_ms=settings.iam_conflict_backoff_ms,
    )


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    policy: RetryPolicy | None = None,
    retryable: Callable[[Exception], bool] | None = None,
) -> Any:
    # Retry helper with jittered backoff; non-retryable failures propagate on the first attempt.
    policy = policy or default_retry_policy()
    retryable = retryable or _default_retryable
    attempt = 1
    while True:
        try:
            return await asyncio.wait_for(func(), timeout=policy.timeout_ms / 1000.0)
        except Exception as exc:  # noqa: BLE001 - caller handles non-retryable failures
            if attempt >= max(policy.max_attempts, 1) or not retryable(exc):
                raise
            logger.warning(
                "retry_scheduled attempt=%s max_attempts=%s error=%s",
                attempt,
                policy.max_attempts,
                type(exc).__name__,
            )
            jitter = random.uniform(0.5, 1.5)
            sleep_s = (policy.backoff_ms / 1000.0) * (2 ** (attempt - 1)) * jitter
            await asyncio.sleep(sleep_s)
            attempt += 1
