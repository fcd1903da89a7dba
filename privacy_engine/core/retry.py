"""Bounded retry and timeout for persistence calls.

Only PersistenceError is retried. Every other error kind (validation,
state machine, not-found, version conflict) propagates on the first
attempt. After the last attempt the PersistenceError is re-raised
unchanged.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from privacy_engine.config import Settings
from privacy_engine.core.errors import PersistenceError

log = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Retry configuration for persistence operations."""

    max_attempts: int = 3
    min_wait_seconds: float = 0.2
    max_wait_seconds: float = 2.0
    multiplier: float = 1.0
    timeout_seconds: float = 5.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryConfig:
        return cls(
            max_attempts=settings.persistence_max_attempts,
            min_wait_seconds=settings.persistence_retry_min_wait_seconds,
            max_wait_seconds=settings.persistence_retry_max_wait_seconds,
            timeout_seconds=settings.persistence_timeout_seconds,
        )


async def with_timeout(operation: str, call: Callable[[], Awaitable[T]], timeout: float) -> T:
    """Run ``call``; an expired timeout becomes PersistenceError."""
    try:
        return await asyncio.wait_for(call(), timeout=timeout)
    except TimeoutError:
        raise PersistenceError(
            operation, f"{operation} timed out after {timeout:.1f}s"
        ) from None


async def persist(
    operation: str,
    call: Callable[[], Awaitable[T]],
    config: RetryConfig,
) -> T:
    """Run a persistence call with timeout and bounded exponential backoff.

    ``call`` is invoked once per attempt, so it must build a fresh
    coroutine each time (pass a lambda or a bound method, not a coroutine).
    """

    def _log_retry(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        log.warning(
            "privacy.persistence.retry",
            operation=operation,
            attempt=state.attempt_number,
            max_attempts=config.max_attempts,
            error=str(exc),
        )

    retrying = AsyncRetrying(
        retry=retry_if_exception_type(PersistenceError),
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.multiplier,
            min=config.min_wait_seconds,
            max=config.max_wait_seconds,
        ),
        before_sleep=_log_retry,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            result = await with_timeout(operation, call, config.timeout_seconds)
    return result
