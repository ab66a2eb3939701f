# src/chunkchain/transfer/retry.py
"""Bounded, deterministic retry for Result-returning transport calls."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Callable, Coroutine, ParamSpec, TypeVar

from ..result import Failure, Result, Success
from .transport_errors import (
    RpcUnavailable,
    ServiceUnavailable,
    TransportError,
    describe,
    is_transient,
)


_logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")
E = TypeVar("E", bound=TransportError)


@dataclass(frozen=True)
class RetryScheduled:
    """Planned retry with bounded, explicit delay."""

    attempt: int
    delay_seconds: float
    scheduled_for: datetime


@dataclass(frozen=True)
class RetryExhausted:
    """Retry budget consumed."""

    attempts: int


@dataclass(frozen=True)
class RetryGiveUp:
    """Explicit stop signal when the failure is not transient."""

    reason: str


RetryControl = RetryScheduled | RetryExhausted | RetryGiveUp


def retry_schedule(max_retries: int, base_delay: float, max_delay: float) -> list[RetryScheduled]:
    """Deterministic retry plan: delay = min(base_delay * 2**attempt, max_delay)."""
    now = datetime.now(UTC)
    schedule: list[RetryScheduled] = []
    cumulative_delay = 0.0
    for attempt in range(max_retries):
        delay_seconds = min(base_delay * (2**attempt), max_delay)
        cumulative_delay += delay_seconds
        schedule.append(
            RetryScheduled(
                attempt=attempt,
                delay_seconds=delay_seconds,
                scheduled_for=now + timedelta(seconds=cumulative_delay),
            )
        )
    return schedule


def retry_decision(
    *,
    attempt: int,
    error: TransportError,
    schedule: list[RetryScheduled],
) -> RetryControl:
    """Map a failure and attempt number to an explicit retry control signal."""
    if not is_transient(error):
        return RetryGiveUp(reason=f"non_retryable:{type(error).__name__}")
    if attempt >= len(schedule):
        return RetryExhausted(attempts=attempt + 1)
    return schedule[attempt]


async def await_retry(schedule_entry: RetryScheduled) -> None:
    """Wait for the next retry window (bounded by schedule)."""
    remaining = (schedule_entry.scheduled_for - datetime.now(UTC)).total_seconds()
    if remaining > 0:
        await asyncio.sleep(remaining)


def _with_retry_count(error: E, retries: int) -> E:
    if isinstance(error, (RpcUnavailable, ServiceUnavailable)):
        return dataclasses.replace(error, retry_count=retries)
    return error


def retry_transient(
    max_retries: int = 5, base_delay: float = 0.1, max_delay: float = 5.0
) -> Callable[
    [Callable[P, Coroutine[object, object, Result[R, E]]]],
    Callable[P, Coroutine[object, object, Result[R, E]]],
]:
    """
    Decorator retrying a coroutine while it returns a transient Failure.

    Non-transient failures are returned immediately; after ``max_retries``
    the last Failure is returned with its ``retry_count`` filled in.
    """

    def decorator(
        func: Callable[P, Coroutine[object, object, Result[R, E]]],
    ) -> Callable[P, Coroutine[object, object, Result[R, E]]]:
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> Result[R, E]:
            schedule = retry_schedule(max_retries, base_delay, max_delay)

            for attempt in range(max_retries + 1):
                result = await func(*args, **kwargs)
                match result:
                    case Success():
                        return result
                    case Failure(error):
                        match retry_decision(attempt=attempt, error=error, schedule=schedule):
                            case RetryGiveUp():
                                return result
                            case RetryExhausted(attempts=attempts):
                                return Failure(_with_retry_count(error, attempts - 1))
                            case RetryScheduled() as plan:
                                _logger.warning(
                                    f"{func.__qualname__} retry {attempt + 1}/{max_retries} "
                                    f"in {plan.delay_seconds:.2f}s: {describe(error)}"
                                )
                                await await_retry(plan)
                                continue

            raise RuntimeError("Unexpected retry logic failure")

        # Manually preserve function metadata (avoiding @wraps to prevent Any)
        wrapper.__name__ = func.__name__
        wrapper.__doc__ = func.__doc__
        wrapper.__module__ = func.__module__
        wrapper.__qualname__ = func.__qualname__
        wrapper.__annotations__ = func.__annotations__

        return wrapper

    return decorator


__all__ = [
    "RetryScheduled",
    "RetryExhausted",
    "RetryGiveUp",
    "RetryControl",
    "retry_schedule",
    "retry_decision",
    "retry_transient",
]
