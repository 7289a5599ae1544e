from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import structlog

from .errors import RetryExhaustedError
from .metrics import generation_attempts_total

log = structlog.get_logger()

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff between attempts of a retrying generator.

    Delays run initial, initial*multiplier, initial*multiplier**2, ... and are
    never capped. With both bounds left as None the loop only ends on a
    successful parse.
    """

    initial_delay_seconds: float = 1.0
    multiplier: float = 2.0
    max_attempts: int | None = None
    max_total_delay_seconds: float | None = None
    sleeper: Sleeper = field(default=asyncio.sleep, compare=False)

    def __post_init__(self) -> None:
        if self.initial_delay_seconds < 0:
            raise ValueError("initial_delay_seconds must be >= 0.")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1.")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1.")

    def delay_for(self, retry_index: int) -> float:
        # retry_index: 0-based count of failed attempts so far
        return self.initial_delay_seconds * (self.multiplier**retry_index)


DEFAULT_RETRY_POLICY = RetryPolicy()


async def run_with_retry(
    attempt: Callable[[], Awaitable[T | None]],
    *,
    policy: RetryPolicy | None = None,
    name: str = "generation",
) -> T:
    """
    Run `attempt` until it returns something other than None.

    Exceptions raised by `attempt` are logged and count as a failed attempt,
    exactly like an unparseable reply. Attempts are strictly sequential.
    """
    policy = policy or DEFAULT_RETRY_POLICY
    attempts = 0
    total_delay = 0.0
    last_error: BaseException | None = None

    while True:
        attempts += 1
        try:
            result = await attempt()
        except Exception as e:
            last_error = e
            generation_attempts_total.labels(generator=name, outcome="error").inc()
            log.error("generation_attempt_failed", generator=name, attempt=attempts, error=str(e))
        else:
            if result is not None:
                generation_attempts_total.labels(generator=name, outcome="success").inc()
                return result
            generation_attempts_total.labels(generator=name, outcome="unparsed").inc()
            log.debug("generation_attempt_unparsed", generator=name, attempt=attempts)

        if policy.max_attempts is not None and attempts >= policy.max_attempts:
            raise RetryExhaustedError(name, attempts, last_error)

        delay = policy.delay_for(attempts - 1)
        if policy.max_total_delay_seconds is not None and total_delay + delay > policy.max_total_delay_seconds:
            raise RetryExhaustedError(name, attempts, last_error)

        log.info("generation_retry_scheduled", generator=name, attempt=attempts, delay_seconds=delay)
        await policy.sleeper(delay)
        total_delay += delay
