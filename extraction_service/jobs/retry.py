"""Classification-aware retry with backoff for extractor and sink calls."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception

from ..config import Settings
from ..errors import RETRYABLE_CLASSES, ErrorClass, classify_exception, retry_after_hint
from .models import ExtractionTask

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    rate_limited_max_attempts: int = 2
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.5
    rate_limited_delay: float = 15.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            rate_limited_max_attempts=settings.rate_limited_max_attempts,
            base_delay=settings.backoff_base_seconds,
            max_delay=settings.backoff_max_seconds,
            jitter=settings.backoff_jitter_seconds,
            rate_limited_delay=settings.rate_limited_delay_seconds,
        )


@dataclass
class AttemptEvent:
    """Audit record emitted once per attempt."""

    task_id: str
    attempt: int
    error_class: Optional[ErrorClass] = None
    error: Optional[str] = None
    next_delay: Optional[float] = None

    @property
    def succeeded(self) -> bool:
        return self.error_class is None


@dataclass
class RetryOutcome:
    ok: bool
    attempts: int
    result: Any = None
    error_class: Optional[ErrorClass] = None
    error: Optional[str] = None
    exception: Optional[BaseException] = None

    @property
    def retryable_class(self) -> bool:
        return self.error_class in RETRYABLE_CLASSES


AttemptHook = Callable[[AttemptEvent], Awaitable[None]]


class RetryCoordinator:
    """Runs one call under a bounded, per-class retry policy.

    The coordinator never persists anything; it reports each attempt through
    ``on_attempt`` and returns a :class:`RetryOutcome`.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_attempt: Optional[AttemptHook] = None,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._on_attempt = on_attempt
        self._rng = rng

    def max_attempts_for(self, error_class: ErrorClass) -> int:
        if error_class is ErrorClass.TRANSIENT:
            return self.policy.max_attempts
        if error_class is ErrorClass.RATE_LIMITED:
            return min(self.policy.rate_limited_max_attempts, self.policy.max_attempts)
        return 1

    def backoff(self, error_class: ErrorClass, attempt: int, retry_after: Optional[float] = None) -> float:
        """Delay before the attempt following ``attempt`` (1-based).

        Jitter is added before capping, so ``max_delay`` is a hard ceiling for
        the exponential part. Below the cap delays grow strictly as long as
        ``jitter`` is smaller than ``base_delay``; at the cap they level off.
        """

        policy = self.policy
        delay = policy.base_delay * (2 ** (attempt - 1))
        if policy.jitter:
            delay += policy.jitter * self._rng()
        delay = min(delay, policy.max_delay)
        if error_class is ErrorClass.RATE_LIMITED:
            delay += max(policy.rate_limited_delay, retry_after or 0.0)
        return delay

    async def _emit(self, event: AttemptEvent) -> None:
        logger.info(
            "Extraction attempt",
            extra={
                "task_id": event.task_id,
                "attempt": event.attempt,
                "error_class": event.error_class.value if event.error_class else "ok",
                "next_delay": event.next_delay,
            },
        )
        if self._on_attempt is None:
            return
        try:
            await self._on_attempt(event)
        except Exception:
            # Audit only: a failed write must not change the attempt's outcome.
            logger.exception("Attempt audit hook failed", extra={"task_id": event.task_id, "attempt": event.attempt})

    async def execute(
        self, task: Union[ExtractionTask, str], call: Callable[[], Awaitable[Any]]
    ) -> RetryOutcome:
        task_id = task.task_id if isinstance(task, ExtractionTask) else str(task)
        planned: Dict[int, float] = {}
        attempts = 0

        def _stop(state: RetryCallState) -> bool:
            exc = state.outcome.exception() if state.outcome else None
            if exc is None:
                return True
            return state.attempt_number >= self.max_attempts_for(classify_exception(exc))

        def _wait(state: RetryCallState) -> float:
            return planned.get(state.attempt_number, 0.0)

        retrying = AsyncRetrying(
            stop=_stop,
            wait=_wait,
            retry=retry_if_exception(lambda exc: classify_exception(exc) in RETRYABLE_CLASSES),
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    try:
                        result = await call()
                    except Exception as exc:
                        error_class = classify_exception(exc)
                        delay = None
                        if error_class in RETRYABLE_CLASSES and attempts < self.max_attempts_for(error_class):
                            delay = self.backoff(error_class, attempts, retry_after_hint(exc))
                            planned[attempts] = delay
                        await self._emit(AttemptEvent(task_id, attempts, error_class, str(exc) or type(exc).__name__, delay))
                        raise
                    await self._emit(AttemptEvent(task_id, attempts))
        except Exception as exc:
            return RetryOutcome(
                ok=False,
                attempts=attempts,
                error_class=classify_exception(exc),
                error=str(exc) or type(exc).__name__,
                exception=exc,
            )
        return RetryOutcome(ok=True, attempts=attempts, result=result)


__all__ = ["RetryPolicy", "AttemptEvent", "RetryOutcome", "RetryCoordinator"]
