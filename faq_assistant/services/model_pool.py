"""
Model pool: which completion backend serves the next request.

=== STATES ===

Each backend is either AVAILABLE or RATE_LIMITED. A rate-limited backend is
released automatically once the cooldown window has passed since it was
marked, or all at once by reset().

=== SELECTION ===

next_available() walks the backends in priority order starting from a
cursor, wrapping around (round-robin). The cursor stays on a backend that
keeps succeeding and moves past one that was just marked rate-limited or
failed, so:

    A ok, A ok, A 429 -> B ok, B ok, ...

and the attempt right after a rate limit on A never goes back to A.

=== COOLDOWN ROUNDS ===

When no backend is available the caller raises AllBackendsRateLimited.
call_with_policy() catches that with tenacity: it sleeps the cooldown, calls
the on_retry hook (the orchestrator resets the pool there) and tries again,
at most max_rounds times. After that the caller gets RateLimitExhausted,
the user-facing "try again later".
"""

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Collection, Dict, List, Optional, Sequence, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from faq_assistant.core.errors import ConfigurationError, RateLimitError, RateLimitExhausted
from faq_assistant.models.llm import BackendState, ModelBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AllBackendsRateLimited(RateLimitError):
    """No backend is available right now; recoverable by waiting out the cooldown."""

    pass


class ModelPool:

    def __init__(
        self,
        backends: Sequence[ModelBackend],
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not backends:
            raise ConfigurationError("No model backends configured (set at least one API key)")

        names = [b.name for b in backends]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate backend names: {', '.join(duplicates)}")

        # sorted() is stable: equal priorities keep configuration order
        self.backends: List[ModelBackend] = sorted(backends, key=lambda b: b.priority)
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock

        self._index = {b.name: i for i, b in enumerate(self.backends)}
        self._limited_at: Dict[str, float] = {}
        self._cursor = 0
        self._served: Dict[str, int] = {b.name: 0 for b in self.backends}
        self._failures: Dict[str, int] = {b.name: 0 for b in self.backends}

    def __len__(self) -> int:
        return len(self.backends)

    @property
    def names(self) -> List[str]:
        return [b.name for b in self.backends]

    def state(self, name: str) -> BackendState:
        marked_at = self._limited_at.get(name)
        if marked_at is None:
            return BackendState.AVAILABLE
        if self.clock() - marked_at >= self.cooldown_seconds:
            del self._limited_at[name]
            logger.info(f"Backend {name} released after cooldown")
            return BackendState.AVAILABLE
        return BackendState.RATE_LIMITED

    def available(self) -> List[ModelBackend]:
        return [b for b in self.backends if self.state(b.name) == BackendState.AVAILABLE]

    def next_available(self, exclude: Collection[str] = ()) -> Optional[ModelBackend]:
        """Next available backend not in exclude, in round-robin priority order."""
        count = len(self.backends)
        for offset in range(count):
            idx = (self._cursor + offset) % count
            backend = self.backends[idx]
            if backend.name in exclude:
                continue
            if self.state(backend.name) != BackendState.AVAILABLE:
                continue
            self._cursor = idx
            return backend
        return None

    def _advance_past(self, name: str):
        idx = self._index[name]
        if self._cursor == idx:
            self._cursor = (idx + 1) % len(self.backends)

    def mark_rate_limited(self, name: str):
        self._limited_at[name] = self.clock()
        self._advance_past(name)
        logger.warning(f"Backend {name} rate-limited, rotating to the next one")

    def mark_failed(self, name: str):
        self._failures[name] += 1
        self._advance_past(name)

    def record_success(self, name: str):
        self._served[name] += 1

    def reset(self):
        self._limited_at.clear()
        self._cursor = 0
        logger.info("Model pool reset: all backends available")

    def usage(self) -> Dict[str, Dict[str, object]]:
        return {
            b.name: {
                "provider": b.provider.value,
                "state": self.state(b.name).value,
                "served": self._served[b.name],
                "failures": self._failures[b.name],
            }
            for b in self.backends
        }


@dataclass
class RetryPolicy:
    """
    How long to wait when every backend is rate-limited, and how often.

    sleep is the coroutine tenacity waits with; tests pass a recorder instead
    of asyncio.sleep.
    """
    max_rounds: int = 5
    cooldown_seconds: float = 60.0
    sleep: Optional[Callable[[float], Awaitable[None]]] = None

    def retrying(self, before: Optional[Callable[[RetryCallState], None]] = None) -> AsyncRetrying:
        kwargs = dict(
            retry=retry_if_exception_type(AllBackendsRateLimited),
            wait=wait_fixed(self.cooldown_seconds),
            stop=stop_after_attempt(self.max_rounds + 1),
            before_sleep=self._log_cooldown,
            reraise=True,
        )
        if before is not None:
            kwargs["before"] = before
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        return AsyncRetrying(**kwargs)

    def _log_cooldown(self, retry_state: RetryCallState):
        logger.warning(
            f"All backends rate-limited, cooling down {self.cooldown_seconds:.0f}s "
            f"(round {retry_state.attempt_number}/{self.max_rounds})"
        )


async def call_with_policy(
    policy: RetryPolicy,
    fn: Callable[[], Awaitable[T]],
    on_retry: Optional[Callable[[int], None]] = None,
) -> T:
    """
    Run fn, waiting out cooldowns while it raises AllBackendsRateLimited.

    on_retry(round) is called after each cooldown, before fn runs again.
    Any other exception from fn propagates immediately.

    Raises:
        RateLimitExhausted: still rate-limited after policy.max_rounds cooldowns
    """

    def _before(retry_state: RetryCallState):
        if retry_state.attempt_number > 1 and on_retry is not None:
            on_retry(retry_state.attempt_number - 1)

    try:
        async for attempt in policy.retrying(before=_before):
            with attempt:
                result = await fn()
    except AllBackendsRateLimited as exc:
        logger.error(f"Giving up after {policy.max_rounds} cooldown rounds")
        raise RateLimitExhausted() from exc
    return result
