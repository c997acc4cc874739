import asyncio
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional


class ErrorKind(str, Enum):
    GUARD_REJECTION = "guard_rejection"
    TRANSIENT_NETWORK = "transient_network"
    API_ERROR = "api_error"
    SIMULATION_FAILURE = "simulation_failure"
    ONCHAIN_ERROR = "onchain_error"
    RECONCILIATION_FALLBACK = "reconciliation_fallback"
    CAPITAL_INSUFFICIENT = "capital_insufficient"
    MAX_EXPOSURE = "max_exposure"
    MAX_POSITIONS = "max_positions"
    KILL_SWITCH = "kill_switch"
    EXIT_FAILURE = "exit_failure"


class TransientError(Exception):
    """Timeout or connection failure talking to an external service."""


class ApiError(Exception):
    """The remote API answered, but with an HTTP error or an explicit error body."""

    def __init__(self, message: str, status: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(message)
        self.status = status
        self.retry_after = retry_after

    @property
    def rate_limited(self) -> bool:
        return self.status == 429 or "rate limit" in str(self).lower()


class SwapAttemptError(Exception):
    """One attempt inside the swap retry loop failed; the loop decides what happens next."""

    def __init__(self, kind: ErrorKind, message: str, backoff: bool = False, retry_after: Optional[float] = None):
        super().__init__(message)
        self.kind = kind
        self.backoff = backoff
        self.retry_after = retry_after


Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RetryPolicy:
    """Bounded attempts with capped exponential backoff.

    Kept apart from the I/O it guards so a fake ``sleep`` can drive it in tests.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.0
    sleep: Sleep = field(default=asyncio.sleep, repr=False)

    def delay_for(self, attempt: int, retry_after: Optional[float] = None) -> float:
        # Retry-After wins when the server sent one
        if retry_after is not None and retry_after > 0:
            return min(retry_after, self.max_delay)
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return delay

    async def backoff(self, attempt: int, retry_after: Optional[float] = None) -> float:
        delay = self.delay_for(attempt, retry_after)
        await self.sleep(delay)
        return delay

    def attempts(self):
        return range(self.max_attempts)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        sec = float(value)
    except ValueError:
        return None
    return sec if sec > 0 else None
