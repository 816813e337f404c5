"""
Retry with exponential backoff for provider calls

Only transient failures are retried: transport errors, 5xx and 429.
Validation failures (other 4xx) surface on the first attempt.
"""

import asyncio
import logging
import os
import random
from typing import Any, Awaitable, Callable, Optional

from lexdesk.errors import UpstreamFailure

logger = logging.getLogger(__name__)


class RetryPolicy:
    """
    Backoff schedule:
    attempt 0 waits base_delay, attempt 1 waits 2 * base_delay, and so on,
    each plus a random extra of up to `jitter` seconds.
    """

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        base_delay: float = 0.5,
        jitter: float = 0.5,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.max_attempts = max_attempts or int(os.getenv("PROVIDER_MAX_RETRIES", "3"))
        self.base_delay = base_delay
        self.jitter = jitter
        self.sleep = sleep or asyncio.sleep

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt) + random.uniform(0, self.jitter)

    async def execute(self, fn: Callable[[], Awaitable[Any]], operation: str = "provider call") -> Any:
        """
        Run fn until it succeeds or attempts run out

        Raises:
            UpstreamFailure: non-transient failure, or the last transient one
        """
        for attempt in range(self.max_attempts):
            try:
                return await fn()
            except UpstreamFailure as e:
                if not e.transient or attempt == self.max_attempts - 1:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d, status %s); retrying in %.2fs",
                    operation,
                    attempt + 1,
                    self.max_attempts,
                    e.upstream_status,
                    delay,
                )
                await self.sleep(delay)
