from __future__ import annotations

import asyncio
import random
from typing import Optional

from ..config import RetryConfig


def compute_backoff(attempt: int, base: float = 1.5, jitter: float = 0.5) -> float:
    """Compute exponential backoff with jitter."""
    delay = base ** attempt
    return delay + random.uniform(0, jitter)


async def schedule_retry(attempt: int, policy: Optional[RetryConfig] = None) -> None:
    """Sleep for the policy's backoff delay before the next attempt."""
    policy = policy or RetryConfig()
    await asyncio.sleep(compute_backoff(attempt, policy.backoff_base, policy.jitter))
