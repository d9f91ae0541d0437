"""
Retry helper for idempotent bucket mutations.
"""

import logging
import random
import time
from typing import Any, Callable, Optional, Tuple, Type


logger = logging.getLogger(__name__)

MAX_RETRIES = 5
JITTER_SECONDS = 3.0


def backoff_delay(attempt: int, jitter: float = JITTER_SECONDS, rng=random) -> float:
    """
    Seconds to wait before retry number `attempt` (0-based).

    2^attempt, with +/- `jitter` added from the second retry onward.
    """
    delay = 2 ** attempt
    if attempt > 1:
        delay += rng.uniform(-jitter, jitter)
    return max(delay, 0.0)


def retry_with_backoff(operation: Callable[..., Any], *args,
                       retry_on: Tuple[Type[BaseException], ...] = (Exception,),
                       max_retries: int = MAX_RETRIES,
                       sleep: Optional[Callable[[float], None]] = None,
                       **kwargs) -> Any:
    """
    Call `operation` until it succeeds or `max_retries` retries are used up.

    Args:
        operation: Callable to invoke with *args and **kwargs
        retry_on: Exception types that trigger a retry; anything else propagates
        max_retries: Retries after the first call
        sleep: Replaces time.sleep (tests)

    Returns:
        Whatever `operation` returns

    Raises:
        The last error raised by `operation` once retries are exhausted
    """
    attempt = 0
    while True:
        try:
            return operation(*args, **kwargs)
        except retry_on as e:
            if attempt >= max_retries:
                logger.error(
                    f"{getattr(operation, '__name__', 'operation')} failed after "
                    f"{attempt + 1} attempts: {e}"
                )
                raise
            delay = backoff_delay(attempt)
            logger.warning(
                f"{getattr(operation, '__name__', 'operation')} failed (attempt {attempt + 1}), "
                f"retrying in {delay:.1f}s: {e}"
            )
            (sleep or time.sleep)(delay)
            attempt += 1
