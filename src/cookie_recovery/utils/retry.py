# src/cookie_recovery/utils/retry.py
import logging
import time
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)

BASE_DELAY = 0.5  # seconds


def backoff_delay(retry_number: int, base_delay: float = BASE_DELAY) -> float:
    """Delay before the ``retry_number``-th retry (1-based): base * 2^(n-1)."""
    if retry_number < 1:
        return 0.0
    return base_delay * (2 ** (retry_number - 1))


def is_transient(exc: BaseException) -> bool:
    return bool(getattr(exc, "transient", False))


def with_retry(
    operation: Callable[[], T],
    max_attempts: int,
    base_delay: float = BASE_DELAY,
    retry_if: Callable[[BaseException], bool] = is_transient,
    on_retry: Optional[Callable[[int, int, float, BaseException], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` up to ``max_attempts`` times with exponential backoff.

    Attempt 0 runs immediately; before attempt n (n >= 1) the executor waits
    ``backoff_delay(n)``. Errors rejected by ``retry_if`` propagate at once;
    otherwise the last error is re-raised when attempts run out.
    ``on_retry(attempt, max_attempts, delay, error)`` is called before each wait.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(max_attempts):
        if attempt:
            delay = backoff_delay(attempt, base_delay)
            sleep(delay)
        try:
            result = operation()
        except Exception as exc:
            if not retry_if(exc) or attempt + 1 >= max_attempts:
                raise
            next_delay = backoff_delay(attempt + 1, base_delay)
            logger.warning(
                f"Attempt {attempt + 1}/{max_attempts} failed ({exc.__class__.__name__}); "
                f"retrying in {int(next_delay * 1000)}ms"
            )
            if on_retry:
                on_retry(attempt + 1, max_attempts, next_delay, exc)
            continue
        if attempt:
            logger.info(f"Succeeded on attempt {attempt + 1}/{max_attempts}")
        return result

    raise AssertionError("unreachable")
