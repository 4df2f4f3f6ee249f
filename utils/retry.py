import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

BACKOFF_BASE = 2


@dataclass
class RetryOutcome:
    """Result of a retried operation: a value, or a fallback plus the reason it failed"""
    value: Any = None
    error: Optional[str] = None
    attempts: int = 0
    exception: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


def backoff_delay(attempt: int) -> int:
    """Seconds to wait after failed attempt number `attempt` (1-based)"""
    return BACKOFF_BASE ** attempt


def retry_with_backoff(
    operation: Callable[[], Any],
    max_attempts: int,
    fallback: Any = None,
    is_failure: Optional[Callable[[Any], Optional[str]]] = None,
    should_retry: Optional[Callable[[Any], bool]] = None,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "operation",
) -> RetryOutcome:
    """
    Run `operation` until it succeeds or `max_attempts` calls have failed.

    An attempt fails when the operation raises, or when `is_failure(result)`
    returns an error description. Between attempts the caller's thread sleeps
    2, 4, 8, ... seconds. Exceptions never escape; the caller decides what a
    terminal failure means through the returned RetryOutcome.

    Args:
        operation: Zero-argument callable to invoke
        max_attempts: Total number of calls allowed (at least 1)
        fallback: Value carried by the outcome when every attempt failed
        is_failure: Inspects a returned result, returns an error string or None
        should_retry: Receives the raised exception or the failed result,
            returns False when retrying cannot help
        sleep: Sleep function, injectable for tests
        description: Name used in logs and in the terminal error message

    Returns:
        RetryOutcome
    """
    max_attempts = max(1, max_attempts)
    last_error = None
    last_exception = None
    failed = None
    attempt = 0

    while attempt < max_attempts:
        attempt += 1
        try:
            result = operation()
        except Exception as e:
            last_exception = e
            last_error = str(e) or e.__class__.__name__
            failed = e
        else:
            failure = is_failure(result) if is_failure else None
            if not failure:
                return RetryOutcome(value=result, attempts=attempt)
            last_exception = None
            last_error = failure
            failed = result

        logger.warning(f"{description} attempt {attempt}/{max_attempts} failed: {last_error}")

        if should_retry is not None and not should_retry(failed):
            logger.info(f"{description}: error is not retryable, giving up")
            break

        if attempt < max_attempts:
            sleep(backoff_delay(attempt))

    return RetryOutcome(
        value=fallback,
        error=f"{description} failed after {attempt} attempts: {last_error}",
        attempts=attempt,
        exception=last_exception,
    )
