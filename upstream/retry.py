"""Retry with exponential backoff, shared by the content client and image ingestion."""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from upstream.errors import AuthInvalidError

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class RetryPolicy:
    """
    Backoff policy for a retried call.

    Attempt n (1-based) waits base_delay * 2^(n-1) seconds before attempt
    n+1, capped at max_delay when one is set.
    """
    max_attempts: int
    base_delay: float
    is_retryable: Callable[[Exception], bool]
    max_delay: Optional[float] = None

    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay * (2 ** (attempt - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay


def execute_with_retry(
    func: Callable[[], T],
    policy: RetryPolicy,
    description: str = 'request'
) -> T:
    """
    Call func until it succeeds or the policy gives up.

    AuthInvalidError is never retried, whatever the policy says.

    Args:
        func: Zero-argument callable performing one attempt
        policy: Retry policy to apply
        description: Short label used in log messages

    Returns:
        Whatever func returns on its first successful attempt

    Raises:
        The last exception raised by func once retries stop
    """
    max_attempts = max(1, policy.max_attempts)

    for attempt in range(1, max_attempts + 1):
        try:
            return func()
        except Exception as e:
            if isinstance(e, AuthInvalidError):
                raise

            if not policy.is_retryable(e) or attempt >= max_attempts:
                if attempt > 1:
                    logger.error(
                        f"{description} failed after {attempt} attempts: {e}"
                    )
                raise

            delay = policy.delay_for(attempt)
            logger.warning(
                f"{description} failed (attempt {attempt}/{max_attempts}): {e}. "
                f"Retrying in {delay} seconds..."
            )
            time.sleep(delay)

    raise RuntimeError('unreachable')
