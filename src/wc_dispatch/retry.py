"""Generic retry helper for transient API errors.

Exponential backoff with jitter for rate limits (429) and transient server
errors (5xx). Extractors never retry on their own; callers that want
another attempt wrap the call here.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from wc_dispatch.exceptions import APIRetryExhausted


@dataclass
class RetryConfig:
    """Configuration for retry behavior with exponential backoff."""

    max_attempts: int = 3
    base_delay_s: float = 0.3
    max_delay_s: float = 8.0
    jitter_s: float = 0.2


def is_retryable_status(status_code: int) -> bool:
    """True if status is 429 (rate limit) or 5xx (server error)."""
    return status_code == 429 or 500 <= status_code <= 599


def compute_backoff_s(attempt: int, cfg: RetryConfig) -> float:
    """Compute exponential backoff delay with jitter.

    Args:
        attempt: Current attempt number (1-indexed)
        cfg: Retry configuration

    Returns:
        Delay in seconds before next retry
    """
    delay = cfg.base_delay_s * (2 ** (attempt - 1))
    delay = min(delay, cfg.max_delay_s)
    jitter = random.uniform(0, cfg.jitter_s)
    return delay + jitter


def extract_status_code(exc: BaseException) -> int | None:
    """Extract HTTP status code from various exception types.

    Supports:
    - exc.status_code (openai APIStatusError and most HTTP clients)
    - exc.resp.status (googleapiclient HttpError)
    - exc.status (alternative pattern)
    """
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status

    resp = getattr(exc, "resp", None)
    if resp is not None and isinstance(getattr(resp, "status", None), int):
        return int(resp.status)

    status = getattr(exc, "status", None)
    if isinstance(status, int):
        return status

    return None


def with_retries[T](
    callable_fn: Callable[[], T],
    *,
    operation: str,
    logger: Any,
    cfg: RetryConfig,
    context: dict[str, Any] | None = None,
    retry_on: Callable[[Exception], bool] | None = None,
) -> T:
    """Execute a callable with automatic retries on transient errors.

    Args:
        callable_fn: Function to execute (takes no args)
        operation: Operation name for logging
        logger: Logger instance with info() method
        cfg: Retry configuration
        context: Optional extra fields to include in log events
        retry_on: Optional predicate for errors that carry no HTTP status
            (e.g. connection resets) but should still be retried

    Returns:
        Result from callable_fn()

    Raises:
        APIRetryExhausted: If all retry attempts fail
        Exception: Non-retryable errors are raised immediately
    """
    context = context or {}
    last_error: Exception | None = None
    last_status: int | None = None

    for attempt in range(1, cfg.max_attempts + 1):
        try:
            return callable_fn()
        except Exception as exc:
            last_error = exc
            status_code = extract_status_code(exc)
            last_status = status_code

            retryable = status_code is not None and is_retryable_status(status_code)
            if not retryable and retry_on is not None:
                retryable = retry_on(exc)
            if not retryable:
                raise

            if attempt >= cfg.max_attempts:
                break

            sleep_s = compute_backoff_s(attempt, cfg)
            logger.info(
                "api_retry",
                operation=operation,
                attempt=attempt,
                max_attempts=cfg.max_attempts,
                sleep_s=round(sleep_s, 3),
                status_code=status_code,
                error_type=type(exc).__name__,
                **context,
            )
            time.sleep(sleep_s)

    raise APIRetryExhausted(
        operation=operation,
        attempts=cfg.max_attempts,
        status_code=last_status,
        message=f"Failed after {cfg.max_attempts} attempts",
        cause=last_error,
    )
