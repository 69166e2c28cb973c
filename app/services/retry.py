"""Retry policy for model calls: classify failures, back off exponentially."""

import logging
import time
from enum import Enum
from typing import Callable, TypeVar

from tenacity import RetryCallState, RetryError, Retrying, retry_if_exception, stop_after_attempt

from app.services.errors import (
    CallSignal,
    ModelCallError,
    RetryExhaustedError,
    StageFatalError,
    StageRetryableError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3


class AttemptOutcome(str, Enum):
    """Classification of a single attempt."""

    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


def classify(error: BaseException) -> AttemptOutcome:
    """Classify a failed attempt.

    Rate-limit and server-class signals are retryable; everything else,
    including malformed payloads and auth/validation errors, is fatal.
    """
    if isinstance(error, StageRetryableError):
        return AttemptOutcome.RETRYABLE
    if isinstance(error, ModelCallError) and error.signal in (CallSignal.RATE_LIMIT, CallSignal.SERVER_ERROR):
        return AttemptOutcome.RETRYABLE
    return AttemptOutcome.FATAL


def is_retryable(error: BaseException) -> bool:
    return classify(error) is AttemptOutcome.RETRYABLE


def backoff_seconds(attempt: int, base_delay: float = 1.0) -> float:
    """Delay between attempt ``attempt`` and the next: 2^attempt * base (no jitter)."""
    return (2 ** attempt) * base_delay


def with_retry(
    call: Callable[[], T],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "model call",
) -> T:
    """
    Run ``call`` under the retry policy.

    Args:
        call: Zero-argument callable performing one attempt
        max_attempts: Total attempts allowed for retryable failures
        base_delay: Seconds multiplied by 2^attempt between attempts
        sleep: Sleep function (injected in tests)
        label: Name used in log lines

    Returns:
        The first successful result

    Raises:
        The original exception for fatal failures, after one attempt
        RetryExhaustedError: When every attempt failed with a retryable error
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    def _wait(retry_state: RetryCallState) -> float:
        return backoff_seconds(retry_state.attempt_number, base_delay)

    def _before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            f"{label} failed (attempt {retry_state.attempt_number}/{max_attempts}, "
            f"{AttemptOutcome.RETRYABLE.value}): {error}. "
            f"Retrying in {int(retry_state.next_action.sleep * 1000)}ms..."
        )

    retryer = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=_wait,
        retry=retry_if_exception(is_retryable),
        sleep=sleep,
        before_sleep=_before_sleep,
    )

    try:
        return retryer(call)
    except RetryError as e:
        last_error = e.last_attempt.exception()
        logger.error(f"{label} exhausted {max_attempts} attempts: {last_error}")
        raise RetryExhaustedError(
            f"{label} failed after {max_attempts} attempts: {last_error}",
            attempts=max_attempts,
            stage_id=getattr(last_error, "stage_id", None),
        ) from last_error


def as_stage_error(error: Exception, stage_id: str) -> StageFatalError:
    """Wrap a fatal attempt failure as a stage error."""
    if isinstance(error, StageFatalError):
        if error.stage_id is None:
            error.stage_id = stage_id
        return error
    return StageFatalError(f"Stage {stage_id} failed: {error}", stage_id=stage_id)
