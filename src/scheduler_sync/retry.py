"""Retry with exponential backoff for remote git operations.

The engine knows nothing about the operation it retries. Whether a failure is
worth retrying is decided by a plain substring classifier: git reports
authentication, permission and non-fast-forward problems only as text, and
retrying cannot change any of those outcomes.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, Tuple, TypeVar

from .observability import log_warning

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_DELAY = 1.0  # seconds

# Category -> lowercase substrings. Extend here, not at call sites.
NON_RETRYABLE_MARKERS: Dict[str, Tuple[str, ...]] = {
    "authentication": (
        "authentication",
        "could not read username",
        "terminal prompts disabled",
    ),
    "permission": (
        "permission",
    ),
    "non_fast_forward": (
        "non-fast-forward",
        "fetch first",
    ),
}


def classify_error(message: str) -> Optional[str]:
    """Return the non-retryable category ``message`` belongs to, or None."""
    text = message.lower()
    for category, markers in NON_RETRYABLE_MARKERS.items():
        if any(marker in text for marker in markers):
            return category
    return None


def is_retryable_error(error: BaseException) -> bool:
    """Network errors and transient server errors are retryable; policy failures are not."""
    return classify_error(str(error)) is None


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    success: bool
    attempts: int
    value: Optional[T] = None
    error: Optional[str] = None


def backoff_delay(attempt: int, base_delay: float, max_delay: Optional[float] = None) -> float:
    """Delay to wait after failed attempt number ``attempt`` (1-based)."""
    delay = base_delay * (2 ** (attempt - 1))
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


def run_with_retry(
    operation: Callable[[], T],
    *,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: Optional[float] = None,
    sleep: Callable[[float], Any] = time.sleep,
    label: str = "Operation",
) -> RetryOutcome[T]:
    """Run ``operation`` until it succeeds, fails fatally, or attempts run out.

    Never raises for failures of ``operation``; the outcome carries the error
    text instead.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error = ""
    for attempt in range(1, max_attempts + 1):
        try:
            value = operation()
        except Exception as exc:
            last_error = str(exc) or exc.__class__.__name__
            if not is_retryable(exc):
                return RetryOutcome(success=False, attempts=attempt, error=last_error)
            if attempt >= max_attempts:
                break
            delay = backoff_delay(attempt, base_delay, max_delay)
            log_warning(
                f"{label} failed, retrying in {delay:.2f}s (attempt {attempt}/{max_attempts})",
                error=last_error[:200],
            )
            sleep(delay)
            continue
        return RetryOutcome(success=True, attempts=attempt, value=value)

    return RetryOutcome(
        success=False,
        attempts=max_attempts,
        error=f"{label} failed after {max_attempts} attempts: {last_error}",
    )
