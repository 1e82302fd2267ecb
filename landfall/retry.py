"""Bounded fixed-delay retry for control-plane calls.

EC2 is eventually consistent: right after an instance is created, tagging
it or associating an address can fail with ``*.NotFound`` even though the
instance exists. ``RetryPolicy`` retries those calls a fixed number of
times and lets every other error through immediately.

Example:
    from landfall.retry import RetryPolicy, is_control_plane_transient

    policy = RetryPolicy(max_attempts=6, delay=5.0, retryable=is_control_plane_transient)
    policy.execute(lambda: ec2.create_tags(instance_id, tags))
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from botocore.exceptions import ClientError
from botocore.exceptions import ConnectionError as BotoConnectionError
from loguru import logger
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from landfall.constants import TAG_RETRY_ATTEMPTS, TAG_RETRY_DELAY, TRANSIENT_ERROR_CODES

log = logger.bind(component="retry")

type RetryPredicate = Callable[[BaseException], bool]


@dataclass(slots=True)
class RetryPolicy:
    """Run an operation up to ``max_attempts`` times, sleeping ``delay`` in between.

    Built fresh for every retried operation. After ``execute`` returns or
    raises, ``attempts`` holds how many times the operation ran.

    Args:
        max_attempts: Attempt budget, including the first call. Must be >= 1.
        delay: Fixed seconds between attempts. No sleep follows the final attempt.
        retryable: Predicate telling retryable errors from fatal ones.
        sleep: Sleep function, injectable for tests.
        description: Name used in warnings.
    """

    max_attempts: int = TAG_RETRY_ATTEMPTS
    delay: float = TAG_RETRY_DELAY
    retryable: RetryPredicate = field(default=lambda e: isinstance(e, Exception))
    sleep: Callable[[float], None] = time.sleep
    description: str = "operation"
    attempts: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

    @property
    def remaining(self) -> int:
        return self.max_attempts - self.attempts

    def execute[T](self, operation: Callable[[], T]) -> T:
        """Run ``operation``, retrying retryable errors while the budget lasts.

        Raises:
            Exception: The last error, once it is fatal or the budget is spent.
        """

        def _counted() -> T:
            self.attempts += 1
            return operation()

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.delay),
            retry=retry_if_exception(self.retryable),
            sleep=self.sleep,
            before_sleep=self._warn,
            reraise=True,
        )
        return retrying(_counted)

    def _warn(self, state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        log.warning(
            "{what} not ready, retrying after {err} (retries left: {left})",
            what=self.description,
            err=type(error).__name__ if error else "error",
            left=self.remaining,
        )


# =============================================================================
# Predicates
# =============================================================================


def error_code(exc: BaseException) -> str:
    """Return the AWS error code carried by ``exc``, or an empty string."""
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code", "")
    return ""


def is_control_plane_transient(exc: BaseException) -> bool:
    """True for errors caused by the control plane not having caught up yet.

    Covers ``*.NotFound`` codes (resource not visible yet), throttling and
    internal provider errors, and connection-level botocore failures.
    """
    if isinstance(exc, BotoConnectionError):
        return True
    code = error_code(exc)
    return code.endswith(".NotFound") or code in TRANSIENT_ERROR_CODES
