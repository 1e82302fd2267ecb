"""Generic polling loops shared by every waiting phase.

The loops here own the polling policy only (initial delay, interval,
optional attempt cap). What counts as ready is decided by the attempt
function, which returns a typed outcome, and what the operator sees is
decided by the ``Progress`` passed in.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from loguru import logger

from landfall.exceptions import PollExhaustedError, ProvisioningError
from landfall.progress import NullProgress, Progress
from landfall.types import READY, Fatal, NotReady, ProbeOutcome, Ready

log = logger.bind(component="poll")

type Sleep = Callable[[float], None]


def poll(
    attempt: Callable[[], ProbeOutcome],
    *,
    interval: float,
    initial_delay: float = 0.0,
    sleep: Sleep = time.sleep,
    progress: Progress | None = None,
    max_attempts: int | None = None,
    description: str = "resource",
) -> int:
    """Call ``attempt`` until it reports ``Ready``.

    Args:
        attempt: Function performing one check.
        interval: Seconds slept between a ``NotReady`` result and the next attempt.
        initial_delay: Seconds slept once before the first attempt.
        sleep: Sleep function, injectable for tests.
        progress: Reporter ticked once per attempt.
        max_attempts: Optional cap. ``None`` polls until ready or interrupted.
        description: Name used in log and error messages.

    Returns:
        Number of attempts made, including the successful one.

    Raises:
        PollExhaustedError: If ``max_attempts`` is reached.
        Exception: The error carried by a ``Fatal`` outcome.
    """
    progress = progress or NullProgress()
    if initial_delay > 0:
        sleep(initial_delay)

    attempts = 0
    while True:
        attempts += 1
        outcome = attempt()
        progress.tick()

        match outcome:
            case Ready():
                progress.done()
                log.debug("{what} ready after {n} attempts", what=description, n=attempts)
                return attempts
            case Fatal(error=error):
                log.debug("{what} failed: {err}", what=description, err=error)
                raise error
            case NotReady(reason=reason):
                log.trace("{what} not ready: {reason}", what=description, reason=reason)

        if max_attempts is not None and attempts >= max_attempts:
            raise PollExhaustedError(description, attempts)

        if interval > 0:
            sleep(interval)


def wait_for_ready[T](
    poll_fn: Callable[[], T | None],
    ready_check: Callable[[T], bool],
    *,
    terminal_check: Callable[[T], bool] | None = None,
    interval: float,
    sleep: Sleep = time.sleep,
    progress: Progress | None = None,
    max_attempts: int | None = None,
    description: str = "resource",
) -> T:
    """Wait until ``poll_fn`` returns something that passes ``ready_check``.

    Args:
        poll_fn: Function returning the current resource state (or None).
        ready_check: Returns True when the resource is ready.
        terminal_check: Returns True if the resource reached a state it
            can never leave (e.g. terminated).

    Returns:
        The last polled value, which passed ``ready_check``.

    Raises:
        ProvisioningError: If the resource reaches a terminal state.
    """
    latest: list[T] = []

    def _attempt() -> ProbeOutcome:
        result = poll_fn()
        if result is None:
            return NotReady("no result")
        if ready_check(result):
            latest.append(result)
            return READY
        if terminal_check is not None and terminal_check(result):
            return Fatal(ProvisioningError(f"{description} reached terminal state: {result}"))
        return NotReady(str(result))

    poll(
        _attempt,
        interval=interval,
        sleep=sleep,
        progress=progress,
        max_attempts=max_attempts,
        description=description,
    )
    return latest[-1]
