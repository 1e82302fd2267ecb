"""Wait for an instance to reach a state the provider reports as ready."""

from __future__ import annotations

import time
from collections.abc import Callable

from loguru import logger

from landfall.cloud import ControlPlane
from landfall.constants import READINESS_INTERVAL, InstanceState
from landfall.poll import Sleep, wait_for_ready
from landfall.progress import Progress
from landfall.types import Instance

log = logger.bind(component="readiness")

type InstancePredicate = Callable[[Instance], bool]

_TERMINAL_STATES = frozenset({
    InstanceState.SHUTTING_DOWN,
    InstanceState.TERMINATED,
})


def is_running(instance: Instance) -> bool:
    return instance.is_running


def has_public_ip(public_ip: str) -> InstancePredicate:
    """Predicate holding once the instance reports ``public_ip`` as its address."""

    def predicate(instance: Instance) -> bool:
        return instance.public_ip_address == public_ip

    return predicate


class ReadinessWaiter:
    """Polls ``describe_instance`` until a predicate holds.

    There is no attempt cap: like the provider's own waiters this returns
    once the instance is ready, and otherwise keeps printing progress until
    the operator interrupts it. An instance that is shutting down or
    terminated can never become ready and aborts the wait.
    """

    def __init__(
        self,
        plane: ControlPlane,
        *,
        interval: float = READINESS_INTERVAL,
        sleep: Sleep = time.sleep,
        progress: Progress | None = None,
    ) -> None:
        self._plane = plane
        self._interval = interval
        self._sleep = sleep
        self._progress = progress

    def wait(
        self,
        instance_id: str,
        predicate: InstancePredicate = is_running,
        *,
        message: str = "Waiting for EC2 to create the instance",
        max_attempts: int | None = None,
    ) -> Instance:
        if self._progress is not None:
            self._progress.begin(message)
        instance = wait_for_ready(
            lambda: self._plane.describe_instance(instance_id),
            predicate,
            terminal_check=lambda i: i.state in _TERMINAL_STATES,
            interval=self._interval,
            sleep=self._sleep,
            progress=self._progress,
            max_attempts=max_attempts,
            description=f"instance {instance_id}",
        )
        log.info("Instance {id} is {state}", id=instance.id, state=instance.state)
        return instance
