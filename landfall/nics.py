"""Secondary network interface attachment."""

from __future__ import annotations

import time
from collections.abc import Sequence

from loguru import logger

from landfall.cloud import ControlPlane
from landfall.constants import NIC_POLL_INTERVAL, AttachmentStatus
from landfall.exceptions import ConfigurationError
from landfall.poll import Sleep, poll
from landfall.progress import Progress
from landfall.types import READY, NotReady, ProbeOutcome

log = logger.bind(component="nics")


def validate_interfaces(
    plane: ControlPlane,
    interface_ids: Sequence[str],
    vpc_id: str | None = None,
) -> None:
    """Check every requested interface is known to the provider.

    Raises:
        ConfigurationError: Listing the unknown interface ids.
    """
    known = set(plane.list_network_interface_ids(vpc_id))
    invalid = [nic for nic in interface_ids if nic not in known]
    if invalid:
        raise ConfigurationError(
            f"The following network interfaces are invalid: {', '.join(invalid)}"
        )


class NicAttachmentWaiter:
    """Attaches interfaces to an instance and waits until all report attached.

    Polling has no timeout: attachment completes once the provider is
    consistent, and a visible hang here points at a provider-side problem.
    """

    def __init__(
        self,
        plane: ControlPlane,
        *,
        interval: float = NIC_POLL_INTERVAL,
        sleep: Sleep = time.sleep,
        progress: Progress | None = None,
    ) -> None:
        self._plane = plane
        self._interval = interval
        self._sleep = sleep
        self._progress = progress

    def attach(self, instance_id: str, interface_ids: Sequence[str]) -> tuple[str, ...]:
        """Attach ``interface_ids`` at device index 1, 2, ... and wait for them.

        Returns:
            Attachment ids, in the order of ``interface_ids``.
        """
        attachments = tuple(
            self._plane.attach_network_interface(nic, instance_id, index)
            for index, nic in enumerate(interface_ids, start=1)
        )
        log.info(
            "Attaching {n} network interfaces to {id}",
            n=len(attachments),
            id=instance_id,
        )
        self.wait(interface_ids)
        return attachments

    def wait(self, interface_ids: Sequence[str], *, max_attempts: int | None = None) -> int:
        """Poll until every interface in ``interface_ids`` reports attached.

        Returns:
            Number of polls made.
        """
        wanted = len(interface_ids)
        if self._progress is not None:
            self._progress.begin("Waiting for network interfaces to attach")

        def _attempt() -> ProbeOutcome:
            statuses = [self._plane.attachment_status(nic) for nic in interface_ids]
            attached = sum(1 for s in statuses if s == AttachmentStatus.ATTACHED)
            if attached == wanted:
                return READY
            return NotReady(f"{attached}/{wanted} attached")

        return poll(
            _attempt,
            interval=self._interval,
            sleep=self._sleep,
            progress=self._progress,
            max_attempts=max_attempts,
            description="network interface attachment",
        )
