"""Reachability probes for the remote management listeners.

Probes only establish liveness of the TCP endpoint: the shell probe waits
for the server's banner line, the management probe settles for an
accepted connection. Through a gateway that connection is accepted by the
local forwarder, so the tunnelled management probe also watches for the
forwarder dropping it. Every socket-level failure (refused, reset,
unreachable, permission denied, timeout, name resolution) means "not
ready yet", both for direct probes and through a gateway tunnel. The
surrounding loop is unbounded, matching the provider's boot-time variance.
"""

from __future__ import annotations

import select
import socket
import time
from collections.abc import Callable
from typing import Protocol

from loguru import logger

from landfall.config import ProbeSettings
from landfall.constants import BANNER_TIMEOUT, LOCALHOST
from landfall.poll import Sleep, poll
from landfall.progress import Progress
from landfall.tunnel import TunnelManager
from landfall.types import READY, GatewayDescriptor, NotReady, ProbeOutcome, RemoteProtocol

log = logger.bind(component="probe")

type Connect = Callable[[tuple[str, int]], socket.socket]


class ReachabilityProbe(Protocol):
    def __call__(self, host: str, port: int) -> ProbeOutcome: ...


def _connect(address: tuple[str, int]) -> socket.socket:
    return socket.create_connection(address)


def _describe(error: OSError) -> str:
    return f"{type(error).__name__}: {error.strerror or error}"


class ShellProbe:
    """Succeeds once the shell daemon sends a non-empty banner line.

    Args:
        banner_timeout: Seconds to wait for the socket to become readable.
        connect: Socket factory, injectable for tests.
    """

    __slots__ = ("_banner_timeout", "_connect")

    def __init__(self, banner_timeout: float = BANNER_TIMEOUT, connect: Connect = _connect) -> None:
        self._banner_timeout = banner_timeout
        self._connect = connect

    def __call__(self, host: str, port: int) -> ProbeOutcome:
        try:
            with self._connect((host, port)) as sock:
                readable, _, _ = select.select([sock], [], [], self._banner_timeout)
                if not readable:
                    return NotReady(f"no banner from {host}:{port}")
                sock.settimeout(self._banner_timeout)
                with sock.makefile("rb") as stream:
                    banner = stream.readline()
        except OSError as e:
            log.debug("ssh failed to connect to {host}:{port}: {err}", host=host, port=port, err=_describe(e))
            return NotReady(_describe(e))

        if not banner:
            return NotReady(f"empty banner from {host}:{port}")
        log.debug(
            "sshd accepting connections on {host}:{port}, banner is {banner}",
            host=host,
            port=port,
            banner=banner.decode(errors="replace").strip(),
        )
        return READY


class ManagementProbe:
    """Succeeds once the management listener accepts a TCP connection.

    Through a gateway the accepting side is the local ``ssh -L`` forwarder,
    which takes every connection and only closes it once the gateway fails
    to reach the target. With ``close_window`` set, a connection closed by
    the peer within that many seconds is not ready.

    Args:
        close_window: Seconds to watch for the peer closing the connection.
            Zero accepts the connection as is.
        connect: Socket factory, injectable for tests.
    """

    __slots__ = ("_close_window", "_connect")

    def __init__(self, close_window: float = 0.0, connect: Connect = _connect) -> None:
        self._close_window = close_window
        self._connect = connect

    def __call__(self, host: str, port: int) -> ProbeOutcome:
        try:
            with self._connect((host, port)) as sock:
                closed = self._closed_by_peer(sock)
        except OSError as e:
            log.debug("winrm not reachable on {host}:{port}: {err}", host=host, port=port, err=_describe(e))
            return NotReady(_describe(e))
        if closed:
            log.debug("{host}:{port} closed the connection, target not reachable yet", host=host, port=port)
            return NotReady(f"{host}:{port} closed the connection")
        return READY

    def _closed_by_peer(self, sock: socket.socket) -> bool:
        if self._close_window <= 0:
            return False
        readable, _, _ = select.select([sock], [], [], self._close_window)
        # The listener never speaks first, so readable means EOF or reset.
        return bool(readable) and not sock.recv(1)


def probe_for(
    protocol: RemoteProtocol,
    settings: ProbeSettings | None = None,
    *,
    tunnelled: bool = False,
) -> ReachabilityProbe:
    """Build the probe for ``protocol``, watching for forwarder closes when tunnelled."""
    settings = settings or ProbeSettings()
    match protocol:
        case RemoteProtocol.SHELL:
            return ShellProbe(banner_timeout=settings.banner_timeout)
        case RemoteProtocol.MANAGEMENT:
            return ManagementProbe(close_window=settings.tunnel_close_window if tunnelled else 0.0)


class ReachabilityWaiter:
    """Polls a probe until the target answers, directly or through a gateway."""

    def __init__(
        self,
        probe: ReachabilityProbe,
        *,
        settings: ProbeSettings | None = None,
        tunnels: TunnelManager | None = None,
        sleep: Sleep = time.sleep,
        progress: Progress | None = None,
    ) -> None:
        self._probe = probe
        self._settings = settings or ProbeSettings()
        self._tunnels = tunnels or TunnelManager()
        self._sleep = sleep
        self._progress = progress

    def attempt(
        self,
        host: str,
        port: int,
        gateway: GatewayDescriptor | None = None,
    ) -> ProbeOutcome:
        """Run one probe attempt, through a fresh tunnel when a gateway is set."""
        if gateway is None:
            return self._probe(host, port)
        return self._tunnels.with_tunnel(
            gateway, host, port, lambda local_port: self._probe(LOCALHOST, local_port),
        )

    def wait(
        self,
        host: str,
        port: int,
        *,
        gateway: GatewayDescriptor | None = None,
        private_network: bool = False,
        max_attempts: int | None = None,
    ) -> int:
        """Block until the target is reachable.

        Args:
            private_network: The target has no public egress, which makes
                its boot slower; a longer initial delay is used.
            max_attempts: Optional cap, for bounded callers.

        Returns:
            Number of attempts made.
        """
        if self._progress is not None:
            if gateway is None:
                self._progress.begin(f"Waiting for {host}:{port} to accept connections")
            else:
                self._progress.begin(f"Waiting for {host}:{port} via gateway {gateway}")

        initial_delay = (
            self._settings.private_initial_delay if private_network else self._settings.initial_delay
        )
        return poll(
            lambda: self.attempt(host, port, gateway),
            interval=self._settings.interval,
            initial_delay=initial_delay,
            sleep=self._sleep,
            progress=self._progress,
            max_attempts=max_attempts,
            description=f"{host}:{port}",
        )
