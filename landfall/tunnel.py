"""Local port forwarding through an SSH gateway.

Each probe attempt gets its own tunnel: an ``ssh -N -L`` process forwarding
a free local port to the target, torn down before the attempt returns.
"""

from __future__ import annotations

import socket
import subprocess
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from subprocess import PIPE, Popen

from loguru import logger
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from landfall.constants import TUNNEL_CONNECT_TIMEOUT, TUNNEL_READY_TIMEOUT
from landfall.exceptions import ConfigurationError, TunnelSetupError
from landfall.types import Fatal, GatewayDescriptor, NotReady, ProbeOutcome

log = logger.bind(component="tunnel")

type PortProbe = Callable[[int], ProbeOutcome]


class TunnelNotReadyError(Exception):
    """Tunnel not ready - retry."""


def find_available_port() -> int:
    """Find an available local port."""
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        port: int = s.getsockname()[1]
        return port


def tunnel_command(
    gateway: GatewayDescriptor,
    target_host: str,
    target_port: int,
    local_port: int,
    *,
    ssh_binary: str = "ssh",
    connect_timeout: int = TUNNEL_CONNECT_TIMEOUT,
) -> list[str]:
    cmd = [
        ssh_binary,
        "-o", "StrictHostKeyChecking=no",
        "-o", "UserKnownHostsFile=/dev/null",
        "-o", "LogLevel=ERROR",
        "-o", "BatchMode=yes",
        "-o", "ExitOnForwardFailure=yes",
        "-o", f"ConnectTimeout={connect_timeout}",
        "-N",
        "-L", f"{local_port}:{target_host}:{target_port}",
        "-p", str(gateway.port),
    ]
    for key in gateway.keys:
        cmd.extend(["-i", key])
    cmd.append(gateway.destination)
    return cmd


@dataclass(slots=True)
class TunnelSession:
    """A live forward from ``localhost:local_port`` to the target."""

    gateway: GatewayDescriptor
    local_port: int
    process: Popen[bytes]

    def close(self) -> None:
        if self.process.poll() is not None:
            return
        self.process.terminate()
        try:
            self.process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            self.process.kill()
            self.process.wait()


def wait_for_tunnel(session: TunnelSession, timeout: int = TUNNEL_READY_TIMEOUT) -> None:
    """Wait until the forwarded port accepts connections.

    Raises:
        TunnelSetupError: If the ssh process exits, e.g. on permission denied.
        TimeoutError: If the port does not open within ``timeout``.
    """

    @retry(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(0.5),
        retry=retry_if_exception_type(TunnelNotReadyError),
        reraise=True,
    )
    def _check() -> None:
        if session.process.poll() is not None:
            stderr = session.process.stderr.read().decode(errors="replace") if session.process.stderr else ""
            raise TunnelSetupError(str(session.gateway), stderr.strip() or "ssh exited")
        try:
            with socket.create_connection(("127.0.0.1", session.local_port), timeout=1):
                return
        except OSError:
            raise TunnelNotReadyError() from None

    try:
        _check()
    except (RetryError, TunnelNotReadyError) as e:
        raise TimeoutError(f"Tunnel not ready on port {session.local_port}") from e


class TunnelManager:
    """Opens one gateway tunnel per probe attempt.

    Args:
        ssh_binary: ssh client executable.
        ready_timeout: Seconds to wait for the forwarded port to open.
        popen: Process factory, injectable for tests.
        port_finder: Free local port allocator, injectable for tests.
    """

    def __init__(
        self,
        *,
        ssh_binary: str = "ssh",
        ready_timeout: int = TUNNEL_READY_TIMEOUT,
        popen: Callable[..., Popen[bytes]] = subprocess.Popen,
        port_finder: Callable[[], int] = find_available_port,
    ) -> None:
        self._ssh_binary = ssh_binary
        self._ready_timeout = ready_timeout
        self._popen = popen
        self._port_finder = port_finder

    @contextmanager
    def open(
        self,
        gateway: GatewayDescriptor,
        target_host: str,
        target_port: int,
    ) -> Iterator[TunnelSession]:
        local_port = self._port_finder()
        cmd = tunnel_command(
            gateway, target_host, target_port, local_port, ssh_binary=self._ssh_binary,
        )
        log.debug(
            "Opening tunnel localhost:{local} -> {host}:{port} via {gw}",
            local=local_port,
            host=target_host,
            port=target_port,
            gw=gateway,
        )
        session = TunnelSession(
            gateway=gateway,
            local_port=local_port,
            process=self._popen(cmd, stdin=PIPE, stdout=PIPE, stderr=PIPE),
        )
        try:
            wait_for_tunnel(session, timeout=self._ready_timeout)
            yield session
        finally:
            session.close()

    def with_tunnel(
        self,
        gateway: GatewayDescriptor,
        target_host: str,
        target_port: int,
        fn: PortProbe,
    ) -> ProbeOutcome:
        """Run ``fn(local_port)`` through a fresh tunnel and tear it down.

        Any failure to bring the tunnel up counts as not ready: while the
        target is booting the gateway may refuse us too. A missing ssh
        client is a configuration problem and is fatal.
        """
        try:
            with self.open(gateway, target_host, target_port) as session:
                return fn(session.local_port)
        except FileNotFoundError:
            return Fatal(ConfigurationError(
                f"ssh client '{self._ssh_binary}' not found; it is required to tunnel through {gateway}"
            ))
        except (TunnelSetupError, TimeoutError, OSError) as e:
            return NotReady(f"tunnel via {gateway}: {e}")
