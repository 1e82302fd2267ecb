"""SSH gateway resolution.

A target is tunnelled when either an explicit gateway is configured or the
local SSH client configuration routes the target through a
``ProxyCommand ssh <gateway> nc %h %p`` directive. Gateway user, port and
keys default from the SSH client configuration entry for the gateway host.
"""

from __future__ import annotations

import os
import re
from collections.abc import Sequence
from pathlib import Path

import paramiko
from loguru import logger

from landfall.constants import DEFAULT_SSH_PORT
from landfall.exceptions import ConfigurationError
from landfall.types import GatewayDescriptor

log = logger.bind(component="gateway")

_PROXY_PATTERN = re.compile(r"ssh\s+(\S+)\s+nc")


def load_ssh_config(path: str | os.PathLike[str] | None = None) -> paramiko.SSHConfig:
    """Load the local SSH client configuration, or an empty one if absent."""
    config_path = Path(path).expanduser() if path else Path.home() / ".ssh" / "config"
    if not config_path.is_file():
        return paramiko.SSHConfig()
    return paramiko.SSHConfig.from_path(str(config_path))


def parse_gateway(target: str) -> tuple[str | None, str, int | None]:
    """Split ``[user@]host[:port]`` into its parts.

    Raises:
        ConfigurationError: If the host is empty or the port is not a number.
    """
    user, _, hostport = target.rpartition("@")
    host, _, port = hostport.partition(":")
    if not host:
        raise ConfigurationError(f"Invalid SSH gateway '{target}': missing host")
    if port and not port.isdigit():
        raise ConfigurationError(f"Invalid SSH gateway '{target}': port must be a number")
    return user or None, host, int(port) if port else None


def gateway_from_proxy_command(command: str) -> str | None:
    """Extract the gateway host from ``ssh <host> nc %h %p`` style commands."""
    if match := _PROXY_PATTERN.search(command):
        return match.group(1)
    return None


class GatewayResolver:
    """Decides whether a target needs a tunnel, and through which gateway.

    Args:
        ssh_config: Parsed local SSH client configuration.
        explicit_gateway: Configured ``[user@]host[:port]``; takes precedence
            over anything in ``ssh_config``.
        identities: Gateway key files; override keys from ``ssh_config``.
    """

    def __init__(
        self,
        ssh_config: paramiko.SSHConfig | None = None,
        *,
        explicit_gateway: str | None = None,
        identities: Sequence[str] = (),
    ) -> None:
        self._ssh_config = ssh_config if ssh_config is not None else paramiko.SSHConfig()
        self._explicit = explicit_gateway
        self._identities = tuple(identities)

    def resolve(self, target_host: str) -> GatewayDescriptor | None:
        if self._explicit:
            log.debug("Using ssh gateway {gw} from configuration", gw=self._explicit)
            return self._describe(self._explicit)

        proxy = self._ssh_config.lookup(target_host).get("proxycommand")
        if not proxy:
            log.debug("No ssh gateway found, making a direct connection to {host}", host=target_host)
            return None

        gateway_host = gateway_from_proxy_command(proxy)
        if gateway_host is None:
            log.debug(
                "Unable to determine ssh gateway for {host} from proxy command: {cmd}",
                host=target_host,
                cmd=proxy,
            )
            return None

        log.debug("Using ssh gateway {gw} from ssh config", gw=gateway_host)
        return self._describe(gateway_host)

    def _describe(self, target: str) -> GatewayDescriptor:
        user, host, port = parse_gateway(target)
        entry = self._ssh_config.lookup(host)

        if self._identities:
            keys = self._identities
        else:
            keys = tuple(entry.get("identityfile", ()))

        return GatewayDescriptor(
            host=host,
            user=user or entry.get("user"),
            port=port or int(entry.get("port", DEFAULT_SSH_PORT)),
            keys=tuple(os.path.expanduser(k) for k in keys),
        )
