"""Provisioning configuration.

``ProvisionConfig`` is built once, frozen, and handed to every component.
Profiles live in TOML: ``~/.landfall/defaults.toml`` (global) is merged
with ``landfall.toml`` (project) and a named ``[profiles.<name>]`` table is
resolved into a ``ProvisionConfig``.

Example ``landfall.toml``::

    [profiles.web]
    region = "eu-west-1"
    subnet_id = "subnet-0abc"
    ssh_user = "ubuntu"
    identity_file = "~/.ssh/web.pem"
    ssh_gateway = "ops@bastion.example.com:2222"

    [profiles.web.tags]
    Team = "platform"

    [profiles.web.retry]
    max_attempts = 10
"""

from __future__ import annotations

import tomllib
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from landfall.constants import (
    BANNER_TIMEOUT,
    CREDENTIAL_POLL_INTERVAL,
    DEFAULT_SSH_PORT,
    DEFAULT_SSH_USER,
    DEFAULT_WINRM_PORT,
    DEFAULT_WINRM_USER,
    NIC_POLL_INTERVAL,
    PROBE_INITIAL_DELAY,
    PROBE_INTERVAL,
    PROBE_PRIVATE_INITIAL_DELAY,
    READINESS_INTERVAL,
    TAG_RETRY_ATTEMPTS,
    TAG_RETRY_DELAY,
    TUNNEL_CLOSE_WINDOW,
)
from landfall.exceptions import ConfigurationError
from landfall.types import RemoteProtocol

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".landfall" / "defaults.toml"
PROJECT_CONFIG_NAME = "landfall.toml"
DEFAULT_SSH_CONFIG_PATH = Path.home() / ".ssh" / "config"

CONNECT_ATTRIBUTES = frozenset({
    "public_ip_address",
    "private_ip_address",
    "dns_name",
    "private_dns_name",
})


@dataclass(frozen=True, slots=True)
class RetrySettings:
    """Budget for control-plane calls that race the provider's consistency."""

    max_attempts: int = TAG_RETRY_ATTEMPTS
    delay: float = TAG_RETRY_DELAY


@dataclass(frozen=True, slots=True)
class ProbeSettings:
    """Reachability polling policy.

    Args:
        initial_delay: Wait before the first attempt for hosts with public egress.
        private_initial_delay: Wait before the first attempt for hosts only
            reachable on a private network.
        interval: Wait between attempts.
        banner_timeout: How long the shell probe waits for the banner.
        tunnel_close_window: How long a tunnelled management probe watches
            for the forwarder closing the connection.
    """

    initial_delay: float = PROBE_INITIAL_DELAY
    private_initial_delay: float = PROBE_PRIVATE_INITIAL_DELAY
    interval: float = PROBE_INTERVAL
    banner_timeout: float = BANNER_TIMEOUT
    tunnel_close_window: float = TUNNEL_CLOSE_WINDOW


@dataclass(frozen=True, slots=True)
class ProvisionConfig:
    """Immutable configuration for one provisioning run.

    Args:
        region: AWS region of the instance.
        subnet_id: Subnet the instance was launched into. Its presence means
            the instance lives in a VPC.
        associate_public_ip: Whether a public address was requested in the VPC.
        associate_eip: Elastic IP to associate with the instance.
        network_interfaces: Extra ENIs to attach, in device index order.
        tags: Tags to apply. ``Name`` defaults to ``node_name`` or the instance id.
        type_tag: Value of the ``Type`` tag, if any.
        node_name: Name of the node being bootstrapped.
        server_connect_attribute: Instance attribute used as the connect address.
        bootstrap_protocol: ``shell`` or ``management``; Windows only.
        ssh_gateway: ``[user@]host[:port]`` of the SSH gateway.
        ssh_gateway_identity: Key files for the gateway, overriding SSH config.
        ssh_config_path: Path of the local SSH client configuration.
        identity_file: Private key for the target; also decrypts the
            Windows administrator password.
        monitoring: Create CloudWatch alarms once handed off.
        cloudwatch_alarms: ``put_metric_alarm`` arguments per alarm.
        alarm_actions: ARNs notified by every alarm.
    """

    region: str = "us-east-1"
    subnet_id: str | None = None
    associate_public_ip: bool = False
    associate_eip: str | None = None
    network_interfaces: tuple[str, ...] = ()
    tags: Mapping[str, str] = field(default_factory=dict)
    type_tag: str | None = None
    node_name: str | None = None
    server_connect_attribute: str | None = None

    bootstrap_protocol: str | None = None

    ssh_user: str = DEFAULT_SSH_USER
    ssh_port: int = DEFAULT_SSH_PORT
    ssh_password: str | None = field(default=None, repr=False)
    identity_file: str | None = None
    ssh_gateway: str | None = None
    ssh_gateway_identity: tuple[str, ...] = ()
    ssh_config_path: str | None = None

    winrm_user: str = DEFAULT_WINRM_USER
    winrm_port: int = DEFAULT_WINRM_PORT
    winrm_password: str | None = field(default=None, repr=False)
    kerberos_keytab_file: str | None = None

    retry: RetrySettings = field(default_factory=RetrySettings)
    probe: ProbeSettings = field(default_factory=ProbeSettings)
    readiness_interval: float = READINESS_INTERVAL
    nic_poll_interval: float = NIC_POLL_INTERVAL
    credential_poll_interval: float = CREDENTIAL_POLL_INTERVAL

    monitoring: bool = False
    cloudwatch_alarms: tuple[Mapping[str, Any], ...] = ()
    alarm_actions: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if (
            self.server_connect_attribute is not None
            and self.server_connect_attribute not in CONNECT_ATTRIBUTES
        ):
            raise ConfigurationError(
                f"Unknown server connect attribute '{self.server_connect_attribute}'. "
                f"Valid: {', '.join(sorted(CONNECT_ATTRIBUTES))}"
            )
        if self.retry.max_attempts < 1:
            raise ConfigurationError("retry.max_attempts must be at least 1")

    @property
    def vpc_mode(self) -> bool:
        return self.subnet_id is not None

    @property
    def private_network_only(self) -> bool:
        """True when the target is reachable only through its private address."""
        return self.vpc_mode and not self.associate_public_ip

    @property
    def eip_scope(self) -> str:
        return "vpc" if self.vpc_mode else "standard"

    def requested_protocol(self) -> RemoteProtocol | None:
        if self.bootstrap_protocol is None:
            return None
        try:
            return RemoteProtocol(self.bootstrap_protocol)
        except ValueError:
            raise ConfigurationError(
                f"Unsupported bootstrap protocol '{self.bootstrap_protocol}'. "
                f"Supported: {', '.join(p.value for p in RemoteProtocol)}"
            ) from None

    def with_shell_from_management(self) -> ProvisionConfig:
        """Carry management credentials over to the shell side.

        Applies only to shell settings still at their defaults, so explicit
        shell settings always win.
        """
        changes: dict[str, Any] = {}
        if self.ssh_user == DEFAULT_SSH_USER and self.winrm_user != DEFAULT_WINRM_USER:
            changes["ssh_user"] = self.winrm_user
        if self.ssh_port == DEFAULT_SSH_PORT and self.winrm_port != DEFAULT_WINRM_PORT:
            changes["ssh_port"] = self.winrm_port
        if self.ssh_password is None and self.winrm_password is not None:
            changes["ssh_password"] = self.winrm_password
        if self.identity_file is None and self.kerberos_keytab_file is not None:
            changes["identity_file"] = self.kerberos_keytab_file
        return replace(self, **changes) if changes else self


# =============================================================================
# TOML Loading
# =============================================================================


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        try:
            return tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("defaults", {})
    merged.setdefault("profiles", {})
    return merged


def parse_tags(pairs: Sequence[str]) -> dict[str, str]:
    """Parse ``Key=Value`` strings into a tag mapping.

    Raises:
        ConfigurationError: If an entry does not contain exactly one ``=``.
    """
    tags: dict[str, str] = {}
    for pair in pairs:
        if pair.count("=") != 1:
            raise ConfigurationError(
                f"Invalid tag '{pair}'. Tags must be given as Tag=Value"
            )
        key, value = pair.split("=")
        tags[key] = value
    return tags


_TUPLE_FIELDS = ("network_interfaces", "ssh_gateway_identity", "alarm_actions", "cloudwatch_alarms")


def build_config(raw: RawConfig) -> ProvisionConfig:
    """Build a ``ProvisionConfig`` from a TOML table.

    Raises:
        ConfigurationError: On unknown keys or malformed nested tables.
    """
    raw = dict(raw)
    known = {f.name for f in fields(ProvisionConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")

    try:
        if "retry" in raw:
            raw["retry"] = RetrySettings(**raw["retry"])
        if "probe" in raw:
            raw["probe"] = ProbeSettings(**raw["probe"])
    except TypeError as e:
        raise ConfigurationError(f"Invalid nested configuration: {e}") from e

    for name in _TUPLE_FIELDS:
        match raw.get(name):
            case None:
                pass
            case str() as single:
                raw[name] = (single,)
            case values:
                raw[name] = tuple(values)
    if isinstance(raw.get("tags"), list):
        raw["tags"] = parse_tags(raw["tags"])
    if "tags" in raw and not isinstance(raw["tags"], Mapping):
        raise ConfigurationError("'tags' must be a table of Key = \"Value\" pairs")

    return ProvisionConfig(**raw)


def resolve_profile(
    name: str | None = None,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> ProvisionConfig:
    """Resolve a named profile, layered over the ``[defaults]`` table."""
    config = load_config(project_dir=project_dir, global_path=global_path)
    raw = dict(config["defaults"])

    if name is not None:
        profiles = config["profiles"]
        if name not in profiles:
            raise ConfigurationError(
                f"Profile '{name}' not found. Available: {', '.join(profiles) or 'none'}"
            )
        raw = _deep_merge(raw, profiles[name])

    return build_config(raw)
