"""Core value types shared by every provisioning step."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from landfall.constants import InstanceState


class RemoteProtocol(StrEnum):
    """Protocol used to reach the instance for bootstrap."""

    SHELL = "shell"
    MANAGEMENT = "management"


class Platform(StrEnum):
    LINUX = "linux"
    WINDOWS = "windows"


# =============================================================================
# Cloud Resources
# =============================================================================


@dataclass(frozen=True, slots=True)
class Instance:
    """Snapshot of an EC2 instance as last reported by the provider.

    Never mutated locally: every state change is observed by describing
    the instance again.
    """

    id: str
    state: str
    public_ip_address: str | None = None
    private_ip_address: str | None = None
    dns_name: str | None = None
    private_dns_name: str | None = None
    subnet_id: str | None = None
    vpc_id: str | None = None
    platform: Platform = Platform.LINUX
    network_interface_ids: tuple[str, ...] = ()

    @property
    def is_running(self) -> bool:
        return self.state == InstanceState.RUNNING

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> Instance:
        platform = Platform.WINDOWS if raw.get("Platform") == "windows" else Platform.LINUX
        return cls(
            id=raw["InstanceId"],
            state=raw.get("State", {}).get("Name", ""),
            public_ip_address=raw.get("PublicIpAddress") or None,
            private_ip_address=raw.get("PrivateIpAddress") or None,
            dns_name=raw.get("PublicDnsName") or None,
            private_dns_name=raw.get("PrivateDnsName") or None,
            subnet_id=raw.get("SubnetId"),
            vpc_id=raw.get("VpcId"),
            platform=platform,
            network_interface_ids=tuple(
                nic["NetworkInterfaceId"] for nic in raw.get("NetworkInterfaces", [])
            ),
        )


@dataclass(frozen=True, slots=True)
class ElasticAddress:
    public_ip: str
    domain: str
    allocation_id: str | None = None
    instance_id: str | None = None

    @property
    def is_associated(self) -> bool:
        return self.instance_id is not None


@dataclass(frozen=True, slots=True)
class GatewayDescriptor:
    """SSH gateway used to tunnel to a host with no direct route."""

    host: str
    user: str | None = None
    port: int = 22
    keys: tuple[str, ...] = ()

    @property
    def destination(self) -> str:
        return f"{self.user}@{self.host}" if self.user else self.host

    def __str__(self) -> str:
        return f"{self.destination}:{self.port}"


# =============================================================================
# Poll Outcomes
# =============================================================================


@dataclass(frozen=True, slots=True)
class Ready:
    """The polled condition holds."""


@dataclass(frozen=True, slots=True)
class NotReady:
    """Keep polling; ``reason`` is only used for debug logging."""

    reason: str = ""


@dataclass(frozen=True, slots=True)
class Fatal:
    """Stop polling and surface ``error`` to the operator."""

    error: Exception


type ProbeOutcome = Ready | NotReady | Fatal

READY = Ready()


# =============================================================================
# Handoff
# =============================================================================


@dataclass(frozen=True, slots=True)
class Handoff:
    """Everything the bootstrap executor needs to take over the instance."""

    instance_id: str
    address: str
    port: int
    protocol: RemoteProtocol
    user: str | None = None
    node_name: str | None = None
    identity_file: str | None = None
    gateway: GatewayDescriptor | None = None
    credential: str | None = field(default=None, repr=False)
