"""End-to-end post-create workflow.

Takes a freshly created instance and drives it, step by step, to the
point where a bootstrap executor can take over::

    Created -> Ready -> Tagged -> (NicsAttached) -> ReachabilityConfirmed
            -> (CredentialResolved) -> HandedOff

No step starts before its predecessor's success condition was observed.
A failure aborts the remaining steps; nothing is rolled back, so the
instance stays around for the operator to inspect.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum

import paramiko
from botocore.exceptions import ClientError
from loguru import logger

from landfall.cloud import ControlPlane
from landfall.config import ProvisionConfig
from landfall.credentials import CredentialRetriever
from landfall.exceptions import ConfigurationError, ProvisioningError
from landfall.gateway import GatewayResolver, load_ssh_config
from landfall.monitoring import MonitoringConfigurator
from landfall.nics import NicAttachmentWaiter, validate_interfaces
from landfall.poll import Sleep
from landfall.probe import ReachabilityProbe, ReachabilityWaiter, probe_for
from landfall.progress import ConsoleProgress, Progress
from landfall.readiness import ReadinessWaiter, has_public_ip
from landfall.retry import RetryPolicy, is_control_plane_transient
from landfall.tunnel import TunnelManager
from landfall.types import (
    ElasticAddress,
    GatewayDescriptor,
    Handoff,
    Instance,
    Platform,
    RemoteProtocol,
)

log = logger.bind(component="orchestrator")

type BootstrapExecutor = Callable[[Handoff], None]


class ProvisioningState(StrEnum):
    CREATED = "created"
    READY = "ready"
    TAGGED = "tagged"
    NICS_ATTACHED = "nics-attached"
    REACHABILITY_CONFIRMED = "reachability-confirmed"
    CREDENTIAL_RESOLVED = "credential-resolved"
    HANDED_OFF = "handed-off"


# =============================================================================
# Step Helpers
# =============================================================================


def build_tags(config: ProvisionConfig, instance_id: str) -> dict[str, str]:
    """Tags to apply: ``Type``, the configured tags, and always a ``Name``."""
    tags: dict[str, str] = {}
    if config.type_tag is not None:
        tags["Type"] = config.type_tag
    tags.update(config.tags)
    tags.setdefault("Name", config.node_name or instance_id)
    return tags


def select_protocol(config: ProvisionConfig, platform: Platform) -> RemoteProtocol:
    """Linux always uses the shell protocol; Windows defaults to management."""
    requested = config.requested_protocol()
    if platform is Platform.LINUX:
        return RemoteProtocol.SHELL
    return requested or RemoteProtocol.MANAGEMENT


def connect_address(instance: Instance, config: ProvisionConfig) -> str:
    """Address used to reach the instance.

    Raises:
        ProvisioningError: If the instance has no address of the wanted kind.
    """
    if config.server_connect_attribute:
        address = getattr(instance, config.server_connect_attribute)
        source = config.server_connect_attribute
    elif config.private_network_only:
        address = instance.private_ip_address
        source = "private_ip_address"
    else:
        address = instance.dns_name or instance.public_ip_address
        source = "dns_name/public_ip_address"

    if not address:
        raise ProvisioningError(f"Instance {instance.id} has no {source} to connect to")
    return address


@dataclass(slots=True)
class RunContext:
    """Runtime state derived while provisioning one instance."""

    instance_id: str
    config: ProvisionConfig
    state: ProvisioningState = ProvisioningState.CREATED
    history: list[ProvisioningState] = field(default_factory=lambda: [ProvisioningState.CREATED])
    instance: Instance | None = None
    protocol: RemoteProtocol | None = None
    elastic_ip: ElasticAddress | None = None
    tags: Mapping[str, str] = field(default_factory=dict)
    attachments: tuple[str, ...] = ()
    address: str | None = None
    port: int | None = None
    gateway: GatewayDescriptor | None = None
    credential: str | None = field(default=None, repr=False)

    def advance(self, state: ProvisioningState) -> None:
        log.debug(
            "{id}: {old} -> {new}",
            id=self.instance_id,
            old=self.state.value,
            new=state.value,
        )
        self.state = state
        self.history.append(state)


# =============================================================================
# Orchestrator
# =============================================================================


class ProvisioningOrchestrator:
    """Sequences readiness, tagging, NIC attachment, reachability and credentials.

    Args:
        config: Immutable run configuration.
        plane: Cloud control plane.
        progress: Operator progress reporter. Defaults to the console.
        sleep: Sleep function shared by every waiting step.
        ssh_config: Local SSH client configuration. Loaded from
            ``config.ssh_config_path`` when omitted.
        tunnels: Gateway tunnel manager.
        probe: Reachability probe overriding the protocol default.
        monitoring: CloudWatch alarm configurator.
    """

    def __init__(
        self,
        config: ProvisionConfig,
        plane: ControlPlane,
        *,
        progress: Progress | None = None,
        sleep: Sleep = time.sleep,
        ssh_config: paramiko.SSHConfig | None = None,
        tunnels: TunnelManager | None = None,
        probe: ReachabilityProbe | None = None,
        monitoring: MonitoringConfigurator | None = None,
    ) -> None:
        self.config = config
        self.plane = plane
        self._progress = progress or ConsoleProgress()
        self._sleep = sleep
        self._ssh_config = ssh_config
        self._tunnels = tunnels or TunnelManager()
        self._probe = probe
        self._monitoring = monitoring
        self.context: RunContext | None = None

    def run(self, instance_id: str, bootstrap: BootstrapExecutor | None = None) -> Handoff:
        """Drive ``instance_id`` to a reachable state and hand it off.

        Args:
            instance_id: Id of an instance that was just created.
            bootstrap: Called exactly once with the handoff bundle.

        Returns:
            The handoff bundle.
        """
        ctx = RunContext(instance_id=instance_id, config=self.config)
        self.context = ctx

        with logger.contextualize(instance_id=instance_id):
            log.info("Provisioning {id}", id=instance_id)
            self._prepare(ctx)
            self._wait_ready(ctx)
            self._tag(ctx)
            if ctx.config.network_interfaces:
                self._attach_nics(ctx)
            self._confirm_reachability(ctx)
            self._resolve_credential(ctx)
            handoff = self._hand_off(ctx, bootstrap)
            if ctx.config.monitoring:
                self._configure_monitoring(ctx)
        return handoff

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _retry_policy(self, description: str) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.config.retry.max_attempts,
            delay=self.config.retry.delay,
            retryable=is_control_plane_transient,
            sleep=self._sleep,
            description=description,
        )

    def _prepare(self, ctx: RunContext) -> None:
        """Pick the protocol and validate requested resources before waiting."""
        config = ctx.config
        instance = self._retry_policy("describe instance").execute(
            lambda: self.plane.describe_instance(ctx.instance_id),
        )
        ctx.instance = instance
        ctx.protocol = select_protocol(config, instance.platform)
        if ctx.protocol is RemoteProtocol.SHELL:
            ctx.config = config.with_shell_from_management()
        log.info(
            "Instance {id} ({platform}) will be reached over {protocol}",
            id=instance.id,
            platform=instance.platform.value,
            protocol=ctx.protocol.value,
        )

        if config.associate_eip:
            address = self.plane.find_address(config.associate_eip, config.eip_scope)
            if address is None or address.is_associated:
                raise ConfigurationError(
                    f"Elastic IP {config.associate_eip} is not available in scope '{config.eip_scope}'"
                )
            ctx.elastic_ip = address

        if config.network_interfaces:
            vpc_id = self.plane.subnet_vpc_id(config.subnet_id) if config.subnet_id else None
            validate_interfaces(self.plane, config.network_interfaces, vpc_id)

    def _wait_ready(self, ctx: RunContext) -> None:
        waiter = ReadinessWaiter(
            self.plane,
            interval=ctx.config.readiness_interval,
            sleep=self._sleep,
            progress=self._progress,
        )
        ctx.instance = waiter.wait(ctx.instance_id)
        ctx.advance(ProvisioningState.READY)

    def _tag(self, ctx: RunContext) -> None:
        """Apply tags and associate the elastic IP, retried together."""
        ctx.tags = build_tags(ctx.config, ctx.instance_id)
        policy = self._retry_policy("tag application")

        def _apply() -> None:
            self.plane.create_tags(ctx.instance_id, ctx.tags)
            if ctx.elastic_ip is not None:
                self._associate_eip(ctx, ctx.elastic_ip)

        try:
            policy.execute(_apply)
        except ClientError as e:
            raise ProvisioningError(
                f"Tagging {ctx.instance_id} failed after {policy.attempts} attempts: {e}"
            ) from e

        log.info(
            "Tagged {id}: {tags}",
            id=ctx.instance_id,
            tags=", ".join(f"{k}: {v}" for k, v in ctx.tags.items()),
        )
        ctx.advance(ProvisioningState.TAGGED)

    def _associate_eip(self, ctx: RunContext, address: ElasticAddress) -> None:
        self.plane.associate_address(ctx.instance_id, address)
        ctx.instance = ReadinessWaiter(
            self.plane,
            interval=ctx.config.readiness_interval,
            sleep=self._sleep,
            progress=self._progress,
        ).wait(
            ctx.instance_id,
            has_public_ip(address.public_ip),
            message=f"Waiting for {address.public_ip} to be associated",
        )

    def _attach_nics(self, ctx: RunContext) -> None:
        waiter = NicAttachmentWaiter(
            self.plane,
            interval=ctx.config.nic_poll_interval,
            sleep=self._sleep,
            progress=self._progress,
        )
        ctx.attachments = waiter.attach(ctx.instance_id, ctx.config.network_interfaces)
        ctx.advance(ProvisioningState.NICS_ATTACHED)

    def _confirm_reachability(self, ctx: RunContext) -> None:
        config = ctx.config
        assert ctx.protocol is not None

        # Addresses may have changed since the instance became ready.
        ctx.instance = self._retry_policy("describe instance").execute(
            lambda: self.plane.describe_instance(ctx.instance_id),
        )
        ctx.address = connect_address(ctx.instance, config)
        ctx.port = config.ssh_port if ctx.protocol is RemoteProtocol.SHELL else config.winrm_port

        ssh_config = self._ssh_config if self._ssh_config is not None else load_ssh_config(config.ssh_config_path)
        resolver = GatewayResolver(
            ssh_config,
            explicit_gateway=config.ssh_gateway,
            identities=config.ssh_gateway_identity,
        )
        ctx.gateway = resolver.resolve(ctx.address)

        tunnelled = ctx.gateway is not None
        probe = self._probe or probe_for(ctx.protocol, config.probe, tunnelled=tunnelled)
        waiter = ReachabilityWaiter(
            probe,
            settings=config.probe,
            tunnels=self._tunnels,
            sleep=self._sleep,
            progress=self._progress,
        )
        waiter.wait(
            ctx.address,
            ctx.port,
            gateway=ctx.gateway,
            private_network=config.private_network_only,
        )
        ctx.advance(ProvisioningState.REACHABILITY_CONFIRMED)

    def _resolve_credential(self, ctx: RunContext) -> None:
        config = ctx.config
        assert ctx.instance is not None

        if ctx.protocol is RemoteProtocol.SHELL:
            ctx.credential = config.ssh_password
            return
        if config.winrm_password is not None:
            ctx.credential = config.winrm_password
            return
        if ctx.instance.platform is not Platform.WINDOWS:
            return

        retriever = CredentialRetriever(
            self.plane,
            interval=config.credential_poll_interval,
            sleep=self._sleep,
            progress=self._progress,
        )
        ctx.credential = retriever.retrieve(ctx.instance_id, config.identity_file)
        ctx.advance(ProvisioningState.CREDENTIAL_RESOLVED)

    def _hand_off(self, ctx: RunContext, bootstrap: BootstrapExecutor | None) -> Handoff:
        assert ctx.address is not None and ctx.port is not None and ctx.protocol is not None
        config = ctx.config
        handoff = Handoff(
            instance_id=ctx.instance_id,
            address=ctx.address,
            port=ctx.port,
            protocol=ctx.protocol,
            user=config.ssh_user if ctx.protocol is RemoteProtocol.SHELL else config.winrm_user,
            node_name=config.node_name or ctx.instance_id,
            identity_file=config.identity_file,
            gateway=ctx.gateway,
            credential=ctx.credential,
        )
        if bootstrap is not None:
            log.info("Handing {id} off to bootstrap at {addr}", id=ctx.instance_id, addr=ctx.address)
            bootstrap(handoff)
        ctx.advance(ProvisioningState.HANDED_OFF)
        return handoff

    def _configure_monitoring(self, ctx: RunContext) -> None:
        monitoring = self._monitoring or MonitoringConfigurator(ctx.config.region)
        monitoring.configure(
            ctx.instance_id,
            ctx.tags.get("Name", ctx.instance_id),
            ctx.config.cloudwatch_alarms,
            ctx.config.alarm_actions,
        )
