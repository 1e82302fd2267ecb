"""Landfall - Drive a freshly launched EC2 instance to a bootstrappable state.

Example:

    from landfall import ProvisionConfig, provision

    config = ProvisionConfig(region="eu-west-1", ssh_user="ubuntu", identity_file="~/.ssh/web.pem")
    handoff = provision("i-0123456789abcdef0", config, bootstrap=run_chef)
"""

from __future__ import annotations

# Configuration
from landfall.config import (
    ProbeSettings,
    ProvisionConfig,
    RetrySettings,
    build_config,
    parse_tags,
    resolve_profile,
)

# Exceptions
from landfall.exceptions import (
    ConfigurationError,
    CredentialError,
    LandfallError,
    PollExhaustedError,
    ProvisioningError,
    TunnelSetupError,
)

# Logging
from landfall.logging import LogConfig

# Orchestration
from landfall.orchestrator import (
    BootstrapExecutor,
    ProvisioningOrchestrator,
    ProvisioningState,
)

# Types
from landfall.types import (
    GatewayDescriptor,
    Handoff,
    Instance,
    Platform,
    RemoteProtocol,
)

__version__ = "0.1.0"


def provision(
    instance_id: str,
    config: ProvisionConfig,
    *,
    bootstrap: BootstrapExecutor | None = None,
) -> Handoff:
    """Provision ``instance_id`` against EC2 with the console progress reporter."""
    from landfall.cloud import EC2ControlPlane

    orchestrator = ProvisioningOrchestrator(config, EC2ControlPlane(config.region))
    return orchestrator.run(instance_id, bootstrap=bootstrap)


__all__ = [
    # Entry point
    "provision",
    "ProvisioningOrchestrator",
    "ProvisioningState",
    "BootstrapExecutor",
    # Configuration
    "ProvisionConfig",
    "RetrySettings",
    "ProbeSettings",
    "build_config",
    "parse_tags",
    "resolve_profile",
    "LogConfig",
    # Types
    "Instance",
    "Handoff",
    "GatewayDescriptor",
    "Platform",
    "RemoteProtocol",
    # Exceptions
    "LandfallError",
    "ConfigurationError",
    "ProvisioningError",
    "CredentialError",
    "TunnelSetupError",
    "PollExhaustedError",
    # Version
    "__version__",
]
