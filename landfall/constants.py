"""Centralized constants and enums for Landfall.

Timing defaults are the values observed to work against EC2; every one of
them can be overridden through ``ProvisionConfig``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# EC2 Instance States
# =============================================================================


class InstanceState(StrEnum):
    """EC2 instance state names."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"


class AttachmentStatus(StrEnum):
    """Network interface attachment states."""

    ATTACHING = "attaching"
    ATTACHED = "attached"
    DETACHING = "detaching"
    DETACHED = "detached"


# =============================================================================
# Control-plane Retry
# =============================================================================

TAG_RETRY_ATTEMPTS: Final = 6
TAG_RETRY_DELAY: Final = 5.0

TRANSIENT_ERROR_CODES: Final = frozenset({
    "RequestLimitExceeded",
    "Throttling",
    "ThrottlingException",
    "InternalError",
    "InternalFailure",
    "ServiceUnavailable",
    "Unavailable",
    "IncorrectInstanceState",
})


# =============================================================================
# Polling Intervals (seconds)
# =============================================================================

READINESS_INTERVAL: Final = 2.0
PROBE_INITIAL_DELAY: Final = 10.0
PROBE_PRIVATE_INITIAL_DELAY: Final = 40.0
PROBE_INTERVAL: Final = 10.0
BANNER_TIMEOUT: Final = 5.0
TUNNEL_CLOSE_WINDOW: Final = 5.0
NIC_POLL_INTERVAL: Final = 0.0
# Windows password generation typically takes around half an hour.
CREDENTIAL_POLL_INTERVAL: Final = 1000.0


# =============================================================================
# Ports and Users
# =============================================================================

DEFAULT_SSH_PORT: Final = 22
DEFAULT_SSH_USER: Final = "root"
DEFAULT_WINRM_PORT: Final = 5985
DEFAULT_WINRM_USER: Final = "Administrator"


# =============================================================================
# Gateway Tunnels
# =============================================================================

TUNNEL_READY_TIMEOUT: Final = 30
TUNNEL_CONNECT_TIMEOUT: Final = 10
LOCALHOST: Final = "localhost"
