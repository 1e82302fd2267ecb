"""Custom exception hierarchy for Landfall.

All landfall-specific exceptions inherit from LandfallError, enabling
callers to catch every fatal provisioning failure with a single except clause.
"""

from __future__ import annotations


class LandfallError(Exception):
    """Base exception for all Landfall errors."""


class ConfigurationError(LandfallError):
    """Raised for invalid configuration or missing required settings."""


class ProvisioningError(LandfallError):
    """Raised when a provisioning step fails for good."""


class CredentialError(LandfallError):
    """Raised when the generated administrator password cannot be recovered."""


class TunnelSetupError(LandfallError):
    """Raised when the gateway tunnel process exits before forwarding."""

    def __init__(self, gateway: str, reason: str = "unknown") -> None:
        self.gateway = gateway
        self.reason = reason
        super().__init__(f"Tunnel through {gateway} failed: {reason}")


class PollExhaustedError(LandfallError):
    """Raised when a capped polling loop runs out of attempts."""

    def __init__(self, description: str, attempts: int) -> None:
        self.description = description
        self.attempts = attempts
        super().__init__(f"{description} not ready after {attempts} attempts")
