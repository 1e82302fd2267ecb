from __future__ import annotations

import os

import paramiko
import pytest

from landfall.exceptions import ConfigurationError
from landfall.gateway import (
    GatewayResolver,
    gateway_from_proxy_command,
    load_ssh_config,
    parse_gateway,
)
from landfall.types import GatewayDescriptor

pytestmark = [pytest.mark.unit]

SSH_CONFIG = """
Host 10.0.*
    ProxyCommand ssh bastion.example.com nc %h %p

Host 10.9.*
    ProxyCommand ssh -W %h:%p jump.example.com

Host bastion.example.com
    User ops
    Port 2222
    IdentityFile /keys/bastion.pem
"""


@pytest.fixture
def ssh_config() -> paramiko.SSHConfig:
    return paramiko.SSHConfig.from_text(SSH_CONFIG)


class TestParseGateway:
    def test_user_host_and_port(self) -> None:
        assert parse_gateway("deploy@gw.example.com:2200") == ("deploy", "gw.example.com", 2200)

    def test_host_only(self) -> None:
        assert parse_gateway("gw.example.com") == (None, "gw.example.com", None)

    def test_missing_host(self) -> None:
        with pytest.raises(ConfigurationError, match="missing host"):
            parse_gateway("deploy@")

    def test_bad_port(self) -> None:
        with pytest.raises(ConfigurationError, match="port"):
            parse_gateway("gw.example.com:ssh")


class TestProxyCommand:
    def test_nc_style(self) -> None:
        assert gateway_from_proxy_command("ssh bastion.example.com nc %h %p") == "bastion.example.com"

    def test_other_styles_are_ignored(self) -> None:
        assert gateway_from_proxy_command("ssh -W %h:%p jump.example.com") is None


class TestGatewayResolver:
    def test_proxy_command_from_ssh_config(self, ssh_config: paramiko.SSHConfig) -> None:
        gateway = GatewayResolver(ssh_config).resolve("10.0.1.5")

        assert gateway == GatewayDescriptor(
            host="bastion.example.com",
            user="ops",
            port=2222,
            keys=("/keys/bastion.pem",),
        )
        assert str(gateway) == "ops@bastion.example.com:2222"

    def test_no_proxy_means_direct(self, ssh_config: paramiko.SSHConfig) -> None:
        assert GatewayResolver(ssh_config).resolve("203.0.113.5") is None

    def test_unrecognised_proxy_means_direct(self, ssh_config: paramiko.SSHConfig) -> None:
        assert GatewayResolver(ssh_config).resolve("10.9.0.1") is None

    def test_explicit_gateway_wins(self, ssh_config: paramiko.SSHConfig) -> None:
        resolver = GatewayResolver(ssh_config, explicit_gateway="deploy@gw.example.com:2200")
        gateway = resolver.resolve("10.0.1.5")

        assert gateway is not None
        assert (gateway.host, gateway.user, gateway.port, gateway.keys) == (
            "gw.example.com", "deploy", 2200, (),
        )

    def test_explicit_gateway_defaults_from_ssh_config(self, ssh_config: paramiko.SSHConfig) -> None:
        gateway = GatewayResolver(ssh_config, explicit_gateway="bastion.example.com").resolve("10.1.1.1")

        assert gateway is not None
        assert gateway.user == "ops"
        assert gateway.port == 2222

    def test_configured_identities_override_ssh_config(self, ssh_config: paramiko.SSHConfig) -> None:
        resolver = GatewayResolver(ssh_config, identities=["~/.ssh/override.pem"])
        gateway = resolver.resolve("10.0.1.5")

        assert gateway is not None
        assert gateway.keys == (os.path.expanduser("~/.ssh/override.pem"),)

    def test_default_port_without_ssh_config(self) -> None:
        gateway = GatewayResolver(explicit_gateway="gw.example.com").resolve("10.0.1.5")

        assert gateway is not None
        assert gateway.port == 22
        assert gateway.user is None
        assert gateway.destination == "gw.example.com"


class TestLoadSshConfig:
    def test_missing_file_gives_empty_config(self, tmp_path) -> None:
        config = load_ssh_config(tmp_path / "nope")
        assert config.lookup("anything").get("proxycommand") is None

    def test_reads_file(self, tmp_path) -> None:
        path = tmp_path / "config"
        path.write_text(SSH_CONFIG)
        config = load_ssh_config(path)
        assert "proxycommand" in config.lookup("10.0.0.1")
