from __future__ import annotations

import base64
import io
from collections.abc import Mapping, Sequence
from pathlib import Path

import pytest
from botocore.exceptions import ClientError
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from landfall.types import ElasticAddress, Instance, Platform


def client_error(code: str, operation: str = "CreateTags") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def make_instance(state: str = "running", **overrides) -> Instance:
    fields = {
        "id": "i-0abc",
        "state": state,
        "public_ip_address": "203.0.113.5",
        "private_ip_address": "10.0.1.5",
        "dns_name": "ec2-203-0-113-5.compute-1.amazonaws.com",
        "private_dns_name": "ip-10-0-1-5.ec2.internal",
        "platform": Platform.LINUX,
    }
    fields.update(overrides)
    return Instance(**fields)


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class RecordingProgress:
    def __init__(self) -> None:
        self.events: list[str] = []

    def begin(self, message: str) -> None:
        self.events.append(f"begin:{message}")

    def tick(self) -> None:
        self.events.append("tick")

    def done(self) -> None:
        self.events.append("done")

    @property
    def ticks(self) -> int:
        return self.events.count("tick")


class FakeControlPlane:
    """In-memory control plane.

    Scripted sequences (``instances``, ``statuses`` values, ``password_data``)
    are consumed one entry per call; the last entry repeats forever.
    """

    def __init__(
        self,
        instances: Sequence[Instance] = (),
        *,
        tag_failures: Sequence[Exception] = (),
        describe_failures: Mapping[int, Exception] | None = None,
        addresses: Mapping[tuple[str, str], ElasticAddress] | None = None,
        interfaces: Sequence[str] = (),
        statuses: Mapping[str, Sequence[str]] | None = None,
        subnets: Mapping[str, str] | None = None,
        password_data: Sequence[str] = ("",),
    ) -> None:
        self.instances = list(instances) or [make_instance()]
        self.tag_failures = list(tag_failures)
        self.describe_failures = dict(describe_failures or {})
        self.addresses = dict(addresses or {})
        self.interfaces = tuple(interfaces)
        self.statuses = {nic: list(seq) for nic, seq in (statuses or {}).items()}
        self.subnets = dict(subnets or {})
        self.password_data = list(password_data)

        self.describe_calls = 0
        self.tag_attempts = 0
        self.tag_calls: list[tuple[str, dict[str, str]]] = []
        self.associations: list[tuple[str, ElasticAddress]] = []
        self.listed_vpcs: list[str | None] = []
        self.attachments: list[tuple[str, str, int]] = []
        self.password_calls = 0

    @staticmethod
    def _next[T](seq: list[T]) -> T:
        return seq.pop(0) if len(seq) > 1 else seq[0]

    def describe_instance(self, instance_id: str) -> Instance:
        self.describe_calls += 1
        if self.describe_calls in self.describe_failures:
            raise self.describe_failures.pop(self.describe_calls)
        return self._next(self.instances)

    def create_tags(self, resource_id: str, tags: Mapping[str, str]) -> None:
        self.tag_attempts += 1
        if self.tag_failures:
            raise self.tag_failures.pop(0)
        self.tag_calls.append((resource_id, dict(tags)))

    def find_address(self, public_ip: str, domain: str) -> ElasticAddress | None:
        return self.addresses.get((public_ip, domain))

    def associate_address(self, instance_id: str, address: ElasticAddress) -> None:
        self.associations.append((instance_id, address))

    def list_network_interface_ids(self, vpc_id: str | None = None) -> tuple[str, ...]:
        self.listed_vpcs.append(vpc_id)
        return self.interfaces

    def attach_network_interface(self, interface_id: str, instance_id: str, device_index: int) -> str:
        self.attachments.append((interface_id, instance_id, device_index))
        return f"eni-attach-{device_index}"

    def attachment_status(self, interface_id: str) -> str | None:
        seq = self.statuses.get(interface_id)
        return self._next(seq) if seq else None

    def subnet_vpc_id(self, subnet_id: str) -> str | None:
        return self.subnets.get(subnet_id)

    def get_password_data(self, instance_id: str) -> str:
        self.password_calls += 1
        return self._next(self.password_data)


class FakeProcess:
    """Stands in for the ``ssh -N -L`` child process."""

    def __init__(self, returncode: int | None = None, stderr: bytes = b"") -> None:
        self.returncode = returncode
        self.stderr = io.BytesIO(stderr)
        self.terminated = False

    def poll(self) -> int | None:
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self.returncode = -15

    def wait(self, timeout: float | None = None) -> int:
        return self.returncode or 0

    def kill(self) -> None:
        self.returncode = -9


class FakePopen:
    def __init__(self, process: FakeProcess) -> None:
        self.process = process
        self.commands: list[list[str]] = []

    def __call__(self, cmd: list[str], **kwargs) -> FakeProcess:
        self.commands.append(cmd)
        return self.process


# =============================================================================
# Keys
# =============================================================================


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def key_file(tmp_path: Path, rsa_key: rsa.RSAPrivateKey) -> Path:
    path = tmp_path / "launch-key.pem"
    path.write_bytes(
        rsa_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    return path


def encrypt_password(key: rsa.RSAPrivateKey, password: str) -> str:
    ciphertext = key.public_key().encrypt(password.encode(), padding.PKCS1v15())
    return base64.b64encode(ciphertext).decode()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def progress() -> RecordingProgress:
    return RecordingProgress()
