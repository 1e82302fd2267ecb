"""EC2 control-plane adapter.

``ControlPlane`` is the narrow slice of the EC2 API the provisioning steps
consume. ``EC2ControlPlane`` implements it on top of a boto3 client; tests
substitute fakes.
"""

from __future__ import annotations

from collections.abc import Mapping
from functools import cached_property
from typing import TYPE_CHECKING, Protocol

from loguru import logger

from landfall.exceptions import ProvisioningError
from landfall.types import ElasticAddress, Instance

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

log = logger.bind(component="ec2")


class ControlPlane(Protocol):
    def describe_instance(self, instance_id: str) -> Instance: ...
    def create_tags(self, resource_id: str, tags: Mapping[str, str]) -> None: ...
    def find_address(self, public_ip: str, domain: str) -> ElasticAddress | None: ...
    def associate_address(self, instance_id: str, address: ElasticAddress) -> None: ...
    def list_network_interface_ids(self, vpc_id: str | None = None) -> tuple[str, ...]: ...
    def attach_network_interface(
        self, interface_id: str, instance_id: str, device_index: int,
    ) -> str: ...
    def attachment_status(self, interface_id: str) -> str | None: ...
    def subnet_vpc_id(self, subnet_id: str) -> str | None: ...
    def get_password_data(self, instance_id: str) -> str: ...


class EC2ControlPlane:
    """ControlPlane backed by a boto3 EC2 client."""

    def __init__(self, region: str, client: EC2Client | None = None) -> None:
        self.region = region
        self._client = client

    @cached_property
    def _ec2(self) -> EC2Client:
        if self._client is not None:
            return self._client
        import boto3
        return boto3.client("ec2", region_name=self.region)

    def describe_instance(self, instance_id: str) -> Instance:
        response = self._ec2.describe_instances(InstanceIds=[instance_id])
        for reservation in response.get("Reservations", []):
            for raw in reservation.get("Instances", []):
                return Instance.from_api(raw)
        raise ProvisioningError(f"Instance {instance_id} not found")

    def create_tags(self, resource_id: str, tags: Mapping[str, str]) -> None:
        log.debug("Tagging {resource}: {keys}", resource=resource_id, keys=", ".join(tags))
        self._ec2.create_tags(
            Resources=[resource_id],
            Tags=[{"Key": key, "Value": value} for key, value in tags.items()],
        )

    def find_address(self, public_ip: str, domain: str) -> ElasticAddress | None:
        response = self._ec2.describe_addresses(
            Filters=[{"Name": "domain", "Values": [domain]}],
        )
        for raw in response.get("Addresses", []):
            if raw.get("PublicIp") == public_ip:
                return ElasticAddress(
                    public_ip=raw["PublicIp"],
                    domain=raw.get("Domain", domain),
                    allocation_id=raw.get("AllocationId"),
                    instance_id=raw.get("InstanceId") or None,
                )
        return None

    def associate_address(self, instance_id: str, address: ElasticAddress) -> None:
        log.debug("Associating {ip} with {instance}", ip=address.public_ip, instance=instance_id)
        if address.allocation_id:
            self._ec2.associate_address(
                InstanceId=instance_id,
                AllocationId=address.allocation_id,
            )
        else:
            self._ec2.associate_address(
                InstanceId=instance_id,
                PublicIp=address.public_ip,
            )

    def list_network_interface_ids(self, vpc_id: str | None = None) -> tuple[str, ...]:
        filters = [{"Name": "vpc-id", "Values": [vpc_id]}] if vpc_id else []
        paginator = self._ec2.get_paginator("describe_network_interfaces")
        ids: list[str] = []
        for page in paginator.paginate(Filters=filters):
            ids.extend(nic["NetworkInterfaceId"] for nic in page.get("NetworkInterfaces", []))
        return tuple(ids)

    def attach_network_interface(
        self, interface_id: str, instance_id: str, device_index: int,
    ) -> str:
        response = self._ec2.attach_network_interface(
            NetworkInterfaceId=interface_id,
            InstanceId=instance_id,
            DeviceIndex=device_index,
        )
        return response["AttachmentId"]

    def attachment_status(self, interface_id: str) -> str | None:
        response = self._ec2.describe_network_interfaces(
            NetworkInterfaceIds=[interface_id],
        )
        interfaces = response.get("NetworkInterfaces", [])
        if not interfaces:
            return None
        return interfaces[0].get("Attachment", {}).get("Status")

    def subnet_vpc_id(self, subnet_id: str) -> str | None:
        response = self._ec2.describe_subnets(SubnetIds=[subnet_id])
        subnets = response.get("Subnets", [])
        return subnets[0].get("VpcId") if subnets else None

    def get_password_data(self, instance_id: str) -> str:
        response = self._ec2.get_password_data(InstanceId=instance_id)
        return (response.get("PasswordData") or "").strip()
