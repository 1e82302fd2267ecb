from __future__ import annotations

from collections.abc import Iterator

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.stub import Stubber

from landfall.cloud import EC2ControlPlane
from landfall.exceptions import ConfigurationError, ProvisioningError
from landfall.monitoring import MonitoringConfigurator, build_alarm
from landfall.retry import is_control_plane_transient
from landfall.types import ElasticAddress, Platform

pytestmark = [pytest.mark.unit]


def _client(service: str):
    return boto3.client(
        service,
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def ec2() -> Iterator[tuple[EC2ControlPlane, Stubber]]:
    client = _client("ec2")
    with Stubber(client) as stubber:
        yield EC2ControlPlane("us-east-1", client=client), stubber
        stubber.assert_no_pending_responses()


class TestEC2ControlPlane:
    def test_describe_instance(self, ec2) -> None:
        plane, stubber = ec2
        stubber.add_response(
            "describe_instances",
            {
                "Reservations": [{
                    "Instances": [{
                        "InstanceId": "i-0abc",
                        "State": {"Code": 16, "Name": "running"},
                        "PublicIpAddress": "203.0.113.5",
                        "PrivateIpAddress": "10.0.1.5",
                        "PublicDnsName": "",
                        "Platform": "windows",
                        "SubnetId": "subnet-1",
                        "VpcId": "vpc-1",
                        "NetworkInterfaces": [{"NetworkInterfaceId": "eni-0"}],
                    }],
                }],
            },
            {"InstanceIds": ["i-0abc"]},
        )

        instance = plane.describe_instance("i-0abc")

        assert instance.is_running
        assert instance.platform is Platform.WINDOWS
        assert instance.public_ip_address == "203.0.113.5"
        assert instance.dns_name is None
        assert instance.vpc_id == "vpc-1"
        assert instance.network_interface_ids == ("eni-0",)

    def test_describe_missing_instance(self, ec2) -> None:
        plane, stubber = ec2
        stubber.add_response("describe_instances", {"Reservations": []}, {"InstanceIds": ["i-0abc"]})

        with pytest.raises(ProvisioningError, match="i-0abc not found"):
            plane.describe_instance("i-0abc")

    def test_create_tags_in_one_call(self, ec2) -> None:
        plane, stubber = ec2
        stubber.add_response(
            "create_tags",
            {},
            {
                "Resources": ["i-0abc"],
                "Tags": [{"Key": "Name", "Value": "web-01"}, {"Key": "Type", "Value": "api"}],
            },
        )

        plane.create_tags("i-0abc", {"Name": "web-01", "Type": "api"})

    def test_create_tags_not_found_is_transient(self, ec2) -> None:
        plane, stubber = ec2
        stubber.add_client_error("create_tags", service_error_code="InvalidInstanceID.NotFound")

        with pytest.raises(ClientError) as exc_info:
            plane.create_tags("i-0abc", {"Name": "web-01"})

        assert is_control_plane_transient(exc_info.value)

    def test_find_address(self, ec2) -> None:
        plane, stubber = ec2
        stubber.add_response(
            "describe_addresses",
            {
                "Addresses": [
                    {"PublicIp": "198.51.100.1", "Domain": "vpc", "AllocationId": "eipalloc-0"},
                    {
                        "PublicIp": "198.51.100.7",
                        "Domain": "vpc",
                        "AllocationId": "eipalloc-1",
                        "InstanceId": "i-other",
                    },
                ],
            },
            {"Filters": [{"Name": "domain", "Values": ["vpc"]}]},
        )

        address = plane.find_address("198.51.100.7", "vpc")

        assert address == ElasticAddress(
            public_ip="198.51.100.7", domain="vpc", allocation_id="eipalloc-1", instance_id="i-other",
        )
        assert address.is_associated

    def test_associate_by_allocation_id(self, ec2) -> None:
        plane, stubber = ec2
        stubber.add_response(
            "associate_address",
            {"AssociationId": "eipassoc-1"},
            {"InstanceId": "i-0abc", "AllocationId": "eipalloc-1"},
        )

        plane.associate_address("i-0abc", ElasticAddress("198.51.100.7", "vpc", allocation_id="eipalloc-1"))

    def test_associate_by_public_ip(self, ec2) -> None:
        plane, stubber = ec2
        stubber.add_response(
            "associate_address",
            {},
            {"InstanceId": "i-0abc", "PublicIp": "198.51.100.7"},
        )

        plane.associate_address("i-0abc", ElasticAddress("198.51.100.7", "standard"))

    def test_list_network_interfaces_in_vpc(self, ec2) -> None:
        plane, stubber = ec2
        stubber.add_response(
            "describe_network_interfaces",
            {"NetworkInterfaces": [{"NetworkInterfaceId": "eni-a"}, {"NetworkInterfaceId": "eni-b"}]},
            {"Filters": [{"Name": "vpc-id", "Values": ["vpc-1"]}]},
        )

        assert plane.list_network_interface_ids("vpc-1") == ("eni-a", "eni-b")

    def test_attach_and_status(self, ec2) -> None:
        plane, stubber = ec2
        stubber.add_response(
            "attach_network_interface",
            {"AttachmentId": "eni-attach-1"},
            {"NetworkInterfaceId": "eni-a", "InstanceId": "i-0abc", "DeviceIndex": 1},
        )
        stubber.add_response(
            "describe_network_interfaces",
            {"NetworkInterfaces": [{"NetworkInterfaceId": "eni-a", "Attachment": {"Status": "attached"}}]},
            {"NetworkInterfaceIds": ["eni-a"]},
        )

        assert plane.attach_network_interface("eni-a", "i-0abc", 1) == "eni-attach-1"
        assert plane.attachment_status("eni-a") == "attached"

    def test_subnet_vpc(self, ec2) -> None:
        plane, stubber = ec2
        stubber.add_response(
            "describe_subnets",
            {"Subnets": [{"SubnetId": "subnet-1", "VpcId": "vpc-1"}]},
            {"SubnetIds": ["subnet-1"]},
        )

        assert plane.subnet_vpc_id("subnet-1") == "vpc-1"

    def test_password_data(self, ec2) -> None:
        plane, stubber = ec2
        stubber.add_response(
            "get_password_data",
            {"InstanceId": "i-0abc", "PasswordData": "\nQUJD\n"},
            {"InstanceId": "i-0abc"},
        )
        stubber.add_response(
            "get_password_data",
            {"InstanceId": "i-0abc", "PasswordData": ""},
            {"InstanceId": "i-0abc"},
        )

        assert plane.get_password_data("i-0abc") == "QUJD"
        assert plane.get_password_data("i-0abc") == ""


class TestMonitoring:
    ALARM = {
        "AlarmName": "cpu-high",
        "MetricName": "CPUUtilization",
        "Statistic": "Average",
        "Period": 300,
        "EvaluationPeriods": 2,
        "Threshold": 90.0,
        "ComparisonOperator": "GreaterThanThreshold",
    }

    def test_build_alarm(self) -> None:
        params = build_alarm(
            self.ALARM, instance_id="i-0abc", hostname="web-01.example.com", actions=["arn:sns"],
        )

        assert params["AlarmName"] == "EC2 web-01_example_com (i-0abc) cpu-high"
        assert params["Dimensions"] == [{"Name": "InstanceId", "Value": "i-0abc"}]
        assert params["Namespace"] == "AWS/EC2"
        assert params["AlarmActions"] == ["arn:sns"]
        assert self.ALARM["AlarmName"] == "cpu-high"

    def test_alarm_needs_a_name(self) -> None:
        with pytest.raises(ConfigurationError, match="AlarmName"):
            build_alarm({"MetricName": "CPUUtilization"}, instance_id="i-0abc", hostname="web", actions=())

    def test_configure_puts_each_alarm(self) -> None:
        client = _client("cloudwatch")
        expected = build_alarm(self.ALARM, instance_id="i-0abc", hostname="web-01", actions=())
        with Stubber(client) as stubber:
            stubber.add_response("put_metric_alarm", {}, expected)

            names = MonitoringConfigurator("us-east-1", client=client).configure(
                "i-0abc", "web-01", [self.ALARM],
            )

            stubber.assert_no_pending_responses()
        assert names == ["EC2 web-01 (i-0abc) cpu-high"]

    def test_monitoring_without_alarms(self) -> None:
        with pytest.raises(ConfigurationError, match="no CloudWatch alarms"):
            MonitoringConfigurator("us-east-1", client=_client("cloudwatch")).configure("i-0abc", "web-01", [])
