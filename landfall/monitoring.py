"""CloudWatch alarms for a freshly provisioned instance."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from functools import cached_property
from typing import TYPE_CHECKING, Any

from loguru import logger

from landfall.exceptions import ConfigurationError

if TYPE_CHECKING:
    from mypy_boto3_cloudwatch import CloudWatchClient

log = logger.bind(component="monitoring")

ALARM_DESCRIPTION = "Created by landfall when provisioning the instance"


def build_alarm(
    alarm: Mapping[str, Any],
    *,
    instance_id: str,
    hostname: str,
    actions: Sequence[str],
) -> dict[str, Any]:
    """Bind a configured alarm template to one instance."""
    if "AlarmName" not in alarm:
        raise ConfigurationError("Every CloudWatch alarm needs an AlarmName")
    params = dict(alarm)
    params["AlarmName"] = f"EC2 {hostname.replace('.', '_')} ({instance_id}) {alarm['AlarmName']}"
    params["AlarmDescription"] = ALARM_DESCRIPTION
    params["Dimensions"] = [{"Name": "InstanceId", "Value": instance_id}]
    params["Namespace"] = "AWS/EC2"
    if actions:
        params["AlarmActions"] = list(actions)
    return params


class MonitoringConfigurator:
    """Creates the configured CloudWatch alarms for an instance."""

    def __init__(self, region: str, client: CloudWatchClient | None = None) -> None:
        self.region = region
        self._client = client

    @cached_property
    def _cloudwatch(self) -> CloudWatchClient:
        if self._client is not None:
            return self._client
        import boto3
        return boto3.client("cloudwatch", region_name=self.region)

    def configure(
        self,
        instance_id: str,
        hostname: str,
        alarms: Sequence[Mapping[str, Any]],
        actions: Sequence[str] = (),
    ) -> list[str]:
        """Create one alarm per template.

        Returns:
            Names of the alarms created.

        Raises:
            ConfigurationError: If monitoring was requested with no alarms.
        """
        if not alarms:
            raise ConfigurationError(
                "Server monitoring was requested but no CloudWatch alarms are configured"
            )
        names: list[str] = []
        for template in alarms:
            params = build_alarm(template, instance_id=instance_id, hostname=hostname, actions=actions)
            self._cloudwatch.put_metric_alarm(**params)
            log.info("Created CloudWatch alarm {name}", name=params["AlarmName"])
            names.append(params["AlarmName"])
        return names
