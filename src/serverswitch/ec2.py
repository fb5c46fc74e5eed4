"""EC2 instance status source. Describe, start, and stop via aioboto3.

Region is an explicit argument on every call; a client is opened per call
so nothing depends on ambient client configuration.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import aioboto3

from serverswitch.logger import logger

# The high byte of InstanceState.Code is reserved for internal AWS use.
_STATE_CODE_MASK = 0xFF


class Ec2InstanceSource:
    """Reads and toggles the power state of EC2 instances.

    ``botocore.exceptions.ClientError`` and transport errors propagate to
    the caller; nothing is retried here.
    """

    def __init__(self, session: aioboto3.Session | None = None) -> None:
        self._session = session or aioboto3.Session()

    def _client(self, region: str) -> Any:
        return self._session.client("ec2", region_name=region)

    async def describe_statuses(self, region: str, instance_ids: Sequence[str]) -> dict[str, int]:
        """Return instance ID → lifecycle code, including stopped instances.

        ``IncludeAllInstances`` is required: without it EC2 only reports
        running instances.
        """
        ids = [i for i in instance_ids if i]
        if not ids:
            return {}
        async with self._client(region) as ec2:
            resp = await ec2.describe_instance_status(IncludeAllInstances=True, InstanceIds=ids)
        statuses = {
            entry["InstanceId"]: entry["InstanceState"]["Code"] & _STATE_CODE_MASK
            for entry in resp.get("InstanceStatuses", [])
        }
        logger.debug("Described instance statuses", region=region, statuses=statuses)
        return statuses

    async def start(self, region: str, instance_id: str) -> None:
        async with self._client(region) as ec2:
            await ec2.start_instances(InstanceIds=[instance_id])
        logger.info("Start requested", region=region, instance_id=instance_id)

    async def stop(self, region: str, instance_id: str) -> None:
        async with self._client(region) as ec2:
            await ec2.stop_instances(InstanceIds=[instance_id])
        logger.info("Stop requested", region=region, instance_id=instance_id)
