"""AWS Auto Scaling group provider."""
from __future__ import annotations

import logging
from typing import Any

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import AWSConfig
from ..errors import ConfigError, ProviderError
from ..models import Upstream
from ..settings import settings
from .common import LazyPages, prepare_batches

logger = logging.getLogger(__name__)

GROUP_TAG_FILTER = "tag:aws:autoscaling:groupName"
IN_SERVICE = "InService"
# DescribeAutoScalingInstances accepts at most 50 instance IDs per call.
MAX_INSTANCE_IDS = 50

METADATA_URL = "http://169.254.169.254/latest"


def discover_region(timeout_s: float, transport: httpx.BaseTransport | None = None) -> str:
    """Ask the EC2 instance metadata service (IMDSv2) which region we run in."""
    try:
        with httpx.Client(timeout=timeout_s, transport=transport) as client:
            token = client.put(
                f"{METADATA_URL}/api/token",
                headers={"X-aws-ec2-metadata-token-ttl-seconds": "60"},
            )
            token.raise_for_status()
            resp = client.get(
                f"{METADATA_URL}/meta-data/placement/region",
                headers={"X-aws-ec2-metadata-token": token.text},
            )
            resp.raise_for_status()
    except httpx.HTTPError as e:
        raise ConfigError(f"unable to retrieve region from ec2metadata: {e}") from e
    region = resp.text.strip()
    if not region:
        raise ConfigError("unable to retrieve region from ec2metadata: empty response")
    return region


class AWSProvider:
    """Resolves the private IPs of the instances of an Auto Scaling group."""

    def __init__(
        self,
        config: AWSConfig,
        ec2_client: Any = None,
        autoscaling_client: Any = None,
        metadata_transport: httpx.BaseTransport | None = None,
    ):
        self.config = config
        self._upstreams = [u.to_upstream() for u in config.upstreams]

        region = config.region
        if region == "self":
            region = discover_region(settings.metadata_timeout_s, transport=metadata_transport)
            logger.info("Discovered AWS region %s from instance metadata", region)
        self.region = region

        if ec2_client is None or autoscaling_client is None:
            session = boto3.session.Session()
            boto_cfg = Config(
                connect_timeout=settings.api_timeout_s,
                read_timeout=settings.api_timeout_s,
                retries={"max_attempts": 3, "mode": "standard"},
            )
            ec2_client = ec2_client or session.client("ec2", region_name=region, config=boto_cfg)
            autoscaling_client = autoscaling_client or session.client("autoscaling", region_name=region, config=boto_cfg)
        self._ec2 = ec2_client
        self._autoscaling = autoscaling_client

    def list_upstreams(self) -> list[Upstream]:
        return list(self._upstreams)

    def _only_in_service(self, name: str) -> bool:
        return any(u.scaling_group == name and u.in_service for u in self._upstreams)

    def _reservations(self, name: str) -> LazyPages[dict[str, Any]]:
        def open_pages():
            paginator = self._ec2.get_paginator("describe_instances")
            pages = paginator.paginate(Filters=[{"Name": GROUP_TAG_FILTER, "Values": [name]}])
            return (page.get("Reservations", []) for page in pages)

        return LazyPages(open_pages)

    def group_exists(self, name: str) -> bool:
        if not name:
            raise ProviderError("Auto Scaling group name cannot be empty")
        try:
            for _ in self._reservations(name):
                return True
        except (ClientError, BotoCoreError) as e:
            raise ProviderError(f"couldn't check if an AutoScaling group exists: {e}") from e
        return False

    def resolve_members(self, name: str) -> set[str]:
        if not name:
            raise ProviderError("Auto Scaling group name cannot be empty")
        only_in_service = self._only_in_service(name)

        found = False
        ips: set[str] = set()
        id_to_ip: dict[str, str] = {}
        try:
            for reservation in self._reservations(name):
                found = True
                for ins in reservation.get("Instances", []):
                    ip = _primary_private_ip(ins)
                    if not ip:
                        continue
                    if only_in_service:
                        id_to_ip[ins["InstanceId"]] = ip
                    else:
                        ips.add(ip)
        except (ClientError, BotoCoreError) as e:
            raise ProviderError(f"couldn't describe instances of {name}: {e}") from e

        if not found:
            raise ProviderError(f"autoscaling group {name} doesn't exist", kind=ProviderError.NOT_FOUND)

        if only_in_service:
            ips = self._in_service_ips(id_to_ip)
        return ips

    def _in_service_ips(self, id_to_ip: dict[str, str]) -> set[str]:
        ips: set[str] = set()
        for batch in prepare_batches(MAX_INSTANCE_IDS, sorted(id_to_ip)):
            try:
                resp = self._autoscaling.describe_auto_scaling_instances(InstanceIds=batch, MaxRecords=MAX_INSTANCE_IDS)
            except (ClientError, BotoCoreError) as e:
                raise ProviderError(f"couldn't describe Auto Scaling instances: {e}") from e
            for ins in resp.get("AutoScalingInstances", []):
                if ins.get("LifecycleState") == IN_SERVICE and ins.get("InstanceId") in id_to_ip:
                    ips.add(id_to_ip[ins["InstanceId"]])
        return ips


def _primary_private_ip(instance: dict[str, Any]) -> str | None:
    nics = instance.get("NetworkInterfaces") or []
    if not nics:
        return None
    # DescribeInstances does not guarantee order; the primary interface has device index 0.
    primary = next((n for n in nics if n.get("Attachment", {}).get("DeviceIndex") == 0), nics[0])
    return primary.get("PrivateIpAddress")
