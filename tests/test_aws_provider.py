import httpx
import pytest
from botocore.exceptions import ClientError

from asgsync.config import AWSConfig
from asgsync.errors import ConfigError, ProviderError
from asgsync.providers.aws import AWSProvider, MAX_INSTANCE_IDS, discover_region
from asgsync.providers.common import prepare_batches


def _instance(i: int) -> dict:
    return {
        "InstanceId": f"i-{i:04d}",
        "NetworkInterfaces": [{"PrivateIpAddress": f"10.0.{i // 250}.{i % 250 + 1}", "Attachment": {"DeviceIndex": 0}}],
    }


class FakePaginator:
    def __init__(self, pages, error=None):
        self.pages = pages
        self.error = error
        self.filters = []

    def paginate(self, Filters):
        self.filters.append(Filters)
        for page in self.pages:
            yield page
        if self.error:
            raise self.error


class FakeEC2:
    def __init__(self, pages, error=None):
        self.paginator = FakePaginator(pages, error)

    def get_paginator(self, name):
        assert name == "describe_instances"
        return self.paginator


class FakeAutoscaling:
    def __init__(self, states: dict[str, str]):
        self.states = states
        self.batches: list[list[str]] = []

    def describe_auto_scaling_instances(self, InstanceIds, MaxRecords=None):
        assert len(InstanceIds) <= MAX_INSTANCE_IDS
        self.batches.append(list(InstanceIds))
        return {
            "AutoScalingInstances": [
                {"InstanceId": i, "LifecycleState": self.states[i]} for i in InstanceIds if i in self.states
            ]
        }


def _config(in_service: bool = False) -> AWSConfig:
    return AWSConfig.model_validate(
        {
            "region": "us-east-1",
            "upstreams": [
                {"name": "api", "autoscaling_group": "g1", "port": 80, "kind": "http", "in_service": in_service},
            ],
        }
    )


def _provider(instances, states=None, in_service=False, pages=None, error=None):
    pages = pages if pages is not None else [{"Reservations": [{"Instances": instances}]}]
    ec2 = FakeEC2(pages, error)
    asg = FakeAutoscaling(states or {})
    return AWSProvider(_config(in_service), ec2_client=ec2, autoscaling_client=asg), ec2, asg


def test_resolve_members_returns_primary_private_ips():
    instances = [_instance(1), _instance(2), {"InstanceId": "i-none", "NetworkInterfaces": []}]
    provider, ec2, _ = _provider(instances)

    assert provider.resolve_members("g1") == {"10.0.0.2", "10.0.0.3"}
    assert ec2.paginator.filters == [[{"Name": "tag:aws:autoscaling:groupName", "Values": ["g1"]}]]


def test_resolve_members_uses_every_page():
    pages = [
        {"Reservations": [{"Instances": [_instance(1)]}]},
        {"Reservations": []},
        {"Reservations": [{"Instances": [_instance(2)]}]},
    ]
    provider, _, _ = _provider([], pages=pages)
    assert provider.resolve_members("g1") == {"10.0.0.2", "10.0.0.3"}


def test_resolve_members_prefers_device_index_zero():
    ins = {
        "InstanceId": "i-1",
        "NetworkInterfaces": [
            {"PrivateIpAddress": "10.1.0.9", "Attachment": {"DeviceIndex": 1}},
            {"PrivateIpAddress": "10.1.0.1", "Attachment": {"DeviceIndex": 0}},
        ],
    }
    provider, _, _ = _provider([ins])
    assert provider.resolve_members("g1") == {"10.1.0.1"}


def test_resolve_members_missing_group_is_not_found():
    provider, _, _ = _provider([], pages=[{"Reservations": []}])
    with pytest.raises(ProviderError) as exc:
        provider.resolve_members("g1")
    assert exc.value.is_not_found


def test_resolve_members_page_error_returns_nothing():
    error = ClientError({"Error": {"Code": "RequestLimitExceeded", "Message": "slow down"}}, "DescribeInstances")
    provider, _, _ = _provider([], pages=[{"Reservations": [{"Instances": [_instance(1)]}]}], error=error)
    with pytest.raises(ProviderError) as exc:
        provider.resolve_members("g1")
    assert exc.value.is_transient


def test_resolve_members_rejects_empty_name():
    provider, _, _ = _provider([_instance(1)])
    with pytest.raises(ProviderError):
        provider.resolve_members("")


def test_in_service_filter_keeps_only_in_service_instances():
    instances = [_instance(i) for i in range(4)]
    states = {"i-0000": "InService", "i-0001": "Pending", "i-0002": "InService", "i-0003": "Terminating:Wait"}
    provider, _, asg = _provider(instances, states, in_service=True)

    assert provider.resolve_members("g1") == {"10.0.0.1", "10.0.0.3"}
    assert len(asg.batches) == 1


def test_in_service_lookup_is_batched_at_fifty_ids():
    instances = [_instance(i) for i in range(120)]
    states = {f"i-{i:04d}": ("InService" if i % 3 else "Pending") for i in range(120)}

    batched, _, asg = _provider(instances, states, in_service=True)
    result = batched.resolve_members("g1")

    assert [len(b) for b in asg.batches] == [50, 50, 20]
    assert sorted(i for b in asg.batches for i in b) == sorted(states)

    expected = {_instance(i)["NetworkInterfaces"][0]["PrivateIpAddress"] for i in range(120) if i % 3}
    assert result == expected


def test_in_service_batch_error_fails_whole_call():
    class Failing(FakeAutoscaling):
        def describe_auto_scaling_instances(self, InstanceIds, MaxRecords=None):
            if self.batches:
                raise ClientError({"Error": {"Code": "Throttling", "Message": "slow down"}}, "DescribeAutoScalingInstances")
            return super().describe_auto_scaling_instances(InstanceIds, MaxRecords)

    ec2 = FakeEC2([{"Reservations": [{"Instances": [_instance(i) for i in range(60)]}]}])
    provider = AWSProvider(_config(True), ec2_client=ec2, autoscaling_client=Failing({}))
    with pytest.raises(ProviderError):
        provider.resolve_members("g1")


def test_group_exists():
    provider, _, _ = _provider([_instance(1)])
    assert provider.group_exists("g1") is True

    provider, _, _ = _provider([], pages=[{"Reservations": []}])
    assert provider.group_exists("g1") is False

    error = ClientError({"Error": {"Code": "UnauthorizedOperation", "Message": "no"}}, "DescribeInstances")
    provider, _, _ = _provider([], pages=[], error=error)
    with pytest.raises(ProviderError):
        provider.group_exists("g1")


def test_list_upstreams():
    provider, _, _ = _provider([], in_service=True)
    (u,) = provider.list_upstreams()
    assert (u.name, u.scaling_group, u.in_service) == ("api", "g1", True)


def test_prepare_batches():
    items = [str(i) for i in range(7)]
    assert prepare_batches(3, items) == [["0", "1", "2"], ["3", "4", "5"], ["6"]]
    assert prepare_batches(50, []) == []
    with pytest.raises(ValueError):
        prepare_batches(0, items)


def test_discover_region_uses_imdsv2():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        if request.url.path == "/latest/api/token":
            return httpx.Response(200, text="token-123")
        assert request.headers["X-aws-ec2-metadata-token"] == "token-123"
        return httpx.Response(200, text="eu-west-1\n")

    assert discover_region(1, transport=httpx.MockTransport(handler)) == "eu-west-1"
    assert seen == [("PUT", "/latest/api/token"), ("GET", "/latest/meta-data/placement/region")]


def test_self_region_failure_is_fatal_at_construction():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    config = AWSConfig.model_validate(
        {"region": "self", "upstreams": [{"name": "api", "autoscaling_group": "g1", "port": 80, "kind": "http"}]}
    )
    with pytest.raises(ConfigError, match="ec2metadata"):
        AWSProvider(config, ec2_client=object(), autoscaling_client=object(), metadata_transport=httpx.MockTransport(handler))
