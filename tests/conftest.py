from __future__ import annotations

import itertools
import typing as t
from datetime import datetime, timedelta, timezone

import pytest
from botocore.exceptions import ClientError

from mcserver.config import Settings
from mcserver.console import Console
from mcserver.ingress import IngressResolver
from mcserver.pipeline import ProvisioningPipeline
from mcserver.provider import Ec2Provider

START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def client_error(code: str, operation: str, message: str = "boom") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self._start = start
        self.elapsed = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.elapsed

    def now(self) -> datetime:
        return self._start + timedelta(seconds=self.elapsed)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.elapsed += seconds


class RecordingConsole(Console):
    def __init__(self) -> None:
        super().__init__(quiet=True)
        self.lines: list[str] = []
        self.warnings: list[str] = []

    def info(self, value: str) -> None:
        self.lines.append(value)

    def always(self, value: str) -> None:
        self.lines.append(value)

    def warn(self, value: str) -> None:
        self.warnings.append(value)


class FakePaginator:
    def __init__(self, client: "FakeEc2Client", operation: str) -> None:
        self._client = client
        self._operation = operation

    def paginate(self, **kwargs: t.Any) -> t.Iterator[dict[str, t.Any]]:
        self._client.record(self._operation, kwargs)
        yield {
            "Reservations": [
                {"Instances": [self._client.instance_payload(iid)]}
                for iid in self._client.instances
            ]
        }


class FakeEc2Client:
    """In-memory stand-in for a boto3 EC2 client.

    ``fail[operation]`` makes that operation raise; ``fail_after[operation]``
    lets that many calls succeed first.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, t.Any]]] = []
        self.fail: dict[str, Exception] = {}
        self.fail_after: dict[str, int] = {}
        self.security_groups: dict[str, str] = {}
        self.instances: dict[str, dict[str, t.Any]] = {}
        self.state_sequence: list[str] = ["pending", "running"]
        self.hidden_describes = 0
        self._serial = itertools.count(1)
        self.images: list[dict[str, t.Any]] = [
            {
                "ImageId": "ami-old",
                "Name": "al2023-ami-2023.1",
                "CreationDate": "2023-03-01T00:00:00.000Z",
            },
            {
                "ImageId": "ami-new",
                "Name": "al2023-ami-2023.4",
                "CreationDate": "2024-02-01T00:00:00.000Z",
            },
        ]

    def record(self, operation: str, kwargs: dict[str, t.Any]) -> None:
        previous = len(self.calls_to(operation))
        self.calls.append((operation, kwargs))
        exc = self.fail.get(operation)
        if exc is not None and previous >= self.fail_after.get(operation, 0):
            raise exc

    def calls_to(self, operation: str) -> list[dict[str, t.Any]]:
        return [kwargs for name, kwargs in self.calls if name == operation]

    def instance_payload(self, instance_id: str) -> dict[str, t.Any]:
        record = self.instances[instance_id]
        states = record["states"]
        state = states.pop(0) if len(states) > 1 else states[0]
        return {
            "InstanceId": instance_id,
            "State": {"Name": state},
            "PublicIpAddress": record["public_ip"],
            "PrivateIpAddress": "10.0.0.5",
            "InstanceType": record["instance_type"],
            "LaunchTime": START,
            "Placement": {"AvailabilityZone": "us-east-1a"},
            "Tags": record["tags"],
        }

    # -- security groups ----------------------------------------------------

    def describe_security_groups(self, **kwargs: t.Any) -> dict[str, t.Any]:
        self.record("describe_security_groups", kwargs)
        name = kwargs["Filters"][0]["Values"][0]
        group_id = self.security_groups.get(name)
        if group_id is None:
            return {"SecurityGroups": []}
        return {"SecurityGroups": [{"GroupId": group_id, "GroupName": name}]}

    def create_security_group(self, **kwargs: t.Any) -> dict[str, t.Any]:
        self.record("create_security_group", kwargs)
        group_id = f"sg-{len(self.security_groups) + 1:017d}"
        self.security_groups[kwargs["GroupName"]] = group_id
        return {"GroupId": group_id}

    def authorize_security_group_ingress(self, **kwargs: t.Any) -> dict[str, t.Any]:
        self.record("authorize_security_group_ingress", kwargs)
        return {"Return": True}

    # -- images and instances -------------------------------------------------

    def describe_images(self, **kwargs: t.Any) -> dict[str, t.Any]:
        self.record("describe_images", kwargs)
        return {"Images": list(self.images)}

    def run_instances(self, **kwargs: t.Any) -> dict[str, t.Any]:
        self.record("run_instances", kwargs)
        serial = next(self._serial)
        instance_id = f"i-{serial:017x}"
        self.instances[instance_id] = {
            "states": list(self.state_sequence),
            "public_ip": f"203.0.113.{serial + 9}",
            "instance_type": kwargs["InstanceType"],
            "tags": kwargs["TagSpecifications"][0]["Tags"],
        }
        return {"Instances": [{"InstanceId": instance_id, "State": {"Name": "pending"}}]}

    def describe_instances(self, **kwargs: t.Any) -> dict[str, t.Any]:
        self.record("describe_instances", kwargs)
        instance_id = kwargs["InstanceIds"][0]
        if instance_id not in self.instances or self.hidden_describes > 0:
            self.hidden_describes = max(self.hidden_describes - 1, 0)
            raise client_error("InvalidInstanceID.NotFound", "DescribeInstances")
        return {"Reservations": [{"Instances": [self.instance_payload(instance_id)]}]}

    def get_paginator(self, operation: str) -> FakePaginator:
        return FakePaginator(self, operation)

    def stop_instances(self, **kwargs: t.Any) -> dict[str, t.Any]:
        self.record("stop_instances", kwargs)
        return {"StoppingInstances": []}

    def terminate_instances(self, **kwargs: t.Any) -> dict[str, t.Any]:
        self.record("terminate_instances", kwargs)
        return {"TerminatingInstances": []}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def console() -> RecordingConsole:
    return RecordingConsole()


@pytest.fixture
def ec2() -> FakeEc2Client:
    return FakeEc2Client()


@pytest.fixture
def settings() -> Settings:
    return Settings(region="us-east-1", default_key_name="default-key")


@pytest.fixture
def provider(ec2, settings, console, clock) -> Ec2Provider:
    return Ec2Provider(ec2, settings, console=console, clock=clock)


@pytest.fixture
def resolver(ec2, console) -> IngressResolver:
    return IngressResolver(ec2, console=console)


@pytest.fixture
def pipeline(provider, resolver, settings, console) -> ProvisioningPipeline:
    return ProvisioningPipeline(provider, resolver, settings, console=console)
