"""EC2-backed resource provider.

All calls into the platform go through this module. Every botocore failure is
translated into one of the ``mcserver.errors`` kinds so callers never see raw
``ClientError`` objects.
"""

from __future__ import annotations

import asyncio
import typing as t
from datetime import datetime

from botocore.exceptions import BotoCoreError, ClientError

from .clock import Clock, SystemClock
from .config import FALLBACK_AMI, Settings
from .console import Console
from .errors import (
    CreateFailed,
    DescribeFailed,
    ImageResolutionDegraded,
    NotFound,
    StartTimeout,
    StopFailed,
    TerminateFailed,
)
from .models import InstanceDetails, InstanceState, LaunchSpec
from .userdata import encode_user_data

if t.TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from mypy_boto3_ec2 import EC2Client

AMI_NAME_PATTERN = "al2023-ami-2023*"
AMI_ARCHITECTURE = "x86_64"
CREATED_BY = "MinecraftServerGenerator"
NOT_FOUND_CODES = ("InvalidInstanceID.NotFound", "InvalidInstanceID.Malformed")

AwsError = (ClientError, BotoCoreError)


def error_code(exc: BaseException) -> str:
    if isinstance(exc, ClientError):
        return str(exc.response.get("Error", {}).get("Code", ""))
    return ""


def create_ec2_client(settings: Settings) -> "EC2Client":
    import boto3

    return boto3.client("ec2", region_name=settings.region)


class Ec2Provider:
    def __init__(
        self,
        client: "EC2Client",
        settings: Settings,
        *,
        console: Console | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.client = client
        self.settings = settings
        self.console = console or Console()
        self.clock = clock or SystemClock()
        self._boot_image: str | None = None

    # -- images -----------------------------------------------------------

    def resolve_boot_image(self) -> str:
        if self._boot_image is None:
            try:
                self._boot_image = self._lookup_boot_image()
            except ImageResolutionDegraded as exc:
                self.console.warn(f"{exc}; using fallback AMI {FALLBACK_AMI}")
                self._boot_image = FALLBACK_AMI
            self.console.info(f"EC2 provider using AMI: {self._boot_image}")
        return self._boot_image

    def _lookup_boot_image(self) -> str:
        if self.settings.default_ami:
            self.console.info(
                f"Using AMI from AWS_DEFAULT_AMI: {self.settings.default_ami}"
            )
            return self.settings.default_ami

        self.console.info("Fetching latest Amazon Linux 2023 AMI...")
        try:
            response = self.client.describe_images(
                Owners=["amazon"],
                Filters=[
                    {"Name": "name", "Values": [AMI_NAME_PATTERN]},
                    {"Name": "architecture", "Values": [AMI_ARCHITECTURE]},
                    {"Name": "state", "Values": ["available"]},
                ],
            )
        except AwsError as exc:
            raise ImageResolutionDegraded(f"failed to describe images: {exc}") from exc

        latest: tuple[datetime, str, str] | None = None
        for image in response.get("Images", []):
            created = image.get("CreationDate")
            image_id = image.get("ImageId")
            if not created or not image_id:
                continue
            try:
                created_at = datetime.fromisoformat(created.replace("Z", "+00:00"))
            except ValueError:
                continue
            if latest is None or created_at > latest[0]:
                latest = (created_at, image_id, image.get("Name", ""))

        if latest is None:
            raise ImageResolutionDegraded("no Amazon Linux 2023 AMIs found")
        self.console.info(f"Latest Amazon Linux 2023 AMI found: {latest[1]} ({latest[2]})")
        return latest[1]

    # -- lifecycle --------------------------------------------------------

    def create_instance(self, spec: LaunchSpec) -> str:
        image_id = spec.image_id or self.resolve_boot_image()
        tags = {
            "Name": spec.name,
            "CreatedBy": CREATED_BY,
            "CreatedAt": self.clock.now().replace(microsecond=0).isoformat(),
            **spec.tags,
        }
        interface: dict[str, t.Any] = {
            "AssociatePublicIpAddress": True,
            "DeviceIndex": 0,
            "DeleteOnTermination": True,
        }
        if spec.security_group_id:
            interface["Groups"] = [spec.security_group_id]

        params: dict[str, t.Any] = {
            "ImageId": image_id,
            "InstanceType": spec.instance_type,
            "MinCount": 1,
            "MaxCount": 1,
            "NetworkInterfaces": [interface],
            "TagSpecifications": [
                {
                    "ResourceType": "instance",
                    "Tags": [{"Key": key, "Value": value} for key, value in tags.items()],
                }
            ],
        }
        if spec.key_name:
            params["KeyName"] = spec.key_name
        if spec.user_data:
            params["UserData"] = encode_user_data(spec.user_data)
        if spec.instance_profile:
            params["IamInstanceProfile"] = {"Name": spec.instance_profile}

        self.console.info(
            f"Creating EC2 instance with type: {spec.instance_type}, AMI: {image_id}"
        )
        try:
            response = self.client.run_instances(**params)
        except AwsError as exc:
            raise CreateFailed(f"failed to create instance: {exc}") from exc

        instances = response.get("Instances") or []
        if not instances or not instances[0].get("InstanceId"):
            raise CreateFailed("no instances were created")
        instance_id = instances[0]["InstanceId"]
        self.console.info(f"Instance created with ID: {instance_id}")
        return instance_id

    async def wait_until_running(
        self,
        instance_id: str,
        *,
        timeout: float | None = None,
        interval: float | None = None,
    ) -> InstanceDetails:
        timeout = self.settings.start_timeout if timeout is None else timeout
        interval = self.settings.poll_interval if interval is None else interval
        deadline = self.clock.monotonic() + timeout
        self.console.info(
            f"Waiting up to {timeout:.0f}s for instance {instance_id} to start..."
        )
        while True:
            # A slow describe call must not stretch the wait past the deadline.
            remaining = deadline - self.clock.monotonic()
            try:
                details = await asyncio.wait_for(
                    asyncio.to_thread(self.describe, instance_id),
                    timeout=max(remaining, 0),
                )
            except asyncio.TimeoutError as exc:
                raise StartTimeout(
                    f"instance not running after {timeout:.0f}s",
                    instance_id=instance_id,
                ) from exc
            except (NotFound, DescribeFailed) as exc:
                # Newly created instances can take a moment to become visible.
                self.console.info(f"Instance {instance_id} not visible yet: {exc}")
                details = None
            if details is not None:
                if details.state is InstanceState.RUNNING:
                    self.console.info(f"Instance {instance_id} is now running")
                    return details
                if details.state.is_terminal:
                    raise StartTimeout(
                        f"instance entered state {details.state.value} before running",
                        instance_id=instance_id,
                    )
            remaining = deadline - self.clock.monotonic()
            if remaining <= 0:
                raise StartTimeout(
                    f"instance not running after {timeout:.0f}s",
                    instance_id=instance_id,
                )
            await self.clock.sleep(min(interval, remaining))

    def describe(self, instance_id: str) -> InstanceDetails:
        try:
            response = self.client.describe_instances(InstanceIds=[instance_id])
        except ClientError as exc:
            if error_code(exc) in NOT_FOUND_CODES:
                raise NotFound(f"instance {instance_id} not found") from exc
            raise DescribeFailed(
                f"failed to describe instance: {exc}", instance_id=instance_id
            ) from exc
        except BotoCoreError as exc:
            raise DescribeFailed(
                f"failed to describe instance: {exc}", instance_id=instance_id
            ) from exc
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                return InstanceDetails.from_api(instance)
        raise NotFound(f"instance {instance_id} not found")

    def list_all(self) -> list[InstanceDetails]:
        paginator = self.client.get_paginator("describe_instances")
        instances: list[InstanceDetails] = []
        try:
            for page in paginator.paginate():
                for reservation in page.get("Reservations", []):
                    instances.extend(
                        InstanceDetails.from_api(item)
                        for item in reservation.get("Instances", [])
                    )
        except AwsError as exc:
            raise DescribeFailed(f"failed to list instances: {exc}") from exc
        return instances

    def stop(self, instance_id: str) -> None:
        try:
            self.client.stop_instances(InstanceIds=[instance_id])
        except AwsError as exc:
            raise StopFailed(
                f"failed to stop instance: {exc}", instance_id=instance_id
            ) from exc
        self.console.info(f"Successfully stopped instance: {instance_id}")

    def terminate(self, instance_id: str) -> None:
        try:
            self.client.terminate_instances(InstanceIds=[instance_id])
        except AwsError as exc:
            raise TerminateFailed(
                f"failed to terminate instance: {exc}", instance_id=instance_id
            ) from exc
        self.console.info(f"Termination requested for instance: {instance_id}")
