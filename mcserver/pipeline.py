"""Provisioning pipeline: one request in, one running server (or one failure) out.

Stages run strictly in order and the first failure ends the call:

1. resolve the shared security group
2. render the boot script
3. create the instance
4. wait until it is running
5. describe it
6. assemble the result

Nothing is rolled back. An instance that was created but then failed to reach
``running`` or to be described is left in the account for an operator to look
at; the raised error carries its id.
"""

from __future__ import annotations

import asyncio

from .config import Settings
from .console import Console
from .errors import DescribeFailed, LicenseNotAccepted, NotFound
from .ingress import IngressResolver
from .models import InstanceDetails, LaunchSpec, ServerRequest, ServerResult
from .provider import Ec2Provider
from .userdata import MonitorConfig, render_user_data


class ProvisioningPipeline:
    def __init__(
        self,
        provider: Ec2Provider,
        resolver: IngressResolver,
        settings: Settings,
        *,
        console: Console | None = None,
    ) -> None:
        self.provider = provider
        self.resolver = resolver
        self.settings = settings
        self.console = console or Console()

    async def provision(self, request: ServerRequest) -> ServerResult:
        if not request.eula:
            raise LicenseNotAccepted(
                "you must accept the Minecraft EULA by setting 'eula' to true"
            )
        request = request.with_defaults(
            self.provider.clock.now(),
            default_key_name=self.settings.default_key_name,
        )
        self.console.info(
            f"Creating Minecraft server: {request.server_name} "
            f"(Type: {request.server_type}, Version: {request.version})"
        )

        group_id = await asyncio.to_thread(
            self.resolver.ensure_rule_set, self.settings.security_group_name
        )

        user_data = render_user_data(
            request,
            group_id,
            monitor_config=MonitorConfig(delay=self.settings.shutdown_delay),
        )

        spec = LaunchSpec(
            instance_type=request.instance_type,
            name=request.server_name,
            security_group_id=group_id,
            key_name=request.key_name or None,
            user_data=user_data,
            instance_profile=self.settings.instance_profile_name,
            tags={
                "Type": "MinecraftServer",
                "MinecraftType": request.server_type,
                "MinecraftVersion": request.version,
            },
        )
        instance_id = await asyncio.to_thread(self.provider.create_instance, spec)

        # From here on the instance exists; failures leave it in place.
        await self.provider.wait_until_running(instance_id)

        try:
            details = await asyncio.to_thread(self.provider.describe, instance_id)
        except (NotFound, DescribeFailed) as exc:
            raise DescribeFailed(
                f"instance not found after creation: {exc}", instance_id=instance_id
            ) from exc

        result = ServerResult(
            details=details,
            server_name=request.server_name,
            version=request.version,
            server_type=request.server_type,
        )
        self.console.info(
            f"Minecraft server successfully created: {instance_id} "
            f"(IP: {details.public_ip})"
        )
        return result

    async def server_info(self, instance_id: str) -> InstanceDetails:
        return await asyncio.to_thread(self.provider.describe, instance_id)

    async def stop_server(self, instance_id: str) -> None:
        await asyncio.to_thread(self.provider.stop, instance_id)

