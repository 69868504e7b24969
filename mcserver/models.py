"""Value types shared by the provider, the boot-script synthesizer and the pipeline."""

from __future__ import annotations

import typing as t
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

SERVER_PORT = 25565
SSH_PORT = 22
DEFAULT_INSTANCE_TYPE = "t3.medium"
DEFAULT_MEMORY = "3G"
DEFAULT_MOTD = "A server created using The Minecraft Server Generator :D"
SERVER_TYPES = (
    "VANILLA",
    "SPIGOT",
    "PAPER",
    "PURPUR",
    "FORGE",
    "NEOFORGE",
    "FABRIC",
    "QUILT",
)


class InstanceState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "InstanceState":
        try:
            return cls(value or "")
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_terminal(self) -> bool:
        return self in (
            InstanceState.STOPPING,
            InstanceState.STOPPED,
            InstanceState.SHUTTING_DOWN,
            InstanceState.TERMINATED,
        )


@dataclass(frozen=True, slots=True)
class ServerRequest:
    server_type: str = ""
    version: str = ""
    instance_type: str = ""
    memory: str = ""
    key_name: str = ""
    server_name: str = ""
    user_email: str = ""
    motd: str = ""
    max_players: int = 0
    gamemode: str = ""
    difficulty: str = ""
    level_seed: str = ""
    level_name: str = ""
    eula: bool = False
    enable_command_block: bool = False
    pvp: bool = False
    online_mode: bool = False
    modpack_url: str = ""
    plugin_urls: tuple[str, ...] = ()
    extra_env: t.Mapping[str, str] = field(default_factory=dict)

    def with_defaults(
        self,
        now: datetime,
        *,
        default_key_name: str | None = None,
    ) -> "ServerRequest":
        """Return a copy with every unset field filled in.

        Memory is always pinned to the backend value; the instance type keeps an
        explicit override and otherwise falls back to ``t3.medium``.
        """
        server_name = self.server_name
        if not server_name:
            suffix = self.user_email or now.strftime("%Y%m%d-%H%M%S")
            server_name = f"MC-SERVER@{suffix}"
        return replace(
            self,
            server_type=(self.server_type or "VANILLA").upper(),
            version=self.version or "LATEST",
            instance_type=self.instance_type or DEFAULT_INSTANCE_TYPE,
            memory=DEFAULT_MEMORY,
            key_name=self.key_name or default_key_name or "",
            server_name=server_name,
            motd=self.motd or DEFAULT_MOTD,
            max_players=self.max_players or 10,
            gamemode=self.gamemode or "survival",
            difficulty=self.difficulty or "normal",
        )


@dataclass(frozen=True, slots=True)
class IngressRule:
    port: int
    description: str
    protocol: str = "tcp"
    cidr: str = "0.0.0.0/0"

    def to_permission(self) -> dict[str, t.Any]:
        return {
            "IpProtocol": self.protocol,
            "FromPort": self.port,
            "ToPort": self.port,
            "IpRanges": [{"CidrIp": self.cidr, "Description": self.description}],
        }


DEFAULT_RULES: tuple[IngressRule, ...] = (
    IngressRule(port=SERVER_PORT, description="Minecraft server port"),
    IngressRule(port=SSH_PORT, description="SSH access"),
)


@dataclass(frozen=True, slots=True)
class LaunchSpec:
    instance_type: str
    name: str
    security_group_id: str | None = None
    key_name: str | None = None
    user_data: str | None = None
    instance_profile: str | None = None
    image_id: str | None = None
    tags: t.Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class InstanceDetails:
    instance_id: str
    state: InstanceState
    public_ip: str = ""
    private_ip: str = ""
    instance_type: str = ""
    launch_time: str = ""
    availability_zone: str = ""
    tags: t.Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_api(cls, payload: t.Mapping[str, t.Any]) -> "InstanceDetails":
        launch_time = payload.get("LaunchTime")
        if isinstance(launch_time, datetime):
            launch_time = launch_time.isoformat()
        return cls(
            instance_id=payload.get("InstanceId", ""),
            state=InstanceState.parse((payload.get("State") or {}).get("Name")),
            public_ip=payload.get("PublicIpAddress") or "",
            private_ip=payload.get("PrivateIpAddress") or "",
            instance_type=payload.get("InstanceType") or "",
            launch_time=launch_time or "",
            availability_zone=(payload.get("Placement") or {}).get("AvailabilityZone")
            or "",
            tags={tag["Key"]: tag.get("Value", "") for tag in payload.get("Tags") or []},
        )

    def to_dict(self) -> dict[str, t.Any]:
        return {
            "instance_id": self.instance_id,
            "public_ip": self.public_ip,
            "private_ip": self.private_ip,
            "state": self.state.value,
            "instance_type": self.instance_type,
            "launch_time": self.launch_time,
            "availability_zone": self.availability_zone,
        }


@dataclass(frozen=True, slots=True)
class ServerResult:
    details: InstanceDetails
    server_name: str
    version: str
    server_type: str
    server_port: int = SERVER_PORT

    @property
    def server_address(self) -> str:
        return f"{self.details.public_ip}:{self.server_port}"

    @property
    def message(self) -> str:
        return (
            "Minecraft server is being set up. It may take 2-3 minutes for Docker "
            f"to install and the server to start. Connect using: {self.server_address}"
        )

    def to_dict(self) -> dict[str, t.Any]:
        payload = self.details.to_dict()
        payload.update(
            {
                "server_name": self.server_name,
                "minecraft_version": self.version,
                "server_type": self.server_type,
                "server_port": self.server_port,
                "server_address": self.server_address,
                "message": self.message,
            }
        )
        return payload
