"""Renders the first-boot script attached to each server instance.

Rendering is a pure function of the request and the security group id: no
network access, no clock, no randomness. The script itself lives in
``templates/ec2-init.sh`` and uses ``%%{name}`` placeholders so that bash's own
``$`` syntax passes through untouched.
"""

from __future__ import annotations

import base64
import shlex
import string
import typing as t
from dataclasses import dataclass
from importlib import resources

from .models import SERVER_PORT, ServerRequest

SERVER_IMAGE = "itzg/minecraft-server:latest"
TEMPLATE_NAME = "ec2-init.sh"


class ScriptTemplate(string.Template):
    delimiter = "%%"


@dataclass(frozen=True, slots=True)
class MonitorConfig:
    container: str = "minecraft"
    delay: int = 300
    tick: int = 30
    identity_attempts: int = 10

    def to_args(self) -> str:
        return shlex.join(
            [
                "--container",
                self.container,
                "--delay",
                str(self.delay),
                "--tick",
                str(self.tick),
                "--identity-attempts",
                str(self.identity_attempts),
            ]
        )


def _flag(value: bool) -> str:
    return "true" if value else "false"


def build_env_assignments(request: ServerRequest) -> list[str]:
    assignments = [
        f"EULA={_flag(request.eula).upper()}",
        f"TYPE={request.server_type}",
        f"VERSION={request.version}",
        f"MEMORY={request.memory}",
        f"MAX_PLAYERS={request.max_players}",
        f"MOTD={request.motd}",
        f"DIFFICULTY={request.difficulty}",
        f"MODE={request.gamemode}",
        f"PVP={_flag(request.pvp)}",
        f"ONLINE_MODE={_flag(request.online_mode)}",
        f"ENABLE_COMMAND_BLOCK={_flag(request.enable_command_block)}",
        "OP_PERMISSION_LEVEL=2",
    ]
    if request.level_seed:
        assignments.append(f"SEED={request.level_seed}")
    if request.level_name:
        assignments.append(f"LEVEL={request.level_name}")
    if request.modpack_url:
        assignments.append(f"MODPACK={request.modpack_url}")
    plugins = [url for url in request.plugin_urls if url]
    if plugins:
        assignments.append(f"PLUGINS={','.join(plugins)}")
    for key in sorted(request.extra_env):
        assignments.append(f"{key}={request.extra_env[key]}")
    return assignments


def docker_env_flags(assignments: t.Iterable[str]) -> str:
    return " \\\n  ".join(f"-e {shlex.quote(item)}" for item in assignments)


def load_template() -> str:
    return (resources.files(__package__) / "templates" / TEMPLATE_NAME).read_text(
        encoding="utf-8"
    )


def load_monitor_source() -> str:
    return (resources.files(__package__) / "idle_monitor.py").read_text(encoding="utf-8")


def render_user_data(
    request: ServerRequest,
    rule_set_id: str,
    *,
    monitor_source: str | None = None,
    monitor_config: MonitorConfig | None = None,
) -> str:
    source = load_monitor_source() if monitor_source is None else monitor_source
    if not source.endswith("\n"):
        source += "\n"
    config = monitor_config or MonitorConfig()
    return ScriptTemplate(load_template()).substitute(
        security_group_id=rule_set_id,
        image=SERVER_IMAGE,
        container=shlex.quote(config.container),
        server_port=SERVER_PORT,
        docker_env_flags=docker_env_flags(build_env_assignments(request)),
        monitor_source=source,
        monitor_args=config.to_args(),
    )


def encode_user_data(script: str) -> str:
    return base64.b64encode(script.encode("utf-8")).decode("ascii")
