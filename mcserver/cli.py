#!/usr/bin/env python3
"""mcserver CLI entry point"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import typing as t

from .clock import SystemClock
from .config import Settings
from .console import Console
from .errors import MCServerError
from .ingress import IngressResolver
from .models import SERVER_TYPES, ServerRequest
from .pipeline import ProvisioningPipeline
from .provider import Ec2Provider, create_ec2_client
from .userdata import MonitorConfig, render_user_data


def _parse_env(values: t.Sequence[str]) -> dict[str, str]:
    env: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {item!r}")
        env[key] = value
    return env


def build_request(args: argparse.Namespace) -> ServerRequest:
    return ServerRequest(
        server_type=args.type,
        version=args.version,
        instance_type=args.instance_type or "",
        key_name=args.key_name or "",
        server_name=args.name or "",
        user_email=args.email or "",
        motd=args.motd or "",
        max_players=args.max_players,
        gamemode=args.gamemode or "",
        difficulty=args.difficulty or "",
        level_seed=args.seed or "",
        level_name=args.level_name or "",
        eula=args.accept_eula,
        enable_command_block=args.enable_command_block,
        pvp=args.pvp,
        online_mode=args.online_mode,
        modpack_url=args.modpack_url or "",
        plugin_urls=tuple(args.plugin_url),
        extra_env=_parse_env(args.env),
    )


def build_pipeline(settings: Settings, console: Console) -> ProvisioningPipeline:
    client = create_ec2_client(settings)
    clock = SystemClock()
    provider = Ec2Provider(client, settings, console=console, clock=clock)
    resolver = IngressResolver(client, console=console)
    return ProvisioningPipeline(provider, resolver, settings, console=console)


def _add_request_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--type", default="VANILLA", choices=SERVER_TYPES)
    parser.add_argument("--version", default="LATEST", help="Minecraft version or LATEST")
    parser.add_argument("--instance-type", help="EC2 instance type override")
    parser.add_argument("--key-name", help="SSH key pair name")
    parser.add_argument("--name", help="Name tag for the instance")
    parser.add_argument("--email", help="Owner e-mail, used for the default name")
    parser.add_argument("--motd")
    parser.add_argument("--max-players", type=int, default=0)
    parser.add_argument(
        "--gamemode", choices=("survival", "creative", "adventure", "spectator")
    )
    parser.add_argument("--difficulty", choices=("peaceful", "easy", "normal", "hard"))
    parser.add_argument("--seed")
    parser.add_argument("--level-name")
    parser.add_argument("--modpack-url")
    parser.add_argument("--plugin-url", action="append", default=[])
    parser.add_argument(
        "--env",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Extra container environment (repeatable)",
    )
    parser.add_argument("--pvp", action="store_true")
    parser.add_argument("--online-mode", action="store_true")
    parser.add_argument("--enable-command-block", action="store_true")
    parser.add_argument(
        "--accept-eula",
        action="store_true",
        help="Accept the Minecraft EULA (required to create a server)",
    )


def parse_args(argv: t.Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mcserver",
        description="Provision ephemeral Minecraft servers on EC2",
    )
    parser.add_argument("--quiet", action="store_true", help="Only print results")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Create a server and wait until it runs")
    _add_request_arguments(create)

    info = sub.add_parser("info", help="Describe a server instance")
    info.add_argument("instance_id")

    stop = sub.add_parser("stop", help="Stop a server instance")
    stop.add_argument("instance_id")

    terminate = sub.add_parser("terminate", help="Terminate a server instance")
    terminate.add_argument("instance_id")

    render = sub.add_parser("render-user-data", help="Print the boot script and exit")
    _add_request_arguments(render)
    render.add_argument("--security-group-id", default="sg-00000000000000000")

    return parser.parse_args(argv)


async def run_command(args: argparse.Namespace, settings: Settings, console: Console) -> int:
    if args.command == "render-user-data":
        request = build_request(args).with_defaults(
            SystemClock().now(), default_key_name=settings.default_key_name
        )
        script = render_user_data(
            request,
            args.security_group_id,
            monitor_config=MonitorConfig(delay=settings.shutdown_delay),
        )
        sys.stdout.write(script)
        return 0

    pipeline = build_pipeline(settings, console)
    if args.command == "create":
        await asyncio.to_thread(pipeline.provider.resolve_boot_image)
        result = await pipeline.provision(build_request(args))
        console.always(json.dumps(result.to_dict(), indent=2))
    elif args.command == "info":
        details = await pipeline.server_info(args.instance_id)
        console.always(json.dumps(details.to_dict(), indent=2))
    elif args.command == "stop":
        await pipeline.stop_server(args.instance_id)
    elif args.command == "terminate":
        await asyncio.to_thread(pipeline.provider.terminate, args.instance_id)
    return 0


def main(argv: t.Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    console = Console(quiet=args.quiet)
    try:
        settings = Settings.from_env()
        return asyncio.run(run_command(args, settings, console))
    except MCServerError as exc:
        console.always(f"Error: {exc}")
        return 1
    except (argparse.ArgumentTypeError, ValueError) as exc:
        console.always(f"Error: {exc}")
        return 2
    except KeyboardInterrupt:
        return 1


if __name__ == "__main__":
    sys.exit(main())
