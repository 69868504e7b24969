from __future__ import annotations

import os
import typing as t
from dataclasses import dataclass

import dotenv

FALLBACK_AMI = "ami-07ff62358b87c7116"
SECURITY_GROUP_NAME = "minecraft-server-sg"
INSTANCE_PROFILE_NAME = "MinecraftServerAutoShutdown"
START_TIMEOUT_SECONDS = 300.0
POLL_INTERVAL_SECONDS = 5.0
SHUTDOWN_DELAY_SECONDS = 300


def _float(env: t.Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be a number, got {raw!r}") from exc


@dataclass(frozen=True, slots=True)
class Settings:
    region: str | None = None
    default_ami: str | None = None
    default_key_name: str | None = None
    security_group_name: str = SECURITY_GROUP_NAME
    instance_profile_name: str | None = INSTANCE_PROFILE_NAME
    start_timeout: float = START_TIMEOUT_SECONDS
    poll_interval: float = POLL_INTERVAL_SECONDS
    shutdown_delay: int = SHUTDOWN_DELAY_SECONDS

    @classmethod
    def from_env(cls, env: t.Mapping[str, str] | None = None) -> "Settings":
        if env is None:
            dotenv.load_dotenv(dotenv.find_dotenv(usecwd=True))
            env = os.environ
        return cls(
            region=env.get("AWS_REGION") or None,
            default_ami=env.get("AWS_DEFAULT_AMI") or None,
            default_key_name=env.get("DEFAULT_KEY_NAME") or None,
            security_group_name=env.get("MCSERVER_SECURITY_GROUP") or SECURITY_GROUP_NAME,
            # An explicitly empty value disables the instance profile.
            instance_profile_name=env.get("MCSERVER_INSTANCE_PROFILE", INSTANCE_PROFILE_NAME)
            or None,
            start_timeout=_float(env, "MCSERVER_START_TIMEOUT", START_TIMEOUT_SECONDS),
            poll_interval=_float(env, "MCSERVER_POLL_INTERVAL", POLL_INTERVAL_SECONDS),
            shutdown_delay=int(
                _float(env, "MCSERVER_SHUTDOWN_DELAY", SHUTDOWN_DELAY_SECONDS)
            ),
        )
