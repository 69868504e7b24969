#!/usr/bin/env python3
"""
Idle shutdown monitor for a single Minecraft server container.

This file is shipped verbatim inside the EC2 user data and runs on the
instance under systemd, so it only depends on the standard library and must
stay compatible with the system python3 of Amazon Linux 2023 (3.9).

The flow:
1. Resolve this instance's id and region from the instance metadata service
   (IMDSv2), retrying a bounded number of times; exit 1 if that never works
2. Every tick, read the container output written since the previous tick
3. Start a countdown when the server reports it is empty, cancel it when a
   player joins or the server resumes
4. Terminate the instance once the countdown reaches the delay, or as soon as
   the container stops running
"""

from __future__ import annotations

import argparse
import subprocess
import sys
import time
import typing as t
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

# Contract with the itzg/minecraft-server image's log format.
IDLE_SIGNAL = "Server empty for 60 seconds, pausing"
RESUME_SIGNALS = ("joined the game", "Server resumed")

IMDS_URL = "http://169.254.169.254/latest"
IMDS_TOKEN_TTL = "21600"
DEFAULT_CONTAINER = "minecraft"
DEFAULT_DELAY_SECONDS = 300
DEFAULT_TICK_SECONDS = 30
DEFAULT_IDENTITY_ATTEMPTS = 10
MAX_BACKOFF_SECONDS = 30.0
COMMAND_TIMEOUT_SECONDS = 30.0


def log(message: str) -> None:
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    print(f"[{stamp}] [idle-monitor] {message}", flush=True)


class IdentityResolutionFailed(RuntimeError):
    pass


class Verdict(Enum):
    CONTINUE = "continue"
    TERMINATE = "terminate"


@dataclass
class MonitorState:
    idle_since: t.Optional[float] = None
    last_activity: t.Optional[float] = None


@dataclass(frozen=True)
class Identity:
    instance_id: str
    region: str


class IdleMonitor:
    def __init__(
        self,
        *,
        delay: float = DEFAULT_DELAY_SECONDS,
        idle_signal: str = IDLE_SIGNAL,
        resume_signals: t.Sequence[str] = RESUME_SIGNALS,
        log_fn: t.Callable[[str], None] = log,
    ) -> None:
        self.delay = delay
        self.idle_signal = idle_signal
        self.resume_signals = tuple(resume_signals)
        self.state = MonitorState()
        self._log = log_fn

    def observe(self, now: float, window: t.Sequence[str], running: bool) -> Verdict:
        """Advance the automaton by one tick.

        ``window`` is the server output seen since the previous tick. Lines are
        applied in order, so the last signal in the window decides whether a
        countdown is running when the tick ends.
        """
        if not running:
            self._log("server container is not running")
            return Verdict.TERMINATE

        for line in window:
            if self.idle_signal in line:
                if self.state.idle_since is None:
                    self.state.idle_since = now
                    self._log(
                        f"server is empty; shutting down in {self.delay:.0f}s "
                        "unless a player joins"
                    )
            elif any(signal in line for signal in self.resume_signals):
                self.state.last_activity = now
                if self.state.idle_since is not None:
                    self._log("activity resumed; countdown cancelled")
                self.state.idle_since = None

        if self.state.idle_since is not None and now - self.state.idle_since >= self.delay:
            self._log(f"server idle for {now - self.state.idle_since:.0f}s")
            return Verdict.TERMINATE
        return Verdict.CONTINUE


def _imds_request(path: str, *, token: str | None, method: str = "GET", timeout: float) -> str:
    headers = {}
    if token is None:
        headers["X-aws-ec2-metadata-token-ttl-seconds"] = IMDS_TOKEN_TTL
    else:
        headers["X-aws-ec2-metadata-token"] = token
    request = urllib.request.Request(f"{IMDS_URL}/{path}", headers=headers, method=method)
    with urllib.request.urlopen(request, timeout=timeout) as response:
        body = response.read().decode("utf-8").strip()
    if not body:
        raise ValueError(f"empty metadata response for {path}")
    return body


def fetch_identity(timeout: float = 2.0) -> Identity:
    token = _imds_request("api/token", token=None, method="PUT", timeout=timeout)
    instance_id = _imds_request("meta-data/instance-id", token=token, timeout=timeout)
    region = _imds_request("meta-data/placement/region", token=token, timeout=timeout)
    return Identity(instance_id=instance_id, region=region)


def resolve_identity(
    fetch: t.Callable[[], Identity] = fetch_identity,
    *,
    attempts: int = DEFAULT_IDENTITY_ATTEMPTS,
    backoff: float = 2.0,
    sleep: t.Callable[[float], None] = time.sleep,
) -> Identity:
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            identity = fetch()
        except (OSError, ValueError) as exc:
            last_error = exc
            log(f"identity lookup failed (attempt {attempt}/{attempts}): {exc}")
            if attempt == attempts:
                break
            sleep(min(backoff * 2 ** (attempt - 1), MAX_BACKOFF_SECONDS))
            continue
        log(f"running on instance {identity.instance_id} in {identity.region}")
        return identity
    raise IdentityResolutionFailed(
        f"could not resolve instance identity after {attempts} attempts: {last_error}"
    )


class DockerLogSource:
    """Returns the container output produced since the previous successful read."""

    def __init__(
        self,
        container: str,
        *,
        lookback: float = DEFAULT_TICK_SECONDS,
        timeout: float = COMMAND_TIMEOUT_SECONDS,
        runner: t.Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self.container = container
        self.lookback = lookback
        self.timeout = timeout
        self._runner = runner
        self._since: float | None = None

    def __call__(self, now: float) -> list[str]:
        since = self._since if self._since is not None else now - self.lookback
        try:
            result = self._runner(
                [
                    "docker",
                    "logs",
                    "--since",
                    f"{since:.3f}",
                    "--until",
                    f"{now:.3f}",
                    self.container,
                ],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            log(f"docker logs failed: {exc}")
            return []
        if result.returncode != 0:
            log(f"docker logs failed: {result.stderr.strip()}")
            return []
        self._since = now
        return (result.stdout + result.stderr).splitlines()


def docker_running(
    container: str,
    *,
    timeout: float = COMMAND_TIMEOUT_SECONDS,
    runner: t.Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> t.Optional[bool]:
    """True or False from ``docker inspect``; None when docker could not answer."""
    try:
        result = runner(
            ["docker", "inspect", "-f", "{{.State.Running}}", container],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        log(f"docker inspect failed: {exc}")
        return None
    return result.returncode == 0 and result.stdout.strip() == "true"


class AwsCliTerminator:
    def __init__(
        self,
        *,
        timeout: float = COMMAND_TIMEOUT_SECONDS,
        runner: t.Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self.timeout = timeout
        self._runner = runner

    def __call__(self, identity: Identity) -> bool:
        args = [
            "aws",
            "ec2",
            "terminate-instances",
            "--region",
            identity.region,
            "--instance-ids",
            identity.instance_id,
            "--output",
            "json",
        ]
        log(f"+ {' '.join(args)}")
        try:
            result = self._runner(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            log(f"terminate-instances failed: {exc}")
            return False
        if result.returncode != 0:
            log(f"terminate-instances failed (rc={result.returncode}): {result.stderr.strip()}")
            return False
        log("termination requested")
        return True


def run(
    monitor: IdleMonitor,
    identity: Identity,
    *,
    read_window: t.Callable[[float], t.Sequence[str]],
    is_running: t.Callable[[], t.Optional[bool]],
    terminate: t.Callable[[Identity], bool],
    tick: float = DEFAULT_TICK_SECONDS,
    clock: t.Callable[[], float] = time.time,
    sleep: t.Callable[[float], None] = time.sleep,
    max_ticks: int | None = None,
) -> bool:
    """Tick until the monitor asks for termination; returns True if it did.

    A tick where the container state is unknown is skipped without touching
    the countdown.
    """
    ticks = 0
    while max_ticks is None or ticks < max_ticks:
        now = clock()
        running = is_running()
        if running is None:
            log("container state unknown; skipping tick")
        else:
            window = read_window(now) if running else []
            if monitor.observe(now, window, running) is Verdict.TERMINATE:
                terminate(identity)
                return True
        ticks += 1
        sleep(tick)
    return False


def parse_args(argv: t.Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Terminate this instance once the Minecraft server stays empty"
    )
    parser.add_argument("--container", default=DEFAULT_CONTAINER, help="Container to watch")
    parser.add_argument(
        "--delay",
        type=float,
        default=DEFAULT_DELAY_SECONDS,
        help="Seconds the server must stay empty before terminating",
    )
    parser.add_argument(
        "--tick", type=float, default=DEFAULT_TICK_SECONDS, help="Polling interval in seconds"
    )
    parser.add_argument(
        "--identity-attempts",
        type=int,
        default=DEFAULT_IDENTITY_ATTEMPTS,
        help="Metadata lookups before giving up",
    )
    return parser.parse_args(argv)


def main(argv: t.Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        identity = resolve_identity(attempts=args.identity_attempts)
    except IdentityResolutionFailed as exc:
        log(f"giving up: {exc}")
        return 1

    log(
        f"watching container {args.container} "
        f"(delay={args.delay:.0f}s, tick={args.tick:.0f}s)"
    )
    run(
        IdleMonitor(delay=args.delay),
        identity,
        read_window=DockerLogSource(args.container, lookback=args.tick),
        is_running=lambda: docker_running(args.container),
        terminate=AwsCliTerminator(),
        tick=args.tick,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
