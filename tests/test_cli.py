from __future__ import annotations

import pytest

from conftest import FakeEc2Client
from mcserver import cli
from mcserver.config import Settings
from mcserver.errors import DependencyFailed


@pytest.fixture(autouse=True)
def fixed_settings(monkeypatch):
    monkeypatch.setattr(
        cli.Settings, "from_env", classmethod(lambda cls, env=None: Settings(shutdown_delay=120))
    )


def test_render_user_data_prints_script(capsys):
    code = cli.main(
        [
            "render-user-data",
            "--accept-eula",
            "--type",
            "FABRIC",
            "--env",
            "TZ=Europe/Paris",
            "--security-group-id",
            "sg-42",
        ]
    )

    out = capsys.readouterr().out
    assert code == 0
    assert out.startswith("#!/bin/bash\n")
    assert "-e TYPE=FABRIC" in out
    assert "-e TZ=Europe/Paris" in out
    assert "# Security group: sg-42" in out
    assert "--delay 120" in out


def test_malformed_env_is_usage_error(capsys):
    assert cli.main(["render-user-data", "--env", "NOVALUE"]) == 2
    assert "expected KEY=VALUE" in capsys.readouterr().out


def test_core_failure_exits_one(monkeypatch, capsys):
    def broken_pipeline(settings, console):
        raise DependencyFailed("failed to look up security group minecraft-server-sg")

    monkeypatch.setattr(cli, "build_pipeline", broken_pipeline)
    assert cli.main(["info", "i-1"]) == 1
    assert "DependencyFailed" in capsys.readouterr().out


def test_build_request_maps_flags():
    args = cli.parse_args(
        [
            "create",
            "--accept-eula",
            "--plugin-url",
            "https://example.com/a.jar",
            "--plugin-url",
            "https://example.com/b.jar",
            "--max-players",
            "20",
            "--pvp",
        ]
    )
    request = cli.build_request(args)

    assert request.eula is True
    assert request.pvp is True
    assert request.max_players == 20
    assert request.plugin_urls == ("https://example.com/a.jar", "https://example.com/b.jar")
    assert request.server_type == "VANILLA"


def test_info_and_stop_skip_boot_image_lookup(monkeypatch, capsys):
    ec2 = FakeEc2Client()
    ec2.state_sequence = ["running"]
    created = ec2.run_instances(
        InstanceType="t3.medium", TagSpecifications=[{"ResourceType": "instance", "Tags": []}]
    )
    instance_id = created["Instances"][0]["InstanceId"]
    monkeypatch.setattr(cli, "create_ec2_client", lambda settings: ec2)

    assert cli.main(["--quiet", "info", instance_id]) == 0
    assert cli.main(["--quiet", "stop", instance_id]) == 0

    assert f'"instance_id": "{instance_id}"' in capsys.readouterr().out
    assert ec2.calls_to("describe_images") == []
    assert ec2.calls_to("stop_instances") == [{"InstanceIds": [instance_id]}]
