from __future__ import annotations

import typing as t

from botocore.exceptions import BotoCoreError, ClientError

from .console import Console
from .errors import DependencyFailed
from .models import DEFAULT_RULES, IngressRule
from .provider import error_code

if t.TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from mypy_boto3_ec2 import EC2Client

DUPLICATE_GROUP = "InvalidGroup.Duplicate"


class IngressResolver:
    """Ensures a named security group exists, creating it at most once.

    Existence is all that is checked: a group found by name is reused as-is,
    whatever rules it currently carries.
    """

    def __init__(self, client: "EC2Client", *, console: Console | None = None) -> None:
        self.client = client
        self.console = console or Console()

    def find_rule_set(self, name: str) -> str | None:
        try:
            response = self.client.describe_security_groups(
                Filters=[{"Name": "group-name", "Values": [name]}]
            )
        except (ClientError, BotoCoreError) as exc:
            raise DependencyFailed(f"failed to look up security group {name}: {exc}") from exc
        groups = response.get("SecurityGroups") or []
        if not groups:
            return None
        return groups[0]["GroupId"]

    def ensure_rule_set(
        self,
        name: str,
        rules: t.Sequence[IngressRule] = DEFAULT_RULES,
    ) -> str:
        existing = self.find_rule_set(name)
        if existing:
            self.console.info(f"Reusing security group {name}: {existing}")
            return existing

        ports = ", ".join(str(rule.port) for rule in rules)
        try:
            created = self.client.create_security_group(
                GroupName=name,
                Description=f"Security group for Minecraft servers - allows ports {ports}",
            )
        except ClientError as exc:
            if error_code(exc) != DUPLICATE_GROUP:
                raise DependencyFailed(
                    f"failed to create security group {name}: {exc}"
                ) from exc
            # Another caller created it between our lookup and create.
            winner = self.find_rule_set(name)
            if not winner:
                raise DependencyFailed(
                    f"security group {name} reported duplicate but was not found"
                ) from exc
            self.console.warn(f"Security group {name} created concurrently; reusing {winner}")
            return winner
        except BotoCoreError as exc:
            raise DependencyFailed(f"failed to create security group {name}: {exc}") from exc

        group_id = created["GroupId"]
        try:
            self.client.authorize_security_group_ingress(
                GroupId=group_id,
                IpPermissions=[rule.to_permission() for rule in rules],
            )
        except (ClientError, BotoCoreError) as exc:
            self.console.warn(f"Failed to add ingress rules (may already exist): {exc}")

        self.console.info(f"Security group created: {group_id}")
        return group_id
