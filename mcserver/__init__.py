"""Ephemeral Minecraft server provisioning on EC2."""

from .errors import MCServerError
from .models import InstanceDetails, InstanceState, ServerRequest, ServerResult

__version__ = "0.1.0"

__all__ = [
    "InstanceDetails",
    "InstanceState",
    "MCServerError",
    "ServerRequest",
    "ServerResult",
]
