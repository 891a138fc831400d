"""The admin client with every command group, and its constructors."""

from __future__ import annotations

from typing import Any

from .config import ConfigCommands
from .groups import GroupCommands
from .heal import HealCommands
from .health import HealthCommands
from .logs import LogCommands


class AdminClient(ConfigCommands, GroupCommands, HealCommands, LogCommands, HealthCommands):
    """Client for the object storage admin API."""


def new(
    endpoint: str, access_key_id: str, secret_access_key: str, secure: bool = True
) -> AdminClient:
    """Create an admin client using static credentials."""
    return AdminClient(endpoint, access_key_id, secret_access_key, secure)


def new_with_options(endpoint: str, options: Any) -> AdminClient:
    """Create an admin client from an Options value."""
    return AdminClient.from_options(endpoint, options)