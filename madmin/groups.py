"""Group management commands."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import Any, Mapping

import requests

from .api import ADMIN_API_PREFIX, BaseClient
from .errors import error_from_response


class GroupStatus(str, enum.Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"


@dataclass
class GroupAddRemove:
    """Request to add members to, or remove them from, a group."""

    group: str = ""
    members: list[str] = field(default_factory=list)
    is_remove: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"group": self.group, "members": list(self.members), "isRemove": self.is_remove}


@dataclass
class GroupDesc:
    """A group with its status, members and attached policy."""

    name: str = ""
    status: str = ""
    members: list[str] = field(default_factory=list)
    policy: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "GroupDesc":
        data = data if isinstance(data, dict) else {}
        return cls(
            name=data.get("name") or "",
            status=data.get("status") or "",
            members=list(data.get("members") or []),
            policy=data.get("policy") or "",
        )


class GroupCommands(BaseClient):
    """Admin commands that manage groups."""

    def _call_group(
        self,
        method: str,
        rel_path: str,
        query: Mapping[str, Any] | None = None,
        content: bytes = b"",
    ) -> requests.Response:
        response = self._execute_method(method, rel_path, query=query, content=content)
        with response:
            if response.status_code != 200:
                raise error_from_response(response)
        return response

    def update_group_members(self, g: GroupAddRemove) -> None:
        """Add or remove members; the server creates or removes the group as needed."""
        content = json.dumps(g.to_dict(), separators=(",", ":")).encode("utf-8")
        self._call_group("PUT", ADMIN_API_PREFIX + "/update-group-members", content=content)

    def get_group_description(self, group: str) -> GroupDesc:
        response = self._call_group("GET", ADMIN_API_PREFIX + "/group", query={"group": group})
        return GroupDesc.from_dict(json.loads(response.content))

    def list_groups(self) -> list[str]:
        response = self._call_group("GET", ADMIN_API_PREFIX + "/groups")
        groups = json.loads(response.content)
        return list(groups or [])

    def set_group_status(self, group: str, status: GroupStatus | str) -> None:
        status_value = GroupStatus(status).value
        self._call_group(
            "PUT",
            ADMIN_API_PREFIX + "/set-group-status",
            query={"group": group, "status": status_value},
        )