"""Healing commands and the records they return."""

from __future__ import annotations

import datetime as dt
import enum
import json
from dataclasses import dataclass, field
from typing import Any

from .api import ADMIN_API_PREFIX, BaseClient, _parse_time
from .errors import ErrorResponse, error_from_response, invalid_argument


class HealScanMode(enum.IntEnum):
    """Kind of scan a heal sequence performs."""

    UNKNOWN = 0
    NORMAL = 1
    DEEP = 2


class HealItemType(str, enum.Enum):
    """Kind of item a heal result refers to."""

    METADATA = "metadata"
    BUCKET = "bucket"
    BUCKET_METADATA = "bucket-metadata"
    OBJECT = "object"


class DriveState(str, enum.Enum):
    """State of a drive as reported in heal results."""

    OK = "ok"
    OFFLINE = "offline"
    CORRUPT = "corrupt"
    MISSING = "missing"
    PERMISSION = "permission-denied"
    FAULTY = "faulty"
    UNKNOWN = "unknown"
    UNFORMATTED = "unformatted"


def _object(data: Any, what: str) -> dict:
    if not isinstance(data, dict):
        raise TypeError(f"{what} must be a JSON object")
    return data


def _get(data: dict, name: str, default: Any = None) -> Any:
    """Look up a JSON field, matching its name case-insensitively."""
    if name in data:
        value = data[name]
    else:
        lowered = name.lower()
        value = next(
            (v for k, v in data.items() if str(k).lower() == lowered), None
        )
    return default if value is None else value


def _scan_mode(value: Any) -> HealScanMode | int:
    number = int(value or 0)
    try:
        return HealScanMode(number)
    except ValueError:
        return number


def _list(value: Any, what: str) -> list:
    if not isinstance(value, list):
        raise TypeError(f"{what} must be a JSON array")
    return value


@dataclass
class HealOpts:
    """Options of a heal sequence."""

    recursive: bool = False
    dry_run: bool = False
    remove: bool = False
    recreate: bool = False
    scan_mode: HealScanMode | int = HealScanMode.UNKNOWN
    no_lock: bool = False

    def equal(self, other: "HealOpts") -> bool:
        """Compare the options that define a heal sequence."""
        return (
            self.recursive == other.recursive
            and self.dry_run == other.dry_run
            and self.remove == other.remove
            and self.scan_mode == other.scan_mode
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "recursive": self.recursive,
            "dryRun": self.dry_run,
            "remove": self.remove,
            "recreate": self.recreate,
            "scanMode": int(self.scan_mode),
            "nolock": self.no_lock,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "HealOpts":
        data = _object(data, "heal options")
        return cls(
            recursive=bool(_get(data, "recursive", False)),
            dry_run=bool(_get(data, "dryRun", False)),
            remove=bool(_get(data, "remove", False)),
            recreate=bool(_get(data, "recreate", False)),
            scan_mode=_scan_mode(_get(data, "scanMode", 0)),
            no_lock=bool(_get(data, "nolock", False)),
        )


@dataclass
class HealStartSuccess:
    """A heal sequence that was started (or stopped) successfully."""

    client_token: str = ""
    client_address: str = ""
    start_time: dt.datetime | None = None

    @classmethod
    def from_dict(cls, data: Any) -> "HealStartSuccess":
        data = _object(data, "heal start result")
        return cls(
            client_token=_get(data, "clientToken", ""),
            client_address=_get(data, "clientAddress", ""),
            start_time=_parse_time(_get(data, "startTime")),
        )


@dataclass
class HealDriveInfo:
    """One drive as seen before or after healing."""

    uuid: str = ""
    endpoint: str = ""
    state: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "HealDriveInfo":
        data = _object(data, "drive info")
        return cls(
            uuid=_get(data, "uuid", ""),
            endpoint=_get(data, "endpoint", ""),
            state=_get(data, "state", ""),
        )


def _drives(section: Any) -> list[HealDriveInfo]:
    section = _object(section, "drive section") if section is not None else {}
    return [HealDriveInfo.from_dict(d) for d in _list(_get(section, "drives", []), "drives")]


@dataclass
class HealResultItem:
    """Outcome of healing one item."""

    result_index: int = 0
    type: str = ""
    bucket: str = ""
    object_name: str = ""
    version_id: str = ""
    detail: str = ""
    parity_blocks: int = 0
    data_blocks: int = 0
    disk_count: int = 0
    set_count: int = 0
    before: list[HealDriveInfo] = field(default_factory=list)
    after: list[HealDriveInfo] = field(default_factory=list)
    object_size: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> "HealResultItem":
        data = _object(data, "heal result item")
        return cls(
            result_index=int(_get(data, "resultId", 0)),
            type=_get(data, "type", ""),
            bucket=_get(data, "bucket", ""),
            object_name=_get(data, "object", ""),
            version_id=_get(data, "versionId", ""),
            detail=_get(data, "detail", ""),
            parity_blocks=int(_get(data, "parityBlocks", 0)),
            data_blocks=int(_get(data, "dataBlocks", 0)),
            disk_count=int(_get(data, "diskCount", 0)),
            set_count=int(_get(data, "setCount", 0)),
            before=_drives(_get(data, "before")),
            after=_drives(_get(data, "after")),
            object_size=int(_get(data, "objectSize", 0)),
        )

    def _counts(self, state: DriveState) -> tuple[int, int]:
        before = sum(1 for d in self.before if d.state == state)
        after = sum(1 for d in self.after if d.state == state)
        return before, after

    def get_missing_counts(self) -> tuple[int, int]:
        """Missing drives before and after healing."""
        return self._counts(DriveState.MISSING)

    def get_offline_counts(self) -> tuple[int, int]:
        """Offline drives before and after healing."""
        return self._counts(DriveState.OFFLINE)

    def get_corrupted_counts(self) -> tuple[int, int]:
        """Corrupted drives before and after healing."""
        return self._counts(DriveState.CORRUPT)

    def get_online_counts(self) -> tuple[int, int]:
        """Healthy drives before and after healing."""
        return self._counts(DriveState.OK)


@dataclass
class HealTaskStatus:
    """Progress of a running heal sequence."""

    summary: str = ""
    failure_detail: str = ""
    start_time: dt.datetime | None = None
    heal_settings: HealOpts = field(default_factory=HealOpts)
    items: list[HealResultItem] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "HealTaskStatus":
        data = _object(data, "heal task status")
        settings = _get(data, "settings")
        return cls(
            summary=_get(data, "summary", ""),
            failure_detail=_get(data, "detail", ""),
            start_time=_parse_time(_get(data, "startTime")),
            heal_settings=HealOpts.from_dict(settings) if settings is not None else HealOpts(),
            items=[HealResultItem.from_dict(i) for i in _list(_get(data, "items", []), "items")],
        )


@dataclass
class SetStatus:
    """Heal status of one erasure set; disks are kept as decoded JSON."""

    id: str = ""
    pool_index: int = 0
    set_index: int = 0
    heal_status: str = ""
    heal_priority: str = ""
    disks: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "SetStatus":
        data = _object(data, "set status")
        return cls(
            id=_get(data, "id", ""),
            pool_index=int(_get(data, "pool_index", 0)),
            set_index=int(_get(data, "set_index", 0)),
            heal_status=_get(data, "heal_status", ""),
            heal_priority=_get(data, "heal_priority", ""),
            disks=[dict(_object(d, "disk")) for d in _list(_get(data, "disks", []), "disks")],
        )


@dataclass
class HealingDisk:
    """Progress of healing a freshly replaced disk."""

    id: str = ""
    pool_index: int = 0
    set_index: int = 0
    disk_index: int = 0
    endpoint: str = ""
    path: str = ""
    started: dt.datetime | None = None
    last_update: dt.datetime | None = None
    objects_healed: int = 0
    objects_failed: int = 0
    bytes_done: int = 0
    bytes_failed: int = 0
    bucket: str = ""
    object_name: str = ""
    queued_buckets: list[str] = field(default_factory=list)
    healed_buckets: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "HealingDisk":
        data = _object(data, "healing disk")
        return cls(
            id=_get(data, "id", ""),
            pool_index=int(_get(data, "pool_index", 0)),
            set_index=int(_get(data, "set_index", 0)),
            disk_index=int(_get(data, "disk_index", 0)),
            endpoint=_get(data, "endpoint", ""),
            path=_get(data, "path", ""),
            started=_parse_time(_get(data, "started")),
            last_update=_parse_time(_get(data, "last_update")),
            objects_healed=int(_get(data, "objects_healed", 0)),
            objects_failed=int(_get(data, "objects_failed", 0)),
            bytes_done=int(_get(data, "bytes_done", 0)),
            bytes_failed=int(_get(data, "bytes_failed", 0)),
            bucket=_get(data, "current_bucket", ""),
            object_name=_get(data, "current_object", ""),
            queued_buckets=list(_list(_get(data, "queued_buckets", []), "queued_buckets")),
            healed_buckets=list(_list(_get(data, "healed_buckets", []), "healed_buckets")),
        )


@dataclass
class BgHealState:
    """Status of background healing on a server or cluster."""

    scanned_items_count: int = 0
    heal_disks: list[str] = field(default_factory=list)
    sets: list[SetStatus] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "BgHealState":
        data = _object(data, "background heal state")
        return cls(
            scanned_items_count=int(_get(data, "ScannedItemsCount", 0)),
            heal_disks=list(_list(_get(data, "HealDisks", []), "HealDisks")),
            sets=[SetStatus.from_dict(s) for s in _list(_get(data, "sets", []), "sets")],
        )


class HealCommands(BaseClient):
    """Admin commands that start, query and stop healing."""

    def heal(
        self,
        bucket: str = "",
        prefix: str = "",
        heal_opts: HealOpts | None = None,
        client_token: str = "",
        force_start: bool = False,
        force_stop: bool = False,
    ) -> tuple[HealStartSuccess, HealTaskStatus]:
        """Start a heal sequence, or query one when client_token is given.

        force_start and force_stop are mutually exclusive.
        """
        if force_start and force_stop:
            raise invalid_argument("forceStart and forceStop set to true is not allowed")
        heal_opts = heal_opts or HealOpts()
        body = json.dumps(heal_opts.to_dict(), separators=(",", ":")).encode("utf-8")

        path = f"{ADMIN_API_PREFIX}/heal/{bucket}"
        if bucket and prefix:
            path += "/" + prefix

        query: dict[str, str] = {}
        if client_token:
            query["clientToken"] = client_token
            body = b""
        if force_start:
            query["forceStart"] = "true"
        elif force_stop:
            query["forceStop"] = "true"

        response = self._execute_method("POST", path, query=query, content=body)
        with response:
            if response.status_code != 200:
                raise error_from_response(response)
            payload = response.content

        try:
            decoded = json.loads(payload)
            if not client_token:
                return HealStartSuccess.from_dict(decoded), HealTaskStatus()
            return HealStartSuccess(), HealTaskStatus.from_dict(decoded)
        except (ValueError, TypeError) as exc:
            # The server may have sent an error after a success status.
            try:
                err = ErrorResponse.from_dict(json.loads(payload))
            except (ValueError, TypeError):
                raise exc from None
            raise err from exc

    def background_heal_status(self) -> BgHealState:
        """Return the background heal status of the server or cluster."""
        response = self._execute_method("POST", ADMIN_API_PREFIX + "/background-heal/status")
        with response:
            if response.status_code != 200:
                raise error_from_response(response)
            payload = response.content
        return BgHealState.from_dict(json.loads(payload))