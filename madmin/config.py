"""Server configuration commands: full config, key/value pairs, help and history."""

from __future__ import annotations

import datetime as dt
import json
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Mapping, Union

import requests

from .api import ADMIN_API_PREFIX, BaseClient, _parse_time
from .encrypt import decrypt_data, encrypt_data
from .errors import error_from_response

MAX_CONFIG_JSON_SIZE = 256 * 1024  # 256 KiB

CONFIG_APPLIED_HEADER = "x-minio-config-applied"
CONFIG_APPLIED_TRUE = "true"

DEFAULT_HISTORY_COUNT = 10

_DAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

ConfigSource = Union[bytes, bytearray, memoryview, str, BinaryIO]


class ConfigTooLargeError(ValueError):
    """The configuration exceeds the size the server accepts."""

    def __init__(self, message: str = "bytes.Buffer: too large") -> None:
        super().__init__(message)


def _check_fields(data: Mapping[str, Any], allowed: frozenset, what: str) -> None:
    for name in data:
        if name not in allowed:
            raise ValueError(f'json: unknown field "{name}" in {what}')


@dataclass
class HelpKV:
    """Help for a single configuration key."""

    key: str = ""
    description: str = ""
    optional: bool = False
    type: str = ""
    multiple_targets: bool = False

    _FIELDS = frozenset({"key", "description", "optional", "type", "multipleTargets"})

    @classmethod
    def from_dict(cls, data: Any) -> "HelpKV":
        if not isinstance(data, dict):
            raise ValueError("help key entry must be a JSON object")
        _check_fields(data, cls._FIELDS, "help key")
        return cls(
            key=data.get("key") or "",
            description=data.get("description") or "",
            optional=bool(data.get("optional", False)),
            type=data.get("type") or "",
            multiple_targets=bool(data.get("multipleTargets", False)),
        )


@dataclass
class Help:
    """Help for a configuration sub-system, keys in server order."""

    sub_sys: str = ""
    description: str = ""
    multiple_targets: bool = False
    keys_help: list[HelpKV] = field(default_factory=list)

    _FIELDS = frozenset({"subSys", "description", "multipleTargets", "keysHelp"})

    @classmethod
    def from_dict(cls, data: Any) -> "Help":
        if not isinstance(data, dict):
            raise ValueError("help must be a JSON object")
        _check_fields(data, cls._FIELDS, "help")
        return cls(
            sub_sys=data.get("subSys") or "",
            description=data.get("description") or "",
            multiple_targets=bool(data.get("multipleTargets", False)),
            keys_help=[HelpKV.from_dict(item) for item in data.get("keysHelp") or []],
        )

    def keys(self) -> list[str]:
        return [kh.key for kh in self.keys_help]


@dataclass
class ConfigHistoryEntry:
    """A previous configuration change, identified by its restore ID."""

    restore_id: str = ""
    create_time: dt.datetime | None = None
    data: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "ConfigHistoryEntry":
        data = data if isinstance(data, dict) else {}
        return cls(
            restore_id=data.get("restoreId") or "",
            create_time=_parse_time(data.get("createTime")),
            data=data.get("data") or "",
        )

    def create_time_formatted(self) -> str:
        """Creation time in HTTP date layout, e.g. 'Mon, 02 Jan 2006 15:04:05 GMT'."""
        t = self.create_time or dt.datetime(1, 1, 1)
        return (
            f"{_DAYS[t.weekday()]}, {t.day:02d} {_MONTHS[t.month - 1]} {t.year:04d} "
            f"{t.hour:02d}:{t.minute:02d}:{t.second:02d} GMT"
        )


def _read_limited(stream: Any, limit: int) -> bytes:
    buf = bytearray()
    while len(buf) < limit:
        chunk = stream.read(limit - len(buf))
        if not chunk:
            break
        buf.extend(chunk.encode("utf-8") if isinstance(chunk, str) else chunk)
    return bytes(buf)


def _read_config(config: ConfigSource) -> bytes:
    if isinstance(config, (bytes, bytearray, memoryview)):
        data = bytes(config)
    elif isinstance(config, str):
        data = config.encode("utf-8")
    else:
        data = _read_limited(config, MAX_CONFIG_JSON_SIZE + 1)
    if len(data) > MAX_CONFIG_JSON_SIZE:
        raise ConfigTooLargeError()
    if not data:
        raise EOFError("EOF")
    return data


class ConfigCommands(BaseClient):
    """Admin commands that read and change the server configuration."""

    def _call(
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

    def get_config(self) -> bytes:
        """Return the whole server configuration, decrypted."""
        response = self._call("GET", ADMIN_API_PREFIX + "/config")
        return decrypt_data(self._secret_key, response.content)

    def set_config(self, config: ConfigSource) -> None:
        """Replace the whole server configuration (at most 256 KiB)."""
        data = _read_config(config)
        content = encrypt_data(self._secret_key, data)
        self._call("PUT", ADMIN_API_PREFIX + "/config", content=content)

    def help_config_kv(self, sub_sys: str, key: str = "", env_only: bool = False) -> Help:
        """Return help for a configuration sub-system or one of its keys."""
        query = {"subSys": sub_sys, "key": key}
        if env_only:
            query["env"] = ""
        response = self._call("GET", ADMIN_API_PREFIX + "/help-config-kv", query=query)
        return Help.from_dict(json.loads(response.content))

    def clear_config_history_kv(self, restore_id: str) -> None:
        """Delete a history entry; 'all' clears every entry."""
        self._call(
            "DELETE",
            ADMIN_API_PREFIX + "/clear-config-history-kv",
            query={"restoreId": restore_id},
        )

    def restore_config_history_kv(self, restore_id: str) -> None:
        """Restore the configuration saved under restore_id."""
        self._call(
            "PUT",
            ADMIN_API_PREFIX + "/restore-config-history-kv",
            query={"restoreId": restore_id},
        )

    def list_config_history_kv(self, count: int = 0) -> list[ConfigHistoryEntry]:
        """List up to count history entries (10 when count is 0), sorted by creation time."""
        if count == 0:
            count = DEFAULT_HISTORY_COUNT
        response = self._call(
            "GET",
            ADMIN_API_PREFIX + "/list-config-history-kv",
            query={"count": str(count)},
        )
        data = decrypt_data(self._secret_key, response.content)
        entries = json.loads(data)
        return [ConfigHistoryEntry.from_dict(item) for item in entries or []]

    def del_config_kv(self, k: str) -> None:
        """Delete a configuration key."""
        content = encrypt_data(self._secret_key, k.encode("utf-8"))
        self._call("DELETE", ADMIN_API_PREFIX + "/del-config-kv", content=content)

    def set_config_kv(self, kv: str) -> bool:
        """Set configuration key/values; return True when a restart is needed."""
        content = encrypt_data(self._secret_key, kv.encode("utf-8"))
        response = self._call("PUT", ADMIN_API_PREFIX + "/set-config-kv", content=content)
        return response.headers.get(CONFIG_APPLIED_HEADER) != CONFIG_APPLIED_TRUE

    def get_config_kv(self, key: str) -> bytes:
        """Return the decrypted value of a configuration key."""
        response = self._call(
            "GET", ADMIN_API_PREFIX + "/get-config-kv", query={"key": key}
        )
        return decrypt_data(self._secret_key, response.content)