"""Server console log entry records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


def _mapping(data: Any) -> dict:
    return data if isinstance(data, dict) else {}


def _non_empty(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
    return {name: value for name, value in pairs if value}


@dataclass
class LogArgs:
    """Arguments of the API call a log entry refers to."""

    bucket: str = ""
    object_name: str = ""
    metadata: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return _non_empty(
            [
                ("bucket", self.bucket),
                ("object", self.object_name),
                ("metadata", dict(self.metadata)),
            ]
        )

    @classmethod
    def from_dict(cls, data: Any) -> "LogArgs":
        data = _mapping(data)
        return cls(
            bucket=data.get("bucket") or "",
            object_name=data.get("object") or "",
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class LogTrace:
    """Error trace attached to a log entry."""

    message: str = ""
    source: list[str] = field(default_factory=list)
    variables: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return _non_empty(
            [
                ("message", self.message),
                ("source", list(self.source)),
                ("variables", dict(self.variables)),
            ]
        )

    @classmethod
    def from_dict(cls, data: Any) -> "LogTrace":
        data = _mapping(data)
        return cls(
            message=data.get("message") or "",
            source=list(data.get("source") or []),
            variables=dict(data.get("variables") or {}),
        )


@dataclass
class LogAPI:
    """API name and arguments of a log entry."""

    name: str = ""
    args: LogArgs | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.name:
            out["name"] = self.name
        if self.args is not None:
            out["args"] = self.args.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "LogAPI":
        data = _mapping(data)
        args = data.get("args")
        return cls(
            name=data.get("name") or "",
            args=LogArgs.from_dict(args) if args is not None else None,
        )


@dataclass
class LogEntry:
    """One server log entry."""

    deployment_id: str = ""
    level: str = ""
    log_kind: str = ""
    time: str = ""
    api: LogAPI | None = None
    remote_host: str = ""
    host: str = ""
    request_id: str = ""
    user_agent: str = ""
    message: str = ""
    trace: LogTrace | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.deployment_id:
            out["deploymentid"] = self.deployment_id
        out["level"] = self.level
        out["errKind"] = self.log_kind
        out["time"] = self.time
        if self.api is not None:
            out["api"] = self.api.to_dict()
        out.update(
            _non_empty(
                [
                    ("remotehost", self.remote_host),
                    ("host", self.host),
                    ("requestID", self.request_id),
                    ("userAgent", self.user_agent),
                    ("message", self.message),
                ]
            )
        )
        if self.trace is not None:
            out["error"] = self.trace.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "LogEntry":
        data = _mapping(data)
        api = data.get("api")
        trace = data.get("error")
        return cls(
            deployment_id=data.get("deploymentid") or "",
            level=data.get("level") or "",
            log_kind=data.get("errKind") or "",
            time=data.get("time") or "",
            api=LogAPI.from_dict(api) if api is not None else None,
            remote_host=data.get("remotehost") or "",
            host=data.get("host") or "",
            request_id=data.get("requestID") or "",
            user_agent=data.get("userAgent") or "",
            message=data.get("message") or "",
            trace=LogTrace.from_dict(trace) if trace is not None else None,
        )