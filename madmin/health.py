"""Cluster health report records and the health-info admin command."""

from __future__ import annotations

import datetime as dt
import enum
import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

import requests

from .api import ADMIN_API_PREFIX, BaseClient
from .errors import error_from_response
from .logs import _CHUNK_SIZE, _json_values
from .sysinfo import CPUs, MemInfo, NodeCommon, OSInfo, Partitions, ProcInfo

HEALTH_INFO_VERSION_0 = ""
HEALTH_INFO_VERSION_1 = "1"
HEALTH_INFO_VERSION_2 = "2"
HEALTH_INFO_VERSION = HEALTH_INFO_VERSION_2

_ZERO_TIME = "0001-01-01T00:00:00Z"


class HealthDataType(str, enum.Enum):
    """Kinds of data a health report can include."""

    PERF_DRIVE = "perfdrive"
    PERF_NET = "perfnet"
    MINIO_INFO = "minioinfo"
    MINIO_CONFIG = "minioconfig"
    SYS_CPU = "syscpu"
    SYS_DRIVE_HW = "sysdrivehw"
    SYS_DOCKER = "sysdocker"
    SYS_OS_INFO = "sysosinfo"
    SYS_LOAD = "sysload"
    SYS_MEM = "sysmem"
    SYS_NET = "sysnet"
    SYS_PROCESS = "sysprocess"


HEALTH_DATA_TYPES_LIST = list(HealthDataType)
HEALTH_DATA_TYPES_MAP = {t.value: t for t in HealthDataType}


def _put(out: dict[str, Any], name: str, value: Any) -> None:
    """Store value unless it is empty, the way optional JSON fields behave."""
    if value:
        out[name] = value


def _format_time(value: dt.datetime | None) -> str:
    """Format a time in RFC 3339 with trimmed nanosecond precision."""
    if value is None:
        return _ZERO_TIME
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    frac = f"{value.microsecond:06d}".rstrip("0")
    if frac:
        text += "." + frac
    offset = value.utcoffset() or dt.timedelta(0)
    if offset == dt.timedelta(0):
        return text + "Z"
    minutes = int(offset.total_seconds()) // 60
    sign = "+" if minutes >= 0 else "-"
    minutes = abs(minutes)
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def _escape(text: str) -> str:
    return (
        text.replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
        .replace("\u2028", "\\u2028")
        .replace("\u2029", "\\u2029")
    )


def _format_deadline(deadline: dt.timedelta | float | int) -> str:
    """Whole-second duration text such as '30s', '1m0s' or '1h0m0s'."""
    if isinstance(deadline, dt.timedelta):
        total = deadline.total_seconds()
    else:
        total = float(deadline)
    seconds = int(total)
    if seconds == 0:
        return "0s"
    sign = "-" if seconds < 0 else ""
    seconds = abs(seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{sign}{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{sign}{minutes}m{secs}s"
    return f"{sign}{secs}s"


@dataclass
class SysInfo:
    """Hardware and system information of the cluster nodes."""

    cpu_info: list[CPUs] = field(default_factory=list)
    partitions: list[Partitions] = field(default_factory=list)
    os_info: list[OSInfo] = field(default_factory=list)
    mem_info: list[MemInfo] = field(default_factory=list)
    proc_info: list[ProcInfo] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        _put(out, "cpus", [c.to_dict() for c in self.cpu_info])
        _put(out, "partitions", [p.to_dict() for p in self.partitions])
        _put(out, "osinfo", [o.to_dict() for o in self.os_info])
        _put(out, "meminfo", [m.to_dict() for m in self.mem_info])
        _put(out, "procinfo", [p.to_dict() for p in self.proc_info])
        return out


@dataclass
class Latency:
    """Operation latency in seconds."""

    avg: float = 0.0
    max: float = 0.0
    min: float = 0.0
    percentile50: float = 0.0
    percentile90: float = 0.0
    percentile99: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "avg": self.avg,
            "max": self.max,
            "min": self.min,
            "percentile_50": self.percentile50,
            "percentile_90": self.percentile90,
            "percentile_99": self.percentile99,
        }


@dataclass
class Throughput:
    """Throughput in bytes per second."""

    avg: int = 0
    max: int = 0
    min: int = 0
    percentile50: int = 0
    percentile90: int = 0
    percentile99: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "avg": self.avg,
            "max": self.max,
            "min": self.min,
            "percentile_50": self.percentile50,
            "percentile_90": self.percentile90,
            "percentile_99": self.percentile99,
        }


@dataclass
class DrivePerfInfo:
    """Performance of one drive."""

    error: str = ""
    path: str = ""
    latency: Latency = field(default_factory=Latency)
    throughput: Throughput = field(default_factory=Throughput)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        _put(out, "error", self.error)
        out["path"] = self.path
        out["latency"] = self.latency.to_dict()
        out["throughput"] = self.throughput.to_dict()
        return out


@dataclass
class DrivePerfInfos(NodeCommon):
    """Performance of all drives of a node, measured serially and in parallel."""

    serial_perf: list[DrivePerfInfo] = field(default_factory=list)
    parallel_perf: list[DrivePerfInfo] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        _put(out, "serial_perf", [d.to_dict() for d in self.serial_perf])
        _put(out, "parallel_perf", [d.to_dict() for d in self.parallel_perf])
        return out


@dataclass
class PeerNetPerfInfo(NodeCommon):
    """Network performance towards one peer."""

    latency: Latency = field(default_factory=Latency)
    throughput: Throughput = field(default_factory=Throughput)

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out["latency"] = self.latency.to_dict()
        out["throughput"] = self.throughput.to_dict()
        return out


@dataclass
class NetPerfInfo(NodeCommon):
    """Network performance of a node towards the other nodes."""

    remote_peers: list[PeerNetPerfInfo] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        _put(out, "remote_peers", [p.to_dict() for p in self.remote_peers])
        return out


@dataclass
class PerfInfo:
    """Drive and network performance of the cluster."""

    drives: list[DrivePerfInfos] = field(default_factory=list)
    net: list[NetPerfInfo] = field(default_factory=list)
    net_parallel: NetPerfInfo = field(default_factory=NetPerfInfo)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        _put(out, "drives", [d.to_dict() for d in self.drives])
        _put(out, "net", [n.to_dict() for n in self.net])
        out["net_parallel"] = self.net_parallel.to_dict()
        return out


@dataclass
class MinioConfig:
    """Server configuration of a node."""

    error: str = ""
    config: Any = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        _put(out, "error", self.error)
        if self.config is not None:
            out["config"] = self.config
        return out


@dataclass
class MemStats:
    """Memory allocation statistics of the server process."""

    alloc: int = 0
    total_alloc: int = 0
    mallocs: int = 0
    frees: int = 0
    heap_alloc: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "Alloc": self.alloc,
            "TotalAlloc": self.total_alloc,
            "Mallocs": self.mallocs,
            "Frees": self.frees,
            "HeapAlloc": self.heap_alloc,
        }


@dataclass
class ServerInfo:
    """State of one server; drives are kept as decoded JSON objects."""

    state: str = ""
    endpoint: str = ""
    uptime: int = 0
    version: str = ""
    commit_id: str = ""
    network: dict[str, str] = field(default_factory=dict)
    drives: list[dict[str, Any]] = field(default_factory=list)
    pool_number: int = 0
    mem_stats: MemStats = field(default_factory=MemStats)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        _put(out, "state", self.state)
        _put(out, "endpoint", self.endpoint)
        _put(out, "uptime", self.uptime)
        _put(out, "version", self.version)
        _put(out, "commitID", self.commit_id)
        _put(out, "network", dict(self.network))
        _put(out, "drives", [dict(d) for d in self.drives])
        _put(out, "poolNumber", self.pool_number)
        out["mem_stats"] = self.mem_stats.to_dict()
        return out


@dataclass
class MinioInfo:
    """Server and object storage information of the cluster."""

    mode: str = ""
    domain: list[str] = field(default_factory=list)
    region: str = ""
    sqs_arn: list[str] = field(default_factory=list)
    deployment_id: str = ""
    buckets: dict[str, Any] = field(default_factory=dict)
    objects: dict[str, Any] = field(default_factory=dict)
    usage: dict[str, Any] = field(default_factory=dict)
    services: dict[str, Any] = field(default_factory=dict)
    backend: Any = None
    servers: list[ServerInfo] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        _put(out, "mode", self.mode)
        _put(out, "domain", list(self.domain))
        _put(out, "region", self.region)
        _put(out, "sqsARN", list(self.sqs_arn))
        _put(out, "deploymentID", self.deployment_id)
        out["buckets"] = dict(self.buckets)
        out["objects"] = dict(self.objects)
        out["usage"] = dict(self.usage)
        out["services"] = dict(self.services)
        if self.backend is not None:
            out["backend"] = self.backend
        _put(out, "servers", [s.to_dict() for s in self.servers])
        return out


@dataclass
class MinioHealthInfo:
    """Configuration and server information of the cluster."""

    error: str = ""
    config: MinioConfig = field(default_factory=MinioConfig)
    info: MinioInfo = field(default_factory=MinioInfo)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        _put(out, "error", self.error)
        out["config"] = self.config.to_dict()
        out["info"] = self.info.to_dict()
        return out


@dataclass
class HealthInfo:
    """Health report of a cluster."""

    version: str = ""
    error: str = ""
    timestamp: dt.datetime | None = None
    sys: SysInfo = field(default_factory=SysInfo)
    perf: PerfInfo = field(default_factory=PerfInfo)
    minio: MinioHealthInfo = field(default_factory=MinioHealthInfo)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"version": self.version}
        _put(out, "error", self.error)
        out["timestamp"] = _format_time(self.timestamp)
        out["sys"] = self.sys.to_dict()
        out["perf"] = self.perf.to_dict()
        out["minio"] = self.minio.to_dict()
        return out

    def __str__(self) -> str:
        return _escape(json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":")))

    def to_json(self) -> str:
        """Indented JSON; every line after the first carries a one-space prefix."""
        lines = json.dumps(self.to_dict(), ensure_ascii=False, indent=4).split("\n")
        return _escape("\n".join([lines[0]] + [" " + line for line in lines[1:]]))

    def get_error(self) -> str:
        return self.error

    def get_status(self) -> str:
        return "error" if self.error else "success"

    def get_timestamp(self) -> dt.datetime | None:
        return self.timestamp


@dataclass
class HealthInfoVersion:
    """Leading record of a health-info stream: its version or an error."""

    version: str = ""
    error: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "HealthInfoVersion":
        if not isinstance(data, dict):
            raise TypeError("health info version must be a JSON object")
        return cls(version=data.get("version") or "", error=data.get("error") or "")


class HealthCommands(BaseClient):
    """Admin command that collects the cluster health report."""

    def server_health_info(
        self,
        types: Iterable[HealthDataType | str],
        deadline: dt.timedelta | float | int,
    ) -> tuple[Iterator[Any], str]:
        """Request a health report with the given data types.

        Returns an iterator over the decoded JSON records that follow the version
        record, and the version the server reported.
        """
        query: dict[str, str] = {"deadline": _format_deadline(deadline)}
        query.update({t.value: "false" for t in HealthDataType})
        query.update({HealthDataType(t).value: "true" for t in types})

        response = self._execute_method(
            "GET", ADMIN_API_PREFIX + "/healthinfo", query=query, stream=True
        )
        try:
            if response.status_code != 200:
                raise error_from_response(response)
            values = _json_values(response.iter_content(chunk_size=_CHUNK_SIZE))
            try:
                first = next(values)
            except StopIteration:
                raise EOFError("EOF") from None
            version = HealthInfoVersion.from_dict(first)
            if version.error:
                raise RuntimeError(version.error)
            if version.version not in (HEALTH_INFO_VERSION_0, HEALTH_INFO_VERSION):
                raise RuntimeError(
                    "Upgrade Minio Client to support health info version " + version.version
                )
        except BaseException:
            response.close()
            raise
        return self._remaining(response, values), version.version

    @staticmethod
    def _remaining(response: requests.Response, values: Iterator[Any]) -> Iterator[Any]:
        try:
            yield from values
        finally:
            response.close()