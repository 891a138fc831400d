"""Hardware and operating-system facts collected about the local node."""

from __future__ import annotations

import os
import platform
import socket
import sys
import time
from dataclasses import dataclass, field
from typing import Any

import psutil

_CPUINFO_PATH = "/proc/cpuinfo"
_OS_RELEASE_PATH = "/etc/os-release"
_MACHINE_ID_PATHS = ("/sys/class/dmi/id/product_uuid", "/etc/machine-id")

_PROBE_ERRORS = (psutil.Error, OSError, AttributeError, NotImplementedError, ValueError)


def _put(out: dict[str, Any], name: str, value: Any) -> None:
    """Store value unless it is empty, the way optional JSON fields behave."""
    if value:
        out[name] = value


def _error_text(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def _to_int(value: Any) -> int:
    try:
        return int(str(value).split()[0])
    except (ValueError, IndexError):
        return 0


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _unsupported() -> str | None:
    if sys.platform != "linux":
        return "unsupported operating system " + sys.platform
    return None


@dataclass
class NodeCommon:
    """Address of a node and the error met while probing it."""

    addr: str = ""
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"addr": self.addr}
        _put(out, "error", self.error)
        return out


@dataclass
class CPU:
    """One physical CPU package with the number of logical cores seen on it."""

    vendor_id: str = ""
    family: str = ""
    model: str = ""
    stepping: int = 0
    physical_id: str = ""
    model_name: str = ""
    mhz: float = 0.0
    cache_size: int = 0
    flags: list[str] = field(default_factory=list)
    microcode: str = ""
    cores: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "vendor_id": self.vendor_id,
            "family": self.family,
            "model": self.model,
            "stepping": self.stepping,
            "physical_id": self.physical_id,
            "model_name": self.model_name,
            "mhz": self.mhz,
            "cache_size": self.cache_size,
            "flags": list(self.flags),
            "microcode": self.microcode,
            "cores": self.cores,
        }


@dataclass
class CPUs(NodeCommon):
    """All CPUs of a node."""

    cpus: list[CPU] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        _put(out, "cpus", [cpu.to_dict() for cpu in self.cpus])
        return out


def _parse_cpuinfo(text: str) -> list[dict[str, str]]:
    entries: list[dict[str, str]] = []
    current: dict[str, str] | None = None
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key, value = key.strip(), value.strip()
        if key == "processor":
            current = {}
            entries.append(current)
            continue
        if current is not None:
            current[key] = value
    return entries


def _cpu_from_entry(entry: dict[str, str]) -> CPU:
    return CPU(
        vendor_id=entry.get("vendor_id") or entry.get("vendorId", ""),
        family=entry.get("cpu family", ""),
        model=entry.get("model", ""),
        stepping=_to_int(entry.get("stepping", "")),
        physical_id=entry.get("physical id", ""),
        model_name=entry.get("model name") or entry.get("cpu", ""),
        mhz=_to_float(entry.get("cpu MHz")),
        cache_size=_to_int(entry.get("cache size", "")),
        flags=(entry.get("flags") or entry.get("Features", "")).split(),
        microcode=entry.get("microcode", ""),
        cores=1,
    )


def _fallback_cpus() -> list[CPU]:
    count = psutil.cpu_count(logical=True)
    if not count:
        raise OSError("unable to determine the number of CPUs")
    try:
        freq = psutil.cpu_freq()
    except (NotImplementedError, OSError, AttributeError):
        freq = None
    return [
        CPU(
            model_name=platform.processor(),
            mhz=float(freq.current) if freq else 0.0,
            cores=count,
        )
    ]


def get_cpus(addr: str) -> CPUs:
    """Describe every physical CPU of this node, counting its logical cores."""
    try:
        if os.path.exists(_CPUINFO_PATH):
            with open(_CPUINFO_PATH, encoding="utf-8", errors="replace") as fh:
                entries = _parse_cpuinfo(fh.read())
        else:
            return CPUs(addr=addr, cpus=_fallback_cpus())
    except _PROBE_ERRORS as exc:
        return CPUs(addr=addr, error=_error_text(exc))

    by_package: dict[str, CPU] = {}
    for entry in entries:
        physical_id = entry.get("physical id", "")
        existing = by_package.get(physical_id)
        if existing is not None:
            existing.cores += 1
        else:
            by_package[physical_id] = _cpu_from_entry(entry)
    return CPUs(addr=addr, cpus=list(by_package.values()))


@dataclass
class Partition:
    """One mounted disk partition with its space and inode usage."""

    error: str = ""
    device: str = ""
    mountpoint: str = ""
    fs_type: str = ""
    mount_options: str = ""
    mount_fs_type: str = ""
    space_total: int = 0
    space_free: int = 0
    inode_total: int = 0
    inode_free: int = 0

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        _put(out, "error", self.error)
        _put(out, "device", self.device)
        _put(out, "mountpoint", self.mountpoint)
        _put(out, "fs_type", self.fs_type)
        _put(out, "mount_options", self.mount_options)
        _put(out, "mount_fs_type", self.mount_fs_type)
        _put(out, "space_total", self.space_total)
        _put(out, "space_free", self.space_free)
        _put(out, "inode_total", self.inode_total)
        _put(out, "inode_free", self.inode_free)
        return out


@dataclass
class Partitions(NodeCommon):
    """All disk partitions of a node."""

    partitions: list[Partition] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        _put(out, "partitions", [p.to_dict() for p in self.partitions])
        return out


def _mount_options(opts: Any) -> str:
    if isinstance(opts, str):
        return opts
    return ",".join(opts or [])


def get_partitions(addr: str) -> Partitions:
    """Describe the mounted partitions of this node (Linux only)."""
    unsupported = _unsupported()
    if unsupported:
        return Partitions(addr=addr, error=unsupported)
    try:
        parts = psutil.disk_partitions(all=False)
    except _PROBE_ERRORS as exc:
        return Partitions(addr=addr, error=_error_text(exc))

    partitions = []
    for part in parts:
        try:
            st = os.statvfs(part.mountpoint)
        except OSError as exc:
            partitions.append(Partition(device=part.device, error=_error_text(exc)))
            continue
        partitions.append(
            Partition(
                device=part.device,
                mountpoint=part.mountpoint,
                fs_type=part.fstype,
                mount_options=_mount_options(part.opts),
                mount_fs_type=part.fstype,
                space_total=st.f_blocks * st.f_frsize,
                space_free=st.f_bavail * st.f_frsize,
                inode_total=st.f_files,
                inode_free=st.f_ffree,
            )
        )
    return Partitions(addr=addr, partitions=partitions)


@dataclass
class OSInfo(NodeCommon):
    """Host facts and temperature sensors of a node."""

    info: dict[str, Any] = field(default_factory=dict)
    sensors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out["info"] = dict(self.info)
        _put(out, "sensors", [dict(s) for s in self.sensors])
        return out


def _os_release() -> dict[str, str]:
    values: dict[str, str] = {}
    try:
        with open(_OS_RELEASE_PATH, encoding="utf-8") as fh:
            for line in fh:
                key, sep, value = line.strip().partition("=")
                if sep:
                    values[key] = value.strip().strip('"').strip("'")
    except OSError:
        pass
    return values


def _host_id() -> str:
    for path in _MACHINE_ID_PATHS:
        try:
            with open(path, encoding="utf-8") as fh:
                value = fh.read().strip().lower()
        except OSError:
            continue
        if value:
            return value
    return ""


def _host_info() -> dict[str, Any]:
    boot = int(psutil.boot_time())
    release = _os_release()
    family = (release.get("ID_LIKE") or release.get("ID", "")).split()
    return {
        "hostname": socket.gethostname(),
        "uptime": max(int(time.time()) - boot, 0),
        "bootTime": boot,
        "procs": len(psutil.pids()),
        "os": sys.platform,
        "platform": release.get("ID", ""),
        "platformFamily": family[0] if family else "",
        "platformVersion": release.get("VERSION_ID", ""),
        "kernelVersion": platform.release(),
        "kernelArch": platform.machine(),
        "virtualizationSystem": "",
        "virtualizationRole": "",
        "hostId": _host_id(),
    }


def _temperatures() -> list[dict[str, Any]]:
    reader = getattr(psutil, "sensors_temperatures", None)
    if reader is None:
        return []
    sensors = []
    for name, readings in (reader() or {}).items():
        for reading in readings:
            key = f"{name}_{reading.label}" if reading.label else name
            sensors.append(
                {
                    "sensorKey": key,
                    "temperature": _to_float(reading.current),
                    "sensorHigh": _to_float(reading.high),
                    "sensorCritical": _to_float(reading.critical),
                }
            )
    return sensors


def get_os_info(addr: str) -> OSInfo:
    """Describe the operating system and temperature sensors of this node (Linux only)."""
    unsupported = _unsupported()
    if unsupported:
        return OSInfo(addr=addr, error=unsupported)
    try:
        info = _host_info()
    except _PROBE_ERRORS as exc:
        return OSInfo(addr=addr, error=_error_text(exc))
    os_info = OSInfo(addr=addr, info=info)
    try:
        os_info.sensors = _temperatures()
    except _PROBE_ERRORS as exc:
        os_info.error = _error_text(exc)
    return os_info


@dataclass
class MemInfo(NodeCommon):
    """RAM and swap sizes of a node."""

    total: int = 0
    available: int = 0
    swap_space_total: int = 0
    swap_space_free: int = 0

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        _put(out, "total", self.total)
        _put(out, "available", self.available)
        _put(out, "swap_space_total", self.swap_space_total)
        _put(out, "swap_space_free", self.swap_space_free)
        return out


def get_mem_info(addr: str) -> MemInfo:
    """Describe the RAM and swap of this node."""
    try:
        virtual = psutil.virtual_memory()
        swap = psutil.swap_memory()
    except _PROBE_ERRORS as exc:
        return MemInfo(addr=addr, error=_error_text(exc))
    return MemInfo(
        addr=addr,
        total=virtual.total,
        available=virtual.available,
        swap_space_total=swap.total,
        swap_space_free=swap.free,
    )


def _zero_io() -> dict[str, int]:
    return {"readCount": 0, "writeCount": 0, "readBytes": 0, "writeBytes": 0}


def _zero_mem() -> dict[str, int]:
    return {"rss": 0, "vms": 0, "hwm": 0, "data": 0, "stack": 0, "locked": 0, "swap": 0}


def _zero_ctx() -> dict[str, int]:
    return {"voluntary": 0, "involuntary": 0}


def _zero_faults() -> dict[str, int]:
    return {"minorFaults": 0, "majorFaults": 0, "childMinorFaults": 0, "childMajorFaults": 0}


def _zero_times() -> dict[str, Any]:
    return {
        "cpu": "",
        "user": 0.0,
        "system": 0.0,
        "idle": 0.0,
        "nice": 0.0,
        "iowait": 0.0,
        "irq": 0.0,
        "softirq": 0.0,
        "steal": 0.0,
        "guest": 0.0,
        "guestNice": 0.0,
    }


@dataclass
class ProcInfo(NodeCommon):
    """Facts about the current server process."""

    pid: int = 0
    is_background: bool = False
    cpu_percent: float = 0.0
    children_pids: list[int] = field(default_factory=list)
    cmd_line: str = ""
    num_connections: int = 0
    create_time: int = 0
    cwd: str = ""
    exec_path: str = ""
    gids: list[int] = field(default_factory=list)
    io_counters: dict[str, int] = field(default_factory=_zero_io)
    is_running: bool = False
    mem_info: dict[str, int] = field(default_factory=_zero_mem)
    mem_maps: list[dict[str, Any]] = field(default_factory=list)
    mem_percent: float = 0.0
    name: str = ""
    nice: int = 0
    num_ctx_switches: dict[str, int] = field(default_factory=_zero_ctx)
    num_fds: int = 0
    num_threads: int = 0
    page_faults: dict[str, int] = field(default_factory=_zero_faults)
    ppid: int = 0
    status: str = ""
    tgid: int = 0
    times: dict[str, Any] = field(default_factory=_zero_times)
    uids: list[int] = field(default_factory=list)
    username: str = ""

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        _put(out, "pid", self.pid)
        _put(out, "is_background", self.is_background)
        _put(out, "cpu_percent", self.cpu_percent)
        _put(out, "children_pids", list(self.children_pids))
        _put(out, "cmd_line", self.cmd_line)
        _put(out, "num_connections", self.num_connections)
        _put(out, "create_time", self.create_time)
        _put(out, "cwd", self.cwd)
        _put(out, "exec_path", self.exec_path)
        _put(out, "gids", list(self.gids))
        out["iocounters"] = dict(self.io_counters)
        _put(out, "is_running", self.is_running)
        out["mem_info"] = dict(self.mem_info)
        _put(out, "mem_maps", [dict(m) for m in self.mem_maps])
        _put(out, "mem_percent", self.mem_percent)
        _put(out, "name", self.name)
        _put(out, "nice", self.nice)
        out["num_ctx_switches"] = dict(self.num_ctx_switches)
        _put(out, "num_fds", self.num_fds)
        _put(out, "num_threads", self.num_threads)
        out["page_faults"] = dict(self.page_faults)
        _put(out, "ppid", self.ppid)
        _put(out, "status", self.status)
        _put(out, "tgid", self.tgid)
        out["times"] = dict(self.times)
        _put(out, "uids", list(self.uids))
        _put(out, "username", self.username)
        return out


def _is_background() -> bool:
    try:
        fd = os.open("/dev/tty", os.O_RDONLY)
    except OSError:
        return True
    try:
        return os.tcgetpgrp(fd) != os.getpgrp()
    except OSError:
        return True
    finally:
        os.close(fd)


def _cpu_percent(proc: psutil.Process) -> float:
    times = proc.cpu_times()
    elapsed = time.time() - proc.create_time()
    if elapsed <= 0:
        return 0.0
    return 100.0 * (times.user + times.system) / elapsed


def _connections(proc: psutil.Process) -> list:
    reader = getattr(proc, "net_connections", None) or proc.connections
    return reader()


def _memory_maps(proc: psutil.Process) -> list[dict[str, Any]]:
    names = {
        "rss": "rss",
        "size": "size",
        "pss": "pss",
        "sharedClean": "shared_clean",
        "sharedDirty": "shared_dirty",
        "privateClean": "private_clean",
        "privateDirty": "private_dirty",
        "referenced": "referenced",
        "anonymous": "anonymous",
        "swap": "swap",
    }
    total: dict[str, Any] = {"path": ""}
    total.update({key: 0 for key in names})
    for region in proc.memory_maps(grouped=True):
        for key, attr in names.items():
            total[key] += getattr(region, attr, 0)
    return [total]


def _proc_stat_fields(pid: int) -> list[str]:
    with open(f"/proc/{pid}/stat", encoding="utf-8") as fh:
        text = fh.read()
    return text[text.rindex(")") + 1:].split()


def _page_faults(pid: int) -> dict[str, int]:
    fields = _proc_stat_fields(pid)
    return {
        "minorFaults": int(fields[7]),
        "majorFaults": int(fields[9]),
        "childMinorFaults": int(fields[8]),
        "childMajorFaults": int(fields[10]),
    }


def _tgid(pid: int) -> int:
    with open(f"/proc/{pid}/status", encoding="utf-8") as fh:
        for line in fh:
            key, sep, value = line.partition(":")
            if sep and key.strip() == "Tgid":
                return int(value.strip())
    raise ValueError("Tgid not found")


def get_proc_info(addr: str) -> ProcInfo:
    """Describe the current process; stops at the first fact that cannot be read."""
    pid = os.getpid()
    info = ProcInfo(addr=addr, pid=pid)
    try:
        proc = psutil.Process(pid)
        info.is_background = _is_background()
        info.cpu_percent = _cpu_percent(proc)
        try:
            info.children_pids = [child.pid for child in proc.children()]
        except _PROBE_ERRORS:
            info.children_pids = []
        info.cmd_line = " ".join(proc.cmdline())
        info.num_connections = len(_connections(proc))
        info.create_time = int(proc.create_time() * 1000)
        info.cwd = proc.cwd()
        info.exec_path = proc.exe()
        info.gids = list(proc.gids())
        io = proc.io_counters()
        info.io_counters = {
            "readCount": io.read_count,
            "writeCount": io.write_count,
            "readBytes": io.read_bytes,
            "writeBytes": io.write_bytes,
        }
        info.is_running = proc.is_running()
        mem = proc.memory_info()
        info.mem_info = {
            "rss": mem.rss,
            "vms": mem.vms,
            "hwm": 0,
            "data": getattr(mem, "data", 0),
            "stack": 0,
            "locked": 0,
            "swap": 0,
        }
        info.mem_maps = _memory_maps(proc)
        info.mem_percent = float(proc.memory_percent())
        info.name = proc.name()
        info.nice = int(proc.nice())
        ctx = proc.num_ctx_switches()
        info.num_ctx_switches = {"voluntary": ctx.voluntary, "involuntary": ctx.involuntary}
        info.num_fds = proc.num_fds()
        info.num_threads = proc.num_threads()
        info.page_faults = _page_faults(pid)
        try:
            info.ppid = proc.ppid()
        except _PROBE_ERRORS:
            info.ppid = 0
        info.status = proc.status()
        info.tgid = _tgid(pid)
        times = proc.cpu_times()
        info.times = {
            **_zero_times(),
            "cpu": "cpu",
            "user": times.user,
            "system": times.system,
            "iowait": getattr(times, "iowait", 0.0),
        }
        info.uids = list(proc.uids())
        info.username = proc.username()
    except _PROBE_ERRORS as exc:
        info.error = _error_text(exc)
    return info