"""Console log streaming and bucket bandwidth reports."""

from __future__ import annotations

import codecs
import json
from dataclasses import dataclass, field, fields
from typing import Any, Iterable, Iterator

import requests

from .api import ADMIN_API_PREFIX, BaseClient
from .errors import error_from_response
from .logentry import LogEntry

_CHUNK_SIZE = 8192


def _json_values(chunks: Iterable[bytes]) -> Iterator[Any]:
    """Decode consecutive JSON values from a stream of byte chunks.

    Stops quietly at the end of the stream; raises ValueError on malformed data.
    """
    decoder = json.JSONDecoder()
    text = codecs.getincrementaldecoder("utf-8")()
    pending = iter(chunks)
    buf = ""
    done = False
    while True:
        buf = buf.lstrip()
        if buf:
            try:
                value, end = decoder.raw_decode(buf)
            except ValueError:
                if done:
                    raise
            else:
                buf = buf[end:]
                yield value
                continue
        elif done:
            return
        chunk = next(pending, None)
        if chunk is None:
            done = True
            buf += text.decode(b"", final=True)
        else:
            buf += text.decode(chunk)


def _lookup(data: dict, name: str) -> Any:
    lowered = name.lower()
    return next((v for k, v in data.items() if str(k).lower() == lowered), None)


@dataclass
class LogInfo(LogEntry):
    """A console log message, or the error that ended the stream."""

    console_msg: str = ""
    node_name: str = ""
    err: Exception | None = None

    @classmethod
    def from_dict(cls, data: Any) -> "LogInfo":
        data = data if isinstance(data, dict) else {}
        base = LogEntry.from_dict(data)
        values = {f.name: getattr(base, f.name) for f in fields(LogEntry)}
        return cls(
            **values,
            console_msg=_lookup(data, "ConsoleMsg") or "",
            node_name=data.get("node") or "",
        )


@dataclass
class BandwidthDetails:
    """Bandwidth limit and current usage of a bucket."""

    limit_in_bytes_per_second: int = 0
    current_bandwidth_in_bytes_per_second: float = 0.0

    @classmethod
    def from_dict(cls, data: Any) -> "BandwidthDetails":
        if not isinstance(data, dict):
            raise TypeError("bandwidth details must be a JSON object")
        return cls(
            limit_in_bytes_per_second=int(data.get("limitInBits") or 0),
            current_bandwidth_in_bytes_per_second=float(data.get("currentBandwidth") or 0.0),
        )


@dataclass
class BucketBandwidthReport:
    """Bandwidth details for all buckets, keyed by bucket name."""

    bucket_stats: dict[str, BandwidthDetails] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "BucketBandwidthReport":
        if not isinstance(data, dict):
            raise TypeError("bandwidth report must be a JSON object")
        stats = data.get("bucketStats") or {}
        if not isinstance(stats, dict):
            raise TypeError("bucketStats must be a JSON object")
        return cls(
            bucket_stats={name: BandwidthDetails.from_dict(v) for name, v in stats.items()}
        )


@dataclass
class Report:
    """A bandwidth report, or the error met while reading one."""

    report: BucketBandwidthReport = field(default_factory=BucketBandwidthReport)
    err: Exception | None = None


class LogCommands(BaseClient):
    """Admin commands that stream server logs and bandwidth."""

    def get_logs(self, node: str, line_count: int, log_kind: str) -> Iterator[LogInfo]:
        """Yield console log messages, reconnecting whenever a stream ends.

        Stops on a network error; an error response ends with one LogInfo carrying it.
        """
        query = {"node": node, "limit": str(line_count), "logType": log_kind}
        while True:
            try:
                response = self._execute_method(
                    "GET", ADMIN_API_PREFIX + "/log", query=query, stream=True
                )
            except requests.RequestException:
                return
            try:
                if response.status_code != 200:
                    yield LogInfo(err=error_from_response(response))
                    return
                try:
                    for value in _json_values(response.iter_content(chunk_size=_CHUNK_SIZE)):
                        if not isinstance(value, dict):
                            break
                        yield LogInfo.from_dict(value)
                except ValueError:
                    pass
            finally:
                response.close()

    def get_bucket_bandwidth(self, *args: str) -> Iterator[Report]:
        """Yield bandwidth reports for the given buckets (all buckets when none).

        The request is sent at once; errors are delivered as a Report with err set,
        and the stream ends with one such Report.
        """
        query = {"buckets": ",".join(args)} if args else None
        try:
            response = self._execute_method(
                "GET", ADMIN_API_PREFIX + "/bandwidth", query=query, stream=True
            )
        except requests.RequestException as exc:
            return iter([Report(err=exc)])
        if response.status_code != 200:
            return iter([Report(err=error_from_response(response))])
        return self._bandwidth_reports(response)

    @staticmethod
    def _bandwidth_reports(response: requests.Response) -> Iterator[Report]:
        try:
            try:
                for value in _json_values(response.iter_content(chunk_size=_CHUNK_SIZE)):
                    try:
                        report = BucketBandwidthReport.from_dict(value)
                    except (TypeError, ValueError) as exc:
                        yield Report(err=exc)
                        return
                    yield Report(report=report)
            except ValueError as exc:
                yield Report(err=exc)
                return
            yield Report(err=EOFError("EOF"))
        finally:
            response.close()