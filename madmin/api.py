"""HTTP transport, request signing and retries shared by all admin commands."""

from __future__ import annotations

import datetime as dt
import errno
import hashlib
import hmac
import platform
import random
import re
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, TextIO
from urllib.parse import parse_qsl, quote, unquote, urlsplit

import requests

from .errors import ErrorResponse, error_from_response, invalid_argument, to_error_response

LIBRARY_NAME = "madmin"
LIBRARY_VERSION = "0.0.1"
ADMIN_URL_PREFIX = "/minio/admin"
ADMIN_API_PREFIX = "/v3"

LIBRARY_USER_AGENT_PREFIX = (
    f"MinIO ({sys.platform}; {platform.machine().lower() or 'unknown'}) "
)
LIBRARY_USER_AGENT = f"{LIBRARY_USER_AGENT_PREFIX}{LIBRARY_NAME}/{LIBRARY_VERSION}"

SUCCESS_STATUS = frozenset({200, 204, 206})

MAX_RETRY = 10
DEFAULT_RETRY_UNIT = 1.0
DEFAULT_RETRY_CAP = 30.0
MAX_JITTER = 1.0

RETRYABLE_HTTP_STATUS = frozenset({429, 499, 500, 502, 503, 504, 520})
RETRYABLE_S3_CODES = frozenset(
    {
        "RequestError",
        "RequestTimeout",
        "Throttling",
        "ThrottlingException",
        "RequestLimitExceeded",
        "RequestThrottled",
        "InternalError",
        "SlowDown",
    }
)

_ZERO_TIME = "0001-01-01T00:00:00Z"
_DEFAULT_REGION = "us-east-1"
_IGNORED_SIGN_HEADERS = frozenset(
    {"authorization", "content-type", "content-length", "user-agent"}
)
_CREDENTIAL_RE = re.compile(r"Credential=([A-Z0-9]+)/")
_SIGNATURE_RE = re.compile(r"Signature=([\[0-9a-f]+)")


def _format_time(value: dt.datetime | None) -> str:
    if value is None:
        return _ZERO_TIME
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_time(value: Any) -> dt.datetime | None:
    if not value or value == _ZERO_TIME:
        return None
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = re.sub(r"\.(\d+)", lambda m: "." + (m.group(1) + "000000")[:6], text)
    return dt.datetime.fromisoformat(text)


@dataclass
class Credentials:
    """Access and secret keys, with an optional session token and expiry."""

    access_key: str = ""
    secret_key: str = ""
    session_token: str = ""
    expiration: dt.datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.access_key:
            out["accessKey"] = self.access_key
        if self.secret_key:
            out["secretKey"] = self.secret_key
        if self.session_token:
            out["sessionToken"] = self.session_token
        out["expiration"] = _format_time(self.expiration)
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "Credentials":
        data = data if isinstance(data, dict) else {}
        return cls(
            access_key=data.get("accessKey") or "",
            secret_key=data.get("secretKey") or "",
            session_token=data.get("sessionToken") or "",
            expiration=_parse_time(data.get("expiration")),
        )


@dataclass
class Options:
    """Options for building a client."""

    creds: Credentials = field(default_factory=Credentials)
    secure: bool = False


def _uri_encode(value: str) -> str:
    return quote(value, safe="-_.~")


def _query_pairs(query: Mapping[str, Any]) -> Iterator[tuple[str, str]]:
    for key in sorted(query):
        value = query[key]
        values = [value] if isinstance(value, str) else list(value)
        for item in values:
            yield key, str(item)


def _query_encode(query: Mapping[str, Any]) -> str:
    return "&".join(f"{_uri_encode(k)}={_uri_encode(v)}" for k, v in _query_pairs(query))


def _endpoint_url(endpoint: str, secure: bool) -> tuple[str, str]:
    if not endpoint or "://" in endpoint or "/" in endpoint:
        raise invalid_argument(f"Endpoint: {endpoint} does not follow ip address or domain name standards.")
    scheme = "https" if secure else "http"
    parts = urlsplit(f"{scheme}://{endpoint}")
    if not parts.hostname:
        raise invalid_argument(f"Endpoint: {endpoint} does not follow ip address or domain name standards.")
    try:
        parts.port
    except ValueError as exc:
        raise invalid_argument(f"Endpoint: {endpoint} has an invalid port.") from exc
    return scheme, parts.netloc


def _set_header(headers: dict[str, str], name: str, value: str) -> None:
    for existing in [k for k in headers if k.lower() == name.lower()]:
        del headers[existing]
    headers[name] = value


def _has_header(headers: Mapping[str, str], name: str) -> bool:
    return any(k.lower() == name.lower() for k in headers)


def redact_authorization(value: str) -> str:
    """Hide the access key and signature inside a signature V4 Authorization value."""
    value = _CREDENTIAL_RE.sub("Credential=**REDACTED**/", value)
    return _SIGNATURE_RE.sub("Signature=**REDACTED**", value)


def _hmac(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def sign_v4(
    method: str,
    url: str,
    headers: Mapping[str, str],
    payload_hash: str,
    access_key: str,
    secret_key: str,
    session_token: str = "",
    region: str = "",
    when: dt.datetime | None = None,
) -> dict[str, str]:
    """Return a copy of headers signed with AWS signature version 4 for the s3 service."""
    signed = dict(headers)
    if not access_key or not secret_key:
        return signed
    when = when or dt.datetime.now(dt.timezone.utc)
    if when.tzinfo is None:
        when = when.replace(tzinfo=dt.timezone.utc)
    when = when.astimezone(dt.timezone.utc)
    region = region or _DEFAULT_REGION
    amz_date = when.strftime("%Y%m%dT%H%M%SZ")
    date_stamp = when.strftime("%Y%m%d")

    parts = urlsplit(url)
    if not _has_header(signed, "Host"):
        signed["Host"] = parts.netloc
    _set_header(signed, "X-Amz-Date", amz_date)
    _set_header(signed, "X-Amz-Content-Sha256", payload_hash)
    if session_token:
        _set_header(signed, "X-Amz-Security-Token", session_token)

    canonical: dict[str, str] = {}
    for name, value in signed.items():
        lowered = name.lower()
        if lowered in _IGNORED_SIGN_HEADERS:
            continue
        canonical[lowered] = " ".join(str(value).split())
    names = sorted(canonical)
    canonical_headers = "".join(f"{name}:{canonical[name]}\n" for name in names)
    signed_headers = ";".join(names)
    canonical_query = "&".join(
        f"{_uri_encode(k)}={_uri_encode(v)}"
        for k, v in sorted(parse_qsl(parts.query, keep_blank_values=True))
    )
    canonical_uri = quote(unquote(parts.path or "/"), safe="/-_.~")
    canonical_request = "\n".join(
        [method.upper(), canonical_uri, canonical_query, canonical_headers, signed_headers, payload_hash]
    )

    scope = f"{date_stamp}/{region}/s3/aws4_request"
    string_to_sign = "\n".join(
        [
            "AWS4-HMAC-SHA256",
            amz_date,
            scope,
            hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
        ]
    )
    key = _hmac(("AWS4" + secret_key).encode("utf-8"), date_stamp)
    key = _hmac(key, region)
    key = _hmac(key, "s3")
    key = _hmac(key, "aws4_request")
    signature = hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()
    _set_header(
        signed,
        "Authorization",
        f"AWS4-HMAC-SHA256 Credential={access_key}/{scope}, "
        f"SignedHeaders={signed_headers}, Signature={signature}",
    )
    return signed


def _connection_refused(exc: BaseException) -> bool:
    pending: list[Any] = [exc]
    seen: set[int] = set()
    while pending:
        item = pending.pop()
        if not isinstance(item, BaseException) or id(item) in seen:
            continue
        seen.add(id(item))
        if isinstance(item, ConnectionRefusedError):
            return True
        if getattr(item, "errno", None) == errno.ECONNREFUSED:
            return True
        pending.extend([item.__cause__, item.__context__, getattr(item, "reason", None)])
        pending.extend(item.args)
    return False


class BaseClient:
    """Signs, sends and retries requests against the admin API of a server."""

    def __init__(self, endpoint: str, access_key: str, secret_key: str, secure: bool = False) -> None:
        self._scheme, self._host = _endpoint_url(endpoint, secure)
        self.secure = secure
        self.credentials = Credentials(access_key=access_key, secret_key=secret_key)
        self._session = requests.Session()
        self._app_name = ""
        self._app_version = ""
        self._trace_enabled = False
        self._trace_output: TextIO | None = None
        self._random = random.Random(time.time_ns())
        self.max_retry = MAX_RETRY
        self.retry_unit = DEFAULT_RETRY_UNIT
        self.retry_cap = DEFAULT_RETRY_CAP
        self.max_jitter = MAX_JITTER
        self.timeout: float | None = None

    @classmethod
    def from_options(cls, endpoint: str, options: Options):
        creds = options.creds
        client = cls(endpoint, creds.access_key, creds.secret_key, options.secure)
        client.credentials = creds
        return client

    def set_app_info(self, app_name: str, app_version: str) -> None:
        """Add application name and version to the user agent; both must be set."""
        if app_name and app_version:
            self._app_name = app_name
            self._app_version = app_version

    def set_session(self, session: requests.Session) -> None:
        """Use a custom session, e.g. with its own TLS settings."""
        if session is not None:
            self._session = session

    def trace_on(self, stream: TextIO | None = None) -> None:
        """Dump every HTTP exchange to stream (standard output by default)."""
        self._trace_output = stream if stream is not None else sys.stdout
        self._trace_enabled = True

    def trace_off(self) -> None:
        self._trace_enabled = False

    def user_agent(self) -> str:
        if self._app_name and self._app_version:
            return f"{LIBRARY_USER_AGENT} {self._app_name}/{self._app_version}"
        return LIBRARY_USER_AGENT

    def make_target_url(self, rel_path: str, query: Mapping[str, Any] | None = None) -> str:
        url = f"{self._scheme}://{self._host}{ADMIN_URL_PREFIX}{rel_path}"
        if query:
            url += "?" + _query_encode(query)
        return url

    @property
    def _secret_key(self) -> str:
        return self.credentials.secret_key

    def _new_request(
        self,
        method: str,
        rel_path: str,
        query: Mapping[str, Any] | None,
        content: bytes,
        headers: Mapping[str, str] | None,
    ) -> requests.PreparedRequest:
        method = method or "POST"
        url = self.make_target_url(rel_path, query)
        request_headers = {"User-Agent": self.user_agent()}
        request_headers.update(headers or {})
        payload_hash = hashlib.sha256(content).hexdigest()
        request_headers["X-Amz-Content-Sha256"] = payload_hash
        creds = self.credentials
        signed = sign_v4(
            method,
            url,
            request_headers,
            payload_hash,
            creds.access_key,
            creds.secret_key,
            creds.session_token,
            "",
        )
        request = requests.Request(method, url, headers=signed, data=content or None)
        return self._session.prepare_request(request)

    def _do(self, request: requests.PreparedRequest, stream: bool) -> requests.Response:
        try:
            response = self._session.send(request, timeout=self.timeout, stream=stream)
        except requests.ConnectionError as exc:
            if "EOF" in str(exc):
                raise requests.ConnectionError(
                    f"Connection closed by foreign host {request.url}. Retry again."
                ) from exc
            raise
        if self._trace_enabled:
            self._dump_http(request, response)
        return response

    def _dump_http(self, request: requests.PreparedRequest, response: requests.Response) -> None:
        out = self._trace_output or sys.stdout
        out.write("---------START-HTTP---------\n")
        auth = request.headers.get("Authorization")
        if auth:
            request.headers["Authorization"] = redact_authorization(auth)
        parts = urlsplit(request.url or "")
        target = (parts.path or "/") + (f"?{parts.query}" if parts.query else "")
        lines = [f"{request.method} {target} HTTP/1.1"]
        if "Host" not in request.headers:
            lines.append(f"Host: {parts.netloc}")
        lines.extend(f"{name}: {value}" for name, value in request.headers.items())
        out.write("\r\n".join(lines) + "\r\n\r\n")

        status_line = f"HTTP/1.1 {response.status_code} {response.reason or ''}".rstrip()
        resp_lines = [status_line]
        resp_lines.extend(f"{name}: {value}" for name, value in response.headers.items())
        text = "\r\n".join(resp_lines) + "\r\n\r\n"
        if response.status_code not in SUCCESS_STATUS:
            text += response.content.decode("utf-8", "replace")
        if text.endswith("\r\n"):
            text = text[:-2]
        out.write(text)
        out.write("---------END-HTTP---------\n")

    def _backoff(self, attempt: int) -> float:
        sleep = min(self.retry_cap, self.retry_unit * (2 ** attempt))
        jitter = min(max(self.max_jitter, 0.0), 1.0)
        return max(sleep - self._random.random() * jitter * sleep, 0.0)

    def _execute_method(
        self,
        method: str,
        rel_path: str,
        query: Mapping[str, Any] | None = None,
        content: bytes = b"",
        headers: Mapping[str, str] | None = None,
        stream: bool = False,
    ) -> requests.Response:
        """Send a request, retrying network errors and retryable server responses."""
        response: requests.Response | None = None
        last_error: Exception | None = None
        try:
            for attempt in range(max(self.max_retry, 1)):
                if attempt:
                    time.sleep(self._backoff(attempt))
                request = self._new_request(method, rel_path, query, content, headers)
                try:
                    response = self._do(request, stream)
                except requests.RequestException as exc:
                    if _connection_refused(exc):
                        raise
                    last_error, response = exc, None
                    continue
                last_error = None
                if response.status_code in SUCCESS_STATUS:
                    return response
                err: ErrorResponse = to_error_response(error_from_response(response))
                if err.code in RETRYABLE_S3_CODES:
                    continue
                if response.status_code in RETRYABLE_HTTP_STATUS:
                    continue
                break
            if last_error is not None:
                raise last_error
        except BaseException:
            self._session.close()
            raise
        assert response is not None
        return response