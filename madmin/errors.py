"""Typed errors returned by admin API operations."""

from __future__ import annotations

import json
from typing import Any

REPORT_ISSUE = "Please report this issue upstream."

# (attribute name, JSON field name)
_FIELDS = (
    ("code", "Code"),
    ("message", "Message"),
    ("bucket_name", "BucketName"),
    ("key", "Key"),
    ("request_id", "RequestID"),
    ("host_id", "HostID"),
    ("region", "Region"),
)


class ErrorResponse(Exception):
    """Error reported by the server, or built locally for bad arguments."""

    def __init__(
        self,
        code: str = "",
        message: str = "",
        bucket_name: str = "",
        key: str = "",
        request_id: str = "",
        host_id: str = "",
        region: str = "",
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.bucket_name = bucket_name
        self.key = key
        self.request_id = request_id
        self.host_id = host_id
        self.region = region

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        fields = ", ".join(f"{attr}={getattr(self, attr)!r}" for attr, _ in _FIELDS)
        return f"{type(self).__name__}({fields})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ErrorResponse):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self) -> int:
        return hash(tuple(self.to_dict().values()))

    @classmethod
    def from_dict(cls, data: Any) -> "ErrorResponse":
        """Build from a decoded JSON object; field names match case-insensitively."""
        if not isinstance(data, dict):
            raise TypeError("error response must be a JSON object")
        lowered = {str(name).lower(): value for name, value in data.items()}
        kwargs = {}
        for attr, name in _FIELDS:
            value = lowered.get(name.lower())
            if value is None:
                value = ""
            if not isinstance(value, str):
                raise TypeError(f"error response field {name} must be a string")
            kwargs[attr] = value
        return cls(**kwargs)

    def to_dict(self) -> dict[str, str]:
        return {name: getattr(self, attr) for attr, name in _FIELDS}


def _decode_first_json(body: bytes) -> Any:
    text = body.decode("utf-8").lstrip()
    if not text:
        raise ValueError("EOF")
    value, _ = json.JSONDecoder().raw_decode(text)
    return value


def error_from_response(response: Any) -> ErrorResponse:
    """Turn an unsuccessful HTTP response into an ErrorResponse and close it."""
    if response is None:
        return invalid_argument("Response is empty. " + REPORT_ISSUE)
    try:
        return ErrorResponse.from_dict(_decode_first_json(response.content))
    except (ValueError, TypeError) as exc:
        status = f"{response.status_code} {response.reason or ''}".strip()
        return ErrorResponse(
            code=status,
            message=f"Failed to parse server response: {exc}.",
        )
    finally:
        close = getattr(response, "close", None)
        if close is not None:
            close()


def to_error_response(err: BaseException | None) -> ErrorResponse:
    """Return err itself if it is an ErrorResponse, otherwise an empty one."""
    if isinstance(err, ErrorResponse):
        return err
    return ErrorResponse()


def invalid_argument(message: str) -> ErrorResponse:
    return ErrorResponse(code="InvalidArgument", message=message, request_id="minio")