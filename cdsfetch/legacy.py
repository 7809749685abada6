"""Replies of the legacy resources/tasks API and extraction of their download info."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .errors import CdsError
from .util import RemoteFile, urljoin

_LENGTH_NAMES = ("content_length", "contentLength")
_TYPE_NAMES = ("content_type", "contentType")


@dataclass(frozen=True)
class ApiError:
    """Error details attached to a failed request."""

    message: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class ApiReply:
    """State of a legacy request as reported by the API."""

    state: str
    request_id: Optional[str] = None
    location: Optional[str] = None
    content_length: Optional[int] = None
    content_type: Optional[str] = None
    result: Any = None
    error: Optional[ApiError] = None


def _field(data: Mapping[str, Any], names) -> Any:
    for name in names:
        if name in data:
            return data[name]
    return None


def _optional_str(data: Mapping[str, Any], *names: str) -> Optional[str]:
    value = _field(data, names)
    if value is not None and not isinstance(value, str):
        raise CdsError(f"invalid API reply: field {names[0]!r} must be a string")
    return value


def _optional_size(data: Mapping[str, Any], *names: str) -> Optional[int]:
    value = _field(data, names)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise CdsError(f"invalid API reply: field {names[0]!r} must be a non-negative integer")
    return value


def _parse_error(data: Any) -> Optional[ApiError]:
    if data is None:
        return None
    if not isinstance(data, dict):
        raise CdsError("invalid API reply: field 'error' must be an object")
    return ApiError(
        message=_optional_str(data, "message"),
        reason=_optional_str(data, "reason"),
    )


def parse_api_reply(data: Any) -> ApiReply:
    """Build an ApiReply from decoded JSON, raising CdsError on a malformed reply."""
    if not isinstance(data, dict):
        raise CdsError("invalid API reply: expected a JSON object")
    state = data.get("state")
    if not isinstance(state, str):
        raise CdsError("invalid API reply: missing or invalid field 'state'")
    return ApiReply(
        state=state,
        request_id=_optional_str(data, "request_id"),
        location=_optional_str(data, "location"),
        content_length=_optional_size(data, *_LENGTH_NAMES),
        content_type=_optional_str(data, *_TYPE_NAMES),
        result=data.get("result"),
        error=_parse_error(data.get("error")),
    )


def _result_location(result: Any, base_url: str) -> Optional[RemoteFile]:
    if not isinstance(result, dict):
        return None
    try:
        location = result.get("location")
        if not isinstance(location, str):
            return None
        length = _optional_size(result, *_LENGTH_NAMES)
        if length is None:
            return None
        content_type = _optional_str(result, *_TYPE_NAMES)
    except CdsError:
        return None
    return RemoteFile(urljoin(base_url, location), length, content_type)


def remote_file_from_reply(reply: ApiReply, base_url: str) -> RemoteFile:
    """Find the download location in a reply, from ``result`` or from the top level."""
    found = _result_location(reply.result, base_url)
    if found is not None:
        return found
    if reply.location is not None and reply.content_length is not None:
        return RemoteFile(
            urljoin(base_url, reply.location),
            reply.content_length,
            reply.content_type,
        )
    raise CdsError("missing download info in API reply")