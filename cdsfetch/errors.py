"""Exceptions and formatting of error payloads returned by the CDS API."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional

_DEFAULT_LICENCE_LINK = "https://cds.climate.copernicus.eu/how-to-api"
_RECOMMENDED_URL = "https://cds.climate.copernicus.eu/api"


class CdsError(Exception):
    """Base class for errors raised by this package."""


class ApiHttpError(CdsError):
    """An API request answered with an unsuccessful HTTP status."""

    def __init__(self, message: str, status: int, url: str) -> None:
        super().__init__(message)
        self.status = status
        self.url = url


@dataclass(frozen=True)
class CdsErrorResponse:
    """The fields of a CDS error body, all optional."""

    kind: Optional[str] = None
    title: Optional[str] = None
    status: Optional[int] = None
    detail: Optional[str] = None
    instance: Optional[str] = None
    trace_id: Optional[str] = None
    message: Optional[str] = None


_STRING_FIELDS = (
    ("type", "kind"),
    ("title", "title"),
    ("detail", "detail"),
    ("instance", "instance"),
    ("trace_id", "trace_id"),
    ("message", "message"),
)


def parse_error_response(text: str) -> Optional[CdsErrorResponse]:
    """Parse a JSON error body; return None if it does not have the expected shape."""
    try:
        data = json.loads(text)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    fields = {}
    for json_name, attr in _STRING_FIELDS:
        value = data.get(json_name)
        if value is not None and not isinstance(value, str):
            return None
        fields[attr] = value

    status = data.get("status")
    if status is not None and (
        isinstance(status, bool) or not isinstance(status, int) or not 0 <= status <= 0xFFFF
    ):
        return None
    return CdsErrorResponse(status=status, **fields)


def format_cds_error(status: int, url: str, response: CdsErrorResponse) -> ApiHttpError:
    """Build an actionable error from an HTTP status and a parsed CDS error body."""
    title = response.title if response.title is not None else (response.message or "")
    detail = response.detail or ""
    trace = response.trace_id or ""
    instance = response.instance or ""
    kind = response.kind or ""
    status_in_body = response.status if response.status is not None else status
    trace_text = trace or "(none)"

    looks_like_licence = status == 403 and (
        "required licences" in title.lower()
        or "required licence" in detail.lower()
        or "manage-licences" in detail.lower()
    )
    if looks_like_licence:
        link = _DEFAULT_LICENCE_LINK
        idx = detail.find("https://")
        if idx >= 0:
            link = detail[idx:].split()[0]
        message = (
            "CDS returned 403: required dataset licence(s) have not been accepted.\n\n"
            "How to fix:\n"
            f"1) Open and sign in: {link}\n"
            "2) Scroll to the bottom and accept the required licence(s) (Manage licences)\n"
            "3) Re-run this program\n\n"
            f"Server message: {title}\n"
            f"trace_id: {trace_text}"
        )
        return ApiHttpError(message, status, url)

    if status in (401, 403):
        message = (
            f"CDS authentication/authorization failed (HTTP {status_in_body}).\n"
            "- Check that the key in .cdsapirc is a valid Personal Access Token "
            "(often WITHOUT the deprecated '<UID>:' prefix)\n"
            "- Ensure the token is not expired\n"
            "- If dataset licences are not accepted, CDS returns: 403 required licences not accepted\n\n"
            f"Server message: {title}\n"
            f"{detail}\n"
            f"kind: {kind}\n"
            f"instance: {instance}\n"
            f"trace_id: {trace_text}\n"
            f"request: {url}"
        )
        return ApiHttpError(message, status, url)

    if status == 404:
        message = (
            "CDS API endpoint not found (HTTP 404).\n"
            "- The API path may have changed, or your configured base URL is incorrect\n"
            f"- Recommended .cdsapirc url: {_RECOMMENDED_URL}\n\n"
            f"Server message: {title}\n"
            f"{detail}\n"
            f"request: {url}"
        )
        return ApiHttpError(message, status, url)

    message = f"API request failed: HTTP {status_in_body} for url ({url})\n{title}\n{detail}"
    return ApiHttpError(message, status, url)