"""Small helpers shared by the client: URL handling, retry policy and key parsing."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

_RETRIABLE_STATUSES = frozenset({500, 502, 503, 504, 429, 408})


@dataclass(frozen=True)
class RemoteFile:
    """A downloadable result: its URL, expected size in bytes and content type."""

    location: str
    content_length: int
    content_type: Optional[str] = None


def retriable_status(code: int) -> bool:
    """Return True for HTTP statuses that are worth retrying."""
    return code in _RETRIABLE_STATUSES


def backoff(current: float, maximum: float) -> float:
    """Grow a sleep interval (seconds) by half, at least 1 s, capped at ``maximum``."""
    return min(max(current * 1.5, 1.0), maximum)


def guess_filename_from_url(url: str) -> Optional[str]:
    """Return the last path segment of ``url`` (query removed), or None if empty."""
    path = url.split("?", 1)[0]
    name = path.rsplit("/", 1)[-1]
    return name or None


def split_key_basic(key: str) -> Optional[Tuple[str, str]]:
    """Split a legacy ``<UID>:<APIKEY>`` key; return None for token-only keys."""
    user, sep, secret_part = key.partition(":")
    user, secret_part = user.strip(), secret_part.strip()
    if sep and user and secret_part:
        return user, secret_part
    return None


def urljoin(base: str, path: str) -> str:
    """Join ``path`` onto ``base`` unless ``path`` is already an absolute http(s) URL."""
    if path.startswith(("http://", "https://")):
        return path
    base = base.rstrip("/")
    if path.startswith("/"):
        return f"{base}{path}"
    return f"{base}/{path}"


def append_query(url: str, params: Iterable[Tuple[str, str]]) -> str:
    """Append ``key=value`` pairs to the query string of ``url``, without escaping."""
    separator = "&" if "?" in url else "?"
    query = "&".join(f"{name}={value}" for name, value in params)
    return f"{url}{separator}{query}"


def api_v2_variant(base: str) -> Optional[str]:
    """Return the ``/api/v2`` form of a base URL, or None if none applies."""
    trimmed = base.rstrip("/")
    if trimmed.endswith("/api"):
        return f"{trimmed}/v2"
    if "/api/" not in trimmed and not trimmed.endswith("/api/v2"):
        return f"{trimmed}/api/v2"
    return None


def extract_http_status(err: BaseException) -> Optional[int]:
    """Best-effort detection of an HTTP 404 from an error's message."""
    if "HTTP 404" in str(err):
        return 404
    return None