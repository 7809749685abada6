"""Jobs, statuses and results of the OGC-style Retrieve (processes) API."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Tuple

from .errors import CdsError
from .util import RemoteFile, urljoin


@dataclass(frozen=True)
class ProcessingLink:
    """A hyperlink in a job document."""

    href: str
    rel: Optional[str] = None


def _find_link(links: Iterable[ProcessingLink], rel: str) -> Optional[str]:
    return next((link.href for link in links if link.rel == rel), None)


@dataclass(frozen=True)
class ProcessingJob:
    """The answer to a job submission."""

    job_id: Optional[str] = None
    links: Tuple[ProcessingLink, ...] = field(default_factory=tuple)

    def monitor_url(self) -> Optional[str]:
        """Return the href of the first ``monitor`` link, if any."""
        return _find_link(self.links, "monitor")


@dataclass(frozen=True)
class ProcessingJobStatus:
    """The current status of a job."""

    status: str
    links: Tuple[ProcessingLink, ...] = field(default_factory=tuple)

    def results_url(self) -> Optional[str]:
        """Return the href of the first ``results`` link, if any."""
        return _find_link(self.links, "results")


@dataclass(frozen=True)
class ProcessingResults:
    """The result asset of a finished job."""

    href: str
    file_size: int
    content_type: str

    def to_remote_file(self, results_url: str) -> RemoteFile:
        """Resolve the asset against ``results_url`` into a downloadable file."""
        href = self.href.strip()
        if not href:
            raise CdsError("missing results asset href")
        return RemoteFile(urljoin(results_url, href), self.file_size, self.content_type)


def _require_object(data: Any, what: str) -> dict:
    if not isinstance(data, dict):
        raise CdsError(f"invalid processing reply: {what} must be a JSON object")
    return data


def _require_str(data: dict, name: str) -> str:
    value = data.get(name)
    if not isinstance(value, str):
        raise CdsError(f"invalid processing reply: missing or invalid field {name!r}")
    return value


def _optional_str(data: dict, *names: str) -> Optional[str]:
    value = next((data[name] for name in names if name in data), None)
    if value is not None and not isinstance(value, str):
        raise CdsError(f"invalid processing reply: field {names[0]!r} must be a string")
    return value


def _parse_links(data: dict) -> Tuple[ProcessingLink, ...]:
    if "links" not in data:
        return ()
    raw = data["links"]
    if not isinstance(raw, list):
        raise CdsError("invalid processing reply: field 'links' must be a list")
    links = []
    for item in raw:
        item = _require_object(item, "link")
        links.append(ProcessingLink(href=_require_str(item, "href"), rel=_optional_str(item, "rel")))
    return tuple(links)


def parse_processing_job(data: Any) -> ProcessingJob:
    """Build a ProcessingJob from a decoded submission reply."""
    data = _require_object(data, "job")
    return ProcessingJob(job_id=_optional_str(data, "job_id", "jobID"), links=_parse_links(data))


def parse_job_status(data: Any) -> ProcessingJobStatus:
    """Build a ProcessingJobStatus from a decoded status reply."""
    data = _require_object(data, "job status")
    return ProcessingJobStatus(status=_require_str(data, "status"), links=_parse_links(data))


def parse_processing_results(data: Any) -> ProcessingResults:
    """Build ProcessingResults from a decoded results reply."""
    data = _require_object(data, "results")
    asset = _require_object(data.get("asset"), "asset")
    value = _require_object(asset.get("value"), "asset value")
    size = value.get("file:size")
    if isinstance(size, bool) or not isinstance(size, int) or size < 0:
        raise CdsError("invalid processing reply: missing or invalid field 'file:size'")
    return ProcessingResults(
        href=_require_str(value, "href"),
        file_size=size,
        content_type=_require_str(value, "type"),
    )