"""Client for the Climate Data Store: submit a request, wait for it, download the result."""

from __future__ import annotations

import json
import os
import sys
import time
from http import HTTPStatus
from pathlib import Path
from typing import Any, Callable, Optional, Tuple, Union

import requests
from tqdm import tqdm

from .config import load_config
from .errors import ApiHttpError, CdsError, format_cds_error, parse_error_response
from .legacy import ApiReply, parse_api_reply, remote_file_from_reply
from .processing import parse_job_status, parse_processing_job, parse_processing_results
from .util import (
    RemoteFile,
    api_v2_variant,
    append_query,
    backoff,
    extract_http_status,
    guess_filename_from_url,
    retriable_status,
    split_key_basic,
)

PathArg = Union[str, "os.PathLike[str]"]

_USER_AGENT = "cdsfetch"
_CHUNK_SIZE = 64 * 1024
_LEGACY_WAITING = frozenset({"queued", "running"})
_PROCESSING_WAITING = frozenset({"accepted", "running"})
_PROCESSING_FAILED = frozenset({"failed", "rejected", "dismissed", "deleted"})
_STATUS_QUERY = (("log", "true"), ("request", "true"))


def _status_text(status: int) -> str:
    try:
        return f"{status} {HTTPStatus(status).phrase}"
    except ValueError:
        return str(status)


def _is_success(status: int) -> bool:
    return 200 <= status < 300


def _failure_message(reply: ApiReply) -> str:
    error = reply.error
    message = error.message if error is not None and error.message is not None else "request failed"
    reason = error.reason if error is not None and error.reason is not None else ""
    return f"{message}{'. ' if reason else ''}{reason}"


class Client:
    """Submits requests to the CDS API and downloads their results.

    Keys of the form ``<UID>:<APIKEY>`` use the legacy resources/tasks API;
    token-only keys use the Retrieve (processes) API.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        key: Optional[str] = None,
        verify: Optional[bool] = None,
        timeout: float = 60.0,
        retry_max: int = 500,
        sleep_max: float = 120.0,
        wait_until_complete: bool = True,
        progress: bool = True,
    ) -> None:
        config = load_config(url, key, verify)
        self.url = config.url
        self.key = config.key
        self.verify = config.verify
        self.timeout = timeout
        self.retry_max = retry_max
        self.sleep_max = sleep_max
        self.wait_until_complete = wait_until_complete
        self.progress = progress

        self._session = requests.Session()
        self._session.headers["User-Agent"] = _USER_AGENT
        self._session.verify = config.verify
        credentials = split_key_basic(self.key)
        if credentials is not None:
            self._session.auth = credentials
        else:
            self._session.headers["PRIVATE-TOKEN"] = self.key.strip()

    @classmethod
    def from_env(cls) -> "Client":
        """Create a client configured only from the environment and rc files."""
        return cls()

    def close(self) -> None:
        """Release the underlying HTTP connections."""
        self._session.close()

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def retrieve(self, dataset: str, request: Any, target: Optional[PathArg] = None) -> RemoteFile:
        """Submit ``request`` for ``dataset`` and download the result to ``target`` if given."""
        if split_key_basic(self.key) is not None:
            return self._retrieve_legacy(dataset, request, target)
        return self._retrieve_processing(dataset, request, target)

    def _deliver(self, file: RemoteFile, target: Optional[PathArg]) -> RemoteFile:
        if target is not None:
            self.download(file, target)
        return file

    def _retrieve_legacy(self, dataset: str, request: Any, target: Optional[PathArg]) -> RemoteFile:
        base_url, reply = self._post_with_base_fallback(dataset, request)

        if not self.wait_until_complete:
            return self._deliver(remote_file_from_reply(reply, base_url), target)

        sleep = 1.0
        last_state: Optional[str] = None
        while True:
            if reply.state != last_state:
                last_state = reply.state
                print(f"Request state: {reply.state}", file=sys.stderr)

            if reply.state == "completed":
                return self._deliver(remote_file_from_reply(reply, base_url), target)
            if reply.state in _LEGACY_WAITING:
                if reply.request_id is None:
                    raise CdsError(f"missing request_id while state={reply.state}")
                time.sleep(sleep)
                sleep = backoff(sleep, self.sleep_max)
                task_url = f"{base_url.rstrip('/')}/tasks/{reply.request_id}"
                reply = parse_api_reply(self._api_json("GET", task_url))
                continue
            if reply.state == "failed":
                raise CdsError(_failure_message(reply))
            raise CdsError(f"unknown API state [{reply.state}]")

    def _retrieve_processing(
        self, dataset: str, request: Any, target: Optional[PathArg]
    ) -> RemoteFile:
        retrieve_base = f"{self.url.rstrip('/')}/retrieve/v1"
        exec_url = f"{retrieve_base}/processes/{dataset}/execution"
        job = parse_processing_job(self._api_json("POST", exec_url, {"inputs": request}))

        monitor_url = job.monitor_url()
        if monitor_url is None and job.job_id is not None:
            monitor_url = f"{retrieve_base}/jobs/{job.job_id}"
        if monitor_url is None:
            raise CdsError("missing monitor link in job submission response")

        if not self.wait_until_complete:
            raise CdsError(
                "wait_until_complete=false is not yet supported for token-only keys; "
                "set wait_until_complete=true"
            )

        sleep = 1.0
        last_status: Optional[str] = None
        status_url = append_query(monitor_url, _STATUS_QUERY)
        while True:
            job_status = parse_job_status(self._api_json("GET", status_url))
            if job_status.status != last_status:
                last_status = job_status.status
                print(f"Job status: {job_status.status}", file=sys.stderr)

            if job_status.status == "successful":
                results_url = job_status.results_url()
                if results_url is None:
                    results_url = f"{monitor_url.rstrip('/')}/results"
                results = parse_processing_results(self._api_json("GET", results_url))
                return self._deliver(results.to_remote_file(results_url), target)
            if job_status.status in _PROCESSING_WAITING:
                time.sleep(sleep)
                sleep = backoff(sleep, self.sleep_max)
                continue
            if job_status.status in _PROCESSING_FAILED:
                raise CdsError(f"processing failed with status {job_status.status}")
            raise CdsError(f"unknown processing status [{job_status.status}]")

    def _post_reply(self, url: str, request: Any) -> ApiReply:
        return parse_api_reply(self._api_json("POST", url, request))

    def _post_with_base_fallback(self, dataset: str, request: Any) -> Tuple[str, ApiReply]:
        base = self.url.rstrip("/")
        try:
            return base, self._post_reply(f"{base}/resources/{dataset}", request)
        except CdsError as error:
            if extract_http_status(error) == 404 and "/api/v2" not in base:
                alt_base = api_v2_variant(base)
                if alt_base is not None:
                    try:
                        return alt_base, self._post_reply(f"{alt_base}/resources/{dataset}", request)
                    except CdsError:
                        pass
            raise

    def download(self, file: RemoteFile, target: Optional[PathArg] = None) -> Path:
        """Download ``file`` to ``target``, resuming a partial file; return the path written.

        With no target, the file name is taken from the download URL.
        """
        if target is None or os.fspath(target) == "":
            path = Path(guess_filename_from_url(file.location) or "download")
        else:
            path = Path(target)

        parent = path.parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CdsError(f"failed to create directory {parent}: {exc}") from exc

        downloaded = 0
        append = False
        range_from: Optional[int] = None
        if path.exists():
            downloaded = path.stat().st_size
            if downloaded < file.content_length:
                append = True
                range_from = downloaded

        bar = tqdm(
            total=file.content_length,
            initial=downloaded,
            unit="B",
            unit_scale=True,
            unit_divisor=1024,
            disable=not self.progress,
            leave=False,
        )
        tries = 0
        try:
            while tries < self.retry_max:
                headers = {"Range": f"bytes={range_from}-"} if range_from is not None else {}

                def send(headers: dict = headers) -> requests.Response:
                    return self._session.get(
                        file.location, headers=headers, stream=True, timeout=self.timeout
                    )

                interrupted: Optional[requests.RequestException] = None
                with self._robust_request(send) as response:
                    try:
                        response.raise_for_status()
                    except requests.HTTPError as exc:
                        raise CdsError(f"download request failed: {exc}") from exc
                    try:
                        with open(path, "ab" if append else "wb") as out:
                            for chunk in response.iter_content(_CHUNK_SIZE):
                                out.write(chunk)
                                downloaded += len(chunk)
                                bar.update(len(chunk))
                    except requests.RequestException as exc:
                        interrupted = exc

                if interrupted is None and downloaded >= file.content_length:
                    return path

                tries += 1
                if interrupted is not None and tries >= self.retry_max:
                    raise CdsError(f"download interrupted: {interrupted}") from interrupted

                downloaded = path.stat().st_size
                range_from = downloaded
                append = True
                bar.n = downloaded
                bar.refresh()
                time.sleep(self.sleep_max)
        finally:
            bar.close()

        raise CdsError(
            f"download failed: downloaded {downloaded} byte(s) out of {file.content_length}"
        )

    def _api_json(self, method: str, url: str, body: Any = None) -> Any:
        def send() -> requests.Response:
            if method == "GET":
                return self._session.get(url, timeout=self.timeout)
            return self._session.request(method, url, json=body, timeout=self.timeout)

        with self._robust_request(send) as response:
            status = response.status_code
            text = response.text

        if not _is_success(status):
            parsed = parse_error_response(text)
            if parsed is not None:
                raise format_cds_error(status, url, parsed)
            raise ApiHttpError(
                f"API request failed: HTTP {_status_text(status)} for url ({url})\n{text}",
                status,
                url,
            )

        try:
            return json.loads(text)
        except ValueError as exc:
            raise CdsError(
                f"failed to parse API JSON (url={url}, status={_status_text(status)}): {exc}"
            ) from exc

    def _robust_request(self, send: Callable[[], requests.Response]) -> requests.Response:
        tries = 0
        while True:
            try:
                response = send()
            except requests.RequestException as exc:
                tries += 1
                if tries >= self.retry_max:
                    raise CdsError(f"could not connect: {exc}") from exc
                time.sleep(self.sleep_max)
                continue

            if retriable_status(response.status_code):
                tries += 1
                if tries >= self.retry_max:
                    return response
                response.close()
                time.sleep(self.sleep_max)
                continue
            return response