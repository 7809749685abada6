import base64
import json
from unittest import mock

import pytest
import requests
import responses

from cdsfetch.client import Client
from cdsfetch.errors import ApiHttpError, CdsError
from cdsfetch.util import RemoteFile

BASE = "https://cds.example.com/api"
TOKEN_KEY = "token"
UID = "12345"
SECRET = "placeholder"
LEGACY_KEY = f"{UID}:{SECRET}"
REQUEST = {"variable": ["geopotential"], "year": ["2024"], "data_format": "grib"}


@pytest.fixture
def rsps():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as mocked:
        yield mocked


@pytest.fixture(autouse=True)
def sleeps():
    with mock.patch("time.sleep") as patched:
        yield patched


def make_client(key, **overrides):
    options = dict(url=BASE, key=key, verify=True, sleep_max=0.0, retry_max=3, progress=False)
    options.update(overrides)
    return Client(**options)


def test_token_key_uses_retrieve_api(rsps, tmp_path, sleeps):
    exec_url = f"{BASE}/retrieve/v1/processes/ds/execution"
    monitor = f"{BASE}/retrieve/v1/jobs/job-1"
    rsps.add(
        responses.POST,
        exec_url,
        json={"jobID": "job-1", "links": [{"rel": "monitor", "href": monitor}]},
    )
    rsps.add(responses.GET, monitor, json={"status": "accepted"})
    rsps.add(
        responses.GET,
        monitor,
        json={"status": "successful", "links": [{"rel": "results", "href": f"{monitor}/results"}]},
    )
    rsps.add(
        responses.GET,
        f"{monitor}/results",
        json={
            "asset": {
                "value": {
                    "href": "https://data.example.com/out.grib",
                    "file:size": 5,
                    "type": "application/x-grib",
                }
            }
        },
    )
    rsps.add(responses.GET, "https://data.example.com/out.grib", body=b"GRIB!")

    target = tmp_path / "out.grib"
    result = make_client(TOKEN_KEY).retrieve("ds", REQUEST, target)

    assert result == RemoteFile("https://data.example.com/out.grib", 5, "application/x-grib")
    assert target.read_bytes() == b"GRIB!"
    submit = rsps.calls[0].request
    assert submit.headers["PRIVATE-TOKEN"] == "token"
    assert json.loads(submit.body) == {"inputs": REQUEST}
    assert rsps.calls[1].request.url.endswith("?log=true&request=true")
    assert sleeps.call_count >= 1


def test_job_id_used_when_monitor_link_missing(rsps):
    retrieve_base = f"{BASE}/retrieve/v1"
    monitor = f"{retrieve_base}/jobs/abc"
    rsps.add(responses.POST, f"{retrieve_base}/processes/ds/execution", json={"jobID": "abc"})
    rsps.add(responses.GET, monitor, json={"status": "successful"})
    rsps.add(
        responses.GET,
        f"{monitor}/results",
        json={"asset": {"value": {"href": "files/x.nc", "file:size": 7, "type": "application/netcdf"}}},
    )

    result = make_client(TOKEN_KEY).retrieve("ds", REQUEST)

    assert result.location == f"{monitor}/results/files/x.nc"
    assert result.content_length == 7
    assert len(rsps.calls) == 3


def test_missing_monitor_link_is_an_error(rsps):
    rsps.add(responses.POST, f"{BASE}/retrieve/v1/processes/ds/execution", json={"links": []})
    with pytest.raises(CdsError, match="missing monitor link"):
        make_client(TOKEN_KEY).retrieve("ds", REQUEST)


def test_token_key_without_waiting_is_rejected(rsps):
    rsps.add(responses.POST, f"{BASE}/retrieve/v1/processes/ds/execution", json={"jobID": "j"})
    client = make_client(TOKEN_KEY, wait_until_complete=False)
    with pytest.raises(CdsError, match="wait_until_complete=false"):
        client.retrieve("ds", REQUEST)


def test_processing_failure_status(rsps):
    monitor = f"{BASE}/retrieve/v1/jobs/j"
    rsps.add(
        responses.POST,
        f"{BASE}/retrieve/v1/processes/ds/execution",
        json={"links": [{"rel": "monitor", "href": monitor}]},
    )
    rsps.add(responses.GET, monitor, json={"status": "failed"})
    with pytest.raises(CdsError, match="processing failed with status failed"):
        make_client(TOKEN_KEY).retrieve("ds", REQUEST)


def test_unknown_processing_status(rsps):
    monitor = f"{BASE}/retrieve/v1/jobs/j"
    rsps.add(
        responses.POST,
        f"{BASE}/retrieve/v1/processes/ds/execution",
        json={"links": [{"rel": "monitor", "href": monitor}]},
    )
    rsps.add(responses.GET, monitor, json={"status": "paused"})
    with pytest.raises(CdsError, match=r"unknown processing status \[paused\]"):
        make_client(TOKEN_KEY).retrieve("ds", REQUEST)


def test_legacy_key_polls_tasks_and_downloads(rsps, tmp_path, capsys):
    rsps.add(responses.POST, f"{BASE}/resources/ds", json={"state": "queued", "request_id": "r1"})
    rsps.add(
        responses.GET,
        f"{BASE}/tasks/r1",
        json={"state": "completed", "result": {"location": "/download/out.nc", "contentLength": 3}},
    )
    rsps.add(responses.GET, f"{BASE}/download/out.nc", body=b"abc")

    target = tmp_path / "out.nc"
    result = make_client(LEGACY_KEY).retrieve("ds", REQUEST, target)

    assert result.location == f"{BASE}/download/out.nc"
    assert target.read_bytes() == b"abc"
    auth = rsps.calls[0].request.headers["Authorization"]
    assert auth.startswith("Basic ")
    assert base64.b64decode(auth[len("Basic "):]).decode() == LEGACY_KEY
    assert json.loads(rsps.calls[0].request.body) == REQUEST
    err = capsys.readouterr().err
    assert "Request state: queued" in err
    assert "Request state: completed" in err


def test_legacy_failed_state_reports_message_and_reason(rsps):
    rsps.add(
        responses.POST,
        f"{BASE}/resources/ds",
        json={"state": "failed", "error": {"message": "boom", "reason": "bad input"}},
    )
    with pytest.raises(CdsError) as info:
        make_client(LEGACY_KEY).retrieve("ds", REQUEST)
    assert str(info.value) == "boom. bad input"


def test_legacy_failed_state_without_details(rsps):
    rsps.add(responses.POST, f"{BASE}/resources/ds", json={"state": "failed"})
    with pytest.raises(CdsError) as info:
        make_client(LEGACY_KEY).retrieve("ds", REQUEST)
    assert str(info.value) == "request failed"


def test_legacy_unknown_state(rsps):
    rsps.add(responses.POST, f"{BASE}/resources/ds", json={"state": "weird"})
    with pytest.raises(CdsError, match=r"unknown API state \[weird\]"):
        make_client(LEGACY_KEY).retrieve("ds", REQUEST)


def test_legacy_queued_without_request_id(rsps):
    rsps.add(responses.POST, f"{BASE}/resources/ds", json={"state": "queued"})
    with pytest.raises(CdsError, match="missing request_id while state=queued"):
        make_client(LEGACY_KEY).retrieve("ds", REQUEST)


def test_legacy_falls_back_to_api_v2_on_404(rsps):
    rsps.add(responses.POST, f"{BASE}/resources/ds", status=404, body="not here")
    rsps.add(
        responses.POST,
        f"{BASE}/v2/resources/ds",
        json={"state": "completed", "location": "files/out.grib", "contentLength": 4},
    )
    client = make_client(LEGACY_KEY, wait_until_complete=False)

    result = client.retrieve("ds", REQUEST)

    assert result.location == f"{BASE}/v2/files/out.grib"
    assert result.content_length == 4
    assert rsps.calls[1].request.url == f"{BASE}/v2/resources/ds"


def test_legacy_fallback_failure_raises_original_error(rsps):
    rsps.add(responses.POST, f"{BASE}/resources/ds", status=404, body="not here")
    rsps.add(responses.POST, f"{BASE}/v2/resources/ds", status=404, body="gone too")
    with pytest.raises(ApiHttpError) as info:
        make_client(LEGACY_KEY).retrieve("ds", REQUEST)
    assert info.value.url == f"{BASE}/resources/ds"
    assert "HTTP 404" in str(info.value)


def test_licence_error_is_explained(rsps):
    link = "https://cds.example.com/datasets/ds?tab=download#manage-licences"
    rsps.add(
        responses.POST,
        f"{BASE}/retrieve/v1/processes/ds/execution",
        status=403,
        json={"title": "required licences not accepted", "detail": f"accept them at {link} first"},
    )
    with pytest.raises(ApiHttpError) as info:
        make_client(TOKEN_KEY).retrieve("ds", REQUEST)
    assert info.value.status == 403
    assert "required dataset licence(s) have not been accepted" in str(info.value)
    assert link in str(info.value)


def test_plain_text_error_body(rsps):
    rsps.add(responses.POST, f"{BASE}/retrieve/v1/processes/ds/execution", status=400, body="nope")
    with pytest.raises(ApiHttpError) as info:
        make_client(TOKEN_KEY).retrieve("ds", REQUEST)
    assert info.value.status == 400
    assert "HTTP 400" in str(info.value)
    assert str(info.value).endswith("\nnope")


def test_invalid_json_reply(rsps):
    rsps.add(responses.POST, f"{BASE}/resources/ds", body="not json")
    with pytest.raises(CdsError, match="failed to parse API JSON"):
        make_client(LEGACY_KEY).retrieve("ds", REQUEST)


def test_retriable_status_is_retried(rsps, sleeps):
    url = f"{BASE}/resources/ds"
    rsps.add(responses.POST, url, status=503)
    rsps.add(responses.POST, url, json={"state": "completed", "location": "f.grib", "contentLength": 1})
    client = make_client(LEGACY_KEY, wait_until_complete=False, sleep_max=0.25)

    result = client.retrieve("ds", REQUEST)

    assert result.location == f"{BASE}/f.grib"
    assert len(rsps.calls) == 2
    sleeps.assert_any_call(0.25)


def test_connection_errors_give_up_after_retry_max(rsps):
    rsps.add(responses.POST, f"{BASE}/resources/ds", body=requests.ConnectionError("down"))
    with pytest.raises(CdsError, match="could not connect"):
        make_client(LEGACY_KEY, retry_max=3).retrieve("ds", REQUEST)
    assert len(rsps.calls) == 3


def test_download_resumes_partial_file(rsps, tmp_path):
    location = "https://data.example.com/file.bin"
    target = tmp_path / "file.bin"
    target.write_bytes(b"abc")
    rsps.add(responses.GET, location, body=b"def")

    path = make_client(TOKEN_KEY).download(RemoteFile(location, 6), target)

    assert path == target
    assert target.read_bytes() == b"abcdef"
    assert rsps.calls[0].request.headers["Range"] == "bytes=3-"


def test_download_short_body_fails_after_retries(rsps, tmp_path):
    location = "https://data.example.com/file.bin"
    target = tmp_path / "file.bin"
    rsps.add(responses.GET, location, body=b"ab")
    client = make_client(TOKEN_KEY, retry_max=2)

    with pytest.raises(CdsError, match=r"download failed: downloaded 4 byte\(s\) out of 10"):
        client.download(RemoteFile(location, 10), target)

    assert "Range" not in rsps.calls[0].request.headers
    assert rsps.calls[1].request.headers["Range"] == "bytes=2-"
    assert target.read_bytes() == b"abab"


def test_download_guesses_name_from_url(rsps, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    location = "https://data.example.com/results/out.grib?sig=1"
    rsps.add(responses.GET, location, body=b"data")

    path = make_client(TOKEN_KEY).download(RemoteFile(location, 4))

    assert path.name == "out.grib"
    assert (tmp_path / "out.grib").read_bytes() == b"data"


def test_download_creates_parent_directories(rsps, tmp_path):
    location = "https://data.example.com/x.nc"
    target = tmp_path / "a" / "b" / "x.nc"
    rsps.add(responses.GET, location, body=b"xyz")

    make_client(TOKEN_KEY).download(RemoteFile(location, 3), target)

    assert target.read_bytes() == b"xyz"


def test_download_http_error(rsps, tmp_path):
    location = "https://data.example.com/x.nc"
    rsps.add(responses.GET, location, status=410)
    with pytest.raises(CdsError, match="download request failed"):
        make_client(TOKEN_KEY).download(RemoteFile(location, 3), tmp_path / "x.nc")


def test_from_env_reads_environment_and_rc(tmp_path, monkeypatch):
    rc = tmp_path / "rc"
    rc.write_text("verify: 0\n", encoding="utf-8")
    monkeypatch.setenv("CDSAPI_RC", str(rc))
    monkeypatch.setenv("CDSAPI_URL", BASE)
    monkeypatch.setenv("CDSAPI_KEY", TOKEN_KEY)

    client = Client.from_env()

    assert client.url == BASE
    assert client.key == "token"
    assert client.verify is False


def test_from_env_without_configuration(tmp_path, monkeypatch):
    monkeypatch.setenv("CDSAPI_RC", str(tmp_path / "missing"))
    monkeypatch.delenv("CDSAPI_URL", raising=False)
    monkeypatch.delenv("CDSAPI_KEY", raising=False)
    with pytest.raises(CdsError, match="Missing configuration: url"):
        Client.from_env()