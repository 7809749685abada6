# cdsfetch

A small client library for the Climate Data Store (CDS) API. It submits a data
request, polls until the server has produced the file, and downloads it. It
resumes partial downloads where it can.

## Configuration

The client needs a base URL and a key. It looks them up in this order:

1. Arguments passed to `Client(url=..., key=..., verify=...)`
2. The environment variables `CDSAPI_URL` and `CDSAPI_KEY`
3. A configuration file. This is the path in `CDSAPI_RC` if that variable is
   set. Otherwise it is `.cdsapirc` in the current directory, then `.cdsapirc`
   in your home directory. The first file that exists is used.

A configuration file looks like this:

```
url: https://cds.example.com/api
key: placeholder
verify: 1
```

- `verify: 0` turns off TLS certificate checking. Any other value turns it on,
  and it is on by default.
- A value may be quoted with single or double quotes.
- A value may stand on the line after its `url:` or `key:` line, as long as
  that line has no colon.
- Blank lines and lines starting with `#` are ignored.

If no URL or key can be found, `load_config` (and so `Client`) raises
`CdsError`. The message lists the files that were searched.

Two kinds of key are understood:

- **A personal access token with no colon.** Requests go through the
  processing API at `<url>/retrieve/v1`. The token is sent in a
  `PRIVATE-TOKEN` header.
- **A `<UID>:<APIKEY>` pair.** Requests go through `<url>/resources` and
  `<url>/tasks` with HTTP basic authentication. If submitting answers with
  HTTP 404 and the base URL does not already contain `/api/v2`, the client
  tries the `/api/v2` form of the base URL once.

## Usage

```python
from cdsfetch.client import Client

with Client.from_env() as client:
    request = {
        "product_type": ["reanalysis"],
        "variable": ["geopotential"],
        "year": ["2024"],
        "month": ["03"],
        "day": ["01"],
        "time": ["13:00"],
        "pressure_level": ["1000"],
        "data_format": "grib",
    }
    remote = client.retrieve("reanalysis-era5-pressure-levels", request, "download.grib")
    print(remote.location, remote.content_length, remote.content_type)
```

`retrieve` returns a `cdsfetch.util.RemoteFile` with three fields:
`location`, `content_length` and `content_type`. If `target` is `None`,
nothing is downloaded.

You can fetch the file later with `client.download(remote, path)`, which
returns the `pathlib.Path` it wrote. Without a path, or with an empty one,
the file is named after the last part of the download URL, or `download` if
the URL has none. Missing parent directories are created. If the file already
exists but is shorter than `content_length`, the download resumes from its end
with an HTTP `Range` request.

Messages about the request state go to standard error. A progress bar is shown
during downloads unless `progress=False`. `Client.close()` releases the HTTP
session, and leaving a `with` block closes it too.

### Tuning

```python
client = Client(
    url="https://cds.example.com/api",
    key="placeholder",
    timeout=60,
    retry_max=500,
    sleep_max=120,
    wait_until_complete=True,
    progress=False,
)
```

- `timeout` is the per-request HTTP timeout in seconds.
- `retry_max` limits how many times the client tries again after a failed
  connection, a retriable HTTP status (408, 429, 500, 502, 503, 504), or an
  interrupted or incomplete download.
- `sleep_max` is the pause in seconds before each such retry. It also caps the
  wait between status polls. Polling starts at one second and the wait grows
  by half each time.
- `wait_until_complete=False` returns the file description straight from the
  submission reply, without polling. This works only with `<UID>:<APIKEY>`
  keys. With a token key it raises `CdsError` after the job has been
  submitted.

## Errors

Failures raise `cdsfetch.errors.CdsError` or one of its subclasses. An
unsuccessful HTTP answer from the API raises `ApiHttpError`, which carries
`status` and `url`.

When the server sends a structured JSON error body, the message explains what
to do next. It covers:

- dataset licences that have not been accepted (403)
- rejected or expired credentials (401/403)
- a wrong base URL (404)

A request that ends in a failed state also raises `CdsError`, with the
server's message and reason.

## What it does not do

This is a library only. It has no command-line program, and it keeps no record
of past requests. It cannot list, cancel or delete jobs on the server.