# scanhub

scanhub runs RustScan port scans inside a Docker container (image
`rustscan/rustscan:latest`) and turns the nmap XML report into
structured data. It can be used in two ways:

- **From the command line**: run one scan and print the result as JSON,
  or write it to a file.
- **As an HTTP API server**: submit scans over HTTP. They are queued,
  run by a pool of worker threads with a cap on concurrent scans, stored
  on disk as JSON and reported to an optional webhook or MCP endpoint.

## Requirements

- Python 3.10 or newer
- A Docker daemon the current user can reach. The daemon is found
  through `DOCKER_HOST` (`unix://...` or `tcp://...`); without it,
  `/var/run/docker.sock` is used. The current working directory is
  bind-mounted into the container at `/output`, and the container's
  output is streamed to standard output.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Command line

### Running a single scan

```
scanhub scan --targets 192.0.2.10,192.0.2.11 --ports 22,80,443
```

| Option         | Meaning                                                    |
|----------------|------------------------------------------------------------|
| `--targets`    | Targets to scan, comma separated (required)                |
| `--ports`      | Ports, e.g. `80,443` or `1-1000`                           |
| `--rate-limit` | Scan rate limit (passed as `--rate` when above 0)          |
| `--timeout`    | Timeout (passed as `--timeout` when above 0)               |
| `--nmap-flags` | Extra nmap arguments, comma separated or repeated          |
| `--output`     | Write the result to this file instead of standard output   |
| `--format`     | Output format; only `json` is supported (the default)      |

The result is the parsed nmap run as indented JSON: scanner details,
scan info, every host with its status, address and ports, and the run
statistics. On failure the command prints `error: ...` to standard
error and exits with status 1.

### Starting the API server

```
scanhub serve --port 8080 --output-dir ./output
```

| Option             | Default    | Meaning                                      |
|--------------------|------------|----------------------------------------------|
| `--port`           | `8080`     | Port the HTTP server listens on              |
| `--output-dir`     | `./output` | Where scan records and XML results are kept  |
| `--workers`        | `5`        | Number of worker threads                     |
| `--max-concurrent` | `10`       | Maximum number of scans running at once      |
| `--queue-size`     | `100`      | Capacity of the task queue                   |
| `--rate-limit`     | `10.0`     | API requests allowed per second (burst 20)   |
| `--cleanup-days`   | `7`        | Scan records older than this are removed     |

`--port` and `--config` may also be given before the command name.
Records are kept in `<output-dir>/scans/<id>.json`; each scan writes its
XML report under `<output-dir>/<id>/result.xml`. Old records are removed
once an hour.

## HTTP API

All routes are under `/api/v1`. The `/scan` routes are rate limited and
answer `429` when requests come in too fast.

| Method   | Path         | Description                                         |
|----------|--------------|-----------------------------------------------------|
| `GET`    | `/health`    | Server status and queue configuration               |
| `POST`   | `/scan/`     | Create a scan; `202` with the record, `400` if invalid |
| `GET`    | `/scan/`     | List all scans                                      |
| `GET`    | `/scan/<id>` | One scan, `404` if unknown                          |
| `DELETE` | `/scan/<id>` | Cancel a pending or running scan; `400` otherwise   |
| `GET`    | `/metrics`   | `RunningTasks`, `CompletedTasks`, `FailedTasks`, `QueuedTasks` |

A scan request is a JSON object:

```json
{
  "targets": "192.0.2.10",
  "ports": "1-1000",
  "rate_limit": 1000,
  "timeout": 3,
  "nmap_options": ["-sV"],
  "webhook_url": "http://localhost:9000/hook",
  "webhook_retry_count": 3,
  "webhook_retry_delay": 5,
  "mcp_enabled": true,
  "mcp_endpoint": "http://localhost:8090/api/mcp/notification",
  "mcp_api_key": "placeholder"
}
```

Only `targets` is required; field types are checked. A scan moves
through `pending`, `running` and then `completed` or `failed`; it can
also be `cancelled`.

### Webhooks

When a scan completes or fails and `webhook_url` is set, a JSON payload
is POSTed to that URL with `scan_id`, `status`, `completed_at`,
`request`, `result` or `error`, `execution_ms` and `metadata`. Failed
deliveries are retried `webhook_retry_count` times (default 3), waiting
`webhook_retry_delay` seconds (default 5) between attempts. Any 2xx
answer counts as delivered.

### MCP notifications

With `mcp_enabled` set and an `mcp_endpoint` given, the server POSTs a
notification of type `scan_started`, `scan_completed` or `scan_failed`
to the endpoint as the scan progresses. There are no retries.

## MCP notification handler

A small service receives these notifications and answers each with
`analysis`, `summary` and `recommended_action`, for example counting the
open ports found in a completed scan:

```
scanhub-mcp-handler --port 8090
```

It serves `POST /api/mcp/notification`. The port defaults to the `PORT`
environment variable, or `8090`. Malformed JSON or an unknown
notification type gets a plain-text `400` answer.

## Library use

The nmap XML parser can be used on its own:

```python
from scanhub.nmap import parse_nmap_xml, convert_xml_to_json

run = parse_nmap_xml("result.xml")
for host in run.hosts:
    print(host.address.addr, [port.port_id for port in host.ports.ports])

print(run.to_json())
convert_xml_to_json("result.xml", "result.json")
```

`parse_nmap_xml_string` parses a report held in memory. Reading or
parsing failures raise `NmapParseError`. In the JSON form, empty host
and port lists are written as `null`.

The server can be built in code with `scanhub.server.Server(output_dir,
config)`; its `app` attribute is the Flask application, and `shutdown()`
stops the workers and background threads.

## What it does not do

- The API has no authentication and no TLS. `scanhub serve` uses
  Flask's built-in development server.
- `--config` is accepted but no configuration file is read.
- `mcp_api_key` is stored with the request but is not sent to the MCP
  endpoint.
- Cancelling a scan only marks its record as `cancelled`; a container
  that is already running is not stopped.
- JSON is the only output format.