"""Run the scanner image in a Docker container through the Engine API."""

from __future__ import annotations

import os
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, BinaryIO, Iterable, Iterator, Sequence

import httpx

IMAGE = "rustscan/rustscan:latest"
DEFAULT_SOCKET = "/var/run/docker.sock"
_HEADER_SIZE = 8


class DockerError(Exception):
    """Raised when the Docker daemon reports a failure."""


def _describe(response: httpx.Response) -> str:
    try:
        message = response.json().get("message")
    except (ValueError, AttributeError):
        message = None
    return f"HTTP {response.status_code}: {message or response.text}"


def _demux(chunks: Iterable[bytes]) -> Iterator[bytes]:
    """Yield payloads from Docker's multiplexed stdout/stderr log stream."""
    buffer = bytearray()
    for chunk in chunks:
        buffer += chunk
        while len(buffer) >= _HEADER_SIZE:
            size = int.from_bytes(buffer[4:8], "big")
            end = _HEADER_SIZE + size
            if len(buffer) < end:
                break
            payload = bytes(buffer[_HEADER_SIZE:end])
            del buffer[:end]
            yield payload
    if buffer:
        raise DockerError("log stream ended inside a frame")


def _make_client(socket_path: str | None, base_url: str | None) -> httpx.Client:
    if socket_path is None and base_url is None:
        host = os.environ.get("DOCKER_HOST", "")
        if host.startswith("unix://"):
            socket_path = host[len("unix://"):]
        elif host.startswith("tcp://"):
            base_url = "http://" + host[len("tcp://"):]
        elif host:
            raise DockerError(f"failed to create Docker client: unsupported DOCKER_HOST {host!r}")
        else:
            socket_path = DEFAULT_SOCKET
    transport = httpx.HTTPTransport(uds=socket_path) if socket_path else None
    return httpx.Client(base_url=base_url or "http://docker", transport=transport, timeout=None)


class DockerRunner:
    """Runs the scanner in a throw-away container and streams its output."""

    def __init__(
        self,
        socket_path: str | None = None,
        base_url: str | None = None,
        output: BinaryIO | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client if client is not None else _make_client(socket_path, base_url)
        self._output = output if output is not None else sys.stdout.buffer

    def __enter__(self) -> DockerRunner:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Release the HTTP client if this runner created it."""
        if self._owns_client:
            self._client.close()

    def container_config(self, args: Sequence[str]) -> dict[str, Any]:
        """Return the container creation body for the given scanner arguments."""
        current_dir = Path(os.getcwd()).as_posix()
        return {
            "Image": IMAGE,
            "Cmd": list(args),
            "Tty": False,
            "HostConfig": {
                "Binds": [f"{current_dir}:/output"],
                "AutoRemove": True,
            },
        }

    def _call(self, method: str, url: str, action: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise DockerError(f"{action}: {exc}") from exc
        if response.status_code >= 400:
            raise DockerError(f"{action}: {_describe(response)}")
        return response

    def _wait(self, container_id: str) -> int:
        response = self._call(
            "POST",
            f"/containers/{container_id}/wait",
            "failed waiting for container",
            params={"condition": "not-running"},
        )
        data = response.json()
        error = data.get("Error") or {}
        if error.get("Message"):
            raise DockerError(f"failed waiting for container: {error['Message']}")
        return int(data.get("StatusCode", 0))

    def run(self, args: Sequence[str]) -> None:
        """Run a scan with the given arguments; raise DockerError on failure."""
        created = self._call(
            "POST", "/containers/create", "failed to create container", json=self.container_config(args)
        )
        container_id = created.json()["Id"]
        self._call("POST", f"/containers/{container_id}/start", "failed to start container")

        log_error: Exception | None = None
        try:
            with self._client.stream(
                "GET",
                f"/containers/{container_id}/logs",
                params={"stdout": "1", "stderr": "1", "follow": "1"},
            ) as response:
                if response.status_code >= 400:
                    response.read()
                    raise DockerError(f"failed to open log stream: {_describe(response)}")
                with ThreadPoolExecutor(max_workers=1) as pool:
                    waiting = pool.submit(self._wait, container_id)
                    try:
                        for payload in _demux(response.iter_bytes()):
                            self._output.write(payload)
                            self._output.flush()
                    except (httpx.HTTPError, OSError, DockerError) as exc:
                        log_error = exc
                    status_code = waiting.result()
        except httpx.HTTPError as exc:
            raise DockerError(f"failed to open log stream: {exc}") from exc

        if status_code != 0:
            raise DockerError(f"container exited with status code {status_code}")
        if log_error is not None:
            raise DockerError(f"log stream error: {log_error}") from log_error