"""HTTP API server that queues scans, stores results and sends notifications."""

from __future__ import annotations

import contextlib
import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Union

from flask import Blueprint, Flask, jsonify
from flask import request as http_request

from scanhub.docker import DockerError, DockerRunner
from scanhub.mcp_client import MCPClient, MCPError, MCPNotificationType
from scanhub.models import (
    RequestValidationError,
    ScanRequest,
    ScanResponse,
    ScanStatus,
    ServerConfig,
    default_server_config,
)
from scanhub.nmap import NmapParseError, NmapRun, parse_nmap_xml
from scanhub.nmap import convert_xml_to_json as _convert_xml_to_json
from scanhub.queue import RateLimiter, ScanTask, TaskQueue
from scanhub.storage import FileStorage, ScanNotFoundError, StorageError
from scanhub.webhook import WebhookClient, WebhookError

logger = logging.getLogger(__name__)


def build_scan_args(request: ScanRequest, xml_file_path: str) -> list[str]:
    """Return the scanner arguments for a request, writing XML to xml_file_path."""
    args = ["-a", request.targets]
    if request.ports:
        args += ["-p", request.ports]
    if request.rate_limit > 0:
        args += ["--rate", str(request.rate_limit)]
    if request.timeout > 0:
        args += ["--timeout", str(request.timeout)]
    args += ["--", "-oX", xml_file_path]
    args += request.nmap_options
    return args


def _parse_addr(addr: str) -> tuple[str, int]:
    host, _, port = addr.rpartition(":")
    return host or "0.0.0.0", int(port)


class Server:
    """Scan API server backed by a task queue and file storage."""

    def __init__(
        self,
        output_dir: Union[str, Path],
        config: ServerConfig | None = None,
        runner_factory: Callable[[], Any] | None = None,
        webhook: WebhookClient | None = None,
        mcp_client: MCPClient | None = None,
        start_background: bool = True,
    ) -> None:
        self.config = replace(config or default_server_config(), output_dir=str(output_dir))
        self.output_dir = Path(output_dir)
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"failed to create output directory: {exc}") from exc
        self.storage = FileStorage(self.output_dir / "scans")
        self._runner_factory = runner_factory or DockerRunner
        self._webhook = webhook if webhook is not None else WebhookClient()
        self._mcp = mcp_client if mcp_client is not None else MCPClient()
        self._rate_limiter = RateLimiter(self.config.rate_limit, self.config.rate_burst)
        self._notifier = ThreadPoolExecutor(max_workers=4, thread_name_prefix="notify")
        self._stop = threading.Event()
        self.queue = TaskQueue(
            self.config.worker_num,
            self.config.max_concurrent_scans,
            self.config.queue_size,
        )
        self.app = self._create_app()
        self._cleanup_thread: threading.Thread | None = None
        if start_background:
            self._cleanup_thread = threading.Thread(target=self._cleanup_loop, name="cleanup", daemon=True)
            self._cleanup_thread.start()

    # --- background work -------------------------------------------------

    def _cleanup_loop(self) -> None:
        interval = self.config.result_cleanup_interval.total_seconds()
        while not self._stop.wait(interval):
            try:
                self.cleanup_once()
            except StorageError as exc:
                logger.error("failed to clean up old scan results: %s", exc)

    def cleanup_once(self) -> int:
        """Remove scan records older than the configured age; return how many."""
        count = self.storage.cleanup(self.config.result_cleanup_age)
        if count:
            logger.info("cleaned up %d old scan results", count)
        return count

    def _notify(self, func: Callable[..., None], *args: Any) -> None:
        try:
            self._notifier.submit(func, *args)
        except RuntimeError:
            logger.warning("notification dropped: server is shutting down")

    def _send_mcp_notification(self, scan: ScanResponse, kind: MCPNotificationType) -> None:
        if not scan.request.mcp_enabled or not scan.request.mcp_endpoint:
            return
        try:
            self._mcp.send_notification(scan, scan.request.mcp_endpoint, kind)
        except MCPError as exc:
            logger.warning("failed to send MCP notification, scan=%s: %s", scan.id, exc)
        else:
            logger.info("sent MCP notification, scan=%s, type=%s", scan.id, kind)

    def _send_webhook_notification(self, scan: ScanResponse) -> None:
        request = scan.request
        if not request.webhook_url:
            return
        try:
            self._webhook.send_webhook(
                scan, request.webhook_url, request.webhook_retry_count, request.webhook_retry_delay
            )
        except WebhookError as exc:
            logger.warning("failed to send webhook, scan=%s: %s", scan.id, exc)
        else:
            logger.info("sent webhook, scan=%s, url=%s", scan.id, request.webhook_url)

    # --- task callbacks --------------------------------------------------

    def update_scan_status(
        self, scan_id: str, status: Union[ScanStatus, str], error: BaseException | None = None
    ) -> None:
        """Set a scan's status, store it and send the matching notifications."""
        try:
            scan = self.storage.get_scan(scan_id)
        except ScanNotFoundError as exc:
            logger.error("failed to get scan: %s", exc)
            return
        kind = ScanStatus(status)
        scan.status = kind
        scan.updated_at = datetime.now(timezone.utc)
        if error is not None:
            scan.error = str(error)
        try:
            self.storage.update_scan(scan)
        except StorageError as exc:
            logger.error("failed to update scan status: %s", exc)

        request = scan.request
        if kind is ScanStatus.RUNNING:
            if request.mcp_enabled:
                self._notify(self._send_mcp_notification, scan, MCPNotificationType.SCAN_STARTED)
        elif kind in (ScanStatus.COMPLETED, ScanStatus.FAILED):
            if request.webhook_url:
                self._notify(self._send_webhook_notification, scan)
            if request.mcp_enabled:
                mcp_kind = (
                    MCPNotificationType.SCAN_COMPLETED
                    if kind is ScanStatus.COMPLETED
                    else MCPNotificationType.SCAN_FAILED
                )
                self._notify(self._send_mcp_notification, scan, mcp_kind)

    def update_scan_result(self, scan_id: str, result: Any) -> None:
        """Attach a result to a stored scan."""
        try:
            scan = self.storage.get_scan(scan_id)
        except ScanNotFoundError as exc:
            logger.error("failed to get scan: %s", exc)
            return
        scan.result = result
        scan.updated_at = datetime.now(timezone.utc)
        try:
            self.storage.update_scan(scan)
        except StorageError as exc:
            logger.error("failed to update scan result: %s", exc)

    def run_docker_scan(self, scan_id: str, request: ScanRequest) -> NmapRun:
        """Run the scanner for a request and return the parsed report."""
        task_dir = self.output_dir / scan_id
        try:
            task_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RuntimeError(f"failed to create task directory: {exc}") from exc
        xml_path = task_dir / "result.xml"
        args = build_scan_args(request, str(xml_path))
        try:
            runner = self._runner_factory()
        except DockerError as exc:
            raise RuntimeError(f"failed to initialise Docker: {exc}") from exc
        with contextlib.closing(runner):
            try:
                runner.run(args)
            except DockerError as exc:
                raise RuntimeError(f"scan execution failed: {exc}") from exc
        try:
            return parse_nmap_xml(xml_path)
        except NmapParseError as exc:
            raise RuntimeError(f"failed to parse scan result: {exc}") from exc

    def convert_xml_to_json(self, xml_file_path: Union[str, Path], json_file_path: Union[str, Path]) -> None:
        """Convert an nmap XML report file into a JSON file."""
        _convert_xml_to_json(xml_file_path, json_file_path)

    # --- HTTP ------------------------------------------------------------

    def _create_app(self) -> Flask:
        app = Flask(__name__)
        scans = Blueprint("scan", __name__, url_prefix="/api/v1/scan")

        @scans.before_request
        def limit_rate():
            if not self._rate_limiter.allow():
                return jsonify(error="too many requests, please try again later"), 429
            return None

        @app.get("/api/v1/health")
        def health():
            return jsonify(
                status="ok",
                queue={
                    "workers": self.config.worker_num,
                    "max_running": self.config.max_concurrent_scans,
                    "queue_size": self.config.queue_size,
                },
            )

        @scans.post("/")
        def create_scan():
            try:
                scan_request = ScanRequest.from_dict(http_request.get_json(silent=True))
            except RequestValidationError as exc:
                return jsonify(error=f"invalid request parameters: {exc}"), 400
            scan = ScanResponse(id=str(uuid.uuid4()), request=scan_request)
            try:
                self.storage.save_scan(scan)
            except StorageError as exc:
                return jsonify(error=f"failed to save task: {exc}"), 500
            body = scan.to_dict()
            self.queue.add_task(ScanTask(scan.id, scan_request, self, scan))
            return jsonify(body), 202

        @scans.get("/<scan_id>")
        def get_scan_status(scan_id: str):
            try:
                scan = self.storage.get_scan(scan_id)
            except ScanNotFoundError:
                return jsonify(error="scan task not found"), 404
            return jsonify(scan.to_dict())

        @scans.get("/")
        def get_all_scans():
            return jsonify([scan.to_dict() for scan in self.storage.get_all_scans()])

        @scans.delete("/<scan_id>")
        def cancel_scan(scan_id: str):
            try:
                scan = self.storage.get_scan(scan_id)
            except ScanNotFoundError:
                return jsonify(error="scan task not found"), 404
            if scan.status not in (ScanStatus.PENDING, ScanStatus.RUNNING):
                return jsonify(error="cannot cancel a task that has completed or failed"), 400
            scan.status = ScanStatus.CANCELLED
            scan.updated_at = datetime.now(timezone.utc)
            scan.error = "task cancelled by user"
            try:
                self.storage.update_scan(scan)
            except StorageError as exc:
                return jsonify(error=f"failed to cancel task: {exc}"), 500
            return jsonify(message="scan task cancelled")

        @app.get("/api/v1/metrics")
        def metrics():
            m = self.queue.get_metrics()
            return jsonify(
                RunningTasks=m.running_tasks,
                CompletedTasks=m.completed_tasks,
                FailedTasks=m.failed_tasks,
                QueuedTasks=m.queued_tasks,
            )

        app.register_blueprint(scans)
        return app

    def run(self, addr: str) -> None:
        """Serve the API on addr, given as "host:port" or ":port"."""
        host, port = _parse_addr(addr)
        self.app.run(host=host, port=port, threaded=True)

    def shutdown(self) -> None:
        """Stop the workers, the cleanup loop and pending notifications."""
        self._stop.set()
        self.queue.shutdown()
        self._notifier.shutdown(wait=True)
        if self._cleanup_thread is not None:
            self._cleanup_thread.join()