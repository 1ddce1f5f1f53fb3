"""Receiver for scan notifications that answers with a short analysis."""

from __future__ import annotations

import argparse
import logging
import os
from collections.abc import Mapping
from typing import Any, Callable, Sequence

from flask import Flask, Response, jsonify
from flask import request as http_request

from scanhub.mcp_client import MCPNotificationType

logger = logging.getLogger(__name__)

DEFAULT_PORT = "8090"
MANY_PORTS = 10


def get_ports_info(request: Any) -> str:
    """Describe the ports a request asked for."""
    ports = request.get("ports") if isinstance(request, Mapping) else None
    return ports or "default ports"


def count_open_ports(result: Any) -> int:
    """Count the ports listed across all hosts of a scan result."""
    if not isinstance(result, Mapping):
        return 0
    hosts = result.get("hosts")
    if not isinstance(hosts, list):
        return 0
    total = 0
    for host in hosts:
        if not isinstance(host, Mapping):
            continue
        ports = host.get("ports")
        if not isinstance(ports, Mapping):
            continue
        port_list = ports.get("ports")
        if isinstance(port_list, list):
            total += len(port_list)
    return total


def generate_recommended_action(port_count: int) -> str:
    """Suggest a next step based on the number of open ports."""
    if port_count == 0:
        return "Consider a wider port range or check that the target host is reachable"
    if port_count > MANY_PORTS:
        return "Run a service version scan and close unnecessary open ports"
    return "Run service identification and vulnerability scanning on the discovered ports"


def _request(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    request = payload.get("request")
    return request if isinstance(request, Mapping) else {}


def handle_scan_started(payload: Mapping[str, Any]) -> dict[str, str]:
    """Answer a scan-started notification."""
    request = _request(payload)
    return {
        "analysis": (
            f"Started scanning target {request.get('targets', '')} "
            f"on ports {get_ports_info(request)}"
        ),
        "summary": "The scan task has been queued and is being processed",
        "recommended_action": "Wait for the scan to finish; a result notification will follow",
    }


def handle_scan_completed(payload: Mapping[str, Any]) -> dict[str, str]:
    """Answer a scan-completed notification with a count of open ports."""
    port_count = count_open_ports(payload.get("result"))
    targets = _request(payload).get("targets", "")
    analysis = f"The scan found {port_count} open ports on target {targets}"
    if port_count > MANY_PORTS:
        analysis += ". Many ports are open; check for unnecessary services."
    elif port_count == 0:
        analysis += ". No open ports found; a firewall may be blocking or the target is unreachable."
    else:
        analysis += ". Check the versions and security of the services on these ports."
    execution_ms = payload.get("execution_ms", 0) or 0
    return {
        "analysis": analysis,
        "summary": f"Scan completed in {execution_ms} ms, found {port_count} open ports",
        "recommended_action": generate_recommended_action(port_count),
    }


def handle_scan_failed(payload: Mapping[str, Any]) -> dict[str, str]:
    """Answer a scan-failed notification."""
    return {
        "analysis": f"Scan failed, error: {payload.get('error', '')}",
        "summary": "The scan of the target could not be completed; check the error and the network",
        "recommended_action": "Check that the target is reachable, or adjust the scan parameters and retry",
    }


_HANDLERS: dict[MCPNotificationType, Callable[[Mapping[str, Any]], dict[str, str]]] = {
    MCPNotificationType.SCAN_STARTED: handle_scan_started,
    MCPNotificationType.SCAN_COMPLETED: handle_scan_completed,
    MCPNotificationType.SCAN_FAILED: handle_scan_failed,
}


def handle_notification(payload: Any) -> dict[str, str]:
    """Dispatch a decoded notification; raise ValueError if it is malformed or unknown."""
    if not isinstance(payload, Mapping):
        raise ValueError("notification must be a JSON object")
    request = payload.get("request")
    if request is not None and not isinstance(request, Mapping):
        raise ValueError("field 'request' must be an object")
    execution_ms = payload.get("execution_ms")
    if execution_ms is not None and (not isinstance(execution_ms, int) or isinstance(execution_ms, bool)):
        raise ValueError("field 'execution_ms' must be an integer")
    try:
        kind = MCPNotificationType(payload.get("type"))
    except ValueError as exc:
        raise ValueError("unknown notification type") from exc
    return _HANDLERS[kind](payload)


def create_app() -> Flask:
    """Return the Flask application serving the notification endpoint."""
    app = Flask(__name__)

    @app.route("/api/mcp/notification", methods=["POST"])
    def notification():
        payload = http_request.get_json(force=True, silent=True)
        if not isinstance(payload, dict):
            return Response("failed to parse JSON\n", status=400, mimetype="text/plain")
        try:
            answer = handle_notification(payload)
        except ValueError as exc:
            return Response(f"{exc}\n", status=400, mimetype="text/plain")
        logger.info("handled %s notification, scan=%s", payload.get("type"), payload.get("scan_id"))
        return jsonify(answer)

    return app


def main(argv: Sequence[str] | None = None) -> int:
    """Serve the notification endpoint."""
    parser = argparse.ArgumentParser(prog="scanhub-mcp-handler", description=__doc__)
    parser.add_argument(
        "--port",
        default=os.environ.get("PORT") or DEFAULT_PORT,
        help="port to listen on (default: $PORT or 8090)",
    )
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    logger.info("starting notification handler on port %s", args.port)
    try:
        create_app().run(host="0.0.0.0", port=int(args.port))
    except (OSError, ValueError) as exc:
        logger.error("cannot start server: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())