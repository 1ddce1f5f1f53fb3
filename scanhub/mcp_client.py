"""Notifications about scan progress sent to an MCP endpoint."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

import httpx

from scanhub.models import ScanResponse, format_timestamp

logger = logging.getLogger(__name__)

USER_AGENT = "ScanHub/MCP-1.0"


class MCPError(Exception):
    """Raised when an MCP notification cannot be delivered."""


class MCPNotificationType(str, Enum):
    """Kind of scan event an MCP notification reports."""

    SCAN_STARTED = "scan_started"
    SCAN_COMPLETED = "scan_completed"
    SCAN_FAILED = "scan_failed"

    def __str__(self) -> str:
        return self.value


def build_mcp_payload(
    scan: ScanResponse, notification_type: Union[MCPNotificationType, str]
) -> dict[str, Any]:
    """Return the JSON body of an MCP notification for the given scan."""
    kind = MCPNotificationType(notification_type)
    record = scan.to_dict()
    payload: dict[str, Any] = {
        "type": kind.value,
        "scan_id": scan.id,
        "status": record["status"],
        "timestamp": format_timestamp(datetime.now(timezone.utc)),
        "request": record["request"],
    }
    if "result" in record:
        payload["result"] = record["result"]
    if "error" in record:
        payload["error"] = record["error"]
    execution_ms = scan.execution_ms()
    if execution_ms:
        payload["execution_ms"] = execution_ms
    payload["metadata"] = {"version": "1.0", "source": "scanhub", "notification": kind.value}
    return payload


class MCPClient:
    """Posts scan notifications to an MCP endpoint."""

    def __init__(self, timeout: float = 60.0, client: httpx.Client | None = None) -> None:
        self._client = client if client is not None else httpx.Client(timeout=timeout)

    def send_notification(
        self,
        scan: ScanResponse,
        mcp_endpoint: str,
        notification_type: Union[MCPNotificationType, str],
    ) -> None:
        """Send one notification; raise MCPError if it is not accepted."""
        if not mcp_endpoint:
            return
        kind = MCPNotificationType(notification_type)
        try:
            body = json.dumps(
                build_mcp_payload(scan, kind), separators=(",", ":"), ensure_ascii=False
            ).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise MCPError(f"failed to serialise MCP payload: {exc}") from exc

        try:
            self._send_request(mcp_endpoint, body)
        except MCPError as exc:
            logger.warning("MCP notification failed, endpoint=%s, scan=%s: %s", mcp_endpoint, scan.id, exc)
            raise MCPError(f"MCP notification failed: {exc}") from exc
        logger.info("MCP notification sent, endpoint=%s, type=%s, scan=%s", mcp_endpoint, kind, scan.id)

    def _send_request(self, mcp_endpoint: str, body: bytes) -> None:
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        try:
            response = self._client.post(mcp_endpoint, content=body, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise MCPError(f"failed to send MCP request: {exc}") from exc
        if not 200 <= response.status_code < 300:
            raise MCPError(f"MCP server returned status code {response.status_code}")