"""Delivery of scan results to webhook URLs, with retries."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable

import httpx

from scanhub.models import ScanResponse

logger = logging.getLogger(__name__)

USER_AGENT = "ScanHub/1.0"
DEFAULT_RETRY_COUNT = 3
DEFAULT_RETRY_DELAY = 5


class WebhookError(Exception):
    """Raised when a webhook cannot be delivered."""


def build_webhook_payload(scan: ScanResponse) -> dict[str, Any]:
    """Return the JSON body sent to a webhook for the given scan."""
    record = scan.to_dict()
    payload: dict[str, Any] = {
        "scan_id": scan.id,
        "status": record["status"],
        "completed_at": record["updated_at"],
        "request": record["request"],
    }
    if "result" in record:
        payload["result"] = record["result"]
    if "error" in record:
        payload["error"] = record["error"]
    payload["execution_ms"] = scan.execution_ms()
    payload["metadata"] = {"version": "1.0", "source": "scanhub"}
    return payload


class WebhookClient:
    """Posts scan outcomes to webhook URLs."""

    def __init__(
        self,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        self._client = client if client is not None else httpx.Client(timeout=timeout)
        self._sleep = sleep

    def send_webhook(
        self,
        scan: ScanResponse,
        webhook_url: str,
        retry_count: int = 0,
        retry_delay: int = 0,
    ) -> None:
        """Deliver the scan to webhook_url, retrying on failure; raise WebhookError."""
        if not webhook_url:
            return
        if retry_count <= 0:
            retry_count = DEFAULT_RETRY_COUNT
        if retry_delay <= 0:
            retry_delay = DEFAULT_RETRY_DELAY

        try:
            body = json.dumps(
                build_webhook_payload(scan), separators=(",", ":"), ensure_ascii=False
            ).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise WebhookError(f"failed to serialise webhook payload: {exc}") from exc

        last_error: WebhookError | None = None
        for attempt in range(retry_count + 1):
            if attempt:
                logger.info("webhook retry #%d, url=%s, scan=%s", attempt, webhook_url, scan.id)
                self._sleep(retry_delay)
            try:
                self._send_request(webhook_url, body)
            except WebhookError as exc:
                last_error = exc
                continue
            logger.info("webhook delivered, url=%s, scan=%s", webhook_url, scan.id)
            return

        logger.warning("webhook delivery failed, url=%s, scan=%s: %s", webhook_url, scan.id, last_error)
        raise WebhookError(
            f"webhook delivery failed after {retry_count} retries: {last_error}"
        ) from last_error

    def _send_request(self, webhook_url: str, body: bytes) -> None:
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        try:
            response = self._client.post(webhook_url, content=body, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise WebhookError(f"failed to send webhook request: {exc}") from exc
        if not 200 <= response.status_code < 300:
            raise WebhookError(f"webhook server returned status code {response.status_code}")