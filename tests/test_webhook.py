import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import respx

from scanhub.models import ScanRequest, ScanResponse, ScanStatus, format_timestamp
from scanhub.webhook import WebhookClient, WebhookError, build_webhook_payload

URL = "http://hooks.example.com/scan"


def make_scan(**overrides):
    created = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
    values = dict(
        id="scan-1",
        request=ScanRequest(targets="example.com", webhook_url=URL),
        status=ScanStatus.COMPLETED,
        created_at=created,
        updated_at=created + timedelta(seconds=2),
        result={"hosts": []},
    )
    values.update(overrides)
    return ScanResponse(**values)


def test_build_payload():
    scan = make_scan()
    payload = build_webhook_payload(scan)
    assert payload["scan_id"] == scan.id
    assert payload["status"] == "completed"
    assert payload["completed_at"] == format_timestamp(scan.updated_at)
    assert payload["request"] == scan.request.to_dict()
    assert payload["result"] == {"hosts": []}
    assert payload["execution_ms"] == scan.execution_ms()
    assert payload["metadata"]["version"] == "1.0"
    assert "error" not in payload


def test_build_payload_keeps_zero_execution_time_and_error():
    scan = make_scan(updated_at=make_scan().created_at, status=ScanStatus.FAILED, error="boom", result=None)
    payload = build_webhook_payload(scan)
    assert payload["execution_ms"] == 0
    assert payload["error"] == "boom"
    assert "result" not in payload


def test_send_success():
    scan = make_scan()
    sleeps = []
    with respx.mock() as router:
        route = router.post(URL).mock(return_value=httpx.Response(200))
        WebhookClient(sleep=sleeps.append).send_webhook(scan, URL)
    assert route.call_count == 1
    request = route.calls.last.request
    assert request.headers["content-type"] == "application/json"
    assert json.loads(request.content) == build_webhook_payload(scan)
    assert sleeps == []


def test_retries_until_success():
    sleeps = []
    with respx.mock() as router:
        route = router.post(URL).mock(
            side_effect=[httpx.Response(500), httpx.Response(502), httpx.Response(204)]
        )
        WebhookClient(sleep=sleeps.append).send_webhook(make_scan(), URL, retry_count=5, retry_delay=2)
    assert route.call_count == 3
    assert sleeps == [2, 2]


def test_gives_up_after_default_retries():
    sleeps = []
    with respx.mock() as router:
        route = router.post(URL).mock(return_value=httpx.Response(500))
        client = WebhookClient(sleep=sleeps.append)
        with pytest.raises(WebhookError) as excinfo:
            client.send_webhook(make_scan(), URL)
    assert route.call_count == 4
    assert sleeps == [5, 5, 5]
    assert "500" in str(excinfo.value)


def test_connection_errors_are_retried():
    sleeps = []
    with respx.mock() as router:
        route = router.post(URL).mock(side_effect=httpx.ConnectError("refused"))
        client = WebhookClient(sleep=sleeps.append)
        with pytest.raises(WebhookError):
            client.send_webhook(make_scan(), URL, retry_count=1, retry_delay=1)
    assert route.call_count == 2
    assert sleeps == [1]


def test_empty_url_sends_nothing():
    sleeps = []
    with respx.mock() as router:
        result = WebhookClient(sleep=sleeps.append).send_webhook(make_scan(), "")
        assert router.calls.call_count == 0
    assert result is None
    assert sleeps == []