import json
from datetime import datetime, timedelta, timezone

import pytest

from scanhub.models import (
    RequestValidationError,
    ScanRequest,
    ScanResponse,
    ScanStatus,
    default_server_config,
    format_timestamp,
    parse_timestamp,
)
from scanhub.nmap import NmapRun

UTC = timezone.utc

FULL_REQUEST = {
    "targets": "192.0.2.1,192.0.2.2",
    "ports": "80,443",
    "rate_limit": 500,
    "timeout": 3,
    "nmap_options": ["-sV"],
    "webhook_url": "http://hooks.example.com/scan",
    "webhook_retry_count": 2,
    "webhook_retry_delay": 1,
    "mcp_endpoint": "http://mcp.example.com/notify",
    "mcp_enabled": True,
    "mcp_api_key": "placeholder",
}


def make_scan(**overrides):
    created = datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)
    values = dict(
        id="abc",
        request=ScanRequest(targets="example.com", ports="22"),
        status=ScanStatus.COMPLETED,
        created_at=created,
        updated_at=created + timedelta(milliseconds=1500),
        result={"hosts": []},
    )
    values.update(overrides)
    return ScanResponse(**values)


def test_scan_request_round_trip():
    request = ScanRequest.from_dict(FULL_REQUEST)
    assert request.rate_limit == 500
    assert request.mcp_enabled is True
    assert request.to_dict() == FULL_REQUEST


def test_scan_request_minimal_omits_empty_fields():
    assert ScanRequest(targets="example.com").to_dict() == {"targets": "example.com"}


def test_scan_request_ignores_unknown_and_null_fields():
    request = ScanRequest.from_dict({"targets": "example.com", "ports": None, "extra": 1})
    assert request.ports == ""
    assert request.to_dict() == {"targets": "example.com"}


@pytest.mark.parametrize(
    "data",
    [
        {},
        {"targets": ""},
        {"targets": 5},
        {"targets": "example.com", "rate_limit": "fast"},
        {"targets": "example.com", "timeout": True},
        {"targets": "example.com", "nmap_options": "-sV"},
        {"targets": "example.com", "nmap_options": [1]},
        {"targets": "example.com", "mcp_enabled": "yes"},
        ["example.com"],
    ],
)
def test_scan_request_rejects_invalid_data(data):
    with pytest.raises(RequestValidationError):
        ScanRequest.from_dict(data)


def test_scan_response_round_trip_through_json():
    scan = make_scan()
    data = json.loads(json.dumps(scan.to_dict()))
    assert ScanResponse.from_dict(data) == scan


def test_scan_response_omits_empty_result_and_error():
    data = make_scan(result=None).to_dict()
    assert "result" not in data
    assert "error" not in data
    assert data["status"] == "completed"


def test_scan_response_includes_error():
    data = make_scan(status=ScanStatus.FAILED, error="boom").to_dict()
    assert data["error"] == "boom"
    assert data["status"] == "failed"


def test_scan_response_serialises_nmap_result():
    data = make_scan(result=NmapRun(scanner="nmap")).to_dict()
    assert data["result"]["scanner"] == "nmap"
    assert data["result"]["hosts"] is None


def test_execution_ms():
    assert make_scan().execution_ms() == 1500


def test_execution_ms_negative_is_symmetric():
    forward = make_scan()
    backward = make_scan(created_at=forward.updated_at, updated_at=forward.created_at)
    assert backward.execution_ms() == -forward.execution_ms()


def test_scan_response_rejects_unknown_status():
    data = make_scan().to_dict()
    data["status"] = "exploded"
    with pytest.raises(RequestValidationError):
        ScanResponse.from_dict(data)


def test_scan_response_rejects_bad_timestamp():
    data = make_scan().to_dict()
    data["created_at"] = "yesterday"
    with pytest.raises(RequestValidationError):
        ScanResponse.from_dict(data)


def test_format_timestamp_utc():
    assert format_timestamp(datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)) == "2024-01-02T03:04:05Z"


def test_format_timestamp_trims_fraction():
    value = datetime(2024, 1, 2, 3, 4, 5, 120000, tzinfo=UTC)
    assert format_timestamp(value) == "2024-01-02T03:04:05.12Z"


def test_parse_timestamp_with_nanoseconds_and_offset():
    value = parse_timestamp("2024-01-02T03:04:05.123456789+08:00")
    assert value.microsecond == 123456
    assert value.utcoffset() == timedelta(hours=8)


@pytest.mark.parametrize(
    "value",
    [
        datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC),
        datetime(2024, 1, 2, 3, 4, 5, 7, tzinfo=UTC),
        datetime(1999, 12, 31, 23, 59, 59, 999999, tzinfo=timezone(timedelta(hours=-5, minutes=-30))),
    ],
)
def test_timestamp_round_trip(value):
    parsed = parse_timestamp(format_timestamp(value))
    assert parsed == value
    assert parsed.utcoffset() == value.utcoffset()


@pytest.mark.parametrize("text", ["yesterday", "2024-01-02 03:04:05", "2024-01-02T03:04:05", None])
def test_parse_timestamp_rejects_invalid(text):
    with pytest.raises(ValueError):
        parse_timestamp(text)


def test_default_server_config():
    config = default_server_config()
    assert config.worker_num == 5
    assert config.max_concurrent_scans == 10
    assert config.queue_size == 100
    assert config.rate_limit == 10.0
    assert config.rate_burst == 20
    assert config.result_cleanup_age == timedelta(days=7)
    assert config.result_cleanup_interval == timedelta(hours=1)


def test_scan_status_from_string():
    assert ScanStatus("cancelled") is ScanStatus.CANCELLED
    assert str(ScanStatus.RUNNING) == "running"