"""Scan request, scan record and server configuration models."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping

_TIMESTAMP_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})$"
)

_TEXT_FIELDS = ("ports", "webhook_url", "mcp_endpoint", "mcp_api_key")
_INT_FIELDS = ("rate_limit", "timeout", "webhook_retry_count", "webhook_retry_delay")


class RequestValidationError(ValueError):
    """Raised when scan request or scan record data is malformed."""


class ScanStatus(str, Enum):
    """Lifecycle state of a scan task."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value


def _now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as RFC 3339 with trailing fractional zeros trimmed."""
    if value.tzinfo is None:
        value = value.astimezone()
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset()
    if not offset:
        return text + "Z"
    total = int(offset.total_seconds())
    sign = "+" if total >= 0 else "-"
    hours, remainder = divmod(abs(total), 3600)
    return f"{text}{sign}{hours:02d}:{remainder // 60:02d}"


def parse_timestamp(text: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware datetime; raise ValueError if invalid."""
    if not isinstance(text, str):
        raise ValueError(f"invalid timestamp: {text!r}")
    match = _TIMESTAMP_RE.match(text)
    if match is None:
        raise ValueError(f"invalid timestamp: {text!r}")
    year, month, day, hour, minute, second = (int(part) for part in match.group(1, 2, 3, 4, 5, 6))
    fraction = (match.group(7) or "")[:6].ljust(6, "0")
    zone = match.group(8)
    if zone in ("Z", "z"):
        tzinfo = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        offset = timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6]))
        tzinfo = timezone(sign * offset)
    return datetime(year, month, day, hour, minute, second, int(fraction), tzinfo=tzinfo)


def _field(data: Mapping[str, Any], key: str, kind: type, default: Any) -> Any:
    value = data.get(key)
    if value is None:
        return default
    if kind is int:
        valid = isinstance(value, int) and not isinstance(value, bool)
    else:
        valid = isinstance(value, kind)
    if not valid:
        raise RequestValidationError(f"field {key!r} must be of type {kind.__name__}")
    return value


def _timestamp_field(data: Mapping[str, Any], key: str) -> datetime:
    try:
        return parse_timestamp(data.get(key))  # type: ignore[arg-type]
    except ValueError as exc:
        raise RequestValidationError(f"field {key!r}: {exc}") from exc


def _plain(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    return to_dict() if callable(to_dict) else value


@dataclass
class ScanRequest:
    """Parameters of a requested scan."""

    targets: str
    ports: str = ""
    rate_limit: int = 0
    timeout: int = 0
    nmap_options: list[str] = field(default_factory=list)
    webhook_url: str = ""
    webhook_retry_count: int = 0
    webhook_retry_delay: int = 0
    mcp_endpoint: str = ""
    mcp_enabled: bool = False
    mcp_api_key: str = field(default_factory=str)

    @classmethod
    def from_dict(cls, data: Any) -> ScanRequest:
        """Build a request from decoded JSON, validating field types."""
        if not isinstance(data, Mapping):
            raise RequestValidationError("request must be a JSON object")
        targets = _field(data, "targets", str, "")
        if not targets:
            raise RequestValidationError("field 'targets' is required")
        options = data.get("nmap_options")
        if options is None:
            options = []
        elif not isinstance(options, list) or not all(isinstance(item, str) for item in options):
            raise RequestValidationError("field 'nmap_options' must be a list of strings")
        values: dict[str, Any] = {name: _field(data, name, str, str()) for name in _TEXT_FIELDS}
        values.update((name, _field(data, name, int, 0)) for name in _INT_FIELDS)
        return cls(
            targets=targets,
            nmap_options=list(options),
            mcp_enabled=_field(data, "mcp_enabled", bool, False),
            **values,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the request as JSON-ready data, leaving out empty fields."""
        result: dict[str, Any] = {"targets": self.targets}
        optional = {
            "ports": self.ports,
            "rate_limit": self.rate_limit,
            "timeout": self.timeout,
            "nmap_options": list(self.nmap_options),
            "webhook_url": self.webhook_url,
            "webhook_retry_count": self.webhook_retry_count,
            "webhook_retry_delay": self.webhook_retry_delay,
            "mcp_endpoint": self.mcp_endpoint,
            "mcp_enabled": self.mcp_enabled,
            "mcp_api_key": self.mcp_api_key,
        }
        result.update((key, value) for key, value in optional.items() if value)
        return result


@dataclass
class ScanResponse:
    """Stored record of a scan task and its outcome."""

    id: str
    request: ScanRequest
    status: ScanStatus = ScanStatus.PENDING
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    result: Any = None
    error: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> ScanResponse:
        """Build a record from decoded JSON."""
        if not isinstance(data, Mapping):
            raise RequestValidationError("scan record must be a JSON object")
        status_text = _field(data, "status", str, "")
        try:
            status = ScanStatus(status_text)
        except ValueError as exc:
            raise RequestValidationError(f"unknown scan status {status_text!r}") from exc
        return cls(
            id=_field(data, "id", str, ""),
            request=ScanRequest.from_dict(data.get("request")),
            status=status,
            created_at=_timestamp_field(data, "created_at"),
            updated_at=_timestamp_field(data, "updated_at"),
            result=data.get("result"),
            error=_field(data, "error", str, ""),
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the record as JSON-ready data."""
        data: dict[str, Any] = {
            "id": self.id,
            "status": ScanStatus(self.status).value,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "request": self.request.to_dict(),
        }
        if self.result is not None:
            data["result"] = _plain(self.result)
        if self.error:
            data["error"] = self.error
        return data

    def execution_ms(self) -> int:
        """Milliseconds from creation to last update, truncated toward zero."""
        delta = self.updated_at - self.created_at
        micros = (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds
        millis = abs(micros) // 1000
        return millis if micros >= 0 else -millis


@dataclass
class ServerConfig:
    """Settings of the HTTP API server."""

    output_dir: str = ""
    worker_num: int = 5
    max_concurrent_scans: int = 10
    queue_size: int = 100
    rate_limit: float = 10.0
    rate_burst: int = 20
    result_cleanup_age: timedelta = timedelta(days=7)
    result_cleanup_interval: timedelta = timedelta(hours=1)


def default_server_config() -> ServerConfig:
    """Return the default server configuration."""
    return ServerConfig()