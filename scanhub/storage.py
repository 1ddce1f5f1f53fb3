"""Persistent storage of scan records."""

from __future__ import annotations

import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Union

from scanhub.models import ScanResponse


class StorageError(Exception):
    """Raised when scan records cannot be stored or removed."""


class ScanNotFoundError(StorageError, LookupError):
    """Raised when a scan record cannot be found or loaded."""


class Storage(ABC):
    """Interface of a scan record store."""

    @abstractmethod
    def save_scan(self, scan: ScanResponse) -> None:
        """Store a scan record."""

    @abstractmethod
    def get_scan(self, scan_id: str) -> ScanResponse:
        """Return the scan record with the given id."""

    @abstractmethod
    def get_all_scans(self) -> list[ScanResponse]:
        """Return every stored scan record."""

    def update_scan(self, scan: ScanResponse) -> None:
        """Store a changed scan record."""
        self.save_scan(scan)

    @abstractmethod
    def delete_scan(self, scan_id: str) -> None:
        """Remove the scan record with the given id."""

    @abstractmethod
    def cleanup(self, max_age: timedelta) -> int:
        """Remove records older than max_age and return how many went."""


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.astimezone()


class FileStorage(Storage):
    """Scan records kept as JSON files in a directory, with an in-memory cache."""

    def __init__(self, base_dir: Union[str, Path]) -> None:
        self._base_dir = Path(base_dir)
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"failed to create storage directory: {exc}") from exc
        self._lock = threading.RLock()
        self._cache: dict[str, ScanResponse] = {}
        self._load_cache()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _path(self, scan_id: str) -> Path:
        return self._base_dir / f"{scan_id}.json"

    def _load(self, scan_id: str) -> ScanResponse:
        data = json.loads(self._path(scan_id).read_text(encoding="utf-8"))
        return ScanResponse.from_dict(data)

    def _load_cache(self) -> None:
        try:
            entries = sorted(self._base_dir.iterdir())
        except OSError as exc:
            raise StorageError(f"failed to load cache: {exc}") from exc
        for entry in entries:
            if entry.is_dir() or entry.suffix != ".json":
                continue
            try:
                self._cache[entry.stem] = self._load(entry.stem)
            except (OSError, ValueError):
                continue

    def save_scan(self, scan: ScanResponse) -> None:
        with self._lock:
            self._cache[scan.id] = scan
            try:
                text = json.dumps(scan.to_dict(), indent=2, ensure_ascii=False)
            except (TypeError, ValueError) as exc:
                raise StorageError(f"failed to serialise scan: {exc}") from exc
            try:
                self._path(scan.id).write_text(text, encoding="utf-8")
            except OSError as exc:
                raise StorageError(f"failed to write file: {exc}") from exc

    def get_scan(self, scan_id: str) -> ScanResponse:
        with self._lock:
            cached = self._cache.get(scan_id)
            if cached is not None:
                return cached
            try:
                scan = self._load(scan_id)
            except (OSError, ValueError) as exc:
                raise ScanNotFoundError(f"failed to load scan {scan_id!r}: {exc}") from exc
            self._cache[scan_id] = scan
            return scan

    def get_all_scans(self) -> list[ScanResponse]:
        with self._lock:
            return list(self._cache.values())

    def update_scan(self, scan: ScanResponse) -> None:
        self.save_scan(scan)

    def delete_scan(self, scan_id: str) -> None:
        with self._lock:
            self._cache.pop(scan_id, None)
            try:
                self._path(scan_id).unlink(missing_ok=True)
            except OSError as exc:
                raise StorageError(f"failed to delete file: {exc}") from exc

    def cleanup(self, max_age: timedelta) -> int:
        with self._lock:
            cutoff = datetime.now(timezone.utc) - max_age
            count = 0
            for scan_id, scan in list(self._cache.items()):
                if _aware(scan.created_at) >= cutoff:
                    continue
                del self._cache[scan_id]
                try:
                    self._path(scan_id).unlink(missing_ok=True)
                except OSError as exc:
                    raise StorageError(f"failed to delete file during cleanup: {exc}") from exc
                count += 1
            return count