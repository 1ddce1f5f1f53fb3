import json
from datetime import datetime, timedelta, timezone

import pytest

from scanhub.models import ScanRequest, ScanResponse, ScanStatus
from scanhub.storage import FileStorage, ScanNotFoundError, StorageError


def make_scan(scan_id, created_at=None):
    created = created_at or datetime(2024, 5, 1, 12, 0, 0, 250000, tzinfo=timezone.utc)
    return ScanResponse(
        id=scan_id,
        request=ScanRequest(targets="example.com", ports="80"),
        status=ScanStatus.PENDING,
        created_at=created,
        updated_at=created,
        result={"hosts": [{"address": {"addr": "192.0.2.7"}}]},
    )


def test_creates_directory(tmp_path):
    base = tmp_path / "nested" / "scans"
    storage = FileStorage(base)
    assert base.is_dir()
    assert storage.get_all_scans() == []


def test_save_writes_indented_json(tmp_path):
    storage = FileStorage(tmp_path)
    scan = make_scan("a")
    storage.save_scan(scan)
    text = (tmp_path / "a.json").read_text(encoding="utf-8")
    assert json.loads(text) == scan.to_dict()
    assert "\n  " in text


def test_reload_from_disk(tmp_path):
    scan = make_scan("a")
    FileStorage(tmp_path).save_scan(scan)
    reloaded = FileStorage(tmp_path)
    assert reloaded.get_scan("a") == scan
    assert [item.id for item in reloaded.get_all_scans()] == ["a"]


def test_get_scan_loads_file_missing_from_cache(tmp_path):
    reader = FileStorage(tmp_path)
    scan = make_scan("late")
    FileStorage(tmp_path).save_scan(scan)
    assert reader.get_scan("late") == scan
    assert [item.id for item in reader.get_all_scans()] == ["late"]


def test_get_missing_scan_raises(tmp_path):
    storage = FileStorage(tmp_path)
    with pytest.raises(ScanNotFoundError):
        storage.get_scan("missing")
    with pytest.raises(StorageError):
        storage.get_scan("missing")


def test_loading_skips_foreign_and_broken_files(tmp_path):
    (tmp_path / "notes.txt").write_text("hello", encoding="utf-8")
    (tmp_path / "broken.json").write_text("{", encoding="utf-8")
    (tmp_path / "dir.json").mkdir()
    FileStorage(tmp_path / "other").save_scan(make_scan("good"))
    (tmp_path / "good.json").write_text(
        (tmp_path / "other" / "good.json").read_text(encoding="utf-8"), encoding="utf-8"
    )
    storage = FileStorage(tmp_path)
    assert [item.id for item in storage.get_all_scans()] == ["good"]


def test_get_all_scans_returns_every_record(tmp_path):
    storage = FileStorage(tmp_path)
    for scan_id in ("x", "y", "z"):
        storage.save_scan(make_scan(scan_id))
    assert {scan.id for scan in storage.get_all_scans()} == {"x", "y", "z"}


def test_update_persists_changes(tmp_path):
    storage = FileStorage(tmp_path)
    scan = make_scan("a")
    storage.save_scan(scan)
    scan.status = ScanStatus.FAILED
    scan.error = "boom"
    storage.update_scan(scan)
    reloaded = FileStorage(tmp_path).get_scan("a")
    assert reloaded.status is ScanStatus.FAILED
    assert reloaded.error == "boom"


def test_delete_removes_record_and_file(tmp_path):
    storage = FileStorage(tmp_path)
    storage.save_scan(make_scan("a"))
    storage.delete_scan("a")
    assert not (tmp_path / "a.json").exists()
    assert storage.get_all_scans() == []
    with pytest.raises(ScanNotFoundError):
        storage.get_scan("a")


def test_delete_missing_is_quiet(tmp_path):
    storage = FileStorage(tmp_path)
    storage.save_scan(make_scan("keep"))
    storage.delete_scan("ghost")
    assert [scan.id for scan in storage.get_all_scans()] == ["keep"]


def test_cleanup_removes_old_records(tmp_path):
    storage = FileStorage(tmp_path)
    now = datetime.now(timezone.utc)
    storage.save_scan(make_scan("old", created_at=now - timedelta(days=10)))
    storage.save_scan(make_scan("new", created_at=now))
    assert storage.cleanup(timedelta(days=7)) == 1
    assert [scan.id for scan in storage.get_all_scans()] == ["new"]
    assert not (tmp_path / "old.json").exists()
    assert (tmp_path / "new.json").exists()


def test_cleanup_without_old_records(tmp_path):
    storage = FileStorage(tmp_path)
    storage.save_scan(make_scan("new", created_at=datetime.now(timezone.utc)))
    assert storage.cleanup(timedelta(days=7)) == 0
    assert [scan.id for scan in storage.get_all_scans()] == ["new"]