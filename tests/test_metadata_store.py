"""Tests for the JSON metadata store."""

from __future__ import annotations

import hashlib
import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from safebin.services import metadata as metadata_module
from safebin.services.errors import ErrorKind, TrashError
from safebin.services.metadata import (
    MetadataStore,
    TrashedItem,
    classify_type,
    make_item_id,
)


@pytest.fixture()
def store(tmp_path: Path) -> MetadataStore:
    return MetadataStore(tmp_path / "trash")


def _trash(tmp_path: Path, name: str, content: bytes = b"payload") -> tuple[str, Path, os.stat_result]:
    original = tmp_path / "work" / name
    original.parent.mkdir(parents=True, exist_ok=True)
    original.write_bytes(content)
    info = os.lstat(original)
    trashed = tmp_path / "trash" / name
    trashed.parent.mkdir(parents=True, exist_ok=True)
    original.rename(trashed)
    return str(original), trashed, info


def test_record_populates_fields(store: MetadataStore, tmp_path: Path) -> None:
    original, trashed, info = _trash(tmp_path, "notes.txt", b"hello world")

    item = store.record(original, trashed, info)

    assert item.id == make_item_id(original, info.st_mtime)
    assert item.id == hashlib.md5(f"{original}_{int(info.st_mtime)}".encode()).hexdigest()
    assert item.original_path == original
    assert item.trash_path == str(trashed)
    assert item.name == "notes.txt"
    assert item.size == 11
    assert item.type == "text"
    assert item.checksum == hashlib.sha256(b"hello world").hexdigest()
    assert item.deleted_time.tzinfo is not None
    assert item.deleted_by
    assert item.permissions.startswith("-")
    assert item.restore_attempts == 0


def test_checksum_skipped_above_threshold(tmp_path: Path) -> None:
    store = MetadataStore(tmp_path / "trash", checksum_max_bytes=4)
    original, trashed, info = _trash(tmp_path, "big.bin", b"0123456789")

    item = store.record(original, trashed, info)

    assert item.checksum is None
    assert item.size == 10


def test_directory_size_is_recursive_sum(store: MetadataStore, tmp_path: Path) -> None:
    folder = tmp_path / "work" / "album"
    (folder / "nested").mkdir(parents=True)
    (folder / "a.jpg").write_bytes(b"12345")
    (folder / "nested" / "b.jpg").write_bytes(b"123")
    info = os.lstat(folder)
    trashed = tmp_path / "trash" / "album"
    trashed.parent.mkdir(parents=True)
    folder.rename(trashed)

    item = store.record(folder, trashed, info)

    assert item.type == "directory"
    assert item.size == 8
    assert item.checksum is None


def test_persisted_layout_is_json_array(store: MetadataStore, tmp_path: Path) -> None:
    original, trashed, info = _trash(tmp_path, "a.py")
    store.record(original, trashed, info)

    path = tmp_path / "trash" / ".metadata" / "deleted_files.json"
    data = json.loads(path.read_text(encoding="utf-8"))

    assert isinstance(data, list) and len(data) == 1
    assert data[0]["originalPath"] == original
    assert data[0]["trashPath"] == str(trashed)
    assert "deletedTime" in data[0] and "restoreAttempts" in data[0]


def test_second_store_sees_changes_from_first(tmp_path: Path) -> None:
    first = MetadataStore(tmp_path / "trash")
    second = MetadataStore(tmp_path / "trash")
    assert second.list() == []

    original, trashed, info = _trash(tmp_path, "shared.md")
    item = first.record(original, trashed, info)

    assert second.lookup(item.id) is not None


def test_lookup_missing_returns_none(store: MetadataStore) -> None:
    assert store.lookup("nope") is None


def test_remove_detaches_record_but_keeps_bytes(store: MetadataStore, tmp_path: Path) -> None:
    original, trashed, info = _trash(tmp_path, "keep.txt")
    item = store.record(original, trashed, info)

    assert store.remove(item.id) is True
    assert store.remove(item.id) is False
    assert store.lookup(item.id) is None
    assert trashed.exists()


def test_search_by_glob_substring_and_type(store: MetadataStore, tmp_path: Path) -> None:
    for name in ("report.pdf", "photo.png", "script.py"):
        original, trashed, info = _trash(tmp_path, name)
        store.record(original, trashed, info)

    assert [item.name for item in store.search("*.pdf")] == ["report.pdf"]
    assert [item.name for item in store.search("PHOTO")] == ["photo.png"]
    assert [item.name for item in store.search("code")] == ["script.py"]
    assert len(store.search("")) == 3
    assert store.search("*.exe") == []


def test_record_restore_attempt(store: MetadataStore, tmp_path: Path) -> None:
    original, trashed, info = _trash(tmp_path, "retry.txt")
    item = store.record(original, trashed, info)

    store.record_restore_attempt(item.id)
    updated = store.record_restore_attempt(item.id)

    assert updated is not None
    assert updated.restore_attempts == 2
    assert updated.last_restore_time is not None
    assert store.lookup(item.id).restore_attempts == 2


def test_cleanup_removes_only_old_orphans(store: MetadataStore, tmp_path: Path) -> None:
    original, orphan_path, info = _trash(tmp_path, "orphan.txt")
    orphan = store.record(original, orphan_path, info)
    original, present_path, info = _trash(tmp_path, "present.txt")
    present = store.record(original, present_path, info)
    orphan_path.unlink()

    later = datetime.now(timezone.utc) + timedelta(days=31)

    assert store.cleanup(timedelta(days=30)) == 0
    assert store.cleanup(timedelta(days=30), now=later) == 1
    assert store.lookup(orphan.id) is None
    assert store.lookup(present.id) is not None
    assert present_path.exists()


def test_stats_aggregate(store: MetadataStore, tmp_path: Path) -> None:
    for name, content in (("a.txt", b"12"), ("b.txt", b"345"), ("c.zip", b"6")):
        original, trashed, info = _trash(tmp_path, name, content)
        store.record(original, trashed, info)

    stats = store.stats()

    assert stats.item_count == 3
    assert stats.total_size == 6
    assert stats.by_type == {"text": 2, "archive": 1}
    assert stats.oldest_deleted_time <= stats.newest_deleted_time


def test_clear_drops_everything(store: MetadataStore, tmp_path: Path) -> None:
    original, trashed, info = _trash(tmp_path, "x.txt")
    store.record(original, trashed, info)

    assert store.clear() == 1
    assert store.list() == []


def test_corrupt_file_raises_trash_error(store: MetadataStore, tmp_path: Path) -> None:
    path = tmp_path / "trash" / ".metadata" / "deleted_files.json"
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(TrashError) as excinfo:
        store.list()

    assert excinfo.value.operation == "load_metadata"


def test_round_trips_through_dict() -> None:
    item = TrashedItem(
        id="abc",
        original_path="/home/user/a.txt",
        trash_path="/trash/a.txt",
        name="a.txt",
        size=3,
        type="text",
        checksum="ff",
        deleted_time=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        deleted_by="user",
        restore_attempts=1,
    )

    assert TrashedItem.from_dict(item.to_dict()) == item


@pytest.mark.parametrize(
    ("name", "is_dir", "expected"),
    [
        ("Movie.MKV", False, "video"),
        ("song.flac", False, "audio"),
        ("slides.pptx", False, "office"),
        ("setup.exe", False, "executable"),
        ("README", False, "file"),
        ("photos", True, "directory"),
    ],
)
def test_classify_type(name: str, is_dir: bool, expected: str) -> None:
    assert classify_type(name, is_dir) == expected


def _failing_write(path: Path, payload, *, operation: str) -> None:
    raise TrashError(ErrorKind.DISK_FULL, operation, str(path), "no space left")


def test_failed_save_leaves_cached_record_untouched(
    store: MetadataStore, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    original, trashed, info = _trash(tmp_path, "steady.txt")
    item = store.record(original, trashed, info)
    monkeypatch.setattr(metadata_module, "write_json_atomic", _failing_write)

    with pytest.raises(TrashError) as excinfo:
        store.record_restore_attempt(item.id)

    assert excinfo.value.kind == ErrorKind.DISK_FULL
    cached = store.lookup(item.id)
    assert cached.restore_attempts == 0
    assert cached.last_restore_time is None


def test_failed_save_keeps_removed_record(store: MetadataStore, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    original, trashed, info = _trash(tmp_path, "stays.txt")
    item = store.record(original, trashed, info)
    monkeypatch.setattr(metadata_module, "write_json_atomic", _failing_write)

    with pytest.raises(TrashError):
        store.remove(item.id)

    assert store.lookup(item.id) is not None
    assert [entry.id for entry in store.list()] == [item.id]
