"""Tests for restore sessions and rollback."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from safebin.services import ItemNotFoundError, RestoreSelector, TrashError, TrashService
from safebin.services.history import RestoreHistory, RestoreRecord


def test_batch_with_session_name_is_recorded(service: TrashService, make_file) -> None:
    items = [service.delete_engine.safe_delete(make_file(name)) for name in ("a.txt", "b.txt")]

    results = service.restore_engine.restore_batch(items, session_name="morning cleanup")

    session_id = results[0].session_id
    assert session_id is not None
    assert all(result.session_id == session_id for result in results)

    session = service.history.get_session(session_id)
    assert session.name == "morning cleanup"
    assert session.ended_at is not None
    assert session.success_count == 2
    assert {record.item_id for record in session.records} == {item.id for item in items}


def test_sessions_survive_a_fresh_history_instance(service: TrashService, make_file) -> None:
    item = service.delete_engine.safe_delete(make_file("persist.txt"))
    results = service.restore_engine.restore_batch([item], session_name="persisted")

    reloaded = RestoreHistory(service.history.path)

    session = reloaded.get_session(results[0].session_id)
    assert session is not None
    assert session.records[0].restored_path == results[0].restored_path


def test_list_sessions_newest_first(tmp_path: Path) -> None:
    history = RestoreHistory(tmp_path / "history.json")
    first = history.start_session("first")
    second = history.start_session("second")
    history.get_session(first).started_at -= timedelta(minutes=5)

    assert [session.id for session in history.list_sessions()] == [second, first]
    assert [session.id for session in history.list_sessions(limit=1)] == [second]


def test_rollback_retrashes_files_and_reinstates_backups(service: TrashService, make_file) -> None:
    kept = make_file("settings.conf", "restored version")
    plain = make_file("plain.txt", "plain")
    service.delete_engine.safe_delete(kept)
    service.delete_engine.safe_delete(plain)
    kept.write_text("user edits", encoding="utf-8")

    results = service.restore(RestoreSelector.all(), session_name="undo me")
    assert all(result.success for result in results)
    assert kept.read_text(encoding="utf-8") == "restored version"
    session_id = results[0].session_id

    report = service.rollback(session_id)

    assert report.success is True
    assert report.redeleted == 2
    assert report.backups_restored == 1
    assert kept.read_text(encoding="utf-8") == "user edits"
    assert not plain.exists()
    trashed = {item.original_path for item in service.list()}
    assert trashed == {str(kept), str(plain)}
    assert service.history.get_session(session_id).rolled_back_at is not None


def test_second_rollback_is_rejected(service: TrashService, make_file) -> None:
    item = service.delete_engine.safe_delete(make_file("twice.txt"))
    results = service.restore_engine.restore_batch([item], session_name="once")

    service.rollback(results[0].session_id)

    with pytest.raises(TrashError):
        service.rollback(results[0].session_id)


def test_rollback_unknown_session(service: TrashService) -> None:
    with pytest.raises(ItemNotFoundError):
        service.rollback("does-not-exist")


def test_rollback_skips_records_that_never_moved(service: TrashService, make_file) -> None:
    item = service.delete_engine.safe_delete(make_file("missing.txt"))
    Path(item.trash_path).unlink()
    results = service.restore_engine.restore_batch([item], session_name="nothing moved")

    report = service.rollback(results[0].session_id)

    assert report.redeleted == 0
    assert report.errors == []


def test_cleanup_sessions_drops_old_entries(tmp_path: Path) -> None:
    history = RestoreHistory(tmp_path / "history.json")
    session_id = history.start_session("old")
    history.add_record(session_id, RestoreRecord(item_id="x", name="x.txt", trash_path="/trash/x.txt"))

    later = datetime.now(timezone.utc) + timedelta(days=8)

    assert history.cleanup_sessions(timedelta(days=30), now=later) == 0
    assert history.cleanup_sessions(timedelta(days=7), now=later) == 1
    assert history.list_sessions() == []


def test_add_record_to_unknown_session(tmp_path: Path) -> None:
    history = RestoreHistory(tmp_path / "history.json")

    with pytest.raises(ItemNotFoundError):
        history.add_record("missing", RestoreRecord(item_id="x", name="x", trash_path="/trash/x"))
