"""Restore sessions: a persisted log of restores that can be rolled back as a unit."""

from __future__ import annotations

import json
import logging
import os
import shutil
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .errors import ErrorKind, ItemNotFoundError, TrashError, wrap_os_error
from .metadata import write_json_atomic

if TYPE_CHECKING:
    from .delete import DeleteEngine

HISTORY_FILE_NAME = "restore_history.json"


def _parse_time(value: Any) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class RestoreRecord:
    """One restore attempt inside a session."""

    item_id: str
    name: str
    trash_path: str
    restored_path: str | None = None
    backup_path: str | None = None
    size: int = 0
    success: bool = False
    error: str | None = None
    duration_ms: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def moved(self) -> bool:
        """True when the bytes left the trash, even if verification later failed."""
        return self.restored_path is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "name": self.name,
            "trash_path": self.trash_path,
            "restored_path": self.restored_path,
            "backup_path": self.backup_path,
            "size": self.size,
            "success": self.success,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RestoreRecord:
        return cls(
            item_id=data.get("item_id", ""),
            name=data.get("name", ""),
            trash_path=data.get("trash_path", ""),
            restored_path=data.get("restored_path"),
            backup_path=data.get("backup_path"),
            size=int(data.get("size") or 0),
            success=bool(data.get("success")),
            error=data.get("error"),
            duration_ms=int(data.get("duration_ms") or 0),
            timestamp=_parse_time(data.get("timestamp")) or datetime.now(timezone.utc),
        )


@dataclass
class RestoreSession:
    """A named group of restores."""

    id: str
    name: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: datetime | None = None
    rolled_back_at: datetime | None = None
    records: list[RestoreRecord] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for record in self.records if record.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for record in self.records if not record.success)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "rolled_back_at": self.rolled_back_at.isoformat() if self.rolled_back_at else None,
            "records": [record.to_dict() for record in self.records],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RestoreSession:
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            started_at=_parse_time(data.get("started_at")) or datetime.now(timezone.utc),
            ended_at=_parse_time(data.get("ended_at")),
            rolled_back_at=_parse_time(data.get("rolled_back_at")),
            records=[RestoreRecord.from_dict(entry) for entry in data.get("records", [])],
        )


@dataclass(slots=True)
class RollbackReport:
    """Summary of undoing a restore session."""

    session_id: str
    redeleted: int = 0
    backups_restored: int = 0
    errors: list[TrashError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


class RestoreHistory:
    """Persisted restore sessions stored next to the trash metadata."""

    def __init__(self, path: Path, *, logger: logging.Logger | None = None) -> None:
        self.path = Path(path)
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._sessions: dict[str, RestoreSession] | None = None

    def _load(self) -> dict[str, RestoreSession]:
        if self._sessions is not None:
            return self._sessions
        sessions: dict[str, RestoreSession] = {}
        if self.path.exists():
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8") or "[]")
            except json.JSONDecodeError as exc:
                raise TrashError(
                    ErrorKind.UNKNOWN,
                    "load_history",
                    str(self.path),
                    f"corrupt history file: {exc}",
                    cause=exc,
                ) from exc
            except OSError as exc:
                raise wrap_os_error("load_history", self.path, exc) from exc
            for entry in raw:
                session = RestoreSession.from_dict(entry)
                sessions[session.id] = session
        self._sessions = sessions
        return sessions

    def _save(self) -> None:
        sessions = self._load()
        write_json_atomic(self.path, [session.to_dict() for session in sessions.values()], operation="save_history")

    def _require(self, session_id: str, operation: str) -> RestoreSession:
        session = self._load().get(session_id)
        if session is None:
            raise ItemNotFoundError(operation, session_id)
        return session

    def start_session(self, name: str) -> str:
        session = RestoreSession(id=uuid.uuid4().hex, name=name)
        with self._lock:
            self._load()[session.id] = session
            self._save()
        self.logger.info("Started restore session %s (%s)", session.id, name)
        return session.id

    def add_record(self, session_id: str, record: RestoreRecord) -> None:
        with self._lock:
            self._require(session_id, "record_restore").records.append(record)
            self._save()

    def end_session(self, session_id: str) -> RestoreSession:
        with self._lock:
            session = self._require(session_id, "end_session")
            session.ended_at = datetime.now(timezone.utc)
            self._save()
        self.logger.info(
            "Restore session %s ended: %d succeeded, %d failed",
            session_id,
            session.success_count,
            session.failed_count,
        )
        return session

    def get_session(self, session_id: str) -> RestoreSession | None:
        with self._lock:
            return self._load().get(session_id)

    def list_sessions(self, limit: int | None = None) -> list[RestoreSession]:
        with self._lock:
            sessions = sorted(self._load().values(), key=lambda session: session.started_at, reverse=True)
        return sessions[:limit] if limit else sessions

    def rollback_session(self, session_id: str, delete_engine: DeleteEngine) -> RollbackReport:
        """Re-delete everything the session restored and put displaced backups back.

        Per-record failures are collected in the report; the session is marked
        rolled back either way so a second call is rejected.
        """

        with self._lock:
            session = self._require(session_id, "rollback")
            if session.rolled_back_at is not None:
                raise TrashError(
                    ErrorKind.INVALID_PATH,
                    "rollback",
                    session_id,
                    "session has already been rolled back",
                )

            report = RollbackReport(session_id=session_id)
            for record in reversed(session.records):
                if not record.moved:
                    continue
                try:
                    delete_engine.safe_delete(record.restored_path, recursive=True)
                except TrashError as exc:
                    self.logger.error("Rollback could not re-delete %s: %s", record.restored_path, exc)
                    report.errors.append(exc)
                    continue
                report.redeleted += 1

                if record.backup_path and os.path.lexists(record.backup_path):
                    try:
                        shutil.move(record.backup_path, record.restored_path)
                    except OSError as exc:
                        error = wrap_os_error("rollback_backup", record.backup_path, exc)
                        self.logger.error("Rollback could not reinstate backup %s: %s", record.backup_path, error)
                        report.errors.append(error)
                        continue
                    report.backups_restored += 1

            session.rolled_back_at = datetime.now(timezone.utc)
            self._save()

        self.logger.info(
            "Rolled back session %s: %d re-deleted, %d backups reinstated, %d errors",
            session_id,
            report.redeleted,
            report.backups_restored,
            len(report.errors),
        )
        return report

    def cleanup_sessions(self, max_age: timedelta, *, now: datetime | None = None) -> int:
        """Forget sessions that started more than ``max_age`` ago."""

        reference = now or datetime.now(timezone.utc)
        with self._lock:
            sessions = self._load()
            expired = [sid for sid, session in sessions.items() if reference - session.started_at > max_age]
            for sid in expired:
                del sessions[sid]
            if expired:
                self._save()
        return len(expired)


__all__ = [
    "HISTORY_FILE_NAME",
    "RestoreRecord",
    "RestoreSession",
    "RollbackReport",
    "RestoreHistory",
]
