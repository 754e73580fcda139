"""Pydantic schemas for trash endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class TrashErrorRead(BaseModel):
    """Classified failure attached to a per-item result."""

    kind: str = Field(..., description="Error kind, e.g. file_not_found or protected_path")
    operation: str
    path: str
    reason: str
    retryable: bool = Field(..., description="True when retrying the same call may succeed")


class TrashedItemRead(BaseModel):
    """A single item currently held in the trash."""

    id: str
    original_path: str
    trash_path: str
    name: str
    size: int = Field(..., ge=0)
    type: str
    checksum: str | None = None
    deleted_time: datetime
    deleted_by: str
    permissions: str = ""
    restore_attempts: int = Field(default=0, ge=0)
    last_restore_time: datetime | None = None
    tracked: bool = Field(default=True, description="False for trash content without a metadata record")


class DeleteRequest(BaseModel):
    """Request payload for moving paths into the trash."""

    paths: list[str] = Field(..., min_length=1, description="Paths to move into the trash")
    recursive: bool = Field(default=False, description="Allow directories to be trashed")
    dry_run: bool = Field(default=False, description="Validate only; move nothing")
    timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Operations not started before this deadline fail with a timeout error",
    )


class DeleteResultRead(BaseModel):
    path: str
    success: bool
    dry_run: bool = False
    item: TrashedItemRead | None = None
    error: TrashErrorRead | None = None


class DeleteResponse(BaseModel):
    """Aggregate response returned after a delete batch."""

    total: int
    succeeded: int
    failed: int
    retryable_failures: int
    results: list[DeleteResultRead]


class RestoreRequest(BaseModel):
    """Request payload for restoring items from the trash."""

    selector: Literal["index", "name", "pattern", "all"] = Field(default="all")
    value: str | int | None = Field(
        default=None,
        description="1-based index, exact name or pattern depending on the selector",
    )
    target_dir: str | None = Field(
        default=None,
        description="Restore into this directory instead of each item's original location",
    )
    overwrite: bool | None = Field(
        default=None,
        description="Replace existing files at the destination instead of backing them up",
    )
    session_name: str | None = Field(
        default=None,
        max_length=200,
        description="Record the batch as a named session that can be rolled back",
    )


class RestoreResultRead(BaseModel):
    path: str
    item_id: str
    success: bool
    restored_path: str | None = None
    backup_path: str | None = None
    integrity: Literal["checksum", "size", "skipped"] = "skipped"
    session_id: str | None = None
    error: TrashErrorRead | None = None
    history_error: TrashErrorRead | None = None


class RestoreResponse(BaseModel):
    """Aggregate response returned after a restore batch."""

    total: int
    succeeded: int
    failed: int
    retryable_failures: int
    session_id: str | None = None
    results: list[RestoreResultRead]


class EmptyRequest(BaseModel):
    """Request payload for permanently emptying the trash."""

    force: bool = Field(default=False, description="Bypass retention checks when true")


class EmptyResponse(BaseModel):
    purged_count: int
    total_bytes: int


class CleanupRequest(BaseModel):
    max_age_days: float = Field(default=30, ge=0, description="Only orphans older than this are removed")


class CleanupResponse(BaseModel):
    removed: int


class TrashStatsRead(BaseModel):
    item_count: int
    total_size: int
    by_type: dict[str, int]
    oldest_deleted_time: datetime | None = None
    newest_deleted_time: datetime | None = None


class RestoreRecordRead(BaseModel):
    item_id: str
    name: str
    trash_path: str
    restored_path: str | None = None
    backup_path: str | None = None
    size: int
    success: bool
    error: str | None = None
    duration_ms: int
    timestamp: datetime


class RestoreSessionRead(BaseModel):
    id: str
    name: str
    started_at: datetime
    ended_at: datetime | None = None
    rolled_back_at: datetime | None = None
    success_count: int
    failed_count: int
    records: list[RestoreRecordRead] = Field(default_factory=list)


class RollbackResponse(BaseModel):
    session_id: str
    redeleted: int
    backups_restored: int
    errors: list[TrashErrorRead] = Field(default_factory=list)


__all__ = [
    "TrashErrorRead",
    "TrashedItemRead",
    "DeleteRequest",
    "DeleteResultRead",
    "DeleteResponse",
    "RestoreRequest",
    "RestoreResultRead",
    "RestoreResponse",
    "EmptyRequest",
    "EmptyResponse",
    "CleanupRequest",
    "CleanupResponse",
    "TrashStatsRead",
    "RestoreRecordRead",
    "RestoreSessionRead",
    "RollbackResponse",
]
