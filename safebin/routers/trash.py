"""Endpoints for moving paths into the trash, restoring and purging them."""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from safebin.core.security import require_api_token
from safebin.schemas.trash import (
    CleanupRequest,
    CleanupResponse,
    DeleteRequest,
    DeleteResponse,
    DeleteResultRead,
    EmptyRequest,
    EmptyResponse,
    RestoreRecordRead,
    RestoreRequest,
    RestoreResponse,
    RestoreResultRead,
    RestoreSessionRead,
    RollbackResponse,
    TrashedItemRead,
    TrashErrorRead,
    TrashStatsRead,
)
from safebin.services import (
    BatchContext,
    BatchOutcome,
    ItemNotFoundError,
    RestoreSelector,
    RestoreSession,
    RetentionError,
    SelectorKind,
    TrashedItem,
    TrashError,
    TrashService,
)

router = APIRouter(prefix="/trash", tags=["Trash"], dependencies=[Depends(require_api_token)])
logger = logging.getLogger(__name__)


def get_trash_service(request: Request) -> TrashService:
    return request.app.state.trash_service


def _error_read(error: TrashError | None) -> TrashErrorRead | None:
    if error is None:
        return None
    return TrashErrorRead(**error.to_dict())


def _item_read(item: TrashedItem) -> TrashedItemRead:
    return TrashedItemRead(
        id=item.id,
        original_path=item.original_path,
        trash_path=item.trash_path,
        name=item.name,
        size=item.size,
        type=item.type,
        checksum=item.checksum,
        deleted_time=item.deleted_time,
        deleted_by=item.deleted_by,
        permissions=item.permissions,
        restore_attempts=item.restore_attempts,
        last_restore_time=item.last_restore_time,
        tracked=item.tracked,
    )


def _session_read(session: RestoreSession) -> RestoreSessionRead:
    return RestoreSessionRead(
        id=session.id,
        name=session.name,
        started_at=session.started_at,
        ended_at=session.ended_at,
        rolled_back_at=session.rolled_back_at,
        success_count=session.success_count,
        failed_count=session.failed_count,
        records=[RestoreRecordRead(**record.to_dict()) for record in session.records],
    )


@router.post("/delete", response_model=DeleteResponse)
def delete_paths(payload: DeleteRequest, service: TrashService = Depends(get_trash_service)):
    """Move the given paths into the trash; every path gets its own result."""

    ctx = BatchContext(timeout=payload.timeout_seconds) if payload.timeout_seconds else None
    results = service.delete(payload.paths, recursive=payload.recursive, dry_run=payload.dry_run, ctx=ctx)
    outcome = BatchOutcome.from_results(results)
    logger.info(
        "Delete request for %d paths: %d succeeded, %d failed (dry_run=%s)",
        outcome.total,
        outcome.succeeded,
        outcome.failed,
        payload.dry_run,
    )
    return DeleteResponse(
        total=outcome.total,
        succeeded=outcome.succeeded,
        failed=outcome.failed,
        retryable_failures=outcome.retryable_failures,
        results=[
            DeleteResultRead(
                path=result.path,
                success=result.success,
                dry_run=result.dry_run,
                item=_item_read(result.item) if result.item else None,
                error=_error_read(result.error),
            )
            for result in results
        ],
    )


@router.get("", response_model=list[TrashedItemRead])
def list_trash(
    sort: str = Query(default="time", pattern="^(name|size|time)$"),
    reverse: bool = Query(default=True),
    pattern: str = Query(default=""),
    include_untracked: bool = Query(default=False),
    service: TrashService = Depends(get_trash_service),
):
    """Return the items currently held in the trash."""

    items = service.list(sort, reverse, pattern, include_untracked=include_untracked)
    return [_item_read(item) for item in items]


@router.get("/stats", response_model=TrashStatsRead)
def trash_stats(service: TrashService = Depends(get_trash_service)):
    stats = service.stats()
    return TrashStatsRead(
        item_count=stats.item_count,
        total_size=stats.total_size,
        by_type=stats.by_type,
        oldest_deleted_time=stats.oldest_deleted_time,
        newest_deleted_time=stats.newest_deleted_time,
    )


@router.post("/restore", response_model=RestoreResponse)
def restore_items(payload: RestoreRequest, service: TrashService = Depends(get_trash_service)):
    """Restore the items picked by the selector."""

    kind = SelectorKind(payload.selector)
    if kind is not SelectorKind.ALL and payload.value is None:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=f"Selector '{kind.value}' requires a value")

    selector = RestoreSelector(kind, payload.value)
    try:
        results = service.restore(
            selector,
            payload.target_dir,
            overwrite=payload.overwrite,
            session_name=payload.session_name,
        )
    except ItemNotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    outcome = BatchOutcome.from_results(results)
    session_id = results[0].session_id if results else None
    logger.info(
        "Restore request (%s=%s): %d succeeded, %d failed",
        kind.value,
        payload.value,
        outcome.succeeded,
        outcome.failed,
    )
    return RestoreResponse(
        total=outcome.total,
        succeeded=outcome.succeeded,
        failed=outcome.failed,
        retryable_failures=outcome.retryable_failures,
        session_id=session_id,
        results=[
            RestoreResultRead(
                path=result.path,
                item_id=result.item_id,
                success=result.success,
                restored_path=result.restored_path,
                backup_path=result.backup_path,
                integrity=result.integrity,
                session_id=result.session_id,
                error=_error_read(result.error),
                history_error=_error_read(result.history_error),
            )
            for result in results
        ],
    )


@router.delete("", response_model=EmptyResponse)
def empty_trash(payload: EmptyRequest | None = None, service: TrashService = Depends(get_trash_service)):
    """Permanently remove everything in the trash."""

    force = payload.force if payload is not None else False
    try:
        report = service.empty(force=force)
    except RetentionError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except TrashError as exc:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return EmptyResponse(purged_count=report.purged_count, total_bytes=report.total_bytes)


@router.delete("/{item_id}", response_model=EmptyResponse)
def purge_item(
    item_id: str,
    force: bool = Query(default=False),
    service: TrashService = Depends(get_trash_service),
):
    """Permanently remove a single trashed item."""

    try:
        report = service.purge(item_id, force=force)
    except ItemNotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RetentionError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except TrashError as exc:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return EmptyResponse(purged_count=report.purged_count, total_bytes=report.total_bytes)


@router.post("/cleanup", response_model=CleanupResponse)
def cleanup_metadata(payload: CleanupRequest, service: TrashService = Depends(get_trash_service)):
    """Drop metadata records whose trash object has disappeared."""

    removed = service.cleanup(timedelta(days=payload.max_age_days))
    return CleanupResponse(removed=removed)


@router.get("/sessions", response_model=list[RestoreSessionRead])
def list_sessions(
    limit: int | None = Query(default=None, ge=1),
    service: TrashService = Depends(get_trash_service),
):
    return [_session_read(session) for session in service.sessions(limit)]


@router.post("/sessions/{session_id}/rollback", response_model=RollbackResponse)
def rollback_session(session_id: str, service: TrashService = Depends(get_trash_service)):
    """Undo a restore session: re-trash what it restored and reinstate displaced files."""

    try:
        report = service.rollback(session_id)
    except ItemNotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except TrashError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    logger.info("Rolled back restore session %s", session_id)
    return RollbackResponse(
        session_id=report.session_id,
        redeleted=report.redeleted,
        backups_restored=report.backups_restored,
        errors=[TrashErrorRead(**error.to_dict()) for error in report.errors],
    )
