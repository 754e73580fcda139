"""Pydantic schemas used by the FastAPI application."""

from .trash import (
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

__all__ = [
    "CleanupRequest",
    "CleanupResponse",
    "DeleteRequest",
    "DeleteResponse",
    "DeleteResultRead",
    "EmptyRequest",
    "EmptyResponse",
    "RestoreRecordRead",
    "RestoreRequest",
    "RestoreResponse",
    "RestoreResultRead",
    "RestoreSessionRead",
    "RollbackResponse",
    "TrashedItemRead",
    "TrashErrorRead",
    "TrashStatsRead",
]
