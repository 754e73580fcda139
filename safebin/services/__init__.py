"""Service layer implementing the trash lifecycle."""

from .batch import BatchContext, BatchOutcome, run_bounded
from .delete import DeleteEngine, DeleteResult
from .errors import (
    ErrorKind,
    ItemNotFoundError,
    RetentionError,
    SecurityError,
    TrashError,
    UnsupportedPlatformError,
    VerificationError,
    classify_os_error,
    wrap_os_error,
)
from .history import RestoreHistory, RestoreRecord, RestoreSession, RollbackReport
from .locator import DirectoryTrashBackend, TrashBackend, TrashLocator, XdgTrashBackend
from .metadata import MetadataStore, TrashedItem, TrashStats
from .restore import RestoreEngine, RestoreResult
from .trash import EmptyReport, RestoreSelector, SelectorKind, TrashService, sort_items
from .validator import PathIntent, PathValidator

__all__ = [
    # Errors
    "ErrorKind",
    "TrashError",
    "SecurityError",
    "VerificationError",
    "UnsupportedPlatformError",
    "ItemNotFoundError",
    "RetentionError",
    "classify_os_error",
    "wrap_os_error",
    # Components
    "PathIntent",
    "PathValidator",
    "TrashBackend",
    "DirectoryTrashBackend",
    "XdgTrashBackend",
    "TrashLocator",
    "MetadataStore",
    "TrashedItem",
    "TrashStats",
    "DeleteEngine",
    "DeleteResult",
    "RestoreEngine",
    "RestoreResult",
    "RestoreHistory",
    "RestoreRecord",
    "RestoreSession",
    "RollbackReport",
    # Batches
    "BatchContext",
    "BatchOutcome",
    "run_bounded",
    # Facade
    "TrashService",
    "RestoreSelector",
    "SelectorKind",
    "EmptyReport",
    "sort_items",
]
