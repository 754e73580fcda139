"""Error kinds and exceptions raised by the trash services."""

from __future__ import annotations

import errno
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Classification of a failed trash operation."""

    FILE_NOT_FOUND = "file_not_found"
    PERMISSION_DENIED = "permission_denied"
    PROTECTED_PATH = "protected_path"
    INVALID_PATH = "invalid_path"
    PATH_TRAVERSAL = "path_traversal"
    IS_DIRECTORY = "is_directory"
    FILE_IN_USE = "file_in_use"
    DISK_FULL = "disk_full"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    VERIFICATION_FAILED = "verification_failed"
    UNSUPPORTED_PLATFORM = "unsupported_platform"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.FILE_IN_USE,
        ErrorKind.DISK_FULL,
        ErrorKind.NETWORK_ERROR,
        ErrorKind.TIMEOUT,
    }
)


class TrashError(Exception):
    """Base exception for trash operations.

    Carries the failing ``operation`` and ``path`` alongside the classified
    ``kind`` so callers can decide between retrying and giving up without
    parsing the message.
    """

    def __init__(
        self,
        kind: ErrorKind,
        operation: str,
        path: str,
        reason: str,
        cause: BaseException | None = None,
    ) -> None:
        self.kind = kind
        self.operation = operation
        self.path = str(path)
        self.reason = reason
        self.cause = cause
        super().__init__(f"[{operation}] {self.path}: {reason}")

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "kind": self.kind.value,
            "operation": self.operation,
            "path": self.path,
            "reason": self.reason,
            "retryable": self.retryable,
        }


class SecurityError(TrashError):
    """Raised when a path fails validation."""


class VerificationError(TrashError):
    """Raised when a restored file does not match its recorded metadata."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(ErrorKind.VERIFICATION_FAILED, "verify", path, reason)


class UnsupportedPlatformError(TrashError):
    """Raised when no trash backend exists for the running platform."""

    def __init__(self, platform: str) -> None:
        super().__init__(
            ErrorKind.UNSUPPORTED_PLATFORM,
            "locate_trash",
            "",
            f"no trash backend for platform '{platform}'",
        )
        self.platform = platform


class ItemNotFoundError(TrashError):
    """Raised when a selector or id matches nothing in the trash."""

    def __init__(self, operation: str, selector: str) -> None:
        super().__init__(
            ErrorKind.FILE_NOT_FOUND,
            operation,
            selector,
            "no matching item in trash",
        )


class RetentionError(TrashError):
    """Raised when purging is blocked by the retention window."""

    def __init__(self, operation: str, path: str, reason: str) -> None:
        super().__init__(ErrorKind.PROTECTED_PATH, operation, path, reason)


_NETWORK_ERRNOS = {
    code
    for code in (
        getattr(errno, name, None)
        for name in (
            "ENETDOWN",
            "ENETUNREACH",
            "ENETRESET",
            "ECONNABORTED",
            "ECONNRESET",
            "ECONNREFUSED",
            "EHOSTDOWN",
            "EHOSTUNREACH",
            "ESTALE",
            "EREMOTEIO",
            "ENOLINK",
        )
    )
    if code is not None
}
_DISK_FULL_ERRNOS = {code for code in (errno.ENOSPC, getattr(errno, "EDQUOT", None)) if code is not None}
_IN_USE_ERRNOS = {code for code in (errno.EBUSY, getattr(errno, "ETXTBSY", None)) if code is not None}
_INVALID_PATH_ERRNOS = {errno.ENAMETOOLONG, errno.EINVAL, getattr(errno, "ELOOP", errno.EINVAL)}

# ERROR_SHARING_VIOLATION, ERROR_LOCK_VIOLATION
_WINDOWS_IN_USE_CODES = {32, 33}


def classify_os_error(exc: BaseException) -> ErrorKind:
    """Map an OS-level exception to an :class:`ErrorKind` from its type and errno."""

    if isinstance(exc, TrashError):
        return exc.kind
    if getattr(exc, "winerror", None) in _WINDOWS_IN_USE_CODES:
        return ErrorKind.FILE_IN_USE
    if isinstance(exc, FileNotFoundError):
        return ErrorKind.FILE_NOT_FOUND
    if isinstance(exc, IsADirectoryError):
        return ErrorKind.IS_DIRECTORY
    if isinstance(exc, TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(exc, PermissionError):
        return ErrorKind.PERMISSION_DENIED
    if isinstance(exc, ConnectionError):
        return ErrorKind.NETWORK_ERROR
    if isinstance(exc, OSError):
        code = exc.errno
        if code in _DISK_FULL_ERRNOS:
            return ErrorKind.DISK_FULL
        if code in _IN_USE_ERRNOS:
            return ErrorKind.FILE_IN_USE
        if code in _NETWORK_ERRNOS:
            return ErrorKind.NETWORK_ERROR
        if code in _INVALID_PATH_ERRNOS:
            return ErrorKind.INVALID_PATH
        if code == errno.ENOENT:
            return ErrorKind.FILE_NOT_FOUND
        if code in (errno.EACCES, errno.EPERM):
            return ErrorKind.PERMISSION_DENIED
    return ErrorKind.UNKNOWN


def wrap_os_error(operation: str, path: object, exc: BaseException) -> TrashError:
    """Wrap ``exc`` with the failing path and operation, classifying it on the way."""

    if isinstance(exc, TrashError):
        return exc
    reason = getattr(exc, "strerror", None) or str(exc) or exc.__class__.__name__
    return TrashError(classify_os_error(exc), operation, str(path), reason, cause=exc)


__all__ = [
    "ErrorKind",
    "RETRYABLE_KINDS",
    "TrashError",
    "SecurityError",
    "VerificationError",
    "UnsupportedPlatformError",
    "ItemNotFoundError",
    "RetentionError",
    "classify_os_error",
    "wrap_os_error",
]
