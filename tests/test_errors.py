"""Tests for error classification."""

from __future__ import annotations

import errno

import pytest

from safebin.services.errors import (
    ErrorKind,
    TrashError,
    VerificationError,
    classify_os_error,
    wrap_os_error,
)


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (FileNotFoundError(errno.ENOENT, "No such file"), ErrorKind.FILE_NOT_FOUND),
        (PermissionError(errno.EACCES, "Permission denied"), ErrorKind.PERMISSION_DENIED),
        (IsADirectoryError(errno.EISDIR, "Is a directory"), ErrorKind.IS_DIRECTORY),
        (OSError(errno.ENOSPC, "No space left on device"), ErrorKind.DISK_FULL),
        (OSError(errno.EBUSY, "Device or resource busy"), ErrorKind.FILE_IN_USE),
        (OSError(errno.ETIMEDOUT, "Connection timed out"), ErrorKind.TIMEOUT),
        (OSError(errno.ENETUNREACH, "Network is unreachable"), ErrorKind.NETWORK_ERROR),
        (OSError(errno.ENAMETOOLONG, "File name too long"), ErrorKind.INVALID_PATH),
        (ValueError("boom"), ErrorKind.UNKNOWN),
    ],
)
def test_classify_os_error_uses_type_and_errno(exc: BaseException, expected: ErrorKind) -> None:
    assert classify_os_error(exc) == expected


def test_classification_ignores_message_text() -> None:
    exc = OSError(errno.EIO, "disk full, file not found, permission denied")

    assert classify_os_error(exc) == ErrorKind.UNKNOWN


def test_windows_sharing_violation_is_file_in_use() -> None:
    exc = PermissionError(errno.EACCES, "The process cannot access the file")
    exc.winerror = 32  # type: ignore[attr-defined]

    assert classify_os_error(exc) == ErrorKind.FILE_IN_USE


@pytest.mark.parametrize(
    ("kind", "retryable"),
    [
        (ErrorKind.FILE_IN_USE, True),
        (ErrorKind.DISK_FULL, True),
        (ErrorKind.NETWORK_ERROR, True),
        (ErrorKind.TIMEOUT, True),
        (ErrorKind.FILE_NOT_FOUND, False),
        (ErrorKind.PROTECTED_PATH, False),
        (ErrorKind.CANCELLED, False),
        (ErrorKind.VERIFICATION_FAILED, False),
    ],
)
def test_retryable_flag(kind: ErrorKind, retryable: bool) -> None:
    assert TrashError(kind, "delete", "/tmp/x", "reason").retryable is retryable


def test_wrap_os_error_keeps_path_operation_and_cause() -> None:
    cause = FileNotFoundError(errno.ENOENT, "No such file or directory")

    error = wrap_os_error("stat", "/data/report.txt", cause)

    assert error.kind == ErrorKind.FILE_NOT_FOUND
    assert error.operation == "stat"
    assert error.path == "/data/report.txt"
    assert error.cause is cause
    assert str(error) == "[stat] /data/report.txt: No such file or directory"


def test_wrap_os_error_passes_trash_errors_through() -> None:
    original = VerificationError("/data/a.txt", "checksum mismatch")

    assert wrap_os_error("restore", "/other", original) is original


def test_to_dict_exposes_kind_and_retryable() -> None:
    payload = TrashError(ErrorKind.DISK_FULL, "move_to_trash", "/data/big.iso", "No space").to_dict()

    assert payload == {
        "kind": "disk_full",
        "operation": "move_to_trash",
        "path": "/data/big.iso",
        "reason": "No space",
        "retryable": True,
    }
