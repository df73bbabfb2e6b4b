"""Tests for the StorageError taxonomy."""

from __future__ import annotations

import pytest

from blobmirror.errors import DEFAULT_STATUS_CODES, ErrorKind, StorageError


class TestStorageError:
    """Test StorageError construction."""

    def test_default_status_codes(self) -> None:
        """Each kind carries its HTTP-like default status."""
        assert DEFAULT_STATUS_CODES[ErrorKind.NOT_FOUND] == 404
        assert DEFAULT_STATUS_CODES[ErrorKind.ALREADY_EXISTS] == 409
        assert DEFAULT_STATUS_CODES[ErrorKind.RANGE_NOT_SATISFIABLE] == 416
        assert DEFAULT_STATUS_CODES[ErrorKind.INVALID_ARGUMENT] == 400
        assert DEFAULT_STATUS_CODES[ErrorKind.REMOTE_UNAVAILABLE] == 503

    def test_not_found(self) -> None:
        error = StorageError.not_found("Container", "docs")
        assert error.kind is ErrorKind.NOT_FOUND
        assert error.status_code == 404
        assert error.resource == "docs"
        assert "docs" in str(error)

    def test_already_exists(self) -> None:
        error = StorageError.already_exists("Blob", "docs/a.txt")
        assert error.kind is ErrorKind.ALREADY_EXISTS
        assert error.status_code == 409

    def test_explicit_status_code_is_kept(self) -> None:
        error = StorageError(ErrorKind.REMOTE_UNAVAILABLE, "boom", status_code=500)
        assert error.status_code == 500

    @pytest.mark.parametrize(
        ("status", "kind"),
        [
            (400, ErrorKind.INVALID_ARGUMENT),
            (404, ErrorKind.NOT_FOUND),
            (409, ErrorKind.ALREADY_EXISTS),
            (416, ErrorKind.RANGE_NOT_SATISFIABLE),
            (500, ErrorKind.REMOTE_UNAVAILABLE),
            (403, ErrorKind.REMOTE_UNAVAILABLE),
        ],
    )
    def test_from_status(self, status: int, kind: ErrorKind) -> None:
        """Known statuses map to their kind; others keep their status as RemoteUnavailable."""
        error = StorageError.from_status(status, "failed", "docs")
        assert error.kind is kind
        assert error.status_code == status

    def test_from_unknown_status(self) -> None:
        error = StorageError.from_status(None, "connection reset")
        assert error.kind is ErrorKind.REMOTE_UNAVAILABLE
        assert error.status_code == 503

    def test_to_dict(self) -> None:
        error = StorageError.invalid_argument("Invalid block id: '!!'", "!!")
        assert error.to_dict() == {
            "kind": "InvalidArgument",
            "statusCode": 400,
            "text": "Invalid block id: '!!'",
            "resource": "!!",
        }
