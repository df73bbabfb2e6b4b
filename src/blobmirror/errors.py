"""Error taxonomy for blobmirror.

A single tagged exception, StorageError, carries the error kind, an
HTTP-like status code and a reference to the affected resource. Remote
failures are translated into it once, at the remote store boundary; callers
match on ``kind`` rather than on exception subclasses.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Kind of storage error."""

    NOT_FOUND = "NotFound"
    ALREADY_EXISTS = "AlreadyExists"
    RANGE_NOT_SATISFIABLE = "RangeNotSatisfiable"
    INVALID_ARGUMENT = "InvalidArgument"
    REMOTE_UNAVAILABLE = "RemoteUnavailable"


DEFAULT_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.ALREADY_EXISTS: 409,
    ErrorKind.RANGE_NOT_SATISFIABLE: 416,
    ErrorKind.INVALID_ARGUMENT: 400,
    ErrorKind.REMOTE_UNAVAILABLE: 503,
}

_KINDS_BY_STATUS: dict[int, ErrorKind] = {
    400: ErrorKind.INVALID_ARGUMENT,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.ALREADY_EXISTS,
    416: ErrorKind.RANGE_NOT_SATISFIABLE,
}


class StorageError(Exception):
    """Failure of a cache or remote store operation."""

    def __init__(
        self,
        kind: ErrorKind,
        text: str,
        *,
        status_code: int | None = None,
        resource: str | None = None,
    ) -> None:
        self.kind = kind
        self.text = text
        self.status_code = status_code if status_code is not None else DEFAULT_STATUS_CODES[kind]
        self.resource = resource
        super().__init__(text)

    def __repr__(self) -> str:
        return (
            f"StorageError(kind={self.kind.value!r}, status_code={self.status_code}, "
            f"resource={self.resource!r}, text={self.text!r})"
        )

    @classmethod
    def not_found(cls, resource_type: str, resource: str) -> StorageError:
        return cls(
            ErrorKind.NOT_FOUND,
            f"{resource_type} '{resource}' not found",
            resource=resource,
        )

    @classmethod
    def already_exists(cls, resource_type: str, resource: str) -> StorageError:
        return cls(
            ErrorKind.ALREADY_EXISTS,
            f"{resource_type} '{resource}' already exists",
            resource=resource,
        )

    @classmethod
    def invalid_argument(cls, text: str, resource: str | None = None) -> StorageError:
        return cls(ErrorKind.INVALID_ARGUMENT, text, resource=resource)

    @classmethod
    def from_status(
        cls,
        status_code: int | None,
        text: str,
        resource: str | None = None,
    ) -> StorageError:
        """Build an error from a remote status code.

        Known statuses map onto their kind; anything else becomes
        RemoteUnavailable carrying the original status (503 when unknown).
        """
        if status_code is None:
            return cls(ErrorKind.REMOTE_UNAVAILABLE, text, resource=resource)
        kind = _KINDS_BY_STATUS.get(status_code, ErrorKind.REMOTE_UNAVAILABLE)
        return cls(kind, text, status_code=status_code, resource=resource)

    def to_dict(self) -> dict[str, Any]:
        """Serializable view for callers that report errors."""
        return {
            "kind": self.kind.value,
            "statusCode": self.status_code,
            "text": self.text,
            "resource": self.resource,
        }
