"""Input validation shared by the repositories.

Failures raise StorageError with kind InvalidArgument before any remote
call is made.
"""

from __future__ import annotations

import base64
import binascii
import re

from blobmirror.config import MAX_UPLOAD_SIZE
from blobmirror.errors import StorageError
from blobmirror.remote.models import PublicAccess

MAX_BLOB_NAME_LENGTH = 1024
MAX_BLOCK_ID_BYTES = 64

_CONTAINER_NAME = re.compile(r"^[a-z0-9](?!.*--)[a-z0-9-]{1,61}[a-z0-9]$")

_PUBLIC_ACCESS = {
    "none": PublicAccess.NONE,
    "blob": PublicAccess.BLOB,
    "container": PublicAccess.CONTAINER,
    "blobcontainer": PublicAccess.CONTAINER,
}


def validate_container_name(name: str) -> str:
    """Check remote container naming rules.

    3 to 63 characters of lowercase letters, digits and hyphens, starting and
    ending with a letter or digit, with no consecutive hyphens.
    """
    if not name or not _CONTAINER_NAME.match(name):
        raise StorageError.invalid_argument(f"Invalid container name: '{name}'", name)
    return name


def validate_blob_name(name: str) -> str:
    if not name or not name.strip() or len(name) > MAX_BLOB_NAME_LENGTH:
        raise StorageError.invalid_argument(f"Invalid blob name: '{name}'", name)
    return name


def parse_public_access(value: str | None) -> PublicAccess:
    """Parse a public access level; None and empty mean no public access."""
    if value is None or not value.strip():
        return PublicAccess.NONE
    try:
        return _PUBLIC_ACCESS[value.strip().lower()]
    except KeyError:
        raise StorageError.invalid_argument(f"Invalid public access level: '{value}'") from None


def validate_block_id(block_id: str) -> bytes:
    """Check that a block id is base64 decoding to 1..64 bytes.

    Returns:
        The decoded block id.
    """
    try:
        decoded = base64.b64decode(block_id, validate=True)
    except (binascii.Error, ValueError):
        raise StorageError.invalid_argument(f"Invalid block id: '{block_id}'", block_id) from None
    if not decoded or len(decoded) > MAX_BLOCK_ID_BYTES:
        raise StorageError.invalid_argument(
            f"Block id must decode to 1..{MAX_BLOCK_ID_BYTES} bytes: '{block_id}'", block_id
        )
    return decoded


def validate_content_length(content_length: int, max_size: int = MAX_UPLOAD_SIZE) -> int:
    if content_length < 1 or content_length > max_size:
        raise StorageError.invalid_argument(
            f"Content length must be between 1 and {max_size} bytes, got {content_length}"
        )
    return content_length


def validate_block_size(declared_size: int, max_size: int = MAX_UPLOAD_SIZE) -> int:
    if declared_size < 0 or declared_size > max_size:
        raise StorageError.invalid_argument(
            f"Block size must be between 0 and {max_size} bytes, got {declared_size}"
        )
    return declared_size
