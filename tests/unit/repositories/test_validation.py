"""Tests for name, block id and size validation."""

from __future__ import annotations

import base64

import pytest

from blobmirror.errors import ErrorKind, StorageError
from blobmirror.remote.models import PublicAccess
from blobmirror.repositories.validation import (
    parse_public_access,
    validate_blob_name,
    validate_block_id,
    validate_block_size,
    validate_container_name,
    validate_content_length,
)


def _assert_invalid(func, *args) -> None:
    with pytest.raises(StorageError) as exc_info:
        func(*args)
    assert exc_info.value.kind is ErrorKind.INVALID_ARGUMENT


class TestContainerNames:
    """Test remote container naming rules."""

    @pytest.mark.parametrize("name", ["abc", "docs", "my-container-1", "a" * 63, "0ab"])
    def test_valid(self, name: str) -> None:
        assert validate_container_name(name) == name

    @pytest.mark.parametrize(
        "name",
        ["", "ab", "a" * 64, "Docs", "-docs", "docs-", "do--cs", "doc_s", "doc s"],
    )
    def test_invalid(self, name: str) -> None:
        _assert_invalid(validate_container_name, name)


class TestBlobNames:
    def test_valid(self) -> None:
        assert validate_blob_name("folder/a.txt") == "folder/a.txt"

    @pytest.mark.parametrize("name", ["", "   ", "x" * 1025])
    def test_invalid(self, name: str) -> None:
        _assert_invalid(validate_blob_name, name)


class TestPublicAccess:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, PublicAccess.NONE),
            ("", PublicAccess.NONE),
            ("none", PublicAccess.NONE),
            ("Blob", PublicAccess.BLOB),
            ("CONTAINER", PublicAccess.CONTAINER),
            ("BlobContainer", PublicAccess.CONTAINER),
        ],
    )
    def test_parse(self, value: str | None, expected: PublicAccess) -> None:
        assert parse_public_access(value) is expected

    def test_unknown_level(self) -> None:
        _assert_invalid(parse_public_access, "everyone")


class TestBlockIds:
    """Test base64 block ids."""

    def test_valid(self) -> None:
        assert validate_block_id("AAAA") == b"\x00\x00\x00"

    def test_max_length(self) -> None:
        block_id = base64.b64encode(b"x" * 64).decode()
        assert len(validate_block_id(block_id)) == 64

    @pytest.mark.parametrize(
        "block_id",
        ["", "not base64!", "AAA", base64.b64encode(b"x" * 65).decode()],
    )
    def test_invalid(self, block_id: str) -> None:
        _assert_invalid(validate_block_id, block_id)


class TestSizes:
    def test_content_length_bounds(self) -> None:
        assert validate_content_length(1) == 1
        assert validate_content_length(10_737_418_240) == 10_737_418_240
        _assert_invalid(validate_content_length, 0)
        _assert_invalid(validate_content_length, 10_737_418_241)

    def test_block_size_bounds(self) -> None:
        assert validate_block_size(0) == 0
        _assert_invalid(validate_block_size, -1)
