"""Tests for content fingerprints."""

import hashlib

import pytest

from vaultimport.utils.fingerprint import (
    compute_bytes_fingerprint,
    compute_file_fingerprint,
    compute_file_fingerprint_sync,
    metadata_fingerprint,
    normalize_content_hash,
)


class TestContentFingerprint:
    """Tests for SHA-256 fingerprints of content."""

    def test_bytes_fingerprint(self):
        expected = "sha256:" + hashlib.sha256(b"photo").hexdigest()

        assert compute_bytes_fingerprint(b"photo") == expected

    def test_file_matches_bytes(self, tmp_path):
        path = tmp_path / "photo.jpg"
        data = b"x" * 200_000
        path.write_bytes(data)

        assert compute_file_fingerprint_sync(path, chunk_size=4096) == compute_bytes_fingerprint(data)

    async def test_async_file_fingerprint(self, tmp_path):
        path = tmp_path / "photo.jpg"
        path.write_bytes(b"abc")

        assert await compute_file_fingerprint(path) == compute_bytes_fingerprint(b"abc")

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            compute_file_fingerprint_sync(tmp_path / "nope.jpg")


class TestMetadataFingerprint:
    """Tests for the identity fallback."""

    def test_includes_service_remote_id_and_size(self):
        assert metadata_fingerprint("dropbox", "id:1", 42) == "meta:dropbox:id:1:42"

    def test_unknown_size(self):
        assert metadata_fingerprint("dropbox", "id:1", None) == "meta:dropbox:id:1:?"

    def test_never_collides_with_content(self):
        assert not metadata_fingerprint("x", "y", 1).startswith("sha256:")


class TestNormalizeContentHash:
    """Tests for provider-supplied digests."""

    def test_plain_hex_digest(self):
        digest = hashlib.sha256(b"a").hexdigest()

        assert normalize_content_hash(digest.upper()) == "sha256:" + digest

    def test_prefixed_digest(self):
        digest = hashlib.sha256(b"a").hexdigest()

        assert normalize_content_hash("sha256:" + digest) == "sha256:" + digest

    @pytest.mark.parametrize("value", [None, "", "abc", "g" * 64])
    def test_foreign_values_are_ignored(self, value):
        assert normalize_content_hash(value) is None
