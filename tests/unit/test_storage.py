"""Unit tests for storage disks and stored-path helpers."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from fanclub.config import Settings
from fanclub.storage import (
    DRIVER_PUBLIC,
    DRIVER_S3,
    LocalDisk,
    S3Disk,
    StorageError,
    StorageManager,
    _create_disks,
    basename,
    get_file_name_from_url,
)


class TestGetFileNameFromUrl:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("avatars/x.jpg", "x.jpg"),
            ("/storage/covers/42/banner.png", "banner.png"),
            ("https://cdn.example.com/u/1/photo.webp?w=200", "photo.webp"),
            ("https://cdn.example.com/u/1/my%20photo.jpg", "my photo.jpg"),
        ],
    )
    def test_extracts_file_name(self, value, expected):
        assert get_file_name_from_url(value) == expected

    @pytest.mark.parametrize(
        "value",
        [
            "https://bucket.s3.amazonaws.com/a/x.jpg?X-Amz-Algorithm=AWS4-HMAC-SHA256&X-Amz-Signature=abc",
            "https://d111.cloudfront.net/a/x.jpg?Expires=1700000000&Signature=abc&Key-Pair-Id=K1",
        ],
    )
    def test_presigned_urls_have_no_file_name(self, value):
        assert get_file_name_from_url(value) is None

    @pytest.mark.parametrize("value", [None, "", "https://cdn.example.com/avatars/", "avatars/noextension", ".jpg"])
    def test_non_file_values(self, value):
        assert get_file_name_from_url(value) is None


class TestBasename:
    def test_relative_path(self):
        assert basename("path/to/x.jpg") == "x.jpg"

    def test_url(self):
        assert basename("https://cdn.example.com/path/to/x.jpg") == "x.jpg"

    def test_trailing_slash(self):
        assert basename("path/to/") == "to"


class TestLocalDisk:
    async def test_delete_existing_file(self, tmp_path):
        (tmp_path / "avatars").mkdir()
        target = tmp_path / "avatars" / "me.jpg"
        target.write_bytes(b"jpeg")
        disk = LocalDisk(tmp_path)

        assert await disk.exists("avatars/me.jpg") is True
        assert await disk.delete("avatars/me.jpg") is True
        assert not target.exists()

    async def test_delete_missing_file_is_noop(self, tmp_path):
        assert await LocalDisk(tmp_path).delete("avatars/gone.jpg") is False

    async def test_leading_slash_stays_under_root(self, tmp_path):
        (tmp_path / "x.jpg").write_bytes(b"jpeg")
        assert await LocalDisk(tmp_path).delete("/x.jpg") is True

    async def test_refuses_paths_outside_root(self, tmp_path):
        root = tmp_path / "public"
        root.mkdir()
        (tmp_path / "secret.txt").write_text("keep")

        with pytest.raises(StorageError, match="escapes storage root"):
            await LocalDisk(root).delete("../secret.txt")
        assert (tmp_path / "secret.txt").exists()

    async def test_filesystem_work_runs_off_the_event_loop(self, tmp_path):
        (tmp_path / "x.jpg").write_bytes(b"jpeg")
        disk = LocalDisk(tmp_path)

        with patch("fanclub.storage.asyncio.to_thread", wraps=asyncio.to_thread) as to_thread:
            assert await disk.exists("x.jpg") is True
            assert await disk.delete("x.jpg") is True

        assert to_thread.call_count == 2
        assert not (tmp_path / "x.jpg").exists()


class TestS3Disk:
    def _disk_with_client(self, s3):
        disk = S3Disk(bucket="fanclub-media", region="eu-west-1")
        client_cm = MagicMock()
        client_cm.__aenter__ = AsyncMock(return_value=s3)
        client_cm.__aexit__ = AsyncMock(return_value=False)
        return disk, client_cm

    async def test_delete_object(self):
        s3 = AsyncMock()
        disk, client_cm = self._disk_with_client(s3)

        with patch.object(S3Disk, "_client", return_value=client_cm):
            assert await disk.delete("/avatars/me.jpg") is True

        s3.delete_object.assert_awaited_once_with(Bucket="fanclub-media", Key="avatars/me.jpg")

    async def test_exists_false_on_404(self):
        s3 = AsyncMock()
        s3.head_object.side_effect = ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        disk, client_cm = self._disk_with_client(s3)

        with patch.object(S3Disk, "_client", return_value=client_cm):
            assert await disk.exists("avatars/me.jpg") is False

    async def test_exists_reraises_other_errors(self):
        s3 = AsyncMock()
        s3.head_object.side_effect = ClientError({"Error": {"Code": "403", "Message": "Forbidden"}}, "HeadObject")
        disk, client_cm = self._disk_with_client(s3)

        with patch.object(S3Disk, "_client", return_value=client_cm), pytest.raises(ClientError):
            await disk.exists("avatars/me.jpg")


class TestStorageManager:
    def test_unknown_disk(self):
        with pytest.raises(StorageError, match="Unsupported storage disk: ftp"):
            StorageManager({}).disk("ftp")

    def test_s3_only_when_bucket_configured(self, tmp_path):
        settings = Settings(_env_file=None, storage_public_root=str(tmp_path))
        assert set(_create_disks(settings)) == {DRIVER_PUBLIC}

        settings = Settings(_env_file=None, storage_public_root=str(tmp_path), storage_s3_bucket="fanclub-media")
        disks = _create_disks(settings)
        assert set(disks) == {DRIVER_PUBLIC, DRIVER_S3}
        assert disks[DRIVER_S3].bucket == "fanclub-media"
