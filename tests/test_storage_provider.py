"""
Tests for storage providers
"""
import pytest
from unittest.mock import patch, Mock
from botocore.exceptions import ClientError
from vibephoto.services.storage_provider import LocalDiskStorageProvider, S3StorageProvider


class TestLocalDiskStorage:
    """Filesystem provider"""

    @pytest.fixture
    def storage(self, tmp_path):
        return LocalDiskStorageProvider(base_path=str(tmp_path), base_url="http://localhost:8000/storage/")

    def test_put_get_delete(self, storage):
        url = storage.put("generated/user-1/images/a.png", b"data")
        assert url == "http://localhost:8000/storage/generated/user-1/images/a.png"
        assert storage.get("generated/user-1/images/a.png") == b"data"
        assert storage.delete("generated/user-1/images/a.png") is True
        assert storage.delete("generated/user-1/images/a.png") is False
        assert storage.get("generated/user-1/images/a.png") is None

    def test_copy_and_list(self, storage):
        storage.put("user-1/generated/gen-1_0.png", b"legacy")
        storage.copy("user-1/generated/gen-1_0.png", "generated/user-1/images/new.png")
        assert storage.list_keys("generated") == ["generated/user-1/images/new.png"]

    def test_copy_missing(self, storage):
        with pytest.raises(FileNotFoundError):
            storage.copy("missing.png", "target.png")

    def test_key_from_url(self, storage):
        assert storage.key_from_url("http://localhost:8000/storage/generated/a.png") == "generated/a.png"
        assert storage.key_from_url("https://replicate.delivery/a.png") is None

    def test_path_traversal_is_neutralised(self, storage, tmp_path):
        storage.put("../escape.png", b"x")
        assert not (tmp_path.parent / "escape.png").exists()


class TestS3Storage:
    """boto3 provider"""

    @pytest.fixture
    def s3_client(self):
        with patch("vibephoto.services.storage_provider.boto3.client") as client_factory:
            yield client_factory.return_value

    def test_put_uses_cdn_url(self, s3_client):
        storage = S3StorageProvider("vibephoto-media", region="us-east-1", public_base_url="https://cdn.vibephoto.test/")
        url = storage.put("generated/user-1/images/a.png", b"data", "image/png")

        assert url == "https://cdn.vibephoto.test/generated/user-1/images/a.png"
        kwargs = s3_client.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "vibephoto-media"
        assert kwargs["ContentType"] == "image/png"

    def test_key_from_bucket_urls(self, s3_client):
        storage = S3StorageProvider("vibephoto-media", region="us-east-1", public_base_url="https://cdn.vibephoto.test")
        assert storage.key_from_url("https://cdn.vibephoto.test/generated/a.png") == "generated/a.png"
        assert storage.key_from_url(
            "https://vibephoto-media.s3.us-east-1.amazonaws.com/generated/a.png?X-Amz-Signature=abc"
        ) == "generated/a.png"
        assert storage.key_from_url("https://replicate.delivery/a.png") is None

    def test_copy(self, s3_client):
        storage = S3StorageProvider("vibephoto-media", region="us-east-1", public_base_url="https://cdn.vibephoto.test")
        storage.copy("user-1/generated/gen-1_0.png", "generated/user-1/images/new.png")
        assert s3_client.copy_object.call_args.kwargs["CopySource"] == {
            "Bucket": "vibephoto-media", "Key": "user-1/generated/gen-1_0.png"
        }

    def test_exists(self, s3_client):
        storage = S3StorageProvider("vibephoto-media", region="us-east-1", public_base_url="https://cdn.vibephoto.test")
        s3_client.head_object.side_effect = ClientError({"Error": {"Code": "404"}}, "HeadObject")
        assert storage.exists("generated/missing.png") is False

    def test_delete_failure(self, s3_client):
        storage = S3StorageProvider("vibephoto-media", region="us-east-1", public_base_url="https://cdn.vibephoto.test")
        s3_client.delete_object.side_effect = ClientError({"Error": {"Code": "AccessDenied"}}, "DeleteObject")
        assert storage.delete("generated/a.png") is False
