"""
Storage Provider Interface and Implementations
Abstraction for storing generated media (local filesystem, S3)
"""
from abc import ABC, abstractmethod
from typing import Optional, List
import logging
import os
from pathlib import Path

import boto3
from botocore.exceptions import ClientError

from ..config import config

logger = logging.getLogger(__name__)


class StorageProvider(ABC):
    """Abstract base class for storage providers"""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """
        Store data and return its public URL

        Args:
            key: Storage key/path
            data: Data bytes to store
            content_type: MIME type

        Returns:
            Public URL of the stored object
        """
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Retrieve data by key, None if not found"""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete data by key, False if not found"""
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    def copy(self, source_key: str, target_key: str) -> str:
        """Copy an object to a new key and return the new public URL"""
        pass

    @abstractmethod
    def list_keys(self, prefix: str = "") -> List[str]:
        pass

    @abstractmethod
    def get_url(self, key: str) -> str:
        """Public URL for a stored object"""
        pass

    @abstractmethod
    def key_from_url(self, url: str) -> Optional[str]:
        """Storage key for a URL produced by get_url, None for foreign URLs"""
        pass


class LocalDiskStorageProvider(StorageProvider):
    """Local filesystem storage provider (default for dev)"""

    def __init__(self, base_path: Optional[str] = None, base_url: Optional[str] = None):
        self.base_path = Path(base_path or config.STORAGE_PATH)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.base_url = (base_url or f"{config.APP_URL}/storage").rstrip("/")
        logger.info(f"LocalDiskStorageProvider initialized at {self.base_path}")

    def _path(self, key: str) -> Path:
        safe_key = key.replace('..', '').lstrip('/')
        return self.base_path / safe_key

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        file_path = self._path(key)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(data)
        logger.debug(f"Stored {len(data)} bytes to {file_path}")
        return self.get_url(key)

    def get(self, key: str) -> Optional[bytes]:
        file_path = self._path(key)
        if not file_path.exists():
            return None
        return file_path.read_bytes()

    def delete(self, key: str) -> bool:
        file_path = self._path(key)
        if not file_path.exists():
            return False
        file_path.unlink()
        logger.debug(f"Deleted {file_path}")
        return True

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def copy(self, source_key: str, target_key: str) -> str:
        data = self.get(source_key)
        if data is None:
            raise FileNotFoundError(source_key)
        return self.put(target_key, data)

    def list_keys(self, prefix: str = "") -> List[str]:
        root = self._path(prefix) if prefix else self.base_path
        if root.is_file():
            return [prefix]
        if not root.exists():
            return []
        return sorted(
            str(path.relative_to(self.base_path)).replace(os.sep, "/")
            for path in root.rglob("*") if path.is_file()
        )

    def get_url(self, key: str) -> str:
        return f"{self.base_url}/{key.lstrip('/')}"

    def key_from_url(self, url: str) -> Optional[str]:
        prefix = f"{self.base_url}/"
        return url[len(prefix):] if url and url.startswith(prefix) else None


class S3StorageProvider(StorageProvider):
    """S3-compatible storage provider (for production)"""

    def __init__(
        self,
        bucket_name: str,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        public_base_url: Optional[str] = None
    ):
        """
        Initialize S3 storage provider

        Args:
            bucket_name: S3 bucket name
            aws_access_key_id: AWS access key (or from config)
            aws_secret_access_key: AWS secret key (or from config)
            endpoint_url: Custom S3 endpoint (for S3-compatible services)
            region: AWS region
            public_base_url: CDN base URL (CloudFront) used instead of the bucket URL
        """
        self.bucket_name = bucket_name
        self.region = region or config.AWS_REGION
        self.s3_client = boto3.client(
            's3',
            aws_access_key_id=aws_access_key_id or config.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=aws_secret_access_key or config.AWS_SECRET_ACCESS_KEY,
            endpoint_url=endpoint_url or config.S3_ENDPOINT_URL,
            region_name=self.region
        )
        base = public_base_url or config.CLOUDFRONT_URL
        if base:
            self.public_base_url = base.rstrip("/")
        else:
            self.public_base_url = f"https://{bucket_name}.s3.{self.region}.amazonaws.com"

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        self.s3_client.put_object(
            Bucket=self.bucket_name,
            Key=key,
            Body=data,
            ContentType=content_type,
            CacheControl="public, max-age=31536000"
        )
        return self.get_url(key)

    def get(self, key: str) -> Optional[bytes]:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
            return response['Body'].read()
        except self.s3_client.exceptions.NoSuchKey:
            return None

    def delete(self, key: str) -> bool:
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as e:
            logger.error(f"S3 delete failed for {key}: {e}")
            return False

    def exists(self, key: str) -> bool:
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise

    def copy(self, source_key: str, target_key: str) -> str:
        self.s3_client.copy_object(
            Bucket=self.bucket_name,
            Key=target_key,
            CopySource={"Bucket": self.bucket_name, "Key": source_key},
            MetadataDirective="COPY"
        )
        return self.get_url(target_key)

    def list_keys(self, prefix: str = "") -> List[str]:
        keys = []
        paginator = self.s3_client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
            keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return keys

    def get_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key.lstrip('/')}"

    def get_presigned_url(self, key: str, expires_in: int = 3600) -> str:
        return self.s3_client.generate_presigned_url(
            'get_object',
            Params={'Bucket': self.bucket_name, 'Key': key},
            ExpiresIn=expires_in
        )

    def key_from_url(self, url: str) -> Optional[str]:
        if not url:
            return None
        candidates = [
            f"{self.public_base_url}/",
            f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/",
            f"https://{self.bucket_name}.s3.amazonaws.com/",
            f"https://s3.{self.region}.amazonaws.com/{self.bucket_name}/",
        ]
        for prefix in candidates:
            if url.startswith(prefix):
                return url[len(prefix):].split("?", 1)[0]
        return None


_storage_provider: Optional[StorageProvider] = None


def get_storage_provider(provider_name: str = None) -> StorageProvider:
    """
    Factory function to get storage provider

    Args:
        provider_name: Provider name ('local', 's3', or None for STORAGE_PROVIDER)

    Returns:
        StorageProvider instance (cached for the configured provider)
    """
    global _storage_provider

    if provider_name is None and _storage_provider is not None:
        return _storage_provider

    name = (provider_name or config.STORAGE_PROVIDER).lower()
    if name == "local":
        provider = LocalDiskStorageProvider()
    elif name == "s3":
        if not config.S3_BUCKET_NAME:
            raise ValueError("S3_BUCKET_NAME environment variable required for S3 storage")
        provider = S3StorageProvider(bucket_name=config.S3_BUCKET_NAME)
    else:
        raise ValueError(f"Unknown storage provider: {name}")

    if provider_name is None:
        _storage_provider = provider
    return provider
