"""Object storage wrapper for episode audio and transcript artifacts."""

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import ClientError

from podcore.config import settings

logger = logging.getLogger(__name__)

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


def _is_missing(exc: ClientError) -> bool:
    return str(exc.response.get("Error", {}).get("Code")) in _MISSING_CODES


class StorageClient:
    """Thin wrapper around boto3 for the artifact bucket.

    Supports AWS S3 and S3-compatible services (R2, Tigris, MinIO).
    Falls back to a local directory when ``storage_local`` is True. boto3 is
    blocking, so the coroutine methods hand it to a worker thread.
    """

    def __init__(
        self,
        bucket: Optional[str] = None,
        *,
        use_local: Optional[bool] = None,
        local_root: Optional[str] = None,
        url_ttl_seconds: Optional[int] = None,
    ) -> None:
        self.bucket = bucket if bucket is not None else settings.s3_bucket_name
        self.public_url_base = settings.s3_public_url_base
        self.use_local = settings.storage_local if use_local is None else use_local
        self.local_root = Path(local_root or settings.storage_local_root)
        self.url_ttl_seconds = url_ttl_seconds or settings.presigned_url_ttl_seconds
        self._client = None

    @property
    def client(self):
        """Lazily initialize the S3 client."""
        if self._client is None:
            client_kwargs: dict[str, str] = {
                "region_name": settings.s3_region,
            }
            if settings.s3_access_key_id and settings.s3_secret_access_key:
                client_kwargs["aws_access_key_id"] = settings.s3_access_key_id
                client_kwargs["aws_secret_access_key"] = settings.s3_secret_access_key
            if settings.s3_endpoint_url:
                client_kwargs["endpoint_url"] = settings.s3_endpoint_url

            self._client = boto3.client("s3", **client_kwargs)
        return self._client

    def _require_bucket(self) -> str:
        if not self.bucket:
            raise ValueError("S3_BUCKET_NAME not configured")
        return self.bucket

    # Presigned URLs (signed locally, no network round trip)

    def presigned_get_url(self, key: str) -> str:
        """Time-limited download URL for ``key``."""
        if self.use_local:
            return self._local_path(key).resolve().as_uri()
        bucket = self._require_bucket()
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=self.url_ttl_seconds,
        )

    def presigned_put_url(self, key: str, content_type: str) -> str:
        """Time-limited upload URL; the uploader must send the same Content-Type."""
        if self.use_local:
            return self._local_path(key).resolve().as_uri()
        bucket = self._require_bucket()
        return self.client.generate_presigned_url(
            "put_object",
            Params={
                "Bucket": bucket,
                "Key": key,
                "ContentType": content_type,
            },
            ExpiresIn=self.url_ttl_seconds,
        )

    def get_public_url(self, key: str) -> str:
        """Public URL for a published artifact (captions served by the site)."""
        if self.use_local:
            return f"/storage/{key}"

        if self.public_url_base:
            base = self.public_url_base.rstrip("/")
            return f"{base}/{key}"

        if settings.s3_endpoint_url:
            endpoint = settings.s3_endpoint_url.rstrip("/")
            return f"{endpoint}/{self.bucket}/{key}"

        return f"https://{self.bucket}.s3.{settings.s3_region}.amazonaws.com/{key}"

    # Object access

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._exists, key)

    async def get_bytes(self, key: str) -> Optional[bytes]:
        """Object body, or None when the key does not exist."""
        return await asyncio.to_thread(self._get_bytes, key)

    async def put_bytes(self, key: str, data: bytes, content_type: str) -> None:
        await asyncio.to_thread(self._put_bytes, key, data, content_type)

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every object under ``prefix``. Returns the number removed."""
        return await asyncio.to_thread(self._delete_prefix, prefix)

    def _exists(self, key: str) -> bool:
        if self.use_local:
            return self._local_path(key).is_file()
        bucket = self._require_bucket()
        try:
            self.client.head_object(Bucket=bucket, Key=key)
        except ClientError as e:
            if _is_missing(e):
                return False
            logger.error(f"Failed to stat {key}: {e}")
            raise
        return True

    def _get_bytes(self, key: str) -> Optional[bytes]:
        if self.use_local:
            path = self._local_path(key)
            return path.read_bytes() if path.is_file() else None
        bucket = self._require_bucket()
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
        except ClientError as e:
            if _is_missing(e):
                return None
            logger.error(f"Failed to read {key}: {e}")
            raise
        return response["Body"].read()

    def _put_bytes(self, key: str, data: bytes, content_type: str) -> None:
        if self.use_local:
            path = self._local_path(key)
            os.makedirs(path.parent, exist_ok=True)
            path.write_bytes(data)
            logger.info(f"Saved {key} to local filesystem")
            return
        bucket = self._require_bucket()
        try:
            self.client.put_object(
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
            logger.info(f"Uploaded {key} to bucket {self.bucket}")
        except ClientError as e:
            logger.error(f"Failed to upload {key}: {e}")
            raise

    def _delete_prefix(self, prefix: str) -> int:
        if self.use_local:
            removed = 0
            root = self._local_path(prefix)
            if root.is_dir():
                for path in sorted(root.rglob("*"), reverse=True):
                    if path.is_file():
                        path.unlink()
                        removed += 1
                    else:
                        path.rmdir()
                root.rmdir()
            logger.info(f"Deleted {removed} local objects under {prefix}")
            return removed

        bucket = self._require_bucket()
        removed = 0
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
            keys = [{"Key": item["Key"]} for item in page.get("Contents", [])]
            if not keys:
                continue
            self.client.delete_objects(Bucket=bucket, Delete={"Objects": keys})
            removed += len(keys)
        logger.info(f"Deleted {removed} objects under {prefix} from bucket {bucket}")
        return removed

    def _local_path(self, key: str) -> Path:
        return self.local_root / key


# Singleton instance for convenience
storage_client = StorageClient()


def get_storage() -> StorageClient:
    """FastAPI dependency returning the shared storage client."""
    return storage_client
