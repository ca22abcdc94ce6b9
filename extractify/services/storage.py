"""Object storage access for uploaded source files."""

from __future__ import annotations

from typing import Any, Protocol

import boto3

from extractify.config import Settings, get_settings
from extractify.errors import ConfigurationError, StorageError

S3_URL_PREFIX = "s3://"


class ObjectStorage(Protocol):
    """Protocol for the blob store holding uploaded files."""

    def download(self, file_url: str) -> bytes:
        """Return the object's bytes."""

    def delete(self, file_url: str) -> None:
        """Remove the object."""

    def to_media_uri(self, file_url: str) -> str:
        """Return a durable URI remote services can read the object from."""


class S3ObjectStorage:
    """S3 adapter; accepts ``s3://bucket/key`` URLs or bare keys in the default bucket."""

    def __init__(self, client: Any | None = None, *, bucket: str | None = None, region: str | None = None) -> None:
        self._client = client or boto3.client("s3", region_name=region)
        self._bucket = bucket

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "S3ObjectStorage":
        active = settings or get_settings()
        return cls(bucket=active.aws_extraction_bucket, region=active.aws_region)

    def resolve(self, file_url: str) -> tuple[str, str]:
        """Split a file URL into ``(bucket, key)``; anything not ``s3://`` is a key in the default bucket."""

        if file_url.startswith(S3_URL_PREFIX):
            bucket, _, key = file_url[len(S3_URL_PREFIX) :].partition("/")
            if not bucket or not key:
                raise StorageError(f"Invalid storage URL: {file_url}")
            return bucket, key
        if not self._bucket:
            raise ConfigurationError("AWS_EXTRACTION_BUCKET is not configured for bare storage keys.")
        return self._bucket, file_url

    def download(self, file_url: str) -> bytes:
        bucket, key = self.resolve(file_url)
        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()
        except Exception as exc:
            raise StorageError(f"Failed to download {file_url}: {exc}") from exc

    def delete(self, file_url: str) -> None:
        bucket, key = self.resolve(file_url)
        try:
            self._client.delete_object(Bucket=bucket, Key=key)
        except Exception as exc:
            raise StorageError(f"Failed to delete {file_url}: {exc}") from exc

    def to_media_uri(self, file_url: str) -> str:
        bucket, key = self.resolve(file_url)
        return f"s3://{bucket}/{key}"
