"""S3 storage backend (AWS or S3-compatible such as R2). Imported only when STORAGE_BACKEND=s3 (avoids boto3 in local mode)."""
from __future__ import annotations

from collections.abc import Iterator

from botocore.exceptions import BotoCoreError, EndpointConnectionError, NoCredentialsError

from app.core.config import get_settings
from app.services.storage.base import ObjectInfo, StorageBackend, StorageError, StorageUnavailableError

settings = get_settings()

_NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")
_UNAVAILABLE_CODES = ("AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch", "ExpiredToken", "403")


def _get_client():
    import boto3
    return boto3.client(
        "s3",
        region_name=settings.aws_region,
        endpoint_url=settings.s3_endpoint_url,
    )


def _error_code(exc: Exception) -> str | None:
    resp = getattr(exc, "response", None)
    return resp.get("Error", {}).get("Code") if isinstance(resp, dict) else None


def _translate(exc: Exception, what: str) -> Exception:
    """Map botocore errors onto FileNotFoundError / StorageUnavailableError / StorageError."""
    code = _error_code(exc)
    if code in _NOT_FOUND_CODES:
        return FileNotFoundError(f"Object not found: {what}")
    if code in _UNAVAILABLE_CODES or isinstance(exc, (EndpointConnectionError, NoCredentialsError)):
        return StorageUnavailableError(f"Object store unavailable ({code or type(exc).__name__}): {what}")
    if isinstance(exc, BotoCoreError) or code is not None:
        return StorageError(f"Object store error ({code or type(exc).__name__}): {what}")
    return exc


def _raise_translated(exc: Exception, what: str) -> None:
    translated = _translate(exc, what)
    if translated is exc:
        raise exc
    raise translated from exc


class S3Storage(StorageBackend):
    """S3 backend via boto3: paginated listing, streamed reads, head/delete."""

    def __init__(self, bucket_names: dict[str, str] | None = None) -> None:
        super().__init__(bucket_names)
        self._client = _get_client()

    def put_object(self, bucket: str, key: str, body: bytes, content_type: str | None = None) -> None:
        params = {"Bucket": self.resolve_bucket(bucket), "Key": key, "Body": body}
        if content_type:
            params["ContentType"] = content_type
        try:
            self._client.put_object(**params)
        except Exception as e:
            _raise_translated(e, f"{bucket}/{key}")

    def list_objects(self, bucket: str) -> Iterator[ObjectInfo]:
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.resolve_bucket(bucket)):
                for obj in page.get("Contents", []):
                    yield ObjectInfo(
                        bucket=bucket,
                        key=obj["Key"],
                        size=obj.get("Size") or 0,
                        last_modified=obj.get("LastModified"),
                    )
        except Exception as e:
            _raise_translated(e, bucket)

    def iter_object_chunks(self, bucket: str, key: str, chunk_size: int) -> Iterator[bytes]:
        try:
            resp = self._client.get_object(Bucket=self.resolve_bucket(bucket), Key=key)
            body = resp["Body"]
            try:
                yield from body.iter_chunks(chunk_size)
            finally:
                body.close()
        except Exception as e:
            _raise_translated(e, f"{bucket}/{key}")

    def head_object(self, bucket: str, key: str) -> dict:
        try:
            resp = self._client.head_object(Bucket=self.resolve_bucket(bucket), Key=key)
        except Exception as e:
            _raise_translated(e, f"{bucket}/{key}")
        return {
            "content_length": resp.get("ContentLength") or 0,
            "content_type": resp.get("ContentType"),
        }

    def delete_object(self, bucket: str, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.resolve_bucket(bucket), Key=key)
        except Exception as e:
            _raise_translated(e, f"{bucket}/{key}")
