"""Storage backend interface: bucket-aware put/list/read/head/delete. Implementations: local (dev disk) or S3."""
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime

from app.core.config import get_settings


class StorageError(Exception):
    """Object store operation failed."""


class StorageUnavailableError(StorageError):
    """Object store cannot be reached at all (network, credentials, permissions)."""


@dataclass(frozen=True)
class ObjectInfo:
    bucket: str
    key: str
    size: int
    last_modified: datetime | None


class StorageBackend(ABC):
    """Abstract object store. Bucket arguments are logical names; resolve_bucket maps them to physical ones."""

    def __init__(self, bucket_names: dict[str, str] | None = None) -> None:
        if bucket_names is None:
            bucket_names = get_settings().bucket_names
        self._bucket_names = dict(bucket_names)

    def resolve_bucket(self, bucket: str) -> str:
        return self._bucket_names.get(bucket, bucket)

    @abstractmethod
    def put_object(self, bucket: str, key: str, body: bytes, content_type: str | None = None) -> None:
        ...

    @abstractmethod
    def list_objects(self, bucket: str) -> Iterator[ObjectInfo]:
        """Yield every object in bucket (pages fetched lazily). Raise StorageUnavailableError if unreachable."""
        ...

    @abstractmethod
    def iter_object_chunks(self, bucket: str, key: str, chunk_size: int) -> Iterator[bytes]:
        """Stream object bytes. Raise FileNotFoundError if missing."""
        ...

    @abstractmethod
    def head_object(self, bucket: str, key: str) -> dict:
        """Return metadata: content_length (int), content_type (str | None). Raise FileNotFoundError if missing."""
        ...

    @abstractmethod
    def delete_object(self, bucket: str, key: str) -> None:
        ...
