"""In-memory storage backend with failure injection for scanner and deletion tests."""
import threading
from collections.abc import Iterator
from datetime import datetime, timezone

from app.services.storage import ObjectInfo, StorageBackend, StorageError, StorageUnavailableError


class MemoryStorage(StorageBackend):
    def __init__(self) -> None:
        super().__init__(bucket_names={})
        self.objects: dict[tuple[str, str], bytes] = {}
        self.unreachable = False
        self.broken_buckets: set[str] = set()
        self.unreadable: set[tuple[str, str]] = set()
        self.undeletable: set[tuple[str, str]] = set()
        self.read_gate: threading.Event | None = None
        self.reads: list[tuple[str, str]] = []
        self.deleted: list[tuple[str, str]] = []

    def add(self, bucket: str, key: str, body: bytes) -> None:
        self.objects[(bucket, key)] = body

    def put_object(self, bucket: str, key: str, body: bytes, content_type: str | None = None) -> None:
        self.objects[(bucket, key)] = body

    def list_objects(self, bucket: str) -> Iterator[ObjectInfo]:
        if self.unreachable:
            raise StorageUnavailableError("connection refused")
        if bucket in self.broken_buckets:
            raise StorageError(f"NoSuchBucket: {bucket}")
        stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for (b, key), body in sorted(self.objects.items()):
            if b == bucket:
                yield ObjectInfo(bucket=b, key=key, size=len(body), last_modified=stamp)

    def iter_object_chunks(self, bucket: str, key: str, chunk_size: int) -> Iterator[bytes]:
        if self.read_gate is not None:
            self.read_gate.wait(timeout=5)
        self.reads.append((bucket, key))
        if (bucket, key) in self.unreadable:
            raise StorageError(f"read failed: {key}")
        if (bucket, key) not in self.objects:
            raise FileNotFoundError(f"Object not found: {bucket}/{key}")
        body = self.objects[(bucket, key)]
        for i in range(0, len(body), chunk_size):
            yield body[i:i + chunk_size]

    def head_object(self, bucket: str, key: str) -> dict:
        if (bucket, key) not in self.objects:
            raise FileNotFoundError(f"Object not found: {bucket}/{key}")
        return {"content_length": len(self.objects[(bucket, key)]), "content_type": None}

    def delete_object(self, bucket: str, key: str) -> None:
        if (bucket, key) in self.undeletable:
            raise StorageError("AccessDenied")
        if (bucket, key) not in self.objects:
            raise FileNotFoundError(f"Object not found: {bucket}/{key}")
        del self.objects[(bucket, key)]
        self.deleted.append((bucket, key))
