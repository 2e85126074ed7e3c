"""Local (dev disk) storage: one directory per bucket under dev_storage_dir."""
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path

from app.core.config import get_settings
from app.services.storage.base import ObjectInfo, StorageBackend, StorageError, StorageUnavailableError


class LocalStorage(StorageBackend):
    """Dev disk storage: bucket/key maps to <root>/<physical bucket>/<key>."""

    def __init__(self, root: str | Path | None = None, bucket_names: dict[str, str] | None = None) -> None:
        super().__init__(bucket_names)
        self._root = Path(root if root is not None else get_settings().dev_storage_dir)

    def _bucket_dir(self, bucket: str) -> Path:
        return self._root / self.resolve_bucket(bucket)

    def _path(self, bucket: str, key: str) -> Path:
        base = self._bucket_dir(bucket).resolve()
        path = (base / key).resolve()
        if base not in path.parents:
            raise StorageError(f"Key escapes bucket: {key}")
        return path

    def put_object(self, bucket: str, key: str, body: bytes, content_type: str | None = None) -> None:
        path = self._path(bucket, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(body)

    def list_objects(self, bucket: str) -> Iterator[ObjectInfo]:
        if not self._root.is_dir():
            raise StorageUnavailableError(f"Storage root not found: {self._root}")
        base = self._bucket_dir(bucket)
        if not base.is_dir():
            raise StorageError(f"Bucket not found: {bucket}")
        for path in sorted(p for p in base.rglob("*") if p.is_file()):
            stat = path.stat()
            yield ObjectInfo(
                bucket=bucket,
                key=path.relative_to(base).as_posix(),
                size=stat.st_size,
                last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            )

    def iter_object_chunks(self, bucket: str, key: str, chunk_size: int) -> Iterator[bytes]:
        path = self._path(bucket, key)
        if not path.is_file():
            raise FileNotFoundError(f"Object not found: {bucket}/{key}")
        with path.open("rb") as fh:
            while chunk := fh.read(chunk_size):
                yield chunk

    def head_object(self, bucket: str, key: str) -> dict:
        path = self._path(bucket, key)
        if not path.exists() or not path.is_file():
            raise FileNotFoundError(f"Object not found: {bucket}/{key}")
        # Local files don't store content_type
        return {"content_length": path.stat().st_size, "content_type": None}

    def delete_object(self, bucket: str, key: str) -> None:
        path = self._path(bucket, key)
        if not path.is_file():
            raise FileNotFoundError(f"Object not found: {bucket}/{key}")
        path.unlink()
