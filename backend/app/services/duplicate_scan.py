"""Duplicate scanner: list every object in the configured buckets, hash the ones that could
be duplicates, and group them by content hash.

Only objects whose size collides with another object are hashed. Hashing runs in a
bounded pool of worker threads; results are merged by the single coroutine that
drives the scan, so the grouping map has exactly one writer.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import posixpath
import time
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from app.core import metrics
from app.services.storage import ObjectInfo, StorageBackend, StorageUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1024 * 1024


class DuplicateScanError(Exception):
    pass


class ScanFailedError(DuplicateScanError):
    """The object store could not be reached at all."""


class ScanCancelledError(DuplicateScanError):
    pass


class ScanTimeoutError(DuplicateScanError):
    pass


@dataclass(frozen=True)
class StoredObject:
    bucket: str
    key: str
    file_name: str
    size: int
    last_modified: datetime | None
    content_hash: str


@dataclass(frozen=True)
class SkippedObject:
    """An object (or whole bucket, when key is None) that could not be read."""
    bucket: str
    key: str | None
    reason: str

    def to_dict(self) -> dict:
        return {"bucket": self.bucket, "key": self.key, "reason": self.reason}


@dataclass
class DuplicateGroup:
    content_hash: str
    objects: list[StoredObject] = field(default_factory=list)

    @property
    def size(self) -> int:
        return self.objects[0].size if self.objects else 0

    @property
    def wasted_bytes(self) -> int:
        return max(len(self.objects) - 1, 0) * self.size


@dataclass
class ScanResult:
    buckets: tuple[str, ...]
    groups: list[DuplicateGroup]
    total_objects: int
    hashed_objects: int
    skipped: list[SkippedObject]
    started_at: datetime
    finished_at: datetime

    def duplicate_groups(self) -> list[DuplicateGroup]:
        return [g for g in self.groups if len(g.objects) >= 2]

    @property
    def total_wasted_bytes(self) -> int:
        return sum(g.wasted_bytes for g in self.duplicate_groups())


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_chunks(chunks: Iterable[bytes], should_stop: Callable[[], bool] | None = None) -> str:
    h = hashlib.sha256()
    for chunk in chunks:
        if should_stop is not None and should_stop():
            raise ScanCancelledError("Scan cancelled while hashing")
        h.update(chunk)
    return h.hexdigest()


def _file_name(key: str) -> str:
    return posixpath.basename(key) or key


class DuplicateScanner:
    def __init__(
        self,
        storage: StorageBackend,
        hash_workers: int = 8,
        timeout_seconds: float | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if hash_workers < 1:
            raise ValueError("hash_workers must be at least 1")
        self._storage = storage
        self._hash_workers = hash_workers
        self._timeout = timeout_seconds
        self._chunk_size = chunk_size

    async def scan(self, buckets: Sequence[str], cancel_event: asyncio.Event | None = None) -> ScanResult:
        """Scan the given logical buckets.

        Raises ScanFailedError when the store is unreachable, ScanCancelledError when
        cancel_event is set before the scan finishes and ScanTimeoutError when the scan
        runs past timeout_seconds. Unreadable buckets and objects are reported in
        ScanResult.skipped instead of raising.
        """
        cancel_event = cancel_event or asyncio.Event()
        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()
        try:
            if self._timeout:
                result = await asyncio.wait_for(self._run(tuple(buckets), cancel_event, started_at), self._timeout)
            else:
                result = await self._run(tuple(buckets), cancel_event, started_at)
        except asyncio.TimeoutError:
            # stop hashing threads that are still reading
            cancel_event.set()
            metrics.record_scan("timeout", time.perf_counter() - start)
            raise ScanTimeoutError(f"Scan exceeded {self._timeout:g}s") from None
        except ScanCancelledError:
            metrics.record_scan("cancelled", time.perf_counter() - start)
            raise
        except ScanFailedError:
            metrics.record_scan("failed", time.perf_counter() - start)
            raise
        metrics.record_scan("completed", time.perf_counter() - start)
        return result

    async def _run(self, buckets: tuple[str, ...], cancel_event: asyncio.Event, started_at: datetime) -> ScanResult:
        skipped: list[SkippedObject] = []
        listed: list[ObjectInfo] = []
        for bucket in buckets:
            self._check_cancelled(cancel_event)
            try:
                objects = await asyncio.to_thread(self._list_bucket, bucket)
            except StorageUnavailableError as e:
                logger.error("Object store unreachable while listing %s: %s", bucket, e)
                raise ScanFailedError(f"Object store unreachable: {e}") from e
            except Exception as e:
                logger.warning("Skipping bucket %s: %s", bucket, e, extra={"bucket": bucket})
                metrics.record_scan_skipped("bucket")
                skipped.append(SkippedObject(bucket=bucket, key=None, reason=f"Listing failed: {e}"))
                continue
            listed.extend(objects)

        by_size: dict[int, list[ObjectInfo]] = defaultdict(list)
        for obj in listed:
            by_size[obj.size].append(obj)
        candidates = [obj for group in by_size.values() if len(group) > 1 for obj in group]
        logger.info(
            "Listed %d objects in %d buckets; %d share a size with another object",
            len(listed), len(buckets), len(candidates),
        )

        by_hash: dict[str, list[StoredObject]] = defaultdict(list)
        hashed = 0
        semaphore = asyncio.Semaphore(self._hash_workers)
        should_stop = cancel_event.is_set

        async def hash_one(obj: ObjectInfo) -> tuple[ObjectInfo, str | None, str | None]:
            async with semaphore:
                if should_stop():
                    return obj, None, None
                try:
                    digest = await asyncio.to_thread(self._hash_object, obj, should_stop)
                except ScanCancelledError:
                    return obj, None, None
                except Exception as e:
                    return obj, None, str(e) or type(e).__name__
                return obj, digest, None

        tasks = [asyncio.create_task(hash_one(obj)) for obj in candidates]
        try:
            for next_done in asyncio.as_completed(tasks):
                obj, digest, error = await next_done
                self._check_cancelled(cancel_event)
                if error is not None:
                    logger.warning("Skipping %s/%s: %s", obj.bucket, obj.key, error, extra={"bucket": obj.bucket})
                    metrics.record_scan_skipped("object")
                    skipped.append(SkippedObject(bucket=obj.bucket, key=obj.key, reason=error))
                    continue
                if digest is None:
                    continue
                hashed += 1
                by_hash[digest].append(
                    StoredObject(
                        bucket=obj.bucket,
                        key=obj.key,
                        file_name=_file_name(obj.key),
                        size=obj.size,
                        last_modified=obj.last_modified,
                        content_hash=digest,
                    )
                )
        finally:
            for t in tasks:
                if not t.done():
                    t.cancel()
            if any(not t.done() for t in tasks):
                await asyncio.gather(*tasks, return_exceptions=True)
        self._check_cancelled(cancel_event)

        groups = [
            DuplicateGroup(content_hash=h, objects=sorted(objs, key=lambda o: (o.bucket, o.key)))
            for h, objs in by_hash.items()
        ]
        groups.sort(key=lambda g: (-g.wasted_bytes, g.content_hash))
        return ScanResult(
            buckets=buckets,
            groups=groups,
            total_objects=len(listed),
            hashed_objects=hashed,
            skipped=skipped,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )

    def _list_bucket(self, bucket: str) -> list[ObjectInfo]:
        return list(self._storage.list_objects(bucket))

    def _hash_object(self, obj: ObjectInfo, should_stop: Callable[[], bool]) -> str:
        return hash_chunks(self._storage.iter_object_chunks(obj.bucket, obj.key, self._chunk_size), should_stop)

    @staticmethod
    def _check_cancelled(cancel_event: asyncio.Event) -> None:
        if cancel_event.is_set():
            raise ScanCancelledError("Scan cancelled")
