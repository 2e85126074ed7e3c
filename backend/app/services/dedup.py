"""Two-phase duplicate cleanup: persist a scan, then delete only files from that scan.

A scan run is stored as a DuplicateScan row with one DuplicateFile row per member of a
duplicate group. Deletion requests name a scan id and file ids from it. Before anything
is deleted the reference annotations are refreshed from the database and every object is
re-checked in the store, since either may have changed since the scan.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core import metrics
from app.db.models import DuplicateFile, DuplicateScan
from app.services.duplicate_scan import (
    DuplicateScanner,
    ScanCancelledError,
    ScanFailedError,
    ScanResult,
    ScanTimeoutError,
)
from app.services.reference_resolver import ReferenceResolver
from app.services.storage import StorageBackend

logger = logging.getLogger(__name__)

SCAN_RUNNING = "running"
SCAN_COMPLETED = "completed"
SCAN_FAILED = "failed"
SCAN_CANCELLED = "cancelled"


class ScanNotFoundError(Exception):
    pass


class ScanNotReadyError(Exception):
    """The scan has not completed, so its file list cannot be acted on."""


@dataclass(frozen=True)
class ReferencedFile:
    file_id: int
    bucket: str
    object_key: str
    db_reference: str
    db_uuid: str | None

    def to_dict(self) -> dict:
        return {
            "file_id": self.file_id,
            "bucket": self.bucket,
            "object_key": self.object_key,
            "db_reference": self.db_reference,
            "db_uuid": self.db_uuid,
        }


class ReferencedFileError(Exception):
    """Raised before any deletion when a requested file is still referenced by the site."""

    def __init__(self, files: Sequence[ReferencedFile]) -> None:
        self.files = list(files)
        super().__init__(
            f"{len(self.files)} selected file(s) are still referenced in the database; "
            "delete them individually with explicit confirmation"
        )


@dataclass(frozen=True)
class DeletionFailure:
    file_id: int
    reason: str
    bucket: str | None = None
    object_key: str | None = None

    def to_dict(self) -> dict:
        return {
            "file_id": self.file_id,
            "bucket": self.bucket,
            "object_key": self.object_key,
            "reason": self.reason,
        }


@dataclass
class DeletionReport:
    requested: int
    deleted_ids: list[int] = field(default_factory=list)
    failures: list[DeletionFailure] = field(default_factory=list)

    @property
    def deleted_count(self) -> int:
        return len(self.deleted_ids)

    @property
    def message(self) -> str:
        return f"Deleted {self.deleted_count} of {self.requested} selected files; {len(self.failures)} failed"


def non_referenced_ids(files: Iterable[DuplicateFile], group_hash: str | None = None) -> list[int]:
    """Ids of files with no reference annotation, optionally limited to one group."""
    return sorted(
        f.id
        for f in files
        if f.db_reference is None and (group_hash is None or f.file_hash == group_hash)
    )


# ----- Scan jobs -----


async def run_duplicate_scan(
    session_factory: async_sessionmaker[AsyncSession],
    scanner: DuplicateScanner,
    resolver: ReferenceResolver,
    scan_id: int,
    buckets: Sequence[str],
    cancel_event: asyncio.Event | None = None,
) -> str:
    """Run a scan for an existing DuplicateScan row and persist its outcome. Returns the final status."""
    try:
        result = await scanner.scan(buckets, cancel_event)
    except ScanCancelledError:
        logger.info("Duplicate scan %s cancelled", scan_id)
        await _finish_scan(session_factory, scan_id, SCAN_CANCELLED, error="Scan cancelled")
        return SCAN_CANCELLED
    except ScanTimeoutError as e:
        logger.warning("Duplicate scan %s timed out: %s", scan_id, e)
        await _finish_scan(session_factory, scan_id, SCAN_FAILED, error=str(e))
        return SCAN_FAILED
    except ScanFailedError as e:
        logger.error("Duplicate scan %s failed: %s", scan_id, e)
        await _finish_scan(session_factory, scan_id, SCAN_FAILED, error=str(e))
        return SCAN_FAILED
    except Exception as e:
        logger.exception("Duplicate scan %s crashed", scan_id)
        await _finish_scan(session_factory, scan_id, SCAN_FAILED, error=f"Unexpected error: {type(e).__name__}")
        return SCAN_FAILED

    try:
        await _persist_result(session_factory, resolver, scan_id, result)
    except Exception as e:
        logger.exception("Duplicate scan %s could not be saved", scan_id)
        metrics.record_scan("failed", (result.finished_at - result.started_at).total_seconds())
        await _finish_scan(session_factory, scan_id, SCAN_FAILED, error=f"Saving results failed: {type(e).__name__}")
        return SCAN_FAILED
    logger.info(
        "Duplicate scan %s completed: %d groups, %d bytes reclaimable, %d skipped",
        scan_id, len(result.duplicate_groups()), result.total_wasted_bytes, len(result.skipped),
    )
    return SCAN_COMPLETED


async def _persist_result(
    session_factory: async_sessionmaker[AsyncSession],
    resolver: ReferenceResolver,
    scan_id: int,
    result: ScanResult,
) -> None:
    async with session_factory() as db:
        groups = result.duplicate_groups()
        keys = [obj.key for g in groups for obj in g.objects]
        annotations = await resolver.annotate(db, keys)
        for group in groups:
            for obj in group.objects:
                annotation = annotations.get(obj.key)
                db.add(
                    DuplicateFile(
                        scan_id=scan_id,
                        file_hash=obj.content_hash,
                        file_name=obj.file_name,
                        bucket_name=obj.bucket,
                        object_key=obj.key,
                        file_size=obj.size,
                        last_modified=obj.last_modified,
                        db_reference=annotation.table.value if annotation else None,
                        db_uuid=annotation.uuid if annotation else None,
                    )
                )
        scan = await db.get(DuplicateScan, scan_id)
        _apply_result(scan, result)
        await db.commit()


def _apply_result(scan: DuplicateScan, result: ScanResult) -> None:
    groups = result.duplicate_groups()
    scan.status = SCAN_COMPLETED
    scan.total_objects = result.total_objects
    scan.hashed_objects = result.hashed_objects
    scan.duplicate_groups = len(groups)
    scan.duplicate_files = sum(len(g.objects) for g in groups)
    scan.wasted_bytes = result.total_wasted_bytes
    scan.skipped = [s.to_dict() for s in result.skipped]
    scan.finished_at = result.finished_at


async def _finish_scan(
    session_factory: async_sessionmaker[AsyncSession], scan_id: int, status: str, error: str | None = None
) -> None:
    async with session_factory() as db:
        scan = await db.get(DuplicateScan, scan_id)
        if scan is None:
            return
        scan.status = status
        scan.error = error
        scan.finished_at = datetime.now(timezone.utc)
        await db.commit()


class ScanJobRegistry:
    """In-process registry of running scan tasks and their cancel events."""

    def __init__(self) -> None:
        self._jobs: dict[int, tuple[asyncio.Task, asyncio.Event]] = {}

    def is_running(self, scan_id: int | None = None) -> bool:
        if scan_id is None:
            return any(not task.done() for task, _ in self._jobs.values())
        job = self._jobs.get(scan_id)
        return job is not None and not job[0].done()

    def start(self, scan_id: int, job: Callable[[asyncio.Event], Awaitable[str]]) -> asyncio.Task:
        if self.is_running(scan_id):
            raise RuntimeError(f"Scan {scan_id} is already running")
        cancel_event = asyncio.Event()
        task = asyncio.create_task(job(cancel_event), name=f"duplicate-scan-{scan_id}")
        self._jobs[scan_id] = (task, cancel_event)
        task.add_done_callback(lambda t: self._jobs.pop(scan_id, None))
        return task

    def cancel(self, scan_id: int) -> bool:
        job = self._jobs.get(scan_id)
        if job is None or job[0].done():
            return False
        job[1].set()
        return True

    async def wait(self, scan_id: int, timeout: float | None = None) -> str | None:
        job = self._jobs.get(scan_id)
        if job is None:
            return None
        return await asyncio.wait_for(asyncio.shield(job[0]), timeout)


scan_jobs = ScanJobRegistry()


async def create_scan(db: AsyncSession, buckets: Sequence[str], user_id=None) -> DuplicateScan:
    scan = DuplicateScan(status=SCAN_RUNNING, buckets=list(buckets), triggered_by_user_id=user_id)
    db.add(scan)
    await db.flush()
    return scan


async def get_scan(db: AsyncSession, scan_id: int) -> DuplicateScan:
    scan = await db.get(DuplicateScan, scan_id)
    if scan is None:
        raise ScanNotFoundError(f"Scan {scan_id} not found")
    return scan


async def get_latest_scan(db: AsyncSession, completed_only: bool = False) -> DuplicateScan | None:
    stmt = select(DuplicateScan).order_by(DuplicateScan.id.desc()).limit(1)
    if completed_only:
        stmt = stmt.where(DuplicateScan.status == SCAN_COMPLETED)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_scan_files(db: AsyncSession, scan_id: int) -> list[DuplicateFile]:
    result = await db.execute(
        select(DuplicateFile)
        .where(DuplicateFile.scan_id == scan_id)
        .order_by(DuplicateFile.file_hash, DuplicateFile.bucket_name, DuplicateFile.object_key)
    )
    return list(result.scalars().all())


# ----- Selection and deletion -----


class DedupService:
    def __init__(
        self,
        storage: StorageBackend,
        resolver: ReferenceResolver | None = None,
        delete_workers: int = 4,
    ) -> None:
        self._storage = storage
        self._resolver = resolver or ReferenceResolver()
        self._delete_workers = max(delete_workers, 1)

    async def _completed_scan(self, db: AsyncSession, scan_id: int) -> DuplicateScan:
        scan = await get_scan(db, scan_id)
        if scan.status != SCAN_COMPLETED:
            raise ScanNotReadyError(f"Scan {scan_id} is {scan.status}")
        return scan

    async def refresh_references(self, db: AsyncSession, files: Sequence[DuplicateFile]) -> None:
        """Re-resolve references for the given rows and store the fresh annotations."""
        annotations = await self._resolver.annotate(db, [f.object_key for f in files])
        for f in files:
            annotation = annotations.get(f.object_key)
            f.db_reference = annotation.table.value if annotation else None
            f.db_uuid = annotation.uuid if annotation else None
        await db.flush()

    async def select_non_referenced(self, db: AsyncSession, scan_id: int, group_hash: str | None = None) -> list[int]:
        await self._completed_scan(db, scan_id)
        files = await list_scan_files(db, scan_id)
        if group_hash is not None:
            files = [f for f in files if f.file_hash == group_hash]
        await self.refresh_references(db, files)
        return non_referenced_ids(files, group_hash)

    async def delete_files(
        self,
        db: AsyncSession,
        scan_id: int,
        file_ids: Sequence[int],
        confirmed_ids: frozenset[int] = frozenset(),
    ) -> DeletionReport:
        """Delete the given files of a completed scan.

        Raises ReferencedFileError, before touching the store, if any requested file is
        referenced and its id is not in confirmed_ids. Per-object failures are collected
        in the report; successful deletions are never rolled back.
        """
        await self._completed_scan(db, scan_id)
        requested = list(dict.fromkeys(file_ids))
        report = DeletionReport(requested=len(requested))
        if not requested:
            return report

        result = await db.execute(
            select(DuplicateFile).where(DuplicateFile.scan_id == scan_id, DuplicateFile.id.in_(requested))
        )
        rows = {f.id: f for f in result.scalars().all()}
        for file_id in requested:
            if file_id not in rows:
                report.failures.append(DeletionFailure(file_id=file_id, reason=f"File is not part of scan {scan_id}"))
        files = [rows[i] for i in requested if i in rows]

        await self.refresh_references(db, files)
        violations = [
            ReferencedFile(
                file_id=f.id,
                bucket=f.bucket_name,
                object_key=f.object_key,
                db_reference=f.db_reference,
                db_uuid=f.db_uuid,
            )
            for f in files
            if f.db_reference is not None and f.id not in confirmed_ids
        ]
        if violations:
            metrics.record_deletion("refused", len(violations))
            logger.warning(
                "Refused deletion of %d referenced files from scan %s", len(violations), scan_id,
                extra={"scan_id": scan_id},
            )
            raise ReferencedFileError(violations)

        semaphore = asyncio.Semaphore(self._delete_workers)

        async def delete_one(f: DuplicateFile) -> DeletionFailure | None:
            async with semaphore:
                try:
                    await asyncio.to_thread(self._storage.head_object, f.bucket_name, f.object_key)
                except FileNotFoundError:
                    return DeletionFailure(f.id, "Object no longer exists", f.bucket_name, f.object_key)
                except Exception as e:
                    return DeletionFailure(f.id, f"Could not verify object: {e}", f.bucket_name, f.object_key)
                try:
                    await asyncio.to_thread(self._storage.delete_object, f.bucket_name, f.object_key)
                except Exception as e:
                    return DeletionFailure(f.id, str(e) or type(e).__name__, f.bucket_name, f.object_key)
                return None

        outcomes = await asyncio.gather(*(delete_one(f) for f in files))
        for f, failure in zip(files, outcomes):
            if failure is None:
                report.deleted_ids.append(f.id)
            else:
                logger.warning(
                    "Failed to delete %s/%s: %s", f.bucket_name, f.object_key, failure.reason,
                    extra={"scan_id": scan_id},
                )
                report.failures.append(failure)

        if report.deleted_ids:
            await db.execute(delete(DuplicateFile).where(DuplicateFile.id.in_(report.deleted_ids)))
            await db.flush()
        metrics.record_deletion("deleted", report.deleted_count)
        metrics.record_deletion("failed", len(report.failures))
        logger.info(report.message, extra={"scan_id": scan_id})
        return report
