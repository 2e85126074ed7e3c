"""Admin duplicate cleanup: start/cancel scans, review groups, select and delete copies."""
import logging
from collections import defaultdict

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.schemas import (
    DeleteDuplicatesRequest,
    DeletionFailureEntry,
    DeletionResponse,
    DuplicateFileEntry,
    DuplicateGroupEntry,
    ForceDeleteRequest,
    ScanDetail,
    SelectNonReferencedRequest,
    SelectNonReferencedResponse,
    SkippedEntry,
    StartScanRequest,
    StartScanResponse,
)
from app.core.config import get_settings
from app.core.deps import (
    get_background_session_factory,
    get_dedup_service,
    get_duplicate_scanner,
    get_scan_registry,
    require_admin,
    require_csrf,
)
from app.db import get_db, DuplicateFile, DuplicateScan, User
from app.services.audit import log_audit
from app.services.dedup import (
    DedupService,
    DeletionReport,
    ReferencedFileError,
    ScanJobRegistry,
    ScanNotFoundError,
    ScanNotReadyError,
    create_scan,
    get_latest_scan,
    get_scan,
    list_scan_files,
    run_duplicate_scan,
)
from app.services.duplicate_scan import DuplicateScanner
from app.services.reference_resolver import ReferenceResolver
from app.services.upload_validation import format_bytes

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/storage/duplicates", tags=["duplicates"])


def _http_error(exc: ScanNotFoundError | ScanNotReadyError | ReferencedFileError) -> HTTPException:
    if isinstance(exc, ScanNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Scan not found")
    if isinstance(exc, ScanNotReadyError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={"message": str(exc), "files": [f.to_dict() for f in exc.files]},
    )


def _known_buckets() -> set[str]:
    s = get_settings()
    return set(s.upload_limits_mb) | set(s.bucket_display_names) | set(s.bucket_names) | set(s.scan_buckets)


def scan_detail(scan: DuplicateScan, files: list[DuplicateFile]) -> ScanDetail:
    by_hash: dict[str, list[DuplicateFile]] = defaultdict(list)
    for f in files:
        by_hash[f.file_hash].append(f)
    groups = []
    for content_hash, members in by_hash.items():
        size = members[0].file_size
        groups.append(
            DuplicateGroupEntry(
                content_hash=content_hash,
                file_size=size,
                count=len(members),
                wasted_bytes=(len(members) - 1) * size,
                files=[DuplicateFileEntry.model_validate(f) for f in members],
            )
        )
    groups.sort(key=lambda g: (-g.wasted_bytes, g.content_hash))
    return ScanDetail(
        scan_id=scan.id,
        status=scan.status,
        buckets=list(scan.buckets or []),
        started_at=scan.started_at,
        finished_at=scan.finished_at,
        error=scan.error,
        total_objects=scan.total_objects,
        hashed_objects=scan.hashed_objects,
        duplicate_group_count=scan.duplicate_groups,
        duplicate_file_count=scan.duplicate_files,
        wasted_bytes=scan.wasted_bytes,
        wasted_display=format_bytes(scan.wasted_bytes),
        skipped=[SkippedEntry(**s) for s in (scan.skipped or [])],
        groups=groups,
    )


def _deletion_response(scan_id: int, report: DeletionReport) -> DeletionResponse:
    return DeletionResponse(
        scan_id=scan_id,
        requested=report.requested,
        deleted_count=report.deleted_count,
        deleted_ids=report.deleted_ids,
        failures=[DeletionFailureEntry(**f.to_dict()) for f in report.failures],
        message=report.message,
    )


@router.post("/scans", response_model=StartScanResponse, status_code=202, dependencies=[Depends(require_csrf)])
async def start_scan(
    request: Request,
    body: StartScanRequest | None = None,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    scanner: DuplicateScanner = Depends(get_duplicate_scanner),
    registry: ScanJobRegistry = Depends(get_scan_registry),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_background_session_factory),
):
    """Start a background scan. Only one scan runs at a time."""
    buckets = (body.buckets if body and body.buckets else None) or list(get_settings().scan_buckets)
    unknown = sorted(set(buckets) - _known_buckets())
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown buckets: {', '.join(unknown)}",
        )
    if registry.is_running():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A duplicate scan is already running")
    scan = await create_scan(db, buckets, user_id=user.id)
    await log_audit(
        db,
        user.id,
        "duplicate_scan_started",
        {"scan_id": scan.id, "buckets": buckets},
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    # the job reads the row from its own session
    await db.commit()
    scan_id = scan.id
    resolver = ReferenceResolver()
    registry.start(
        scan_id,
        lambda cancel_event: run_duplicate_scan(session_factory, scanner, resolver, scan_id, buckets, cancel_event),
    )
    logger.info("Started duplicate scan %s over %s", scan_id, ",".join(buckets))
    return StartScanResponse(scan_id=scan_id, status=scan.status, buckets=buckets)


@router.get("/scans/latest", response_model=ScanDetail)
async def latest_scan(
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    scan = await get_latest_scan(db)
    if scan is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No scans yet")
    return scan_detail(scan, await list_scan_files(db, scan.id))


@router.get("/scans/{scan_id}", response_model=ScanDetail)
async def read_scan(
    scan_id: int,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        scan = await get_scan(db, scan_id)
    except ScanNotFoundError as e:
        raise _http_error(e)
    return scan_detail(scan, await list_scan_files(db, scan.id))


@router.post("/scans/{scan_id}/cancel", status_code=202, dependencies=[Depends(require_csrf)])
async def cancel_scan(
    scan_id: int,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    registry: ScanJobRegistry = Depends(get_scan_registry),
):
    try:
        await get_scan(db, scan_id)
    except ScanNotFoundError as e:
        raise _http_error(e)
    if not registry.cancel(scan_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Scan is not running")
    return {"scan_id": scan_id, "status": "cancelling"}


@router.post(
    "/scans/{scan_id}/select-non-referenced",
    response_model=SelectNonReferencedResponse,
    dependencies=[Depends(require_csrf)],
)
async def select_non_referenced(
    scan_id: int,
    body: SelectNonReferencedRequest | None = None,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: DedupService = Depends(get_dedup_service),
):
    """Ids of every copy with no database reference (within one group when content_hash is given)."""
    content_hash = body.content_hash if body else None
    try:
        ids = await service.select_non_referenced(db, scan_id, content_hash)
    except (ScanNotFoundError, ScanNotReadyError) as e:
        raise _http_error(e)
    return SelectNonReferencedResponse(scan_id=scan_id, content_hash=content_hash, file_ids=ids)


@router.post("/delete", response_model=DeletionResponse, dependencies=[Depends(require_csrf)])
async def delete_duplicates(
    request: Request,
    body: DeleteDuplicatesRequest,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: DedupService = Depends(get_dedup_service),
):
    """Bulk delete. Referenced files are refused; use force-delete for those."""
    try:
        report = await service.delete_files(db, body.scan_id, body.file_ids)
    except (ScanNotFoundError, ScanNotReadyError, ReferencedFileError) as e:
        raise _http_error(e)
    await log_audit(
        db,
        user.id,
        "delete_duplicates",
        {
            "scan_id": body.scan_id,
            "requested": report.requested,
            "deleted_ids": report.deleted_ids,
            "failed_ids": [f.file_id for f in report.failures],
        },
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return _deletion_response(body.scan_id, report)


@router.post("/files/{file_id}/force-delete", response_model=DeletionResponse, dependencies=[Depends(require_csrf)])
async def force_delete_file(
    file_id: int,
    request: Request,
    body: ForceDeleteRequest,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    service: DedupService = Depends(get_dedup_service),
):
    """Delete a single file even if referenced. The caller must echo its object key."""
    row = await db.get(DuplicateFile, file_id)
    if row is None or row.scan_id != body.scan_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found in scan")
    if body.confirm_object_key != row.object_key:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="confirm_object_key does not match the file's object key",
        )
    object_key = row.object_key
    try:
        report = await service.delete_files(db, body.scan_id, [file_id], confirmed_ids=frozenset({file_id}))
    except (ScanNotFoundError, ScanNotReadyError) as e:
        raise _http_error(e)
    await log_audit(
        db,
        user.id,
        "force_delete_duplicate",
        {"scan_id": body.scan_id, "file_id": file_id, "object_key": object_key, "deleted": report.deleted_count == 1},
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return _deletion_response(body.scan_id, report)
