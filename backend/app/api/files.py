"""Uploads: validate, key, store. Upload-time duplicate check against the latest scan. Admin-only."""
import asyncio
import logging
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.schemas import CheckDuplicateResponse, DuplicateFileEntry, UploadResponse
from app.core.config import get_settings
from app.core.deps import get_storage_backend, get_upload_limits, require_admin, require_csrf
from app.core.metrics import record_upload_validation
from app.core.rate_limit import is_upload_rate_limited
from app.db import get_db, DuplicateFile, User
from app.services.audit import log_audit
from app.services.av_scan import av_check
from app.services.dedup import get_latest_scan
from app.services.duplicate_scan import hash_bytes
from app.services.storage import StorageBackend, StorageError
from app.services.storage_paths import generate_storage_path
from app.services.upload_validation import (
    UploadCandidate,
    UploadLimits,
    effective_max_size,
    format_bytes,
    options_for_bucket,
    validate_upload,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/files", tags=["files"])


def _declared_mime(request: Request) -> str | None:
    raw = request.headers.get("content-type")
    if not raw:
        return None
    return raw.split(";", 1)[0].strip().lower() or None


async def _read_body(request: Request, limit: int) -> bytes | None:
    """Read the request body, giving up (None) as soon as it grows past limit bytes."""
    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > limit:
            return None
        chunks.append(chunk)
    return b"".join(chunks)


def _reject_oversize(bucket: str, filename: str, size: int | None, ceiling: int) -> NoReturn:
    record_upload_validation(bucket, False)
    logger.info("Rejected oversized upload to %s", bucket, extra={"bucket": bucket, "file_name": filename})
    if size is None:
        message = f"File size exceeds bucket limit ({format_bytes(ceiling)})"
    else:
        message = f"File size ({format_bytes(size)}) exceeds bucket limit ({format_bytes(ceiling)})"
    raise HTTPException(status_code=413, detail={"errors": [message], "warnings": []})


@router.put("/upload", response_model=UploadResponse, status_code=201, dependencies=[Depends(require_csrf)])
async def upload_file(
    request: Request,
    bucket: str = Query(..., min_length=1, max_length=64),
    filename: str = Query(..., max_length=1024),
    prefix: str | None = Query(None, max_length=256),
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    storage: StorageBackend = Depends(get_storage_backend),
    limits: UploadLimits = Depends(get_upload_limits),
):
    """PUT body = raw file bytes; declared MIME type from Content-Type."""
    if is_upload_rate_limited(str(user.id)):
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Too many requests")
    ceiling = effective_max_size(options_for_bucket(bucket), limits)
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > ceiling:
        _reject_oversize(bucket, filename, int(declared), ceiling)
    content = await _read_body(request, ceiling)
    if content is None:
        _reject_oversize(bucket, filename, None, ceiling)
    candidate = UploadCandidate.from_bytes(filename, _declared_mime(request), content)
    custom_check = av_check(content) if get_settings().enable_av_scan else None
    options = options_for_bucket(bucket, custom_check=custom_check)
    result = validate_upload(candidate, options, limits)
    record_upload_validation(bucket, result.is_valid)
    if not result.is_valid:
        logger.info(
            "Rejected upload to %s: %d errors", bucket, len(result.errors),
            extra={"bucket": bucket, "file_name": filename},
        )
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"errors": list(result.errors), "warnings": list(result.warnings)},
        )

    key = generate_storage_path(result.sanitized_name, bucket, extra_prefix=prefix)
    try:
        await asyncio.to_thread(storage.put_object, bucket, key, content, candidate.content_type)
    except StorageError as e:
        logger.error("Upload to %s failed: %s", bucket, e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Object store write failed")

    await log_audit(
        db,
        user.id,
        "upload_file",
        {"bucket": bucket, "object_key": key, "size": len(content), "detected_type": result.detected_type},
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return UploadResponse(
        bucket=bucket,
        object_key=key,
        sanitized_name=result.sanitized_name,
        detected_type=result.detected_type,
        size=len(content),
        warnings=list(result.warnings),
    )


@router.post("/check-duplicate", response_model=CheckDuplicateResponse, dependencies=[Depends(require_csrf)])
async def check_duplicate(
    request: Request,
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Hash the body and look it up in the latest completed scan."""
    content = await request.body()
    if not content:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Empty body")
    digest = await asyncio.to_thread(hash_bytes, content)
    scan = await get_latest_scan(db, completed_only=True)
    if scan is None:
        return CheckDuplicateResponse(content_hash=digest, is_duplicate=False)
    result = await db.execute(
        select(DuplicateFile)
        .where(DuplicateFile.scan_id == scan.id, DuplicateFile.file_hash == digest)
        .order_by(DuplicateFile.bucket_name, DuplicateFile.object_key)
    )
    matches = [DuplicateFileEntry.model_validate(f) for f in result.scalars().all()]
    return CheckDuplicateResponse(
        content_hash=digest,
        is_duplicate=bool(matches),
        scan_id=scan.id,
        matches=matches,
    )
