"""Scheduled duplicate scan. Authorized by Authorization: Bearer <CRON_SECRET>, not by session."""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.schemas import CronScanResponse
from app.core.config import get_settings
from app.core.deps import (
    get_background_session_factory,
    get_duplicate_scanner,
    get_scan_registry,
    require_cron_secret,
)
from app.db import get_db
from app.services.dedup import ScanJobRegistry, create_scan, run_duplicate_scan
from app.services.duplicate_scan import DuplicateScanner
from app.services.reference_resolver import ReferenceResolver

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/cron", tags=["cron"])


@router.get("/duplicate-scan", response_model=CronScanResponse, dependencies=[Depends(require_cron_secret)])
async def cron_duplicate_scan(
    db: AsyncSession = Depends(get_db),
    scanner: DuplicateScanner = Depends(get_duplicate_scanner),
    registry: ScanJobRegistry = Depends(get_scan_registry),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_background_session_factory),
):
    """Run a scan over the configured buckets inline and return its summary."""
    if registry.is_running():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A duplicate scan is already running")
    buckets = list(get_settings().scan_buckets)
    scan = await create_scan(db, buckets)
    await db.commit()
    scan_id = scan.id
    task = registry.start(
        scan_id,
        lambda cancel_event: run_duplicate_scan(
            session_factory, scanner, ReferenceResolver(), scan_id, buckets, cancel_event
        ),
    )
    final_status = await task
    await db.refresh(scan)
    logger.info("Cron duplicate scan %s finished: %s", scan_id, final_status)
    return CronScanResponse(
        scan_id=scan_id,
        status=scan.status,
        duplicate_group_count=scan.duplicate_groups,
        duplicate_file_count=scan.duplicate_files,
        wasted_bytes=scan.wasted_bytes,
        skipped_count=len(scan.skipped or []),
        error=scan.error,
    )
