"""FastAPI dependencies: DB, current user, admin gate, CSRF, cron secret, storage, dedup services."""
from uuid import UUID

from fastapi import Cookie, Header, Request, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.security import decode_access_token, verify_cron_secret, verify_csrf_token
from app.db import get_db, get_session_factory, User
from app.core.config import get_settings
from app.services.dedup import DedupService, ScanJobRegistry, scan_jobs
from app.services.duplicate_scan import DuplicateScanner
from app.services.reference_resolver import ReferenceResolver
from app.services.storage import StorageBackend, get_storage
from app.services.upload_validation import UploadLimits

settings = get_settings()


async def get_current_user_optional(
    request: Request,
    db: AsyncSession = Depends(get_db),
    cookie: str | None = Cookie(None, alias=settings.cookie_name),
) -> User | None:
    """Return current user if valid JWT in cookie; else None (no 401)."""
    token = cookie
    if not token:
        return None
    payload = decode_access_token(token)
    if not payload or "sub" not in payload:
        return None
    try:
        user_id = UUID(payload["sub"])
    except (ValueError, TypeError):
        return None
    result = await db.execute(
        select(User).where(
            User.id == user_id,
            User.is_active == True,  # noqa: E712
        )
    )
    user = result.scalar_one_or_none()
    if user is not None:
        request.state.user_id = user.id
    return user


async def get_current_user(
    request: Request,
    user: User | None = Depends(get_current_user_optional),
) -> User:
    """Require authenticated user; 401 if not."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user


def require_csrf(
    request: Request,
    csrf_cookie: str | None = Cookie(None, alias=settings.csrf_cookie_name),
    csrf_header: str | None = Header(None, alias=settings.csrf_header_name),
) -> None:
    """Validate CSRF for state-changing methods. Raise 403 if invalid."""
    if not verify_csrf_token(csrf_cookie, csrf_header):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing CSRF token",
        )


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Require admin role (uploads, duplicate scans, deletions, metrics)."""
    if user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return user


def require_cron_secret(authorization: str | None = Header(None)) -> None:
    if not verify_cron_secret(authorization):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


def require_metrics_access(
    request: Request,
    user: User | None = Depends(get_current_user_optional),
    x_metrics_secret: str | None = Header(None, alias="X-Metrics-Secret"),
) -> None:
    """Allow /metrics if: admin (when metrics_require_admin), or valid X-Metrics-Secret, or no guard (local)."""
    s = get_settings()
    if s.metrics_require_admin:
        if user is None or user.role != "admin":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Metrics require admin authentication",
            )
        return
    if s.metrics_secret:
        if x_metrics_secret != s.metrics_secret:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing X-Metrics-Secret",
            )
        return
    # No guard (e.g. local dev with metrics_require_admin=False and no secret)
    return


def get_storage_backend() -> StorageBackend:
    return get_storage()


def get_upload_limits() -> UploadLimits:
    return UploadLimits.from_settings(get_settings())


def get_duplicate_scanner(storage: StorageBackend = Depends(get_storage_backend)) -> DuplicateScanner:
    s = get_settings()
    return DuplicateScanner(
        storage,
        hash_workers=s.scan_hash_workers,
        timeout_seconds=s.scan_timeout_seconds,
        chunk_size=s.hash_chunk_size,
    )


def get_dedup_service(storage: StorageBackend = Depends(get_storage_backend)) -> DedupService:
    return DedupService(storage, ReferenceResolver(), delete_workers=get_settings().delete_workers)


def get_scan_registry() -> ScanJobRegistry:
    return scan_jobs


def get_background_session_factory() -> async_sessionmaker[AsyncSession]:
    return get_session_factory()
