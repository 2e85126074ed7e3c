"""Audit logging: upload_file, duplicate_scan_started, delete_duplicates, force_delete_duplicate. Never log secrets."""
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import AuditEvent
from app.core.logging_redaction import mask_ip, redact_for_log, truncate_user_agent


async def log_audit(
    db: AsyncSession,
    user_id: UUID | None,
    event_type: str,
    event_data: dict | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
) -> None:
    safe_data = redact_for_log(event_data) if event_data else None
    event = AuditEvent(
        user_id=user_id,
        event_type=event_type,
        event_data=safe_data,
        ip=mask_ip(ip) if ip else None,
        user_agent=truncate_user_agent(user_agent) if user_agent else None,
    )
    db.add(event)
    await db.flush()
