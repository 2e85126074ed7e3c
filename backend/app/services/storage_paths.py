"""Object keys for new uploads: day-partitioned, randomised, still traceable by filename."""
import secrets
from datetime import datetime, timezone

from app.services.upload_validation import sanitize_filename

TOKEN_BYTES = 8  # 64 bits per key


def generate_storage_path(
    file_name: str,
    bucket: str,
    user_id: str | None = None,
    extra_prefix: str | None = None,
    *,
    now: datetime | None = None,
) -> str:
    """[extra_prefix/][users/{user_id}/]{YYYY-MM-DD}/{token}/{sanitized name}.

    bucket is where the object will be written; it is not part of the key.
    """
    if not bucket:
        raise ValueError("bucket is required")
    safe_name = sanitize_filename(file_name) or "upload"
    stamp = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).strftime("%Y-%m-%d")
    parts = []
    if extra_prefix:
        # each prefix segment is sanitized like a filename, so no segment can be ".."
        parts.extend(s for s in (sanitize_filename(seg) for seg in extra_prefix.split("/")) if s)
    if user_id:
        parts.extend(["users", sanitize_filename(str(user_id)) or "anonymous"])
    parts.extend([stamp, secrets.token_hex(TOKEN_BYTES), safe_name])
    return "/".join(parts)
