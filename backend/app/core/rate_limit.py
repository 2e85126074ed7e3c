"""Simple in-memory rate limit for uploads. Dev-friendly; use WAF/API Gateway in prod for scale."""
import time
from collections import defaultdict

from app.core.config import get_settings

_buckets: dict[str, list[float]] = defaultdict(list)
_window = 60.0


def _check_limit(identifier: str, limit_per_minute: int) -> bool:
    now = time.monotonic()
    bucket = _buckets[identifier]
    bucket[:] = [t for t in bucket if now - t < _window]
    if len(bucket) >= limit_per_minute:
        return True
    bucket.append(now)
    return False


def is_upload_rate_limited(identifier: str) -> bool:
    """Per-user (or IP) limit for the upload endpoint."""
    return _check_limit(f"upload:{identifier}", get_settings().upload_rate_limit_per_minute)


def reset_rate_limits() -> None:
    _buckets.clear()
