"""Antivirus hook for uploads, plugged into validation as a custom check.

scan_upload is a placeholder: it accepts every body until a real scanner (ClamAV daemon,
S3 Object Lambda or similar) is wired in. Until then ENABLE_AV_SCAN only exercises the hook;
it does not detect malware. Pass a scanner to av_check to plug one in.
"""
from __future__ import annotations

import logging
from collections.abc import Callable

from app.services.upload_validation import CustomCheck, UploadCandidate

logger = logging.getLogger(__name__)

Scanner = Callable[[bytes, str], bool]


def scan_upload(content: bytes, content_type: str) -> bool:
    """Placeholder scanner. Always True (safe); no scanning happens here."""
    logger.debug("No antivirus scanner configured; accepting %d bytes of %s", len(content), content_type or "unknown")
    return True


def av_check(content: bytes, scanner: Scanner | None = None) -> CustomCheck:
    """Custom check over the full upload body (validation itself only sees the leading bytes).

    scanner returns True when the body is safe; defaults to scan_upload.
    """

    def check(candidate: UploadCandidate) -> list[str]:
        scan = scanner or scan_upload
        if scan(content, candidate.content_type or ""):
            return []
        return ["File did not pass security scan"]

    return check
