"""
Python client for the storage admin API: upload, start/poll duplicate scans, select and delete copies.
Authenticates with an access token cookie issued by the site; CSRF uses the double-submit cookie.
"""
import mimetypes
import secrets
import time
from pathlib import Path

import httpx

DUPLICATES = "/api/admin/storage/duplicates"
TERMINAL_STATUSES = ("completed", "failed", "cancelled")


class StorageAdminClient:
    """Client for the admin storage endpoints."""

    def __init__(
        self,
        base_url: str,
        token: str,
        cookie_name: str = "access_token",
        csrf_cookie_name: str = "csrf_token",
        csrf_header_name: str = "X-CSRF-Token",
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._cookie_name = cookie_name
        self._csrf_cookie_name = csrf_cookie_name
        self._csrf_header_name = csrf_header_name
        self._csrf_token = secrets.token_urlsafe(32)
        self._transport = transport
        self._session: httpx.Client | None = None

    def _get_session(self) -> httpx.Client:
        if self._session is None:
            self._session = httpx.Client(
                base_url=self.base_url,
                timeout=60.0,
                follow_redirects=True,
                transport=self._transport,
                cookies={self._cookie_name: self._token, self._csrf_cookie_name: self._csrf_token},
            )
        return self._session

    def _headers(self, content_type: str = "application/json") -> dict:
        return {"Content-Type": content_type, self._csrf_header_name: self._csrf_token}

    def _post(self, path: str, body: dict | None = None) -> dict:
        r = self._get_session().post(path, json=body or {}, headers=self._headers())
        r.raise_for_status()
        return r.json()

    def _get(self, path: str) -> dict:
        r = self._get_session().get(path)
        r.raise_for_status()
        return r.json()

    def upload(self, bucket: str, path: Path, prefix: str | None = None, max_retries: int = 3) -> dict:
        """PUT a local file. Validation rejections (422) are returned to the caller, not retried."""
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        params = {"bucket": bucket, "filename": path.name}
        if prefix:
            params["prefix"] = prefix
        body = path.read_bytes()
        for attempt in range(max_retries):
            try:
                r = self._get_session().put(
                    "/api/files/upload",
                    params=params,
                    content=body,
                    headers=self._headers(content_type),
                )
                if r.status_code == 422:
                    return {"rejected": True, **r.json()}
                r.raise_for_status()
                return r.json()
            except httpx.TransportError:
                if attempt == max_retries - 1:
                    raise
                backoff = (2**attempt) + (time.time() % 1)  # exponential backoff + jitter
                time.sleep(backoff)
        raise RuntimeError("unreachable")

    def start_scan(self, buckets: list[str] | None = None) -> dict:
        """Start a scan. Returns { scan_id, status, buckets }."""
        return self._post(f"{DUPLICATES}/scans", {"buckets": buckets} if buckets else None)

    def get_scan(self, scan_id: int | None = None) -> dict:
        """Scan detail; the latest scan when scan_id is None."""
        if scan_id is None:
            return self._get(f"{DUPLICATES}/scans/latest")
        return self._get(f"{DUPLICATES}/scans/{scan_id}")

    def wait_for_scan(self, scan_id: int, poll_interval: float = 2.0, timeout: float = 1800.0) -> dict:
        deadline = time.monotonic() + timeout
        while True:
            scan = self.get_scan(scan_id)
            if scan["status"] in TERMINAL_STATUSES:
                return scan
            if time.monotonic() >= deadline:
                raise TimeoutError(f"Scan {scan_id} still {scan['status']} after {timeout:g}s")
            time.sleep(poll_interval)

    def cancel_scan(self, scan_id: int) -> dict:
        return self._post(f"{DUPLICATES}/scans/{scan_id}/cancel")

    def select_non_referenced(self, scan_id: int, content_hash: str | None = None) -> list[int]:
        body = {"content_hash": content_hash} if content_hash else None
        return self._post(f"{DUPLICATES}/scans/{scan_id}/select-non-referenced", body)["file_ids"]

    def delete_files(self, scan_id: int, file_ids: list[int]) -> dict:
        """Bulk delete. Raises httpx.HTTPStatusError (409) if any file is still referenced."""
        return self._post(f"{DUPLICATES}/delete", {"scan_id": scan_id, "file_ids": file_ids})

    def force_delete(self, scan_id: int, file_id: int, object_key: str) -> dict:
        return self._post(
            f"{DUPLICATES}/files/{file_id}/force-delete",
            {"scan_id": scan_id, "confirm_object_key": object_key},
        )

    def close(self) -> None:
        if self._session:
            self._session.close()
            self._session = None

    def __enter__(self) -> "StorageAdminClient":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
