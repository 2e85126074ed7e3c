"""Upload endpoint and upload-time duplicate check."""
import hashlib
import re

from sqlalchemy import select

from app.core.config import get_settings
from app.core.deps import get_upload_limits
from app.db.models import AuditEvent
from app.db.session import async_session_factory
from app.main import app
from app.services.upload_validation import UploadLimits
from conftest import CSRF, login_as

PNG = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR" + b"\x00" * 512
JPEG = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01" + b"\x00" * 512
PE = b"MZ\x90\x00\x03\x00\x00\x00\x04\x00\x00\x00\xff\xff\x00\x00" + b"\x00" * 512


async def _upload(client, body, filename, bucket="image", content_type="image/png", **params):
    return await client.put(
        "/api/files/upload",
        params={"bucket": bucket, "filename": filename, **params},
        content=body,
        headers={"Content-Type": content_type},
    )


async def test_upload_stores_under_generated_key(admin_client, storage):
    r = await _upload(admin_client, PNG, "My Photo!!.PNG")
    assert r.status_code == 201, r.text
    data = r.json()
    assert data["sanitized_name"] == "my_photo.png"
    assert data["detected_type"] == "image"
    assert data["size"] == len(PNG)
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}/[0-9a-f]{16}/my_photo\.png", data["object_key"])
    assert b"".join(storage.iter_object_chunks("image", data["object_key"], 4096)) == PNG

    async with async_session_factory() as s:
        events = (await s.execute(select(AuditEvent))).scalars().all()
    assert [e.event_type for e in events] == ["upload_file"]
    assert events[0].event_data["object_key"] == data["object_key"]


async def test_upload_with_prefix(admin_client):
    r = await _upload(admin_client, JPEG, "cover.jpg", bucket="custom", content_type="image/jpeg", prefix="galleries/travel")
    assert r.status_code == 201, r.text
    assert r.json()["object_key"].startswith("galleries/travel/")


async def test_executable_disguised_as_image_is_rejected(admin_client, storage):
    r = await _upload(admin_client, PE, "photo.png")
    assert r.status_code == 422
    errors = r.json()["detail"]["errors"]
    assert any("suspicious" in e.lower() or "match" in e.lower() for e in errors)
    assert list(storage.list_objects("image")) == []


async def test_dangerous_extension_is_rejected(admin_client):
    r = await _upload(admin_client, JPEG, "shell.php", content_type="image/jpeg")
    assert r.status_code == 422
    assert 'File type ".php" is not allowed for security reasons' in r.json()["detail"]["errors"]


async def test_document_rejected_from_image_bucket(admin_client):
    r = await _upload(admin_client, b"%PDF-1.7\n" + b"0" * 100, "cv.pdf", content_type="application/pdf")
    assert r.status_code == 422
    r = await _upload(admin_client, b"%PDF-1.7\n" + b"0" * 100, "cv.pdf", bucket="files", content_type="application/pdf")
    assert r.status_code == 201, r.text


async def test_empty_upload_is_rejected(admin_client):
    r = await _upload(admin_client, b"", "a.png")
    assert r.status_code == 422
    assert "Empty files are not allowed" in r.json()["detail"]["errors"]


async def test_upload_requires_admin(client, viewer_user):
    login_as(client, viewer_user)
    r = await _upload(client, PNG, "a.png")
    assert r.status_code == 403


async def test_upload_requires_auth(client):
    client.cookies.set(get_settings().csrf_cookie_name, CSRF)
    client.headers[get_settings().csrf_header_name] = CSRF
    r = await _upload(client, PNG, "a.png")
    assert r.status_code == 401


async def test_upload_requires_csrf(admin_client):
    del admin_client.headers[get_settings().csrf_header_name]
    r = await _upload(admin_client, PNG, "a.png")
    assert r.status_code == 403


async def test_upload_rate_limit(admin_client, monkeypatch):
    monkeypatch.setattr(get_settings(), "upload_rate_limit_per_minute", 2)
    codes = [(await _upload(admin_client, PNG, f"{i}.png")).status_code for i in range(3)]
    assert codes == [201, 201, 429]


async def test_check_duplicate_without_scan(admin_client):
    r = await admin_client.post("/api/files/check-duplicate", content=PNG)
    assert r.status_code == 200
    data = r.json()
    assert data["content_hash"] == hashlib.sha256(PNG).hexdigest()
    assert data["is_duplicate"] is False
    assert data["scan_id"] is None


async def test_check_duplicate_against_latest_scan(admin_client, registry):
    first = (await _upload(admin_client, PNG, "a.png")).json()["object_key"]
    second = (await _upload(admin_client, PNG, "b.png")).json()["object_key"]
    r = await admin_client.post("/api/admin/storage/duplicates/scans", json={"buckets": ["image"]})
    scan_id = r.json()["scan_id"]
    assert await registry.wait(scan_id, timeout=10) == "completed"

    r = await admin_client.post("/api/files/check-duplicate", content=PNG)
    data = r.json()
    assert data["is_duplicate"] is True
    assert data["scan_id"] == scan_id
    assert sorted(m["object_key"] for m in data["matches"]) == sorted([first, second])

    r = await admin_client.post("/api/files/check-duplicate", content=JPEG)
    assert r.json()["is_duplicate"] is False


async def test_check_duplicate_empty_body(admin_client):
    r = await admin_client.post("/api/files/check-duplicate", content=b"")
    assert r.status_code == 422


async def test_oversized_upload_is_refused_before_buffering(admin_client, storage):
    app.dependency_overrides[get_upload_limits] = lambda: UploadLimits(per_bucket={"image": 1024})
    assert (await _upload(admin_client, PNG, "small.png")).status_code == 201

    r = await _upload(admin_client, PNG + b"\x00" * 1024, "big.png")
    assert r.status_code == 413
    assert r.json()["detail"]["errors"] == ["File size (1.52 KB) exceeds bucket limit (1 KB)"]

    async def chunked():
        for _ in range(4):
            yield PNG

    r = await admin_client.put(
        "/api/files/upload",
        params={"bucket": "image", "filename": "streamed.png"},
        content=chunked(),
        headers={"Content-Type": "image/png"},
    )
    assert r.status_code == 413
    assert r.json()["detail"]["errors"] == ["File size exceeds bucket limit (1 KB)"]
    assert len(list(storage.list_objects("image"))) == 1
