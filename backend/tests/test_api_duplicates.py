"""Duplicate cleanup API: scan lifecycle, selection, guarded deletion, cron trigger."""
import asyncio

import pytest

from app.db.models import Gallery, GalleryImage
from app.services.dedup import create_scan
from conftest import login_as

BASE = "/api/admin/storage/duplicates"
MB = 1024 * 1024
PHOTO = b"\xff\xd8\xff\xe0" + b"\x11" * (MB - 4)
KEYS = ("2024-01-01/aaaa/photo.jpg", "2024-02-01/bbbb/photo_copy.jpg", "2024-03-01/cccc/photo_2.jpg")


@pytest.fixture
async def site(db, storage):
    """Three copies of one photo in the custom bucket; a gallery uses the first."""
    for key in KEYS:
        storage.put_object("custom", key, PHOTO)
    storage.put_object("custom", "unique/other.jpg", b"\xff\xd8\xff\xe0unique")
    gallery = Gallery(title="Travel", slug="travel")
    db.add(gallery)
    await db.flush()
    db.add(GalleryImage(
        gallery_id=gallery.id,
        uuid="1f6b2c48-93d4-4d0a-8f64-5a1e7f0c2d33",
        file_name="photo.jpg",
        file_url="/custom/photo.jpg",
        name="Photo",
    ))
    await db.commit()
    return storage


async def _completed_scan(client, registry, buckets=("custom",)) -> dict:
    r = await client.post(f"{BASE}/scans", json={"buckets": list(buckets)})
    assert r.status_code == 202, r.text
    scan_id = r.json()["scan_id"]
    assert r.json()["status"] == "running"
    assert await registry.wait(scan_id, timeout=10) == "completed"
    r = await client.get(f"{BASE}/scans/{scan_id}")
    assert r.status_code == 200
    return r.json()


def _ids_by_key(scan: dict) -> dict[str, int]:
    return {f["object_key"]: f["id"] for g in scan["groups"] for f in g["files"]}


async def test_scan_reports_groups_and_wasted_bytes(admin_client, registry, site):
    scan = await _completed_scan(admin_client, registry)
    assert scan["status"] == "completed"
    assert scan["total_objects"] == 4
    assert scan["duplicate_group_count"] == 1
    assert scan["duplicate_file_count"] == 3
    assert scan["wasted_bytes"] == 2 * MB
    (group,) = scan["groups"]
    assert group["count"] == 3
    assert group["file_size"] == MB
    refs = {f["object_key"]: f["db_reference"] for f in group["files"]}
    assert refs == {KEYS[0]: "gallery_images", KEYS[1]: None, KEYS[2]: None}

    latest = await admin_client.get(f"{BASE}/scans/latest")
    assert latest.json()["scan_id"] == scan["scan_id"]


async def test_select_then_delete_non_referenced(admin_client, registry, site):
    scan = await _completed_scan(admin_client, registry)
    ids = _ids_by_key(scan)
    r = await admin_client.post(f"{BASE}/scans/{scan['scan_id']}/select-non-referenced", json={})
    assert r.status_code == 200
    selected = r.json()["file_ids"]
    assert sorted(selected) == sorted([ids[KEYS[1]], ids[KEYS[2]]])

    r = await admin_client.post(f"{BASE}/delete", json={"scan_id": scan["scan_id"], "file_ids": selected})
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["deleted_count"] == 2
    assert data["failures"] == []
    assert data["message"] == "Deleted 2 of 2 selected files; 0 failed"
    assert [o.key for o in site.list_objects("custom")] == [KEYS[0], "unique/other.jpg"]

    after = (await admin_client.get(f"{BASE}/scans/{scan['scan_id']}")).json()
    assert list(_ids_by_key(after)) == [KEYS[0]]


async def test_bulk_delete_with_referenced_file_is_refused(admin_client, registry, site):
    scan = await _completed_scan(admin_client, registry)
    ids = _ids_by_key(scan)
    r = await admin_client.post(f"{BASE}/delete", json={"scan_id": scan["scan_id"], "file_ids": list(ids.values())})
    assert r.status_code == 409
    detail = r.json()["detail"]
    assert [f["object_key"] for f in detail["files"]] == [KEYS[0]]
    assert len(list(site.list_objects("custom"))) == 4


async def test_force_delete_requires_matching_key(admin_client, registry, site):
    scan = await _completed_scan(admin_client, registry)
    file_id = _ids_by_key(scan)[KEYS[0]]
    url = f"{BASE}/files/{file_id}/force-delete"

    r = await admin_client.post(url, json={"scan_id": scan["scan_id"], "confirm_object_key": KEYS[1]})
    assert r.status_code == 422
    r = await admin_client.post(url, json={"scan_id": scan["scan_id"] + 1, "confirm_object_key": KEYS[0]})
    assert r.status_code == 404

    r = await admin_client.post(url, json={"scan_id": scan["scan_id"], "confirm_object_key": KEYS[0]})
    assert r.status_code == 200, r.text
    assert r.json()["deleted_ids"] == [file_id]
    with pytest.raises(FileNotFoundError):
        site.head_object("custom", KEYS[0])


async def test_delete_reports_vanished_objects(admin_client, registry, site):
    scan = await _completed_scan(admin_client, registry)
    ids = _ids_by_key(scan)
    site.delete_object("custom", KEYS[2])
    r = await admin_client.post(
        f"{BASE}/delete", json={"scan_id": scan["scan_id"], "file_ids": [ids[KEYS[1]], ids[KEYS[2]]]}
    )
    data = r.json()
    assert data["deleted_ids"] == [ids[KEYS[1]]]
    assert data["failures"] == [{
        "file_id": ids[KEYS[2]],
        "bucket": "custom",
        "object_key": KEYS[2],
        "reason": "Object no longer exists",
    }]
    assert data["message"] == "Deleted 1 of 2 selected files; 1 failed"


async def test_scan_validation_and_conflicts(admin_client, registry, db):
    r = await admin_client.post(f"{BASE}/scans", json={"buckets": ["nope"]})
    assert r.status_code == 422

    release = asyncio.Event()

    async def blocker(cancel_event):
        await release.wait()
        return "completed"

    registry.start(999, blocker)
    try:
        r = await admin_client.post(f"{BASE}/scans", json={"buckets": ["image"]})
        assert r.status_code == 409
    finally:
        release.set()
        await registry.wait(999, timeout=1)


async def test_actions_on_unfinished_or_missing_scans(admin_client, db):
    assert (await admin_client.get(f"{BASE}/scans/latest")).status_code == 404
    assert (await admin_client.get(f"{BASE}/scans/12345")).status_code == 404

    scan = await create_scan(db, ["image"])
    await db.commit()
    r = await admin_client.post(f"{BASE}/scans/{scan.id}/select-non-referenced", json={})
    assert r.status_code == 409
    r = await admin_client.post(f"{BASE}/delete", json={"scan_id": scan.id, "file_ids": [1]})
    assert r.status_code == 409
    r = await admin_client.post(f"{BASE}/scans/{scan.id}/cancel")
    assert r.status_code == 409
    r = await admin_client.post(f"{BASE}/delete", json={"scan_id": scan.id, "file_ids": []})
    assert r.status_code == 422


async def test_cancel_running_scan(admin_client, registry, db):
    scan = await create_scan(db, ["image"])
    await db.commit()

    async def job(cancel_event):
        await cancel_event.wait()
        return "cancelled"

    registry.start(scan.id, job)
    r = await admin_client.post(f"{BASE}/scans/{scan.id}/cancel")
    assert r.status_code == 202
    assert r.json() == {"scan_id": scan.id, "status": "cancelling"}
    assert await registry.wait(scan.id, timeout=1) == "cancelled"


async def test_duplicate_routes_require_admin(client, viewer_user):
    assert (await client.get(f"{BASE}/scans/latest")).status_code == 401
    login_as(client, viewer_user)
    assert (await client.get(f"{BASE}/scans/latest")).status_code == 403
    r = await client.post(f"{BASE}/scans", json={})
    assert r.status_code == 403


async def test_cron_requires_bearer_secret(client, site):
    assert (await client.get("/api/cron/duplicate-scan")).status_code == 401
    r = await client.get("/api/cron/duplicate-scan", headers={"Authorization": "Bearer wrong"})
    assert r.status_code == 401

    r = await client.get("/api/cron/duplicate-scan", headers={"Authorization": "Bearer test-cron-secret"})
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["status"] == "completed"
    assert data["duplicate_group_count"] == 1
    assert data["wasted_bytes"] == 2 * MB
    assert data["error"] is None


async def test_health_endpoints(client):
    assert (await client.get("/healthz")).json() == {"status": "ok"}
    r = await client.get("/readyz")
    assert r.status_code == 200
    assert r.headers["X-Content-Type-Options"] == "nosniff"


async def test_metrics_require_admin(client, admin_user):
    assert (await client.get("/metrics")).status_code == 401
    login_as(client, admin_user)
    r = await client.get("/metrics")
    assert r.status_code == 200
    assert "duplicate_scan_total" in r.text
