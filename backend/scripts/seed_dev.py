"""
Seed script for local dev: tables, one admin user, a few image rows and matching objects
in dev_storage/ (including duplicate copies, some referenced and some not).
Run from backend/: python scripts/seed_dev.py
"""
import asyncio
import os
import uuid
from datetime import datetime, timezone

from sqlalchemy import select

# Add parent to path so app is importable
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.config import get_settings
from app.core.security import create_access_token
from app.db.models import CustomImgData, Gallery, GalleryImage, ImageData, User
from app.db.session import async_session_factory, init_db
from app.services.storage import LocalStorage
from app.services.storage_paths import generate_storage_path

settings = get_settings()

# Minimal valid PNG (1x1 red pixel)
PNG = (
    b"\x89PNG\r\n\x1a\n"
    b"\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x02\x00\x00\x00\x90wS\xde"
    b"\x00\x00\x00\x0cIDATx\x9cc\xf8\x0f\x00\x00\x01\x01\x00\x05\x18\xd8N\x00\x00\x00\x00IEND\xaeB`\x82"
)


def _put(storage: LocalStorage, bucket: str, name: str, body: bytes = PNG) -> str:
    key = generate_storage_path(name, bucket)
    storage.put_object(bucket, key, body, "image/png")
    return key


async def seed():
    await init_db()
    storage = LocalStorage()
    for bucket in settings.scan_buckets:
        os.makedirs(os.path.join(settings.dev_storage_dir, storage.resolve_bucket(bucket)), exist_ok=True)

    async with async_session_factory() as db:
        # Check if already seeded
        r = await db.execute(select(User).where(User.email == "admin@example.com"))
        admin = r.scalar_one_or_none()
        if admin is not None:
            print("Already seeded. Skip.")
            print(f"Access token: {create_access_token(str(admin.id), admin.role)}")
            return

        admin = User(id=uuid.uuid4(), email="admin@example.com", role="admin")
        db.add(admin)

        # Three copies of the same image: one referenced by image_data, one by a gallery, one orphaned
        main_key = _put(storage, "image", "sunset.png")
        gallery_key = _put(storage, "custom", "sunset copy.png")
        _put(storage, "custom", "sunset (1).png")
        # A unique, referenced custom image
        banner = PNG + b"banner"
        banner_key = _put(storage, "custom", "banner.png", banner)

        now = datetime.now(timezone.utc)
        db.add(ImageData(
            uuid=str(uuid.uuid4()), file_name=main_key.rsplit("/", 1)[-1], file_url=f"/image/{main_key}",
            name="Sunset", uploaded_at=now,
        ))
        db.add(CustomImgData(
            uuid=str(uuid.uuid4()), file_name=banner_key.rsplit("/", 1)[-1], file_url=f"/custom/{banner_key}",
            name="Banner", uploaded_at=now,
        ))
        gallery = Gallery(title="Travel", slug="travel")
        db.add(gallery)
        await db.flush()
        db.add(GalleryImage(
            gallery_id=gallery.id, uuid=str(uuid.uuid4()), file_name=gallery_key.rsplit("/", 1)[-1],
            file_url=f"/custom/{gallery_key}", name="Sunset (gallery)", order=0,
        ))
        await db.commit()
        print("Seed done. Admin: admin@example.com")
        print(f"Access token: {create_access_token(str(admin.id), admin.role)}")


if __name__ == "__main__":
    asyncio.run(seed())
