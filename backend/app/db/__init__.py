from .models import (
    User,
    ImageData,
    CustomImgData,
    Gallery,
    GalleryImage,
    DuplicateScan,
    DuplicateFile,
    AuditEvent,
)
from .session import get_db, get_session_factory, async_session_factory, engine, init_db

__all__ = [
    "User",
    "ImageData",
    "CustomImgData",
    "Gallery",
    "GalleryImage",
    "DuplicateScan",
    "DuplicateFile",
    "AuditEvent",
    "get_db",
    "get_session_factory",
    "async_session_factory",
    "engine",
    "init_db",
]
