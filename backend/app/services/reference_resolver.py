"""Decide which stored objects are still referenced by the site's image tables."""
from __future__ import annotations

import logging
import posixpath
import uuid as uuid_mod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import unquote, urlsplit

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import CustomImgData, GalleryImage, ImageData

logger = logging.getLogger(__name__)

QUERY_CHUNK_SIZE = 500


class ReferenceTable(Enum):
    """Referencing tables in precedence order: the first match wins."""
    IMAGE_DATA = "image_data"
    CUSTOM_IMG_DATA = "custom_img_data"
    GALLERY_IMAGES = "gallery_images"

    @property
    def model(self):
        return _MODELS[self]

    @property
    def label(self) -> str:
        return _LABELS[self]


_MODELS = {
    ReferenceTable.IMAGE_DATA: ImageData,
    ReferenceTable.CUSTOM_IMG_DATA: CustomImgData,
    ReferenceTable.GALLERY_IMAGES: GalleryImage,
}
_LABELS = {
    ReferenceTable.IMAGE_DATA: "Main gallery image",
    ReferenceTable.CUSTOM_IMG_DATA: "Custom image",
    ReferenceTable.GALLERY_IMAGES: "Gallery image",
}


@dataclass(frozen=True)
class ReferenceAnnotation:
    table: ReferenceTable
    uuid: str


def _parse_uuid(value: str) -> str | None:
    try:
        return str(uuid_mod.UUID(value))
    except ValueError:
        return None


def candidate_file_name(key: str) -> str:
    return posixpath.basename(key) or key


def candidate_uuids(key: str) -> set[str]:
    """UUIDs a key may encode: the basename stem, or any path segment that is a UUID."""
    found: set[str] = set()
    name = candidate_file_name(key)
    stem = name.rsplit(".", 1)[0] if "." in name else name
    for part in [stem, *key.split("/")]:
        parsed = _parse_uuid(part)
        if parsed:
            found.add(parsed)
    return found


def _chunks(items: Sequence[str], size: int) -> Iterable[list[str]]:
    for i in range(0, len(items), size):
        yield list(items[i:i + size])


def url_object_key(file_url: str | None, keys: set[str]) -> str | None:
    """The scanned key a stored file_url points at, if any: the URL path must end in /<key>."""
    if not file_url:
        return None
    path = unquote(urlsplit(file_url).path).lstrip("/")
    parts = path.split("/")
    for i in range(len(parts)):
        suffix = "/".join(parts[i:])
        if suffix in keys:
            return suffix
    return None


@dataclass
class _TableRefs:
    by_key: dict[str, str] = field(default_factory=dict)  # exact file_url match
    by_name: dict[str, str] = field(default_factory=dict)
    uuids: set[str] = field(default_factory=set)


class ReferenceResolver:
    """Read-only. One batched query per table instead of one query per object.

    A row whose file_url names a scanned key references that key only. Rows whose URL
    identifies no scanned key fall back to matching by file name or UUID.
    """

    def __init__(self, chunk_size: int = QUERY_CHUNK_SIZE) -> None:
        self._chunk_size = chunk_size

    async def annotate(self, db: AsyncSession, keys: Iterable[str]) -> dict[str, ReferenceAnnotation | None]:
        keys = list(dict.fromkeys(keys))
        if not keys:
            return {}
        names = sorted({candidate_file_name(k) for k in keys})
        uuids = sorted(set().union(*(candidate_uuids(k) for k in keys)))
        key_set = set(keys)

        by_table: dict[ReferenceTable, _TableRefs] = {}
        for table in ReferenceTable:
            by_table[table] = await self._load_table(db, table, key_set, names, uuids)

        annotations: dict[str, ReferenceAnnotation | None] = {}
        for key in keys:
            annotations[key] = self._match(key, by_table)
        referenced = sum(1 for a in annotations.values() if a is not None)
        logger.debug("Resolved references for %d keys; %d referenced", len(keys), referenced)
        return annotations

    async def _load_table(
        self, db: AsyncSession, table: ReferenceTable, keys: set[str], names: list[str], uuids: list[str]
    ) -> _TableRefs:
        model = table.model
        refs = _TableRefs()
        # chunk names and uuids independently; each query matches on either column
        name_chunks = list(_chunks(names, self._chunk_size)) or [[]]
        uuid_chunks = list(_chunks(uuids, self._chunk_size)) or [[]]
        for i in range(max(len(name_chunks), len(uuid_chunks))):
            conditions = []
            if i < len(name_chunks) and name_chunks[i]:
                conditions.append(model.file_name.in_(name_chunks[i]))
            if i < len(uuid_chunks) and uuid_chunks[i]:
                conditions.append(model.uuid.in_(uuid_chunks[i]))
            if not conditions:
                continue
            stmt = select(model.file_name, model.uuid, model.file_url).where(or_(*conditions))
            result = await db.execute(stmt)
            for file_name, row_uuid, file_url in result.all():
                url_key = url_object_key(file_url, keys)
                if url_key is not None:
                    refs.by_key.setdefault(url_key, row_uuid)
                    continue
                refs.by_name.setdefault(file_name, row_uuid)
                refs.uuids.add(row_uuid)
        return refs

    @staticmethod
    def _match(key: str, by_table: dict[ReferenceTable, _TableRefs]) -> ReferenceAnnotation | None:
        name = candidate_file_name(key)
        key_uuids = candidate_uuids(key)
        for table in ReferenceTable:
            refs = by_table[table]
            if key in refs.by_key:
                return ReferenceAnnotation(table=table, uuid=refs.by_key[key])
            if name in refs.by_name:
                return ReferenceAnnotation(table=table, uuid=refs.by_name[name])
            for u in sorted(key_uuids):
                if u in refs.uuids:
                    return ReferenceAnnotation(table=table, uuid=u)
        return None
