"""Pydantic request/response schemas for the upload and duplicate-cleanup API."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


def _config_forbid(**kwargs):
    return ConfigDict(extra="forbid", **kwargs)


# ----- Uploads -----
class UploadResponse(BaseModel):
    model_config = _config_forbid()
    bucket: str
    object_key: str
    sanitized_name: str
    detected_type: str | None
    size: int
    warnings: list[str]


class CheckDuplicateResponse(BaseModel):
    model_config = _config_forbid()
    content_hash: str
    is_duplicate: bool
    scan_id: int | None = None
    matches: list["DuplicateFileEntry"] = Field(default_factory=list)


# ----- Duplicate scans -----
class StartScanRequest(BaseModel):
    model_config = _config_forbid()
    buckets: list[str] | None = None


class StartScanResponse(BaseModel):
    model_config = _config_forbid()
    scan_id: int
    status: str
    buckets: list[str]


class DuplicateFileEntry(BaseModel):
    model_config = _config_forbid(from_attributes=True)
    id: int
    file_name: str
    bucket_name: str
    object_key: str
    file_size: int
    last_modified: datetime | None
    db_reference: str | None
    db_uuid: str | None


class DuplicateGroupEntry(BaseModel):
    model_config = _config_forbid()
    content_hash: str
    file_size: int
    count: int
    wasted_bytes: int
    files: list[DuplicateFileEntry]


class SkippedEntry(BaseModel):
    model_config = _config_forbid()
    bucket: str
    key: str | None
    reason: str


class ScanDetail(BaseModel):
    model_config = _config_forbid()
    scan_id: int
    status: str
    buckets: list[str]
    started_at: datetime | None
    finished_at: datetime | None
    error: str | None
    total_objects: int
    hashed_objects: int
    duplicate_group_count: int
    duplicate_file_count: int
    wasted_bytes: int
    wasted_display: str
    skipped: list[SkippedEntry]
    groups: list[DuplicateGroupEntry]


class SelectNonReferencedRequest(BaseModel):
    model_config = _config_forbid()
    content_hash: str | None = None


class SelectNonReferencedResponse(BaseModel):
    model_config = _config_forbid()
    scan_id: int
    content_hash: str | None
    file_ids: list[int]


class DeleteDuplicatesRequest(BaseModel):
    model_config = _config_forbid()
    scan_id: int
    file_ids: list[int] = Field(..., min_length=1, max_length=5000)


class ForceDeleteRequest(BaseModel):
    model_config = _config_forbid()
    scan_id: int
    confirm_object_key: str = Field(..., min_length=1)


class DeletionFailureEntry(BaseModel):
    model_config = _config_forbid()
    file_id: int
    bucket: str | None
    object_key: str | None
    reason: str


class DeletionResponse(BaseModel):
    model_config = _config_forbid()
    scan_id: int
    requested: int
    deleted_count: int
    deleted_ids: list[int]
    failures: list[DeletionFailureEntry]
    message: str


class CronScanResponse(BaseModel):
    model_config = _config_forbid()
    scan_id: int
    status: str
    duplicate_group_count: int
    duplicate_file_count: int
    wasted_bytes: int
    skipped_count: int
    error: str | None


CheckDuplicateResponse.model_rebuild()
