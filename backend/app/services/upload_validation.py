"""Upload admission: filename sanitising and the single pass/fail gate every upload goes through.

validate_upload never raises for a rejection reason and never touches the network or
storage; it only reads the candidate's metadata and the bytes already in memory.
"""
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from app.services.content_inspection import HEAD_SIZE, inspect_content
from app.services.file_types import (
    BUCKET_POLICIES,
    accepted_type_descriptions,
    classify,
    file_extension,
    is_dangerous_extension,
    is_dangerous_mime_type,
    policy_for_bucket,
)

logger = logging.getLogger(__name__)

_MB = 1024 * 1024
MAX_FILENAME_LENGTH = 255
MAX_STEM_LENGTH = 100

_HOSTILE = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')
_UNSAFE = re.compile(r"[^\w\s.\-]")
_PARENT = re.compile(r"\.\.")
_LEADING_DOT = re.compile(r"^\.")
_WHITESPACE = re.compile(r"\s+")
_UNDERSCORES = re.compile(r"_{2,}")


def sanitize_filename(filename: str | None) -> str:
    """Safe, bounded, lowercase storage name. Total and idempotent."""
    if not filename:
        return ""
    name = filename.lower()
    name = _HOSTILE.sub("_", name)
    name = _UNSAFE.sub("", name)
    name = _PARENT.sub("_", name)
    name = _LEADING_DOT.sub("_", name)
    name = _WHITESPACE.sub("_", name)
    name = _UNDERSCORES.sub("_", name)
    dot = name.rfind(".")
    stem, ext = (name[:dot], name[dot:]) if dot > 0 else (name, "")
    if len(stem) > MAX_STEM_LENGTH:
        # a cut landing on a dot would otherwise leave ".." at the seam
        name = stem[:MAX_STEM_LENGTH].rstrip(".") + ext
    return name


def format_bytes(num: int, decimals: int = 2) -> str:
    if num == 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    value = float(num)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    text = f"{value:.{max(decimals, 0)}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return f"{text} {units[i]}"


@dataclass(frozen=True)
class UploadCandidate:
    """Client-supplied file: name, declared MIME type, byte size and (optionally) leading bytes."""

    name: str
    content_type: str | None
    size: int
    head: bytes | None = None

    @classmethod
    def from_bytes(cls, name: str, content_type: str | None, data: bytes) -> "UploadCandidate":
        return cls(name=name, content_type=content_type, size=len(data), head=bytes(data[:HEAD_SIZE]))


CustomCheck = Callable[[UploadCandidate], list[str]]


@dataclass(frozen=True)
class ValidationOptions:
    bucket: str
    allow_any_type: bool | None = None  # None -> bucket policy
    max_size_override: int | None = None
    custom_check: CustomCheck | None = None


def options_for_bucket(bucket: str, **overrides) -> ValidationOptions:
    """Options preset from the bucket policy; keyword overrides win."""
    policy = policy_for_bucket(bucket)
    values = {"allow_any_type": policy.allow_any_type}
    values.update(overrides)
    return ValidationOptions(bucket=bucket, **values)


@dataclass(frozen=True)
class UploadLimits:
    """Site-wide size ceilings in bytes, keyed by logical bucket."""

    per_bucket: Mapping[str, int] = field(default_factory=dict)
    default: int = 20 * _MB

    @classmethod
    def from_settings(cls, settings) -> "UploadLimits":
        return cls(
            per_bucket={k: v * _MB for k, v in settings.upload_limits_mb.items()},
            default=settings.default_upload_limit_mb * _MB,
        )

    def for_bucket(self, bucket: str) -> int | None:
        return self.per_bucket.get(bucket)


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: tuple[str, ...]
    warnings: tuple[str, ...]
    sanitized_name: str
    detected_type: str | None
    bucket: str


def effective_max_size(options: ValidationOptions, limits: UploadLimits) -> int:
    if options.max_size_override is not None:
        return options.max_size_override
    site_limit = limits.for_bucket(options.bucket)
    if site_limit is not None:
        return site_limit
    policy = BUCKET_POLICIES.get(options.bucket)
    return policy.max_size if policy else limits.default


def validate_upload(
    candidate: UploadCandidate,
    options: ValidationOptions,
    limits: UploadLimits,
) -> ValidationResult:
    """Collect every rejection reason for one candidate upload."""
    errors: list[str] = []
    warnings: list[str] = []
    name = candidate.name or ""

    sanitized = sanitize_filename(name)
    if not name.strip():
        errors.append("Filename is required")
    elif sanitized != name:
        warnings.append(f'Filename was sanitized: "{name}" → "{sanitized}"')

    if is_dangerous_extension(name):
        errors.append(f'File type "{file_extension(name)}" is not allowed for security reasons')
    if is_dangerous_mime_type(candidate.content_type):
        errors.append(f'MIME type "{candidate.content_type}" is not allowed for security reasons')

    if candidate.head is not None:
        errors.extend(inspect_content(candidate.head, candidate.content_type))
    else:
        warnings.append("File content was not inspected")

    category = classify(name, candidate.content_type)
    allow_any_type = options.allow_any_type
    if allow_any_type is None:
        allow_any_type = policy_for_bucket(options.bucket).allow_any_type
    if category is None and not allow_any_type:
        errors.append(f"File type not supported. Allowed types: {accepted_type_descriptions()}")

    if category is not None:
        spec = category.spec
        if options.bucket not in spec.allowed_buckets:
            errors.append(f'{spec.description} cannot be uploaded to the "{options.bucket}" bucket')
        if candidate.size > spec.max_size:
            errors.append(
                f"File size ({format_bytes(candidate.size)}) exceeds maximum allowed for "
                f"{spec.description} ({format_bytes(spec.max_size)})"
            )

    ceiling = effective_max_size(options, limits)
    if candidate.size > ceiling:
        errors.append(f"File size ({format_bytes(candidate.size)}) exceeds bucket limit ({format_bytes(ceiling)})")

    if len(name) > MAX_FILENAME_LENGTH:
        errors.append(f"Filename too long (max {MAX_FILENAME_LENGTH} characters)")

    if candidate.size == 0:
        errors.append("Empty files are not allowed")

    if options.custom_check is not None:
        try:
            errors.extend(options.custom_check(candidate))
        except Exception:
            logger.exception("Custom upload validation failed", extra={"bucket": options.bucket})
            errors.append("Custom validation failed")

    return ValidationResult(
        is_valid=not errors,
        errors=tuple(errors),
        warnings=tuple(warnings),
        sanitized_name=sanitized,
        detected_type=category.value if category else None,
        bucket=options.bucket,
    )
