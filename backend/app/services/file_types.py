"""Upload file-type categories, per-bucket admission policies and deny-lists.

Categories form a closed enum; each member carries its own FileTypeSpec, so adding a
category means adding a member together with its data. Everything here is read-only
after import and safe to share between concurrent requests.
"""
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath

_MB = 1024 * 1024


@dataclass(frozen=True)
class FileTypeSpec:
    extensions: frozenset[str]
    mime_types: frozenset[str]
    max_size: int  # bytes
    description: str
    allowed_buckets: frozenset[str]


class FileCategory(Enum):
    """Accepted upload categories. Declaration order is the classification tie-break order."""

    IMAGE = "image"
    DOCUMENT = "document"
    VIDEO = "video"
    AUDIO = "audio"

    @property
    def spec(self) -> FileTypeSpec:
        return FILE_TYPE_SPECS[self]


FILE_TYPE_SPECS: dict[FileCategory, FileTypeSpec] = {
    FileCategory.IMAGE: FileTypeSpec(
        extensions=frozenset({".jpg", ".jpeg", ".png", ".webp", ".gif"}),
        mime_types=frozenset({"image/jpeg", "image/png", "image/webp", "image/gif"}),
        max_size=50 * _MB,
        description="Image files",
        allowed_buckets=frozenset({"image", "blog", "about", "custom"}),
    ),
    FileCategory.DOCUMENT: FileTypeSpec(
        extensions=frozenset({".pdf", ".txt", ".md"}),
        mime_types=frozenset({"application/pdf", "text/plain", "text/markdown"}),
        max_size=200 * _MB,
        description="Document files",
        allowed_buckets=frozenset({"files", "custom"}),
    ),
    FileCategory.VIDEO: FileTypeSpec(
        extensions=frozenset({".mp4", ".webm", ".mov"}),
        mime_types=frozenset({"video/mp4", "video/webm", "video/quicktime"}),
        max_size=100 * _MB,
        description="Video files",
        allowed_buckets=frozenset({"custom", "files"}),
    ),
    FileCategory.AUDIO: FileTypeSpec(
        extensions=frozenset({".mp3", ".wav", ".m4a"}),
        mime_types=frozenset({"audio/mpeg", "audio/wav", "audio/mp4"}),
        max_size=25 * _MB,
        description="Audio files",
        allowed_buckets=frozenset({"custom", "files"}),
    ),
}


@dataclass(frozen=True)
class BucketPolicy:
    allow_any_type: bool
    max_size: int  # bytes


BUCKET_POLICIES: dict[str, BucketPolicy] = {
    "image": BucketPolicy(allow_any_type=False, max_size=50 * _MB),
    "blog": BucketPolicy(allow_any_type=False, max_size=10 * _MB),
    "about": BucketPolicy(allow_any_type=False, max_size=20 * _MB),
    "custom": BucketPolicy(allow_any_type=True, max_size=100 * _MB),
    "files": BucketPolicy(allow_any_type=True, max_size=100 * _MB),
}
DEFAULT_BUCKET_POLICY = BucketPolicy(allow_any_type=False, max_size=20 * _MB)


def policy_for_bucket(bucket: str) -> BucketPolicy:
    return BUCKET_POLICIES.get(bucket, DEFAULT_BUCKET_POLICY)


DANGEROUS_EXTENSIONS: frozenset[str] = frozenset({
    # executables and libraries
    ".exe", ".bat", ".cmd", ".com", ".pif", ".scr", ".vbs", ".jar", ".msi", ".dll", ".so",
    ".dylib", ".app", ".deb", ".rpm", ".dmg", ".iso", ".bin", ".run", ".action", ".workflow",
    # scripts
    ".js", ".php", ".phar", ".asp", ".aspx", ".jsp", ".sh", ".ps1", ".py", ".rb", ".pl",
    ".cgi", ".fcgi",
    # server configuration
    ".htaccess", ".htpasswd", ".config", ".ini", ".conf", ".cfg",
    # archives
    ".7z", ".zip", ".rar", ".tar", ".gz", ".bz2", ".xz",
})

DANGEROUS_MIME_TYPES: frozenset[str] = frozenset({
    "application/x-executable",
    "application/x-msdownload",
    "application/x-msdos-program",
    "application/x-msi",
    "application/x-winexe",
    "application/x-javascript",
    "text/javascript",
    "application/javascript",
    "text/x-php",
    "application/x-php",
    "text/x-python",
    "application/x-python-code",
    "application/x-shellscript",
    "text/x-shellscript",
    "application/x-httpd-php",
    "application/x-perl",
    "application/x-ruby",
})


def file_extension(file_name: str) -> str:
    """Lowercased last suffix including the dot ('' when there is none).

    Dot-files such as '.htaccess' count as their own extension.
    """
    name = PurePosixPath(file_name.replace("\\", "/")).name.lower()
    if name.startswith(".") and name.count(".") == 1:
        return name
    return PurePosixPath(name).suffix


def is_dangerous_extension(file_name: str) -> bool:
    return file_extension(file_name) in DANGEROUS_EXTENSIONS


def is_dangerous_mime_type(mime_type: str | None) -> bool:
    return (mime_type or "").strip().lower() in DANGEROUS_MIME_TYPES


def classify(file_name: str, mime_type: str | None) -> FileCategory | None:
    """Return the category for a file, or None when nothing matches.

    An extension match beats a MIME match; ties within a pass go to the first
    category in declaration order.
    """
    ext = file_extension(file_name)
    if ext:
        for category in FileCategory:
            if ext in category.spec.extensions:
                return category
    mime = (mime_type or "").strip().lower()
    if mime:
        for category in FileCategory:
            if mime in category.spec.mime_types:
                return category
    return None


def accepted_type_descriptions() -> str:
    return ", ".join(category.spec.description for category in FileCategory)
