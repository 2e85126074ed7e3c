"""Magic-number checks on the leading bytes of an upload.

Two independent checks: the declared MIME type must match one of its known signatures
(allow-list), and known executable/archive headers anywhere in the window are rejected
(deny-list) whatever the declared type.
"""
from dataclasses import dataclass

HEAD_SIZE = 16


@dataclass(frozen=True)
class Signature:
    """All (offset, bytes) parts must match exactly."""

    parts: tuple[tuple[int, bytes], ...]

    @classmethod
    def prefix(cls, magic: bytes) -> "Signature":
        return cls(((0, magic),))

    def matches(self, head: bytes) -> bool:
        return all(head[offset:offset + len(magic)] == magic for offset, magic in self.parts)


_FTYP = Signature(((4, b"ftyp"),))
_RIFF_WEBP = Signature(((0, b"RIFF"), (8, b"WEBP")))
_RIFF_WAVE = Signature(((0, b"RIFF"), (8, b"WAVE")))
_MP3 = (
    Signature.prefix(b"ID3"),
    Signature.prefix(b"\xff\xfb"),
    Signature.prefix(b"\xff\xf3"),
    Signature.prefix(b"\xff\xf2"),
)

SIGNATURES: dict[str, tuple[Signature, ...]] = {
    "image/jpeg": (Signature.prefix(b"\xff\xd8\xff"),),
    "image/png": (Signature.prefix(b"\x89PNG"),),
    "image/gif": (Signature.prefix(b"GIF87a"), Signature.prefix(b"GIF89a")),
    "image/webp": (_RIFF_WEBP,),
    "application/pdf": (Signature.prefix(b"%PDF"),),
    "video/mp4": (_FTYP,),
    "video/quicktime": (_FTYP,),
    "video/webm": (Signature.prefix(b"\x1a\x45\xdf\xa3"),),
    "audio/mp4": (_FTYP,),
    "audio/mpeg": _MP3,
    "audio/mp3": _MP3,
    "audio/wav": (_RIFF_WAVE,),
}

SUSPICIOUS_MARKERS: tuple[bytes, ...] = (
    b"MZ",  # PE/EXE
    b"\x7fELF",
    b"\xca\xfe\xba\xbe",  # Java class
    b"PK\x03\x04",  # ZIP family
)

CONTENT_MISMATCH = 'File content doesn\'t match declared type "{}"'
SUSPICIOUS_CONTENT = "File contains suspicious binary content"


def inspect_content(head: bytes, declared_mime: str | None) -> list[str]:
    """Return errors for the first HEAD_SIZE bytes of a file (empty list when clean)."""
    errors: list[str] = []
    window = bytes(head[:HEAD_SIZE])
    mime = (declared_mime or "").strip().lower()
    expected = SIGNATURES.get(mime)
    if expected and not any(sig.matches(window) for sig in expected):
        errors.append(CONTENT_MISMATCH.format(declared_mime))
    if any(marker in window for marker in SUSPICIOUS_MARKERS):
        errors.append(SUSPICIOUS_CONTENT)
    return errors
