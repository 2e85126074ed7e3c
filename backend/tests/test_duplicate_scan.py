"""Duplicate scanner: grouping, size prefilter, partial failure, cancel and timeout."""
import asyncio
import hashlib
import threading

import pytest

from app.services.duplicate_scan import (
    DuplicateScanner,
    ScanCancelledError,
    ScanFailedError,
    ScanTimeoutError,
    hash_bytes,
)
from fakes import MemoryStorage

MB = 1024 * 1024


@pytest.fixture
def mem() -> MemoryStorage:
    return MemoryStorage()


def _scanner(storage, **kwargs) -> DuplicateScanner:
    kwargs.setdefault("hash_workers", 4)
    kwargs.setdefault("chunk_size", 4)
    return DuplicateScanner(storage, **kwargs)


async def test_groups_equal_content_and_excludes_unique(mem):
    mem.add("image", "1.png", b"same-bytes")
    mem.add("image", "2.png", b"other-byte")
    mem.add("image", "3.png", b"same-bytes")
    result = await _scanner(mem).scan(["image"])

    dupes = result.duplicate_groups()
    assert len(dupes) == 1
    assert [o.key for o in dupes[0].objects] == ["1.png", "3.png"]
    assert dupes[0].content_hash == hashlib.sha256(b"same-bytes").hexdigest()
    assert dupes[0].wasted_bytes == len(b"same-bytes")
    # the unique object is hashed (its size collides) but stays out of the duplicate list
    singles = [g for g in result.groups if len(g.objects) == 1]
    assert [g.objects[0].key for g in singles] == ["2.png"]
    assert result.total_objects == 3
    assert result.hashed_objects == 3
    assert result.skipped == []


async def test_objects_with_unique_sizes_are_not_read(mem):
    mem.add("image", "a.png", b"x" * 10)
    mem.add("image", "b.png", b"x" * 10)
    mem.add("image", "c.png", b"y" * 11)
    result = await _scanner(mem).scan(["image"])
    assert ("image", "c.png") not in mem.reads
    assert result.hashed_objects == 2
    assert len(result.duplicate_groups()) == 1


async def test_duplicates_across_buckets(mem):
    body = b"\x01" * MB
    mem.add("image", "a/x.png", body)
    mem.add("custom", "b/x.png", body)
    mem.add("custom", "c/y.png", body)
    result = await _scanner(mem, chunk_size=64 * 1024).scan(["image", "custom"])
    (group,) = result.duplicate_groups()
    assert {(o.bucket, o.key) for o in group.objects} == {
        ("image", "a/x.png"),
        ("custom", "b/x.png"),
        ("custom", "c/y.png"),
    }
    assert group.size == MB
    assert group.wasted_bytes == 2 * MB
    assert result.total_wasted_bytes == 2 * MB
    assert group.objects[0].file_name in ("x.png", "y.png")


async def test_unreadable_object_is_skipped_not_fatal(mem):
    mem.add("image", "a.png", b"abc")
    mem.add("image", "b.png", b"abc")
    mem.add("image", "c.png", b"abc")
    mem.unreadable.add(("image", "b.png"))
    result = await _scanner(mem).scan(["image"])
    (group,) = result.duplicate_groups()
    assert [o.key for o in group.objects] == ["a.png", "c.png"]
    assert len(result.skipped) == 1
    assert result.skipped[0].key == "b.png"
    assert "read failed" in result.skipped[0].reason


async def test_object_deleted_during_scan_is_skipped(mem):
    mem.add("image", "a.png", b"abc")
    mem.add("image", "b.png", b"abc")
    original = mem.iter_object_chunks

    def vanish(bucket, key, chunk_size):
        if key == "b.png":
            mem.objects.pop((bucket, key), None)
        return original(bucket, key, chunk_size)

    mem.iter_object_chunks = vanish
    result = await _scanner(mem).scan(["image"])
    assert result.duplicate_groups() == []
    assert [s.key for s in result.skipped] == ["b.png"]


async def test_broken_bucket_is_skipped(mem):
    mem.add("image", "a.png", b"abc")
    mem.add("image", "b.png", b"abc")
    mem.broken_buckets.add("blog")
    result = await _scanner(mem).scan(["blog", "image"])
    assert len(result.duplicate_groups()) == 1
    assert result.skipped[0].bucket == "blog"
    assert result.skipped[0].key is None


async def test_unreachable_store_fails_the_scan(mem):
    mem.add("image", "a.png", b"abc")
    mem.unreachable = True
    with pytest.raises(ScanFailedError):
        await _scanner(mem).scan(["image"])


async def test_cancelled_scan_raises(mem):
    mem.add("image", "a.png", b"abc")
    mem.add("image", "b.png", b"abc")
    cancel = asyncio.Event()
    cancel.set()
    with pytest.raises(ScanCancelledError):
        await _scanner(mem).scan(["image"], cancel_event=cancel)


async def test_cancel_while_hashing(mem):
    mem.add("image", "a.png", b"abc")
    mem.add("image", "b.png", b"abc")
    mem.read_gate = threading.Event()
    cancel = asyncio.Event()
    task = asyncio.create_task(_scanner(mem).scan(["image"], cancel_event=cancel))
    await asyncio.sleep(0.05)
    cancel.set()
    mem.read_gate.set()
    with pytest.raises(ScanCancelledError):
        await task


async def test_scan_times_out(mem):
    mem.add("image", "a.png", b"abc")
    mem.add("image", "b.png", b"abc")
    mem.read_gate = threading.Event()
    try:
        with pytest.raises(ScanTimeoutError):
            await _scanner(mem, timeout_seconds=0.1).scan(["image"])
    finally:
        mem.read_gate.set()


async def test_empty_scan(mem):
    result = await _scanner(mem).scan([])
    assert result.groups == []
    assert result.total_wasted_bytes == 0


def test_hash_bytes_is_sha256():
    assert hash_bytes(b"abc") == hashlib.sha256(b"abc").hexdigest()


def test_hash_workers_must_be_positive(mem):
    with pytest.raises(ValueError):
        DuplicateScanner(mem, hash_workers=0)
