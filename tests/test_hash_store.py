"""Tests for the persistent hash cache."""

import json

from blossomd.files.hash_model import CacheEntry
from blossomd.files.hash_store import HashCache, compute_hash, hash_file

EMPTY_SHA = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def _entry(ch: str = "a", size: int = 3) -> CacheEntry:
    return CacheEntry(hash=ch * 64, mtime=1_700_000_000_000, size=size)


def test_compute_hash_known_value():
    assert compute_hash(b"") == EMPTY_SHA


def test_hash_file_matches_compute_hash(tmp_path):
    f = tmp_path / "blob"
    data = b"x" * (3 * 1024 * 1024 + 7)
    f.write_bytes(data)
    assert hash_file(f) == compute_hash(data)


def test_load_missing_file_is_empty(tmp_path):
    cache = HashCache(tmp_path / "cache" / "blobs.json")
    assert cache.load() == {}
    assert len(cache) == 0
    assert not cache.dirty


def test_load_corrupt_file_is_empty(tmp_path):
    f = tmp_path / "blobs.json"
    f.write_text("{not json", encoding="utf-8")
    cache = HashCache(f)
    assert cache.load() == {}


def test_load_rejects_invalid_entries(tmp_path):
    f = tmp_path / "blobs.json"
    f.write_text(json.dumps({"a.txt": {"hash": "nothex", "mtime": 1, "size": 1}}), encoding="utf-8")
    cache = HashCache(f)
    assert cache.load() == {}


def test_save_then_load_restores_entries(tmp_path):
    f = tmp_path / "cache" / "blobs.json"
    cache = HashCache(f)
    cache.put("pk/a.bin", _entry("a"))
    cache.put("pk/b.bin", _entry("b", size=9))
    assert cache.dirty
    cache.save()
    assert not cache.dirty
    on_disk = json.loads(f.read_text(encoding="utf-8"))
    assert on_disk["pk/b.bin"] == {"hash": "b" * 64, "mtime": 1_700_000_000_000, "size": 9}

    reloaded = HashCache(f)
    entries = reloaded.load()
    assert entries == {"pk/a.bin": _entry("a"), "pk/b.bin": _entry("b", size=9)}
    assert "pk/a.bin" in reloaded


def test_save_leaves_no_temp_files(tmp_path):
    cache = HashCache(tmp_path / "blobs.json")
    cache.put("x", _entry())
    cache.save()
    assert [p.name for p in tmp_path.iterdir()] == ["blobs.json"]


def test_remove_and_save_if_dirty(tmp_path):
    cache = HashCache(tmp_path / "blobs.json")
    assert cache.save_if_dirty() is False
    cache.put("x", _entry())
    assert cache.save_if_dirty() is True
    assert cache.remove("x") is True
    assert cache.remove("x") is False
    assert cache.dirty
    cache.save()
    assert cache.get("x") is None


def test_items_iterates_over_copy(tmp_path):
    cache = HashCache(tmp_path / "blobs.json")
    cache.put("a", _entry("a"))
    cache.put("b", _entry("b"))
    for path, _ in cache.items():
        cache.remove(path)
    assert len(cache) == 0
