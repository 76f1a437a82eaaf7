"""Directory scanner: reconcile the hash cache with the files actually under the blob root.

A file is dirty when it has no cache entry or its mtime/size differ from the entry; only
dirty files are read and hashed. Moves are detected heuristically: when a dirty file's
hash and size match an entry whose file no longer exists, that stale entry is dropped
before the new one is inserted. Same hash and size does not prove identity, but a false
positive only removes an entry for a file that is already gone.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List

from blossomd.files.hash_model import CacheEntry
from blossomd.files.hash_store import HashCache, hash_file
from blossomd.files.storage import is_ignored, iter_files, to_relative

log = logging.getLogger(__name__)


@dataclass
class ScanResult:
    updated: int = 0
    removed: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.updated or self.removed)


def _stat_key(path: Path):
    st = path.stat()
    return st.st_mtime_ns // 1_000_000, st.st_size


class DirectoryScanner:
    """Applies dirty-check / hash / move-detection to files under root."""

    def __init__(self, root: Path, cache: HashCache) -> None:
        self.root = Path(root)
        self.cache = cache

    def process_file(self, path: Path) -> bool:
        """
        Hash path if it is new or changed and update the cache. Returns True if the cache
        was updated. Per-file errors (vanished, unreadable) are logged and return False.
        """
        path = Path(path)
        rel = to_relative(self.root, path)
        if rel is None or is_ignored(path.name):
            return False
        try:
            mtime, size = _stat_key(path)
            cached = self.cache.get(rel)
            if cached is not None and cached.mtime == mtime and cached.size == size:
                return False
            log.debug("Processing file: %s", rel)
            content_hash = hash_file(path)
        except OSError as e:
            log.warning("Skipping %s: %s", rel, e)
            return False

        with self.cache.lock:
            for other, entry in self.cache.items():
                if other == rel or entry.hash != content_hash or entry.size != size:
                    continue
                if not (self.root / other).exists():
                    log.info("Detected moved file: %s -> %s", other, rel)
                    self.cache.remove(other)
            self.cache.put(rel, CacheEntry(hash=content_hash, mtime=mtime, size=size))
        return True

    def process_files(self, paths: Iterable[Path]) -> int:
        """Process each path; returns how many cache entries were updated."""
        return sum(1 for p in paths if self.process_file(p))

    def scan_subtree(self, directory: Path) -> int:
        """Process every file below directory (e.g. a folder moved in wholesale)."""
        updated = self.process_files(iter_files(Path(directory)))
        if updated:
            log.info("Processed %d files in %s", updated, to_relative(self.root, directory) or directory)
        return updated

    def handle_deletion(self, rel: str) -> int:
        """
        Remove the entry for rel and every entry nested under it (a single deletion
        event may stand for a whole directory). Returns the number of entries removed.
        """
        rel = rel.strip("/")
        if not rel:
            return 0
        prefix = rel + "/"
        removed = 0
        with self.cache.lock:
            for path, _ in self.cache.items():
                if path == rel or path.startswith(prefix):
                    self.cache.remove(path)
                    removed += 1
                    log.debug("Removed deleted file from cache: %s", path)
        if removed:
            log.info("Removed %d entries from cache due to deletion of %s", removed, rel)
        return removed

    def clean_stale_entries(self, prefix: str = "") -> int:
        """Remove entries (optionally only those under prefix) whose file no longer exists."""
        removed: List[str] = []
        for path, _ in self.cache.items():
            if path.startswith(prefix) and not os.path.isfile(self.root / path):
                removed.append(path)
        with self.cache.lock:
            # Re-check under the lock: an upload may have recreated the file meanwhile
            removed = [p for p in removed if not os.path.isfile(self.root / p) and self.cache.remove(p)]
        for path in removed:
            log.debug("Removed stale cache entry: %s", path)
        if removed:
            log.info("Cleaned %d stale entries from cache", len(removed))
        return len(removed)

    def scan(self) -> ScanResult:
        """
        Full reconciliation: hash new/changed files, drop entries for missing files,
        persist if anything changed. Save errors propagate to the caller.
        """
        if not self.root.exists():
            log.info("Blob directory %s does not exist, creating it", self.root)
            self.root.mkdir(parents=True, exist_ok=True)
        log.info("Starting scan of %s", self.root)
        result = ScanResult()
        result.updated = self.process_files(iter_files(self.root))
        result.removed = self.clean_stale_entries()
        if result.changed or self.cache.dirty:
            self.cache.save()
        log.info(
            "Scan complete: %d files updated, %d files removed", result.updated, result.removed
        )
        return result
