"""Durable path -> content-hash cache. Hash is SHA-256 of file body.

The cache is a single JSON snapshot ``{relative_path: {"hash", "mtime", "size"}}``.
Every mutation marks the cache dirty; ``save()`` writes a consistent snapshot and clears
the flag only if nothing changed while writing. Loading never fails: a missing or corrupt
snapshot yields an empty cache (a rescan rebuilds it).
"""

import hashlib
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Iterator, Optional, Tuple

from pydantic import TypeAdapter, ValidationError

from blossomd.files.hash_model import CacheEntry

log = logging.getLogger(__name__)

_READ_CHUNK = 1024 * 1024
_snapshot_adapter = TypeAdapter(Dict[str, CacheEntry])


def compute_hash(body: bytes) -> str:
    """SHA-256 hex digest of file body."""
    return hashlib.sha256(body).hexdigest()


def hash_file(path: Path) -> str:
    """SHA-256 hex digest of a file's contents, read in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_READ_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


class HashCache:
    """Thread-safe mapping of relative path -> CacheEntry with JSON persistence."""

    def __init__(self, cache_file: Path) -> None:
        self.cache_file = Path(cache_file)
        self._entries: Dict[str, CacheEntry] = {}
        # Guards _entries; held by callers for compound read-modify-write sequences
        self.lock = threading.RLock()
        # Serializes snapshot writes (and lets shutdown wait for an in-flight save)
        self._save_lock = threading.Lock()
        self._version = 0
        self._saved_version = 0

    def __len__(self) -> int:
        with self.lock:
            return len(self._entries)

    def __contains__(self, path: str) -> bool:
        with self.lock:
            return path in self._entries

    @property
    def dirty(self) -> bool:
        """True if there are mutations not yet written to disk."""
        with self.lock:
            return self._version != self._saved_version

    def load(self) -> Dict[str, CacheEntry]:
        """Replace in-memory state with the persisted snapshot. Never raises."""
        entries: Dict[str, CacheEntry] = {}
        if self.cache_file.exists():
            try:
                entries = _snapshot_adapter.validate_json(self.cache_file.read_bytes())
                log.info("Loaded hash cache with %d entries from %s", len(entries), self.cache_file)
            except (OSError, ValueError, ValidationError) as e:
                log.warning("Could not load hash cache %s, starting empty: %s", self.cache_file, e)
                entries = {}
        else:
            log.info("No hash cache at %s, starting fresh", self.cache_file)
        with self.lock:
            self._entries = entries
            self._version += 1
            self._saved_version = self._version
        return dict(entries)

    def save(self) -> None:
        """Atomically replace the snapshot file with current state. Raises OSError on failure."""
        with self._save_lock:
            with self.lock:
                snapshot = {path: entry.model_dump() for path, entry in self._entries.items()}
                version = self._version
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=".blobs-", suffix=".json.tmp", dir=self.cache_file.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(snapshot, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.cache_file)
            except OSError:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
                raise
            with self.lock:
                self._saved_version = max(self._saved_version, version)
            log.debug("Saved hash cache with %d entries", len(snapshot))

    def save_if_dirty(self) -> bool:
        """Save only when there are unsaved mutations. Returns True if a save happened."""
        if not self.dirty:
            return False
        self.save()
        return True

    def wait_for_pending_save(self) -> None:
        """Block until any in-flight save has finished."""
        with self._save_lock:
            pass

    def get(self, path: str) -> Optional[CacheEntry]:
        with self.lock:
            return self._entries.get(path)

    def put(self, path: str, entry: CacheEntry) -> None:
        with self.lock:
            self._entries[path] = entry
            self._version += 1

    def remove(self, path: str) -> bool:
        """Remove entry for path. Returns False if there was none."""
        with self.lock:
            if self._entries.pop(path, None) is None:
                return False
            self._version += 1
            return True

    def all_entries(self) -> Dict[str, CacheEntry]:
        """Copy of the whole mapping (entries are immutable, so a shallow copy is enough)."""
        with self.lock:
            return dict(self._entries)

    def items(self) -> Iterator[Tuple[str, CacheEntry]]:
        """Iterate over a copy of the mapping."""
        return iter(self.all_entries().items())
