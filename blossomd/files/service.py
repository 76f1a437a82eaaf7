"""Blob storage service: owns the hash cache, scanner and watcher for one blob root.

Lifecycle: ``start()`` loads the cache, runs the initial scan (awaited, or in the
background when ``wait_for_initial_scan`` is off) and then starts the watcher and the
stale-entry sweeper; ``stop()`` shuts both down and waits for any in-flight save.
Request-path mutations (upload, delete) update the cache and persist it before returning,
so a successful upload is immediately retrievable without waiting for the watcher.
"""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from blossomd.files.hash_model import CacheEntry, StoredBlob
from blossomd.files.hash_store import HashCache
from blossomd.files.locator import find_by_hash
from blossomd.files.scanner import DirectoryScanner, ScanResult
from blossomd.files.storage import (
    delete_file,
    pubkey_base_path,
    resolve_blob_path,
    to_relative,
    write_blob,
)
from blossomd.files.watcher import ChangeWatcher

log = logging.getLogger(__name__)

_STOP_TIMEOUT = 5.0


class BlobStorage:
    """Content-addressed view over a blob directory that external actors may also modify."""

    def __init__(
        self,
        blob_dir: Path,
        cache_file: Path,
        watch_enabled: bool = True,
        force_polling: bool = False,
        debounce_ms: int = 200,
        sweep_interval: float = 300.0,
        wait_for_initial_scan: bool = True,
    ) -> None:
        blob_dir = Path(blob_dir)
        blob_dir.mkdir(parents=True, exist_ok=True)
        self.blob_dir = blob_dir.resolve()
        self.cache = HashCache(cache_file)
        self.scanner = DirectoryScanner(self.blob_dir, self.cache)
        self.watch_enabled = watch_enabled
        self.force_polling = force_polling
        self.debounce_ms = debounce_ms
        self.sweep_interval = sweep_interval
        self.wait_for_initial_scan = wait_for_initial_scan
        self.watcher: Optional[ChangeWatcher] = None
        self._tasks: List[asyncio.Task] = []
        self._started = False
        self._stopping = False

    @property
    def is_running(self) -> bool:
        """True while the watcher is subscribed to filesystem events."""
        return self.watcher is not None and self.watcher.is_watching

    @property
    def entry_count(self) -> int:
        return len(self.cache)

    async def start(self) -> None:
        if self._started:
            log.warning("Storage service is already running")
            return
        self._started = True
        log.info("Starting storage service for %s", self.blob_dir)
        await asyncio.to_thread(self.cache.load)
        if self.wait_for_initial_scan:
            await self._initial_scan()
            self._start_watching()
        else:
            self._tasks.append(asyncio.create_task(self._scan_then_watch()))

    async def _initial_scan(self) -> None:
        try:
            await asyncio.to_thread(self.scanner.scan)
        except OSError as e:
            log.error("Initial scan could not save the hash cache: %s", e)

    async def _scan_then_watch(self) -> None:
        await self._initial_scan()
        self._start_watching()

    def _start_watching(self) -> None:
        if self._stopping:
            return
        if not self.watch_enabled:
            log.info("File watching disabled")
            return
        self.watcher = ChangeWatcher(
            self.scanner,
            stop_event=asyncio.Event(),
            debounce_ms=self.debounce_ms,
            force_polling=self.force_polling,
            sweep_interval=self.sweep_interval,
        )
        self._tasks.append(asyncio.create_task(self.watcher.run()))
        self._tasks.append(asyncio.create_task(self.watcher.run_sweeper()))

    async def stop(self) -> None:
        """Stop watcher and sweeper, then wait for any in-flight cache save."""
        self._stopping = True
        if self.watcher is not None:
            self.watcher.stop()
        for task in self._tasks:
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=_STOP_TIMEOUT)
            except asyncio.TimeoutError:
                log.warning("Timed out waiting for storage task, cancelling")
                task.cancel()
                # wait() returns on the task's cancellation without raising it here
                await asyncio.wait([task])
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
            except Exception as e:
                log.error("Storage task ended with error: %s", e)
        self._tasks.clear()
        await asyncio.to_thread(self.cache.wait_for_pending_save)
        self._started = False
        self._stopping = False
        log.info("Storage service stopped")

    # Lookups

    def find_blob(self, content_hash: str, pubkey: Optional[str] = None) -> Optional[Path]:
        """First live file with this hash (optionally only inside pubkey's folder). Blocking."""
        prefix = pubkey_base_path(Path(""), pubkey).as_posix() + "/" if pubkey else ""
        return find_by_hash(self.cache, self.blob_dir, content_hash, prefix=prefix)

    def get_file_hash(self, relative_path: str) -> Optional[str]:
        entry = self.cache.get(relative_path)
        return entry.hash if entry else None

    def get_blobs_by_pubkey(self, pubkey: str) -> List[StoredBlob]:
        """Cached blobs under pubkey's folder, most recent first."""
        prefix = pubkey_base_path(Path(""), pubkey).as_posix() + "/"
        blobs = [
            StoredBlob(relative_path=rel, hash=e.hash, size=e.size, mtime=e.mtime)
            for rel, e in self.cache.items()
            if rel.startswith(prefix)
        ]
        blobs.sort(key=lambda b: b.mtime, reverse=True)
        return blobs

    # Mutations from requests

    def _store_blob_sync(self, pubkey: str, filename: str, data: bytes, content_hash: str) -> Tuple[Path, CacheEntry]:
        target = resolve_blob_path(self.blob_dir, pubkey, filename)
        write_blob(target, data)
        st = target.stat()
        entry = CacheEntry(hash=content_hash, mtime=st.st_mtime_ns // 1_000_000, size=st.st_size)
        rel = to_relative(self.blob_dir, target)
        self.cache.put(rel, entry)
        self.cache.save()
        return target, entry

    async def store_blob(self, pubkey: str, filename: str, data: bytes, content_hash: str) -> Tuple[Path, CacheEntry]:
        """
        Write blob under pubkey's folder, record it in the cache and persist before
        returning. Raises ValueError for unsafe names, OSError on write/save failure.
        """
        target, entry = await asyncio.to_thread(self._store_blob_sync, pubkey, filename, data, content_hash)
        log.info("Stored blob %s for %s (%d bytes)", content_hash, pubkey, entry.size)
        return target, entry

    def _delete_blob_sync(self, pubkey: str, content_hash: str) -> bool:
        target = self.find_blob(content_hash, pubkey=pubkey)
        if target is None:
            return False
        rel = to_relative(self.blob_dir, target)
        try:
            delete_file(self.blob_dir, target)
        except FileNotFoundError:
            # Vanished between lookup and unlink: treat as already gone
            self.cache.remove(rel)
            self.cache.save()
            return False
        self.cache.remove(rel)
        self.cache.save()
        return True

    async def delete_blob(self, pubkey: str, content_hash: str) -> bool:
        """Delete pubkey's copy of a blob. Returns False if there was none."""
        deleted = await asyncio.to_thread(self._delete_blob_sync, pubkey, content_hash)
        if deleted:
            log.info("Deleted blob %s for %s", content_hash, pubkey)
        return deleted

    # Maintenance

    async def refresh_file(self, relative_path: str) -> bool:
        """Re-check one file (relative to the blob root). Returns True if its entry changed."""
        path = self.blob_dir / relative_path
        if to_relative(self.blob_dir, path.resolve()) is None:
            raise ValueError(f"Path outside of blob directory: {relative_path}")

        def _refresh() -> bool:
            if not path.is_file():
                return False
            updated = self.scanner.process_file(path)
            if updated:
                self.cache.save()
            return updated

        return await asyncio.to_thread(_refresh)

    async def refresh_all(self) -> ScanResult:
        return await asyncio.to_thread(self.scanner.scan)

    async def clean_stale_entries(self) -> int:
        def _clean() -> int:
            removed = self.scanner.clean_stale_entries()
            if removed:
                self.cache.save()
            return removed

        return await asyncio.to_thread(_clean)

    async def clean_and_refresh(self) -> ScanResult:
        removed = await self.clean_stale_entries()
        result = await self.refresh_all()
        result.removed += removed
        return result
