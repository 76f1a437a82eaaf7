"""Filesystem change watcher: keeps the hash cache in step with external changes to the blob root.

Events arrive in batches from ``watchfiles.awatch``; each batch is reconciled in a worker
thread with the same logic the scanner uses and persisted once. Notification delivery is
not fully reliable (platform limits, overflowed queues, files changed while the process
was busy), so a periodic sweep also drops entries whose files have disappeared. The sweep
is a best-effort backstop on a fixed interval, not a timing guarantee.
"""

import asyncio
import logging
from pathlib import Path
from typing import Iterable, Optional, Set, Tuple

from watchfiles import Change, awatch

from blossomd.files.scanner import DirectoryScanner
from blossomd.files.storage import is_ignored, to_relative

log = logging.getLogger(__name__)


class ChangeWatcher:
    """Watches root recursively and applies changes to the scanner's cache."""

    def __init__(
        self,
        scanner: DirectoryScanner,
        stop_event: Optional[asyncio.Event] = None,
        debounce_ms: int = 200,
        force_polling: bool = False,
        sweep_interval: float = 300.0,
    ) -> None:
        self.scanner = scanner
        self.root = scanner.root
        self.cache = scanner.cache
        self.stop_event = stop_event or asyncio.Event()
        self.debounce_ms = debounce_ms
        self.force_polling = force_polling
        self.sweep_interval = sweep_interval
        self.is_watching = False

    def _apply_one(self, change: Change, path: Path) -> int:
        rel = to_relative(self.root, path)
        if rel is None or is_ignored(path.name):
            return 0
        log.debug("File change detected: %s - %s", change.name, rel)
        try:
            if path.is_symlink():
                return 0
            if path.is_file():
                return int(self.scanner.process_file(path))
            if path.is_dir():
                # Any event on a live directory may stand for a swap in place: rescan it
                log.info("Directory change detected: %s", rel)
                return self.scanner.scan_subtree(path) + self.scanner.clean_stale_entries(prefix=rel + "/")
            return self.scanner.handle_deletion(rel)
        except OSError as e:
            log.warning("Error handling change for %s: %s", rel, e)
            return 0

    def _persist(self) -> None:
        """Save pending mutations; on failure log and leave them for the next batch or sweep."""
        try:
            self.cache.save_if_dirty()
        except OSError as e:
            log.error("Could not save hash cache, will retry: %s", e)

    def apply_changes(self, changes: Iterable[Tuple[Change, str]]) -> int:
        """Reconcile one batch of (change, path) events. Returns the number of cache mutations."""
        seen: Set[str] = set()
        mutations = 0
        for change, raw_path in changes:
            if raw_path in seen:
                continue
            seen.add(raw_path)
            mutations += self._apply_one(change, Path(raw_path))
        self._persist()
        return mutations

    def sweep(self) -> int:
        """Drop entries whose files are gone and persist. Returns the number removed."""
        removed = self.scanner.clean_stale_entries()
        self._persist()
        return removed

    async def run(self) -> None:
        """Watch until stop_event is set. Cancellation is re-raised and not logged as a failure."""
        self.root.mkdir(parents=True, exist_ok=True)
        self.is_watching = True
        log.info("Watching for changes in %s", self.root)
        try:
            async for changes in awatch(
                self.root,
                watch_filter=None,
                debounce=self.debounce_ms,
                stop_event=self.stop_event,
                force_polling=self.force_polling,
                poll_delay_ms=100,
                recursive=True,
            ):
                await asyncio.to_thread(self.apply_changes, changes)
        except asyncio.CancelledError:
            log.info("File watcher cancelled")
            raise
        except Exception:
            log.exception("Error in file watcher")
            raise
        finally:
            self.is_watching = False
            log.info("File watching stopped")

    async def run_sweeper(self) -> None:
        """Sweep stale entries every sweep_interval seconds until stop_event is set."""
        while not self.stop_event.is_set():
            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=self.sweep_interval)
            except asyncio.TimeoutError:
                pass
            if self.stop_event.is_set():
                break
            try:
                await asyncio.to_thread(self.sweep)
            except Exception:
                log.exception("Stale-entry sweep failed")

    def stop(self) -> None:
        self.stop_event.set()
