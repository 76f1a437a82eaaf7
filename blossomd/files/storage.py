"""Safe path handling under the blob root (no directory traversal) and raw file operations."""

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Iterator, Optional

log = logging.getLogger(__name__)

# Nostr pubkey used as a folder name: 64 hex chars only
_PUBKEY = re.compile(r"^[a-fA-F0-9]{64}$")
# Blob file name written by uploads: <sha256>[.ext]
_BLOB_FILENAME = re.compile(r"^[a-f0-9]{64}(\.[A-Za-z0-9+\-]{1,16})?$")

# Temporary files written by uploads before the atomic rename. Never cached.
TEMP_PREFIX = ".blossomd-"


def is_ignored(name: str) -> bool:
    """True if a file name belongs to an in-progress write and must not be hashed."""
    return name.startswith(TEMP_PREFIX)


def to_relative(root: Path, path: Path) -> Optional[str]:
    """Cache key for path: forward-slash path relative to root, or None if outside root."""
    try:
        rel = Path(path).relative_to(root)
    except ValueError:
        return None
    key = rel.as_posix()
    if key in ("", "."):
        return None
    return key


def _sanitize_pubkey_for_path(pubkey: str) -> Optional[str]:
    """Return lowercase pubkey if safe for use as a single path segment."""
    pubkey = pubkey.strip()
    if not _PUBKEY.match(pubkey):
        return None
    return pubkey.lower()


def pubkey_base_path(root: Path, pubkey: str) -> Path:
    """Return the folder holding a pubkey's uploads (root / pubkey)."""
    safe = _sanitize_pubkey_for_path(pubkey)
    if not safe:
        raise ValueError("Invalid pubkey for path")
    return root / safe


def resolve_blob_path(root: Path, pubkey: str, filename: str) -> Path:
    """Resolve the on-disk path for an uploaded blob. Rejects anything but <sha256>[.ext]."""
    base = pubkey_base_path(root, pubkey)
    if not _BLOB_FILENAME.match(filename):
        raise ValueError(f"Unsafe blob file name: {filename!r}")
    return base / filename


def write_blob(target: Path, data: bytes) -> None:
    """Write data to target atomically via a temporary sibling file and rename."""
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=".part", dir=target.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, target)
    except OSError:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def delete_file(root: Path, target: Path) -> None:
    """
    Delete a file under root. After deleting the file, removes any now-empty parent
    directories up to (but not including) root so per-pubkey folders do not pile up.
    Raises ValueError if target is outside root or not a file; FileNotFoundError if missing.
    """
    if to_relative(root, target) is None:
        raise ValueError(f"Path outside of blob directory: {target}")
    if not target.exists():
        raise FileNotFoundError(f"File not found: {target}")
    if not target.is_file():
        raise ValueError(f"Not a file: {target}")
    target.unlink()
    parent = target.parent
    while parent != root and parent.exists():
        try:
            if not any(parent.iterdir()):
                parent.rmdir()
                parent = parent.parent
            else:
                break
        except OSError:
            break


def iter_files(root: Path) -> Iterator[Path]:
    """
    Yield every regular file under root, depth-first. Symlinks and temporary upload
    files are skipped. Unreadable directories are logged and skipped.
    """
    try:
        entries = sorted(os.scandir(root), key=lambda e: e.name)
    except OSError as e:
        log.warning("Cannot list directory %s: %s", root, e)
        return
    for entry in entries:
        try:
            if entry.is_dir(follow_symlinks=False):
                yield from iter_files(Path(entry.path))
            elif entry.is_file(follow_symlinks=False) and not is_ignored(entry.name):
                yield Path(entry.path)
        except OSError as e:
            log.warning("Cannot stat %s: %s", entry.path, e)
            continue
