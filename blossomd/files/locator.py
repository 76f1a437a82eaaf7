"""Find the on-disk file for a content hash.

Lookup is a linear scan over the cache: fine for thousands to low millions of files.
A hash -> paths index is the first thing to add if that stops being true.
"""

from pathlib import Path
from typing import Optional

from blossomd.files.hash_store import HashCache


def find_by_hash(cache: HashCache, root: Path, content_hash: str, prefix: str = "") -> Optional[Path]:
    """
    Return the first cached path with this hash whose file still exists, or None.
    A cache hit whose file has vanished counts as a miss. With prefix, only paths
    under that relative folder are considered. Order follows cache iteration order.
    """
    for rel, entry in cache.items():
        if entry.hash != content_hash:
            continue
        if prefix and not rel.startswith(prefix):
            continue
        full = root / rel
        if full.is_file():
            return full
    return None
