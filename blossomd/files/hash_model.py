"""Models for cached content hashes, keyed by path relative to the blob root."""

from pydantic import BaseModel, ConfigDict, Field


class CacheEntry(BaseModel):
    """Content hash (SHA-256) of a file at the recorded mtime (ms) and size (bytes)."""

    model_config = ConfigDict(frozen=True)

    hash: str = Field(pattern=r"^[a-f0-9]{64}$")
    mtime: int  # milliseconds since epoch
    size: int = Field(ge=0)


class StoredBlob(BaseModel):
    """A cache entry together with its relative path (for listing)."""

    model_config = ConfigDict(frozen=True)

    relative_path: str
    hash: str
    size: int
    mtime: int
