"""Serve blob content (full, byte range, HEAD) and build blob descriptors."""

import mimetypes
import re
from pathlib import Path
from typing import Dict, Iterator, Optional, Tuple

from fastapi.responses import Response, StreamingResponse
from pydantic import BaseModel

from blossomd.errors import CORS_HEADERS, RangeNotSatisfiableError

DEFAULT_MIME = "application/octet-stream"

_BLOB_PATH = re.compile(r"^([a-f0-9]{64})(?:\.(.+))?$")
_RANGE = re.compile(r"^bytes=(\d+)-(\d*)$")
_STREAM_CHUNK = 64 * 1024


class BlobDescriptor(BaseModel):
    """Blob descriptor returned by upload and list (BUD-02)."""

    url: str
    sha256: str
    size: int
    type: str
    uploaded: int


def parse_blob_path(blob_path: str) -> Optional[Tuple[str, Optional[str]]]:
    """Split '<sha256>[.ext]' into (hash, extension). None if the hash part is malformed."""
    m = _BLOB_PATH.match(blob_path.lstrip("/"))
    if not m:
        return None
    return m.group(1), m.group(2)


def media_type_only(content_type: Optional[str]) -> str:
    """'text/plain; charset=utf-8' -> 'text/plain'."""
    return (content_type or "").split(";", 1)[0].strip().lower()


def determine_mime_type(filename: Optional[str] = None, content_type: Optional[str] = None) -> str:
    """Explicit non-generic content type wins; else infer from filename; else generic binary."""
    explicit = media_type_only(content_type)
    if explicit and explicit != DEFAULT_MIME:
        return explicit
    if filename:
        guessed, _ = mimetypes.guess_type(filename)
        if guessed:
            return guessed
    return DEFAULT_MIME


def get_mime_type(file_path: Path, extension: Optional[str] = None) -> str:
    """MIME type for serving: an extension given in the URL overrides the file's own."""
    mime_type = mimetypes.guess_type(file_path.name)[0] or DEFAULT_MIME
    if extension:
        ext_mime_type, _ = mimetypes.guess_type(f"blob.{extension}")
        if ext_mime_type:
            mime_type = ext_mime_type
    return mime_type


def extension_for(content_type: Optional[str]) -> str:
    """File extension for an upload's content type ('' if unknown)."""
    media_type = media_type_only(content_type)
    if not media_type:
        return ""
    return mimetypes.guess_extension(media_type) or ""


def generate_filename(content_hash: str, content_type: Optional[str] = None) -> str:
    return f"{content_hash}{extension_for(content_type)}"


def parse_range_header(range_header: str, file_size: int) -> Optional[Tuple[int, int]]:
    """
    Parse 'bytes=start-end' (end optional = last byte). Returns (start, end) inclusive,
    or None if malformed or outside [0, file_size). Suffix and multi-ranges are not supported.
    """
    m = _RANGE.match(range_header.strip())
    if not m:
        return None
    start = int(m.group(1))
    end = int(m.group(2)) if m.group(2) else file_size - 1
    if 0 <= start <= end < file_size:
        return start, end
    return None


def blob_headers(mime_type: str, file_size: int) -> Dict[str, str]:
    return {
        **CORS_HEADERS,
        "Content-Type": mime_type,
        "Content-Length": str(file_size),
        "Accept-Ranges": "bytes",
    }


def iter_file_range(path: Path, start: int, end: int) -> Iterator[bytes]:
    """Yield bytes [start, end] of path in chunks."""
    remaining = end - start + 1
    with open(path, "rb") as f:
        f.seek(start)
        while remaining > 0:
            chunk = f.read(min(_STREAM_CHUNK, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk


def build_blob_response(
    path: Path,
    file_size: int,
    mime_type: str,
    range_header: Optional[str] = None,
    head: bool = False,
) -> Response:
    """
    Full content (200), partial content (206) or headers only (HEAD).
    Raises RangeNotSatisfiableError for a malformed or out-of-bounds range.
    """
    headers = blob_headers(mime_type, file_size)
    if head:
        return Response(status_code=200, headers=headers)
    if range_header:
        byte_range = parse_range_header(range_header, file_size)
        if byte_range is None:
            raise RangeNotSatisfiableError(file_size)
        start, end = byte_range
        headers["Content-Range"] = f"bytes {start}-{end}/{file_size}"
        headers["Content-Length"] = str(end - start + 1)
        return StreamingResponse(
            iter_file_range(path, start, end), status_code=206, headers=headers
        )
    return StreamingResponse(iter_file_range(path, 0, file_size - 1), status_code=200, headers=headers)


def create_blob_descriptor(
    base_url: str,
    content_hash: str,
    size: int,
    mime_type: str,
    uploaded: int,
    filename: Optional[str] = None,
) -> BlobDescriptor:
    """Descriptor whose url keeps the stored file's extension (e.g. <base>/<hash>.png)."""
    extension = Path(filename).suffix if filename else ""
    return BlobDescriptor(
        url=f"{base_url.rstrip('/')}/{content_hash}{extension}",
        sha256=content_hash,
        size=size,
        type=mime_type,
        uploaded=uploaded,
    )
