"""Blossom routes (BUD-01/02): upload, retrieve, list, delete."""

import asyncio
import logging
import time
from pathlib import PurePosixPath
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from blossomd.auth.dependencies import (
    require_upload_auth,
    validate_authorization,
    validate_authorization_hash,
)
from blossomd.auth.nostr import NostrEvent, is_valid_pubkey
from blossomd.config import Settings, get_settings
from blossomd.errors import (
    AuthError,
    InternalError,
    NotFoundError,
    SizeLimitError,
    ValidationError,
)
from blossomd.files.hash_store import compute_hash
from blossomd.files.responder import (
    BlobDescriptor,
    build_blob_response,
    create_blob_descriptor,
    determine_mime_type,
    generate_filename,
    get_mime_type,
    parse_blob_path,
)
from blossomd.files.service import BlobStorage
from blossomd.limiter import limiter
from blossomd.state import get_app_settings, get_config_store, get_storage
from blossomd.whitelist.service import ConfigStore

router = APIRouter(tags=["blossom"])
log = logging.getLogger(__name__)

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Authorization, *",
    "Access-Control-Allow-Methods": "GET, HEAD, PUT, DELETE, POST, OPTIONS",
    "Access-Control-Max-Age": "86400",
}


def _upload_limit() -> str:
    return get_settings().upload_rate_limit


def _delete_limit() -> str:
    return get_settings().delete_rate_limit


def _list_limit() -> str:
    return get_settings().list_rate_limit


def _base_url(request: Request, settings: Settings) -> str:
    """Configured public URL, else the URL the client used to reach us."""
    return settings.public_url or str(request.base_url)


def _parse_timestamp(value: Optional[str]) -> Optional[int]:
    """Unix seconds from a query param; unparseable values are ignored (None)."""
    if value is None or not value.strip():
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


async def _read_body(request: Request, max_size: int) -> bytes:
    """Read the request body, failing with 413 as soon as it exceeds max_size."""
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > max_size:
        raise SizeLimitError(f"File too large. Maximum size: {max_size} bytes")
    chunks: List[bytes] = []
    total = 0
    async for chunk in request.stream():
        total += len(chunk)
        if total > max_size:
            raise SizeLimitError(f"File too large. Maximum size: {max_size} bytes")
        chunks.append(chunk)
    return b"".join(chunks)


def _parse_blob_path_or_400(blob_path: str):
    parsed = parse_blob_path(blob_path)
    if parsed is None:
        raise ValidationError("Invalid path. Expected /<sha256>[.ext]")
    return parsed


@router.options("/upload")
@router.options("/list/{pubkey}")
@router.options("/{blob_path}")
async def preflight() -> Response:
    """CORS preflight for every Blossom endpoint."""
    return Response(status_code=200, headers=PREFLIGHT_HEADERS)


@router.put("/upload", response_model=BlobDescriptor)
@limiter.limit(_upload_limit)
async def upload_blob(
    request: Request,
    event: Annotated[NostrEvent, Depends(require_upload_auth)],
    storage: Annotated[BlobStorage, Depends(get_storage)],
    config_store: Annotated[ConfigStore, Depends(get_config_store)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> BlobDescriptor:
    """
    Upload a blob. Body: raw bytes. Authorization is checked before the body is read;
    the body's hash must then appear in one of the event's 'x' tags. The blob is stored
    under the uploader's pubkey folder and is retrievable as soon as this returns.
    """
    max_size = config_store.get_config().max_file_size
    body = await _read_body(request, max_size)
    if not body:
        raise ValidationError("Empty request body")
    content_hash = compute_hash(body)
    if not validate_authorization_hash(event, [content_hash]):
        log.warning("upload rejected: hash %s not authorized by event %s", content_hash, event.id)
        raise ValidationError("Authorization hash does not match uploaded content")

    content_type = request.headers.get("content-type")
    mime_type = determine_mime_type(None, content_type)
    filename = generate_filename(content_hash, content_type)
    try:
        await storage.store_blob(event.pubkey, filename, body, content_hash)
    except ValueError as e:
        log.warning("upload rejected filename=%r: %s", filename, e)
        raise ValidationError(str(e))
    except OSError as e:
        log.error("upload failed for %s: %s", content_hash, e)
        raise InternalError("Failed to store blob")
    log.info("upload pubkey=%s sha256=%s size=%d type=%s", event.pubkey, content_hash, len(body), mime_type)
    return create_blob_descriptor(
        _base_url(request, settings),
        content_hash,
        len(body),
        mime_type,
        int(time.time()),
        filename,
    )


@router.get("/list/{pubkey}", response_model=List[BlobDescriptor])
@limiter.limit(_list_limit)
async def list_blobs(
    request: Request,
    pubkey: str,
    storage: Annotated[BlobStorage, Depends(get_storage)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    since: Optional[str] = None,
    until: Optional[str] = None,
) -> List[BlobDescriptor]:
    """List blobs uploaded by pubkey, most recent first, optionally filtered by mtime (seconds)."""
    if not is_valid_pubkey(pubkey):
        raise ValidationError("Invalid pubkey format")
    since_ts = _parse_timestamp(since)
    until_ts = _parse_timestamp(until)
    base_url = _base_url(request, settings)
    result: List[BlobDescriptor] = []
    for blob in storage.get_blobs_by_pubkey(pubkey):
        uploaded = blob.mtime // 1000
        if since_ts is not None and uploaded < since_ts:
            continue
        if until_ts is not None and uploaded > until_ts:
            continue
        filename = PurePosixPath(blob.relative_path).name
        result.append(
            create_blob_descriptor(
                base_url, blob.hash, blob.size, determine_mime_type(filename), uploaded, filename
            )
        )
    log.info("list pubkey=%s count=%d", pubkey, len(result))
    return result


@router.api_route("/{blob_path}", methods=["GET", "HEAD"])
async def get_blob(
    request: Request,
    blob_path: str,
    storage: Annotated[BlobStorage, Depends(get_storage)],
) -> Response:
    """Serve a blob by hash (full, byte range, or HEAD). An extension only affects Content-Type."""
    content_hash, extension = _parse_blob_path_or_400(blob_path)
    path = await asyncio.to_thread(storage.find_blob, content_hash)
    if path is None:
        raise NotFoundError("Blob not found")
    try:
        file_size = path.stat().st_size
    except FileNotFoundError:
        raise NotFoundError("Blob not found")
    return build_blob_response(
        path,
        file_size,
        get_mime_type(path, extension),
        range_header=request.headers.get("range"),
        head=request.method == "HEAD",
    )


@router.delete("/{blob_path}")
@limiter.limit(_delete_limit)
async def delete_blob(
    request: Request,
    blob_path: str,
    storage: Annotated[BlobStorage, Depends(get_storage)],
    config_store: Annotated[ConfigStore, Depends(get_config_store)],
) -> dict:
    """Delete the caller's copy of a blob. The event needs t=delete and an 'x' tag for the hash."""
    content_hash, _ = _parse_blob_path_or_400(blob_path)
    event = validate_authorization(request.headers.get("authorization"), "delete", config_store)
    if not validate_authorization_hash(event, [content_hash]):
        raise AuthError("Invalid delete authorization event")
    try:
        deleted = await storage.delete_blob(event.pubkey, content_hash)
    except OSError as e:
        log.error("delete failed for %s: %s", content_hash, e)
        raise InternalError("Failed to delete blob")
    if not deleted:
        raise NotFoundError("Blob not found")
    log.info("delete pubkey=%s sha256=%s", event.pubkey, content_hash)
    return {"message": "Blob deleted successfully"}
