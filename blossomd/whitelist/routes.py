"""Admin API: whitelist and upload limits, storage status and rescans. Bearer admin_token."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status

from blossomd.auth.dependencies import require_admin
from blossomd.auth.nostr import is_valid_pubkey
from blossomd.errors import InternalError, NotFoundError, ValidationError
from blossomd.files.service import BlobStorage
from blossomd.state import get_config_store, get_storage
from blossomd.whitelist.models import ConfigUpdate, WhitelistAdd
from blossomd.whitelist.service import ConfigStore

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])
log = logging.getLogger(__name__)


@router.get("/config")
def get_config(
    config_store: Annotated[ConfigStore, Depends(get_config_store)],
) -> dict:
    """Current app config in its on-disk shape."""
    return config_store.get_config().to_file()


@router.patch("/config")
def update_config(
    body: ConfigUpdate,
    config_store: Annotated[ConfigStore, Depends(get_config_store)],
) -> dict:
    """Change maxFileSize and/or allowAnonymous; omitted fields stay as they are."""
    changes = body.model_dump(exclude_none=True)
    if not changes:
        raise ValidationError("No changes supplied")
    try:
        config = config_store.update_config(**changes)
    except OSError:
        raise InternalError("Failed to save configuration")
    log.info("Admin updated config: %s", changes)
    return config.to_file()


@router.post("/config/reset")
def reset_config(
    config_store: Annotated[ConfigStore, Depends(get_config_store)],
) -> dict:
    try:
        config = config_store.reset_to_defaults()
    except OSError:
        raise InternalError("Failed to save configuration")
    return config.to_file()


@router.post("/whitelist", status_code=status.HTTP_201_CREATED)
def add_to_whitelist(
    body: WhitelistAdd,
    config_store: Annotated[ConfigStore, Depends(get_config_store)],
) -> dict:
    """Add a pubkey. Adding one that is already present is not an error."""
    try:
        added = config_store.add_to_whitelist(body.pubkey)
    except OSError:
        raise InternalError("Failed to save configuration")
    return {"pubkey": body.pubkey.lower(), "added": added}


@router.delete("/whitelist/{pubkey}")
def remove_from_whitelist(
    pubkey: str,
    config_store: Annotated[ConfigStore, Depends(get_config_store)],
) -> dict:
    if not is_valid_pubkey(pubkey):
        raise ValidationError("Invalid pubkey format")
    try:
        removed = config_store.remove_from_whitelist(pubkey)
    except OSError:
        raise InternalError("Failed to save configuration")
    if not removed:
        raise NotFoundError("Pubkey not in whitelist")
    return {"pubkey": pubkey.lower(), "removed": True}


@router.get("/storage")
def storage_status(
    storage: Annotated[BlobStorage, Depends(get_storage)],
) -> dict:
    return {
        "blobDir": str(storage.blob_dir),
        "entries": storage.entry_count,
        "watching": storage.is_running,
    }


@router.post("/storage/rescan")
async def rescan_storage(
    storage: Annotated[BlobStorage, Depends(get_storage)],
) -> dict:
    """Drop entries for missing files, then rescan the whole blob tree."""
    try:
        result = await storage.clean_and_refresh()
    except OSError as e:
        log.error("Rescan could not save the hash cache: %s", e)
        raise InternalError("Failed to save hash cache")
    log.info("Admin rescan: updated=%d removed=%d", result.updated, result.removed)
    return {"updated": result.updated, "removed": result.removed, "entries": storage.entry_count}
