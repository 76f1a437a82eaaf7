"""FastAPI dependencies for the per-app instances created in the lifespan."""

from typing import TYPE_CHECKING

from fastapi import Request

from blossomd.config import Settings

if TYPE_CHECKING:
    from blossomd.files.service import BlobStorage
    from blossomd.whitelist.service import ConfigStore


def get_storage(request: Request) -> "BlobStorage":
    """Blob storage owned by this app (set up in the lifespan)."""
    return request.app.state.storage


def get_config_store(request: Request) -> "ConfigStore":
    """Whitelist / upload-limit config owned by this app."""
    return request.app.state.config_store


def get_app_settings(request: Request) -> Settings:
    """Settings the app was started with."""
    return request.app.state.settings
