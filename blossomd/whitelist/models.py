"""Application config (whitelist and upload limits) and admin API schemas."""

import logging
import re
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

log = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 100 * 1024 * 1024  # 100 MiB

_HEX64 = re.compile(r"^[a-fA-F0-9]{64}$")


class AppConfig(BaseModel):
    """Contents of app-config.json. Invalid values fall back to defaults instead of failing."""

    model_config = ConfigDict(populate_by_name=True)

    whitelist: List[str] = Field(default_factory=list)
    max_file_size: int = Field(default=DEFAULT_MAX_FILE_SIZE, alias="maxFileSize")
    allow_anonymous: bool = Field(default=False, alias="allowAnonymous")

    @field_validator("whitelist", mode="before")
    @classmethod
    def _whitelist(cls, v: Any) -> List[str]:
        if not isinstance(v, list):
            log.warning("Invalid whitelist format, resetting to empty list")
            return []
        out: List[str] = []
        for item in v:
            if isinstance(item, str) and _HEX64.match(item.strip()):
                key = item.strip().lower()
                if key not in out:
                    out.append(key)
            else:
                log.warning("Dropping invalid whitelist entry %r", item)
        return out

    @field_validator("max_file_size", mode="before")
    @classmethod
    def _max_file_size(cls, v: Any) -> int:
        if v is None:
            return DEFAULT_MAX_FILE_SIZE
        if isinstance(v, bool) or not isinstance(v, int) or v <= 0:
            log.warning("Invalid maxFileSize %r, using default", v)
            return DEFAULT_MAX_FILE_SIZE
        return v

    @field_validator("allow_anonymous", mode="before")
    @classmethod
    def _allow_anonymous(cls, v: Any) -> bool:
        if not isinstance(v, bool):
            log.warning("Invalid allowAnonymous value %r, using default", v)
            return False
        return v

    def to_file(self) -> dict:
        """On-disk representation (camelCase keys)."""
        return self.model_dump(by_alias=True)


class ConfigUpdate(BaseModel):
    """Admin request body for changing settings. Omitted fields stay unchanged."""

    model_config = ConfigDict(populate_by_name=True)

    max_file_size: Optional[int] = Field(default=None, alias="maxFileSize", gt=0)
    allow_anonymous: Optional[bool] = Field(default=None, alias="allowAnonymous")


class WhitelistAdd(BaseModel):
    """Admin request body for adding a pubkey to the whitelist."""

    pubkey: str = Field(pattern=r"^[a-fA-F0-9]{64}$")
