"""Config store: app-config.json lifecycle and whitelist management."""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

from blossomd.whitelist.models import AppConfig

log = logging.getLogger(__name__)


class ConfigStore:
    """Loads, validates and persists AppConfig. Readers get copies; writers are serialized."""

    def __init__(self, config_file: Path) -> None:
        self.config_file = Path(config_file)
        self._config = AppConfig()
        self._lock = threading.RLock()

    def initialize(self) -> None:
        """Create the config directory and load the file, writing defaults if it is missing."""
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        if self.config_file.exists():
            self._load()
            log.info("Loaded configuration from %s", self.config_file)
        else:
            with self._lock:
                self._config = AppConfig()
                self.save()
            log.info("Created default configuration at %s", self.config_file)

    def _load(self) -> None:
        """Read the file. A corrupt file is replaced by defaults (and rewritten)."""
        with self._lock:
            try:
                data = json.loads(self.config_file.read_text(encoding="utf-8"))
                if not isinstance(data, dict):
                    raise ValueError("config root must be an object")
                self._config = AppConfig.model_validate(data)
            except (json.JSONDecodeError, OSError, ValueError) as e:
                log.error("Error loading config file %s, using defaults: %s", self.config_file, e)
                self._config = AppConfig()
                self.save()

    def save(self) -> None:
        """Atomically write the current config. Raises OSError on failure."""
        with self._lock:
            content = json.dumps(self._config.to_file(), indent=2)
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".app-config-", suffix=".tmp", dir=self.config_file.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                os.replace(tmp_name, self.config_file)
            except OSError:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
                raise

    def get_config(self) -> AppConfig:
        with self._lock:
            return self._config.model_copy(deep=True)

    def update_config(self, **changes: Any) -> AppConfig:
        """
        Apply field changes (python field names), validate and persist.
        On save failure the previous config is restored and the error re-raised.
        """
        with self._lock:
            old = self._config
            merged = {**old.model_dump(), **changes}
            self._config = AppConfig.model_validate(merged)
            try:
                self.save()
            except OSError:
                log.error("Error updating configuration, rolling back")
                self._config = old
                raise
            log.info("Configuration updated")
            return self._config.model_copy(deep=True)

    def add_to_whitelist(self, pubkey: str) -> bool:
        """Returns False if the pubkey was already present."""
        key = pubkey.strip().lower()
        with self._lock:
            if key in self._config.whitelist:
                return False
            self.update_config(whitelist=[*self._config.whitelist, key])
        log.info("Added %s to whitelist", key)
        return True

    def remove_from_whitelist(self, pubkey: str) -> bool:
        """Returns False if the pubkey was not present."""
        key = pubkey.strip().lower()
        with self._lock:
            if key not in self._config.whitelist:
                return False
            self.update_config(whitelist=[k for k in self._config.whitelist if k != key])
        log.info("Removed %s from whitelist", key)
        return True

    def is_whitelisted(self, pubkey: str) -> bool:
        with self._lock:
            return pubkey.lower() in self._config.whitelist

    def reset_to_defaults(self) -> AppConfig:
        with self._lock:
            self._config = AppConfig()
            self.save()
        log.info("Configuration reset to defaults")
        return self.get_config()

    def reload(self) -> AppConfig:
        self._load()
        log.info("Configuration reloaded from %s", self.config_file)
        return self.get_config()
