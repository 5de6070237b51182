"""Persistence of the user configuration (``<config_dir>/config.json``)."""

from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from feedstream.errors import StorageError
from feedstream.schemas.config import UserConfig
from feedstream.storage.files import write_atomic

CONFIG_FILE = "config.json"


class ConfigStore:
    """Loads the config once and keeps it for later saves."""

    def __init__(self, config_dir: Union[str, Path]):
        self.config_dir = Path(config_dir)
        self._config: Optional[UserConfig] = None

    @property
    def path(self) -> Path:
        return self.config_dir / CONFIG_FILE

    def load(self) -> UserConfig:
        """Return the cached config, reading it on first use.

        A missing file yields the defaults.
        """
        if self._config is not None:
            return self._config
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            self._config = UserConfig()
            return self._config
        except OSError as exc:
            raise StorageError(f"failed to read config: {exc}") from exc
        try:
            self._config = UserConfig.model_validate_json(raw)
        except ValidationError as exc:
            raise StorageError(f"failed to parse config {self.path}: {exc}") from exc
        return self._config

    def save(self) -> None:
        if self._config is None:
            return
        payload = self._config.model_dump_json(by_alias=True, indent=2)
        try:
            write_atomic(self.path, payload.encode("utf-8"), mode=0o600)
        except OSError as exc:
            raise StorageError(f"failed to save config: {exc}") from exc

    def mark_run(self, when: datetime) -> None:
        """Record *when* as the last run and save."""
        self.load().last_run = when
        self.save()
