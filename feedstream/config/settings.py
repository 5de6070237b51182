"""Application settings and runtime config resolution.

This module centralizes environment-backed defaults (storage locations and
fetch overrides) used by the CLI and the feed service.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

APP_NAME = "feedstream"

# Storage env names
ENV_CONFIG_DIR = "FEEDSTREAM_CONFIG_DIR"
ENV_CACHE_DIR = "FEEDSTREAM_CACHE_DIR"
ENV_XDG_CONFIG_HOME = "XDG_CONFIG_HOME"
ENV_XDG_CACHE_HOME = "XDG_CACHE_HOME"

# Fetch override env names and bounds
ENV_BATCH_SIZE = "FEEDSTREAM_BATCH_SIZE"
ENV_TIMEOUT = "FEEDSTREAM_TIMEOUT"

MIN_BATCH_SIZE, MAX_BATCH_SIZE = 1, 1000
MIN_TIMEOUT, MAX_TIMEOUT = 1, 600


def _clamp(value: int, minimum: int, maximum: int) -> int:
    return max(minimum, min(maximum, value))


def _parse_int(raw: Optional[str]) -> Optional[int]:
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


@dataclass(frozen=True)
class StorageSettings:
    config_dir: Path
    cache_dir: Path


@dataclass(frozen=True)
class FetchOverrides:
    batch_size: Optional[int]
    timeout: Optional[int]


@dataclass(frozen=True)
class AppSettings:
    storage: StorageSettings
    fetch: FetchOverrides


def resolve_storage_settings(env: Mapping[str, str] = os.environ) -> StorageSettings:
    home = Path(env.get("HOME") or Path.home())

    if config_dir := env.get(ENV_CONFIG_DIR):
        config_path = Path(config_dir)
    else:
        base = env.get(ENV_XDG_CONFIG_HOME) or str(home / ".config")
        config_path = Path(base) / APP_NAME

    if cache_dir := env.get(ENV_CACHE_DIR):
        cache_path = Path(cache_dir)
    else:
        base = env.get(ENV_XDG_CACHE_HOME) or str(home / ".cache")
        cache_path = Path(base) / APP_NAME

    return StorageSettings(config_dir=config_path, cache_dir=cache_path)


def resolve_fetch_overrides(env: Mapping[str, str] = os.environ) -> FetchOverrides:
    batch_size = _parse_int(env.get(ENV_BATCH_SIZE))
    if batch_size is not None:
        batch_size = _clamp(batch_size, MIN_BATCH_SIZE, MAX_BATCH_SIZE)

    timeout = _parse_int(env.get(ENV_TIMEOUT))
    if timeout is not None:
        timeout = _clamp(timeout, MIN_TIMEOUT, MAX_TIMEOUT)

    return FetchOverrides(batch_size=batch_size, timeout=timeout)


def get_app_settings(env: Mapping[str, str] = os.environ) -> AppSettings:
    return AppSettings(
        storage=resolve_storage_settings(env=env),
        fetch=resolve_fetch_overrides(env=env),
    )
