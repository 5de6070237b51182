"""Filesystem-backed stores: feed cache, subscription lists and user config."""

from feedstream.storage.cache_store import CacheEntry, CacheStore
from feedstream.storage.config_store import ConfigStore
from feedstream.storage.list_store import ListItem, ListStore

__all__ = [
    "CacheEntry",
    "CacheStore",
    "ConfigStore",
    "ListItem",
    "ListStore",
]
