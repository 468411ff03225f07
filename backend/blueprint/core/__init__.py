"""Core module initialization."""

from blueprint.core.config import Settings, get_settings, settings
from blueprint.core.sessions import ClientSession, ScopedStorage, SessionRegistry
from blueprint.core.storage import (
    JsonFileStorage,
    KeyValueStorage,
    MemoryStorage,
    create_local_storage,
)

__all__ = [
    "settings",
    "get_settings",
    "Settings",
    "KeyValueStorage",
    "MemoryStorage",
    "JsonFileStorage",
    "create_local_storage",
    "ScopedStorage",
    "ClientSession",
    "SessionRegistry",
]
