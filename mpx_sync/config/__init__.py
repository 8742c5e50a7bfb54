from __future__ import annotations

from ._validators import _ensure_token
from .database import DatabaseConfig
from .mpx import CollectionConfig, MpxConfig
from .settings import AppConfig, RuntimeConfig, Settings, load_config
from .sync import SyncConfig

__all__ = [
    "AppConfig",
    "CollectionConfig",
    "DatabaseConfig",
    "MpxConfig",
    "RuntimeConfig",
    "Settings",
    "SyncConfig",
    "_ensure_token",
    "load_config",
]
