from .settings import Settings, SyncConfig, get_settings, get_sync_config, settings

__all__ = [
    "Settings",
    "SyncConfig",
    "get_settings",
    "get_sync_config",
    "settings",
]
