"""
Application configuration for the poster sync client.
"""
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional


@dataclass
class StoreConfig:
    """Local cache configuration."""
    path: str = "poster_cache.db"


@dataclass
class RemoteConfig:
    """Remote poster service configuration."""
    base_url: str = "http://localhost:8080/api"
    timeout: float = 5.0


@dataclass
class SyncConfig:
    """Sync scheduling configuration."""
    cycle_timeout: float = 30.0
    sync_on_start: bool = True
    purge_removed_after_sync: bool = False


@dataclass
class AppConfig:
    """Main application configuration."""
    store: StoreConfig = field(default_factory=StoreConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'AppConfig':
        """
        Create configuration from environment variables.

        Recognised variables: POSTER_DB_PATH, POSTER_API_URL,
        POSTER_REMOTE_TIMEOUT, POSTER_SYNC_TIMEOUT.
        """
        env = os.environ if environ is None else environ
        config = cls()
        if env.get("POSTER_DB_PATH"):
            config.store.path = env["POSTER_DB_PATH"]
        if env.get("POSTER_API_URL"):
            config.remote.base_url = env["POSTER_API_URL"]
        if env.get("POSTER_REMOTE_TIMEOUT"):
            config.remote.timeout = float(env["POSTER_REMOTE_TIMEOUT"])
        if env.get("POSTER_SYNC_TIMEOUT"):
            config.sync.cycle_timeout = float(env["POSTER_SYNC_TIMEOUT"])
        return config
