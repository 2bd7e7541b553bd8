"""
Configuration settings for the offline sync engine.

Uses environment variables (prefix ``OFFLINE_SYNC_``) or a ``.env`` file with
sensible defaults for local development.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .connectivity import InterfaceType
from .models import EntityType


class SyncSettings(BaseSettings):
    """Sync engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="OFFLINE_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "offline-sync"
    debug: bool = Field(default=False)

    # Retry and timing (seconds)
    max_retry_attempts: int = 5
    retry_delays: Annotated[list[float], NoDecode] = Field(default=[1.0, 2.0, 5.0, 10.0, 30.0])
    sync_debounce: float = 2.0
    success_reset_delay: float = 3.0
    retry_permanent_failures: bool = False

    # Persisted queue
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".offline_sync")
    queue_db_name: str = "sync_queue.db"
    queue_key: str = "sync.pending_queue"
    dead_letter_key: str = "sync.dead_letters"
    max_dead_letters: int = 200

    # Local entity store
    local_database_url: Optional[str] = None

    # Remote store
    remote_url: str = "http://localhost:54321"
    remote_api_key: Optional[str] = None
    remote_timeout: float = 30.0

    # Connectivity probe
    probe_url: Optional[str] = None
    probe_interval: float = 15.0
    probe_timeout: float = 5.0
    probe_interface: InterfaceType = InterfaceType.WIFI
    probe_expensive: bool = False
    probe_constrained: bool = False

    # Full sync
    pull_entity_types: Annotated[list[EntityType], NoDecode] = Field(
        default_factory=lambda: list(EntityType)
    )

    # Status API
    api_host: str = "127.0.0.1"
    api_port: int = 8765

    @field_validator("retry_delays", mode="before")
    @classmethod
    def parse_retry_delays(cls, v):
        """Parse comma-separated delays string to list."""
        if isinstance(v, str):
            return [float(part.strip()) for part in v.split(",") if part.strip()]
        return v

    @field_validator("pull_entity_types", mode="before")
    @classmethod
    def parse_entity_types(cls, v):
        """Parse comma-separated entity types string to list."""
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    @field_validator("retry_delays")
    @classmethod
    def check_retry_delays(cls, v: list[float]) -> list[float]:
        if not v:
            raise ValueError("retry_delays must not be empty")
        if any(d < 0 for d in v):
            raise ValueError("retry_delays must be non-negative")
        if any(later < earlier for earlier, later in zip(v, v[1:])):
            raise ValueError("retry_delays must be non-decreasing")
        return v

    @field_validator("max_retry_attempts")
    @classmethod
    def check_max_retry_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_retry_attempts must be at least 1")
        return v

    @model_validator(mode="after")
    def default_probe_url(self) -> "SyncSettings":
        if self.probe_url is None:
            self.probe_url = self.remote_url.rstrip("/") + "/rest/v1/"
        return self

    @property
    def queue_db_path(self) -> Path:
        """Full path to the persisted queue database."""
        return Path(self.data_dir) / self.queue_db_name

    @property
    def local_db_url(self) -> str:
        """SQLAlchemy URL of the local entity database."""
        if self.local_database_url:
            return self.local_database_url
        return f"sqlite:///{Path(self.data_dir) / 'local_entities.db'}"

    def ensure_data_dir(self) -> Path:
        """Create the data directory if needed."""
        path = Path(self.data_dir)
        path.mkdir(parents=True, exist_ok=True)
        return path


@lru_cache
def get_settings() -> SyncSettings:
    """Get cached settings instance."""
    return SyncSettings()
