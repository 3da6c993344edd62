"""
Application settings loaded from environment variables.
Uses pydantic-settings for type-safe configuration.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with defaults for a single offline terminal."""

    # Local store (always available)
    local_database_url: str = "sqlite:///./pos_local.db"
    local_database_echo: bool = False

    # Remote document store. Empty URI means the terminal is permanently offline.
    remote_store_uri: str = ""
    remote_database_name: str = "pos"
    # Applied to server selection, connect and socket timeouts of the driver
    remote_timeout_ms: int = 3000
    # Standalone servers reject multi-document transactions
    remote_transactions_enabled: bool = True

    # "sqlite" or "mongo": which store is authoritative for reads when reachable
    preferred_engine: str = "sqlite"

    # Connectivity monitor
    connectivity_probe_timeout_seconds: float = 3.0
    connectivity_interval_seconds: float = 5.0

    # Synchronization
    sync_enabled: bool = True
    sync_interval_seconds: float = 60.0
    sync_batch_size: int = 200

    # Redis (notification sink)
    redis_url: str = "redis://localhost:6379"
    redis_socket_timeout: int = 5
    redis_pool_max_connections: int = 20
    redis_publish_max_retries: int = 3
    redis_publish_retry_delay: float = 0.1

    # Branch defaults used when the settings blob is missing a key
    default_tax_rate: float = 10.0
    default_service_charge: float = 5.0
    default_currency: str = "USD"
    default_timezone: str = "UTC"

    # Server
    rest_api_port: int = 8000

    # Environment
    environment: str = "development"
    debug: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @property
    def remote_configured(self) -> bool:
        return bool(self.remote_store_uri.strip())

    def validate_engine_settings(self) -> list[str]:
        """
        Validate engine related settings.
        Returns a list of validation errors. Empty list means all checks pass.
        """
        errors = []

        if self.preferred_engine not in ("sqlite", "mongo"):
            errors.append(
                f"PREFERRED_ENGINE must be 'sqlite' or 'mongo', got '{self.preferred_engine}'"
            )

        if self.preferred_engine == "mongo" and not self.remote_configured:
            errors.append("PREFERRED_ENGINE=mongo requires REMOTE_STORE_URI")

        if self.connectivity_probe_timeout_seconds <= 0:
            errors.append("CONNECTIVITY_PROBE_TIMEOUT_SECONDS must be positive")

        if self.sync_interval_seconds <= 0:
            errors.append("SYNC_INTERVAL_SECONDS must be positive")

        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience exports
settings = get_settings()

LOCAL_DATABASE_URL = settings.local_database_url
