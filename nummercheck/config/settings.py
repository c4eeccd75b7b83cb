"""Application configuration loaded from environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the lookup reconciliation service.

    Args loaded from .env file and environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: str = "development"

    # Postgres
    db_user: str = "postgres"
    db_password: str = ""
    db_host: str = "127.0.0.1"
    db_port: int = 5432
    db_name: str = "nummercheck"
    db_ssl: str = "disable"

    # ElevenLabs
    elevenlabs_webhook_secret: str = ""
    elevenlabs_agent_id: str = ""

    # Status endpoint read-after-write retry
    status_initial_delay_seconds: float = 0.05
    status_retry_interval_seconds: float = 0.5
    status_max_retries: int = 4
    status_max_wait_seconds: float = 10.0

    # Status cache
    status_cache_active_ttl_seconds: float = 5.0
    status_cache_terminal_ttl_seconds: float = 60.0
    status_cache_cleanup_interval_seconds: float = 30.0

    # Client poller
    poll_interval_seconds: float = 3.0

    # CORS
    cors_allowed_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    @property
    def is_production(self) -> bool:
        """Whether the service runs in a deployed production environment.

        Returns:
            True when ENVIRONMENT is "production" or "prod".
        """
        return self.environment.strip().lower() in ("production", "prod")

    @property
    def database_url(self) -> str:
        """Build async Postgres connection URL.

        Returns:
            SQLAlchemy async connection string.
        """
        url = (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )
        if self.db_ssl != "disable":
            url += f"?ssl={self.db_ssl}"
        return url


def get_settings() -> Settings:
    """Load settings from the environment.

    Returns:
        A freshly constructed Settings instance.
    """
    return Settings()
