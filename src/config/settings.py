"""Intake engine configuration, read from the environment and .env."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Database, model and intent sink configuration.

    Field names map to upper-case environment variables of the same
    name, e.g. OPENAI_MODEL or CLOUD_SQL_DATABASE.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Postgres, via the Cloud SQL socket in Cloud Run or TCP locally
    cloud_sql_instance_connection: str = ""
    cloud_sql_user: str = "postgres"
    cloud_sql_password: str = ""
    cloud_sql_database: str = "intake_dev"
    cloud_sql_host: str = "127.0.0.1"
    cloud_sql_port: int = 5432
    db_pool_size: int = 5
    db_max_overflow: int = 10

    # Text generation
    openai_api_key: str = ""
    openai_base_url: str | None = None
    openai_model: str = "gpt-4o-mini"
    ai_temperature: float = 0.7
    ai_timeout_seconds: float = 25.0
    ai_max_history_messages: int = 40
    # Extra attempts after an empty or unusable reply, with doubling backoff
    ai_max_retries: int = 2
    ai_retry_backoff_seconds: float = 1.0

    # Write completed/reset intents to intake_events
    audit_events_enabled: bool = True

    @property
    def database_url(self) -> str:
        """asyncpg URL used by the application engine."""
        return self._build_url("postgresql+asyncpg")

    @property
    def database_url_sync(self) -> str:
        """Driverless URL for offline Alembic SQL generation."""
        return self._build_url("postgresql")

    def _build_url(self, scheme: str) -> str:
        auth = f"{self.cloud_sql_user}:{self.cloud_sql_password}"
        if self.cloud_sql_instance_connection:
            socket_dir = f"/cloudsql/{self.cloud_sql_instance_connection}"
            return f"{scheme}://{auth}@/{self.cloud_sql_database}?host={socket_dir}"
        return (
            f"{scheme}://{auth}@{self.cloud_sql_host}:{self.cloud_sql_port}"
            f"/{self.cloud_sql_database}"
        )


def get_settings() -> Settings:
    """Load settings from the current environment.

    Returns:
        Fresh Settings instance.
    """
    return Settings()
