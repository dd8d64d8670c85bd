"""Application settings and configuration.

This module defines all configuration options for the Parley application.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Parley", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Bearer tokens are issued by the auth service; we only verify them.
    secret_key: str = Field(alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    # When set, WebSocket joins must carry a bearer token for the joining user.
    ws_require_token: bool = Field(default=False, alias="WS_REQUIRE_TOKEN")

    # Database configuration
    database_url: str = Field(default="sqlite:///./parley.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")
    auto_create_tables: bool = Field(default=True, alias="AUTO_CREATE_TABLES")

    # Lifecycle scheduler
    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")
    sweep_interval_seconds: float = Field(default=30.0, alias="SWEEP_INTERVAL_SECONDS")
    sweep_batch_size: int = Field(default=200, alias="SWEEP_BATCH_SIZE")
    # Per-message timers are only armed for instants closer than this.
    timer_horizon_seconds: float = Field(default=3600.0, alias="TIMER_HORIZON_SECONDS")

    # Message handling
    deleted_message_placeholder: str = Field(
        default="message deleted",
        alias="DELETED_MESSAGE_PLACEHOLDER",
    )
    history_limit: int = Field(default=500, alias="HISTORY_LIMIT")
    inbox_limit: int = Field(default=50, alias="INBOX_LIMIT")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides.

        Returns:
            The active database URL (test database if in testing mode, otherwise production)
        """
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for Alembic."""
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url


settings = Settings()  # type: ignore[call-arg]
