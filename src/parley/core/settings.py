"""Application settings and configuration.

This module defines all configuration options for the Parley conversation
service. Settings are loaded from environment variables with sensible defaults.
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

    # Security and authentication
    secret_key: str = Field(alias="SECRET_KEY")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./parley.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # JWT authentication settings
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )

    # Pagination defaults
    default_page_size: int = Field(default=20, alias="DEFAULT_PAGE_SIZE")
    message_page_size: int = Field(default=50, alias="MESSAGE_PAGE_SIZE")
    max_page_size: int = Field(default=100, alias="MAX_PAGE_SIZE")
    detail_message_limit: int = Field(default=50, alias="DETAIL_MESSAGE_LIMIT")

    # Event bus used to publish cross-service notifications
    event_bus_url: str | None = Field(default=None, alias="EVENT_BUS_URL")
    event_bus_topic: str = Field(default="social-events", alias="EVENT_BUS_TOPIC")
    event_bus_shared_secret: str | None = Field(
        default=None,
        alias="EVENT_BUS_SHARED_SECRET",
    )
    event_bus_timeout_seconds: float = Field(
        default=5.0,
        alias="EVENT_BUS_TIMEOUT_SECONDS",
    )

    # Identity service used to snapshot participant display attributes
    identity_service_url: str | None = Field(default=None, alias="IDENTITY_SERVICE_URL")
    identity_timeout_seconds: float = Field(
        default=3.0,
        alias="IDENTITY_TIMEOUT_SECONDS",
    )

    # CORS configuration for web and mobile clients
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
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
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()  # type: ignore[call-arg]
