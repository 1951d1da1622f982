"""Configuration management for mybb2flarum.

This module provides centralized configuration using Pydantic Settings. Every
field can be set through an environment variable of the same name (case
insensitive) or a ``.env`` file in the working directory.

Environment Profiles:
    - DEVELOPMENT: Verbose logging, console span exporter, safe defaults
    - PRODUCTION: INFO logging, JSON logs, tracing enabled
    - TESTING: In-memory target database, minimal logging
    - STAGING: Production-like with more logging

Example:
    >>> from mybb2flarum.config import settings
    >>> print(settings.mybb_prefix)
    mybb_
    >>> print(settings.source_url)
    postgresql+psycopg://root@localhost/mybb
"""

import re
from enum import StrEnum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_]*$")


class Environment(StrEnum):
    """Runtime environment with specific behavior profiles.

    Attributes:
        DEVELOPMENT: Verbose logging, console spans, human-readable logs
        PRODUCTION: Conservative settings, tracing enabled, JSON logs
        TESTING: In-memory database, minimal logging, fast execution
        STAGING: Pre-production validation environment
    """

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"
    STAGING = "staging"


class Settings(BaseSettings):
    """Application settings with environment variable support.

    Attributes:
        mybb_driver: SQLAlchemy driver name for the legacy database
        mybb_host: Legacy database host
        mybb_port: Legacy database port (driver default when unset)
        mybb_user: Legacy database user
        mybb_password: Legacy database password
        mybb_database: Legacy database name
        mybb_url: Full SQLAlchemy URL, overrides the individual fields
        mybb_prefix: Legacy table prefix (e.g. ``mybb_``)
        mybb_path: Filesystem root of the legacy forum install
        target_url: SQLAlchemy URL of the target forum database
        public_dir: Filesystem root the target forum serves assets from
        forum_url: Public base URL of the target forum
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment Configuration
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Runtime environment (development, production, testing, staging)",
    )

    # Legacy (source) database
    mybb_driver: str = Field(
        "postgresql+psycopg",
        description="SQLAlchemy driver for the legacy database",
    )
    mybb_host: str = Field("localhost", description="Legacy database host")
    mybb_port: Optional[int] = Field(None, description="Legacy database port")
    mybb_user: str = Field("root", description="Legacy database user")
    mybb_password: str = Field("", description="Legacy database password")
    mybb_database: str = Field("mybb", description="Legacy database name")
    mybb_url: Optional[str] = Field(
        None,
        description="Explicit SQLAlchemy URL for the legacy database",
    )
    mybb_prefix: str = Field("mybb_", description="Legacy table prefix")
    mybb_path: Optional[Path] = Field(
        None,
        description="Root directory of the legacy install (avatars, uploads)",
    )

    # Data Directory Configuration
    data_dir: Path = Field(
        Path("./data"),
        description="Base directory for the default target database and logs",
    )

    # Target store
    target_url: Optional[str] = Field(
        None,
        description="SQLAlchemy URL of the target database (defaults to data_dir/flarum.db)",
    )
    public_dir: Optional[Path] = Field(
        None,
        description="Target public directory holding assets/ (defaults to data_dir/public)",
    )
    forum_url: str = Field(
        "http://localhost",
        description="Base URL used to build public file URLs",
    )

    # Migration flags
    migrate_avatars: bool = False
    migrate_with_user_groups: bool = False
    migrate_soft_deleted_threads: bool = False
    migrate_soft_deleted_posts: bool = False
    migrate_attachments: bool = False

    # Id thresholds
    reserved_group_max_id: int = Field(
        7,
        ge=0,
        description="Groups with id <= this value are never assigned to users",
    )
    protected_group_max_id: int = Field(
        4,
        ge=0,
        description="Target groups with id <= this value survive a run",
    )
    protected_user_max_id: int = Field(
        1,
        ge=0,
        description="Target users with id <= this value survive a run",
    )

    # Operational Parameters
    color_seed: Optional[int] = Field(
        None,
        description="Seed for generated group/tag colors (random when unset)",
    )
    connect_retries: int = Field(
        3,
        ge=1,
        le=10,
        description="Attempts to open the legacy database connection",
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_to_file: bool = Field(
        default=True,
        description="Enable file logging in addition to console",
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (recommended for production)",
    )

    # Observability (OpenTelemetry)
    enable_tracing: bool = Field(
        default=False,
        description="Enable OpenTelemetry distributed tracing",
    )
    otlp_endpoint: Optional[str] = Field(
        default=None,
        description="OpenTelemetry OTLP endpoint for traces (e.g., http://localhost:4317)",
    )

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_data_dir(cls, v: str | Path) -> Path:
        """Expand and resolve data directory path."""
        path = Path(v).expanduser().resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    @field_validator("mybb_path", "public_dir", mode="before")
    @classmethod
    def expand_optional_path(cls, v: str | Path | None) -> Optional[Path]:
        if v is None or v == "":
            return None
        return Path(v).expanduser()

    @field_validator("mybb_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        """Table prefixes are interpolated into SQL, so only allow identifiers."""
        if not _IDENTIFIER_RE.match(v):
            raise ValueError(f"Invalid table prefix: {v!r}")
        return v

    @model_validator(mode="after")
    def set_target_defaults(self) -> "Settings":
        """Derive target database and public directory from data_dir."""
        if self.public_dir is None:
            self.public_dir = self.data_dir / "public"
        if self.target_url is None:
            self.target_url = f"sqlite:///{self.data_dir / 'flarum.db'}"
        return self

    @model_validator(mode="after")
    def apply_environment_profile(self) -> "Settings":
        """Apply environment-specific defaults.

        Profiles:
            - PRODUCTION: INFO logging, JSON logs, tracing enabled
            - DEVELOPMENT: DEBUG logging, human-readable logs, no tracing
            - TESTING: In-memory target, ERROR logging, no file logging
            - STAGING: INFO logging, JSON logs, tracing enabled
        """
        if self.environment == Environment.PRODUCTION:
            if self.log_level == "DEBUG":
                self.log_level = "INFO"
            self.log_json = True
            self.enable_tracing = True

        elif self.environment == Environment.DEVELOPMENT:
            self.log_level = "DEBUG"
            self.log_json = False
            self.enable_tracing = False

        elif self.environment == Environment.TESTING:
            self.target_url = "sqlite://"
            self.log_level = "ERROR"
            self.log_to_file = False
            self.log_json = False
            self.enable_tracing = False

        elif self.environment == Environment.STAGING:
            self.log_level = "INFO"
            self.log_json = True
            self.enable_tracing = True

        return self

    @property
    def source_url(self) -> str:
        """SQLAlchemy URL of the legacy database."""
        if self.mybb_url:
            return self.mybb_url
        return URL.create(
            self.mybb_driver,
            username=self.mybb_user,
            password=self.mybb_password or None,
            host=self.mybb_host,
            port=self.mybb_port,
            database=self.mybb_database,
        ).render_as_string(hide_password=False)

    @property
    def redacted_source_url(self) -> str:
        """Legacy database URL safe for logging."""
        return redact_url(self.source_url)

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == Environment.TESTING


class MigrationOptions(BaseModel):
    """Flags controlling one migration run.

    Phase toggles decide which phases run at all. Feature flags mirror the
    options exposed by the management action.
    """

    model_config = ConfigDict(frozen=True)

    migrate_groups: bool = True
    migrate_users: bool = True
    migrate_categories: bool = True
    migrate_discussions: bool = True

    migrate_avatars: bool = False
    migrate_with_user_groups: bool = False
    migrate_soft_deleted_threads: bool = False
    migrate_soft_deleted_posts: bool = False
    migrate_attachments: bool = False

    @classmethod
    def from_settings(cls, source: Settings, **overrides: Optional[bool]) -> "MigrationOptions":
        """Build options from settings, with explicit overrides taking precedence."""
        values = {
            "migrate_avatars": source.migrate_avatars,
            "migrate_with_user_groups": source.migrate_with_user_groups,
            "migrate_soft_deleted_threads": source.migrate_soft_deleted_threads,
            "migrate_soft_deleted_posts": source.migrate_soft_deleted_posts,
            "migrate_attachments": source.migrate_attachments,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def redact_url(url: str) -> str:
    """Mask the password component of a database URL.

    Example:
        >>> redact_url("postgresql://bob:secret@db/mybb")
        'postgresql://bob:***@db/mybb'
    """
    return re.sub(r"(://[^:/@]+:)[^@]*(@)", r"\1***\2", url)


def get_settings() -> Settings:
    """Get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()
