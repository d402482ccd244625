"""
Application configuration using pydantic-settings.
"""
import json
import logging
import secrets
from typing import Dict, List, Optional

from pydantic import field_validator, model_validator, ValidationInfo
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_SQLITE_URL = "sqlite:////data/taskfuse.db"


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = "Taskfuse Sync"
    app_version: str = "0.4.0"
    debug: bool = False
    environment: str = "development"

    # API
    api_v1_prefix: str = "/api/v1"
    service_api_token: Optional[str] = None  # Bearer token required by the trigger/status endpoints

    # Database Configuration
    # Primary database URL (defaults to SQLite)
    database_url: str = DEFAULT_SQLITE_URL

    # PostgreSQL override (optional)
    postgres_url: Optional[str] = None

    # Security
    secret_key: str = ""  # Used to derive the token encryption key

    # Redis Configuration (sync locks and Celery)
    redis_url: Optional[str] = None  # e.g., "redis://localhost:6379/0"

    # Celery Configuration
    celery_broker_url: Optional[str] = None
    celery_result_backend: Optional[str] = None
    celery_task_serializer: str = "json"
    celery_result_serializer: str = "json"
    celery_accept_content: List[str] = ["json"]
    celery_timezone: str = "UTC"
    celery_enable_utc: bool = True

    # Sync engine
    sync_interval_minutes: int = 15
    sync_batch_size: int = 50
    sync_max_pages: int = 500
    sync_lock_timeout_seconds: int = 3900
    default_token_expiry_margin_seconds: int = 600
    provider_token_expiry_margins: Optional[Dict[str, int]] = None

    # Outbound HTTP
    http_timeout_seconds: float = 30.0
    http_connect_timeout_seconds: float = 10.0
    http_max_connections: int = 20

    # Provider OAuth clients (used only for refresh-token exchanges)
    asana_client_id: Optional[str] = None
    asana_client_secret: Optional[str] = None
    awork_client_id: Optional[str] = None
    awork_client_secret: Optional[str] = None
    calendly_client_id: Optional[str] = None
    calendly_client_secret: Optional[str] = None
    github_client_id: Optional[str] = None
    github_client_secret: Optional[str] = None
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    jira_client_id: Optional[str] = None
    jira_client_secret: Optional[str] = None
    microsoft_client_id: Optional[str] = None
    microsoft_client_secret: Optional[str] = None
    microsoft_todo_client_id: Optional[str] = None
    microsoft_todo_client_secret: Optional[str] = None
    nifty_client_id: Optional[str] = None
    nifty_client_secret: Optional[str] = None
    trello_api_key: Optional[str] = None
    zoho_projects_client_id: Optional[str] = None
    zoho_projects_client_secret: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_dir: Optional[str] = None  # Enables the rotating file handler when set

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def database_type(self) -> str:
        """Detect database type from configuration."""
        if self.effective_database_url.startswith(("postgresql", "postgres")):
            return "postgresql"
        return "sqlite"

    @property
    def effective_database_url(self) -> str:
        """PostgreSQL override first, then the primary database URL."""
        return self.postgres_url or self.database_url

    def token_expiry_margin_for(self, provider: str, default: Optional[int] = None) -> int:
        """Seconds subtracted from a provider-reported token lifetime."""
        margins = self.provider_token_expiry_margins or {}
        if provider in margins:
            return margins[provider]
        if default is not None:
            return default
        return self.default_token_expiry_margin_seconds

    @field_validator('secret_key')
    @classmethod
    def validate_secret_key(cls, v: str, info: ValidationInfo) -> str:
        """Validate SECRET_KEY is set and secure."""
        if not v:
            env = info.data.get('environment', 'development')
            if env == 'production':
                raise ValueError(
                    "SECRET_KEY must be set in production! "
                    "Generate one with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
                )
            logger.warning(
                "SECRET_KEY not set! Using auto-generated key for development. "
                "Stored provider tokens become unreadable after a restart."
            )
            return secrets.token_urlsafe(32)

        if len(v) < 32:
            logger.warning(
                f"SECRET_KEY is only {len(v)} characters long. "
                "Recommend at least 32 characters for security."
            )
        return v

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate primary database URL."""
        if not v or not v.strip():
            logger.info(
                "DATABASE_URL not provided; defaulting to SQLite at %s", DEFAULT_SQLITE_URL
            )
            return DEFAULT_SQLITE_URL

        url = v.strip()
        if not url.startswith(("sqlite", "postgresql", "postgres")):
            logger.warning(
                "DATABASE_URL uses unsupported or untested dialect '%s'. Proceed with caution.",
                url.split("://", 1)[0]
            )
        return url

    @field_validator('postgres_url')
    @classmethod
    def validate_postgres_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate PostgreSQL override URL."""
        if not v or not v.strip():
            return None

        url = v.strip()
        if not url.startswith(("postgresql", "postgres")):
            raise ValueError(
                "POSTGRES_URL must be a PostgreSQL URL (postgresql:// or postgres://)"
            )
        return url

    @field_validator('sync_batch_size', 'sync_max_pages', 'sync_interval_minutes', 'sync_lock_timeout_seconds')
    @classmethod
    def validate_positive(cls, v: int, info: ValidationInfo) -> int:
        if v <= 0:
            raise ValueError(f"{info.field_name.upper()} must be positive")
        return v

    @field_validator('default_token_expiry_margin_seconds')
    @classmethod
    def validate_margin(cls, v: int) -> int:
        if v < 0:
            raise ValueError("DEFAULT_TOKEN_EXPIRY_MARGIN_SECONDS cannot be negative")
        return v

    @field_validator('provider_token_expiry_margins', mode='before')
    @classmethod
    def parse_provider_margins(cls, v):
        """Parse per-provider expiry margins given as a JSON object."""
        if v in (None, "", {}):
            return None

        if isinstance(v, str):
            try:
                parsed = json.loads(v)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Invalid JSON for PROVIDER_TOKEN_EXPIRY_MARGINS: {exc}") from exc
        elif isinstance(v, dict):
            parsed = v
        else:
            raise ValueError("PROVIDER_TOKEN_EXPIRY_MARGINS must be a dict or JSON string.")

        cleaned: Dict[str, int] = {}
        for provider, margin in parsed.items():
            if not isinstance(margin, int) or isinstance(margin, bool) or margin < 0:
                raise ValueError(f"Expiry margin for '{provider}' must be a non-negative integer.")
            cleaned[str(provider).lower()] = margin
        return cleaned

    @field_validator('celery_broker_url', 'celery_result_backend')
    @classmethod
    def validate_celery_urls(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        """Auto-configure Celery from redis_url if not explicitly set."""
        if v:
            return v

        redis_url = info.data.get('redis_url')
        if redis_url:
            logger.info(
                f"{info.field_name.upper()} not set. Defaulting to REDIS_URL"
            )
            return redis_url
        return v

    @model_validator(mode='after')
    def validate_production_settings(self) -> 'Settings':
        """Production validation."""
        if self.environment != "production":
            return self

        errors = []
        if self.debug:
            errors.append("DEBUG must be False in production.")
        if not self.service_api_token:
            errors.append("SERVICE_API_TOKEN must be set in production.")

        if not self.redis_url:
            logger.warning(
                "Production configuration warning: REDIS_URL not configured. "
                "Sync locks fall back to a single-process lock."
            )

        if errors:
            error_message = "Production configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_message)

        return self


# Create settings instance
settings = Settings()
