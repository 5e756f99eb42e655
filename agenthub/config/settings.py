"""Application settings using Pydantic BaseSettings."""

import os
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Browsers cap the OAuth handshake cookies at this age; anything longer widens
# the replay window for a stolen state/verifier pair.
MAX_OAUTH_COOKIE_TTL_SECONDS = 600


def _get_default_db_path() -> str:
    """Get absolute path to default SQLite database."""
    config_dir = os.path.dirname(os.path.abspath(__file__))
    package_dir = os.path.dirname(config_dir)
    db_path = os.path.join(package_dir, "data", "agenthub.db")
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    environment: str = Field(default="development")
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8080)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)
    # Canonical external address. When set, the OAuth flow is pinned to it so
    # the handshake cookies and the provider redirect land on the same host.
    public_base_url: str = Field(default="")

    # Credentials
    api_key_pepper: str = Field(default="")

    # GitHub OAuth
    github_client_id: str = Field(default="")
    github_client_secret: str = Field(default="")
    github_oauth_scope: str = Field(default="read:user")
    github_authorize_url: str = Field(default="https://github.com/login/oauth/authorize")
    github_token_url: str = Field(default="https://github.com/login/oauth/access_token")
    github_user_url: str = Field(default="https://api.github.com/user")
    oauth_state_cookie_name: str = Field(default="aihub_oauth_state")
    oauth_pkce_cookie_name: str = Field(default="aihub_oauth_pkce")
    oauth_flow_cookie_name: str = Field(default="aihub_oauth_flow")
    oauth_cookie_ttl_seconds: int = Field(default=MAX_OAUTH_COOKIE_TTL_SECONDS)
    oauth_http_timeout_seconds: float = Field(default=10.0)
    oauth_callback_timeout_seconds: float = Field(default=15.0)
    # False keeps the legacy behaviour of exchanging without a verifier when
    # the PKCE cookie did not survive the round trip.
    oauth_require_pkce: bool = Field(default=False)
    oauth_success_redirect: str = Field(default="/app/me")
    api_key_storage_key: str = Field(default="aihub_user_api_key")
    bootstrap_first_admin: bool = Field(default=True)

    # Native app sign-in
    app_exchange_token_ttl_seconds: int = Field(default=60)
    app_deep_link_url: str = Field(default="aihub://auth/github")
    app_android_package: str = Field(default="com.aihub.mobile")

    # Rate limiting
    rate_limit_rpm: int = Field(default=120)
    rate_limit_window_seconds: int = Field(default=60)
    rate_limit_max_sources: int = Field(default=10000)
    rate_limit_exempt_substrings: str = Field(default="/stream")

    # Database
    database_url: str = Field(default_factory=_get_default_db_path)

    @property
    def rate_limit_exempt_substrings_list(self) -> List[str]:
        """Parse streaming path markers from comma-separated string."""
        if not self.rate_limit_exempt_substrings:
            return []
        return [p.strip() for p in self.rate_limit_exempt_substrings.split(",") if p.strip()]

    @property
    def oauth_configured(self) -> bool:
        """Both halves of the GitHub OAuth app credentials are present."""
        return bool(self.github_client_id.strip() and self.github_client_secret.strip())

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    @property
    def is_test(self) -> bool:
        """Check if running in test mode."""
        return self.environment == "test"

    @property
    def is_staging(self) -> bool:
        return self.environment == "staging"

    @property
    def is_prod_like(self) -> bool:
        """Check if running in production or staging mode."""
        return self.is_production or self.is_staging

    @property
    def docs_url(self) -> str | None:
        """Return docs URL if not in prod-like environment, else None."""
        return None if self.is_prod_like else "/docs"

    @property
    def redoc_url(self) -> str | None:
        return None if self.is_prod_like else "/redoc"

    @property
    def openapi_url(self) -> str | None:
        return None if self.is_prod_like else "/openapi.json"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        vv = (v or "").strip().lower()
        if vv not in {"development", "staging", "production", "test"}:
            raise ValueError("ENVIRONMENT must be one of: development, staging, production, test")
        return vv

    @field_validator("public_base_url")
    @classmethod
    def normalize_public_base_url(cls, v: str) -> str:
        return (v or "").strip().rstrip("/")

    @model_validator(mode="after")
    def validate_cross_field_constraints(self) -> "Settings":
        if self.oauth_cookie_ttl_seconds <= 0:
            raise ValueError("OAUTH_COOKIE_TTL_SECONDS must be positive")
        if self.oauth_cookie_ttl_seconds > MAX_OAUTH_COOKIE_TTL_SECONDS:
            self.oauth_cookie_ttl_seconds = MAX_OAUTH_COOKIE_TTL_SECONDS
        if self.app_exchange_token_ttl_seconds <= 0:
            raise ValueError("APP_EXCHANGE_TOKEN_TTL_SECONDS must be positive")
        if self.rate_limit_window_seconds <= 0:
            raise ValueError("RATE_LIMIT_WINDOW_SECONDS must be positive")
        if self.rate_limit_max_sources <= 0:
            raise ValueError("RATE_LIMIT_MAX_SOURCES must be positive")
        if self.oauth_http_timeout_seconds > self.oauth_callback_timeout_seconds:
            raise ValueError(
                "OAUTH_HTTP_TIMEOUT_SECONDS must not exceed OAUTH_CALLBACK_TIMEOUT_SECONDS"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
