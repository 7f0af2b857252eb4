from functools import lru_cache
from typing import Optional
import structlog
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import ValidationError, model_validator

from dirconsole.shared.core.exceptions import ConfigurationError

# Environment Constants
ENV_PRODUCTION = "production"
ENV_STAGING = "staging"
ENV_DEVELOPMENT = "development"
ENV_LOCAL = "local"


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the console settings."""
    return Settings()


def load_settings() -> "Settings":
    """
    Like get_settings(), but invalid environment values surface as
    ConfigurationError instead of a pydantic ValidationError.
    """
    try:
        return get_settings()
    except ValidationError as exc:
        messages = [str(error.get("msg", "")) for error in exc.errors()]
        structlog.get_logger().error("settings_invalid", errors=messages)
        raise ConfigurationError(
            f"Invalid configuration: {'; '.join(messages)}",
            details={"errors": messages},
        ) from exc


class Settings(BaseSettings):
    """
    Configuration for the directory console.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    APP_NAME: str = "dirconsole"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    TESTING: bool = False
    # ENVIRONMENT options: local, development, staging, production
    ENVIRONMENT: str = ENV_DEVELOPMENT

    # Directory query endpoint (GraphQL over HTTP POST)
    GRAPHQL_URL: str = "http://localhost:17170/api/graphql"
    # Forwarded verbatim as a bearer token; obtaining it is out of scope.
    API_TOKEN: Optional[str] = None
    HTTP_TIMEOUT_SECONDS: float = 20.0
    HTTP_CONNECT_TIMEOUT_SECONDS: float = 10.0

    # None = JSON unless DEBUG
    LOG_JSON: Optional[bool] = None

    model_config = SettingsConfigDict(
        env_prefix="DIRCONSOLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_all_config(self) -> "Settings":
        """Centralized validation, grouped by concern."""
        if self.TESTING and self.ENVIRONMENT in {ENV_PRODUCTION, ENV_STAGING}:
            raise ValueError(
                "TESTING must be false in staging/production runtime environments."
            )
        self._validate_endpoint_config()
        self._validate_http_config()
        return self

    def _validate_endpoint_config(self) -> None:
        url = str(self.GRAPHQL_URL or "").strip()
        if not url.lower().startswith(("http://", "https://")):
            raise ValueError("GRAPHQL_URL must be an http:// or https:// URL.")
        if self.is_production and url.lower().startswith("http://"):
            structlog.get_logger().warning(
                "graphql_url_not_https", environment=self.ENVIRONMENT
            )
        self.GRAPHQL_URL = url

        if self.API_TOKEN is not None:
            token = self.API_TOKEN.strip()
            self.API_TOKEN = token or None

    def _validate_http_config(self) -> None:
        if self.HTTP_TIMEOUT_SECONDS <= 0:
            raise ValueError("HTTP_TIMEOUT_SECONDS must be > 0.")
        if self.HTTP_CONNECT_TIMEOUT_SECONDS <= 0:
            raise ValueError("HTTP_CONNECT_TIMEOUT_SECONDS must be > 0.")
        if self.HTTP_CONNECT_TIMEOUT_SECONDS > self.HTTP_TIMEOUT_SECONDS:
            raise ValueError(
                "HTTP_CONNECT_TIMEOUT_SECONDS must be <= HTTP_TIMEOUT_SECONDS."
            )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == ENV_PRODUCTION

    @property
    def use_json_logs(self) -> bool:
        if self.LOG_JSON is not None:
            return self.LOG_JSON
        return not self.DEBUG
