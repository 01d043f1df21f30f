"""
Configuration module for the Log Gateway.

This module uses Pydantic Settings to load and validate environment variables
for OIDC authentication, server-side sessions, the CloudWatch Logs store and
the HTTP server itself.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All configuration for the identity provider (OIDC), session cookies,
    the downstream log store and the server are defined here.
    """

    # =========================================================================
    # Identity Provider (OIDC) Configuration
    # =========================================================================

    OIDC_ISSUER_URL: str = Field(
        ...,
        description="Issuer URL used for discovery (e.g., https://cognito-idp.us-east-1.amazonaws.com/us-east-1_abc)",
        min_length=1,
    )

    OIDC_CLIENT_ID: str = Field(
        ...,
        description="OAuth client ID registered with the identity provider",
        min_length=1,
    )

    OIDC_CLIENT_SECRET: Optional[str] = Field(
        None,
        description="OAuth client secret (optional for public clients)",
    )

    OIDC_REDIRECT_URI: str = Field(
        ...,
        description="Callback URI registered with the provider (e.g., https://gateway.example.com/callback)",
        min_length=1,
    )

    OIDC_SCOPES: str = Field(
        default="phone openid email",
        description="Space-separated scopes requested at login",
    )

    OIDC_TOKEN_AUTH_METHOD: str = Field(
        default="client_secret_basic",
        description="Client authentication at the token endpoint (client_secret_basic or client_secret_post)",
    )

    OIDC_LOGOUT_ENDPOINT: str = Field(
        ...,
        description="Provider logout endpoint (e.g., https://my-domain.auth.us-east-1.amazoncognito.com/logout)",
        min_length=1,
    )

    POST_LOGOUT_REDIRECT_URI: str = Field(
        ...,
        description="Where the provider sends the browser after logout",
        min_length=1,
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache provider JWKS keys in seconds",
        ge=60,
        le=86400,
    )

    # =========================================================================
    # Session Configuration
    # =========================================================================

    SESSION_SECRET: str = Field(
        ...,
        description="Secret key for signing session cookies (must be cryptographically secure)",
        min_length=32,
    )

    SESSION_COOKIE_NAME: str = Field(
        default="gateway_session",
        description="Name of the session cookie",
    )

    SESSION_MAX_AGE_SECONDS: int = Field(
        default=24 * 60 * 60,
        description="Absolute session lifetime in seconds (not extended by activity)",
        ge=60,
    )

    SESSION_COOKIE_SECURE: bool = Field(
        default=True,
        description="Only send the session cookie over HTTPS",
    )

    # =========================================================================
    # Outbound HTTP Configuration
    # =========================================================================

    HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for identity provider requests",
        gt=0,
        le=120,
    )

    # =========================================================================
    # Log Store (CloudWatch Logs) Configuration
    # =========================================================================

    AWS_REGION: str = Field(
        default="us-east-1",
        description="AWS region of the log group",
    )

    LOG_GROUP_NAME: str = Field(
        default="test",
        description="Log group read by /api/logs",
    )

    LOG_STREAM_NAME: str = Field(
        default="custom",
        description="Log stream read by /api/logs",
    )

    LOG_EVENTS_LIMIT: int = Field(
        default=100,
        description="Maximum number of events returned per page",
        ge=1,
        le=10000,
    )

    LOG_START_FROM_HEAD: bool = Field(
        default=True,
        description="Read the stream from its oldest event first",
    )

    LOG_STORE_CONNECT_TIMEOUT_SECONDS: float = Field(
        default=5.0,
        description="Connect timeout for CloudWatch Logs calls in seconds",
        gt=0,
    )

    LOG_STORE_READ_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Read timeout for CloudWatch Logs calls in seconds",
        gt=0,
    )

    LOGS_REQUIRE_AUTH: bool = Field(
        default=False,
        description="Reject anonymous callers of /api/logs with 401",
    )

    # =========================================================================
    # Gateway Server Configuration
    # =========================================================================

    GATEWAY_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the gateway server",
    )

    GATEWAY_PORT: int = Field(
        default=3001,
        description="Port to bind the gateway server",
        ge=1,
        le=65535,
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def discovery_url(self) -> str:
        """
        Build the OIDC discovery document URL from the issuer.

        Returns:
            Full URL of the provider's openid-configuration document.
        """
        return f"{self.OIDC_ISSUER_URL.rstrip('/')}/.well-known/openid-configuration"

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("OIDC_SCOPES")
    @classmethod
    def validate_scopes(cls, v: str) -> str:
        """
        Normalise the scope string and require at least one scope.

        Raises:
            ValueError: If no scope is given
        """
        scopes = [scope for scope in v.replace(",", " ").split() if scope]
        if not scopes:
            raise ValueError("OIDC_SCOPES must contain at least one scope")
        return " ".join(scopes)

    @field_validator("OIDC_TOKEN_AUTH_METHOD")
    @classmethod
    def validate_token_auth_method(cls, v: str) -> str:
        allowed_methods = ["client_secret_basic", "client_secret_post"]

        if v not in allowed_methods:
            raise ValueError(
                f"OIDC_TOKEN_AUTH_METHOD must be one of {allowed_methods}, got: {v}"
            )

        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """
        Validate the log level is one the logging module understands.

        Returns:
            Upper-cased log level name
        """
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        level = v.upper()

        if level not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of {allowed_levels}, got: {v}")

        return level


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()
