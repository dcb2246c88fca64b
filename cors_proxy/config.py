"""
Configuration module for the CORS development proxy.

This module uses Pydantic Settings to load and validate environment variables
for the listening socket, the upstream target, upstream timeouts, and the
cross-origin headers the proxy injects.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache

import httpx
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SECURE_PORT = 443


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The two values that matter most, the listening port and the upstream
    hostname, are fixed once the process starts.
    """

    # =========================================================================
    # Listening Socket
    # =========================================================================

    PROXY_HOST: str = Field(
        default="0.0.0.0",
        description="Interface to bind the proxy server",
    )

    PROXY_PORT: int = Field(
        default=3000,
        description="Port to bind the proxy server",
        ge=1,
        le=65535,
    )

    # =========================================================================
    # Upstream Target
    # =========================================================================

    TARGET_HOST: str = Field(
        default="learn.tijusacademy.com",
        description="Upstream hostname (bare host, e.g. api.example.com)",
        min_length=1,
    )

    TARGET_PORT: int = Field(
        default=DEFAULT_SECURE_PORT,
        description="Upstream HTTPS port",
        ge=1,
        le=65535,
    )

    UPSTREAM_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Read/write/pool timeout toward upstream (0 disables)",
        ge=0,
    )

    UPSTREAM_CONNECT_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for establishing the upstream connection (0 disables)",
        ge=0,
    )

    # =========================================================================
    # CORS Headers
    # =========================================================================

    ALLOW_METHODS: str = Field(
        default="GET, POST, PUT, DELETE, OPTIONS",
        description="Value sent in Access-Control-Allow-Methods",
    )

    ALLOW_HEADERS: str = Field(
        default="Content-Type, Authorization",
        description="Value sent in Access-Control-Allow-Headers",
    )

    # =========================================================================
    # Logging
    # =========================================================================

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

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
    def target_base_url(self) -> str:
        """
        Upstream origin without a trailing slash.

        The port is only spelled out when it differs from 443.
        """
        if self.TARGET_PORT == DEFAULT_SECURE_PORT:
            return f"https://{self.TARGET_HOST}"
        return f"https://{self.TARGET_HOST}:{self.TARGET_PORT}"

    @property
    def local_url(self) -> str:
        host = "localhost" if self.PROXY_HOST in ("0.0.0.0", "::") else self.PROXY_HOST
        return f"http://{host}:{self.PROXY_PORT}"

    @property
    def upstream_timeout(self) -> httpx.Timeout:
        # httpx treats None as "no timeout"
        return httpx.Timeout(
            self.UPSTREAM_TIMEOUT_SECONDS or None,
            connect=self.UPSTREAM_CONNECT_TIMEOUT_SECONDS or None,
        )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("TARGET_HOST")
    @classmethod
    def validate_target_host(cls, v: str) -> str:
        """
        Validate that TARGET_HOST is a bare hostname.

        Args:
            v: Raw hostname string

        Returns:
            Stripped, lowercased hostname

        Raises:
            ValueError: If the value carries a scheme, path, port or credentials
        """
        v = v.strip().lower()

        if not v:
            raise ValueError("TARGET_HOST must not be empty")

        if "://" in v or "/" in v:
            raise ValueError(
                f"Invalid TARGET_HOST: '{v}'. "
                "Expected a bare hostname such as 'api.example.com'"
            )

        if " " in v or "@" in v or ":" in v:
            raise ValueError(
                f"Invalid TARGET_HOST: '{v}'. "
                "Hostname should not contain spaces, '@' or a port (use TARGET_PORT)"
            )

        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

        v = v.strip().upper()
        if v not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of {allowed_levels}, got: {v}")

        return v

    @field_validator("ALLOW_METHODS")
    @classmethod
    def validate_allow_methods(cls, v: str) -> str:
        methods = [m.strip().upper() for m in v.split(",") if m.strip()]

        # Preflight itself must stay allowed.
        if "OPTIONS" not in methods:
            raise ValueError("ALLOW_METHODS must include OPTIONS")

        return ", ".join(methods)


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    Only the process entry point should rely on this; the application factory
    accepts an explicit Settings so several proxies can share one process.

    Raises:
        ValidationError: If environment variables are invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Validate settings that pydantic cannot judge field by field.

    Returns:
        Dictionary with validation status, errors and warnings.

    Example:
        >>> status = validate_configuration(Settings())
        >>> status["valid"]
        True
    """
    errors = []
    warnings = []

    local_hosts = {"localhost", "127.0.0.1", "::1", "0.0.0.0"}
    if settings.TARGET_HOST in local_hosts and settings.TARGET_PORT == settings.PROXY_PORT:
        errors.append("TARGET_HOST/TARGET_PORT point back at the proxy itself")

    if settings.PROXY_HOST in ("0.0.0.0", "::"):
        warnings.append("Proxy binds every interface; other machines on the network can use it")

    if not settings.UPSTREAM_TIMEOUT_SECONDS or not settings.UPSTREAM_CONNECT_TIMEOUT_SECONDS:
        warnings.append("Upstream timeouts are disabled; a stalled upstream will hold requests open")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "target": settings.target_base_url,
        "listen": settings.local_url,
    }
