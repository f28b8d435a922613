"""
Configuration module for the CORS proxy.

This module uses Pydantic Settings to load and validate the process-wide
configuration: listen address, outbound request timeout, redirect cap and
header blacklist.

Environment variables (prefixed with CORSPROXY_) are loaded from a .env file
or the system environment. Command-line flags override them at startup.
The resulting Settings instance is frozen and shared read-only by every
request.
"""

import logging
from functools import lru_cache
from typing import List, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Built once at startup and passed explicitly into the application
    factory. Instances are immutable.
    """

    # =========================================================================
    # Server Configuration
    # =========================================================================

    LISTEN_ADDR: str = Field(
        default=":8000",
        description="Address to listen on, as [host]:port (e.g. ':8000', '127.0.0.1:8080')",
        min_length=2,
    )

    # =========================================================================
    # Outbound Request Configuration
    # =========================================================================

    REQUEST_TIMEOUT: float = Field(
        default=15,
        description="Timeout in seconds for the whole outbound exchange, redirects included",
        gt=0,
    )

    MAX_REDIRECTS: int = Field(
        default=10,
        description="Maximum number of redirects to follow",
        ge=0,
    )

    HEADER_BLACKLIST: str = Field(
        default="",
        description="Comma-separated list of headers to remove from the request and response",
    )

    # =========================================================================
    # Logging
    # =========================================================================

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_prefix="CORSPROXY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        frozen=True,
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def header_blacklist_list(self) -> List[str]:
        """
        Parse and return HEADER_BLACKLIST as a clean list.

        Returns:
            List of header names without surrounding whitespace.
        """
        if not self.HEADER_BLACKLIST:
            return []

        return [
            name.strip()
            for name in self.HEADER_BLACKLIST.split(",")
            if name.strip()
        ]

    @property
    def listen_host(self) -> str:
        """Host part of LISTEN_ADDR; an empty host binds all interfaces."""
        return _split_listen_addr(self.LISTEN_ADDR)[0] or "0.0.0.0"

    @property
    def listen_port(self) -> int:
        """Port part of LISTEN_ADDR."""
        return _split_listen_addr(self.LISTEN_ADDR)[1]

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("LISTEN_ADDR")
    @classmethod
    def validate_listen_addr(cls, v: str) -> str:
        """
        Validate that LISTEN_ADDR is in [host]:port form.

        Args:
            v: Raw listen address

        Returns:
            Validated listen address

        Raises:
            ValueError: If the port is missing or out of range
        """
        _split_listen_addr(v)
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate LOG_LEVEL is a known logging level name."""
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level


def _split_listen_addr(addr: str) -> Tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(
            f"Invalid listen address: '{addr}'. "
            "Expected format: '[host]:port'"
        )

    port_number = int(port)
    if not 1 <= port_number <= 65535:
        raise ValueError(f"Port must be between 1 and 65535, got: {port_number}")

    # [::1]:8000
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]

    return host, port_number


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance from the environment.

    This function is cached so that the settings are loaded only once
    during the process lifetime.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If environment variables are invalid.
    """
    return Settings()
