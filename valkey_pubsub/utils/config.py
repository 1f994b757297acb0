"""
Environment configuration loader with validation for the pub/sub layer.
"""

import logging
import os
from dataclasses import fields
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator
from dotenv import load_dotenv

from ..store.config import ValkeyConfig


class BusConfig(BaseModel):
    """Configuration model for the pub/sub, cache and lock layer."""

    # Namespace
    prefix: str = Field(description="Prefix qualifying every channel and key")

    # Valkey Configuration
    valkey_host: str = Field(default="localhost", description="Valkey server host")
    valkey_port: int = Field(
        default=6379, ge=1, le=65535, description="Valkey server port"
    )
    valkey_password: Optional[str] = Field(
        default=None, description="Valkey server password"
    )
    valkey_database: int = Field(
        default=0, ge=0, le=15, description="Valkey database number"
    )
    valkey_socket_timeout: float = Field(
        default=5.0, gt=0, description="Valkey socket timeout in seconds"
    )
    valkey_socket_connect_timeout: float = Field(
        default=5.0, gt=0, description="Valkey connection timeout in seconds"
    )
    valkey_retry_on_timeout: bool = Field(
        default=True, description="Retry a command once after a socket timeout"
    )
    valkey_health_check_interval: int = Field(
        default=30, ge=0, description="Seconds between connection health checks"
    )
    valkey_decode_responses: bool = Field(
        default=True, description="Decode replies to str"
    )

    # Locking
    lock_timeout_ms: int = Field(
        default=5000, ge=1, description="Default lock TTL in milliseconds"
    )
    lock_retry_delay_ms: int = Field(
        default=50, ge=1, description="Delay between lock attempts in milliseconds"
    )

    # Subscriber loop
    listener_poll_timeout: float = Field(
        default=1.0, gt=0, description="Seconds to block waiting for a message"
    )

    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        """Reject an empty or blank namespace prefix."""
        if not v or not v.strip():
            raise ValueError("Prefix must be a non-empty string")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    def valkey(self) -> ValkeyConfig:
        """Build the connection settings shared by every role client."""
        return ValkeyConfig(
            **{f.name: getattr(self, f"valkey_{f.name}") for f in fields(ValkeyConfig)}
        )


def load_config(env_file: Optional[str] = None) -> BusConfig:
    """
    Load configuration from environment variables and .env file.

    The prefix comes from VALKEY_PREFIX, falling back to DOMAIN.

    Args:
        env_file: Optional path to .env file. If None, looks for .env in current directory.

    Returns:
        BusConfig: Validated configuration object

    Raises:
        ValueError: If required configuration is missing or invalid
    """
    if env_file is None:
        env_file = ".env"

    if os.path.exists(env_file):
        load_dotenv(env_file)

    try:
        connection = ValkeyConfig.from_env()
        config_data: Dict[str, Any] = {
            f"valkey_{name}": value for name, value in connection.as_dict().items()
        }
        config_data.update(
            prefix=os.getenv("VALKEY_PREFIX") or os.getenv("DOMAIN", ""),
            lock_timeout_ms=int(os.getenv("LOCK_TIMEOUT_MS", "5000")),
            lock_retry_delay_ms=int(os.getenv("LOCK_RETRY_DELAY_MS", "50")),
            listener_poll_timeout=float(os.getenv("LISTENER_POLL_TIMEOUT", "1.0")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
        return BusConfig(**config_data)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Configuration validation failed: {e}") from e


def configure_logging(level: str = "INFO") -> None:
    """Install a stream handler on the root logger for scripts and demos."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
