"""
kvwire Configuration Settings

This module contains all configuration constants for the kvwire server.
Every value can be overridden per server instance through the KVServer
constructor; the environment only supplies the defaults.
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class Settings:
    """Server configuration settings."""

    # Network settings
    HOST: str = os.environ.get("KVWIRE_HOST", "0.0.0.0")
    PORT: int = int(os.environ.get("KVWIRE_PORT", "8000"))

    # Wire variant: "text" (newline framed) or "binary" (length prefixed)
    PROTOCOL: str = os.environ.get("KVWIRE_PROTOCOL", "text")

    # Authentication (enabled only when both are set)
    LOGIN: Optional[str] = os.environ.get("KVWIRE_LOGIN")
    PASSWORD: Optional[str] = os.environ.get("KVWIRE_PASSWORD")
    AUTH_TIMEOUT: float = 5.0  # Seconds allowed for the login line

    # Dispatch settings
    QUEUE_SIZE: int = int(os.environ.get("KVWIRE_QUEUE_SIZE", "1024"))

    # Connection settings
    READ_BUFFER_SIZE: int = 65536  # Longest accepted text line
    MAX_FRAME_SIZE: int = 1024 * 1024  # Largest binary key or value
    WRITE_TIMEOUT: float = 5.0  # Seconds to flush one response
    SHUTDOWN_TIMEOUT: float = 5.0  # Seconds to wait for sockets to close

    # Logging settings
    DEBUG: bool = os.environ.get("KVWIRE_DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.environ.get("KVWIRE_LOG_LEVEL", "INFO")


# Global settings instance
settings = Settings()
