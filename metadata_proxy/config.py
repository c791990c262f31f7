"""Configuration management for the metadata proxy service.

Loads configuration from environment variables with validation and defaults.
"""

import os
from dataclasses import dataclass, field
from typing import List
from urllib.parse import urlparse

DEFAULT_STREAM_URL = "http://79.120.11.40:8000/chiptune.ogg"

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
VALID_LOG_FORMATS = ["text", "json"]


@dataclass
class Config:
    """Configuration for the metadata proxy service."""

    # Upstream stream
    stream_url: str = DEFAULT_STREAM_URL
    connect_timeout_seconds: float = 10.0
    retry_delay_seconds: float = 5.0

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    keepalive_seconds: float = 30.0

    # Pipeline
    buffer_window_bytes: int = 16384
    min_emit_interval_seconds: float = 5.0
    seen_limit: int = 100
    subscriber_queue_size: int = 100

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables.

        Returns:
            Config: Configuration instance with values from environment.

        Raises:
            ValueError: If a numeric variable cannot be parsed.
        """
        try:
            return cls(
                # Upstream
                stream_url=os.getenv("STREAM_URL", DEFAULT_STREAM_URL),
                connect_timeout_seconds=float(os.getenv("CONNECT_TIMEOUT_SECONDS", "10.0")),
                retry_delay_seconds=float(os.getenv("RETRY_DELAY_SECONDS", "5.0")),
                # Server
                host=os.getenv("HOST", "0.0.0.0"),
                port=int(os.getenv("PORT", "3000")),
                cors_origins=[
                    origin.strip()
                    for origin in os.getenv("CORS_ORIGINS", "*").split(",")
                    if origin.strip()
                ],
                keepalive_seconds=float(os.getenv("KEEPALIVE_SECONDS", "30.0")),
                # Pipeline
                buffer_window_bytes=int(os.getenv("BUFFER_WINDOW_BYTES", "16384")),
                min_emit_interval_seconds=float(os.getenv("MIN_EMIT_INTERVAL_SECONDS", "5.0")),
                seen_limit=int(os.getenv("SEEN_LIMIT", "100")),
                subscriber_queue_size=int(os.getenv("SUBSCRIBER_QUEUE_SIZE", "100")),
                # Logging
                log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
                log_format=os.getenv("LOG_FORMAT", "text").lower(),
            )
        except ValueError as e:
            raise ValueError(f"Invalid numeric environment variable: {e}") from e

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If configuration values are invalid.
        """
        parsed = urlparse(self.stream_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid stream URL: {self.stream_url}")

        if not 1 <= self.port <= 65535:
            raise ValueError(f"Port must be between 1 and 65535, got {self.port}")

        if self.log_level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid log level '{self.log_level}'. "
                f"Must be one of: {', '.join(VALID_LOG_LEVELS)}"
            )

        if self.log_format not in VALID_LOG_FORMATS:
            raise ValueError(
                f"Invalid log format '{self.log_format}'. "
                f"Must be one of: {', '.join(VALID_LOG_FORMATS)}"
            )

        for name in (
            "connect_timeout_seconds",
            "retry_delay_seconds",
            "keepalive_seconds",
            "buffer_window_bytes",
            "seen_limit",
            "subscriber_queue_size",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

        if self.min_emit_interval_seconds < 0:
            raise ValueError("min_emit_interval_seconds must not be negative")

        if not self.cors_origins:
            raise ValueError("At least one CORS origin is required")
