"""Service configuration loaded from environment variables.

Every concern gets its own ``BaseSettings`` class with its own env prefix;
``Settings`` composes them.  Example: ``IMAP_HOST=imap.example.com``.
"""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ImapConfig(BaseSettings):
    """Remote mailbox connection settings.

    The session always uses implicit TLS (``IMAP4_SSL``); there is no
    plain-text switch.
    """

    model_config = SettingsConfigDict(env_prefix="IMAP_")

    host: str = Field(default="", description="IMAP server hostname")
    port: int = Field(default=993, description="IMAP server port")
    username: str = Field(default="", description="IMAP login username")
    password: SecretStr = Field(default=SecretStr(""), description="IMAP login password")
    mailbox: str = Field(default="INBOX", description="IMAP mailbox/folder to poll")
    auth_timeout_seconds: float = Field(
        default=10.0,
        description="Socket timeout while the LOGIN exchange is in flight",
    )
    conn_timeout_seconds: float = Field(
        default=30.0,
        description="Socket timeout for the TLS handshake and the rest of the session",
    )
    poll_interval_seconds: float = Field(
        default=30.0,
        description="Seconds between poll cycles",
    )
    cycle_timeout_seconds: float = Field(
        default=120.0,
        description="Hard upper bound on a single poll cycle",
    )
    enabled: bool = Field(default=True, description="Start the poll loop on startup")


class DatabaseConfig(BaseSettings):
    """Record store settings."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    url: str = Field(
        default="sqlite+aiosqlite:///./email-tracker.db",
        description="Async SQLAlchemy URL",
    )
    echo: bool = Field(default=False, description="Log every SQL statement")
    create_schema: bool = Field(
        default=True,
        description="Create missing tables on startup",
    )


class LivenessConfig(BaseSettings):
    """Heartbeat cadence for real-time client sessions."""

    model_config = SettingsConfigDict(env_prefix="LIVENESS_")

    heartbeat_interval_seconds: float = Field(
        default=5.0,
        description="Seconds between heartbeat broadcasts",
    )
    sweep_interval_seconds: float = Field(
        default=5.0,
        description="Seconds between stale-session sweeps",
    )
    stale_after_seconds: float = Field(
        default=30.0,
        description="Silence after which a session is evicted",
    )


class RetryConfig(BaseSettings):
    """Retry / backoff settings for record persistence, driven by Tenacity."""

    model_config = SettingsConfigDict(env_prefix="RETRY_")

    max_attempts: int = Field(default=3, description="Maximum insert attempts per record")
    initial_wait_seconds: float = Field(
        default=0.5,
        description="Initial backoff wait in seconds",
    )
    max_wait_seconds: float = Field(
        default=5.0,
        description="Maximum backoff wait in seconds",
    )
    multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")
    pending_queue_size: int = Field(
        default=1000,
        description="Parsed records kept for redelivery after persistence failed",
    )


class Settings(BaseSettings):
    """Root configuration for the service.

    Top-level fields use the ``EMAIL_TRACKER_`` prefix; nested configs are
    populated from their own prefixes.
    """

    model_config = SettingsConfigDict(env_prefix="EMAIL_TRACKER_")

    # --- Server -------------------------------------------------------------
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=5000, description="Bind port")
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="Origins allowed by the CORS middleware",
    )
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(
        default=True,
        description="Use JSON log output (True for prod, False for dev)",
    )

    imap: ImapConfig = Field(default_factory=ImapConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    liveness: LivenessConfig = Field(default_factory=LivenessConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
