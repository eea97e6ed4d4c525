"""Service configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
Each concern has its own prefix; ``OneboxConfig`` nests them all.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings


class ImapConfig(BaseSettings):
    """IMAP server connection settings."""

    model_config = {"env_prefix": "IMAP_"}

    host: str = Field(description="IMAP server hostname")
    port: int = Field(default=993, description="IMAP server port")
    use_ssl: bool = Field(default=True, description="Use SSL/TLS connection")
    username: str = Field(description="IMAP login username (also the account id)")
    password: SecretStr = Field(description="IMAP login password")
    mailbox: str = Field(default="INBOX", description="IMAP folder to mirror")
    timeout_seconds: float = Field(
        default=60.0,
        description="Socket timeout for IMAP commands",
    )


class SessionConfig(BaseSettings):
    """Mailbox session lifecycle: backfill, IDLE watchdog, reconnection."""

    model_config = {"env_prefix": "SESSION_"}

    backfill_days: int = Field(default=30, description="Lookback window for the initial backfill")
    backfill_mode: Literal["reconcile", "index", "off"] = Field(
        default="reconcile",
        description=(
            "reconcile: fetch headers and count only; index: persist and classify "
            "historical mail without notifying; off: skip the backfill"
        ),
    )
    watchdog_interval_seconds: float = Field(
        default=29 * 60,
        description="Seconds between keep-alive NOOP probes while idling",
    )
    idle_check_seconds: float = Field(
        default=30.0,
        description="Max seconds to block on a single IDLE wait",
    )
    reconnect_initial_seconds: float = Field(
        default=1.0,
        description="First reconnection backoff",
    )
    reconnect_max_seconds: float = Field(
        default=300.0,
        description="Reconnection backoff cap",
    )
    reconnect_multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")
    startup_max_attempts: int | None = Field(
        default=None,
        description="Connection attempts allowed at startup before giving up (unbounded if unset)",
    )
    mark_seen: bool = Field(
        default=True,
        description="Set the \\Seen flag on live messages when fetching them",
    )


class ElasticsearchConfig(BaseSettings):
    """Record store settings."""

    model_config = {"env_prefix": "ES_"}

    url: str = Field(default="http://localhost:9200", description="Elasticsearch base URL")
    index: str = Field(default="emails", description="Index holding email records")
    request_timeout_seconds: float = Field(default=30.0, description="Per-request timeout")


class ClassifierConfig(BaseSettings):
    """LLM classification endpoint settings."""

    model_config = {"env_prefix": "CLASSIFIER_"}

    api_url: str = Field(description="URL of the classification endpoint")
    api_key: SecretStr | None = Field(
        default=None,
        description="Optional key sent as the x-goog-api-key header",
    )
    timeout_seconds: float = Field(default=30.0, description="HTTP request timeout")
    max_attempts: int = Field(default=3, description="Attempts per classification call")
    initial_wait_seconds: float = Field(default=0.5, description="Initial retry backoff")
    max_wait_seconds: float = Field(default=5.0, description="Maximum retry backoff")


class NotifierConfig(BaseSettings):
    """Notification sink settings. Unset URLs disable the sink."""

    model_config = {"env_prefix": "NOTIFY_"}

    slack_webhook_url: str | None = Field(default=None, description="Slack incoming webhook URL")
    webhook_url: str | None = Field(default=None, description="Generic JSON webhook URL")
    timeout_seconds: float = Field(default=10.0, description="HTTP request timeout")


class PipelineConfig(BaseSettings):
    """Processing pipeline settings."""

    model_config = {"env_prefix": "PIPELINE_"}

    max_concurrency: int = Field(
        default=8,
        ge=1,
        description="Records processed concurrently across a batch",
    )


class ApiConfig(BaseSettings):
    """HTTP server and logging settings shared by every run mode."""

    model_config = {"env_prefix": "ONEBOX_"}

    api_host: str = Field(default="0.0.0.0", description="Search API bind address")
    api_port: int = Field(default=3000, description="Search API bind port")
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=True, description="JSON log output (False for dev console)")
    elasticsearch: ElasticsearchConfig = Field(default_factory=ElasticsearchConfig)


class OneboxConfig(ApiConfig):
    """Root configuration for the sync service.

    Nested configs are populated from their own env-var prefixes.
    """

    imap: ImapConfig = Field(default_factory=ImapConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    notifier: NotifierConfig = Field(default_factory=NotifierConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
