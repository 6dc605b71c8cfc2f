"""
Shared configuration management for the credential issuer services.

Configuration is resolved once at process start by ``load_config`` and the
resulting ``IssuerConfig`` is handed to every component constructor.
"""

from dataclasses import dataclass
from typing import Any, Optional

from pydantic import Field, ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


@dataclass(frozen=True)
class AuditConfig:
    """Settings the audit event builder and publisher need."""
    issuer: str
    event_name_prefix: str
    topic: str


class IssuerConfig(BaseSettings):
    """Configuration shared by the session and audit services."""

    model_config = SettingsConfigDict(
        env_prefix="ISSUER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # Required issuer settings
    session_table_name: str = Field(min_length=1)
    audit_event_table_name: str = Field(min_length=1, pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    session_ttl: int = Field(gt=0, description="Session lifetime in seconds")
    authorization_code_ttl: int = Field(gt=0, description="Authorization code lifetime in seconds")
    audit_event_name_prefix: str = Field(min_length=1)
    issuer: str = Field(min_length=1)

    # External services
    redis_url: str = "redis://localhost:6379/0"
    postgres_dsn: str = "postgres://localhost:5432/issuer"
    kafka_bootstrap: str = "localhost:9092"

    # Audit channel
    audit_topic: str = "issuer.audit.events.v1"
    audit_dead_letter_topic: str = "issuer.audit.events.dlq.v1"
    audit_consumer_group: str = "issuer-audit-consumer"
    publish_timeout_seconds: float = 10.0

    # Audit consumer
    audit_retention_seconds: int = 360
    audit_batch_size: int = Field(default=10, gt=0)
    audit_batch_concurrency: int = Field(default=1, gt=0)
    audit_write_timeout_seconds: float = Field(default=5.0, gt=0)
    audit_max_delivery_attempts: int = Field(default=5, gt=0)
    audit_poll_timeout_ms: int = 1000

    def audit_config(self) -> AuditConfig:
        """Return the audit settings used by the event builder."""
        return AuditConfig(
            issuer=self.issuer,
            event_name_prefix=self.audit_event_name_prefix,
            topic=self.audit_topic,
        )


def load_config(_env_file: Optional[str] = ".env", **overrides: Any) -> IssuerConfig:
    """Resolve configuration from the environment, failing with ConfigurationError."""
    try:
        return IssuerConfig(_env_file=_env_file, **overrides)
    except PydanticValidationError as e:
        problems = {
            ".".join(str(part) for part in error["loc"]): error["msg"]
            for error in e.errors()
        }
        raise ConfigurationError(
            f"Invalid or missing configuration: {', '.join(sorted(problems))}",
            {"fields": problems}
        ) from e
