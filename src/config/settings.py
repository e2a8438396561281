"""
Environment-specific configuration settings.

Every value can be overridden through an environment variable of the same
name in upper case (e.g. ``MODEL_ID``, ``CUSTOMERS_TABLE``).
"""

from dataclasses import dataclass, fields
import os
from typing import Optional

from botocore.config import Config


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Application settings with development-friendly defaults."""

    # Environment
    environment: str = "dev"
    aws_region: str = "eu-west-2"
    bedrock_region: Optional[str] = None

    # Completion service (Bedrock)
    model_id: str = "anthropic.claude-3-haiku-20240307-v1:0"
    temperature: float = 0.4
    max_tokens: int = 600
    history_limit: int = 5

    # Record store: "dynamodb" or "sql"
    record_backend: str = "dynamodb"
    customers_table: str = "support-customers"
    interactions_table: str = "support-interactions"
    database_url: Optional[str] = None
    db_secret_arn: Optional[str] = None

    # Mailbox source: "s3" (SES inbound) or "directory"
    mailbox_backend: str = "s3"
    mailbox_bucket: Optional[str] = None
    mailbox_prefix: str = "inbound/"
    processed_prefix: str = "processed/"
    mailbox_dir: str = "mailbox"
    poll_limit: int = 10

    # Outbound mail (SES)
    sender_address: Optional[str] = None
    sender_name: str = "Customer Success"
    escalation_address: Optional[str] = None
    company_name: str = "Our Team"
    signature: Optional[str] = None
    auto_send: bool = True

    # Error forwarding
    error_topic_arn: Optional[str] = None

    # Retries and dedupe cache
    max_attempts: int = 3
    cache_ttl_seconds: int = 3600
    cache_max_size: int = 500

    @property
    def resolved_bedrock_region(self) -> str:
        return self.bedrock_region or self.aws_region

    @property
    def signature_block(self) -> str:
        """Signature appended to every outbound message."""
        if self.signature:
            return self.signature.replace("\\n", "\n")
        return f"Best regards,\n{self.sender_name}\n{self.company_name}"

    @classmethod
    def from_environment(cls) -> "Settings":
        """Load settings from environment variables."""
        overrides = {}
        for field in fields(cls):
            raw = os.environ.get(field.name.upper())
            if raw is None or raw == "":
                continue
            default = field.default
            if isinstance(default, bool):
                overrides[field.name] = _env_bool(raw)
            elif isinstance(default, int):
                overrides[field.name] = int(raw)
            elif isinstance(default, float):
                overrides[field.name] = float(raw)
            else:
                overrides[field.name] = raw

        # AWS_REGION is set by the Lambda runtime itself.
        overrides.setdefault("aws_region", os.environ.get("AWS_DEFAULT_REGION", cls.aws_region))

        # Production overrides
        if overrides.get("environment") == "prod":
            overrides.setdefault("max_attempts", 5)
            overrides.setdefault("temperature", 0.3)

        return cls(**overrides)

    def boto_config(self) -> Config:
        """Client config with botocore's exponential-backoff retry mode."""
        return Config(
            retries={"max_attempts": self.max_attempts, "mode": "standard"},
            connect_timeout=5,
            read_timeout=60,
        )
