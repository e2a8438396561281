"""Customer models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from utils.validators import normalize_email_address


class ConversationStage(str, Enum):
    """Position of a customer in the sales funnel."""

    INITIAL_INQUIRY = "initial_inquiry"
    INFORMATION_GATHERING = "information_gathering"
    PRODUCT_MATCHING = "product_matching"
    OBJECTION_HANDLING = "objection_handling"
    CLOSING = "closing"
    CUSTOMER = "customer"
    CHURNED = "churned"

    @property
    def is_terminal(self) -> bool:
        return self in (ConversationStage.CUSTOMER, ConversationStage.CHURNED)


# Forward-only order for automatic stage advancement.
FUNNEL_ORDER = (
    ConversationStage.INITIAL_INQUIRY,
    ConversationStage.INFORMATION_GATHERING,
    ConversationStage.PRODUCT_MATCHING,
    ConversationStage.OBJECTION_HANDLING,
    ConversationStage.CLOSING,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Customer(BaseModel):
    """A contact keyed by email address, tracked across every message they send."""

    customer_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    email: str
    name: Optional[str] = None
    company: Optional[str] = None
    stage: ConversationStage = ConversationStage.INITIAL_INQUIRY
    first_contact: datetime = Field(default_factory=_utcnow)
    last_contact: datetime = Field(default_factory=_utcnow)
    interaction_count: int = Field(default=0, ge=0)
    sentiment_score: float = Field(default=0.5, ge=0, le=1)
    conversion_probability: float = Field(default=0.1, ge=0, le=1)
    budget_notes: Optional[str] = None
    timeline_notes: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        """Emails are the lookup key, so store them in one canonical form."""
        return normalize_email_address(value)

    @field_validator("first_contact", "last_contact")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        """Stores such as SQLite hand back naive datetimes; treat them as UTC."""
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def first_name(self) -> Optional[str]:
        if not self.name:
            return None
        return self.name.split()[0]
