"""Email message models: what a mailbox hands us and what the normalizer produces."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from utils.validators import normalize_email_address


class Intent(str, Enum):
    """Closed set of intents, declared in classification priority order."""

    PRICING_INQUIRY = "pricing_inquiry"
    SUPPORT_REQUEST = "support_request"
    PURCHASE_INTENT = "purchase_intent"
    INFORMATION_REQUEST = "information_request"
    DEMO_REQUEST = "demo_request"
    GENERAL_INQUIRY = "general_inquiry"


class InboundEmail(BaseModel):
    """One message as retrieved from a mailbox, before normalization."""

    message_id: str
    sender: str
    sender_name: Optional[str] = None
    subject: str = ""
    text_body: Optional[str] = None
    html_body: Optional[str] = None
    in_reply_to: Optional[str] = None
    references: List[str] = Field(default_factory=list)
    has_attachments: bool = False
    received_at: Optional[datetime] = None
    source_key: Optional[str] = None

    @field_validator("sender")
    @classmethod
    def validate_sender(cls, value: str) -> str:
        return normalize_email_address(value)

    @field_validator("message_id")
    @classmethod
    def validate_message_id(cls, value: str) -> str:
        cleaned = (value or "").strip()
        if not cleaned:
            raise ValueError("message_id must be provided")
        return cleaned


class NormalizedMessage(BaseModel):
    """Transient view of one inbound email for a single pipeline pass."""

    thread_id: str
    message_id: str
    sender: str
    sender_name: Optional[str] = None
    subject: str
    body: str
    intent: Intent
    confidence: float = Field(ge=0, le=1)
    urgent: bool = False
    has_attachments: bool = False
    references: List[str] = Field(default_factory=list)
