"""Interaction records: one per message received or sent."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.message import Intent


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class Interaction(BaseModel):
    """Immutable log entry tied to exactly one customer."""

    model_config = ConfigDict(frozen=True)

    interaction_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    customer_id: str
    direction: Direction
    subject: str = ""
    body: str = ""
    intent: Intent = Intent.GENERAL_INQUIRY
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    thread_id: Optional[str] = None
    message_id: Optional[str] = None
    escalated: bool = False

    @field_validator("timestamp")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
