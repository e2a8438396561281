"""Pydantic models passed between pipeline stages."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from models.customer import Customer
from models.message import NormalizedMessage


class PromptRole(str, Enum):
    SYSTEM = "system"
    USER = "user"


class PromptMessage(BaseModel):
    role: PromptRole
    content: str


class PromptPayload(BaseModel):
    """Role-tagged prompt plus sampling parameters for the completion service."""

    messages: List[PromptMessage]
    temperature: float = Field(default=0.4, ge=0, le=1)
    max_tokens: int = Field(default=600, gt=0)

    @property
    def system_prompt(self) -> str:
        return "\n\n".join(m.content for m in self.messages if m.role == PromptRole.SYSTEM)

    @property
    def conversation(self) -> List[PromptMessage]:
        return [m for m in self.messages if m.role != PromptRole.SYSTEM]


class CompletionResult(BaseModel):
    text: str
    model_id: str
    used_fallback: bool = False
    latency_ms: int = 0
    error: Optional[str] = None


class OutboundEmail(BaseModel):
    """A reply ready for the mail transport."""

    recipient: str
    subject: str
    text_body: str
    html_body: Optional[str] = None
    in_reply_to: Optional[str] = None
    references: List[str] = Field(default_factory=list)


class SendResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class PipelineStatus(str, Enum):
    """Outcome of one pass through the pipeline."""

    SENT = "sent"
    ESCALATED = "escalated"
    DRAFTED = "drafted"
    SEND_FAILED = "send_failed"
    RECORD_FAILED = "record_failed"
    SKIPPED = "skipped"


class PipelineTrace(BaseModel):
    """Per-stage latency, mirroring what the logs carry."""

    normalize_latency_ms: int = 0
    resolve_latency_ms: int = 0
    completion_latency_ms: int = 0
    send_latency_ms: int = 0
    record_latency_ms: int = 0
    total_latency_ms: int = 0
    started_at: datetime
    correlation_id: str


class PipelineResult(BaseModel):
    """Everything one pipeline pass decided and did."""

    status: PipelineStatus
    message: NormalizedMessage
    customer: Optional[Customer] = None
    is_new_customer: bool = False
    escalated: bool = False
    escalation_reasons: List[str] = Field(default_factory=list)
    reply: Optional[OutboundEmail] = None
    send_result: Optional[SendResult] = None
    used_fallback: bool = False
    errors: List[str] = Field(default_factory=list)
    trace: PipelineTrace
