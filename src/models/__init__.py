"""Pydantic models for messages, customers and pipeline payloads."""

from models.customer import ConversationStage, Customer  # noqa: F401
from models.interaction import Direction, Interaction  # noqa: F401
from models.message import InboundEmail, Intent, NormalizedMessage  # noqa: F401
from models.pipeline import (  # noqa: F401
    CompletionResult,
    OutboundEmail,
    PipelineResult,
    PipelineStatus,
    PipelineTrace,
    PromptMessage,
    PromptPayload,
    PromptRole,
    SendResult,
)
from models.response import CustomerProfile, PollSummary  # noqa: F401
