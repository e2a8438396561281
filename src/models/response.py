"""Response payloads returned by the HTTP handlers."""

from typing import List, Optional

from pydantic import BaseModel, Field

from models.customer import Customer
from models.interaction import Interaction
from models.pipeline import PipelineResult


class CustomerProfile(BaseModel):
    """Customer record with its most recent interactions, newest first."""

    customer: Customer
    recent_interactions: List[Interaction] = Field(default_factory=list)


class PollSummary(BaseModel):
    """Outcome of one mailbox poll."""

    fetched: int = 0
    processed: int = 0
    failed: int = 0
    results: List[PipelineResult] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    correlation_id: Optional[str] = None
