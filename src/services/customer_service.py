"""
Customer resolution and record updates.

``resolve`` finds or creates the customer for a sender; ``record_exchange``
appends the interaction log and moves the customer forward. Interaction
counts and last-contact timestamps only ever move forward.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from models.customer import FUNNEL_ORDER, ConversationStage, Customer
from models.interaction import Direction, Interaction
from models.message import Intent, NormalizedMessage
from models.pipeline import OutboundEmail
from repositories.base import RecordStore
from services.classification_service import extract_qualification_notes, score_sentiment
from utils.error_handling import ValidationError
from utils.logging_config import get_logger
from utils.validators import clamp_unit

logger = get_logger(__name__)

STAGE_TARGETS = {
    Intent.INFORMATION_REQUEST: ConversationStage.INFORMATION_GATHERING,
    Intent.PRICING_INQUIRY: ConversationStage.PRODUCT_MATCHING,
    Intent.DEMO_REQUEST: ConversationStage.PRODUCT_MATCHING,
    Intent.PURCHASE_INTENT: ConversationStage.CLOSING,
}

CONVERSION_DELTAS = {
    Intent.PURCHASE_INTENT: 0.2,
    Intent.DEMO_REQUEST: 0.1,
    Intent.PRICING_INQUIRY: 0.05,
    Intent.INFORMATION_REQUEST: 0.02,
}


def advance_stage(current: ConversationStage, intent: Intent) -> ConversationStage:
    """Move along the funnel towards the intent's target, never backwards."""
    target = STAGE_TARGETS.get(intent)
    if target is None or current.is_terminal:
        return current
    if FUNNEL_ORDER.index(target) > FUNNEL_ORDER.index(current):
        return target
    return current


def update_conversion(probability: float, intent: Intent) -> float:
    return round(clamp_unit(probability + CONVERSION_DELTAS.get(intent, 0.0)), 2)


def blend_sentiment(previous: float, message_score: float) -> float:
    return round(clamp_unit((previous + message_score) / 2), 2)


def merge_notes(existing: Optional[str], sentences: List[str]) -> Optional[str]:
    lines = [line for line in (existing or "").split("\n") if line]
    for sentence in sentences:
        if sentence not in lines:
            lines.append(sentence)
    return "\n".join(lines) or None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CustomerService:
    """Resolves senders to customers and keeps their records current."""

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self.clock = clock

    def resolve(self, message: NormalizedMessage) -> Tuple[Customer, bool]:
        """Load the customer for ``message.sender`` or create one; returns (customer, is_new)."""
        existing = self.store.get_customer_by_email(message.sender)
        if existing:
            logger.info("Customer loaded", extra={"customer_id": existing.customer_id})
            return existing, False

        now = self.clock()
        customer = Customer(
            email=message.sender,
            name=message.sender_name,
            stage=ConversationStage.INITIAL_INQUIRY,
            first_contact=now,
            last_contact=now,
            interaction_count=0,
        )
        try:
            return self.store.create_customer(customer), True
        except ValidationError:
            # Another invocation created the same address first.
            concurrent = self.store.get_customer_by_email(message.sender)
            if concurrent is None:
                raise
            return concurrent, False

    def history(self, customer: Customer, limit: int = 5) -> List[Interaction]:
        if customer.interaction_count == 0:
            return []
        return self.store.list_interactions(customer.customer_id, limit=limit)

    def apply_inbound(self, customer: Customer, message: NormalizedMessage) -> Customer:
        """
        Return the customer as it should look after receiving ``message``.

        The message that created the customer leaves it in its starting stage;
        funnel progression begins with the second message.
        """
        now = self.clock()
        stage = customer.stage
        if customer.interaction_count > 0:
            stage = advance_stage(customer.stage, message.intent)
        notes = extract_qualification_notes(message.body)
        return customer.model_copy(
            update={
                "name": customer.name or message.sender_name,
                "interaction_count": customer.interaction_count + 1,
                "last_contact": max(customer.last_contact, now),
                "stage": stage,
                "conversion_probability": update_conversion(
                    customer.conversion_probability, message.intent
                ),
                "sentiment_score": blend_sentiment(
                    customer.sentiment_score, score_sentiment(message.body)
                ),
                "budget_notes": merge_notes(customer.budget_notes, notes["budget"]),
                "timeline_notes": merge_notes(customer.timeline_notes, notes["timeline"]),
            }
        )

    def record_exchange(
        self,
        customer: Customer,
        message: NormalizedMessage,
        escalated: bool,
        reply: Optional[OutboundEmail] = None,
        reply_message_id: Optional[str] = None,
    ) -> Customer:
        """
        Append the inbound interaction, the outbound one when a reply reached
        the customer, and persist the updated customer record.
        """
        now = self.clock()
        self.store.append_interaction(
            Interaction(
                customer_id=customer.customer_id,
                direction=Direction.INBOUND,
                subject=message.subject,
                body=message.body,
                intent=message.intent,
                timestamp=now,
                confidence=message.confidence,
                thread_id=message.thread_id,
                message_id=message.message_id,
                escalated=escalated,
            )
        )
        if reply is not None:
            # Outbound entry must sort after the inbound one.
            replied_at = max(self.clock(), now + timedelta(milliseconds=1))
            self.store.append_interaction(
                Interaction(
                    customer_id=customer.customer_id,
                    direction=Direction.OUTBOUND,
                    subject=reply.subject,
                    body=reply.text_body,
                    intent=message.intent,
                    timestamp=replied_at,
                    thread_id=message.thread_id,
                    message_id=reply_message_id,
                )
            )

        updated = self.store.update_customer(self.apply_inbound(customer, message))
        logger.info(
            "Customer record updated",
            extra={
                "customer_id": updated.customer_id,
                "interaction_count": updated.interaction_count,
                "stage": updated.stage.value,
            },
        )
        return updated
