"""Context assembly: message + customer record -> role-tagged prompt payload."""

from __future__ import annotations

from typing import List, Sequence

from config.settings import Settings
from models.customer import Customer
from models.interaction import Interaction
from models.message import NormalizedMessage
from models.pipeline import PromptMessage, PromptPayload, PromptRole
from utils.text import truncate

SYSTEM_PROMPT = (
    "You are a friendly, professional customer-support assistant writing on behalf of "
    "{company}. Reply to the customer's latest email in plain text. "
    "Write only the body of the reply: no greeting line, no sign-off, no signature. "
    "Keep it under 180 words. Answer what was asked using only the facts given; "
    "never invent prices, dates or commitments. If something needs a specialist, "
    "say a team member will follow up."
)


class ContextAssembler:
    """Merges a normalized message and the resolved customer into one prompt."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def build(
        self,
        message: NormalizedMessage,
        customer: Customer,
        history: Sequence[Interaction] = (),
        escalated: bool = False,
    ) -> PromptPayload:
        system = SYSTEM_PROMPT.format(company=self.settings.company_name)
        if escalated:
            system += (
                " This conversation has been flagged for a human colleague; acknowledge "
                "the request and tell the customer a specialist will be in touch shortly."
            )
        return PromptPayload(
            messages=[
                PromptMessage(role=PromptRole.SYSTEM, content=system),
                PromptMessage(role=PromptRole.USER, content=self._user_block(message, customer, history)),
            ],
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
        )

    def _user_block(
        self,
        message: NormalizedMessage,
        customer: Customer,
        history: Sequence[Interaction],
    ) -> str:
        lines: List[str] = [
            "Customer:",
            f"- name: {customer.name or 'unknown'}",
            f"- company: {customer.company or 'unknown'}",
            f"- stage: {customer.stage.value}",
            f"- previous messages: {customer.interaction_count}",
        ]
        if customer.budget_notes:
            lines.append(f"- budget notes: {truncate(customer.budget_notes, 300)}")
        if customer.timeline_notes:
            lines.append(f"- timeline notes: {truncate(customer.timeline_notes, 300)}")

        lines.extend(
            [
                "",
                "Classification:",
                f"- intent: {message.intent.value} (confidence {message.confidence:.2f})",
                f"- urgent: {'yes' if message.urgent else 'no'}",
            ]
        )

        if history:
            lines.extend(["", "Recent conversation (newest first):"])
            for item in history:
                lines.append(
                    f"- [{item.direction.value}] {item.subject or '(no subject)'}: "
                    f"{truncate(' '.join(item.body.split()), 300)}"
                )

        lines.extend(
            [
                "",
                "Latest email:",
                f"Subject: {message.subject or '(no subject)'}",
                message.body or "(empty body)",
            ]
        )
        if message.has_attachments:
            lines.append("(The customer attached files that you cannot see.)")
        return "\n".join(lines)
