"""
Response formatting.

Wraps generated text in a greeting, a call-to-action that depends on where
the customer is in the funnel, and the signature block. Also builds the
internal hand-off email used when a conversation is escalated.
"""

from __future__ import annotations

import html
import re
from typing import List

from config.settings import Settings
from models.customer import ConversationStage, Customer
from models.message import NormalizedMessage
from models.pipeline import OutboundEmail

STAGE_CALLS_TO_ACTION = {
    ConversationStage.INITIAL_INQUIRY: (
        "Reply with a few details about what you are looking for and we will point "
        "you in the right direction."
    ),
    ConversationStage.INFORMATION_GATHERING: (
        "Could you share your timeline and budget so we can tailor our recommendations?"
    ),
    ConversationStage.PRODUCT_MATCHING: (
        "Would you like to book a short demo to see how this fits your needs?"
    ),
    ConversationStage.OBJECTION_HANDLING: (
        "Happy to set up a quick call to work through any remaining questions."
    ),
    ConversationStage.CLOSING: (
        "Just reply to this email when you are ready and we will send over everything "
        "you need to get started."
    ),
    ConversationStage.CUSTOMER: (
        "As always, our team is here if you need anything else."
    ),
    ConversationStage.CHURNED: (
        "We would love to hear what we could do better, so feel free to reply any time."
    ),
}

_LEADING_GREETING = re.compile(r"^\s*(hi|hello|hey|dear)\b[^\n]*[,!]\s*\n+", re.IGNORECASE)
_TRAILING_SIGNOFF = re.compile(
    r"\n+[ \t]*(?:(?:best|kind|warm)[ \t]+)?(?:regards|wishes|thanks|thank you|sincerely|cheers)"
    r"[ \t]*[,!.]?[ \t]*(?:\n[^\n]{0,60}){0,3}\s*\Z",
    re.IGNORECASE,
)


def reply_subject(subject: str) -> str:
    cleaned = (subject or "").strip()
    if not cleaned:
        return "Re: Your message"
    if cleaned.lower().startswith("re:"):
        return cleaned
    return f"Re: {cleaned}"


def clean_generated_text(text: str) -> str:
    """Strip a greeting or sign-off the model added despite instructions."""
    cleaned = _LEADING_GREETING.sub("", text.strip(), count=1)
    cleaned = _TRAILING_SIGNOFF.sub("", cleaned)
    return cleaned.strip() or text.strip()


def _to_html(text: str) -> str:
    paragraphs = [p for p in re.split(r"\n\s*\n", text) if p.strip()]
    rendered = [
        "<p>" + "<br>".join(html.escape(line) for line in p.strip().split("\n")) + "</p>"
        for p in paragraphs
    ]
    return "<html><body>" + "".join(rendered) + "</body></html>"


class ResponseFormatter:
    """Turns model output into a complete outbound email."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def greeting(self, customer: Customer, message: NormalizedMessage) -> str:
        first_name = customer.first_name
        if not first_name and message.sender_name:
            first_name = message.sender_name.split()[0]
        return f"Hi {first_name}," if first_name else "Hello,"

    def format(
        self,
        message: NormalizedMessage,
        customer: Customer,
        generated_text: str,
    ) -> OutboundEmail:
        sections = [
            self.greeting(customer, message),
            clean_generated_text(generated_text),
            STAGE_CALLS_TO_ACTION[customer.stage],
            self.settings.signature_block,
        ]
        text_body = "\n\n".join(sections)
        return OutboundEmail(
            recipient=message.sender,
            subject=reply_subject(message.subject),
            text_body=text_body,
            html_body=_to_html(text_body),
            in_reply_to=message.message_id,
            references=self._references(message),
        )

    def format_escalation(
        self,
        message: NormalizedMessage,
        customer: Customer,
        draft: OutboundEmail,
        reasons: List[str],
    ) -> OutboundEmail:
        """Internal hand-off: who wrote, why it was flagged, and the suggested reply."""
        summary = [
            f"Escalation reasons: {', '.join(reasons) or 'manual review'}",
            f"Customer: {customer.name or 'unknown'} <{customer.email}>",
            f"Company: {customer.company or 'unknown'}",
            f"Stage: {customer.stage.value}",
            f"Conversion probability: {customer.conversion_probability:.2f}",
            f"Intent: {message.intent.value} (confidence {message.confidence:.2f})",
            f"Urgent: {'yes' if message.urgent else 'no'}",
            f"Thread: {message.thread_id}",
        ]
        text_body = "\n".join(
            [
                *summary,
                "",
                "----- Customer message -----",
                f"Subject: {message.subject or '(no subject)'}",
                message.body or "(empty body)",
                "",
                "----- Suggested reply -----",
                draft.text_body,
            ]
        )
        return OutboundEmail(
            recipient=self.settings.escalation_address or "",
            subject=f"[Escalation] {message.subject or '(no subject)'}",
            text_body=text_body,
            html_body=_to_html(text_body),
        )

    def _references(self, message: NormalizedMessage) -> List[str]:
        references = list(message.references)
        if message.message_id not in references:
            references.append(message.message_id)
        return references
